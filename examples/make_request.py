"""Example: sign in with a wallet key and call a protected route."""

import asyncio

from walletlink import AuthError, WalletAuthClient


async def main():
    # Use a saved base58 private key, or omit it to generate a fresh one
    async with WalletAuthClient(base_url="http://localhost:8000") as client:
        print(f"Wallet: {client.public_key}")

        try:
            result = await client.authenticate(email="ada@example.com")
        except AuthError as e:
            print(f"Sign-in failed: {e.message} ({e.detail})")
            return

        print(f"Signed in as user {result.user.id}, session {result.session_id}")

        response = await client.request("GET", "http://localhost:8000/api/profile")
        if response.is_success:
            print(response.json())
        else:
            print(f"Request failed: {response.status_code} {response.text}")

        await client.logout()


if __name__ == "__main__":
    asyncio.run(main())
