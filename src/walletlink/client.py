"""Wallet client - signs challenges and talks to a walletlink auth API.

Holds an Ed25519 key the way a wallet would, so it can be used from scripts,
services and tests that need to authenticate as a wallet.
"""

from typing import Any, Dict, Optional
from urllib.parse import urljoin

import httpx

from .middleware import format_authorization_header
from .signing import (
    create_challenge,
    generate_keypair,
    load_private_key,
    public_key_of,
    sign_message,
)
from .types import AuthError, AuthResult, UserRecord


class WalletAuthClient:
    """Client for a walletlink auth API.

    Usage:
        async with WalletAuthClient(private_key="base58_private_key") as client:
            result = await client.authenticate()
            session = await client.get_session(result.session_id)

            # Signed request against any route behind WalletAuthMiddleware
            response = await client.request("GET", "https://api.example.com/me")
    """

    DEFAULT_BASE_URL = "http://localhost:8000"

    def __init__(
        self,
        private_key: Optional[str] = None,
        base_url: str = DEFAULT_BASE_URL,
        app_name: str = "walletlink",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the client.

        Args:
            private_key: Ed25519 private key in base58 (generated if omitted)
            base_url: Auth API base URL
            app_name: App name used for locally created challenges
            transport: Custom httpx transport (e.g. httpx.ASGITransport)
        """
        if private_key is None:
            private_key, _ = generate_keypair()

        self._private_key = load_private_key(private_key)
        self.public_key = public_key_of(self._private_key)
        self.base_url = base_url.rstrip("/")
        self.app_name = app_name
        self.session_id: Optional[str] = None

        self._client = httpx.AsyncClient(transport=transport)

    # -------------------------------------------------------------------------
    # Signing
    # -------------------------------------------------------------------------

    def sign(self, message: str) -> str:
        """Sign a message, returning the base58 signature."""
        return sign_message(message, self._private_key)

    def authorization_header(self, message: Optional[str] = None) -> str:
        """Build a ``Wallet`` Authorization header.

        Args:
            message: Challenge to sign (a fresh local challenge if omitted)
        """
        if message is None:
            message = create_challenge(self.app_name)
        return format_authorization_header(self.public_key, self.sign(message), message)

    # -------------------------------------------------------------------------
    # Auth API
    # -------------------------------------------------------------------------

    async def get_challenge(self) -> str:
        """Fetch a challenge message from the server."""
        response = await self._request("GET", "/auth/challenge")
        return response["message"]

    async def authenticate(
        self,
        email: Optional[str] = None,
        existing_user_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> AuthResult:
        """Sign in: fetch a challenge, sign it, and open a session.

        Args:
            email: Link to the user with this email, if one exists
            existing_user_id: Link to this user
            metadata: Merged into the user's metadata

        Returns:
            AuthResult with the session id and linked user.
        """
        message = await self.get_challenge()
        payload: Dict[str, Any] = {
            "public_key": self.public_key,
            "signature": self.sign(message),
            "message": message,
        }
        if email is not None:
            payload["email"] = email
        if existing_user_id is not None:
            payload["existing_user_id"] = existing_user_id
        if metadata is not None:
            payload["metadata"] = metadata

        response = await self._request("POST", "/auth/wallet", json=payload)

        self.session_id = response["session_id"]
        return AuthResult(
            session_id=response["session_id"],
            user=self._parse_user(response["user"]),
        )

    async def get_session(self, session_id: Optional[str] = None) -> dict:
        """Look up a session (the client's own by default)."""
        session_id = self._session_id(session_id)
        return await self._request("GET", f"/auth/session/{session_id}")

    async def refresh_session(self, session_id: Optional[str] = None) -> bool:
        session_id = self._session_id(session_id)
        response = await self._request("POST", f"/auth/session/{session_id}/refresh")
        return response.get("success", False)

    async def unlink_wallet(self, session_id: Optional[str] = None) -> UserRecord:
        """Detach this wallet from the session's user; the session ends."""
        session_id = self._session_id(session_id)
        response = await self._request("DELETE", f"/auth/session/{session_id}/wallet")
        if session_id == self.session_id:
            self.session_id = None
        return self._parse_user(response)

    async def logout(self, session_id: Optional[str] = None) -> None:
        session_id = self._session_id(session_id)
        await self._request("POST", "/auth/logout", json={"session_id": session_id})
        if session_id == self.session_id:
            self.session_id = None

    # -------------------------------------------------------------------------
    # Signed HTTP Requests
    # -------------------------------------------------------------------------

    async def request(
        self,
        method: str,
        url: str,
        json: Optional[dict] = None,
        headers: Optional[dict] = None,
    ) -> httpx.Response:
        """Make a request carrying a freshly signed ``Wallet`` header.

        Args:
            method: HTTP method
            url: Full URL
            json: JSON body (optional)
            headers: Additional headers (optional)

        Returns:
            httpx.Response object.
        """
        headers = dict(headers or {})
        headers["Authorization"] = self.authorization_header()
        return await self._client.request(method, url, json=json, headers=headers)

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _session_id(self, session_id: Optional[str]) -> str:
        session_id = session_id or self.session_id
        if not session_id:
            raise AuthError(401, "Not authenticated", "Call authenticate() first")
        return session_id

    async def _request(self, method: str, path: str, json: Optional[dict] = None) -> dict:
        """Make a request to the auth API."""
        url = urljoin(self.base_url + "/", path.lstrip("/"))
        response = await self._client.request(method, url, json=json)

        if not response.is_success:
            self._handle_error(response)

        if response.status_code == 204 or not response.content:
            return {}
        return response.json()

    def _parse_user(self, data: dict) -> UserRecord:
        return UserRecord(
            id=data["id"],
            wallet_public_key=data.get("wallet_public_key"),
            email=data.get("email"),
            wallet_connected_at=data.get("wallet_connected_at"),
            metadata=data.get("metadata") or {},
        )

    def _handle_error(self, response: httpx.Response) -> None:
        """Handle API error responses."""
        try:
            data = response.json()
            detail = data.get("detail", str(data))
        except ValueError:
            detail = response.text

        messages = {
            400: "Bad request",
            401: "Not authenticated",
            404: "Not found",
            409: "Conflict (wallet already linked)",
            422: "Validation error",
        }

        raise AuthError(
            status_code=response.status_code,
            message=messages.get(response.status_code, f"HTTP {response.status_code}"),
            detail=detail,
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
