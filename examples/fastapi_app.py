"""Example: FastAPI app with wallet sign-in and wallet-signed routes."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request

from walletlink import (
    MemorySessionStore,
    MemoryUserStore,
    SessionManager,
    UserLinkingManager,
    WalletAuthMiddleware,
    WalletLinkSettings,
    create_auth_router,
    get_wallet_public_key,
)

logging.basicConfig(level=logging.INFO)

settings = WalletLinkSettings()

# Stores are created once and passed to the managers explicitly.
session_manager = SessionManager(
    MemorySessionStore(),
    default_ttl_ms=settings.session_ttl_ms,
    cleanup_interval_seconds=settings.cleanup_interval_seconds,
)
linking_manager = UserLinkingManager(MemoryUserStore())


@asynccontextmanager
async def lifespan(app: FastAPI):
    async with session_manager:
        yield


app = FastAPI(title="Wallet sign-in example", lifespan=lifespan)
app.include_router(create_auth_router(session_manager, linking_manager, settings))
app.add_middleware(
    WalletAuthMiddleware,
    header_name=settings.header_name,
    **settings.verification_options(),
    exclude_paths=["/docs", "/openapi.json"],
    exclude_prefixes=["/auth/"],
)


@app.get("/api/profile")
async def profile(request: Request):
    """Requires a `Wallet` Authorization header."""
    public_key = get_wallet_public_key(request)
    user = await linking_manager.get_user_by_public_key(public_key)
    if user is None:
        raise HTTPException(status_code=404, detail="Sign in first")
    return {"user_id": user.id, "wallet": public_key, "email": user.email}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
