"""FastAPI routes for the wallet sign-in flow.

    GET  /auth/challenge                      -> message to sign
    POST /auth/wallet                         -> verify, link user, open session
    GET  /auth/session/{session_id}           -> session and its user
    POST /auth/session/{session_id}/refresh   -> extend session
    POST /auth/logout                         -> delete session
    DELETE /auth/session/{session_id}/wallet  -> unlink the session user's wallet, end session
"""

import dataclasses
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from .config import WalletLinkSettings
from .linking import UserLinkingManager
from .session import SessionManager
from .signing import create_challenge, generate_nonce, truncate_public_key, verify_wallet_signature
from .types import (
    EmailAlreadyLinkedError,
    UserNotFoundError,
    UserRecord,
    WalletAlreadyLinkedError,
)

logger = logging.getLogger(__name__)


class ChallengeResponse(BaseModel):
    message: str
    nonce: str


class WalletLoginRequest(BaseModel):
    public_key: str
    signature: str
    message: str
    email: Optional[str] = None
    existing_user_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class UserResponse(BaseModel):
    id: str
    wallet_public_key: Optional[str] = None
    email: Optional[str] = None
    wallet_connected_at: Optional[int] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class WalletLoginResponse(BaseModel):
    success: bool = True
    session_id: str
    user: UserResponse


class SessionResponse(BaseModel):
    public_key: str
    user_id: Optional[str] = None
    created_at: int
    expires_at: Optional[int] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class SessionLookupResponse(BaseModel):
    session: SessionResponse
    user: Optional[UserResponse] = None


class LogoutRequest(BaseModel):
    session_id: str


class SuccessResponse(BaseModel):
    success: bool


def _user_response(user: UserRecord) -> UserResponse:
    return UserResponse(**dataclasses.asdict(user))


def create_auth_router(
    session_manager: SessionManager,
    linking_manager: UserLinkingManager,
    settings: Optional[WalletLinkSettings] = None,
) -> APIRouter:
    """Build the wallet auth routes around explicit managers.

    Args:
        session_manager: Issues and looks up sessions
        linking_manager: Binds wallets to users
        settings: Challenge and verification settings (defaults if omitted)
    """
    settings = settings or WalletLinkSettings()
    router = APIRouter(prefix="/auth", tags=["wallet-auth"])

    @router.get("/challenge", response_model=ChallengeResponse)
    async def get_challenge():
        nonce = generate_nonce(settings.nonce_length)
        return ChallengeResponse(message=create_challenge(settings.app_name, nonce), nonce=nonce)

    @router.post("/wallet", response_model=WalletLoginResponse)
    async def wallet_login(body: WalletLoginRequest):
        result = verify_wallet_signature(
            public_key=body.public_key,
            signature=body.signature,
            message=body.message,
            **settings.verification_options(),
        )
        if not result.valid:
            raise HTTPException(status_code=401, detail=result.error)

        try:
            user = await linking_manager.link_or_create_user(
                public_key=result.public_key,
                existing_user_id=body.existing_user_id,
                email=body.email,
                metadata=body.metadata,
            )
        except UserNotFoundError as e:
            raise HTTPException(status_code=404, detail=e.message)
        except (WalletAlreadyLinkedError, EmailAlreadyLinkedError) as e:
            raise HTTPException(status_code=409, detail=e.message)

        session_id = await session_manager.create_session(
            result.public_key,
            user_id=user.id,
            ttl_ms=settings.session_ttl_ms,
        )
        logger.info("Wallet %s signed in as user %s", truncate_public_key(result.public_key), user.id)
        return WalletLoginResponse(session_id=session_id, user=_user_response(user))

    @router.get("/session/{session_id}", response_model=SessionLookupResponse)
    async def get_session(session_id: str):
        session = await session_manager.get_session(session_id)
        if session is None:
            raise HTTPException(status_code=404, detail="Session not found")

        user = await linking_manager.get_user_by_public_key(session.public_key)
        return SessionLookupResponse(
            session=SessionResponse(**dataclasses.asdict(session)),
            user=_user_response(user) if user else None,
        )

    @router.post("/session/{session_id}/refresh", response_model=SuccessResponse)
    async def refresh_session(session_id: str):
        if not await session_manager.refresh_session(session_id, settings.session_ttl_ms):
            raise HTTPException(status_code=404, detail="Session not found")
        return SuccessResponse(success=True)

    @router.post("/logout", response_model=SuccessResponse)
    async def logout(body: LogoutRequest):
        await session_manager.delete_session(body.session_id)
        return SuccessResponse(success=True)

    @router.delete("/session/{session_id}/wallet", response_model=UserResponse)
    async def unlink_wallet(session_id: str):
        session = await session_manager.get_session(session_id)
        if session is None or session.user_id is None:
            raise HTTPException(status_code=404, detail="Session not found")

        try:
            user = await linking_manager.unlink_wallet(session.user_id)
        except UserNotFoundError as e:
            raise HTTPException(status_code=404, detail=e.message)
        await session_manager.delete_session(session_id)
        return _user_response(user)

    return router
