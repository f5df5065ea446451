"""walletlink - wallet sign-in for existing applications.

Proves control of an Ed25519 (Solana) wallet with a signed challenge and
binds it to server-side users and sessions.
"""

from .client import WalletAuthClient
from .config import WalletLinkSettings
from .linking import MemoryUserStore, UserLinkingManager, UserStore
from .middleware import (
    OptionalWalletAuthMiddleware,
    WalletAuthenticator,
    WalletAuthMiddleware,
    format_authorization_header,
    get_wallet_public_key,
    parse_authorization_header,
)
from .server import create_auth_router
from .session import MemorySessionStore, SessionManager, SessionStore, generate_session_id
from .signing import (
    create_challenge,
    decode_public_key,
    decode_signature,
    encode_public_key,
    encode_signature,
    extract_nonce,
    extract_timestamp,
    generate_keypair,
    generate_nonce,
    is_message_timestamp_valid,
    is_valid_public_key,
    load_private_key,
    load_public_key,
    sign_message,
    truncate_public_key,
    verify_wallet_signature,
)
from .types import (
    AuthError,
    AuthResult,
    EmailAlreadyLinkedError,
    EncodingError,
    UserNotFoundError,
    UserRecord,
    VerificationResult,
    WalletAlreadyLinkedError,
    WalletConflictError,
    WalletCredentials,
    WalletLinkError,
    WalletSession,
)

__version__ = "0.1.0"
__all__ = [
    # Client
    "WalletAuthClient",
    # Server
    "create_auth_router",
    "WalletAuthMiddleware",
    "OptionalWalletAuthMiddleware",
    "WalletAuthenticator",
    "get_wallet_public_key",
    "parse_authorization_header",
    "format_authorization_header",
    "WalletLinkSettings",
    # Sessions
    "SessionManager",
    "SessionStore",
    "MemorySessionStore",
    "generate_session_id",
    # Users
    "UserLinkingManager",
    "UserStore",
    "MemoryUserStore",
    # Types
    "VerificationResult",
    "WalletCredentials",
    "WalletSession",
    "UserRecord",
    "AuthResult",
    "WalletLinkError",
    "EncodingError",
    "UserNotFoundError",
    "WalletAlreadyLinkedError",
    "EmailAlreadyLinkedError",
    "WalletConflictError",
    "AuthError",
    # Signing utilities
    "create_challenge",
    "generate_nonce",
    "extract_timestamp",
    "extract_nonce",
    "is_message_timestamp_valid",
    "verify_wallet_signature",
    "generate_keypair",
    "load_private_key",
    "load_public_key",
    "sign_message",
    "encode_public_key",
    "decode_public_key",
    "encode_signature",
    "decode_signature",
    "is_valid_public_key",
    "truncate_public_key",
]
