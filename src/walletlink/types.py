"""Type definitions for walletlink."""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass
class VerificationResult:
    """Outcome of a wallet signature check.

    Verification failures are expected outcomes, so they are reported here
    instead of being raised.
    """

    valid: bool
    public_key: Optional[str] = None  # base58, echoed back on success
    error: Optional[str] = None
    timestamp: Optional[int] = None  # ms since epoch, parsed from the message


@dataclass
class WalletCredentials:
    """The three fields carried by a `Wallet` Authorization header."""

    public_key: str
    signature: str
    message: str  # already percent-decoded


@dataclass
class WalletSession:
    """Server-side session bound to a verified public key."""

    public_key: str
    created_at: int  # ms since epoch
    user_id: Optional[str] = None
    expires_at: Optional[int] = None  # ms since epoch
    metadata: Dict[str, Any] = field(default_factory=dict)

    def is_expired(self, now_ms: int) -> bool:
        return self.expires_at is not None and self.expires_at < now_ms


@dataclass
class UserRecord:
    """An application user, optionally bound to one wallet."""

    id: str
    wallet_public_key: Optional[str] = None
    email: Optional[str] = None
    wallet_connected_at: Optional[int] = None  # ms since epoch
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class AuthResult:
    """Result of a successful wallet login against the auth API."""

    session_id: str
    user: UserRecord


class WalletLinkError(Exception):
    """Base class for walletlink errors."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class EncodingError(WalletLinkError):
    """A public key or signature could not be decoded."""


class UserNotFoundError(WalletLinkError):
    """No user record exists for the given id."""

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"User not found: {user_id}")


class WalletAlreadyLinkedError(WalletLinkError):
    """The user already has a different wallet bound."""

    def __init__(self, message: str = "User already has a linked wallet"):
        super().__init__(message)


class EmailAlreadyLinkedError(WalletLinkError):
    """The user found by email already has a different wallet bound."""

    def __init__(self, email: str):
        self.email = email
        super().__init__(f"Email already has a linked wallet: {email}")


class WalletConflictError(WalletLinkError):
    """A store refused a write that would bind one wallet to two users."""

    def __init__(self, public_key: str):
        self.public_key = public_key
        super().__init__(f"Wallet already bound to another user: {public_key}")


class AuthError(Exception):
    """HTTP error returned by the walletlink auth API."""

    def __init__(self, status_code: int, message: str, detail: Optional[str] = None):
        self.status_code = status_code
        self.message = message
        self.detail = detail
        super().__init__(f"AuthError({status_code}): {message}")
