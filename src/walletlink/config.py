"""Settings for walletlink, loaded from ``WALLETLINK_*`` environment variables."""

from typing import Any, Dict, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .session import DEFAULT_CLEANUP_INTERVAL_SECONDS, DEFAULT_SESSION_TTL_MS
from .signing import DEFAULT_MAX_AGE_MS, DEFAULT_MAX_CLOCK_SKEW_MS, DEFAULT_NONCE_LENGTH


class WalletLinkSettings(BaseSettings):
    """Wallet authentication settings.

    Every field can be overridden with ``WALLETLINK_<FIELD>``, e.g.
    ``WALLETLINK_APP_NAME=Acme``.
    """

    model_config = SettingsConfigDict(
        env_prefix="WALLETLINK_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_name: str = Field(default="walletlink", description="Name shown in challenges")
    nonce_length: int = Field(default=DEFAULT_NONCE_LENGTH, ge=10, le=128)

    check_timestamp: bool = True
    max_age_ms: int = Field(default=DEFAULT_MAX_AGE_MS, gt=0)
    # None disables the future-timestamp check
    max_clock_skew_ms: Optional[int] = Field(default=DEFAULT_MAX_CLOCK_SKEW_MS, ge=0)

    session_ttl_ms: int = Field(default=DEFAULT_SESSION_TTL_MS, gt=0)
    cleanup_interval_seconds: float = Field(default=DEFAULT_CLEANUP_INTERVAL_SECONDS, gt=0)

    header_name: str = "Authorization"

    def verification_options(self) -> Dict[str, Any]:
        """Keyword arguments for ``verify_wallet_signature`` and the middleware."""
        return {
            "check_timestamp": self.check_timestamp,
            "max_age_ms": self.max_age_ms,
            "max_clock_skew_ms": self.max_clock_skew_ms,
        }
