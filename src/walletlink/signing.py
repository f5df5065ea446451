"""Wallet challenges and Ed25519 signature verification.

Public keys and signatures travel as base58 text (Solana wire form); messages
are signed as UTF-8 bytes.
"""

import logging
import re
import secrets
import string
import time
from typing import Optional, Tuple

import base58
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

from .types import EncodingError, VerificationResult

logger = logging.getLogger(__name__)

PUBLIC_KEY_LENGTH = 32
SIGNATURE_LENGTH = 64
PRIVATE_KEY_LENGTH = 32

DEFAULT_MAX_AGE_MS = 300_000  # 5 minutes
DEFAULT_MAX_CLOCK_SKEW_MS = 60_000
DEFAULT_NONCE_LENGTH = 16

ERROR_INVALID_PUBLIC_KEY = "invalid public key format"
ERROR_TIMESTAMP = "timestamp expired or invalid"
ERROR_INVALID_SIGNATURE = "invalid signature"
ERROR_VERIFICATION_FAILED = "verification failed"

# Longer digit runs are not timestamps and would exceed int() digit limits
_TIMESTAMP_RE = re.compile(r"Timestamp: (\d{1,20})(?!\d)")
_NONCE_RE = re.compile(r"Nonce: (\S+)")
_NONCE_ALPHABET = string.ascii_letters + string.digits


def now_ms() -> int:
    """Current time in milliseconds since the epoch."""
    return time.time_ns() // 1_000_000


# -----------------------------------------------------------------------------
# Codec
# -----------------------------------------------------------------------------


def _b58decode(value: str, length: int, what: str) -> bytes:
    try:
        raw = base58.b58decode(value)
    except ValueError as e:
        raise EncodingError(f"Invalid {what} encoding: {e}") from e
    if len(raw) != length:
        raise EncodingError(f"Invalid {what} length: expected {length} bytes, got {len(raw)}")
    return raw


def encode_public_key(public_bytes: bytes) -> str:
    """Encode raw Ed25519 public key bytes as base58."""
    if len(public_bytes) != PUBLIC_KEY_LENGTH:
        raise EncodingError(f"Invalid public key length: {len(public_bytes)}")
    return base58.b58encode(public_bytes).decode()


def decode_public_key(public_key: str) -> bytes:
    """Decode a base58 public key into its 32 raw bytes.

    Raises:
        EncodingError: If the text is not base58 or not 32 bytes long.
    """
    if not public_key:
        raise EncodingError("Empty public key")
    return _b58decode(public_key, PUBLIC_KEY_LENGTH, "public key")


def encode_signature(signature_bytes: bytes) -> str:
    """Encode a raw Ed25519 signature as base58."""
    if len(signature_bytes) != SIGNATURE_LENGTH:
        raise EncodingError(f"Invalid signature length: {len(signature_bytes)}")
    return base58.b58encode(signature_bytes).decode()


def decode_signature(signature: str) -> bytes:
    """Decode a base58 signature into its 64 raw bytes.

    Raises:
        EncodingError: If the text is not base58 or not 64 bytes long.
    """
    if not signature:
        raise EncodingError("Empty signature")
    return _b58decode(signature, SIGNATURE_LENGTH, "signature")


def encode_message(message: str) -> bytes:
    """Messages are signed as UTF-8."""
    return message.encode("utf-8")


def is_valid_public_key(public_key: str) -> bool:
    try:
        decode_public_key(public_key)
    except EncodingError:
        return False
    return True


def truncate_public_key(public_key: str, chars: int = 4) -> str:
    """Shorten a public key for display and logs, e.g. ``7xKX...AsU9``."""
    if len(public_key) <= chars * 2:
        return public_key
    return f"{public_key[:chars]}...{public_key[-chars:]}"


def generate_keypair() -> Tuple[str, str]:
    """Generate a new Ed25519 keypair.

    Returns:
        Tuple of (private_key_b58, public_key_b58). The private key is the
        32-byte seed.
    """
    private_key = Ed25519PrivateKey.generate()
    public_key = private_key.public_key()

    private_bytes = private_key.private_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PrivateFormat.Raw,
        encryption_algorithm=serialization.NoEncryption(),
    )
    public_bytes = public_key.public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )

    return (
        base58.b58encode(private_bytes).decode(),
        encode_public_key(public_bytes),
    )


def load_private_key(private_key_b58: str) -> Ed25519PrivateKey:
    """Load an Ed25519 private key from base58.

    Accepts the 32-byte seed or the 64-byte Solana keypair form
    (seed followed by public key).
    """
    private_bytes = base58.b58decode(private_key_b58)
    if len(private_bytes) == PRIVATE_KEY_LENGTH + PUBLIC_KEY_LENGTH:
        private_bytes = private_bytes[:PRIVATE_KEY_LENGTH]
    if len(private_bytes) != PRIVATE_KEY_LENGTH:
        raise EncodingError(f"Invalid private key length: {len(private_bytes)}")
    return Ed25519PrivateKey.from_private_bytes(private_bytes)


def load_public_key(public_key_b58: str) -> Ed25519PublicKey:
    """Load an Ed25519 public key from base58."""
    return Ed25519PublicKey.from_public_bytes(decode_public_key(public_key_b58))


def public_key_of(private_key: Ed25519PrivateKey) -> str:
    """Base58 public key for a loaded private key."""
    public_bytes = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )
    return encode_public_key(public_bytes)


def sign_message(message: str, private_key: Ed25519PrivateKey) -> str:
    """Sign a message and return the base58 signature."""
    return encode_signature(private_key.sign(encode_message(message)))


# -----------------------------------------------------------------------------
# Challenges
# -----------------------------------------------------------------------------


def generate_nonce(length: int = DEFAULT_NONCE_LENGTH) -> str:
    """Random alphanumeric nonce from a CSPRNG."""
    if length < 10:
        raise ValueError("Nonce length must be at least 10")
    return "".join(secrets.choice(_NONCE_ALPHABET) for _ in range(length))


def create_challenge(app_name: str, nonce: Optional[str] = None) -> str:
    """Create the sign-in message a wallet is asked to sign.

    Args:
        app_name: Name shown to the user in their wallet
        nonce: Nonce to embed (generated if omitted)

    Returns:
        Challenge text with ``Nonce:`` and ``Timestamp:`` lines.
    """
    if nonce is None:
        nonce = generate_nonce()
    return (
        f"{app_name} wants you to sign in with your Solana account.\n\n"
        f"Nonce: {nonce}\n"
        f"Timestamp: {now_ms()}"
    )


def extract_timestamp(message: str) -> Optional[int]:
    """Timestamp (ms) embedded in a challenge message, if any."""
    match = _TIMESTAMP_RE.search(message)
    return int(match.group(1)) if match else None


def extract_nonce(message: str) -> Optional[str]:
    match = _NONCE_RE.search(message)
    return match.group(1) if match else None


def is_message_timestamp_valid(
    message: str,
    max_age_ms: int = DEFAULT_MAX_AGE_MS,
    max_clock_skew_ms: Optional[int] = DEFAULT_MAX_CLOCK_SKEW_MS,
) -> bool:
    """Check the embedded timestamp is present, fresh, and not too far ahead.

    A message exactly ``max_age_ms`` old is already stale. Passing
    ``max_clock_skew_ms=None`` disables the future-timestamp check.
    """
    timestamp = extract_timestamp(message)
    if timestamp is None:
        return False

    now = now_ms()
    if now - timestamp >= max_age_ms:
        return False
    if max_clock_skew_ms is not None and timestamp - now > max_clock_skew_ms:
        return False
    return True


# -----------------------------------------------------------------------------
# Verification
# -----------------------------------------------------------------------------


def verify_wallet_signature(
    public_key: str,
    signature: str,
    message: str,
    check_timestamp: bool = True,
    max_age_ms: int = DEFAULT_MAX_AGE_MS,
    max_clock_skew_ms: Optional[int] = DEFAULT_MAX_CLOCK_SKEW_MS,
) -> VerificationResult:
    """Verify a wallet signature over a challenge message.

    Checks run in order and stop at the first failure: public key format,
    message timestamp (when ``check_timestamp``), then the signature itself.

    Args:
        public_key: Signer's public key (base58)
        signature: Ed25519 signature (base58)
        message: The exact text that was signed
        check_timestamp: Enforce the ``Timestamp:`` freshness window
        max_age_ms: Maximum message age (default: 5 minutes)
        max_clock_skew_ms: Tolerance for timestamps ahead of the server clock

    Returns:
        VerificationResult. This function never raises.
    """
    try:
        try:
            verify_key = load_public_key(public_key)
        except (EncodingError, ValueError):
            logger.debug("Rejected signature: malformed public key")
            return VerificationResult(valid=False, error=ERROR_INVALID_PUBLIC_KEY)

        if check_timestamp and not is_message_timestamp_valid(
            message, max_age_ms, max_clock_skew_ms
        ):
            logger.debug(
                "Rejected signature from %s: stale or missing timestamp",
                truncate_public_key(public_key),
            )
            return VerificationResult(valid=False, error=ERROR_TIMESTAMP)

        try:
            signature_bytes = decode_signature(signature)
            verify_key.verify(signature_bytes, encode_message(message))
        except (EncodingError, InvalidSignature):
            logger.debug("Rejected signature from %s: mismatch", truncate_public_key(public_key))
            return VerificationResult(valid=False, error=ERROR_INVALID_SIGNATURE)

        return VerificationResult(
            valid=True,
            public_key=public_key,
            timestamp=extract_timestamp(message),
        )
    except Exception:
        logger.exception("Unexpected error verifying wallet signature")
        return VerificationResult(valid=False, error=ERROR_VERIFICATION_FAILED)
