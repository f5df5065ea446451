"""Request authentication with the ``Wallet`` Authorization scheme.

Header format::

    Authorization: Wallet <publicKey>:<signature>:<percent-encoded message>
"""

import inspect
import logging
from typing import Awaitable, Callable, Iterable, Optional, Union
from urllib.parse import quote, unquote

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from .signing import (
    DEFAULT_MAX_AGE_MS,
    DEFAULT_MAX_CLOCK_SKEW_MS,
    truncate_public_key,
    verify_wallet_signature,
)
from .types import VerificationResult, WalletCredentials

logger = logging.getLogger(__name__)

SCHEME = "Wallet"
ERROR_MISSING_HEADER = "No wallet signature provided"
ERROR_INVALID_FORMAT = "Invalid authorization format"

UnauthorizedHandler = Callable[[Request, str], Union[Response, Awaitable[Response]]]
ErrorHandler = Callable[[Request, Exception], Union[Response, Awaitable[Response]]]


def parse_authorization_header(value: Optional[str]) -> Optional[WalletCredentials]:
    """Split a ``Wallet`` header into its three fields.

    Returns:
        WalletCredentials with the message percent-decoded, or None when the
        scheme is wrong or any field is missing.
    """
    prefix = SCHEME + " "
    if not value or not value.startswith(prefix):
        return None

    parts = value[len(prefix):].split(":", 2)
    if len(parts) < 3 or not all(parts):
        return None

    public_key, signature, encoded_message = parts
    return WalletCredentials(
        public_key=public_key,
        signature=signature,
        message=unquote(encoded_message),
    )


def format_authorization_header(public_key: str, signature: str, message: str) -> str:
    """Build a ``Wallet`` header value (inverse of parse_authorization_header)."""
    return f"{SCHEME} {public_key}:{signature}:{quote(message, safe='')}"


class WalletAuthenticator:
    """Checks a raw Authorization header value.

    Framework-independent core of the middleware.
    """

    def __init__(
        self,
        check_timestamp: bool = True,
        max_age_ms: int = DEFAULT_MAX_AGE_MS,
        max_clock_skew_ms: Optional[int] = DEFAULT_MAX_CLOCK_SKEW_MS,
    ):
        self.check_timestamp = check_timestamp
        self.max_age_ms = max_age_ms
        self.max_clock_skew_ms = max_clock_skew_ms

    def authenticate(self, header_value: Optional[str]) -> VerificationResult:
        """Verify the credential carried by a header value.

        Missing or malformed headers fail without touching the verifier.
        """
        if not header_value:
            return VerificationResult(valid=False, error=ERROR_MISSING_HEADER)

        credentials = parse_authorization_header(header_value)
        if credentials is None:
            return VerificationResult(valid=False, error=ERROR_INVALID_FORMAT)

        return verify_wallet_signature(
            public_key=credentials.public_key,
            signature=credentials.signature,
            message=credentials.message,
            check_timestamp=self.check_timestamp,
            max_age_ms=self.max_age_ms,
            max_clock_skew_ms=self.max_clock_skew_ms,
        )


def get_wallet_public_key(request: Request) -> Optional[str]:
    """Public key attached by the middleware, if the request was authenticated."""
    return getattr(request.state, "wallet_public_key", None)


async def _call_handler(handler, *args) -> Response:
    response = handler(*args)
    if inspect.isawaitable(response):
        response = await response
    return response


class WalletAuthMiddleware(BaseHTTPMiddleware):
    """Rejects requests that do not carry a valid wallet signature.

    On success the verified key is stored on ``request.state.wallet_public_key``.

    Usage:
        app.add_middleware(WalletAuthMiddleware, max_age_ms=60_000, exclude_paths=["/health"])
    """

    def __init__(
        self,
        app,
        header_name: str = "Authorization",
        check_timestamp: bool = True,
        max_age_ms: int = DEFAULT_MAX_AGE_MS,
        max_clock_skew_ms: Optional[int] = DEFAULT_MAX_CLOCK_SKEW_MS,
        on_unauthorized: Optional[UnauthorizedHandler] = None,
        on_error: Optional[ErrorHandler] = None,
        exclude_paths: Iterable[str] = (),
        exclude_prefixes: Iterable[str] = (),
    ):
        """Initialize the middleware.

        Args:
            app: The ASGI app
            header_name: Header carrying the credential
            check_timestamp: Enforce challenge freshness
            max_age_ms: Maximum challenge age (default: 5 minutes)
            max_clock_skew_ms: Tolerance for future-dated challenges
            on_unauthorized: Builds the response for rejected requests
            on_error: Builds the response for unexpected errors
            exclude_paths: Paths that skip authentication entirely
            exclude_prefixes: Path prefixes that skip authentication
        """
        super().__init__(app)
        self.header_name = header_name
        self.authenticator = WalletAuthenticator(check_timestamp, max_age_ms, max_clock_skew_ms)
        self.on_unauthorized = on_unauthorized
        self.on_error = on_error
        self.exclude_paths = frozenset(exclude_paths)
        self.exclude_prefixes = tuple(exclude_prefixes)

    def is_excluded(self, path: str) -> bool:
        return path in self.exclude_paths or path.startswith(self.exclude_prefixes)

    async def dispatch(self, request: Request, call_next) -> Response:
        if self.is_excluded(request.url.path):
            return await call_next(request)

        try:
            result = self.authenticator.authenticate(request.headers.get(self.header_name))
        except Exception as e:
            if self.on_error:
                return await _call_handler(self.on_error, request, e)
            logger.exception("Wallet auth middleware error")
            return JSONResponse(status_code=500, content={"error": "Internal server error"})

        if not result.valid:
            return await self._unauthorized(request, result.error)

        request.state.wallet_public_key = result.public_key
        logger.debug(
            "Wallet %s authenticated for %s",
            truncate_public_key(result.public_key),
            request.url.path,
        )
        return await call_next(request)

    async def _unauthorized(self, request: Request, reason: str) -> Response:
        logger.warning("Wallet auth failed for %s: %s", request.url.path, reason)
        if self.on_unauthorized:
            return await _call_handler(self.on_unauthorized, request, reason)
        return JSONResponse(status_code=401, content={"error": f"Unauthorized: {reason}"})


class OptionalWalletAuthMiddleware(WalletAuthMiddleware):
    """Attaches the wallet public key when a valid credential is present.

    Never rejects: missing, malformed or invalid credentials leave
    ``request.state.wallet_public_key`` unset.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        request.state.wallet_public_key = None
        if self.is_excluded(request.url.path):
            return await call_next(request)

        header_value = request.headers.get(self.header_name)
        if parse_authorization_header(header_value) is not None:
            try:
                result = self.authenticator.authenticate(header_value)
            except Exception:
                logger.exception("Optional wallet auth middleware error")
            else:
                if result.valid:
                    request.state.wallet_public_key = result.public_key
        return await call_next(request)
