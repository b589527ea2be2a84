"""Error taxonomy and upstream error normalization.

Every failure the gateway reports is one of the ``ErrorKind`` values below.
``normalize()`` maps an upstream HTTP status and error body to a
``NormalizedError``; the exception classes carry one so handlers can turn any
failure into an Anthropic-format error body.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class ErrorKind(str, Enum):
    """Canonical error taxonomy."""

    INVALID_REQUEST = "InvalidRequestError"
    CONFIG = "ConfigError"
    UNSUPPORTED_FEATURE = "UnsupportedFeatureError"
    AUTH = "AuthError"
    RATE_LIMIT = "RateLimitError"
    UPSTREAM_CONNECTION = "UpstreamConnectionError"
    UPSTREAM_PROTOCOL = "UpstreamProtocolError"
    STREAM_INTERRUPTED = "StreamInterruptedError"
    INTERNAL = "InternalError"


# Error type mapping from client-facing status to Anthropic error type
ERROR_TYPE_MAP = {
    400: "invalid_request_error",
    401: "authentication_error",
    403: "permission_error",
    404: "not_found_error",
    429: "rate_limit_error",
    500: "api_error",
    502: "api_error",
    503: "api_error",
    504: "api_error",
}

# Client-facing HTTP status per kind (auth errors keep the upstream status)
_KIND_HTTP_STATUS = {
    ErrorKind.INVALID_REQUEST: 400,
    ErrorKind.CONFIG: 400,
    ErrorKind.UNSUPPORTED_FEATURE: 400,
    ErrorKind.AUTH: 401,
    ErrorKind.RATE_LIMIT: 429,
    ErrorKind.UPSTREAM_CONNECTION: 502,
    ErrorKind.UPSTREAM_PROTOCOL: 502,
    ErrorKind.STREAM_INTERRUPTED: 502,
    ErrorKind.INTERNAL: 500,
}

# Adapter-kind overrides: status -> (kind, retryable)
PROVIDER_STATUS_OVERRIDES: dict[str, dict[int, tuple[ErrorKind, bool]]] = {
    "openai": {
        408: (ErrorKind.UPSTREAM_CONNECTION, True),
        409: (ErrorKind.UPSTREAM_CONNECTION, True),
    },
    "vllm": {
        408: (ErrorKind.UPSTREAM_CONNECTION, True),
        409: (ErrorKind.UPSTREAM_CONNECTION, True),
    },
    "glm": {
        # Anthropic-style "overloaded"
        529: (ErrorKind.UPSTREAM_CONNECTION, True),
    },
}

# Adapter-kind overrides keyed on a marker found in the error body
PROVIDER_BODY_OVERRIDES: dict[str, dict[str, tuple[ErrorKind, bool]]] = {
    "gemini": {
        "API_KEY_INVALID": (ErrorKind.AUTH, False),
        "RESOURCE_EXHAUSTED": (ErrorKind.RATE_LIMIT, True),
    },
}


@dataclass(frozen=True)
class NormalizedError:
    """Provider-independent description of a failure.

    Safe to serialize to clients: carries no credentials or stack traces.
    """

    kind: ErrorKind
    status_code: int | None
    message: str
    retryable: bool
    http_status: int = 500
    retry_after: float | None = None
    provider: str | None = None

    @property
    def error_type(self) -> str:
        """Anthropic error type for the client-facing status."""
        return ERROR_TYPE_MAP.get(self.http_status, "api_error")

    def to_dict(self) -> dict[str, Any]:
        """Anthropic-format error body, extended with kind and retryable."""
        return {
            "type": "error",
            "error": {
                "type": self.error_type,
                "message": self.message,
                "kind": self.kind.value,
                "retryable": self.retryable,
            },
        }

    def redact(self, secret: str | None) -> NormalizedError:
        """Return a copy whose message has ``secret`` masked."""
        if not secret or secret not in self.message:
            return self
        return replace(self, message=self.message.replace(secret, "***"))


class ProxyError(Exception):
    """Base class for all gateway errors."""

    kind: ErrorKind = ErrorKind.INTERNAL
    retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        retryable: bool | None = None,
        http_status: int | None = None,
        retry_after: float | None = None,
        provider: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        if retryable is not None:
            self.retryable = retryable
        self.http_status = http_status or _KIND_HTTP_STATUS[self.kind]
        self.retry_after = retry_after
        self.provider = provider

    @property
    def normalized(self) -> NormalizedError:
        return NormalizedError(
            kind=self.kind,
            status_code=self.status_code,
            message=self.message,
            retryable=self.retryable,
            http_status=self.http_status,
            retry_after=self.retry_after,
            provider=self.provider,
        )


class InvalidRequestError(ProxyError):
    """Inbound request body is malformed or fails validation."""

    kind = ErrorKind.INVALID_REQUEST


class ConfigError(ProxyError):
    """Unknown provider, missing default provider, or bad configuration."""

    kind = ErrorKind.CONFIG


class UnsupportedFeatureError(ProxyError):
    """Request used a capability the chosen provider lacks."""

    kind = ErrorKind.UNSUPPORTED_FEATURE


class AuthError(ProxyError):
    """Upstream rejected the credential (401/403)."""

    kind = ErrorKind.AUTH


class RateLimitError(ProxyError):
    """Upstream rate limited the request (429)."""

    kind = ErrorKind.RATE_LIMIT
    retryable = True


class UpstreamConnectionError(ProxyError):
    """Network failure, timeout, or 5xx from upstream."""

    kind = ErrorKind.UPSTREAM_CONNECTION
    retryable = True


class UpstreamProtocolError(ProxyError):
    """Upstream answered with a malformed or unexpected response."""

    kind = ErrorKind.UPSTREAM_PROTOCOL


class StreamInterruptedError(ProxyError):
    """Stream ended abnormally after it started."""

    kind = ErrorKind.STREAM_INTERRUPTED
    retryable = True


class InternalError(ProxyError):
    """Unexpected failure inside the gateway."""

    kind = ErrorKind.INTERNAL


_EXCEPTION_BY_KIND: dict[ErrorKind, type[ProxyError]] = {
    cls.kind: cls
    for cls in (
        InvalidRequestError,
        ConfigError,
        UnsupportedFeatureError,
        AuthError,
        RateLimitError,
        UpstreamConnectionError,
        UpstreamProtocolError,
        StreamInterruptedError,
        InternalError,
    )
}


def error_from_normalized(error: NormalizedError) -> ProxyError:
    """Build the taxonomy exception matching a NormalizedError."""
    cls = _EXCEPTION_BY_KIND[error.kind]
    return cls(
        error.message,
        status_code=error.status_code,
        retryable=error.retryable,
        http_status=error.http_status,
        retry_after=error.retry_after,
        provider=error.provider,
    )


def _extract_message(body: Any) -> str | None:
    """Pull a human-readable message out of a provider error body."""
    if isinstance(body, (bytes, bytearray)):
        body = body.decode("utf-8", errors="replace")
    if isinstance(body, str):
        try:
            body = json.loads(body)
        except ValueError:
            return None
    if not isinstance(body, dict):
        return None

    error = body.get("error")
    if isinstance(error, str):
        return error
    if isinstance(error, dict):
        message = error.get("message")
        if isinstance(message, str) and message:
            return message
        for key in ("type", "status", "code"):
            value = error.get(key)
            if isinstance(value, str) and value:
                return value
    message = body.get("message") or body.get("detail")
    if isinstance(message, str):
        return message
    return None


def _parse_retry_after(headers: Mapping[str, str] | None) -> float | None:
    if not headers:
        return None
    for key, value in headers.items():
        if key.lower() == "retry-after":
            try:
                return max(float(value), 0.0)
            except (TypeError, ValueError):
                return None
    return None


def _body_text(body: Any) -> str:
    if body is None:
        return ""
    if isinstance(body, (bytes, bytearray)):
        return body.decode("utf-8", errors="replace")
    if isinstance(body, str):
        return body
    try:
        return json.dumps(body)
    except (TypeError, ValueError):
        return repr(body)


def _classify(variant: str, status: int, body_text: str) -> tuple[ErrorKind, bool]:
    for marker, result in PROVIDER_BODY_OVERRIDES.get(variant, {}).items():
        if marker in body_text:
            return result
    override = PROVIDER_STATUS_OVERRIDES.get(variant, {}).get(status)
    if override:
        return override
    if status in (401, 403):
        return ErrorKind.AUTH, False
    if status == 429:
        return ErrorKind.RATE_LIMIT, True
    if status >= 500:
        return ErrorKind.UPSTREAM_CONNECTION, True
    return ErrorKind.UPSTREAM_PROTOCOL, False


def _http_status(kind: ErrorKind, upstream_status: int) -> int:
    if kind == ErrorKind.AUTH:
        return upstream_status if upstream_status in (401, 403) else 401
    if kind == ErrorKind.UPSTREAM_CONNECTION and upstream_status == 504:
        return 504
    return _KIND_HTTP_STATUS[kind]


def normalize(
    provider: str,
    status: int,
    body: Any,
    headers: Mapping[str, str] | None = None,
    kind: str | None = None,
) -> NormalizedError:
    """Map an upstream HTTP error to a NormalizedError.

    Never raises: unparseable bodies still produce an error carrying the raw
    status and a generic message.

    Args:
        provider: Provider name (reported in the error).
        status: Upstream HTTP status code.
        body: Raw error body (bytes, str, or parsed JSON).
        headers: Upstream response headers (for Retry-After).
        kind: Adapter kind selecting the wire-format overrides. Defaults to
            the provider name.

    Returns:
        NormalizedError describing the failure.
    """
    try:
        text = _body_text(body)
        error_kind, retryable = _classify(kind or provider, status, text)
        message = _extract_message(body) or f"Upstream {provider} returned HTTP {status}"
        return NormalizedError(
            kind=error_kind,
            status_code=status,
            message=message,
            retryable=retryable,
            http_status=_http_status(error_kind, status),
            retry_after=(
                _parse_retry_after(headers) if error_kind == ErrorKind.RATE_LIMIT else None
            ),
            provider=provider,
        )
    except Exception:
        logger.exception("Failed to normalize %s error (status=%s)", provider, status)
        return NormalizedError(
            kind=ErrorKind.UPSTREAM_PROTOCOL,
            status_code=status,
            message=f"Upstream {provider} returned HTTP {status}",
            retryable=False,
            http_status=502,
            provider=provider,
        )
