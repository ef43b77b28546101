"""Error taxonomy for the router.

Every error that can reach a caller derives from RouterError and carries a
machine-readable ``code`` plus a human-readable message. ``to_dict()`` is
the only representation that should cross the library boundary; it never
includes tracebacks or internal identifiers.
"""

from __future__ import annotations

from enum import StrEnum


class ProviderErrorKind(StrEnum):
    """Normalized failure categories reported by provider adapters."""

    RATE_LIMITED = "rate_limited"
    TIMEOUT = "timeout"
    INVALID_REQUEST = "invalid_request"
    PROVIDER_UNAVAILABLE = "provider_unavailable"
    UNKNOWN = "unknown"


# Kinds the fallback controller may retry unconditionally.
RETRYABLE_KINDS: frozenset[ProviderErrorKind] = frozenset({
    ProviderErrorKind.RATE_LIMITED,
    ProviderErrorKind.TIMEOUT,
    ProviderErrorKind.PROVIDER_UNAVAILABLE,
})


class RouterError(Exception):
    """Base class for all errors surfaced by the router."""

    code: str = "router_error"
    kind: str = "router"

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    def to_dict(self) -> dict:
        """Client-safe error payload."""
        return {
            "error": {
                "code": self.code,
                "kind": self.kind,
                "message": self.message,
            }
        }


class ConfigurationError(RouterError):
    """The router configuration is invalid or leaves no eligible model.

    Never retried. Surfaced to the caller as a client-visible error.
    """

    code = "invalid_configuration"
    kind = "configuration"


class ProviderError(RouterError):
    """A single upstream dispatch failed."""

    kind = "provider"

    def __init__(
        self,
        kind: ProviderErrorKind,
        message: str,
        *,
        model_id: str = "",
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message, code=f"provider_{kind.value}")
        self.error_kind = kind
        self.model_id = model_id
        self.retry_after = retry_after

    @property
    def retryable(self) -> bool:
        return self.error_kind in RETRYABLE_KINDS

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload["error"]["provider_error"] = self.error_kind.value
        if self.model_id:
            payload["error"]["model"] = self.model_id
        return payload


class RoutingExhaustedError(RouterError):
    """Every candidate attempt failed.

    Wraps the last ProviderError and the ordered list of attempted model
    ids so callers can tell "every model failed" apart from a
    misconfiguration.
    """

    code = "routing_exhausted"
    kind = "routing"

    def __init__(
        self,
        last_error: ProviderError,
        attempts: list[str],
    ) -> None:
        super().__init__(
            f"All {len(attempts)} attempt(s) failed "
            f"({', '.join(attempts)}); last error: {last_error.message}"
        )
        self.last_error = last_error
        self.attempts = list(attempts)

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload["error"]["attempted_models"] = self.attempts
        payload["error"]["last_error"] = self.last_error.to_dict()["error"]
        return payload


class StreamInterruptedError(RouterError):
    """A provider stream failed after content was already delivered.

    The router never switches providers mid-stream; the caller may retry
    the whole request.
    """

    code = "stream_interrupted"
    kind = "stream"

    def __init__(self, model_id: str, cause: ProviderError) -> None:
        super().__init__(
            f"Stream from {model_id} interrupted: {cause.message}"
        )
        self.model_id = model_id
        self.cause = cause


class AuthenticationError(RouterError):
    """Router-level API key rejected (raised by the boundary layer)."""

    code = "authentication_failed"
    kind = "authentication"


class RateLimitError(RouterError):
    """Router-level request quota exceeded (raised by the boundary layer).

    Distinct from ProviderError(kind=RATE_LIMITED), which means an upstream
    provider throttled us.
    """

    code = "router_rate_limited"
    kind = "rate_limit"
