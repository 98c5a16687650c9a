"""Gatehouse exception hierarchy.

Shared across Router, App, handler, and middleware so every module
raises and catches the same types. ``HTTPError`` subclasses carry the
machine-readable ``error`` code and human ``detail`` that the error
boundary renders as ``{"error": ..., "message": ...}``.
"""

from dataclasses import dataclass
from typing import Any


class GatehouseError(Exception):
    """Base for all gatehouse-specific errors."""


class ConfigurationError(GatehouseError):
    """Raised when app configuration is invalid.

    Raised at route registration, or when a component is built with
    unusable settings (an empty session secret, for example).
    """


class ThrottleStoreError(GatehouseError):
    """Raised when the login throttle backing store cannot be read or written."""


@dataclass(frozen=True, slots=True)
class HTTPError(GatehouseError):
    """An error that maps directly to an HTTP status code.

    Raised by the router, middleware, guards, or handlers. The error
    boundary catches these and renders the JSON wire format.

    ``extra`` holds additional top-level body fields (for example
    ``retry_after_seconds`` on a 429).
    """

    status: int
    detail: str = ""
    headers: tuple[tuple[str, str], ...] = ()
    error: str = "http_error"
    extra: tuple[tuple[str, Any], ...] = ()

    def __str__(self) -> str:
        if self.detail:
            return f"{self.status}: {self.detail}"
        return str(self.status)

    def payload(self) -> dict[str, Any]:
        """The JSON body for this error."""
        body: dict[str, Any] = {"error": self.error, "message": self.detail}
        body.update(self.extra)
        return body


class Unauthorized(HTTPError):  # noqa: N818
    """401: no authenticated principal for this request."""

    def __init__(self, detail: str = "Authentication required.", error: str = "unauthorized") -> None:
        super().__init__(status=401, detail=detail, error=error)


class Forbidden(HTTPError):  # noqa: N818
    """403: principal lacks the role, or the CSRF token did not match."""

    def __init__(self, detail: str = "Forbidden.", error: str = "forbidden") -> None:
        super().__init__(status=403, detail=detail, error=error)


class NotFound(HTTPError):  # noqa: N818
    """404: no route matched the request path."""

    def __init__(self, detail: str = "Route not found.", error: str = "not_found") -> None:
        super().__init__(status=404, detail=detail, error=error)


class ValidationError(HTTPError):
    """422: request input failed validation."""

    def __init__(self, detail: str, error: str = "validation_error") -> None:
        super().__init__(status=422, detail=detail, error=error)


class RateLimited(HTTPError):  # noqa: N818
    """429: the login throttle is holding a lockout.

    Sets ``Retry-After`` and the ``retry_after_seconds`` body field.
    """

    def __init__(
        self,
        retry_after: int,
        detail: str = "Too many login attempts. Please try again later.",
        error: str = "too_many_attempts",
    ) -> None:
        super().__init__(
            status=429,
            detail=detail,
            headers=(("Retry-After", str(retry_after)),),
            error=error,
            extra=(("retry_after_seconds", retry_after),),
        )

    @property
    def retry_after(self) -> int:
        return dict(self.extra)["retry_after_seconds"]


class ServerError(HTTPError):
    """500: an expected-but-fatal server fault (e.g. storage unavailable)."""

    def __init__(self, detail: str = "Unexpected server error.", error: str = "server_error") -> None:
        super().__init__(status=500, detail=detail, error=error)
