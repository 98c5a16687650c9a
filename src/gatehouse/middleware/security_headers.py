"""Security headers on every response.

The API only ever returns JSON, so the headers apply regardless of
content type, error responses included.
"""

from dataclasses import dataclass

from gatehouse.http.request import Request
from gatehouse.http.response import Response
from gatehouse.middleware.protocol import Next


@dataclass(frozen=True, slots=True)
class SecurityHeadersConfig:
    x_content_type_options: str = "nosniff"
    x_frame_options: str = "DENY"
    referrer_policy: str = "strict-origin-when-cross-origin"
    strict_transport_security: str | None = None


class SecurityHeadersMiddleware:
    """Adds ``X-Content-Type-Options``, ``X-Frame-Options`` and ``Referrer-Policy``.

    Usage::

        app.add_middleware(SecurityHeadersMiddleware())

    ``Strict-Transport-Security`` is added only when configured.
    """

    __slots__ = ("config",)

    def __init__(self, config: SecurityHeadersConfig | None = None) -> None:
        self.config = config or SecurityHeadersConfig()

    async def __call__(self, request: Request, next: Next) -> Response:
        response = await next(request)
        cfg = self.config
        secured = (
            response.with_header("X-Content-Type-Options", cfg.x_content_type_options)
            .with_header("X-Frame-Options", cfg.x_frame_options)
            .with_header("Referrer-Policy", cfg.referrer_policy)
        )
        if cfg.strict_transport_security:
            secured = secured.with_header(
                "Strict-Transport-Security", cfg.strict_transport_security
            )
        return secured
