"""CORS for a credentialed browser client.

Only origins on the allow list are echoed back, always together with
``Access-Control-Allow-Credentials`` so the session cookie travels.
Every ``OPTIONS`` request is answered here with 204 and never reaches
routing.
"""

from dataclasses import dataclass

from gatehouse.http.request import Request
from gatehouse.http.response import Response, no_content
from gatehouse.middleware.protocol import Next


@dataclass(frozen=True, slots=True)
class CORSConfig:
    """CORS policy. The defaults allow no origin at all::

        CORSConfig(allowed_origins=("https://portal.example.com",))
    """

    allowed_origins: tuple[str, ...] = ()
    allow_headers: tuple[str, ...] = ("Content-Type", "X-CSRF-Token")
    allow_methods: tuple[str, ...] = ("GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS")


class CORSMiddleware:
    __slots__ = ("config",)

    def __init__(self, config: CORSConfig | None = None) -> None:
        self.config = config or CORSConfig()

    def is_allowed_origin(self, origin: str | None) -> bool:
        return bool(origin) and origin in self.config.allowed_origins

    def _decorate(self, response: Response, origin: str | None) -> Response:
        cfg = self.config
        if origin is not None and self.is_allowed_origin(origin):
            response = (
                response.with_header("Access-Control-Allow-Origin", origin)
                .with_header("Access-Control-Allow-Credentials", "true")
                .with_header("Vary", "Origin")
            )
        return response.with_header(
            "Access-Control-Allow-Headers", ", ".join(cfg.allow_headers)
        ).with_header("Access-Control-Allow-Methods", ", ".join(cfg.allow_methods))

    async def __call__(self, request: Request, next: Next) -> Response:
        origin = request.headers.get("origin")
        if request.method == "OPTIONS":
            return self._decorate(no_content(), origin)
        return self._decorate(await next(request), origin)
