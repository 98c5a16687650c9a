"""Error boundary: HTTPError and unexpected failures to JSON responses.

Every error leaves the API as ``{"error": code, "message": detail}``
plus any fields the error carries. With ``debug`` on, a ``debug``
object names the exception type.
"""

import logging
from typing import Any

from gatehouse.errors import HTTPError, ServerError
from gatehouse.http.request import Request
from gatehouse.http.response import Response, json_response

logger = logging.getLogger("gatehouse.server")


def _render(exc: HTTPError, *, debug_info: dict[str, Any] | None = None) -> Response:
    body = exc.payload()
    if debug_info:
        body["debug"] = debug_info
    response = json_response(body, status=exc.status)
    for name, value in exc.headers:
        response = response.with_header(name, value)
    return response


def handle_http_error(exc: HTTPError, request: Request, debug: bool) -> Response:
    """Render an expected HTTP error."""
    logger.debug("%d %s %s: %s", exc.status, request.method, request.path, exc.detail)
    return _render(exc, debug_info={"type": type(exc).__name__} if debug else None)


def handle_internal_error(exc: Exception, request: Request, debug: bool) -> Response:
    """Log an unexpected exception and render it as ``500 server_error``."""
    logger.exception("500 %s %s", request.method, request.path)
    debug_info = {"type": type(exc).__name__, "detail": str(exc)} if debug else None
    return _render(ServerError(), debug_info=debug_info)
