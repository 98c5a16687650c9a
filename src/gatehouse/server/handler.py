"""ASGI handler: translates ASGI scope/messages to gatehouse types.

The only component that touches raw ASGI directly. Builds a typed
``Request``, runs it through the global middleware around routing, and
sends the ``Response`` back through ``send()``.

Errors are converted in two places. Routing and route-level failures
become responses inside the global middleware, so CORS, security
headers and the session commit still see them. Anything a global
middleware raises is caught at the outermost boundary.
"""

from collections.abc import Callable, Sequence
from contextvars import Token
from typing import Any

from gatehouse._internal.asgi import Receive, Scope, Send
from gatehouse._internal.invoke import invoke
from gatehouse.context import request_var
from gatehouse.errors import HTTPError
from gatehouse.http.request import Request
from gatehouse.http.response import Response, json_response
from gatehouse.middleware.pipeline import build_pipeline
from gatehouse.middleware.protocol import Middleware, Next
from gatehouse.routing.router import Router
from gatehouse.server.errors import handle_http_error, handle_internal_error
from gatehouse.server.sender import send_response


def to_response(result: Any) -> Response:
    """Handlers may return a ``Response`` or any JSON-serializable value."""
    if isinstance(result, Response):
        return result
    return json_response(result)


def build_dispatch(router: Router, *, debug: bool) -> Next:
    """The innermost handler: resolve the route, then run its own chain."""

    async def dispatch(request: Request) -> Response:
        try:
            match = router.resolve(request.method, request.path)
            routed = request.with_path_params(match.path_params)
            route = match.route

            async def endpoint(req: Request) -> Response:
                return to_response(await invoke(route.handler, req))

            return await build_pipeline(endpoint, route.middleware)(routed)
        except HTTPError as exc:
            return handle_http_error(exc, request, debug)
        except Exception as exc:
            return handle_internal_error(exc, request, debug)

    return dispatch


async def handle_request(
    scope: Scope,
    receive: Receive,
    send: Send,
    *,
    router: Router,
    middleware: Sequence[Middleware | Callable[..., Any]],
    debug: bool,
    trusted_proxy_header: str | None = None,
) -> None:
    """Process a single HTTP request through the full pipeline."""
    if scope["type"] != "http":
        return

    request = Request.from_asgi(scope, receive, trusted_proxy_header=trusted_proxy_header)
    token: Token[Request] = request_var.set(request)
    try:
        pipeline = build_pipeline(build_dispatch(router, debug=debug), middleware)
        response = await pipeline(request)
    except HTTPError as exc:
        response = handle_http_error(exc, request, debug)
    except Exception as exc:
        response = handle_internal_error(exc, request, debug)
    finally:
        request_var.reset(token)

    await send_response(response, send)
