"""Chain-of-responsibility composition.

``build_pipeline`` folds a middleware list right to left around a
terminal handler, so the first-listed middleware runs first and each
one decides whether to call the remainder.
"""

from collections.abc import Sequence

from gatehouse.http.request import Request
from gatehouse.http.response import Response
from gatehouse.middleware.protocol import Middleware, Next


def build_pipeline(handler: Next, middleware: Sequence[Middleware]) -> Next:
    """Wrap *handler* with *middleware*, outermost first.

    For ``[A, B, C]`` around ``H`` the call order is A, B, C, H. A
    middleware that raises or returns without awaiting ``next`` stops
    the chain; later middleware and the handler never run.
    """
    composed = handler
    for mw in reversed(middleware):
        composed = _link(mw, composed)
    return composed


def _link(mw: Middleware, next_handler: Next) -> Next:
    async def call(request: Request) -> Response:
        return await mw(request, next_handler)

    return call
