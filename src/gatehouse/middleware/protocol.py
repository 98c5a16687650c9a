"""Middleware protocol and Next type alias.

A middleware is any callable matching::

    async def my_mw(request: Request, next: Next) -> Response: ...

No base class required. The pipeline checks the shape, not the lineage.
A middleware either awaits ``next(request)`` or short-circuits by
returning a response or raising an ``HTTPError``.
"""

from collections.abc import Awaitable, Callable
from typing import Protocol

from gatehouse.http.request import Request
from gatehouse.http.response import Response

# The next handler in the middleware chain
type Next = Callable[[Request], Awaitable[Response]]


class Middleware(Protocol):
    """Protocol for gatehouse middleware.

    Accepts both functions and callable objects::

        async def timing(request: Request, next: Next) -> Response:
            start = time.monotonic()
            response = await next(request)
            return response.with_header("X-Time", f"{time.monotonic() - start:.3f}")

        class AdminRequired:
            async def __call__(self, request: Request, next: Next) -> Response: ...
    """

    async def __call__(self, request: Request, next: Next) -> Response: ...
