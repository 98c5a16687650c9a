"""Request-scoped context via ContextVar.

``request_var`` holds the current ``Request``. The ASGI handler sets it
before dispatch and resets it afterwards; outside a request,
``get_request()`` raises ``LookupError``.
"""

from contextvars import ContextVar

from gatehouse.http.request import Request

request_var: ContextVar[Request] = ContextVar("gatehouse_request")


def get_request() -> Request:
    """Return the current request.

    Raises ``LookupError`` if called outside a request context.
    """
    return request_var.get()
