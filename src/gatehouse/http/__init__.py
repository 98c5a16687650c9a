"""HTTP primitives: Request, Response, headers, cookies, forms."""

from gatehouse.http.request import Request
from gatehouse.http.response import Response, json_response

__all__ = ["Request", "Response", "json_response"]
