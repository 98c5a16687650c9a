"""Middleware: protocol, pipeline composition, and the built-in set."""

from gatehouse.middleware.cors import CORSConfig, CORSMiddleware
from gatehouse.middleware.guards import AdminRequired, AuthRequired, CsrfRequired
from gatehouse.middleware.pipeline import build_pipeline
from gatehouse.middleware.protocol import Middleware, Next
from gatehouse.middleware.security_headers import SecurityHeadersMiddleware
from gatehouse.middleware.sessions import SessionMiddleware, get_session

__all__ = [
    "AdminRequired",
    "AuthRequired",
    "CORSConfig",
    "CORSMiddleware",
    "CsrfRequired",
    "Middleware",
    "Next",
    "SecurityHeadersMiddleware",
    "SessionMiddleware",
    "build_pipeline",
    "get_session",
]
