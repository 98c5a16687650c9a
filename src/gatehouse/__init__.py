"""Gatehouse: request authorization core for a client-portal API.

Session authentication, CSRF defense, and adaptive login throttling on
a small ASGI routing and middleware runtime.

Basic usage::

    from gatehouse import AppConfig, create_app

    app = create_app(AppConfig(secret_key="change-me"))

Then serve it with ``gatehouse run`` or any ASGI server.
"""

__version__ = "0.1.0"
__all__ = [
    "App",
    "AppConfig",
    "ConfigurationError",
    "GatehouseError",
    "HTTPError",
    "Middleware",
    "Next",
    "Request",
    "Response",
    "create_app",
    "get_request",
]

_LAZY = {
    "App": ("gatehouse.app", "App"),
    "AppConfig": ("gatehouse.config", "AppConfig"),
    "ConfigurationError": ("gatehouse.errors", "ConfigurationError"),
    "GatehouseError": ("gatehouse.errors", "GatehouseError"),
    "HTTPError": ("gatehouse.errors", "HTTPError"),
    "Middleware": ("gatehouse.middleware.protocol", "Middleware"),
    "Next": ("gatehouse.middleware.protocol", "Next"),
    "Request": ("gatehouse.http.request", "Request"),
    "Response": ("gatehouse.http.response", "Response"),
    "create_app": ("gatehouse.factory", "create_app"),
    "get_request": ("gatehouse.context", "get_request"),
}


def __getattr__(name: str) -> object:
    """Lazy imports for the public API, so ``import gatehouse`` stays cheap."""
    try:
        module_name, attr = _LAZY[name]
    except KeyError:
        msg = f"module 'gatehouse' has no attribute {name!r}"
        raise AttributeError(msg) from None
    import importlib

    return getattr(importlib.import_module(module_name), attr)
