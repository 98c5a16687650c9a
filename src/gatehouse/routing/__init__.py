"""Route registration and resolution."""

from gatehouse.routing.route import Route, RouteMatch, compile_template, normalize_path
from gatehouse.routing.router import Router

__all__ = ["Route", "RouteMatch", "Router", "compile_template", "normalize_path"]
