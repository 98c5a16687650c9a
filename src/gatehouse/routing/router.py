"""Linear-scan router.

Routes are tried in registration order for the request's method; the
first structural match wins. There is no precedence beyond order, so
register specific paths before general ones when they overlap.
"""

from collections.abc import Callable
from typing import Any

from gatehouse.errors import ConfigurationError, NotFound
from gatehouse.routing.route import Route, RouteMatch, normalize_path


class Router:
    """Mutable during setup, frozen once the app starts serving."""

    __slots__ = ("_frozen", "_routes")

    def __init__(self) -> None:
        self._routes: list[Route] = []
        self._frozen = False

    def add(self, route: Route) -> None:
        if self._frozen:
            msg = "Cannot register routes after the router is frozen."
            raise ConfigurationError(msg)
        self._routes.append(route)

    def register(
        self,
        method: str,
        path: str,
        handler: Callable[..., Any],
        middleware: tuple[Callable[..., Any], ...] = (),
    ) -> Route:
        """Compile and add a route; returns it."""
        route = Route.build(method, path, handler, middleware)
        self.add(route)
        return route

    def freeze(self) -> None:
        self._frozen = True

    @property
    def routes(self) -> tuple[Route, ...]:
        return tuple(self._routes)

    def resolve(self, method: str, path: str) -> RouteMatch:
        """Find the first route matching *method* and *path*.

        Raises:
            NotFound: If no registered route matches.
        """
        method = method.upper()
        normalized = normalize_path(path)
        for route in self._routes:
            if route.method != method:
                continue
            params = route.match(normalized)
            if params is not None:
                return RouteMatch(route=route, path_params=params)
        raise NotFound()
