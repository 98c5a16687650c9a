"""Route and RouteMatch frozen dataclasses, plus template compilation.

A template is literal segments plus ``{name}`` placeholders. Each
placeholder matches exactly one path component (``[^/]+``). Templates
compile to anchored regexes once, at registration.
"""

import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from gatehouse.errors import ConfigurationError

_PLACEHOLDER = re.compile(r"\{([a-zA-Z_][a-zA-Z0-9_]*)\}")


def normalize_path(path: str) -> str:
    """Strip trailing slashes; the root path stays ``/``."""
    return path.rstrip("/") or "/"


def compile_template(template: str) -> tuple[re.Pattern[str], tuple[str, ...]]:
    """Compile a path template into an anchored regex and its parameter names.

    Raises:
        ConfigurationError: If the template does not start with ``/``,
            repeats a parameter name, or contains a malformed placeholder.
    """
    if not template.startswith("/"):
        msg = f"Route path must start with '/': {template!r}"
        raise ConfigurationError(msg)

    normalized = normalize_path(template)
    names: list[str] = []
    parts: list[str] = []
    pos = 0
    for match in _PLACEHOLDER.finditer(normalized):
        literal = normalized[pos : match.start()]
        _check_literal(literal, template)
        parts.append(re.escape(literal))
        name = match.group(1)
        if name in names:
            msg = f"Duplicate path parameter {name!r} in route {template!r}"
            raise ConfigurationError(msg)
        names.append(name)
        parts.append(f"(?P<{name}>[^/]+)")
        pos = match.end()
    tail = normalized[pos:]
    _check_literal(tail, template)
    parts.append(re.escape(tail))

    return re.compile("^" + "".join(parts) + "$"), tuple(names)


def _check_literal(literal: str, template: str) -> None:
    if any(ch in literal for ch in "{}<>"):
        msg = (
            f"Malformed placeholder in route {template!r}: "
            "use {name} with a letter or underscore first"
        )
        raise ConfigurationError(msg)


@dataclass(frozen=True, slots=True)
class Route:
    """A registered route: one method, one template, one handler.

    ``middleware`` is the route's ordered, immutable middleware chain.
    """

    method: str
    path: str
    handler: Callable[..., Any]
    middleware: tuple[Callable[..., Any], ...]
    pattern: re.Pattern[str]
    param_names: tuple[str, ...]

    @classmethod
    def build(
        cls,
        method: str,
        path: str,
        handler: Callable[..., Any],
        middleware: tuple[Callable[..., Any], ...] = (),
    ) -> "Route":
        pattern, names = compile_template(path)
        return cls(
            method=method.upper(),
            path=normalize_path(path),
            handler=handler,
            middleware=tuple(middleware),
            pattern=pattern,
            param_names=names,
        )

    def match(self, path: str) -> dict[str, str] | None:
        """Path parameters if *path* (already normalized) matches, else ``None``."""
        found = self.pattern.match(path)
        if found is None:
            return None
        return found.groupdict()


@dataclass(frozen=True, slots=True)
class RouteMatch:
    """Result of a successful route match."""

    route: Route
    path_params: dict[str, str]
