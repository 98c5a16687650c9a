"""Portal endpoints: CSRF token, login, logout, current principal, password, health."""

from gatehouse.handlers.auth import AuthEndpoints
from gatehouse.handlers.health import HealthEndpoint

__all__ = ["AuthEndpoints", "HealthEndpoint"]
