"""Security primitives: CSRF tokens, login throttling, password hashing.

CSRF::

    from gatehouse.security import CsrfGuard

    guard = CsrfGuard()
    token = guard.token(session)

Login throttling::

    from gatehouse.security import LoginThrottle, MemoryThrottleStore, ThrottleConfig

    throttle = LoginThrottle(MemoryThrottleStore(), ThrottleConfig(max_attempts=5))
    if await throttle.blocked_until(identity, origin) is None:
        ...
"""

from gatehouse.security.audit import SecurityEvent, emit_security_event, set_security_event_sink
from gatehouse.security.csrf import CsrfConfig, CsrfGuard
from gatehouse.security.passwords import hash_password, verify_password
from gatehouse.security.throttle import LoginThrottle, ThrottleConfig, ThrottleState
from gatehouse.security.throttle_stores import (
    DatabaseThrottleStore,
    FileThrottleStore,
    KeyedAtomicStore,
    MemoryThrottleStore,
)

__all__ = [
    "CsrfConfig",
    "CsrfGuard",
    "DatabaseThrottleStore",
    "FileThrottleStore",
    "KeyedAtomicStore",
    "LoginThrottle",
    "MemoryThrottleStore",
    "SecurityEvent",
    "ThrottleConfig",
    "ThrottleState",
    "emit_security_event",
    "hash_password",
    "set_security_event_sink",
    "verify_password",
]
