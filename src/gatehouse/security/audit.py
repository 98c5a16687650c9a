"""Security audit events.

Small opt-in event channel for authentication, CSRF, throttle and
authorization telemetry. Applications register a sink to forward
events to logs, metrics, or a SIEM. Every event is also written to the
``gatehouse.security`` logger at debug level.
"""

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from time import time
from typing import Any

logger = logging.getLogger("gatehouse.security")


@dataclass(frozen=True, slots=True)
class SecurityEvent:
    """A structured security event."""

    name: str
    timestamp: float = field(default_factory=time)
    path: str | None = None
    method: str | None = None
    user_id: str | None = None
    details: dict[str, Any] = field(default_factory=dict)


type SecurityEventSink = Callable[[SecurityEvent], None]


_sink_lock = threading.Lock()
_sink: SecurityEventSink | None = None


def set_security_event_sink(sink: SecurityEventSink | None) -> None:
    """Set a process-wide sink for security events. ``None`` disables delivery."""
    global _sink
    with _sink_lock:
        _sink = sink


def emit_security_event(
    name: str,
    *,
    request: Any | None = None,
    user_id: str | None = None,
    details: dict[str, Any] | None = None,
) -> None:
    """Emit a best-effort security event.

    A failing sink is logged and otherwise ignored: telemetry must never
    fail the request that produced it.
    """
    event = SecurityEvent(
        name=name,
        path=getattr(request, "path", None),
        method=getattr(request, "method", None),
        user_id=user_id,
        details=details or {},
    )
    logger.debug("security event %s user=%s details=%s", name, user_id, event.details)

    with _sink_lock:
        sink = _sink
    if sink is None:
        return
    try:
        sink(event)
    except Exception:
        logger.exception("Security event sink failed for %s", name)
