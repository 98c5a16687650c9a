"""Liveness probe."""

from datetime import UTC, datetime
from typing import Any

from gatehouse.config import AppConfig
from gatehouse.http.request import Request


class HealthEndpoint:
    __slots__ = ("_config",)

    def __init__(self, config: AppConfig) -> None:
        self._config = config

    async def __call__(self, request: Request) -> dict[str, Any]:
        return {
            "status": "ok",
            "service": self._config.service_name,
            "env": self._config.env,
            "server_time": datetime.now(UTC).isoformat(timespec="seconds"),
        }
