"""Immutable HTTP request.

Frozen metadata with async body access. The request is honest about
what it is: received data that doesn't change.
"""

from __future__ import annotations

import json
from collections.abc import AsyncGenerator, Mapping
from dataclasses import dataclass, field, replace
from typing import Any

from gatehouse._internal.asgi import Receive, Scope
from gatehouse.http.cookies import parse_cookies
from gatehouse.http.forms import FormData, is_form_content_type, parse_form_data
from gatehouse.http.headers import Headers

STATE_CHANGING_METHODS: frozenset[str] = frozenset({"POST", "PUT", "PATCH", "DELETE"})

UNKNOWN_CLIENT_IP = "0.0.0.0"


@dataclass(frozen=True, slots=True)
class Request:
    """An immutable HTTP request.

    Metadata (method, path, headers, etc.) is frozen at creation.
    Body is accessed asynchronously via ``.body()``, ``.json()``,
    ``.form()`` and ``.input()``.
    """

    method: str
    path: str
    headers: Headers
    path_params: dict[str, str]
    http_version: str
    client: tuple[str, int] | None
    cookies: Mapping[str, str]

    # Private: ASGI receive callable for body streaming
    _receive: Receive

    # Private: mutable cache for body and parsed payloads, shared by
    # every copy made with ``with_path_params``
    _cache: dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    # -- Computed properties --

    @property
    def content_type(self) -> str | None:
        return self.headers.get("content-type")

    @property
    def client_ip(self) -> str:
        """The caller's network address, ``0.0.0.0`` when unknown."""
        if self.client and self.client[0] and self.client[0].strip():
            return self.client[0].strip()
        return UNKNOWN_CLIENT_IP

    @property
    def is_state_changing(self) -> bool:
        return self.method in STATE_CHANGING_METHODS

    def with_path_params(self, path_params: dict[str, str]) -> Request:
        """Return a copy carrying the matched route's path parameters."""
        return replace(self, path_params=path_params, _cache=self._cache)

    # -- Async body access --

    async def body(self) -> bytes:
        """Read the full request body. Cached after the first read."""
        if "_body" in self._cache:
            return self._cache["_body"]
        chunks = [chunk async for chunk in self.stream()]
        result = b"".join(chunks)
        self._cache["_body"] = result
        return result

    async def stream(self) -> AsyncGenerator[bytes]:
        while True:
            message = await self._receive()
            chunk = message.get("body", b"")
            if chunk:
                yield chunk
            if not message.get("more_body", False):
                break

    async def json(self) -> Any:
        """Parse the body as JSON. Raises ``ValueError`` on malformed input."""
        raw = await self.body()
        return json.loads(raw)

    async def form(self) -> FormData:
        """Parse the body as form data (URL-encoded or multipart). Cached."""
        if "_form" in self._cache:
            return self._cache["_form"]
        content_type = self.content_type or "application/x-www-form-urlencoded"
        result = await parse_form_data(await self.body(), content_type)
        self._cache["_form"] = result
        return result

    async def inputs(self) -> dict[str, Any]:
        """Merged request input: JSON object fields first, then form fields.

        A body that is not a JSON object, not valid JSON, or a malformed
        form contributes nothing rather than failing; validators report
        the missing fields.
        """
        if "_inputs" in self._cache:
            return self._cache["_inputs"]

        merged: dict[str, Any] = {}
        if is_form_content_type(self.content_type):
            try:
                form = await self.form()
            except ValueError:
                form = None
            if form is not None:
                merged.update(form)
        else:
            raw = await self.body()
            if raw.strip():
                try:
                    decoded = json.loads(raw)
                except ValueError:
                    decoded = None
                if isinstance(decoded, dict):
                    merged.update(decoded)

        self._cache["_inputs"] = merged
        return merged

    async def input(self, key: str, default: Any = None) -> Any:
        return (await self.inputs()).get(key, default)

    # -- Factory --

    @classmethod
    def from_asgi(
        cls,
        scope: Scope,
        receive: Receive,
        *,
        trusted_proxy_header: str | None = None,
    ) -> Request:
        """Create a Request from an ASGI scope and receive callable.

        When *trusted_proxy_header* is set and present, its first hop
        replaces the socket peer as the client address.
        """
        headers = Headers(tuple(scope.get("headers", ())))
        client = scope.get("client")
        client = tuple(client) if client else None
        if trusted_proxy_header:
            forwarded = headers.get(trusted_proxy_header)
            first_hop = forwarded.split(",")[0].strip() if forwarded else ""
            if first_hop:
                client = (first_hop, 0)
        return cls(
            method=scope["method"].upper(),
            path=scope["path"],
            headers=headers,
            path_params={},
            http_version=scope.get("http_version", "1.1"),
            client=client,
            cookies=parse_cookies(headers.get("cookie", "")),
            _receive=receive,
        )
