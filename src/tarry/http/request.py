"""Immutable HTTP request.

Frozen metadata with async body access. A deferred body may run many
event-loop ticks after the request arrived, so nothing here depends on
the original call frame still being alive.
"""

from __future__ import annotations

import json as json_module
from collections.abc import AsyncGenerator
from dataclasses import dataclass, field, replace
from typing import Any
from urllib.parse import parse_qsl

from tarry._internal.asgi import Receive
from tarry.http.headers import Headers


@dataclass(frozen=True, slots=True)
class Request:
    """An immutable HTTP request.

    Metadata (method, path, headers, query) is frozen at creation.
    Body is accessed asynchronously via ``.body()``, ``.text()``, ``.json()``.
    """

    method: str
    path: str
    headers: Headers
    query: dict[str, str]
    path_params: dict[str, Any]
    http_version: str
    client: tuple[str, int] | None

    # Private: ASGI receive callable for body streaming
    _receive: Receive

    # Private: body cache (the dict is mutable even though the field is frozen)
    _cache: dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    @property
    def content_type(self) -> str | None:
        """The Content-Type header value."""
        return self.headers.get("content-type")

    @property
    def url(self) -> str:
        """Request path with the query string re-attached."""
        if not self.query:
            return self.path
        qs = "&".join(f"{k}={v}" for k, v in self.query.items())
        return f"{self.path}?{qs}"

    async def body(self) -> bytes:
        """Read the full request body.

        The ASGI receive channel is consumed once; later calls return
        the cached bytes.
        """
        if "_body" in self._cache:
            return self._cache["_body"]
        chunks = [chunk async for chunk in self.stream()]
        result = b"".join(chunks)
        self._cache["_body"] = result
        return result

    async def stream(self) -> AsyncGenerator[bytes]:
        """Stream the request body in chunks."""
        while True:
            message = await self._receive()
            body = message.get("body", b"")
            if body:
                yield body
            if not message.get("more_body", False):
                break

    async def text(self) -> str:
        """Read the body as text (UTF-8)."""
        raw = await self.body()
        return raw.decode("utf-8")

    async def json(self) -> Any:
        """Parse the body as JSON."""
        raw = await self.body()
        return json_module.loads(raw)

    def with_path_params(self, path_params: dict[str, Any]) -> Request:
        """Return a copy carrying the params of a route match.

        The body cache is shared so a body read by middleware is not lost.
        """
        return replace(self, path_params=path_params)

    @classmethod
    def from_asgi(cls, scope: dict[str, Any], receive: Receive) -> Request:
        """Create a Request from an ASGI scope and receive callable."""
        client = scope.get("client")
        query_string: bytes = scope.get("query_string", b"")
        return cls(
            method=scope["method"],
            path=scope["path"],
            headers=Headers(tuple(scope.get("headers", ()))),
            query=dict(parse_qsl(query_string.decode("latin-1"), keep_blank_values=True)),
            path_params={},
            http_version=scope.get("http_version", "1.1"),
            client=tuple(client) if client else None,
            _receive=receive,
        )
