"""HTTP responses with a chainable .with_*() transformation API.

Each transformation returns a new object. Immutable by convention,
built incrementally by design.

``Suspended`` is not a response at all: it is the signal a deferred route
hands back to the server pipeline meaning "hold the connection open, the
response arrives later through the completion callback".
"""

from __future__ import annotations

from collections.abc import AsyncIterable, Iterable, Mapping
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from tarry.deferred.pending import Deferred


@dataclass(frozen=True, slots=True)
class Response:
    """An HTTP response built through immutable transformations.

    Construct with a body, then chain ``.with_*()`` calls to set
    status and headers. Each call returns a new ``Response``.
    """

    body: str | bytes = ""
    status: int = 200
    content_type: str = "text/html; charset=utf-8"
    headers: tuple[tuple[str, str], ...] = ()

    def with_status(self, status: int) -> Response:
        """Return a new Response with a different status code."""
        return replace(self, status=status)

    def with_header(self, name: str, value: str) -> Response:
        """Return a new Response with an additional header."""
        return replace(self, headers=(*self.headers, (name, value)))

    def with_headers(self, headers: Mapping[str, str]) -> Response:
        """Return a new Response with additional headers."""
        return replace(self, headers=(*self.headers, *headers.items()))

    def with_content_type(self, content_type: str) -> Response:
        """Return a new Response with a different content type."""
        return replace(self, content_type=content_type)

    def header(self, name: str) -> str | None:
        """First value of header *name* (case-insensitive), or ``None``."""
        wanted = name.lower()
        if wanted == "content-type":
            return self.content_type
        for key, value in self.headers:
            if key.lower() == wanted:
                return value
        return None

    @property
    def body_bytes(self) -> bytes:
        """Body as bytes."""
        if isinstance(self.body, str):
            return self.body.encode("utf-8")
        return self.body

    @property
    def text(self) -> str:
        """Body as string."""
        if isinstance(self.body, bytes):
            return self.body.decode("utf-8")
        return self.body


@dataclass(frozen=True, slots=True)
class Redirect:
    """A redirect response."""

    url: str
    status: int = 302
    headers: tuple[tuple[str, str], ...] = ()


@dataclass(frozen=True, slots=True)
class StreamingResponse:
    """A response whose body is produced chunk by chunk.

    Headers are sent immediately, then each chunk as an ASGI body message
    with ``more_body=True``. Chunks may come from a sync or async iterable.
    """

    chunks: Iterable[str | bytes] | AsyncIterable[str | bytes]
    status: int = 200
    content_type: str = "text/html; charset=utf-8"
    headers: tuple[tuple[str, str], ...] = ()

    def with_status(self, status: int) -> StreamingResponse:
        """Return a new StreamingResponse with a different status code."""
        return replace(self, status=status)

    def with_header(self, name: str, value: str) -> StreamingResponse:
        """Return a new StreamingResponse with an additional header."""
        return replace(self, headers=(*self.headers, (name, value)))

    def with_headers(self, headers: Mapping[str, str]) -> StreamingResponse:
        """Return a new StreamingResponse with additional headers."""
        return replace(self, headers=(*self.headers, *headers.items()))

    def with_content_type(self, content_type: str) -> StreamingResponse:
        """Return a new StreamingResponse with a different content type."""
        return replace(self, content_type=content_type)


@dataclass(frozen=True, slots=True)
class Suspended:
    """The go-asynchronous signal returned by a deferred route.

    The server pipeline recognises it and waits for the completion
    callback instead of sending anything. Middleware sees it like any
    other response; its ``.with_*()`` methods are no-ops because nothing
    has been rendered yet.
    """

    deferred: Deferred

    def with_status(self, status: int) -> Suspended:  # noqa: ARG002
        """No-op: the deferred body decides the status."""
        return self

    def with_header(self, name: str, value: str) -> Suspended:  # noqa: ARG002
        """No-op: the deferred body decides the headers."""
        return self

    def with_headers(self, headers: Mapping[str, str]) -> Suspended:  # noqa: ARG002
        """No-op: the deferred body decides the headers."""
        return self

    def with_content_type(self, content_type: str) -> Suspended:  # noqa: ARG002
        """No-op: the deferred body decides the content type."""
        return self
