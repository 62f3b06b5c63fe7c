"""Mutable response descriptor for an in-flight deferred request.

Handlers set status, headers and content type on it while their
asynchronous work runs; nothing reaches the transport until
``Deferred.body()`` renders it into a frozen ``Response``.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from typing import Any

from kida import Environment

from tarry.http.response import Response, StreamingResponse
from tarry.server.negotiation import negotiate


def valid_status(status: object) -> bool:
    """True for an ``int`` (not ``bool``) in the HTTP range 100–599."""
    return isinstance(status, int) and not isinstance(status, bool) and 100 <= status <= 599


@dataclass(slots=True)
class ResponseDescriptor:
    """Status, headers and body of a response that is not finished yet."""

    status: int = 200
    headers: dict[str, str] = field(default_factory=dict)
    content_type: str | None = None
    body: Any = None

    def set_status(self, status: int) -> None:
        if not valid_status(status):
            msg = f"Invalid HTTP status: {status!r}"
            raise ValueError(msg)
        self.status = status

    def merge_headers(self, headers: Mapping[str, str]) -> None:
        """Merge *headers* by key; later values replace earlier ones.

        ``Content-Type`` (any case) sets :attr:`content_type` instead.
        """
        for name, value in headers.items():
            if name.lower() == "content-type":
                self.content_type = str(value)
            else:
                self.headers[name] = str(value)

    def render(
        self, kida_env: Environment | None = None
    ) -> Response | StreamingResponse:
        """Negotiate the body and apply status, headers and content type.

        A status carried by the body value itself (a ``Response`` or a
        ``(value, status)`` tuple) wins over the descriptor's default 200.
        """
        response = negotiate(self.body, kida_env=kida_env)
        if response.status == 200 and self.status != 200:
            response = response.with_status(self.status)
        content_type = self.content_type
        headers: list[tuple[str, str]] = []
        # Headers may be assigned directly, so Content-Type can still be here
        for name, value in self.headers.items():
            if name.lower() == "content-type":
                content_type = value
            else:
                headers.append((name, value))
        if content_type is not None:
            response = response.with_content_type(content_type)
        if headers:
            response = replace(response, headers=(*headers, *response.headers))
        return response
