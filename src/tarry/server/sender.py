"""ASGI response sending — translates tarry responses to ASGI messages.

Handles both single-body responses and chunked streaming responses.
HEAD requests get the same status and headers with an empty body.
"""

import logging
from collections.abc import AsyncIterable, AsyncIterator, Iterable

from tarry._internal.asgi import Send
from tarry.http.response import Response, StreamingResponse

logger = logging.getLogger("tarry.server")


def _body_allowed(status: int) -> bool:
    """Whether an HTTP status code permits a response body."""
    # RFC: 1xx, 204, and 304 responses do not include a message body.
    return not (100 <= status < 200 or status in {204, 304})


def _raw_headers(
    content_type: str, headers: tuple[tuple[str, str], ...]
) -> list[tuple[bytes, bytes]]:
    """Encode headers for ASGI; an explicit Content-Type header replaces the default."""
    raw: list[tuple[bytes, bytes]] = []
    for name, value in headers:
        if name.lower() == "content-type":
            content_type = value
            continue
        raw.append((name.lower().encode("latin-1"), value.encode("latin-1")))
    raw.insert(0, (b"content-type", content_type.encode("latin-1")))
    return raw


async def send_response(response: Response, send: Send, *, head: bool = False) -> None:
    """Translate a Response into ASGI send() calls."""
    raw_headers = _raw_headers(response.content_type, response.headers)
    body = response.body_bytes if _body_allowed(response.status) else b""
    raw_headers.append((b"content-length", str(len(body)).encode("latin-1")))

    await send(
        {
            "type": "http.response.start",
            "status": response.status,
            "headers": raw_headers,
        }
    )
    await send(
        {
            "type": "http.response.body",
            "body": b"" if head else body,
        }
    )


def _encode_chunk(chunk: str | bytes) -> bytes:
    return chunk.encode("utf-8") if isinstance(chunk, str) else chunk


async def _iterate(
    chunks: Iterable[str | bytes] | AsyncIterable[str | bytes],
) -> AsyncIterator[str | bytes]:
    if isinstance(chunks, AsyncIterable):
        async for chunk in chunks:
            yield chunk
    else:
        for chunk in chunks:
            yield chunk


async def send_streaming_response(
    response: StreamingResponse, send: Send, *, head: bool = False
) -> None:
    """Send a streaming response via chunked transfer encoding.

    Sends headers immediately, then each chunk as an ASGI body message
    with ``more_body=True``, then an empty closing message. A mid-stream
    error is logged and the stream is closed; the status line has already
    gone out, so there is nothing else to do.
    """
    raw_headers = _raw_headers(response.content_type, response.headers)
    raw_headers.append((b"transfer-encoding", b"chunked"))

    await send(
        {
            "type": "http.response.start",
            "status": response.status,
            "headers": raw_headers,
        }
    )

    if not head:
        try:
            async for chunk in _iterate(response.chunks):
                if chunk:
                    await send(
                        {
                            "type": "http.response.body",
                            "body": _encode_chunk(chunk),
                            "more_body": True,
                        }
                    )
        except Exception:
            logger.exception("Error while streaming response body")

    await send(
        {
            "type": "http.response.body",
            "body": b"",
            "more_body": False,
        }
    )
