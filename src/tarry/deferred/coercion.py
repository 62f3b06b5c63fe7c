"""Turn a ``Halt`` payload into response fields.

Accepted payloads, applied to the descriptor in place:

* ``str`` / ``bytes``            -> body only
* ``Response``                   -> body; its own status wins over 200
* ``(status, headers, body)``    -> status; headers merged by key; body
                                    replaced only when non-empty
* ``(status, body)``             -> status and body
* ``int`` in 100–599             -> status only
* any other sequence or iterable -> body chunks
* ``None``                       -> nothing changes

Body values that are not chunks (``Response``, ``Template``, ``dict``)
are kept as is and rendered by content negotiation later.

Anything else raises ``UnsupportedHaltValue``.
"""

from collections.abc import AsyncIterable, Iterable, Mapping
from typing import Any

from tarry.deferred.descriptor import ResponseDescriptor, valid_status
from tarry.errors import UnsupportedHaltValue
from tarry.http.response import Response, StreamingResponse


def _is_status(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _as_body(value: Any) -> Any:
    """Normalize chunk sequences so negotiation does not mistake them for JSON."""
    if isinstance(value, list | tuple):
        if all(isinstance(chunk, str) for chunk in value):
            return "".join(value)
        if all(isinstance(chunk, bytes) for chunk in value):
            return b"".join(value)
        return StreamingResponse(chunks=tuple(value))
    if isinstance(value, str | bytes | Mapping | Response | StreamingResponse):
        return value
    if isinstance(value, AsyncIterable | Iterable):
        return StreamingResponse(chunks=value)
    return value


def coerce_halt(value: Any, descriptor: ResponseDescriptor) -> ResponseDescriptor:
    """Apply a halt payload to *descriptor* and return it."""
    match value:
        case None:
            pass
        case str() | bytes() | Response() | StreamingResponse():
            descriptor.body = value
        case list() | tuple() if value and _is_status(value[0]):
            _apply_status_sequence(value, descriptor)
        case int() if _is_status(value):
            if not valid_status(value):
                raise UnsupportedHaltValue(value)
            descriptor.status = value
        case list() | tuple() | AsyncIterable() | Iterable() if not isinstance(value, Mapping):
            descriptor.body = _as_body(value)
        case _:
            raise UnsupportedHaltValue(value)
    return descriptor


def _apply_status_sequence(
    value: list[Any] | tuple[Any, ...], descriptor: ResponseDescriptor
) -> None:
    status = value[0]
    if not valid_status(status):
        raise UnsupportedHaltValue(value)
    if len(value) == 3:
        _, headers, body = value
        if headers is not None and not isinstance(headers, Mapping):
            raise UnsupportedHaltValue(value)
        descriptor.status = status
        if headers:
            descriptor.merge_headers(headers)
        if body:
            descriptor.body = _as_body(body)
    elif len(value) == 2:
        descriptor.status = status
        descriptor.body = _as_body(value[1])
    else:
        raise UnsupportedHaltValue(value)
