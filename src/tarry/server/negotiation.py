"""Content negotiation — maps return values to Response objects.

Used for route return values, error handler results and every value a
deferred body passes to ``deferred.body()``. isinstance-based dispatch,
no magic, fully predictable.
"""

import json as json_module
from collections.abc import AsyncIterable, Iterable
from typing import Any

from kida import Environment

from tarry.errors import ConfigurationError
from tarry.http.response import Redirect, Response, StreamingResponse
from tarry.templating.integration import render_inline, render_template
from tarry.templating.returns import InlineTemplate, Template


def negotiate(
    value: Any,
    *,
    kida_env: Environment | None = None,
) -> Response | StreamingResponse:
    """Convert a handler's return value to a response.

    Dispatch order:

    1. ``Response`` / ``StreamingResponse`` -> pass through
    2. ``Redirect``         -> 302 with Location header
    3. ``Template``         -> render via kida
    4. ``InlineTemplate``   -> render string source via kida
    5. ``None``             -> 200, empty body
    6. ``str``              -> 200, text/html
    7. ``bytes``            -> 200, application/octet-stream
    8. ``dict`` / ``list``  -> 200, application/json
    9. ``(value, int)``     -> negotiate value, override status
    10. ``(value, int, dict)`` -> negotiate value, override status + headers
    11. other iterables     -> StreamingResponse, one chunk per item
    """
    match value:
        case Response() | StreamingResponse():
            return value
        case Redirect():
            return (
                Response(body="")
                .with_status(value.status)
                .with_header("Location", value.url)
                .with_headers(dict(value.headers))
            )
        case Template():
            if kida_env is None:
                msg = (
                    "Template return type requires kida integration. "
                    "Ensure a template_dir is configured in AppConfig."
                )
                raise ConfigurationError(msg)
            return Response(body=render_template(kida_env, value))
        case InlineTemplate():
            return Response(body=render_inline(kida_env, value))
        case None:
            return Response(body="")
        case str():
            return Response(body=value)
        case bytes():
            return Response(body=value, content_type="application/octet-stream")
        case dict() | list():
            return Response(
                body=json_module.dumps(value, default=str),
                content_type="application/json; charset=utf-8",
            )
        case (inner, int() as status):
            return negotiate(inner, kida_env=kida_env).with_status(status)
        case (inner, int() as status, dict() as headers):
            return negotiate(inner, kida_env=kida_env).with_status(status).with_headers(headers)
        case AsyncIterable() | Iterable():
            return StreamingResponse(chunks=value)
        case _:
            msg = (
                f"Cannot convert {type(value).__name__} to a response. "
                f"Return str, bytes, dict, list, Template, InlineTemplate, "
                f"an iterable of chunks, Response, or Redirect."
            )
            raise TypeError(msg)
