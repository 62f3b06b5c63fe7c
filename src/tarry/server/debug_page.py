"""Self-contained diagnostic page renderer.

Shown instead of error handlers when ``show_exceptions`` is on. Uses
plain f-strings and no template environment, so a broken template setup
cannot prevent error reporting.

The page renders:
- Exception type, message and cause chain
- Traceback with source context and locals
- Request context (method, path, headers, query, path params)
- Whether the failure happened inside a deferred body
"""

import html
import linecache
import os
import types
from typing import Any

# Headers whose values are masked on the page
_SENSITIVE_HEADERS = frozenset({
    "authorization",
    "cookie",
    "set-cookie",
    "x-api-key",
    "x-auth-token",
    "proxy-authorization",
})

_CONTEXT_LINES = 5
_MAX_REPR = 200


def _esc(text: object) -> str:
    return html.escape(str(text), quote=True)


def _is_app_frame(filename: str) -> bool:
    """True if the frame is from the application (not stdlib/site-packages)."""
    if "site-packages" in filename or filename.startswith("<"):
        return False
    stdlib_prefix = os.path.dirname(os.__file__)
    return not filename.startswith(stdlib_prefix)


def _extract_frames(tb: types.TracebackType | None) -> list[dict[str, Any]]:
    """Walk a traceback and extract frame info with source context and locals."""
    frames: list[dict[str, Any]] = []
    while tb is not None:
        frame = tb.tb_frame
        lineno = tb.tb_lineno
        filename = frame.f_code.co_filename

        source_lines: list[tuple[int, str]] = []
        for i in range(max(1, lineno - _CONTEXT_LINES), lineno + _CONTEXT_LINES + 1):
            line = linecache.getline(filename, i, frame.f_globals)
            if line:
                source_lines.append((i, line.rstrip()))

        local_vars: dict[str, str] = {}
        for name, value in frame.f_locals.items():
            if name.startswith("__") and name.endswith("__"):
                continue
            try:
                r = repr(value)
            except Exception:  # noqa: BLE001
                r = "<unrepresentable>"
            local_vars[name] = r if len(r) <= _MAX_REPR else r[: _MAX_REPR - 3] + "..."

        frames.append({
            "filename": filename,
            "lineno": lineno,
            "func_name": frame.f_code.co_name,
            "source_lines": source_lines,
            "locals": local_vars,
            "is_app": _is_app_frame(filename),
        })
        tb = tb.tb_next
    return frames


def _extract_request_context(request: Any) -> dict[str, Any]:
    """Extract displayable request context, masking sensitive headers."""
    ctx: dict[str, Any] = {
        "method": getattr(request, "method", "?"),
        "path": getattr(request, "path", "?"),
        "http_version": getattr(request, "http_version", "?"),
    }

    headers = getattr(request, "headers", None)
    if headers:
        ctx["headers"] = [
            (str(name), "••••••••" if str(name).lower() in _SENSITIVE_HEADERS else str(value))
            for name, value in headers.items()
        ]

    query = getattr(request, "query", None)
    if query:
        ctx["query"] = [(str(k), str(v)) for k, v in query.items()]

    path_params = getattr(request, "path_params", None)
    if path_params:
        ctx["path_params"] = dict(path_params)

    client = getattr(request, "client", None)
    if client:
        ctx["client"] = f"{client[0]}:{client[1]}"
    return ctx


_CSS = """\
* { margin: 0; padding: 0; box-sizing: border-box; }
body { font-family: ui-monospace, Menlo, Consolas, monospace; background: #1a1b26;
       color: #a9b1d6; line-height: 1.6; padding: 2rem; font-size: 14px; }
.error-page { max-width: 960px; margin: 0 auto; }
h1 { color: #f7768e; font-size: 1.4rem; margin-bottom: 0.5rem; }
h2 { color: #7aa2f7; font-size: 1.1rem; margin: 1.5rem 0 0.5rem; border-bottom: 1px solid #2f3549; }
.exc-message { color: #e0af68; margin-bottom: 1rem; white-space: pre-wrap; }
.exc-chain, .phase { color: #565f89; font-size: 0.85rem; font-style: italic; }
.frame { margin: 0.5rem 0; border: 1px solid #2f3549; border-radius: 6px; overflow: hidden; }
.frame.app-frame { border-color: #7aa2f7; }
.frame-header { padding: 0.4rem 0.8rem; background: #24283b; font-size: 0.85rem; }
.frame-header .func { color: #bb9af7; }
.source-line { display: flex; padding: 0 0.8rem; font-size: 0.82rem; }
.source-line .lineno { color: #565f89; min-width: 3.5rem; text-align: right; padding-right: 1rem; }
.source-line .code { white-space: pre; }
.source-line.error-line { background: rgba(247, 118, 142, 0.15); }
.locals { padding: 0.4rem 0.8rem; border-top: 1px solid #2f3549; font-size: 0.8rem; }
.request-line { display: flex; gap: 0.5rem; font-size: 0.85rem; }
.request-line .label { color: #7aa2f7; min-width: 140px; }
"""


def _render_frame(frame: dict[str, Any]) -> str:
    css_class = "frame app-frame" if frame["is_app"] else "frame"
    lines = "".join(
        f'<div class="source-line{" error-line" if n == frame["lineno"] else ""}">'
        f'<span class="lineno">{n}</span><span class="code">{_esc(code)}</span></div>'
        for n, code in frame["source_lines"]
    )
    local_rows = "".join(
        f'<div class="request-line"><span class="label">{_esc(k)}</span>'
        f"<span>{_esc(v)}</span></div>"
        for k, v in frame["locals"].items()
    )
    locals_html = f'<div class="locals">{local_rows}</div>' if local_rows else ""
    return (
        f'<div class="{css_class}"><div class="frame-header">'
        f'{_esc(frame["filename"])}:{frame["lineno"]} in '
        f'<span class="func">{_esc(frame["func_name"])}</span></div>'
        f'<div class="source">{lines}</div>{locals_html}</div>'
    )


def _render_request(ctx: dict[str, Any]) -> str:
    rows = [
        ("Method", ctx["method"]),
        ("Path", ctx["path"]),
        ("HTTP version", ctx["http_version"]),
    ]
    if "client" in ctx:
        rows.append(("Client", ctx["client"]))
    rows.extend((f"param {k}", v) for k, v in ctx.get("path_params", {}).items())
    rows.extend((f"query {k}", v) for k, v in ctx.get("query", []))
    rows.extend((k, v) for k, v in ctx.get("headers", []))
    return "".join(
        f'<div class="request-line"><span class="label">{_esc(label)}</span>'
        f"<span>{_esc(value)}</span></div>"
        for label, value in rows
    )


def _exception_chain(exc: BaseException) -> list[BaseException]:
    chain: list[BaseException] = []
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        chain.append(current)
        current = current.__cause__ or current.__context__
    return chain


def render_debug_page(exc: BaseException, request: Any = None, *, deferred: bool = False) -> str:
    """Render a full HTML diagnostic page for *exc*."""
    name = type(exc).__name__
    parts = [
        "<!DOCTYPE html><html><head><meta charset='utf-8'>",
        f"<title>{_esc(name)}</title><style>{_CSS}</style></head>",
        '<body><div class="error-page">',
        f"<h1>{_esc(name)}</h1>",
        f'<div class="exc-message">{_esc(exc)}</div>',
    ]
    if deferred:
        parts.append('<div class="phase">Raised while completing a deferred response</div>')

    for cause in _exception_chain(exc)[1:]:
        parts.append(
            f'<div class="exc-chain">while handling {_esc(type(cause).__name__)}: '
            f"{_esc(cause)}</div>"
        )

    parts.append("<h2>Traceback</h2>")
    parts.extend(_render_frame(f) for f in _extract_frames(exc.__traceback__))

    if request is not None:
        parts.append("<h2>Request</h2>")
        parts.append(_render_request(_extract_request_context(request)))

    parts.append("</div></body></html>")
    return "".join(parts)
