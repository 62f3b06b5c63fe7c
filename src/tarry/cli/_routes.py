"""``tarry routes`` — list registered routes.

Deferred routes are flagged in the KIND column.
"""

import argparse
import sys

from tarry.cli._resolve import resolve_app


def run_routes(args: argparse.Namespace) -> None:
    """Print a METHOD / PATH / KIND / HANDLER table for ``args.app``."""
    try:
        app = resolve_app(args.app)
    except (ModuleNotFoundError, AttributeError, TypeError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        raise SystemExit(1) from exc

    routes = app.routes
    if not routes:
        print("No routes registered.")
        return

    rows: list[tuple[str, str, str, str]] = []
    for route in routes:
        handler_name = getattr(route.handler, "__name__", str(route.handler))
        if route.name:
            handler_name = f"{handler_name} ({route.name})"
        kind = "deferred" if route.deferred else "-"
        rows.append((", ".join(sorted(route.methods)), route.path, kind, handler_name))

    max_methods = max(6, *(len(r[0]) for r in rows))
    max_path = max(4, *(len(r[1]) for r in rows))

    fmt = f"{{:<{max_methods}}}  {{:<{max_path}}}  {{:<8}}  {{}}"
    print(fmt.format("METHOD", "PATH", "KIND", "HANDLER"))
    print("-" * min(max_methods + max_path + 14 + max(len(r[3]) for r in rows), 80))
    for row in rows:
        print(fmt.format(*row))
