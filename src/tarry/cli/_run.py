"""``tarry run`` — development server command.

Resolves an import string to a tarry App and serves it with pounce.
"""

import argparse
import logging
import sys

from tarry.cli._resolve import resolve_app


def run_server(args: argparse.Namespace) -> None:
    """Start the tarry server for ``args.app``.

    ``--host``/``--port`` override the app's config; ``--reload`` forces
    auto-reload on even when ``config.debug`` is off.
    """
    try:
        app = resolve_app(args.app)
    except (ModuleNotFoundError, AttributeError, TypeError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        raise SystemExit(1) from exc

    host = args.host or app.config.host
    port = args.port or app.config.port

    logging.basicConfig(
        level=app.config.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    from tarry.server.dev import run_dev_server

    app._ensure_frozen()
    run_dev_server(
        app,
        host,
        port,
        reload=args.reload or app.config.debug,
        app_path=args.app,
    )
