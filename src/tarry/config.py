"""Application configuration.

AppConfig is a frozen dataclass — immutable after creation, IDE-autocompletable,
no string-key dict lookups.
"""

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Self

from tarry.errors import ConfigurationError

_TRUE = frozenset({"1", "true", "yes", "on"})
_FALSE = frozenset({"0", "false", "no", "off"})


@dataclass(frozen=True, slots=True)
class AppConfig:
    """Application configuration. Immutable after creation.

    All fields have sensible defaults. Override what you need::

        config = AppConfig(debug=True, port=3000)
    """

    # Server
    host: str = "127.0.0.1"
    port: int = 8000
    debug: bool = False

    # Error rendering. ``None`` follows ``debug``: diagnostic pages are
    # shown in development and hidden in production.
    show_exceptions: bool | None = None

    # Templates
    template_dir: str | Path = "templates"
    autoescape: bool = True

    # Logging
    log_level: str = "info"

    @property
    def exceptions_shown(self) -> bool:
        """Whether unhandled exceptions render the diagnostic page."""
        if self.show_exceptions is None:
            return self.debug
        return self.show_exceptions

    @classmethod
    def from_env(cls, prefix: str = "TARRY_", **overrides: object) -> Self:
        """Build a config from ``<prefix><FIELD>`` environment variables.

        Explicit keyword *overrides* win over the environment::

            # TARRY_PORT=9000 TARRY_DEBUG=1
            config = AppConfig.from_env()
        """
        values: dict[str, object] = {}
        for f in fields(cls):
            raw = os.environ.get(f"{prefix}{f.name.upper()}")
            if raw is None:
                continue
            values[f.name] = _coerce(f.name, f.type, raw)
        values.update(overrides)
        return cls(**values)  # type: ignore[arg-type]


def _coerce(name: str, annotation: object, raw: str) -> object:
    """Convert an environment string to the field's declared type."""
    if annotation is int:
        try:
            return int(raw)
        except ValueError:
            msg = f"Invalid integer for {name}: {raw!r}"
            raise ConfigurationError(msg) from None
    if annotation is bool or annotation == (bool | None):
        lowered = raw.strip().lower()
        if not lowered and annotation is not bool:
            return None
        if lowered in _TRUE:
            return True
        if lowered in _FALSE:
            return False
        msg = f"Invalid boolean for {name}: {raw!r}"
        raise ConfigurationError(msg)
    return raw
