"""Deferred responses: suspend a request now, finish it later.

Public names are loaded lazily. ``tarry.server.errors`` imports
``tarry.deferred.coercion`` while ``tarry.deferred.pending`` imports
``tarry.server.errors``, so this package must not import its submodules
eagerly.
"""

from typing import Any

_EXPORTS: dict[str, tuple[str, str]] = {
    "Deferred": ("tarry.deferred.pending", "Deferred"),
    "ResponseDescriptor": ("tarry.deferred.descriptor", "ResponseDescriptor"),
    "coerce_halt": ("tarry.deferred.coercion", "coerce_halt"),
    "Completed": ("tarry.deferred.outcome", "Completed"),
    "EarlyExit": ("tarry.deferred.outcome", "EarlyExit"),
    "Failed": ("tarry.deferred.outcome", "Failed"),
}


def __getattr__(name: str) -> Any:
    if name in _EXPORTS:
        module_path, attr_name = _EXPORTS[name]
        import importlib

        module = importlib.import_module(module_path)
        return getattr(module, attr_name)
    msg = f"module 'tarry.deferred' has no attribute {name!r}"
    raise AttributeError(msg)


__all__ = list(_EXPORTS)
