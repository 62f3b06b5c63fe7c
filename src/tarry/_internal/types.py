"""Shared type aliases used across tarry modules."""

from collections.abc import Callable
from typing import Any, TypeAlias

# Route handler: user-defined function with variable signature
Handler: TypeAlias = Callable[..., Any]

# Error handler: receives (request, error?) and returns a response value
ErrorHandler: TypeAlias = Callable[..., Any]

# Error handler table keyed by status code or exception class
ErrorHandlers: TypeAlias = dict[int | type, ErrorHandler]

# Server-owned completion callback for a suspended request. Receives the
# final rendered response (status, headers and body) exactly once.
CompletionCallback: TypeAlias = Callable[[Any], None]
