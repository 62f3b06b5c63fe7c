"""Middleware — Protocol-based, no inheritance required.

A middleware is any callable matching:
    async def mw(request: Request, next: Next) -> AnyResponse
"""

from tarry.middleware.protocol import AnyResponse, Middleware, Next

__all__ = ["AnyResponse", "Middleware", "Next"]
