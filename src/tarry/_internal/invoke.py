"""Call sync or async callables uniformly.

Route handlers, deferred bodies and error handlers can all be ``def`` or
``async def``. The sync/async check lives here and nowhere else::

    result = await invoke(handler, **kwargs)
"""

import inspect
from typing import Any


async def invoke(handler: Any, *args: Any, **kwargs: Any) -> Any:
    """Call *handler* and await the result if it is awaitable."""
    result = handler(*args, **kwargs)
    if inspect.isawaitable(result):
        result = await result
    return result
