"""How a deferred body (or a guarded callback) ended.

Handler code raises ``Halt`` and ordinary exceptions the usual Python way.
At the deferred boundary those are caught once and turned into one of
three values, so the settle step matches on data instead of juggling
``except`` clauses.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from tarry._internal.invoke import invoke
from tarry.errors import Halt


@dataclass(frozen=True, slots=True)
class Completed:
    """The body returned normally. It owns the call to ``deferred.body()``."""

    value: Any = None


@dataclass(frozen=True, slots=True)
class EarlyExit:
    """The body raised ``Halt``; *value* is the halt payload."""

    value: Any


@dataclass(frozen=True, slots=True)
class Failed:
    """The body raised something other than ``Halt``."""

    error: Exception


type Outcome = Completed | EarlyExit | Failed


def capture(fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Outcome:
    """Run a sync callable and classify how it ended."""
    try:
        return Completed(fn(*args, **kwargs))
    except Halt as halt:
        return EarlyExit(halt.value)
    except Exception as exc:
        return Failed(exc)


async def capture_async(fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Outcome:
    """Run a sync or async callable and classify how it ended."""
    try:
        return Completed(await invoke(fn, *args, **kwargs))
    except Halt as halt:
        return EarlyExit(halt.value)
    except Exception as exc:
        return Failed(exc)


async def capture_awaitable(awaitable: Awaitable[Any]) -> Outcome:
    """Await *awaitable* and classify how it ended."""
    try:
        return Completed(await awaitable)
    except Halt as halt:
        return EarlyExit(halt.value)
    except Exception as exc:
        return Failed(exc)
