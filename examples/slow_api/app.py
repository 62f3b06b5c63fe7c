"""Slow API — deferred routes waiting on outbound work.

A fake upstream service answers after a short sleep. Deferred handlers
start the call with ``deferred.spawn()`` and finish the request when it
returns; a callback-style client shows ``deferred.guard()``.

Run:
    python app.py
"""

import asyncio
from collections.abc import Callable

from tarry import App, Deferred, halt

app = App()

INVENTORY = {"apple": 3, "pear": 0}


class Upstream:
    """Stand-in for a remote inventory service."""

    latency = 0.01

    async def stock(self, item: str) -> int:
        await asyncio.sleep(self.latency)
        if item not in INVENTORY:
            raise KeyError(item)
        return INVENTORY[item]

    def stock_callback(
        self, item: str, on_done: Callable[[int], None], on_error: Callable[[Exception], None]
    ) -> None:
        """Callback flavour of :meth:`stock`, like older client libraries."""

        def finished(task: asyncio.Task[int]) -> None:
            exc = task.exception()
            if exc is not None:
                on_error(exc)
            else:
                on_done(task.result())

        asyncio.get_running_loop().create_task(self.stock(item)).add_done_callback(finished)


app.provide(Upstream, Upstream)


@app.aget("/stock/{item}")
def stock(deferred: Deferred, item: str, upstream: Upstream):
    async def lookup() -> None:
        try:
            count = await upstream.stock(item)
        except KeyError:
            halt(404, f"unknown item {item}")
        if count == 0:
            halt(409, {"Retry-After": "60"}, "sold out")
        deferred.body({"item": item, "count": count})

    deferred.spawn(lookup())


@app.aget("/legacy/{item}")
def legacy_stock(deferred: Deferred, item: str, upstream: Upstream):
    def failed(exc: Exception) -> None:
        halt(502, f"upstream failed: {exc!r}")

    upstream.stock_callback(
        item,
        on_done=deferred.guard(lambda count: deferred.body(f"{item}: {count}")),
        on_error=deferred.guard(failed),
    )


if __name__ == "__main__":
    app.run()
