"""Hello async — deferred routes next to ordinary ones.

Demonstrates ``aget``, finishing from a timer, halting with a status and
custom error handlers that apply to deferred bodies too.

Run:
    python app.py
"""

from tarry import App, Deferred, Request, halt

app = App()


@app.get("/sync")
def sync_index():
    return "hello sync"


@app.aget("/")
def index(deferred: Deferred):
    deferred.body("hello async")


@app.aget("/delay/{n:float}")
def delay(deferred: Deferred, n: float):
    deferred.call_later(n, deferred.body, f"delayed for {n:g} seconds")


@app.aget("/raise")
def boom():
    raise RuntimeError("boom")


@app.aget("/halt")
def refuse():
    halt(406, "Format not supported")


@app.aget("/teapot")
def teapot(deferred: Deferred):
    deferred.status = 418
    deferred.headers["X-Brewed-By"] = "tarry"
    deferred.call_soon(deferred.body, "short and stout")


@app.error(RuntimeError)
def runtime_error(request: Request, exc: RuntimeError):
    return f"problem: {type(exc).__name__} {exc}"


@app.error(406)
def not_acceptable(request: Request, exc):
    return f"problem: {exc.detail}"


if __name__ == "__main__":
    app.run()
