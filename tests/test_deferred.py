"""End-to-end tests for deferred routes through the ASGI pipeline."""

import asyncio
import logging

import pytest

from tarry import App, AppConfig, Deferred, Request, Response, Template, get_request, halt
from tarry.errors import NotFound
from tarry.testing import TestClient


class TestFinish:
    async def test_body_sets_response(self) -> None:
        app = App()

        @app.aget("/")
        def index(deferred: Deferred):
            deferred.body("hello async")

        async with TestClient(app) as client:
            response = await client.get("/")
            assert response.status == 200
            assert response.text == "hello async"

    async def test_status_headers_and_content_type(self) -> None:
        app = App()

        @app.aget("/")
        def index(deferred: Deferred):
            deferred.status = 201
            deferred.headers["X-Job"] = "42"
            deferred.content_type = "text/plain"
            deferred.body("created")

        async with TestClient(app) as client:
            response = await client.get("/")
            assert response.status == 201
            assert response.header("X-Job") == "42"
            assert response.content_type == "text/plain"
            assert response.text == "created"

    async def test_parameter_found_by_annotation(self) -> None:
        app = App()

        @app.aget("/")
        def index(pending: Deferred):
            pending.body("by annotation")

        async with TestClient(app) as client:
            response = await client.get("/")
            assert response.text == "by annotation"

    async def test_parameter_found_by_name(self) -> None:
        app = App()

        @app.aget("/")
        def index(deferred):
            deferred.body("by name")

        async with TestClient(app) as client:
            response = await client.get("/")
            assert response.text == "by name"

    async def test_path_params_converted(self) -> None:
        app = App()

        @app.aget("/double/{n:int}")
        def double(deferred: Deferred, n: int):
            deferred.body(str(n * 2))

        async with TestClient(app) as client:
            response = await client.get("/double/21")
            assert response.text == "42"

    async def test_request_injected(self) -> None:
        app = App()

        @app.apost("/echo")
        async def echo(deferred: Deferred, request: Request):
            deferred.body(await request.text())

        async with TestClient(app) as client:
            response = await client.post("/echo", body=b"ping")
            assert response.text == "ping"

    async def test_async_handler_awaits_before_finishing(self) -> None:
        app = App()

        @app.aget("/")
        async def index(deferred: Deferred):
            await asyncio.sleep(0.01)
            deferred.body("after sleep")

        async with TestClient(app) as client:
            response = await client.get("/")
            assert response.text == "after sleep"

    async def test_callable_body(self) -> None:
        app = App()

        @app.aget("/")
        def index(deferred: Deferred):
            deferred.body(lambda: "from block")

        async with TestClient(app) as client:
            response = await client.get("/")
            assert response.text == "from block"

    async def test_json_body(self) -> None:
        app = App()

        @app.aget("/")
        def index(deferred: Deferred):
            deferred.body({"ok": True})

        async with TestClient(app) as client:
            response = await client.get("/")
            assert "application/json" in response.content_type
            assert response.text == '{"ok": true}'

    async def test_chunked_body(self) -> None:
        app = App()

        @app.aget("/")
        def index(deferred: Deferred):
            deferred.body(chunk for chunk in ("one ", "two ", "three"))

        async with TestClient(app) as client:
            response = await client.get("/")
            assert response.status == 200
            assert response.text == "one two three"
            assert response.header("transfer-encoding") == "chunked"

    async def test_async_iterable_body(self) -> None:
        app = App()

        async def chunks():
            for part in ("a", "b"):
                await asyncio.sleep(0)
                yield part

        @app.aget("/")
        def index(deferred: Deferred):
            deferred.body(chunks())

        async with TestClient(app) as client:
            response = await client.get("/")
            assert response.text == "ab"

    async def test_inline_template_body(self) -> None:
        app = App()

        @app.aget("/hi/{name}")
        def hi(deferred: Deferred, name: str):
            deferred.body(Template.inline("<h1>{{ name }}</h1>", name=name))

        async with TestClient(app) as client:
            response = await client.get("/hi/ada")
            assert response.text == "<h1>ada</h1>"

    async def test_response_body_keeps_its_status(self) -> None:
        app = App()

        @app.aget("/")
        def index(deferred: Deferred):
            deferred.body(Response("accepted").with_status(202))

        async with TestClient(app) as client:
            response = await client.get("/")
            assert response.status == 202
            assert response.text == "accepted"

    async def test_empty_body(self) -> None:
        app = App()

        @app.aget("/")
        def index(deferred: Deferred):
            deferred.status = 204
            deferred.body()

        async with TestClient(app) as client:
            response = await client.get("/")
            assert response.status == 204
            assert response.body == b""

    async def test_return_value_ignored(self) -> None:
        app = App()

        @app.aget("/")
        def index(deferred: Deferred):
            deferred.body("from body")
            return "from return"

        async with TestClient(app) as client:
            response = await client.get("/")
            assert response.text == "from body"

    async def test_head_request(self) -> None:
        app = App()

        @app.aget("/")
        def index(deferred: Deferred):
            deferred.headers["X-Probe"] = "yes"
            deferred.body("not sent")

        async with TestClient(app) as client:
            response = await client.head("/")
            assert response.status == 200
            assert response.header("X-Probe") == "yes"
            assert response.body == b""

    async def test_other_methods(self) -> None:
        app = App()

        @app.aput("/item")
        def put(deferred: Deferred):
            deferred.body("put")

        @app.adelete("/item")
        def delete(deferred: Deferred):
            deferred.body("deleted")

        @app.aroute("/any", methods=["PATCH"])
        def patch(deferred: Deferred):
            deferred.body("patched")

        async with TestClient(app) as client:
            assert (await client.put("/item")).text == "put"
            assert (await client.delete("/item")).text == "deleted"
            assert (await client.request("PATCH", "/any")).text == "patched"

    async def test_never_finishing_route_times_out_in_client(self) -> None:
        app = App()

        @app.aget("/")
        def index(deferred: Deferred):
            pass

        async with TestClient(app) as client:
            with pytest.raises(TimeoutError):
                await client.get("/", timeout=0.05)


class TestScheduling:
    async def test_handler_runs_after_suspend(self) -> None:
        app = App()
        order: list[str] = []

        async def record(request: Request, next):
            response = await next(request)
            order.append("suspended")
            return response

        app.add_middleware(record)

        @app.aget("/")
        def index(deferred: Deferred):
            order.append("handler")
            deferred.body("ok")

        async with TestClient(app) as client:
            await client.get("/")
        assert order == ["suspended", "handler"]

    async def test_call_later(self) -> None:
        app = App()

        @app.aget("/")
        def index(deferred: Deferred):
            deferred.call_later(0.01, deferred.body, "later")

        async with TestClient(app) as client:
            response = await client.get("/")
            assert response.text == "later"

    async def test_spawn(self) -> None:
        app = App()

        async def fetch() -> str:
            await asyncio.sleep(0)
            return "fetched"

        @app.aget("/")
        def index(deferred: Deferred):
            async def work() -> None:
                deferred.body(await fetch())

            deferred.spawn(work())

        async with TestClient(app) as client:
            response = await client.get("/")
            assert response.text == "fetched"

    async def test_get_request_inside_body(self) -> None:
        app = App()

        @app.aget("/who")
        def who(deferred: Deferred):
            deferred.call_soon(lambda: deferred.body(get_request().path))

        async with TestClient(app) as client:
            response = await client.get("/who")
            assert response.text == "/who"

    async def test_provider_injected(self) -> None:
        app = App()

        class Clock:
            def now(self) -> str:
                return "noon"

        app.provide(Clock, Clock)

        @app.aget("/")
        def index(deferred: Deferred, clock: Clock):
            deferred.body(clock.now())

        async with TestClient(app) as client:
            response = await client.get("/")
            assert response.text == "noon"

    async def test_middleware_headers_do_not_apply(self) -> None:
        app = App()

        async def tag(request: Request, next):
            response = await next(request)
            return response.with_header("X-Tag", "1")

        app.add_middleware(tag)

        @app.aget("/deferred")
        def deferred_route(deferred: Deferred):
            deferred.body("d")

        @app.get("/sync")
        def sync_route():
            return "s"

        async with TestClient(app) as client:
            deferred_response = await client.get("/deferred")
            sync_response = await client.get("/sync")
        assert deferred_response.text == "d"
        assert deferred_response.header("X-Tag") is None
        assert sync_response.header("X-Tag") == "1"

    async def test_concurrent_requests_finish_independently(self) -> None:
        app = App()

        @app.aget("/wait/{ms:int}")
        def wait(deferred: Deferred, ms: int):
            deferred.call_later(ms / 1000, deferred.body, f"waited {ms}")

        async with TestClient(app) as client:
            slow, fast = await asyncio.gather(client.get("/wait/30"), client.get("/wait/1"))
        assert slow.text == "waited 30"
        assert fast.text == "waited 1"


class TestErrors:
    async def test_default_500_names_exception(self) -> None:
        app = App()

        @app.aget("/")
        def index():
            raise RuntimeError("boom")

        async with TestClient(app) as client:
            response = await client.get("/")
            assert response.status == 500
            assert "RuntimeError" in response.text
            assert "boom" in response.text

    async def test_registered_exception_handler(self) -> None:
        app = App()

        @app.aget("/")
        def index():
            raise RuntimeError("boom")

        @app.error(RuntimeError)
        def problem(request: Request, exc: Exception):
            return f"problem: {type(exc).__name__} {exc}"

        async with TestClient(app) as client:
            response = await client.get("/")
            assert response.status == 500
            assert response.text == "problem: RuntimeError boom"

    async def test_handler_found_along_mro(self) -> None:
        app = App()

        @app.aget("/")
        def index():
            raise KeyError("missing")

        @app.error(LookupError)
        def lookup(request: Request, exc: Exception):
            return "lookup failed"

        async with TestClient(app) as client:
            response = await client.get("/")
            assert response.status == 500
            assert response.text == "lookup failed"

    async def test_500_handler_catches_everything(self) -> None:
        app = App()

        @app.aget("/")
        def index():
            raise ValueError("bad")

        @app.error(500)
        def server_error():
            return "sorry"

        async with TestClient(app) as client:
            response = await client.get("/")
            assert response.status == 500
            assert response.text == "sorry"

    async def test_http_error_uses_its_status(self) -> None:
        app = App()

        @app.aget("/")
        def index():
            raise NotFound("no such thing")

        async with TestClient(app) as client:
            response = await client.get("/")
            assert response.status == 404
            assert response.text == "no such thing"

    async def test_error_in_call_later_callback(self) -> None:
        app = App()

        def explode() -> None:
            raise RuntimeError("late boom")

        @app.aget("/")
        def index(deferred: Deferred):
            deferred.call_later(0.01, explode)

        @app.error(RuntimeError)
        def problem(request: Request, exc: Exception):
            return f"problem: {exc}"

        async with TestClient(app) as client:
            response = await client.get("/")
            assert response.status == 500
            assert response.text == "problem: late boom"

    async def test_error_in_spawned_task(self) -> None:
        app = App()

        async def work() -> None:
            await asyncio.sleep(0)
            raise RuntimeError("task boom")

        @app.aget("/")
        def index(deferred: Deferred):
            deferred.spawn(work())

        async with TestClient(app) as client:
            response = await client.get("/")
            assert response.status == 500
            assert "task boom" in response.text

    async def test_guarded_callback_error(self) -> None:
        app = App()

        @app.aget("/")
        def index(deferred: Deferred):
            callback = deferred.guard(lambda value: 1 / value)
            asyncio.get_running_loop().call_soon(callback, 0)

        async with TestClient(app) as client:
            response = await client.get("/")
            assert response.status == 500
            assert "ZeroDivisionError" in response.text

    async def test_show_exceptions_renders_diagnostic_page(self) -> None:
        app = App(AppConfig(show_exceptions=True))

        @app.aget("/")
        def index():
            raise RuntimeError("visible")

        @app.error(RuntimeError)
        def hidden():
            return "should not be used"

        async with TestClient(app) as client:
            response = await client.get("/")
            assert response.status == 500
            assert "text/html" in response.content_type
            assert "RuntimeError" in response.text
            assert "visible" in response.text
            assert "deferred response" in response.text

    async def test_debug_implies_show_exceptions(self) -> None:
        app = App(AppConfig(debug=True))

        @app.aget("/")
        def index():
            raise RuntimeError("debugging")

        async with TestClient(app) as client:
            response = await client.get("/")
            assert "<!DOCTYPE html>" in response.text

    async def test_failing_error_handler_gives_bare_500(self, caplog) -> None:
        app = App()

        @app.aget("/")
        def index():
            raise RuntimeError("first")

        @app.error(RuntimeError)
        def broken(request: Request, exc: Exception):
            raise ValueError("handler broke")

        with caplog.at_level(logging.ERROR, logger="tarry.deferred"):
            async with TestClient(app) as client:
                response = await client.get("/")
        assert response.status == 500
        assert response.text == "Internal Server Error"
        assert any("Error while completing" in r.getMessage() for r in caplog.records)

    async def test_invalid_status_is_an_error(self) -> None:
        app = App()

        @app.aget("/")
        def index(deferred: Deferred):
            deferred.status = 42

        async with TestClient(app) as client:
            response = await client.get("/")
            assert response.status == 500
            assert "Invalid HTTP status" in response.text


class TestHalt:
    async def test_status_only(self) -> None:
        app = App()

        @app.aget("/")
        def index():
            halt(404)

        async with TestClient(app) as client:
            response = await client.get("/")
            assert response.status == 404
            assert response.text == ""

    async def test_status_only_with_status_handler(self) -> None:
        app = App()

        @app.aget("/")
        def index():
            halt(404)

        @app.error(404)
        def missing():
            return "not here"

        async with TestClient(app) as client:
            response = await client.get("/")
            assert response.status == 404
            assert response.text == "not here"

    async def test_status_and_body_through_handler(self) -> None:
        app = App()

        @app.aget("/")
        def index():
            halt(406, "Format not supported")

        @app.error(406)
        def problem(request: Request, exc):
            return "problem: " + exc.detail

        async with TestClient(app) as client:
            response = await client.get("/")
            assert response.status == 406
            assert response.text == "problem: Format not supported"

    async def test_body_only_keeps_status(self) -> None:
        app = App()

        @app.aget("/")
        def index(deferred: Deferred):
            deferred.status = 202
            halt("stopped early")

        async with TestClient(app) as client:
            response = await client.get("/")
            assert response.status == 202
            assert response.text == "stopped early"

    async def test_headers_merge_by_key(self) -> None:
        app = App()

        @app.aget("/")
        def index(deferred: Deferred):
            deferred.headers["X-Keep"] = "kept"
            deferred.headers["X-Swap"] = "old"
            halt(503, {"X-Swap": "new", "Retry-After": "5"}, "busy")

        async with TestClient(app) as client:
            response = await client.get("/")
            assert response.status == 503
            assert response.text == "busy"
            assert response.header("X-Keep") == "kept"
            assert response.header("X-Swap") == "new"
            assert response.header("Retry-After") == "5"

    async def test_halt_from_timer_callback(self) -> None:
        app = App()

        @app.aget("/")
        def index(deferred: Deferred):
            deferred.call_later(0.01, halt, 410, "gone")

        async with TestClient(app) as client:
            response = await client.get("/")
            assert response.status == 410
            assert response.text == "gone"

    async def test_unsupported_value_is_500(self) -> None:
        app = App()

        @app.aget("/")
        def index():
            halt(1.5)

        async with TestClient(app) as client:
            response = await client.get("/")
            assert response.status == 500
            assert "not supported as a halt value" in response.text

    async def test_halt_in_sync_route(self) -> None:
        app = App()

        @app.get("/")
        def index():
            halt(403, "nope")

        async with TestClient(app) as client:
            response = await client.get("/")
            assert response.status == 403
            assert response.text == "nope"


class TestDoubleFinish:
    async def test_first_body_wins(self, caplog) -> None:
        app = App()

        @app.aget("/")
        def index(deferred: Deferred):
            deferred.body("first")
            deferred.body("second")

        with caplog.at_level(logging.WARNING, logger="tarry.deferred"):
            async with TestClient(app) as client:
                response = await client.get("/")
        assert response.text == "first"
        assert any("already finished" in r.getMessage() for r in caplog.records)

    async def test_error_after_finish_is_dropped(self, caplog) -> None:
        app = App()

        @app.aget("/")
        def index(deferred: Deferred):
            deferred.body("done")
            raise RuntimeError("too late")

        with caplog.at_level(logging.WARNING, logger="tarry.deferred"):
            async with TestClient(app) as client:
                response = await client.get("/")
                # Let the settle task run before the client exits
                await asyncio.sleep(0.01)
        assert response.status == 200
        assert response.text == "done"
        assert any("dropping Failed" in r.getMessage() for r in caplog.records)


async def _raw_get(app: App, path: str = "/") -> list[dict]:
    """Drive *app* over ASGI and return every message it sent."""
    sent: list[dict] = []

    async def receive() -> dict:
        return {"type": "http.request", "body": b"", "more_body": False}

    async def send(message: dict) -> None:
        sent.append(message)

    scope = {"type": "http", "method": "GET", "path": path, "headers": [], "query_string": b""}
    await asyncio.wait_for(app(scope, receive, send), timeout=5.0)
    return sent


def _content_types(messages: list[dict]) -> list[bytes]:
    start = messages[0]
    assert start["type"] == "http.response.start"
    return [value for name, value in start["headers"] if name == b"content-type"]


class TestContentTypeHeader:
    async def test_assigned_header_sent_once(self) -> None:
        app = App()

        @app.aget("/")
        def index(deferred: Deferred):
            deferred.headers["Content-Type"] = "text/plain"
            deferred.body("plain")

        assert _content_types(await _raw_get(app)) == [b"text/plain"]

    async def test_halt_headers_sent_once(self) -> None:
        app = App()

        @app.aget("/")
        def index():
            halt(200, {"content-type": "text/plain"}, "x")

        assert _content_types(await _raw_get(app)) == [b"text/plain"]

    async def test_error_handler_after_halt_sets_content_type(self) -> None:
        app = App()

        @app.aget("/")
        def index(deferred: Deferred):
            deferred.headers["Content-Type"] = "text/csv"
            halt(406, "Format not supported")

        @app.error(406)
        def not_acceptable(request, exc):
            return Response(f"problem: {exc.detail}").with_header("Content-Type", "text/plain")

        messages = await _raw_get(app)
        assert messages[0]["status"] == 406
        assert _content_types(messages) == [b"text/plain"]
        assert messages[1]["body"] == b"problem: Format not supported"


class TestHaltWithResponse:
    async def test_response_keeps_its_status_and_headers(self) -> None:
        app = App()

        @app.aget("/")
        def index():
            halt(Response("made").with_status(201).with_header("X-Made", "1"))

        async with TestClient(app) as client:
            response = await client.get("/")
            assert response.status == 201
            assert response.text == "made"
            assert response.header("X-Made") == "1"


class TestAwaitableBody:
    async def test_coroutine_block_is_rejected(self) -> None:
        app = App()

        async def fetch() -> str:
            return "never sent"

        @app.aget("/")
        def index(deferred: Deferred):
            deferred.body(fetch)

        async with TestClient(app) as client:
            response = await client.get("/")
            assert response.status == 500
            assert "DeferredError" in response.text
            assert "awaitable" in response.text
