"""Tests for App: registration, freezing, lifespan, and the error boundary."""

import anyio
import pytest

from gatehouse.app import App
from gatehouse.config import AppConfig
from gatehouse.context import get_request
from gatehouse.data.database import Database
from gatehouse.data.migrate import BUNDLED_MIGRATIONS
from gatehouse.errors import ConfigurationError, Forbidden
from gatehouse.http.response import Response, json_response
from gatehouse.testing import TestClient


class TestRegistration:
    async def test_decorators(self) -> None:
        app = App()

        @app.get("/items/{id}")
        async def show(request):
            return {"id": request.path_params["id"]}

        @app.route("/items", methods=("POST", "PUT"))
        async def write(request):
            return {"method": request.method}

        assert [(r.method, r.path) for r in app.routes] == [
            ("GET", "/items/{id}"),
            ("POST", "/items"),
            ("PUT", "/items"),
        ]
        async with TestClient(app) as client:
            assert (await client.get("/items/42")).json() == {"id": "42"}
            assert (await client.put("/items")).json() == {"method": "PUT"}

    def test_malformed_template_fails_at_registration(self) -> None:
        app = App()
        with pytest.raises(ConfigurationError):
            app.add_route("GET", "/items/{id", lambda request: None)

    async def test_frozen_after_first_request(self) -> None:
        app = App()
        app.add_route("GET", "/", lambda request: {})
        async with TestClient(app) as client:
            await client.get("/")
        with pytest.raises(RuntimeError, match="Cannot modify the app"):
            app.add_route("GET", "/late", lambda request: {})
        with pytest.raises(RuntimeError):
            app.add_middleware(lambda request, next: next(request))

    def test_db_from_url(self) -> None:
        app = App(db="sqlite:///:memory:")
        assert isinstance(app.db, Database)


class TestHandlers:
    async def test_sync_handler(self) -> None:
        app = App()
        app.add_route("GET", "/sync", lambda request: {"sync": True})
        async with TestClient(app) as client:
            assert (await client.get("/sync")).json() == {"sync": True}

    async def test_response_passthrough(self) -> None:
        app = App()

        async def created(request):
            return json_response({"ok": True}, status=201).with_header("X-Trace", "t1")

        app.add_route("POST", "/things", created)
        async with TestClient(app) as client:
            response = await client.post("/things")
        assert response.status == 201
        assert response.header("x-trace") == "t1"

    async def test_request_context(self) -> None:
        app = App()

        async def whoami(request):
            return {"path": get_request().path, "method": get_request().method}

        app.add_route("GET", "/whoami", whoami)
        async with TestClient(app) as client:
            assert (await client.get("/whoami")).json() == {"path": "/whoami", "method": "GET"}

    def test_get_request_outside_request(self) -> None:
        with pytest.raises(LookupError):
            get_request()


class TestErrorBoundary:
    async def test_unexpected_exception(self, caplog) -> None:
        app = App()

        async def boom(request):
            msg = "db password is hunter2"
            raise RuntimeError(msg)

        app.add_route("GET", "/boom", boom)
        async with TestClient(app) as client:
            response = await client.get("/boom")
        assert response.status == 500
        assert response.json() == {"error": "server_error", "message": "Unexpected server error."}
        assert "500 GET /boom" in caplog.text

    async def test_debug_adds_exception_details(self) -> None:
        app = App(AppConfig(debug=True))

        async def boom(request):
            msg = "kaput"
            raise RuntimeError(msg)

        app.add_route("GET", "/boom", boom)
        async with TestClient(app) as client:
            body = (await client.get("/boom")).json()
        assert body["debug"] == {"type": "RuntimeError", "detail": "kaput"}

    async def test_error_raised_by_global_middleware(self) -> None:
        app = App()

        async def deny_all(request, next):
            raise Forbidden("Nope.")

        app.add_middleware(deny_all)
        app.add_route("GET", "/", lambda request: {})
        async with TestClient(app) as client:
            response = await client.get("/")
        assert response.status == 403
        assert response.json()["message"] == "Nope."

    async def test_global_middleware_sees_routing_errors(self) -> None:
        app = App()

        async def stamp(request, next):
            response = await next(request)
            return response.with_header("X-Seen", str(response.status))

        app.add_middleware(stamp)
        async with TestClient(app) as client:
            response = await client.get("/missing")
        assert response.status == 404
        assert response.header("x-seen") == "404"

    async def test_no_content_has_no_body(self) -> None:
        app = App()
        app.add_route("DELETE", "/x", lambda request: Response(body=b"ignored", status=204))
        async with TestClient(app) as client:
            response = await client.delete("/x")
        assert response.status == 204
        assert response.body == b""


class TestLifespan:
    async def test_hooks_run_in_order(self) -> None:
        calls = []
        app = App()

        @app.on_startup
        async def first():
            calls.append("start-1")

        @app.on_startup
        def second():
            calls.append("start-2")

        @app.on_shutdown
        async def stop():
            calls.append("stop")

        async with TestClient(app):
            assert calls == ["start-1", "start-2"]
        assert calls == ["start-1", "start-2", "stop"]

    async def test_asgi_lifespan_protocol(self) -> None:
        app = App()
        messages = iter([{"type": "lifespan.startup"}, {"type": "lifespan.shutdown"}])
        sent = []

        async def receive():
            return next(messages)

        async def send(message):
            sent.append(message["type"])

        await app({"type": "lifespan"}, receive, send)
        assert sent == ["lifespan.startup.complete", "lifespan.shutdown.complete"]

    async def test_startup_failure_reported(self) -> None:
        app = App()

        @app.on_startup
        async def broken():
            msg = "cannot reach storage"
            raise OSError(msg)

        messages = iter([{"type": "lifespan.startup"}])
        sent = []

        async def receive():
            return next(messages)

        async def send(message):
            sent.append(message)

        await app({"type": "lifespan"}, receive, send)
        assert sent == [{"type": "lifespan.startup.failed", "message": "cannot reach storage"}]

    async def test_background_tasks_run_between_startup_and_shutdown(self) -> None:
        app = App()
        calls = []
        started = anyio.Event()

        @app.background_task
        async def ticker():
            calls.append("task-start")
            started.set()
            try:
                await anyio.sleep_forever()
            finally:
                calls.append("task-cancelled")

        @app.on_shutdown
        def stop():
            calls.append("shutdown-hook")

        messages = [{"type": "lifespan.startup"}, {"type": "lifespan.shutdown"}]
        sent = []

        async def receive():
            message = messages.pop(0)
            if message["type"] == "lifespan.shutdown":
                await started.wait()
            return message

        async def send(message):
            sent.append(message["type"])

        await app({"type": "lifespan"}, receive, send)
        assert calls == ["task-start", "task-cancelled", "shutdown-hook"]
        assert sent == ["lifespan.startup.complete", "lifespan.shutdown.complete"]

    async def test_failing_background_task_is_logged(self, caplog) -> None:
        app = App()
        ran = anyio.Event()

        @app.background_task
        async def broken():
            ran.set()
            msg = "sweep exploded"
            raise RuntimeError(msg)

        messages = [{"type": "lifespan.startup"}, {"type": "lifespan.shutdown"}]
        sent = []

        async def receive():
            message = messages.pop(0)
            if message["type"] == "lifespan.shutdown":
                await ran.wait()
            return message

        async def send(message):
            sent.append(message["type"])

        await app({"type": "lifespan"}, receive, send)
        assert sent == ["lifespan.startup.complete", "lifespan.shutdown.complete"]
        assert "Background task" in caplog.text
        assert "sweep exploded" in caplog.text

    async def test_background_tasks_not_started_by_test_client(self) -> None:
        app = App()
        calls = []

        @app.background_task
        async def ticker():
            calls.append("ran")

        async with TestClient(app):
            await anyio.sleep(0)
        assert calls == []

    async def test_database_connected_and_migrated(self, tmp_path) -> None:
        app = App(db=f"sqlite:///{tmp_path / 'portal.db'}", migrations=BUNDLED_MIGRATIONS)
        async with TestClient(app):
            tables = await app.db.fetch_val(
                "SELECT COUNT(*) FROM sqlite_master WHERE type = 'table' AND name = 'users'"
            )
            assert tables == 1
