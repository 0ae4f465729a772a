"""
ServerKit — Application Tests
==============================

What:  End-to-end tests through the full middleware stack, routes and
       exception handlers.
How:   create_app() with the mocked ConnectionManager from conftest,
       exercised through HTTPX's ASGITransport.
"""

import asyncio
from unittest.mock import patch

import pytest
from httpx import AsyncClient, ASGITransport

from serverkit.config import Settings
from serverkit.exceptions import (
    OperationTimeoutError,
    RequestTooLargeError,
    ValidationError,
)
from serverkit.main import create_app
from serverkit.middleware.handlers import async_handler, with_database_and_monitoring
from serverkit.performance import with_timeout


async def _client(app) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


class TestHealth:

    @pytest.mark.asyncio
    async def test_health_connects_and_reports(self, test_client):
        response = await test_client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["database"] == {
            "state": "connected",
            "readyState": 1,
            "host": "db.test",
            "name": "testdb",
        }
        assert "x-response-time" in response.headers
        assert "cache-control" not in response.headers

    @pytest.mark.asyncio
    async def test_health_unhealthy_when_database_down(self, test_client, engine_factory):
        engine_factory.side_effect = OSError("connection refused")

        response = await test_client.get("/health")

        assert response.status_code == 503
        body = response.json()
        assert body["status"] == "unhealthy"
        assert body["database"]["state"] == "disconnected"


class TestMetrics:

    @pytest.mark.asyncio
    async def test_metrics_snapshot(self, test_client):
        response = await test_client.get("/metrics")

        assert response.status_code == 200
        body = response.json()
        assert body["memory"]["rss"] > 0
        assert body["connectionPool"]["readyState"] == 0
        assert "cpuUsage" in body
        assert "timestamp" in body


class TestDatabasePing:

    @pytest.mark.asyncio
    async def test_ping_success(self, test_client):
        response = await test_client.get("/api/database/ping")

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert response.json()["status"]["state"] == "connected"
        assert response.headers["cache-control"] == "public, max-age=300"

    @pytest.mark.asyncio
    async def test_ping_database_down(self, test_client, engine_factory):
        engine_factory.side_effect = OSError("connection refused")

        response = await test_client.get("/api/database/ping")

        assert response.status_code == 500
        body = response.json()
        assert body["success"] is False
        assert body["error"] == "Database operation failed"
        assert "connection refused" in body["message"]


class TestSizeLimit:

    @pytest.mark.asyncio
    async def test_configured_limit_applies(self, test_client):
        # MAX_REQUEST_SIZE=1kb is set in conftest
        response = await test_client.post("/api/database/ping", content=b"x" * 2048)

        assert response.status_code == 413
        assert response.json()["maxSize"] == "1kb"
        assert "x-response-time" in response.headers


class TestExceptionHandlers:

    @pytest.mark.asyncio
    async def test_forwarded_handler_error(self, connection_manager):
        app = create_app(manager=connection_manager)

        async def fail():
            raise RuntimeError("kaboom")

        app.add_api_route("/api/fail", async_handler(fail), methods=["GET"])

        async with await _client(app) as client:
            response = await client.get("/api/fail")

        assert response.status_code == 500
        assert response.json() == {
            "success": False,
            "error": "Internal server error",
            "message": "kaboom",
        }

    @pytest.mark.asyncio
    async def test_timeout_maps_to_504(self, connection_manager):
        app = create_app(manager=connection_manager)

        async def slow():
            return await with_timeout(asyncio.sleep(0.2), 5)

        app.add_api_route("/api/slow", slow, methods=["GET"])

        async with await _client(app) as client:
            response = await client.get("/api/slow")

        assert response.status_code == 504
        assert response.json()["message"] == "Operation timed out after 5ms"
        assert response.json()["timeoutMs"] == 5

    def test_timeout_error_type(self):
        assert issubclass(OperationTimeoutError, TimeoutError)

    @pytest.mark.asyncio
    async def test_validation_error_maps_to_400(self, connection_manager):
        app = create_app(manager=connection_manager)

        async def invalid():
            raise ValidationError("name must not be empty", field="name")

        app.add_api_route("/api/invalid", invalid, methods=["GET"])

        async with await _client(app) as client:
            response = await client.get("/api/invalid")

        assert response.status_code == 400
        assert response.json() == {
            "success": False,
            "error": "Validation failed",
            "message": "name must not be empty",
        }
        assert "x-response-time" in response.headers

    @pytest.mark.asyncio
    async def test_too_large_raised_by_endpoint_maps_to_413(self, connection_manager):
        app = create_app(manager=connection_manager)

        async def upload():
            raise RequestTooLargeError(max_size="1kb", content_length=4096)

        app.add_api_route("/api/upload", upload, methods=["GET"])

        async with await _client(app) as client:
            response = await client.get("/api/upload")

        assert response.status_code == 413
        assert response.json() == {
            "success": False,
            "error": "Request entity too large",
            "maxSize": "1kb",
        }

    @pytest.mark.asyncio
    async def test_connection_error_maps_to_503(self, connection_manager, engine_factory):
        engine_factory.side_effect = OSError("connection refused")
        app = create_app(manager=connection_manager)

        async def needs_database():
            await connection_manager.connect()
            return {"ok": True}

        app.add_api_route("/api/needs-db", needs_database, methods=["GET"])

        async with await _client(app) as client:
            response = await client.get("/api/needs-db")

        assert response.status_code == 503
        assert response.json() == {
            "success": False,
            "error": "Database unavailable",
            "message": "Could not connect to the database",
        }

    @pytest.mark.asyncio
    async def test_unhandled_error_is_500_with_response_time(self, connection_manager):
        app = create_app(manager=connection_manager)

        async def crash():
            raise RuntimeError("secret detail")

        app.add_api_route("/api/crash", crash, methods=["GET"])

        transport = ASGITransport(app=app, raise_app_exceptions=False)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/api/crash")

        assert response.status_code == 500
        assert response.json()["error"] == "Internal server error"
        assert "secret detail" not in response.text
        assert "x-response-time" in response.headers

    @pytest.mark.asyncio
    async def test_unhandled_error_does_not_escape_the_app(self, connection_manager):
        app = create_app(manager=connection_manager)

        async def crash():
            raise KeyError("missing")

        app.add_api_route("/api/crash", crash, methods=["GET"])

        async with await _client(app) as client:
            response = await client.get("/api/crash")

        assert response.status_code == 500
        assert "x-response-time" in response.headers


class TestLifespan:

    @pytest.mark.asyncio
    async def test_shutdown_closes_connection(self, connection_manager):
        app = create_app(manager=connection_manager)
        engine = await connection_manager.connect()

        with patch("serverkit.main.setup_logging"):
            async with app.router.lifespan_context(app):
                assert app.state.connection_manager is connection_manager

        engine.dispose.assert_awaited_once()
        assert connection_manager.engine is None

    @pytest.mark.asyncio
    async def test_startup_logs_listen_address(self, connection_manager, caplog):
        config = Settings(backend_host="127.0.0.1", backend_port=9000)
        app = create_app(manager=connection_manager, config=config)

        with patch("serverkit.main.setup_logging"):
            with caplog.at_level("INFO", logger="serverkit.main"):
                async with app.router.lifespan_context(app):
                    pass

        assert "Listening on: 127.0.0.1:9000" in caplog.text


class TestConfiguration:

    def test_slow_threshold_reaches_ping_monitoring(self, connection_manager):
        config = Settings(slow_request_threshold_ms=250)

        with patch(
            "serverkit.routes.health.with_database_and_monitoring",
            wraps=with_database_and_monitoring,
        ) as wrapped:
            create_app(manager=connection_manager, config=config)

        assert wrapped.call_args.kwargs["slow_threshold_ms"] == 250
