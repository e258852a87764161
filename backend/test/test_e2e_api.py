"""
E2E tests: exercise the real FastAPI routes and ASGI middleware over an
in-memory SQLite database. Only the database session is overridden.
"""
import json
import pytest
from unittest.mock import AsyncMock, MagicMock, patch
import httpx

from app import main
from app.api.deps import get_view_counter
from app.config import get_settings
from app.main import api, app
from app.models.database import get_db
from app.services.view_counter import ViewCounterService


class FailingStore:
    async def find(self, key):
        raise ConnectionError("store unavailable")

    async def create(self, key):
        raise ConnectionError("store unavailable")

    async def save(self, record):
        raise ConnectionError("store unavailable")


@pytest.fixture
async def client(session_factory):
    """Yield an httpx.AsyncClient wired to the wrapped ASGI app."""
    async def _override_get_db():
        async with session_factory() as session:
            yield session

    api.dependency_overrides[get_db] = _override_get_db
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app),
        base_url="http://testserver",
    ) as ac:
        yield ac
    api.dependency_overrides.clear()


def _from(ip: str) -> dict[str, str]:
    return {"X-Forwarded-For": ip}


class TestViewEndpoint:
    @pytest.mark.asyncio
    async def test_first_view_returns_badge(self, client: httpx.AsyncClient):
        resp = await client.get("/view/repo1", headers=_from("1.2.3.4"))
        assert resp.status_code == 200
        assert resp.json() == {
            "schemaVersion": 1,
            "label": "Profile View",
            "message": "1",
            "color": "blue",
        }

    @pytest.mark.asyncio
    async def test_repeat_view_not_counted(self, client: httpx.AsyncClient):
        await client.get("/view/repo1", headers=_from("1.2.3.4"))
        resp = await client.get("/view/repo1", headers=_from("1.2.3.4"))
        assert resp.json()["message"] == "1"

    @pytest.mark.asyncio
    async def test_distinct_clients_counted(self, client: httpx.AsyncClient):
        await client.get("/view/repo1", headers=_from("1.2.3.4"))
        await client.get("/view/repo1", headers=_from("1.2.3.4"))
        resp = await client.get("/view/repo1", headers=_from("5.6.7.8"))
        assert resp.json()["message"] == "2"

    @pytest.mark.asyncio
    async def test_peer_address_used_without_forwarded_header(self, client: httpx.AsyncClient):
        assert (await client.get("/view/repo1")).json()["message"] == "1"
        assert (await client.get("/view/repo1")).json()["message"] == "1"
        resp = await client.get("/view/repo1", headers=_from("1.2.3.4"))
        assert resp.json()["message"] == "2"

    @pytest.mark.asyncio
    async def test_repositories_are_independent(self, client: httpx.AsyncClient):
        await client.get("/view/repo1", headers=_from("1.2.3.4"))
        await client.get("/view/repo1", headers=_from("5.6.7.8"))
        resp = await client.get("/view/repo2", headers=_from("1.2.3.4"))
        assert resp.json()["message"] == "1"

    @pytest.mark.asyncio
    async def test_store_failure_returns_opaque_500(self, client: httpx.AsyncClient):
        api.dependency_overrides[get_view_counter] = lambda: ViewCounterService(FailingStore())
        resp = await client.get("/view/repo1", headers=_from("1.2.3.4"))
        assert resp.status_code == 500
        assert resp.text == "Server Error"

    @pytest.mark.asyncio
    async def test_key_too_long_rejected(self, client: httpx.AsyncClient):
        resp = await client.get("/view/" + "x" * 256)
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_request_id_echoed(self, client: httpx.AsyncClient):
        resp = await client.get("/view/repo1", headers={"X-Request-ID": "req-123"})
        assert resp.headers["x-request-id"] == "req-123"

    @pytest.mark.asyncio
    async def test_request_id_generated(self, client: httpx.AsyncClient):
        resp = await client.get("/view/repo1")
        assert resp.headers["x-request-id"]

    @pytest.mark.asyncio
    async def test_key_lock_wraps_record(self, client: httpx.AsyncClient, mock_redis):
        settings = get_settings()
        with patch.object(settings, "VIEW_KEY_LOCK_ENABLED", True), \
                patch("app.utils.view_lock.get_redis", return_value=mock_redis):
            resp = await client.get("/view/repo1", headers=_from("1.2.3.4"))
        assert resp.json()["message"] == "1"
        assert "lock:view:repo1" not in mock_redis.storage

    @pytest.mark.asyncio
    async def test_busy_key_lock_returns_opaque_500(self, client: httpx.AsyncClient, mock_redis):
        mock_redis.storage["lock:view:repo1"] = "other-worker"
        settings = get_settings()
        with patch.object(settings, "VIEW_KEY_LOCK_ENABLED", True), \
                patch.object(settings, "VIEW_KEY_LOCK_WAIT_SECONDS", 0), \
                patch("app.utils.view_lock.get_redis", return_value=mock_redis):
            resp = await client.get("/view/repo1", headers=_from("1.2.3.4"))
        assert resp.status_code == 500
        assert resp.text == "Server Error"
        assert mock_redis.storage["lock:view:repo1"] == "other-worker"


class TestRedisBackend:
    @pytest.mark.asyncio
    async def test_scenario_through_redis_store(self, client: httpx.AsyncClient, mock_redis):
        settings = get_settings()
        with patch.object(settings, "COUNTER_STORE_BACKEND", "redis"), \
                patch("app.api.deps.get_redis", return_value=mock_redis):
            first = await client.get("/view/repo1", headers=_from("1.2.3.4"))
            repeat = await client.get("/view/repo1", headers=_from("1.2.3.4"))
            other = await client.get("/view/repo1", headers=_from("5.6.7.8"))
        assert [r.json()["message"] for r in (first, repeat, other)] == ["1", "1", "2"]
        doc = json.loads(mock_redis.storage["viewcount:repo1"])
        assert doc["count"] == 2
        assert [e["client_id"] for e in doc["attributions"]] == ["1.2.3.4", "5.6.7.8"]


class TestLifespan:
    @pytest.mark.asyncio
    async def test_store_down_at_startup_is_logged_not_fatal(self):
        down = ConnectionError("database unreachable")
        broken_engine = MagicMock()
        broken_engine.begin.side_effect = down
        broken_engine.dispose = AsyncMock()

        started = False
        with patch.object(main.settings, "ENVIRONMENT", "development"), \
                patch.object(main, "engine", broken_engine), \
                patch.object(main, "AsyncSessionLocal", side_effect=down), \
                patch.object(main, "setup_telemetry", return_value=False), \
                patch.object(main, "close_redis", AsyncMock()), \
                patch.object(main, "logger") as logger:
            async with main.lifespan(api):
                started = True

        assert started
        failed = [
            c.kwargs["store"] for c in logger.error.call_args_list
            if c.args[0] == "store_connect_error"
        ]
        assert failed == ["sql", "database"]
        broken_engine.dispose.assert_awaited_once()



class TestHealthAndMetrics:
    @pytest.mark.asyncio
    async def test_health_returns_200(self, client: httpx.AsyncClient):
        resp = await client.get("/health")
        assert resp.status_code == 200
        body = resp.json()
        assert body["checks"]["api"] == "ok"
        assert "status" in body
        assert "version" in body

    @pytest.mark.asyncio
    async def test_metrics_exposed(self, client: httpx.AsyncClient):
        await client.get("/view/repo1", headers=_from("1.2.3.4"))
        resp = await client.get("/metrics/")
        assert resp.status_code == 200
        assert "viewcounter_view_events_total" in resp.text
