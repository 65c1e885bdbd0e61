from unittest.mock import AsyncMock, MagicMock

import pytest
from httpx import ASGITransport, AsyncClient

from comment_pipeline.api.endpoints.capture import GENERIC_ERROR_BODY, get_edge_capture
from comment_pipeline.api.main import create_app
from comment_pipeline.config.settings import Settings, settings
from comment_pipeline.core.edge_capture import EdgeCapture
from comment_pipeline.core.errors import BusPublishError


@pytest.fixture
def use_bus(app):
    """Routes the capture endpoint to the given bus."""
    def _use(bus):
        app.dependency_overrides[get_edge_capture] = lambda: EdgeCapture(bus=bus, timeout=2.0)
    return _use


@pytest.mark.asyncio
async def test_capture_returns_204_with_empty_body(client, use_bus, bus):
    use_bus(bus)

    response = await client.get("/comment", params={"requestId": "abc", "body": "hello"})

    assert response.status_code == 204
    assert response.content == b""
    (delivery,) = await bus.claim("comment-processor", batch_size=10, visibility_timeout=30)
    assert delivery.envelope["submission"]["requestId"] == "abc"
    assert delivery.envelope["submission"]["fields"] == {"requestId": "abc", "body": "hello"}
    assert delivery.envelope["rawQuery"] == "requestId=abc&body=hello"


@pytest.mark.asyncio
async def test_capture_without_request_id_still_returns_204(client, use_bus, bus):
    use_bus(bus)

    response = await client.get("/comment", params={"body": "anonymous"})

    assert response.status_code == 204
    (delivery,) = await bus.claim("comment-processor", batch_size=10, visibility_timeout=30)
    assert delivery.envelope["submission"]["requestId"]


@pytest.mark.asyncio
async def test_capture_returns_generic_500_when_bus_fails(client, use_bus):
    failing_bus = MagicMock()
    failing_bus.publish = AsyncMock(side_effect=BusPublishError("database unreachable at 10.0.0.5"))
    use_bus(failing_bus)

    response = await client.get("/comment", params={"requestId": "abc"})

    assert response.status_code == 500
    assert response.json() == GENERIC_ERROR_BODY
    assert "10.0.0.5" not in response.text


@pytest.mark.asyncio
async def test_capture_returns_generic_500_on_unexpected_bus_error(client, use_bus):
    broken_bus = MagicMock()
    broken_bus.publish = AsyncMock(side_effect=RuntimeError("connection pool closed"))
    use_bus(broken_bus)

    response = await client.get("/comment", params={"requestId": "abc"})

    assert response.status_code == 500
    assert response.json() == GENERIC_ERROR_BODY
    assert "connection pool" not in response.text


@pytest.mark.asyncio
async def test_capture_ignores_request_body(client, use_bus, bus):
    use_bus(bus)

    response = await client.request("GET", "/comment", params={"requestId": "abc"}, content=b"ignored payload")

    assert response.status_code == 204
    (delivery,) = await bus.claim("comment-processor", batch_size=10, visibility_timeout=30)
    assert "ignored payload" not in str(delivery.envelope)


@pytest.mark.asyncio
async def test_health_reports_database_state(client, mocker):
    mocker.patch("comment_pipeline.api.main.test_db_connection", AsyncMock(return_value=True))

    response = await client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["database"] == "reachable"
    assert body["processor_worker"] == "stopped"


@pytest.mark.asyncio
async def test_metrics_endpoint_is_mounted(client):
    response = await client.get("/metrics/")

    assert response.status_code == 200
    assert "comment_pipeline_submissions_captured_total" in response.text


@pytest.mark.asyncio
async def test_capture_accepts_public_hostname_with_default_hosts(monkeypatch, bus):
    monkeypatch.delenv("ALLOWED_HOSTS", raising=False)
    monkeypatch.setattr(settings, "ALLOWED_HOSTS", Settings(_env_file=None).ALLOWED_HOSTS)
    monkeypatch.setattr(settings, "DEBUG", False)
    edge_app = create_app()
    edge_app.dependency_overrides[get_edge_capture] = lambda: EdgeCapture(bus=bus, timeout=2.0)

    async with AsyncClient(transport=ASGITransport(app=edge_app), base_url="http://comments.example.net") as ac:
        response = await ac.get("/comment", params={"requestId": "abc"})

    assert response.status_code == 204


@pytest.mark.asyncio
async def test_restricted_hosts_reject_unknown_hostname(monkeypatch, bus):
    monkeypatch.setattr(settings, "ALLOWED_HOSTS", ["comments.example.net"])
    monkeypatch.setattr(settings, "DEBUG", False)
    edge_app = create_app()
    edge_app.dependency_overrides[get_edge_capture] = lambda: EdgeCapture(bus=bus, timeout=2.0)

    async with AsyncClient(transport=ASGITransport(app=edge_app), base_url="http://other.example.org") as ac:
        response = await ac.get("/comment", params={"requestId": "abc"})

    assert response.status_code == 400
