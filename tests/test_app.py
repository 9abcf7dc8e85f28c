from httpx import ASGITransport, AsyncClient
import pytest

from community_microhelp.main import create_app


async def _client_for(settings, db):
    app = create_app(settings)
    app.state.db = db
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


@pytest.mark.asyncio
async def test_services_on_app_state(app, settings):
    assert app.state.settings is settings
    assert app.state.security.settings is settings
    assert app.state.uploads.upload_dir.name == "uploads"
    assert app.state.limiter.enabled is False


@pytest.mark.asyncio
async def test_rate_limit_returns_error_envelope(settings, db):
    settings.RATE_LIMIT_ENABLED = True
    settings.RATE_LIMIT = "2 per minute"

    async with await _client_for(settings, db) as client:
        statuses = [(await client.get("/groups")).status_code for _ in range(3)]
        limited = await client.get("/groups")

    assert statuses[:2] == [401, 401]
    assert statuses[2] == 429
    assert limited.json()["error"].startswith("Rate limit exceeded")


@pytest.mark.asyncio
async def test_health_is_not_rate_limited(settings, db):
    settings.RATE_LIMIT_ENABLED = True
    settings.RATE_LIMIT = "1 per minute"

    async with await _client_for(settings, db) as client:
        statuses = [(await client.get("/health")).status_code for _ in range(3)]

    assert statuses == [200, 200, 200]


@pytest.mark.asyncio
async def test_metrics_endpoint(settings, db):
    settings.METRICS_ENABLED = True

    async with await _client_for(settings, db) as client:
        await client.get("/health")
        response = await client.get("/metrics")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    sample = next(line for line in response.text.splitlines() if line.startswith("http_requests_total{"))
    assert 'handler="/health"' in sample
    assert 'status="2xx"' in sample
    assert sample.endswith(" 1.0")


@pytest.mark.asyncio
async def test_metrics_with_rate_limiting(settings, db):
    settings.METRICS_ENABLED = True
    settings.RATE_LIMIT_ENABLED = True
    settings.RATE_LIMIT = "2 per minute"

    async with await _client_for(settings, db) as client:
        statuses = [(await client.get("/groups")).status_code for _ in range(3)]
        scrapes = [(await client.get("/metrics")).status_code for _ in range(3)]

    assert statuses == [401, 401, 429]
    assert scrapes == [200, 200, 200]


def test_apps_keep_separate_metric_registries(settings, db):
    settings.METRICS_ENABLED = True
    first = create_app(settings)
    second = create_app(settings)
    assert first.state.instrumentator.registry is not second.state.instrumentator.registry


@pytest.mark.asyncio
async def test_metrics_disabled(client):
    response = await client.get("/metrics")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_request_id_is_echoed(client):
    response = await client.get("/health", headers={"X-Request-ID": "abc123"})
    assert response.headers["x-request-id"] == "abc123"
