import pytest
from httpx import ASGITransport, AsyncClient


@pytest.mark.asyncio
async def test_livez(app_with_db) -> None:
    app, _ = app_with_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get("/api/v1/health/livez")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_readyz_reports_component_statuses(app_with_db) -> None:
    app, _ = app_with_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get("/api/v1/health/readyz")

    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "ready"
    components = payload["components"]
    assert components["event_store"] == {"status": "ready", "detail": "0 events stored"}
    assert components["metrics_cache"]["status"] == "ready"
    assert components["retention_scheduler"]["status"] == "disabled"


@pytest.mark.asyncio
async def test_readyz_flags_missing_event_table(app_with_db) -> None:
    app, session_factory = app_with_db
    async with session_factory() as session:
        connection = await session.connection()
        await connection.exec_driver_sql("DROP TABLE performance_events")
        await session.commit()

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get("/api/v1/health/readyz")

    payload = response.json()
    assert payload["status"] == "error"
    assert payload["components"]["event_store"]["status"] == "error"
