# tests/smoke/test_health.py
import pytest

from libs.infra.db import build_engine

pytestmark = pytest.mark.anyio


async def test_liveness(client):
    response = await client.get("/health/live")
    assert response.status_code == 200
    assert response.json() == {"status": "up"}


async def test_readiness_reports_dependencies(client):
    response = await client.get("/health/ready")
    assert response.status_code == 200
    data = response.json()
    assert data["ready"] is True
    assert data["dependencies"] == {"database": True, "redis": True}


async def test_readiness_fails_without_database(client, container, tmp_path):
    """Недоступная БД переводит сервис в 503, Redis остаётся зелёным."""
    broken = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'nested' / 'auth.db'}")
    healthy, container.engine = container.engine, broken
    try:
        response = await client.get("/health/ready")
    finally:
        container.engine = healthy
        await broken.dispose()
    assert response.status_code == 503
    data = response.json()
    assert data["ready"] is False
    assert data["dependencies"] == {"database": False, "redis": True}
