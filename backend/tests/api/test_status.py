# tests/api/test_status.py
import pytest
from fastapi import status
from httpx import AsyncClient
from pymongo.errors import ServerSelectionTimeoutError
from redis.exceptions import ConnectionError as RedisConnectionError

from disparador.api.endpoints import status as status_endpoint
from disparador.core.database import get_database, get_redis_client
from disparador.main import app

pytestmark = pytest.mark.asyncio

class FakeDatabase:
    def __init__(self, error=None):
        self.error = error

    async def command(self, name):
        if self.error:
            raise self.error
        return {"ok": 1}

class BrokenRedis:
    async def ping(self):
        raise RedisConnectionError("Connection refused")

@pytest.fixture
def health(monkeypatch):
    monkeypatch.setattr(status_endpoint, "_ping_celery_workers", lambda: {"worker@1": {"ok": "pong"}})

    def _override(db, redis):
        app.dependency_overrides[get_database] = lambda: db
        app.dependency_overrides[get_redis_client] = lambda: redis

    yield _override
    app.dependency_overrides.pop(get_database, None)
    app.dependency_overrides.pop(get_redis_client, None)

async def test_healthcheck_redis_down_is_degraded(client: AsyncClient, health):
    health(FakeDatabase(), BrokenRedis())

    response = await client.get("/api/v1/healthcheck")

    assert response.status_code == status.HTTP_200_OK
    body = response.json()
    assert body["overall_status"] == "degraded"
    assert body["components"]["session_store_redis"]["status"] == "degraded"
    assert body["components"]["database_mongodb"]["status"] == "ok"

async def test_healthcheck_without_redis_client(client: AsyncClient, health):
    health(FakeDatabase(), None)

    response = await client.get("/api/v1/healthcheck")

    assert response.status_code == status.HTTP_200_OK
    assert response.json()["overall_status"] == "degraded"

async def test_healthcheck_mongo_down_is_error(client: AsyncClient, health):
    health(FakeDatabase(ServerSelectionTimeoutError("no servers")), None)

    response = await client.get("/api/v1/healthcheck")

    assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
    assert response.json()["overall_status"] == "error"
