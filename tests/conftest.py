# tests/conftest.py
import httpx
import pytest
from fakeredis import FakeAsyncRedis, FakeServer

from apps.auth_svc.auth_svc_main import create_app
from apps.auth_svc.config.settings_auth import AuthServiceSettings
from libs.containers.auth_container import AuthContainer
from libs.infra.central_redis_client import CentralRedisClient
from libs.infra.db import build_engine
from tests.helpers import FakeOAuthClient, FrozenClock, RecordingNotifier, create_schema, make_settings


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


@pytest.fixture
def database_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'auth.db'}"


@pytest.fixture
def settings(database_url) -> AuthServiceSettings:
    return make_settings(database_url)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def oauth_client() -> FakeOAuthClient:
    return FakeOAuthClient()


@pytest.fixture
async def engine(settings):
    engine = build_engine(settings.DATABASE_URL)
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
async def redis():
    client = CentralRedisClient.from_client(FakeAsyncRedis(server=FakeServer(), decode_responses=True))
    yield client
    await client.close()


@pytest.fixture
def build_container(database_url, engine, redis, clock, notifier, oauth_client):
    """Контейнер с подменёнными часами, доставкой и OAuth; настройки можно переопределить."""

    def factory(**overrides) -> AuthContainer:
        return AuthContainer.build(
            make_settings(database_url, **overrides),
            engine=engine,
            redis=redis,
            clock=clock,
            notifier=notifier,
            provider_client=oauth_client,
        )

    return factory


@pytest.fixture
def container(build_container) -> AuthContainer:
    return build_container()


@pytest.fixture
def auth_service(container):
    return container.auth_service


@pytest.fixture
def mfa_service(container):
    return container.mfa_service


@pytest.fixture
def oauth_service(container):
    return container.oauth_service


@pytest.fixture
def app(settings, container):
    app = create_app(settings)
    app.state.container = container
    return app


@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client

