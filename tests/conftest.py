import fakeredis
import httpx
import pytest
import pytest_asyncio
from sqlalchemy.orm import sessionmaker

from boxoffice.db import Base, make_engine
from boxoffice.deps import get_db, get_gateway, get_notifier, get_redis
from boxoffice.main import app
from tests.helpers import FakeProvider, RecordingNotifier, make_gateway


@pytest.fixture
def engine(tmp_path):
    eng = make_engine(f"sqlite:///{tmp_path / 'boxoffice_test.db'}")
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest_asyncio.fixture(scope="function")
async def redis():
    r = fakeredis.FakeAsyncRedis(decode_responses=True)
    await r.flushall()
    try:
        yield r
    finally:
        await r.flushall()
        await r.aclose()


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest_asyncio.fixture(scope="function")
async def client(session_factory, redis, provider, notifier):
    def override_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    gateway = make_gateway(provider)
    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_redis] = lambda: redis
    app.dependency_overrides[get_gateway] = lambda: gateway
    app.dependency_overrides[get_notifier] = lambda: notifier

    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test", timeout=10.0) as c:
        yield c

    app.dependency_overrides.clear()
