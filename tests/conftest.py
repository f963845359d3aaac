import fakeredis
import pytest
from fastapi.testclient import TestClient

from shortener.config import Settings
from shortener.main import create_app
from shortener.store import MappingStore


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'db' / 'urls.db'}",
        redis_url="",
        base_domain="http://sho.rt",
        code_length=6,
        max_batch_size=50,
        max_allocation_attempts=10,
        db_connect_attempts=1,
    )


@pytest.fixture
def store(settings):
    store = MappingStore.connect(settings)
    yield store
    store.close()


@pytest.fixture
def client(settings):
    # Context manager runs the lifespan (store setup and teardown)
    with TestClient(create_app(settings)) as client:
        yield client


@pytest.fixture
def fake_redis():
    return fakeredis.FakeRedis(decode_responses=True)
