import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from flagship import cache
from flagship.database import init_db
from flagship.main import app
from flagship.routers.flags import get_db


class FakeRedis:
    """In-memory stand-in for the handful of redis commands the cache uses."""

    def __init__(self):
        self.store = {}
        self.published = []

    def get(self, key):
        return self.store.get(key)

    def set(self, key, value):
        self.store[key] = value
        return True

    def delete(self, key):
        return 1 if self.store.pop(key, None) is not None else 0

    def publish(self, channel, message):
        self.published.append((channel, message))
        return 1


@pytest.fixture
def fake_redis(monkeypatch):
    fake = FakeRedis()
    monkeypatch.setattr(cache, "_redis", fake)
    return fake


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def client(engine, fake_redis):
    TestingSession = sessionmaker(autoflush=False, bind=engine)

    def override_get_db():
        db = TestingSession()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def premium_targeting():
    return {
        "enabled": True,
        "rules": [
            {
                "id": "premium-users",
                "description": "Premium plan users",
                "conditions": [{"attribute": "plan", "operator": "eq", "value": "premium"}],
                "rolloutPercentage": 100,
                "value": "premium-checkout",
                "enabled": True,
            }
        ],
        "defaultRule": {"rolloutPercentage": 0, "value": False},
    }
