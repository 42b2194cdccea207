"""
Shared test fixtures.

Tests run against an in-memory SQLite database and an in-process Redis
double; nothing external is required.
"""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import herald.models  # noqa: F401  (registers tables on Base.metadata)
from herald.db import Base, get_db
from herald.main import create_app
from herald.routers.utils.dependencies import get_redis


@pytest.fixture(scope="function")
def db():
    """Fresh in-memory database per test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    session = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture
def client(db, fake_redis):
    """Client with db and redis overrides."""
    app = create_app(testing=True)

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = lambda: fake_redis
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def admin_key(create_api_key):
    return create_api_key(scopes=["api_keys:manage"], name="admin")


@pytest.fixture
def admin_headers(admin_key):
    _, plaintext = admin_key
    return {"X-API-Key": plaintext}
