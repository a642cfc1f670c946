"""
Test configuration: in-memory SQLite per test, entity factories, API client.

Environment is set before any cmms module is imported so settings pick it up.
"""
import os
import uuid

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("AUTO_CREATE_DB", "false")
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("TZ_DEFAULT", "Europe/Bucharest")
os.environ.setdefault("RATE_LIMIT", "10000/minute")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from cmms.db import Base, get_db
from cmms.models.models import Asset, Person


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def make_person(db):
    def _make(display_name="Ion Popescu", **kwargs):
        person = Person(id=uuid.uuid4(), display_name=display_name, full_name=display_name, **kwargs)
        db.add(person)
        db.commit()
        return person
    return _make


@pytest.fixture
def make_asset(db):
    def _make(name="Press 1", **kwargs):
        asset = Asset(id=uuid.uuid4(), name=name, **kwargs)
        db.add(asset)
        db.commit()
        return asset
    return _make


@pytest.fixture
def person(make_person):
    return make_person()


@pytest.fixture
def asset(make_asset):
    return make_asset()


@pytest.fixture
def client(session_factory):
    from fastapi.testclient import TestClient
    from cmms.main import app

    def _override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _override_get_db
    # No context manager: startup would create tables on the configured engine
    yield TestClient(app)
    app.dependency_overrides.clear()
