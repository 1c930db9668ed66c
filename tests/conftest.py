import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from marketchat.db.base import Base
from marketchat.db import models_registry  # noqa: F401
from marketchat.models.users import User
from marketchat.services.directory_service import SqlDirectory


def _enable_fk(engine):
    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    _enable_fk(engine)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def file_engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'race.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    _enable_fk(engine)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


USERS = [
    {"id": "u1", "email": "u1@example.com", "full_name": "Ayesha Khan", "role": "customer"},
    {"id": "u2", "email": "u2@example.com", "full_name": "Bilal Ahmed", "role": "customer"},
    {"id": "s1", "email": "s1@example.com", "full_name": "SunRidge Solar", "role": "seller",
     "avatar_url": "https://cdn.example.com/s1.png"},
    {"id": "s2", "email": "s2@example.com", "full_name": "GreenVolt Energy", "role": "seller"},
    {"id": "a1", "email": "a1@example.com", "full_name": "Site Admin", "role": "admin"},
]


def seed_users(session):
    for u in USERS:
        session.add(User(**u))
    session.commit()


@pytest.fixture
def users(db):
    seed_users(db)
    return {u["id"]: u for u in USERS}


@pytest.fixture
def directory(db, users):
    return SqlDirectory(db)


class RecordingPublisher:
    enabled = True

    def __init__(self):
        self.events = []

    async def publish(self, user_ids, event):
        self.events.append((tuple(user_ids), event))

    def of_type(self, kind):
        return [(ids, e) for ids, e in self.events if e["type"] == kind]


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def client(session_factory, users, publisher):
    from marketchat.api.v1.deps import get_event_publisher
    from marketchat.db.session import get_db
    from marketchat.main import app

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_event_publisher] = lambda: publisher

    yield TestClient(app)

    app.dependency_overrides.clear()


