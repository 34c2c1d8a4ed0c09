# tests/conftest.py

from datetime import timedelta
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

from src.api.routes.routes import get_db, get_reaper
from src.application.expiration_reaper import ExpirationReaper
from src.domain.clock import utc_now
from src.domain.pricing import DiscountType
from src.infrastructure.chat import ChatService, get_chat_service
from src.infrastructure.db.models import Base, DiscountCode, Event, TicketType
from src.infrastructure.payments.mock_provider import MockPaymentProvider
from src.infrastructure.payments.payments_config import get_payment_provider
from src.main import app


@pytest.fixture
def make_engine(tmp_path):
    """
    Engines over one file-backed SQLite database. Every transaction opens
    with BEGIN IMMEDIATE, so concurrent writers queue on the database lock
    the way they queue on row locks in Postgres. ``busy_timeout`` bounds
    that wait in seconds.
    """
    created = []

    def _make(busy_timeout: float = 30):
        db_engine = create_engine(
            f"sqlite:///{tmp_path / 'ticketing.db'}",
            connect_args={"check_same_thread": False, "timeout": busy_timeout},
            future=True,
        )

        @event.listens_for(db_engine, "connect")
        def _disable_pysqlite_transactions(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None

        @event.listens_for(db_engine, "begin")
        def _begin_immediate(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")

        created.append(db_engine)
        return db_engine

    yield _make

    for db_engine in created:
        db_engine.dispose()


@pytest.fixture
def engine(make_engine):
    db_engine = make_engine()
    Base.metadata.create_all(bind=db_engine)
    return db_engine


@pytest.fixture
def session_factory(engine):
    return sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
    )


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


class Seeder:
    """Commits fixture rows in a session of its own."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    def _save(self, row):
        with self.session_factory() as session:
            session.add(row)
            session.commit()
        return row

    def event(self, **overrides) -> Event:
        fields = {
            "title": "Test Concert",
            "status": "published",
            "start_date": utc_now() + timedelta(days=10),
            "settings": {"allow_chat": True},
        }
        fields.update(overrides)
        return self._save(Event(**fields))

    def ticket_type(self, event: Event, **overrides) -> TicketType:
        fields = {
            "event_id": event.id,
            "name": "General",
            "price": Decimal("100.00"),
            "capacity": 100,
        }
        fields.update(overrides)
        return self._save(TicketType(**fields))

    def discount_code(self, event: Event, **overrides) -> DiscountCode:
        fields = {
            "event_id": event.id,
            "code": "SAVE10",
            "type": DiscountType.PERCENTAGE,
            "value": Decimal("10"),
        }
        fields.update(overrides)
        return self._save(DiscountCode(**fields))

    def reload(self, model, row_id):
        with self.session_factory() as session:
            return session.get(model, row_id)


@pytest.fixture
def seed(session_factory):
    return Seeder(session_factory)


class RecordingChatService(ChatService):

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.enrolled: list[tuple[str, str]] = []

    def add_participant_to_event_chat(self, user_id: str, event_id: str) -> None:
        if self.fail:
            raise RuntimeError("chat backend unavailable")
        self.enrolled.append((user_id, event_id))


@pytest.fixture
def chat():
    return RecordingChatService()


@pytest.fixture
def payment_provider():
    return MockPaymentProvider()


@pytest.fixture
def client(session_factory, payment_provider, chat):

    def _get_test_db():
        session = session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    reaper = ExpirationReaper(session_factory=session_factory)

    app.dependency_overrides[get_db] = _get_test_db
    app.dependency_overrides[get_payment_provider] = lambda: payment_provider
    app.dependency_overrides[get_chat_service] = lambda: chat
    app.dependency_overrides[get_reaper] = lambda: reaper

    # No context manager: startup hooks would try to reach Postgres.
    yield TestClient(app)

    app.dependency_overrides.clear()
