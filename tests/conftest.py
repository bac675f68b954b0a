"""Pytest configuration and fixtures."""

import os

# Keep the app module's own engine off disk; tests build their own below
os.environ.setdefault("DATABASE_URL", "sqlite://")

from datetime import date
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from db import Base, enable_sqlite_foreign_keys
from models import PaymentMethod, RewardRule, Transaction
from app.services.bonus_tracker import BonusPointsTracker
from app.services.conversion import ConversionService
from app.services.insights import InsightService
from app.services.reward_rules import RewardConfig, RewardRule as Rule, rule_to_row
from app.services.spending_tracker import MonthlySpendingTracker


@pytest.fixture
def engine():
    """In-memory SQLite shared by every session of a test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_foreign_keys(engine)
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def failing_session_factory(session_factory):
    """Sessions that read normally but fail on commit."""

    def factory():
        session = session_factory()

        def commit():
            raise OperationalError("COMMIT", {}, Exception("database is locked"))

        session.commit = commit
        return session

    return factory


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def card(db) -> PaymentMethod:
    """A DBS credit card with a calendar statement."""
    pm = PaymentMethod(name="Woman's World Card", issuer="DBS", points_currency="DBS Points")
    db.add(pm)
    db.commit()
    db.refresh(pm)
    return pm


@pytest.fixture
def add_rule(db):
    """Stores a reward rule; keyword arguments go to RewardConfig."""

    def _add(card_type_id: str, name: str = "Base", priority: int = 0, conditions=None, **reward):
        rule = Rule(
            id="",
            card_type_id=card_type_id,
            name=name,
            priority=priority,
            conditions=conditions or [],
            reward=RewardConfig(**reward),
        )
        row = RewardRule(**rule_to_row(rule))
        db.add(row)
        db.commit()
        return row.id

    return _add


@pytest.fixture
def add_transaction(db):
    def _add(**fields) -> Transaction:
        fields.setdefault("date", date.today())
        fields.setdefault("merchant_name", "Test Merchant")
        fields.setdefault("amount", 10.0)
        tx = Transaction(**fields)
        db.add(tx)
        db.commit()
        db.refresh(tx)
        return tx

    return _add


def _plain_card(**fields):
    fields.setdefault("id", 1)
    fields.setdefault("issuer", "DBS")
    fields.setdefault("name", "Woman's World Card")
    fields.setdefault("points_currency", "DBS Points")
    fields.setdefault("statement_start_day", 1)
    return SimpleNamespace(**fields)


@pytest.fixture
def make_card():
    """Plain card object for pure calculations."""
    return _plain_card


@pytest.fixture
def client(session_factory):
    """TestClient with every dependency bound to the test database."""
    from main import app
    from app import deps

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    def provide(service):
        return lambda: service

    app.dependency_overrides[deps.get_db] = override_get_db
    app.dependency_overrides[deps.get_conversion_service] = provide(ConversionService(session_factory))
    app.dependency_overrides[deps.get_spending_tracker] = provide(MonthlySpendingTracker(session_factory))
    app.dependency_overrides[deps.get_bonus_tracker] = provide(BonusPointsTracker(session_factory))
    app.dependency_overrides[deps.get_insight_service] = provide(InsightService(session_factory))

    with TestClient(app) as c:
        yield c

    app.dependency_overrides.clear()
