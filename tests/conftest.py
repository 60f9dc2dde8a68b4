"""Shared fixtures: an in-memory SQLite database with the full schema."""
import sqlite3
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.config import settings as core_settings
from app.database import Base
from app.models.ad import Ad  # noqa: F401
from app.models.freight import Freight  # noqa: F401
from app.models.ledger import ClickLog, CreditTransaction, SiteSetting  # noqa: F401
from app.models.notification import Notification  # noqa: F401
from app.models.review import Review  # noqa: F401
from app.models.user import User  # noqa: F401

sqlite3.register_adapter(Decimal, float)


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    with session_factory() as session:
        yield session


@pytest.fixture
def two_sessions(tmp_path):
    """Two sessions on separate connections to one file-backed database."""
    engine = create_engine(f"sqlite:///{tmp_path / 'shared.db'}")
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    first, second = factory(), factory()
    yield first, second
    first.close()
    second.close()
    engine.dispose()



@pytest.fixture(autouse=True)
def quiet_channels(monkeypatch):
    """No outbound Telegram/push unless a test opts in."""
    monkeypatch.setattr(core_settings, "TELEGRAM_BOT_TOKEN", "")
    monkeypatch.setattr(core_settings, "TELEGRAM_CHAT_ID", "")
    monkeypatch.setattr(core_settings, "PUSH_API_URL", "")


@pytest.fixture
def no_cooldown(monkeypatch):
    monkeypatch.setattr(core_settings, "FREIGHT_POST_COOLDOWN_SECONDS", 0)

