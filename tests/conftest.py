from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import patch

import pytest
from sqlalchemy.orm import sessionmaker

from app.config import settings
from app.database import build_engine, init_db
from app.models.visitor import Visitor
from app.services.slot_service import SlotService


@pytest.fixture(autouse=True)
def _utc_settings(monkeypatch):
    # 테스트는 UTC 기준 날짜 계산을 가정한다.
    monkeypatch.setattr(settings, "timezone", "UTC")
    monkeypatch.setattr(settings, "smtp_host", None)
    monkeypatch.setattr(settings, "slot_lock_timeout_seconds", 10.0)


@pytest.fixture
def engine(tmp_path):
    test_engine = build_engine(f"sqlite:///{tmp_path / 'bookings.db'}")
    init_db(bind=test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture(autouse=True)
def notifier():
    """메일 발송을 가짜로 교체 (네트워크 사용 금지)"""
    with (
        patch("app.services.notification_service.NotificationService.send_booking_confirmation",
              return_value=True) as confirmation,
        patch("app.services.notification_service.NotificationService.send_booking_reminder",
              return_value=True) as reminder,
    ):
        yield SimpleNamespace(confirmation=confirmation, reminder=reminder)


@pytest.fixture
def today():
    return datetime.now(timezone.utc).date()


@pytest.fixture
def visitor(db):
    v = Visitor(name="Mina Park", email="mina@example.com", phone="010-1234-5678")
    db.add(v)
    db.commit()
    db.refresh(v)
    return v


@pytest.fixture
def make_slot(db, today):
    def _make(days_ahead: int = 7, start: str = "10:00", end: str = "11:00", capacity: int = 5, **extra):
        data = {
            "date": today + timedelta(days=days_ahead),
            "start_time": start,
            "end_time": end,
            "capacity": capacity,
            **extra,
        }
        return SlotService.create_slot(db, data, "manager-1")
    return _make


@pytest.fixture
def slot(make_slot):
    return make_slot()
