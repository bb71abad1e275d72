import random
import threading
from unittest.mock import patch

import pytest

from app.models.booking import ACTIVE_BOOKING_STATUSES, Booking, BookingStatus
from app.models.slot import SlotStatus, VisitSlot
from app.models.system_log import SystemLog
from app.models.visitor import Visitor
from app.services.booking_service import TRACKING_TOKEN_ALPHABET, BookingService
from app.services.slot_service import SlotService
from app.utils.exceptions import (
    AlreadyCancelled,
    AppException,
    BookingImmutable,
    BookingNotFound,
    CapacityExceeded,
    InvalidTransition,
    NoFieldsToUpdate,
    SlotNotFound,
    SlotUnavailable,
    VisitorNotFound,
)


def _active_total(db, slot_id: int) -> int:
    return sum(
        b.group_size
        for b in db.query(Booking).filter(Booking.slot_id == slot_id).all()
        if b.status in ACTIVE_BOOKING_STATUSES
    )


def test_capacity_walkthrough(db, slot, visitor) -> None:
    booking_a = BookingService.create_booking(db, slot.id, visitor.id, 3, actor="staff-1")
    db.refresh(slot)
    assert booking_a.status == BookingStatus.TENTATIVE
    assert slot.booked_count == 3
    assert slot.status == SlotStatus.AVAILABLE

    with pytest.raises(CapacityExceeded) as exc_info:
        BookingService.create_booking(db, slot.id, visitor.id, 3)
    assert exc_info.value.available == 2
    assert exc_info.value.requested == 3
    assert exc_info.value.message == "Not enough capacity. Available: 2, Requested: 3"

    BookingService.create_booking(db, slot.id, visitor.id, 2)
    db.refresh(slot)
    assert slot.booked_count == 5
    assert slot.status == SlotStatus.BOOKED

    BookingService.cancel_booking(db, booking_a.id, "Cannot attend", actor="staff-1")
    db.refresh(slot)
    assert slot.booked_count == 2
    assert slot.status == SlotStatus.AVAILABLE


def test_booking_on_unknown_slot_or_visitor(db, slot, visitor) -> None:
    with pytest.raises(SlotNotFound):
        BookingService.create_booking(db, 9999, visitor.id, 1)
    with pytest.raises(VisitorNotFound):
        BookingService.create_booking(db, slot.id, 9999, 1)
    assert db.query(Booking).count() == 0


def test_booking_on_unavailable_slot(db, slot, visitor) -> None:
    SlotService.update_slot(db, slot.id, {"status": "maintenance"}, "manager-1")
    with pytest.raises(SlotUnavailable):
        BookingService.create_booking(db, slot.id, visitor.id, 1)


def test_transitions_and_terminal_states(db, slot, visitor, notifier) -> None:
    booking = BookingService.create_booking(db, slot.id, visitor.id, 2)

    with pytest.raises(InvalidTransition):
        BookingService.complete_booking(db, booking.id)

    confirmed = BookingService.confirm_booking(db, booking.id, "staff-1")
    assert confirmed.status == BookingStatus.CONFIRMED
    assert confirmed.confirmed_at is not None
    # 추적 토큰이 없는 직원 예약은 메일을 보내지 않음
    notifier.confirmation.assert_not_called()

    completed = BookingService.complete_booking(db, booking.id, "staff-1")
    assert completed.status == BookingStatus.COMPLETED
    db.refresh(slot)
    assert slot.booked_count == 0

    with pytest.raises(BookingImmutable):
        BookingService.update_booking(db, booking.id, {"notes": "late"})
    with pytest.raises(BookingImmutable):
        BookingService.cancel_booking(db, booking.id, "too late")


def test_cancelled_booking_cannot_be_reactivated(db, slot, visitor) -> None:
    booking = BookingService.create_booking(db, slot.id, visitor.id, 1)

    with pytest.raises(InvalidTransition):
        BookingService.cancel_booking(db, booking.id, "   ")

    BookingService.cancel_booking(db, booking.id, "Duplicate")
    cancelled = BookingService.get_booking(db, booking.id)
    assert cancelled.cancellation_reason == "Duplicate"
    assert cancelled.cancelled_at is not None

    with pytest.raises(AlreadyCancelled):
        BookingService.confirm_booking(db, booking.id)
    with pytest.raises(AlreadyCancelled):
        BookingService.update_booking(db, booking.id, {"status": "confirmed"})
    with pytest.raises(AlreadyCancelled):
        BookingService.cancel_booking(db, booking.id, "again")


def test_no_show_is_terminal_for_status(db, slot, visitor) -> None:
    booking = BookingService.create_booking(db, slot.id, visitor.id, 1)
    BookingService.confirm_booking(db, booking.id)
    BookingService.mark_no_show(db, booking.id)

    with pytest.raises(InvalidTransition):
        BookingService.cancel_booking(db, booking.id, "Visitor called")
    with pytest.raises(InvalidTransition):
        BookingService.update_booking(db, booking.id, {"status": "completed"})

    noted = BookingService.update_booking(db, booking.id, {"notes": "Called twice"})
    assert noted.notes == "Called twice"
    assert noted.status == BookingStatus.NO_SHOW


def test_update_booking_group_size(db, slot, visitor) -> None:
    booking = BookingService.create_booking(db, slot.id, visitor.id, 2)
    BookingService.create_booking(db, slot.id, visitor.id, 2)

    with pytest.raises(NoFieldsToUpdate):
        BookingService.update_booking(db, booking.id, {"unknown": 1})

    with pytest.raises(CapacityExceeded) as exc_info:
        BookingService.update_booking(db, booking.id, {"group_size": 4})
    assert exc_info.value.available == 3

    grown = BookingService.update_booking(db, booking.id, {"group_size": 3})
    assert grown.group_size == 3
    db.refresh(slot)
    assert slot.booked_count == 5
    assert slot.status == SlotStatus.BOOKED

    # 정원이 찬 슬롯에서도 인원 감소는 허용
    shrunk = BookingService.update_booking(db, booking.id, {"group_size": 1})
    assert shrunk.group_size == 1
    db.refresh(slot)
    assert slot.booked_count == 3
    assert slot.status == SlotStatus.AVAILABLE


def test_status_update_to_cancelled_requires_cancel(db, slot, visitor) -> None:
    booking = BookingService.create_booking(db, slot.id, visitor.id, 1)
    with pytest.raises(InvalidTransition):
        BookingService.update_booking(db, booking.id, {"status": "cancelled"})


def test_public_booking_flow(db, slot, notifier) -> None:
    booking = BookingService.create_public_booking(
        db, slot.id, name="Jun Lee", email="Jun.Lee@Example.com", group_size=2, phone="010-0000-0000",
    )
    assert booking.created_by is None
    assert len(booking.tracking_token) == 12
    assert booking.visitor.email == "jun.lee@example.com"

    found = BookingService.track_booking(db, "JUN.LEE@example.com", booking.tracking_token.lower())
    assert found.id == booking.id

    updated = BookingService.update_public_booking(
        db, "jun.lee@example.com", booking.tracking_token,
        {"group_size": 3, "status": "confirmed", "special_requests": "Wheelchair access"},
    )
    assert updated.group_size == 3
    assert updated.status == BookingStatus.TENTATIVE
    assert updated.special_requests == "Wheelchair access"

    BookingService.confirm_booking(db, booking.id, "staff-1")
    notifier.confirmation.assert_called_once()
    data = notifier.confirmation.call_args.args[0]
    assert data.tracking_token == booking.tracking_token
    assert data.visitor_email == "jun.lee@example.com"

    cancelled = BookingService.cancel_public_booking(db, "jun.lee@example.com", booking.tracking_token, "Sick")
    assert cancelled.status == BookingStatus.CANCELLED


def test_public_booking_reuses_visitor_by_email(db, slot) -> None:
    first = BookingService.create_public_booking(db, slot.id, name="Ana", email="ana@example.com", group_size=1)
    second = BookingService.create_public_booking(db, slot.id, name="Ana K", email="ANA@example.com", group_size=1)
    assert first.visitor_id == second.visitor_id
    assert first.tracking_token != second.tracking_token
    assert db.query(Visitor).count() == 1


def test_public_ownership_mismatch_is_indistinguishable(db, slot) -> None:
    booking = BookingService.create_public_booking(db, slot.id, name="Ana", email="ana@example.com", group_size=1)

    messages = set()
    for email, token in [
        ("other@example.com", booking.tracking_token),
        ("ana@example.com", "WRONGTOKEN22"),
        ("", booking.tracking_token),
    ]:
        with pytest.raises(BookingNotFound) as exc_info:
            BookingService.track_booking(db, email, token)
        messages.add(exc_info.value.message)
    assert messages == {"Booking not found. Please check your email and tracking token."}

    with pytest.raises(BookingNotFound):
        BookingService.cancel_public_booking(db, "other@example.com", booking.tracking_token, "nope")
    assert BookingService.get_booking(db, booking.id).status == BookingStatus.TENTATIVE


def test_tracking_tokens_use_unambiguous_alphabet(db) -> None:
    tokens = {BookingService.generate_tracking_token(db) for _ in range(200)}
    assert len(tokens) == 200
    for token in tokens:
        assert len(token) == 12
        assert set(token) <= set(TRACKING_TOKEN_ALPHABET)
        assert not set(token) & set("01IO")


def test_tracking_token_falls_back_after_collisions(db, slot) -> None:
    existing = BookingService.create_public_booking(db, slot.id, name="Ana", email="ana@example.com", group_size=1)

    def _always_collide(length=12):
        return existing.tracking_token if length == 12 else "ZZZZZZ"

    with patch("app.services.booking_service._random_token", side_effect=_always_collide) as fake:
        token = BookingService.generate_tracking_token(db)

    assert fake.call_count == 11
    assert token.endswith("ZZZZZZ")
    assert token != existing.tracking_token


def test_side_effect_failures_do_not_fail_operations(db, slot, notifier) -> None:
    notifier.confirmation.side_effect = RuntimeError("smtp down")
    booking = BookingService.create_public_booking(db, slot.id, name="Ana", email="ana@example.com", group_size=1)

    with patch("app.services.audit_service.Session", side_effect=RuntimeError("audit store down")):
        confirmed = BookingService.confirm_booking(db, booking.id, "staff-1")

    assert confirmed.status == BookingStatus.CONFIRMED
    assert BookingService.get_booking(db, booking.id).status == BookingStatus.CONFIRMED
    assert db.query(SystemLog).filter(SystemLog.action == "booking_confirmed").count() == 0


def test_random_operations_keep_capacity_invariant(db, make_slot) -> None:
    rng = random.Random(20240501)
    slots = [make_slot(start=f"{9 + i}:00", end=f"{10 + i}:00", capacity=rng.randint(1, 6)) for i in range(3)]
    visitors = [Visitor(name=f"Visitor {i}", email=f"v{i}@example.com") for i in range(4)]
    db.add_all(visitors)
    db.commit()

    for _ in range(150):
        slot = rng.choice(slots)
        bookings = db.query(Booking).filter(Booking.slot_id == slot.id).all()
        op = rng.choice(["create", "create", "cancel", "confirm", "resize", "complete"])
        try:
            if op == "create" or not bookings:
                BookingService.create_booking(db, slot.id, rng.choice(visitors).id, rng.randint(1, 3))
            else:
                target = rng.choice(bookings)
                if op == "cancel":
                    BookingService.cancel_booking(db, target.id, "random")
                elif op == "confirm":
                    BookingService.confirm_booking(db, target.id)
                elif op == "resize":
                    BookingService.update_booking(db, target.id, {"group_size": rng.randint(1, 4)})
                else:
                    BookingService.complete_booking(db, target.id)
        except AppException:
            pass

        for s in slots:
            fresh = db.query(VisitSlot).filter(VisitSlot.id == s.id).populate_existing().one()
            total = _active_total(db, s.id)
            assert fresh.booked_count == total
            assert 0 <= total <= fresh.capacity
            if fresh.status not in (SlotStatus.CANCELLED, SlotStatus.MAINTENANCE):
                assert (fresh.status == SlotStatus.BOOKED) == (total >= fresh.capacity)


def test_concurrent_requests_for_last_unit(session_factory, make_slot, visitor) -> None:
    slot = make_slot(capacity=5)
    setup = session_factory()
    BookingService.create_booking(setup, slot.id, visitor.id, 4)
    setup.close()

    barrier = threading.Barrier(2)
    outcomes = []
    lock = threading.Lock()

    def _book():
        session = session_factory()
        try:
            barrier.wait()
            BookingService.create_booking(session, slot.id, visitor.id, 1)
            result = "ok"
        except CapacityExceeded:
            result = "full"
        finally:
            session.close()
        with lock:
            outcomes.append(result)

    threads = [threading.Thread(target=_book) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)

    assert sorted(outcomes) == ["full", "ok"]

    check = session_factory()
    stored = check.get(VisitSlot, slot.id)
    assert stored.booked_count == 5
    assert stored.status == SlotStatus.BOOKED
    assert _active_total(check, slot.id) == 5
    check.close()


def test_full_slot_reports_capacity_not_status(db, slot, visitor) -> None:
    BookingService.create_booking(db, slot.id, visitor.id, 5)
    db.refresh(slot)
    assert slot.status == SlotStatus.BOOKED

    with pytest.raises(CapacityExceeded) as exc_info:
        BookingService.create_booking(db, slot.id, visitor.id, 1)
    assert exc_info.value.available == 0
    assert exc_info.value.requested == 1


def test_growing_group_on_full_slot_reports_capacity(db, slot, visitor) -> None:
    booking = BookingService.create_booking(db, slot.id, visitor.id, 3)
    BookingService.create_booking(db, slot.id, visitor.id, 2)

    with pytest.raises(CapacityExceeded) as exc_info:
        BookingService.update_booking(db, booking.id, {"group_size": 4})
    assert exc_info.value.available == 3


def test_timestamps_are_timezone_aware_columns(db, slot, visitor) -> None:
    for column in ("confirmed_at", "cancelled_at", "reminder_sent_at", "created_at", "updated_at"):
        assert Booking.__table__.c[column].type.timezone is True

    booking = BookingService.create_booking(db, slot.id, visitor.id, 1)
    BookingService.confirm_booking(db, booking.id)
    cancelled = BookingService.cancel_booking(db, booking.id, "Rescheduled")
    assert cancelled.confirmed_at is not None
    assert cancelled.cancelled_at is not None
