"""
정원 및 시간 충돌 검사
- 잔여 정원은 항상 활성 예약(tentative, confirmed)의 group_size 합으로 다시 계산한다.
- 시간 구간은 반열린 구간 [start, end) 이며 맞닿은 슬롯은 충돌이 아니다.
"""
import logging
import threading
from contextlib import contextmanager
from datetime import date
from typing import Hashable, Iterable, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.config import settings
from app.models.booking import ACTIVE_BOOKING_STATUSES, Booking
from app.models.slot import SlotStatus, VisitSlot
from app.utils.exceptions import (
    CapacityExceeded,
    InvalidTimeRange,
    ScheduleConflictError,
    SlotBusy,
    SlotUnavailable,
)
from app.utils.time_utils import TimeLike, format_time, time_to_seconds

logger = logging.getLogger(__name__)

# 예약을 받을 수 없는 슬롯 상태 (booked 는 정원 비교로 판단)
CLOSED_SLOT_STATUSES = (SlotStatus.CANCELLED, SlotStatus.MAINTENANCE, SlotStatus.EXPIRED)


class _LockRegistry:
    """
    키별 잠금 레지스트리
    대기/보유 중인 스레드가 없어지면 항목을 제거하므로 레지스트리는 커지지 않는다.
    """

    def __init__(self):
        self._locks: dict[Hashable, list] = {}
        self._guard = threading.Lock()

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, key: Hashable, timeout: float, busy_message: str):
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = [threading.Lock(), 0]
            entry[1] += 1
        try:
            if not entry[0].acquire(timeout=timeout):
                logger.warning("Timed out after %.1fs waiting for lock %r", timeout, key)
                raise SlotBusy(busy_message)
            try:
                yield
            finally:
                entry[0].release()
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0 and self._locks.get(key) is entry:
                    del self._locks[key]


_slot_locks = _LockRegistry()
_date_locks = _LockRegistry()


def _lock_wait(timeout: Optional[float]) -> float:
    return settings.slot_lock_timeout_seconds if timeout is None else timeout


@contextmanager
def slot_lock(slot_id: int, timeout: Optional[float] = None):
    """
    슬롯 단위 정원 잠금
    정원 검사부터 커밋까지 같은 슬롯의 예약 변경을 직렬화한다.
    """
    with _slot_locks.hold(slot_id, _lock_wait(timeout), f"Visit slot {slot_id} is busy, please retry"):
        yield


@contextmanager
def date_lock(slot_date: date, timeout: Optional[float] = None):
    """
    날짜 단위 일정 잠금
    같은 날짜의 시간 겹침 검사부터 커밋까지 슬롯 생성/시간 변경을 직렬화한다.
    """
    with _date_locks.hold(slot_date, _lock_wait(timeout), f"Schedule for {slot_date} is busy, please retry"):
        yield


def lock_slot_row(db: Session, slot_id: int) -> Optional[VisitSlot]:
    """현재 트랜잭션 안에서 슬롯 행을 잠그고 최신 값으로 읽음"""
    return (
        db.query(VisitSlot)
        .filter(VisitSlot.id == slot_id)
        .populate_existing()
        .with_for_update()
        .first()
    )


def active_group_total(db: Session, slot_id: int, exclude_booking_id: Optional[int] = None) -> int:
    """슬롯의 활성 예약 인원 합계"""
    query = db.query(func.coalesce(func.sum(Booking.group_size), 0)).filter(
        Booking.slot_id == slot_id,
        Booking.status.in_(ACTIVE_BOOKING_STATUSES),
    )
    if exclude_booking_id is not None:
        query = query.filter(Booking.id != exclude_booking_id)
    return int(query.scalar() or 0)


def compute_available_capacity(db: Session, slot: VisitSlot, exclude_booking_id: Optional[int] = None) -> int:
    """잔여 정원 = capacity - 활성 예약 인원 합"""
    return slot.capacity - active_group_total(db, slot.id, exclude_booking_id)


def validate_booking_capacity(
        db: Session,
        slot: VisitSlot,
        requested_group_size: int,
        exclude_booking_id: Optional[int] = None,
) -> int:
    """
    예약 가능 여부 검증
    - 취소, 점검, 만료된 슬롯이면 SlotUnavailable
    - 요청 인원이 잔여 정원을 넘으면 CapacityExceeded (정원이 찬 booked 슬롯 포함)
    검증을 통과하면 잔여 정원을 반환한다.
    """
    if slot.status in CLOSED_SLOT_STATUSES:
        raise SlotUnavailable(f"Visit slot {slot.id} is not available for booking (status: {slot.status.value})")

    available = compute_available_capacity(db, slot, exclude_booking_id)
    if requested_group_size is None or requested_group_size < 1 or requested_group_size > available:
        raise CapacityExceeded(available=max(available, 0), requested=requested_group_size or 0)
    return available


def validate_time_range(start: TimeLike, end: TimeLike) -> tuple[str, str]:
    """시각을 정규화하고 start < end 인지 검사"""
    start_str, end_str = format_time(start), format_time(end)
    if time_to_seconds(start_str) >= time_to_seconds(end_str):
        raise InvalidTimeRange(f"Start time {start_str} must be before end time {end_str}")
    return start_str, end_str


def intervals_overlap(start1: int, end1: int, start2: int, end2: int) -> bool:
    return start1 < end2 and start2 < end1


def find_time_conflict(start: TimeLike, end: TimeLike, existing_slots: Iterable[VisitSlot]) -> Optional[VisitSlot]:
    """겹치는 첫 번째 슬롯 반환 (취소된 슬롯 제외)"""
    start_str, end_str = validate_time_range(start, end)
    candidate_start, candidate_end = time_to_seconds(start_str), time_to_seconds(end_str)

    for existing in existing_slots:
        if existing.status == SlotStatus.CANCELLED:
            continue
        if intervals_overlap(
                candidate_start, candidate_end,
                time_to_seconds(existing.start_time), time_to_seconds(existing.end_time),
        ):
            return existing
    return None


def detect_time_conflict(
        db: Session,
        slot_date: date,
        start: TimeLike,
        end: TimeLike,
        exclude_slot_id: Optional[int] = None,
) -> None:
    """같은 날짜의 슬롯과 겹치면 ScheduleConflictError"""
    query = db.query(VisitSlot).filter(
        VisitSlot.date == slot_date,
        VisitSlot.status != SlotStatus.CANCELLED,
    )
    if exclude_slot_id is not None:
        query = query.filter(VisitSlot.id != exclude_slot_id)

    conflict = find_time_conflict(start, end, query.order_by(VisitSlot.start_time).all())
    if conflict is not None:
        raise ScheduleConflictError(conflicting_slot_id=conflict.id)
