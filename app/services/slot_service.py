"""
방문 슬롯 관리 서비스
슬롯 생성/수정/삭제, 예약 인원 재계산과 상태 파생
"""
import logging
from contextlib import ExitStack
from datetime import date, datetime
from typing import Any, List, Optional
from zoneinfo import ZoneInfo

from sqlalchemy import case
from sqlalchemy.orm import Session

from app.config import settings
from app.models.booking import ACTIVE_BOOKING_STATUSES, Booking
from app.models.schedule_conflict import ConflictSeverity, ConflictStatus, ScheduleConflict
from app.models.slot import STICKY_SLOT_STATUSES, SlotStatus, VisitSlot
from app.services.audit_service import AuditService
from app.services.capacity import (
    active_group_total,
    date_lock,
    detect_time_conflict,
    lock_slot_row,
    slot_lock,
    validate_time_range,
)
from app.utils.exceptions import (
    AppException,
    CapacityExceeded,
    InvalidDate,
    NoFieldsToUpdate,
    SlotHasActiveBookings,
    SlotNotFound,
)
from app.utils.time_utils import minutes_between, slot_start_datetime, to_slot_date, utcnow

logger = logging.getLogger(__name__)

SLOT_UPDATE_FIELDS = ("date", "start_time", "end_time", "duration_minutes", "capacity", "status", "description")


def slot_timezone():
    return ZoneInfo(settings.timezone)


def derive_slot_status(
        current_status: SlotStatus,
        capacity: int,
        booked_count: int,
        slot_start: datetime,
        now: datetime,
) -> SlotStatus:
    """
    슬롯 상태 파생 (순수 함수)
    1. cancelled / maintenance 는 그대로 유지
    2. 시작 시각이 지났으면 expired
    3. 정원이 찼으면 booked
    4. 그 외 available
    """
    if current_status in STICKY_SLOT_STATUSES:
        return current_status
    if now > slot_start:
        return SlotStatus.EXPIRED
    if booked_count >= capacity:
        return SlotStatus.BOOKED
    return SlotStatus.AVAILABLE


def slot_start_of(slot: VisitSlot) -> datetime:
    return slot_start_datetime(slot.date, slot.start_time, slot_timezone())


class SlotService:
    """방문 슬롯 관리 서비스"""

    @staticmethod
    def get_slot(db: Session, slot_id: int) -> VisitSlot:
        """ID로 슬롯 조회"""
        slot = db.query(VisitSlot).filter(VisitSlot.id == slot_id).first()
        if not slot:
            raise SlotNotFound(slot_id)
        return slot

    @staticmethod
    def recompute_booked_count(db: Session, slot: VisitSlot) -> int:
        """활성 예약 인원 합을 다시 계산하여 캐시에 기록"""
        slot.booked_count = active_group_total(db, slot.id)
        return slot.booked_count

    @staticmethod
    def refresh_slot(db: Session, slot: VisitSlot, now: Optional[datetime] = None) -> VisitSlot:
        """
        예약 인원 재계산 후 상태 파생
        호출자가 슬롯 잠금과 트랜잭션을 보유한 상태에서 사용한다.
        """
        db.flush()
        SlotService.recompute_booked_count(db, slot)

        if slot.status in STICKY_SLOT_STATUSES:
            return slot

        slot.status = derive_slot_status(
            slot.status,
            slot.capacity,
            slot.booked_count,
            slot_start_of(slot),
            now or utcnow(),
        )
        return slot

    @staticmethod
    def create_slot(db: Session, slot_data: dict[str, Any], actor: Optional[str]) -> VisitSlot:
        """슬롯 생성"""
        slot_date = to_slot_date(slot_data.get("date"))
        if slot_date < utcnow().astimezone(slot_timezone()).date():
            raise InvalidDate("Cannot create slots in the past")

        start_time, end_time = validate_time_range(slot_data.get("start_time"), slot_data.get("end_time"))

        capacity = slot_data.get("capacity")
        if not capacity or capacity <= 0:
            raise AppException("Capacity must be greater than 0", status_code=422)

        duration = slot_data.get("duration_minutes") or minutes_between(start_time, end_time)
        if duration <= 0:
            raise AppException("Duration must be greater than 0", status_code=422)

        # 같은 날짜의 겹침 검사와 저장을 직렬화
        with date_lock(slot_date):
            try:
                detect_time_conflict(db, slot_date, start_time, end_time)
                slot = VisitSlot(
                    date=slot_date,
                    start_time=start_time,
                    end_time=end_time,
                    duration_minutes=duration,
                    capacity=capacity,
                    booked_count=0,
                    status=SlotStatus(slot_data.get("status") or SlotStatus.AVAILABLE),
                    description=slot_data.get("description") or "",
                    created_by=actor,
                )
                db.add(slot)
                db.commit()
            except Exception:
                db.rollback()
                raise

        db.refresh(slot)

        AuditService.record(
            db,
            "slot_created",
            actor=actor,
            slot_id=slot.id,
            message=f"Visit slot created for {slot.date} {slot.start_time}-{slot.end_time}",
            details={
                "date": slot.date.isoformat(),
                "start_time": slot.start_time,
                "end_time": slot.end_time,
                "capacity": slot.capacity,
                "description": slot.description,
            },
        )
        return slot

    @staticmethod
    def update_slot(db: Session, slot_id: int, slot_data: dict[str, Any], actor: Optional[str]) -> VisitSlot:
        """슬롯 정보 수정 (전달된 필드만)"""
        updates = {k: v for k, v in slot_data.items() if k in SLOT_UPDATE_FIELDS and v is not None}
        if not updates:
            raise NoFieldsToUpdate()

        with slot_lock(slot_id), ExitStack() as schedule_locks:
            try:
                slot = lock_slot_row(db, slot_id)
                if not slot:
                    raise SlotNotFound(slot_id)

                changes: dict[str, Any] = {}
                if "date" in updates:
                    new_date = to_slot_date(updates["date"])
                    if new_date < utcnow().astimezone(slot_timezone()).date():
                        raise InvalidDate("Cannot update slot to past date")
                    updates["date"] = new_date

                if "status" in updates:
                    updates["status"] = SlotStatus(updates["status"])

                # 취소 상태에서 되살리는 경우도 겹침 검사 대상
                reactivating = (
                    slot.status == SlotStatus.CANCELLED
                    and updates.get("status", SlotStatus.CANCELLED) != SlotStatus.CANCELLED
                )
                window_changed = bool({"date", "start_time", "end_time"} & updates.keys())
                if reactivating or window_changed:
                    start_time, end_time = validate_time_range(
                        updates.get("start_time", slot.start_time),
                        updates.get("end_time", slot.end_time),
                    )
                    if updates.get("status", slot.status) != SlotStatus.CANCELLED:
                        target_date = updates.get("date", slot.date)
                        # 커밋까지 대상 날짜의 슬롯 생성/시간 변경을 막음
                        schedule_locks.enter_context(date_lock(target_date))
                        detect_time_conflict(db, target_date, start_time, end_time, exclude_slot_id=slot.id)
                    if "start_time" in updates:
                        updates["start_time"] = start_time
                    if "end_time" in updates:
                        updates["end_time"] = end_time

                if "capacity" in updates:
                    if updates["capacity"] <= 0:
                        raise AppException("Capacity must be greater than 0", status_code=422)
                    booked = active_group_total(db, slot.id)
                    if updates["capacity"] < booked:
                        raise CapacityExceeded(available=updates["capacity"], requested=booked)

                if "duration_minutes" in updates and updates["duration_minutes"] <= 0:
                    raise AppException("Duration must be greater than 0", status_code=422)

                for field, value in updates.items():
                    old = getattr(slot, field)
                    if old != value:
                        changes[field] = {"from": _jsonable(old), "to": _jsonable(value)}
                    setattr(slot, field, value)

                SlotService.refresh_slot(db, slot)
                db.commit()
            except Exception:
                db.rollback()
                raise

        db.refresh(slot)
        AuditService.record(
            db,
            "slot_updated",
            actor=actor,
            slot_id=slot.id,
            message=f"Visit slot updated for {slot.date} {slot.start_time}-{slot.end_time}",
            details={
                "date": slot.date.isoformat(),
                "start_time": slot.start_time,
                "end_time": slot.end_time,
                "changes": changes,
            },
        )
        return slot

    @staticmethod
    def delete_slot(db: Session, slot_id: int, actor: Optional[str]) -> None:
        """슬롯 삭제 (활성 예약이 없을 때만)"""
        with slot_lock(slot_id):
            try:
                slot = lock_slot_row(db, slot_id)
                if not slot:
                    raise SlotNotFound(slot_id)

                active = db.query(Booking).filter(
                    Booking.slot_id == slot_id,
                    Booking.status.in_(ACTIVE_BOOKING_STATUSES),
                ).count()
                if active > 0:
                    raise SlotHasActiveBookings(f"Cannot delete slot with {active} active booking(s)")

                snapshot = {
                    "date": slot.date.isoformat(),
                    "start_time": slot.start_time,
                    "end_time": slot.end_time,
                }
                # 종료된 예약 이력은 슬롯과 함께 정리
                db.query(Booking).filter(Booking.slot_id == slot_id).delete(synchronize_session=False)
                db.delete(slot)
                db.commit()
            except Exception:
                db.rollback()
                raise

        AuditService.record(
            db,
            "slot_deleted",
            actor=actor,
            slot_id=slot_id,
            message=f"Visit slot deleted for {snapshot['date']} {snapshot['start_time']}-{snapshot['end_time']}",
            details=snapshot,
        )

    @staticmethod
    def list_slots(
            db: Session,
            date_from: Optional[date] = None,
            date_to: Optional[date] = None,
            status: Optional[SlotStatus] = None,
            skip: int = 0,
            limit: int = 100,
    ) -> tuple[List[VisitSlot], int]:
        """날짜 범위/상태로 슬롯 조회"""
        query = db.query(VisitSlot)
        if date_from:
            query = query.filter(VisitSlot.date >= date_from)
        if date_to:
            query = query.filter(VisitSlot.date <= date_to)
        if status:
            query = query.filter(VisitSlot.status == SlotStatus(status))

        total = query.count()
        slots = query.order_by(VisitSlot.date, VisitSlot.start_time).offset(skip).limit(limit).all()
        return slots, total

    @staticmethod
    def list_public_available_slots(
            db: Session,
            date_from: Optional[date] = None,
            date_to: Optional[date] = None,
            now: Optional[datetime] = None,
    ) -> List[VisitSlot]:
        """공개 예약용: 아직 시작 전이고 잔여 정원이 있는 available 슬롯"""
        now = now or utcnow()
        query = db.query(VisitSlot).filter(
            VisitSlot.status == SlotStatus.AVAILABLE,
            VisitSlot.booked_count < VisitSlot.capacity,
            VisitSlot.date >= (date_from or now.astimezone(slot_timezone()).date()),
        )
        if date_to:
            query = query.filter(VisitSlot.date <= date_to)

        slots = query.order_by(VisitSlot.date, VisitSlot.start_time).all()
        return [slot for slot in slots if now < slot_start_of(slot)]

    @staticmethod
    def check_availability(db: Session, slot_id: int, group_size: int = 1) -> dict[str, Any]:
        """슬롯 잔여 정원 확인"""
        slot = SlotService.get_slot(db, slot_id)
        active_bookings = db.query(Booking).filter(
            Booking.slot_id == slot_id,
            Booking.status.in_(ACTIVE_BOOKING_STATUSES),
        ).count()
        available = slot.capacity - active_group_total(db, slot_id)
        return {
            "slot_id": slot.id,
            "status": slot.status,
            "available_capacity": available,
            "active_bookings": active_bookings,
            "is_available": slot.status == SlotStatus.AVAILABLE and 0 < group_size <= available,
        }

    @staticmethod
    def report_conflict(
            db: Session,
            slot: VisitSlot,
            conflicting_slot_id: Optional[int],
            title: str,
            description: Optional[str] = None,
            severity: ConflictSeverity = ConflictSeverity.MEDIUM,
            conflict_type: str = "overlap",
    ) -> ScheduleConflict:
        """자동 해결되지 않은 일정 문제 기록"""
        conflict = ScheduleConflict(
            conflict_type=conflict_type,
            title=title,
            description=description,
            severity=severity,
            affected_slot_id=slot.id,
            conflicting_slot_id=conflicting_slot_id,
        )
        db.add(conflict)
        db.commit()
        db.refresh(conflict)
        logger.info("Schedule conflict %s recorded for slot %s", conflict.id, slot.id)
        return conflict

    @staticmethod
    def list_schedule_issues(db: Session) -> List[ScheduleConflict]:
        """미해결 일정 문제 (심각도 높은 순)"""
        severity_rank = case(
            (ScheduleConflict.severity == ConflictSeverity.HIGH, 0),
            (ScheduleConflict.severity == ConflictSeverity.MEDIUM, 1),
            else_=2,
        )
        return (
            db.query(ScheduleConflict)
            .filter(ScheduleConflict.status == ConflictStatus.PENDING)
            .order_by(severity_rank, ScheduleConflict.created_at.desc())
            .all()
        )

    @staticmethod
    def resolve_conflict(db: Session, conflict_id: int, status: ConflictStatus = ConflictStatus.RESOLVED) -> ScheduleConflict:
        conflict = db.query(ScheduleConflict).filter(ScheduleConflict.id == conflict_id).first()
        if not conflict:
            raise AppException(f"Schedule conflict with ID {conflict_id} not found", status_code=404)
        conflict.status = status
        conflict.resolved_at = utcnow()
        db.commit()
        db.refresh(conflict)
        return conflict


def _jsonable(value):
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, SlotStatus):
        return value.value
    return value
