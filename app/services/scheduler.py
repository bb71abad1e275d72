"""
주기 작업: 지난 슬롯 만료 처리, 방문 전날 리마인더 메일
시작 시 한 번 실행한 뒤 expiry_interval_minutes 마다 반복한다.
작업 실패는 로그만 남기고 다음 주기에 다시 실행된다.
"""
import logging
from datetime import datetime, timedelta
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from sqlalchemy.orm import Session

from app.config import settings
from app.database import SessionLocal
from app.models.booking import Booking, BookingStatus
from app.models.schedule_conflict import ConflictSeverity
from app.models.slot import SlotStatus, VisitSlot
from app.models.visitor import Visitor
from app.services.audit_service import AuditService
from app.services.notification_service import NotificationService, build_email_data
from app.services.slot_service import SlotService, slot_start_of, slot_timezone
from app.utils.time_utils import utcnow

logger = logging.getLogger(__name__)

EXPIRY_JOB_ID = "slot_expiry_sweep"
REMINDER_JOB_ID = "booking_reminders"

# 만료 대상에서 제외되는 상태
_NOT_EXPIRABLE = (SlotStatus.CANCELLED, SlotStatus.EXPIRED, SlotStatus.MAINTENANCE)

_scheduler: Optional[BackgroundScheduler] = None


def expire_past_slots(db: Session, now: Optional[datetime] = None) -> int:
    """시작 시각이 지난 슬롯을 expired 로 일괄 변경하고 변경 건수 반환"""
    now = now or utcnow()
    today = now.astimezone(slot_timezone()).date()

    candidates = db.query(VisitSlot).filter(
        VisitSlot.date <= today,
        VisitSlot.status.notin_(_NOT_EXPIRABLE),
    ).all()
    to_expire = [slot for slot in candidates if now > slot_start_of(slot)]
    if not to_expire:
        return 0

    ids = [slot.id for slot in to_expire]
    # 조회 이후 관리자가 cancelled/maintenance 로 바꾼 슬롯은 건드리지 않음
    updated = (
        db.query(VisitSlot)
        .filter(VisitSlot.id.in_(ids), VisitSlot.status.notin_(_NOT_EXPIRABLE))
        .update({VisitSlot.status: SlotStatus.EXPIRED}, synchronize_session=False)
    )
    db.commit()
    db.expire_all()
    logger.info("Expired %d visit slots", updated)

    _report_unconfirmed(db, ids)
    AuditService.record(
        db,
        "slots_auto_expired",
        message=f"Expired {updated} visit slots by scheduler",
        details={"count": updated, "timestamp": now.isoformat()},
    )
    return updated


def _report_unconfirmed(db: Session, slot_ids: list[int]) -> None:
    """만료 시점까지 tentative 로 남은 예약이 있으면 일정 문제로 기록"""
    try:
        rows = (
            db.query(Booking.slot_id, Booking.id)
            .filter(Booking.slot_id.in_(slot_ids), Booking.status == BookingStatus.TENTATIVE)
            .all()
        )
        pending: dict[int, list[int]] = {}
        for slot_id, booking_id in rows:
            pending.setdefault(slot_id, []).append(booking_id)

        for slot_id, booking_ids in pending.items():
            slot = db.get(VisitSlot, slot_id)
            SlotService.report_conflict(
                db,
                slot,
                conflicting_slot_id=None,
                title=f"Slot expired with {len(booking_ids)} unconfirmed booking(s)",
                description=f"Tentative bookings: {', '.join(str(b) for b in booking_ids)}",
                severity=ConflictSeverity.LOW,
                conflict_type="unconfirmed_bookings",
            )
    except Exception:
        db.rollback()
        logger.warning("Failed to record unconfirmed booking issues", exc_info=True)


def send_booking_reminders(db: Session, now: Optional[datetime] = None) -> dict[str, int]:
    """다음 날 방문 예정인 확정 예약에 리마인더 발송"""
    now = now or utcnow()
    tomorrow = now.astimezone(slot_timezone()).date() + timedelta(days=1)

    bookings = (
        db.query(Booking)
        .join(VisitSlot, Booking.slot_id == VisitSlot.id)
        .join(Visitor, Booking.visitor_id == Visitor.id)
        .filter(
            Booking.status == BookingStatus.CONFIRMED,
            VisitSlot.date == tomorrow,
            Visitor.email.isnot(None),
            Booking.tracking_token.isnot(None),
            Booking.reminder_sent_at.is_(None),
        )
        .all()
    )

    sent = failed = 0
    for booking in bookings:
        try:
            data = build_email_data(booking)
            if data and NotificationService.send_booking_reminder(data):
                booking.reminder_sent_at = utcnow()
                db.commit()
                sent += 1
            else:
                failed += 1
        except Exception:
            db.rollback()
            failed += 1
            logger.warning("Failed to send reminder for booking %s", booking.id, exc_info=True)

    logger.info("Booking reminder emails: %d sent, %d failed", sent, failed)
    return {"sent": sent, "failed": failed}


def run_expiry_sweep() -> None:
    """스케줄러용 만료 작업 (예외를 밖으로 던지지 않음)"""
    db = SessionLocal()
    try:
        expire_past_slots(db)
    except Exception:
        db.rollback()
        logger.exception("Slot expiry sweep failed")
    finally:
        db.close()


def run_reminder_job() -> None:
    db = SessionLocal()
    try:
        send_booking_reminders(db)
    except Exception:
        db.rollback()
        logger.exception("Booking reminder job failed")
    finally:
        db.close()


def start_scheduler() -> BackgroundScheduler:
    """만료/리마인더 작업 등록 후 시작"""
    global _scheduler
    if _scheduler is not None and _scheduler.running:
        return _scheduler

    scheduler = BackgroundScheduler(timezone=settings.timezone)
    scheduler.add_job(
        run_expiry_sweep,
        "interval",
        minutes=settings.expiry_interval_minutes,
        id=EXPIRY_JOB_ID,
        next_run_time=utcnow(),
        coalesce=True,
        max_instances=1,
        replace_existing=True,
    )
    if settings.reminders_enabled:
        scheduler.add_job(
            run_reminder_job,
            "cron",
            hour=settings.reminder_hour,
            minute=0,
            id=REMINDER_JOB_ID,
            coalesce=True,
            max_instances=1,
            replace_existing=True,
        )
    scheduler.start()
    _scheduler = scheduler
    logger.info("Scheduler started (expiry every %s min)", settings.expiry_interval_minutes)
    return scheduler


def shutdown_scheduler() -> None:
    global _scheduler
    if _scheduler is not None and _scheduler.running:
        _scheduler.shutdown(wait=False)
    _scheduler = None
