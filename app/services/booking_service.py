"""
방문 예약 관리 서비스
예약 생성/확정/취소/수정과 공개(토큰) 예약 처리

모든 변경은 슬롯 잠금 안에서 정원 검증 → 기록 → 슬롯 재계산 → 커밋 순서로 처리하고,
감사 로그와 메일 발송은 커밋 이후 실패해도 무시한다.
"""
import logging
import secrets
import time
from typing import Any, Callable, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.models.booking import ACTIVE_BOOKING_STATUSES, Booking, BookingStatus
from app.models.slot import VisitSlot
from app.models.visitor import Visitor
from app.services.audit_service import AuditService
from app.services.capacity import lock_slot_row, slot_lock, validate_booking_capacity
from app.services.notification_service import NotificationService, build_email_data
from app.services.slot_service import SlotService
from app.services.visitor_service import VisitorService
from app.utils.exceptions import (
    AlreadyCancelled,
    BookingImmutable,
    BookingNotFound,
    CapacityExceeded,
    InvalidTransition,
    NoFieldsToUpdate,
    SlotNotFound,
)
from app.utils.time_utils import utcnow

logger = logging.getLogger(__name__)

# 혼동되는 문자(0/O, 1/I) 제외
TRACKING_TOKEN_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
TRACKING_TOKEN_LENGTH = 12
TRACKING_TOKEN_MAX_ATTEMPTS = 10

ALLOWED_TRANSITIONS = {
    BookingStatus.TENTATIVE: {BookingStatus.CONFIRMED, BookingStatus.CANCELLED},
    BookingStatus.CONFIRMED: {BookingStatus.CANCELLED, BookingStatus.COMPLETED, BookingStatus.NO_SHOW},
}

BOOKING_UPDATE_FIELDS = ("group_size", "special_requests", "notes", "status")
PUBLIC_UPDATE_FIELDS = ("group_size", "special_requests", "notes")

_PUBLIC_NOT_FOUND = "Booking not found. Please check your email and tracking token."


def _base36(number: int) -> str:
    digits = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"
    out = ""
    while number:
        number, rem = divmod(number, 36)
        out = digits[rem] + out
    return out or "0"


def _random_token(length: int = TRACKING_TOKEN_LENGTH) -> str:
    return "".join(secrets.choice(TRACKING_TOKEN_ALPHABET) for _ in range(length))


def _guard_mutable(booking: Booking) -> None:
    """완료/취소된 예약 변경 차단"""
    if booking.status == BookingStatus.COMPLETED:
        raise BookingImmutable(f"Booking {booking.id} is completed and cannot be changed")
    if booking.status == BookingStatus.CANCELLED:
        raise AlreadyCancelled(f"Booking {booking.id} is already cancelled")


def _guard_transition(booking: Booking, target: BookingStatus) -> None:
    _guard_mutable(booking)
    if target not in ALLOWED_TRANSITIONS.get(booking.status, set()):
        raise InvalidTransition(
            f"Cannot change booking {booking.id} from {booking.status.value} to {target.value}"
        )


class BookingService:
    """방문 예약 관리 서비스"""

    # ---- 조회 ----

    @staticmethod
    def get_booking(db: Session, booking_id: int) -> Booking:
        """ID로 예약 조회"""
        booking = db.query(Booking).filter(Booking.id == booking_id).first()
        if not booking:
            raise BookingNotFound(f"Booking with ID {booking_id} not found")
        return booking

    @staticmethod
    def list_bookings(
            db: Session,
            slot_id: Optional[int] = None,
            visitor_id: Optional[int] = None,
            status: Optional[BookingStatus] = None,
            skip: int = 0,
            limit: int = 100,
    ) -> tuple[List[Booking], int]:
        """슬롯/방문자/상태별 예약 조회"""
        query = db.query(Booking)
        if slot_id:
            query = query.filter(Booking.slot_id == slot_id)
        if visitor_id:
            query = query.filter(Booking.visitor_id == visitor_id)
        if status:
            query = query.filter(Booking.status == BookingStatus(status))

        total = query.count()
        bookings = query.order_by(Booking.created_at.desc(), Booking.id.desc()).offset(skip).limit(limit).all()
        return bookings, total

    @staticmethod
    def generate_tracking_token(db: Session) -> str:
        """
        공개 예약 추적 토큰 생성
        - 12자 무작위 토큰을 최대 10회 시도하고, 모두 충돌하면 타임스탬프+난수 조합을 쓴다.
        - 최종 중복 방지는 tracking_token 유니크 인덱스가 담당한다.
        """
        for _ in range(TRACKING_TOKEN_MAX_ATTEMPTS):
            token = _random_token()
            exists = db.query(Booking.id).filter(Booking.tracking_token == token).first()
            if not exists:
                return token

        logger.warning("Tracking token collided %d times; using timestamp composite", TRACKING_TOKEN_MAX_ATTEMPTS)
        return f"{_base36(int(time.time() * 1000))}{_random_token(6)}"

    # ---- 생성 ----

    @staticmethod
    def create_booking(
            db: Session,
            slot_id: int,
            visitor_id: int,
            group_size: int,
            special_requests: Optional[str] = None,
            actor: Optional[str] = None,
            notes: Optional[str] = None,
    ) -> Booking:
        """예약 생성 (tentative)"""
        return BookingService._insert_booking(
            db,
            slot_id,
            lambda: VisitorService.get_visitor_by_id(db, visitor_id),
            group_size=group_size,
            special_requests=special_requests,
            notes=notes,
            actor=actor,
        )

    @staticmethod
    def create_public_booking(
            db: Session,
            slot_id: int,
            name: str,
            email: str,
            group_size: int,
            phone: Optional[str] = None,
            special_requests: Optional[str] = None,
    ) -> Booking:
        """비로그인 예약: 이메일로 방문자를 찾거나 만들고 추적 토큰 발급"""
        return BookingService._insert_booking(
            db,
            slot_id,
            lambda: VisitorService.find_or_create_by_email(db, email, name, phone),
            group_size=group_size,
            special_requests=special_requests,
            notes=None,
            actor=None,
            with_tracking_token=True,
        )

    @staticmethod
    def _insert_booking(
            db: Session,
            slot_id: int,
            resolve_visitor: Callable[[], Visitor],
            group_size: int,
            special_requests: Optional[str],
            notes: Optional[str],
            actor: Optional[str],
            with_tracking_token: bool = False,
    ) -> Booking:
        with slot_lock(slot_id):
            try:
                slot = lock_slot_row(db, slot_id)
                if not slot:
                    raise SlotNotFound(slot_id)

                # 캐시된 상태가 오래되었을 수 있으므로 먼저 갱신
                SlotService.refresh_slot(db, slot)
                validate_booking_capacity(db, slot, group_size)

                visitor = resolve_visitor()
                booking = Booking(
                    slot_id=slot.id,
                    visitor_id=visitor.id,
                    group_size=group_size,
                    status=BookingStatus.TENTATIVE,
                    special_requests=special_requests,
                    notes=notes,
                    tracking_token=BookingService.generate_tracking_token(db) if with_tracking_token else None,
                    created_by=actor,
                )
                db.add(booking)
                SlotService.refresh_slot(db, slot)
                db.commit()
            except Exception:
                db.rollback()
                raise

        db.refresh(booking)
        logger.info("Booking %s created on slot %s (group_size=%s)", booking.id, slot_id, group_size)
        BookingService._audit(db, "booking_created", booking, actor, {"group_size": booking.group_size})
        return booking

    # ---- 상태 전이 ----

    @staticmethod
    def confirm_booking(db: Session, booking_id: int, actor: Optional[str] = None) -> Booking:
        """예약 확정 (confirmed_at 기록, 확정 메일 발송 시도)"""
        booking = BookingService.get_booking(db, booking_id)
        if booking.status == BookingStatus.CONFIRMED:
            return booking

        booking = BookingService._apply_changes(db, booking, {"status": BookingStatus.CONFIRMED})
        BookingService._audit(db, "booking_confirmed", booking, actor)
        BookingService._send_confirmation(booking)
        return booking

    @staticmethod
    def cancel_booking(db: Session, booking_id: int, reason: str, actor: Optional[str] = None) -> Booking:
        """예약 취소 (사유 필수)"""
        booking = BookingService.get_booking(db, booking_id)
        slot_id = booking.slot_id

        with slot_lock(slot_id):
            try:
                booking = BookingService._reload(db, booking_id)
                _guard_transition(booking, BookingStatus.CANCELLED)
                if not reason or not reason.strip():
                    raise InvalidTransition("Cancellation reason is required")

                slot = lock_slot_row(db, slot_id)
                booking.status = BookingStatus.CANCELLED
                booking.cancelled_at = utcnow()
                booking.cancellation_reason = reason.strip()
                SlotService.refresh_slot(db, slot)
                db.commit()
            except Exception:
                db.rollback()
                raise

        db.refresh(booking)
        logger.info("Booking %s cancelled", booking.id)
        BookingService._audit(db, "booking_cancelled", booking, actor, {"reason": booking.cancellation_reason})
        return booking

    @staticmethod
    def complete_booking(db: Session, booking_id: int, actor: Optional[str] = None) -> Booking:
        """방문 완료 처리 (confirmed 에서만)"""
        booking = BookingService.get_booking(db, booking_id)
        booking = BookingService._apply_changes(db, booking, {"status": BookingStatus.COMPLETED})
        BookingService._audit(db, "booking_completed", booking, actor)
        return booking

    @staticmethod
    def mark_no_show(db: Session, booking_id: int, actor: Optional[str] = None) -> Booking:
        """미방문 처리 (confirmed 에서만)"""
        booking = BookingService.get_booking(db, booking_id)
        booking = BookingService._apply_changes(db, booking, {"status": BookingStatus.NO_SHOW})
        BookingService._audit(db, "booking_no_show", booking, actor)
        return booking

    # ---- 수정 ----

    @staticmethod
    def update_booking(db: Session, booking_id: int, updates: dict[str, Any], actor: Optional[str] = None) -> Booking:
        """예약 정보 수정 (전달된 필드만)"""
        changes = {k: v for k, v in updates.items() if k in BOOKING_UPDATE_FIELDS}
        for key in ("group_size", "status"):
            if changes.get(key) is None:
                changes.pop(key, None)
        if not changes:
            raise NoFieldsToUpdate()

        booking = BookingService.get_booking(db, booking_id)
        was_confirmed = booking.status == BookingStatus.CONFIRMED
        booking = BookingService._apply_changes(db, booking, changes)

        BookingService._audit(db, "booking_updated", booking, actor, {"fields": sorted(changes)})
        if not was_confirmed and booking.status == BookingStatus.CONFIRMED:
            BookingService._send_confirmation(booking)
        return booking

    @staticmethod
    def _apply_changes(db: Session, booking: Booking, changes: dict[str, Any]) -> Booking:
        """슬롯 잠금 안에서 필드/상태 변경을 검증하고 커밋"""
        slot_id = booking.slot_id
        booking_id = booking.id

        with slot_lock(slot_id):
            try:
                booking = BookingService._reload(db, booking_id)
                _guard_mutable(booking)
                slot = lock_slot_row(db, slot_id)

                target = changes.get("status")
                if target is not None:
                    target = BookingStatus(target)
                    if target == BookingStatus.CANCELLED:
                        raise InvalidTransition("Use cancel with a reason to cancel a booking")
                    if target != booking.status:
                        _guard_transition(booking, target)
                    else:
                        target = None

                if "group_size" in changes and changes["group_size"] != booking.group_size:
                    BookingService._validate_group_size(db, slot, booking, changes["group_size"])
                    booking.group_size = changes["group_size"]

                if "special_requests" in changes:
                    booking.special_requests = changes["special_requests"]
                if "notes" in changes:
                    booking.notes = changes["notes"]

                if target is not None:
                    booking.status = target
                    if target == BookingStatus.CONFIRMED:
                        booking.confirmed_at = utcnow()

                SlotService.refresh_slot(db, slot)
                db.commit()
            except Exception:
                db.rollback()
                raise

        db.refresh(booking)
        return booking

    @staticmethod
    def _validate_group_size(db: Session, slot: VisitSlot, booking: Booking, new_size: int) -> None:
        if new_size is None or new_size < 1:
            raise CapacityExceeded(available=slot.capacity, requested=new_size or 0)
        # 인원을 줄이는 경우와 정원을 차지하지 않는 예약은 검증 불필요
        if new_size <= booking.group_size or booking.status not in ACTIVE_BOOKING_STATUSES:
            return
        validate_booking_capacity(db, slot, new_size, exclude_booking_id=booking.id)

    @staticmethod
    def _reload(db: Session, booking_id: int) -> Booking:
        booking = (
            db.query(Booking)
            .filter(Booking.id == booking_id)
            .populate_existing()
            .first()
        )
        if not booking:
            raise BookingNotFound(f"Booking with ID {booking_id} not found")
        return booking

    # ---- 공개(추적 토큰) 예약 ----

    @staticmethod
    def track_booking(db: Session, email: str, token: str) -> Booking:
        """
        이메일 + 추적 토큰으로 예약 조회
        어느 쪽이 틀렸는지 구분하지 않고 같은 오류를 낸다.
        """
        normalized_email = (email or "").strip().lower()
        normalized_token = (token or "").strip().upper()
        if not normalized_email or not normalized_token:
            raise BookingNotFound(_PUBLIC_NOT_FOUND)

        booking = (
            db.query(Booking)
            .join(Visitor, Booking.visitor_id == Visitor.id)
            .filter(
                Booking.tracking_token == normalized_token,
                func.lower(Visitor.email) == normalized_email,
            )
            .first()
        )
        if not booking:
            raise BookingNotFound(_PUBLIC_NOT_FOUND)
        return booking

    @staticmethod
    def cancel_public_booking(db: Session, email: str, token: str, reason: str) -> Booking:
        booking = BookingService.track_booking(db, email, token)
        return BookingService.cancel_booking(db, booking.id, reason, actor=None)

    @staticmethod
    def update_public_booking(db: Session, email: str, token: str, updates: dict[str, Any]) -> Booking:
        booking = BookingService.track_booking(db, email, token)
        allowed = {k: v for k, v in updates.items() if k in PUBLIC_UPDATE_FIELDS}
        return BookingService.update_booking(db, booking.id, allowed, actor=None)

    # ---- 부수 효과 ----

    @staticmethod
    def _audit(db: Session, action: str, booking: Booking, actor: Optional[str], details: Optional[dict] = None) -> None:
        slot = booking.slot
        payload = {
            "status": booking.status.value,
            "slot_date": slot.date.isoformat() if slot else None,
            "slot_time": slot.start_time if slot else None,
            **(details or {}),
        }
        AuditService.record(
            db,
            action,
            actor=actor,
            slot_id=booking.slot_id,
            booking_id=booking.id,
            details=payload,
        )

    @staticmethod
    def _send_confirmation(booking: Booking) -> bool:
        """확정 메일 (실패해도 확정은 유지)"""
        try:
            data = build_email_data(booking)
            if data is None:
                return False
            return NotificationService.send_booking_confirmation(data)
        except Exception:
            logger.warning("Failed to send confirmation for booking %s", booking.id, exc_info=True)
            return False
