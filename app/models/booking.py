"""
방문 예약 모델 (데이터베이스 테이블)
"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, CheckConstraint, Enum as SQLEnum
from sqlalchemy.orm import relationship
from app.utils.time_utils import utcnow
import enum
from app.database import Base


class BookingStatus(str, enum.Enum):
    """예약 상태"""
    TENTATIVE = "tentative"  # 가예약
    CONFIRMED = "confirmed"  # 확정
    CANCELLED = "cancelled"  # 취소됨
    COMPLETED = "completed"  # 방문 완료
    NO_SHOW = "no_show"  # 미방문


# 정원을 차지하는 예약 상태
ACTIVE_BOOKING_STATUSES = (BookingStatus.TENTATIVE, BookingStatus.CONFIRMED)


class Booking(Base):
    """방문 예약 테이블"""
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    slot_id = Column(Integer, ForeignKey("visit_slots.id"), nullable=False, index=True)
    visitor_id = Column(Integer, ForeignKey("visitors.id"), nullable=False, index=True)
    group_size = Column(Integer, nullable=False, default=1)
    status = Column(SQLEnum(BookingStatus), default=BookingStatus.TENTATIVE, nullable=False, index=True)
    special_requests = Column(String(1000), nullable=True)
    notes = Column(String(1000), nullable=True)
    cancellation_reason = Column(String(500), nullable=True)
    tracking_token = Column(String(32), unique=True, nullable=True, index=True)
    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    reminder_sent_at = Column(DateTime(timezone=True), nullable=True)
    created_by = Column(String(64), nullable=True)  # 공개 예약은 NULL
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    # 관계
    slot = relationship("VisitSlot", back_populates="bookings")
    visitor = relationship("Visitor", back_populates="bookings")

    __table_args__ = (
        CheckConstraint("group_size > 0", name="ck_bookings_group_size_positive"),
    )

    def __repr__(self):
        return f"<Booking(id={self.id}, slot_id={self.slot_id}, status={self.status})>"
