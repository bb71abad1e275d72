"""
방문 슬롯 모델 (데이터베이스 테이블)
"""
from sqlalchemy import Column, Integer, String, DateTime, Date, CheckConstraint, Enum as SQLEnum
from sqlalchemy.orm import relationship
from app.utils.time_utils import utcnow
import enum
from app.database import Base


class SlotStatus(str, enum.Enum):
    """슬롯 상태"""
    AVAILABLE = "available"  # 예약 가능
    BOOKED = "booked"  # 정원 마감
    CANCELLED = "cancelled"  # 관리자 취소
    MAINTENANCE = "maintenance"  # 점검
    EXPIRED = "expired"  # 시작 시각 경과


# 자동 상태 계산이 덮어쓰지 않는 상태
STICKY_SLOT_STATUSES = (SlotStatus.CANCELLED, SlotStatus.MAINTENANCE)


class VisitSlot(Base):
    """방문 슬롯 테이블"""
    __tablename__ = "visit_slots"

    id = Column(Integer, primary_key=True, index=True)
    date = Column(Date, nullable=False, index=True)
    start_time = Column(String(8), nullable=False)  # HH:MM:SS
    end_time = Column(String(8), nullable=False)  # HH:MM:SS
    duration_minutes = Column(Integer, nullable=False)
    capacity = Column(Integer, nullable=False)
    booked_count = Column(Integer, default=0, nullable=False)
    status = Column(SQLEnum(SlotStatus), default=SlotStatus.AVAILABLE, nullable=False, index=True)
    description = Column(String(500), nullable=True)
    created_by = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    # 관계
    bookings = relationship("Booking", back_populates="slot")

    __table_args__ = (
        CheckConstraint("capacity > 0", name="ck_visit_slots_capacity_positive"),
        CheckConstraint("booked_count >= 0", name="ck_visit_slots_booked_count_non_negative"),
        CheckConstraint("booked_count <= capacity", name="ck_visit_slots_booked_within_capacity"),
    )

    def __repr__(self):
        return f"<VisitSlot(id={self.id}, date={self.date}, start={self.start_time}, status={self.status})>"
