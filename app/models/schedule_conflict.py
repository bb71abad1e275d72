"""
일정 충돌 기록 모델
"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Enum as SQLEnum
from app.utils.time_utils import utcnow
import enum
from app.database import Base


class ConflictSeverity(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ConflictStatus(str, enum.Enum):
    PENDING = "pending"
    RESOLVED = "resolved"
    DISMISSED = "dismissed"


class ScheduleConflict(Base):
    """감지되었으나 자동 해결되지 않은 일정 문제"""
    __tablename__ = "schedule_conflicts"

    id = Column(Integer, primary_key=True, index=True)
    conflict_type = Column(String(50), nullable=False, default="overlap")
    title = Column(String(200), nullable=False)
    description = Column(String(1000), nullable=True)
    severity = Column(SQLEnum(ConflictSeverity), default=ConflictSeverity.MEDIUM, nullable=False)
    status = Column(SQLEnum(ConflictStatus), default=ConflictStatus.PENDING, nullable=False, index=True)
    affected_slot_id = Column(Integer, ForeignKey("visit_slots.id", ondelete="CASCADE"), nullable=True)
    conflicting_slot_id = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    resolved_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<ScheduleConflict(id={self.id}, type={self.conflict_type}, status={self.status})>"
