"""
감사 로그 모델
"""
from sqlalchemy import Column, Integer, String, DateTime, JSON
from app.utils.time_utils import utcnow
from app.database import Base


class SystemLog(Base):
    """슬롯/예약 이벤트 감사 기록"""
    __tablename__ = "system_logs"

    id = Column(Integer, primary_key=True, index=True)
    level = Column(String(10), nullable=False, default="info")
    action = Column(String(50), nullable=False, index=True)
    message = Column(String(500), nullable=True)
    slot_id = Column(Integer, nullable=True, index=True)
    booking_id = Column(Integer, nullable=True, index=True)
    actor = Column(String(64), nullable=True)
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    def __repr__(self):
        return f"<SystemLog(id={self.id}, action={self.action})>"
