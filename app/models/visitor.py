"""
방문자 모델 (데이터베이스 테이블)
"""
from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.orm import relationship
from app.utils.time_utils import utcnow
from app.database import Base


class Visitor(Base):
    """방문자 테이블"""
    __tablename__ = "visitors"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False, index=True)
    email = Column(String(100), nullable=True, index=True)
    phone = Column(String(20), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    # 관계
    bookings = relationship("Booking", back_populates="visitor")

    def __repr__(self):
        return f"<Visitor(id={self.id}, name={self.name}, email={self.email})>"
