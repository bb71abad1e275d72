"""
방문자 조회 서비스
예약 엔진이 사용하는 최소 기능만 제공 (조회, 이메일로 조회 또는 생성)
"""
from sqlalchemy import func
from sqlalchemy.orm import Session
from typing import Optional
from app.models.visitor import Visitor
from app.utils.exceptions import VisitorNotFound


class VisitorService:
    """방문자 조회 서비스"""

    @staticmethod
    def get_visitor_by_id(db: Session, visitor_id: int) -> Visitor:
        """ID로 방문자 조회"""
        visitor = db.query(Visitor).filter(Visitor.id == visitor_id).first()
        if not visitor:
            raise VisitorNotFound(visitor_id)
        return visitor

    @staticmethod
    def find_by_email(db: Session, email: str) -> Optional[Visitor]:
        """이메일로 방문자 조회 (대소문자 무시)"""
        normalized = (email or "").strip().lower()
        if not normalized:
            return None
        return (
            db.query(Visitor)
            .filter(func.lower(Visitor.email) == normalized)
            .order_by(Visitor.id)
            .first()
        )

    @staticmethod
    def find_or_create_by_email(db: Session, email: str, name: str, phone: Optional[str] = None) -> Visitor:
        """
        공개 예약용 방문자 확보
        - 같은 이메일의 방문자가 있으면 재사용하고, 없으면 새로 만든다 (커밋은 호출자 몫).
        """
        visitor = VisitorService.find_by_email(db, email)
        if visitor:
            # 비어 있던 연락처만 보충
            if phone and not visitor.phone:
                visitor.phone = phone
            return visitor

        visitor = Visitor(name=name.strip(), email=email.strip().lower(), phone=phone)
        db.add(visitor)
        db.flush()
        return visitor
