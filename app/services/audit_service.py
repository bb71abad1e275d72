"""
감사 로그 서비스
기록 실패는 주 작업을 중단시키지 않는다 (로그 후 계속).
"""
import logging
from typing import Any, Optional

from sqlalchemy.orm import Session

from app.models.system_log import SystemLog

logger = logging.getLogger(__name__)


class AuditService:
    """슬롯/예약 이벤트 감사 기록"""

    @staticmethod
    def record(
            db: Session,
            action: str,
            actor: Optional[str] = None,
            slot_id: Optional[int] = None,
            booking_id: Optional[int] = None,
            details: Optional[dict[str, Any]] = None,
            message: Optional[str] = None,
            level: str = "info",
    ) -> bool:
        """감사 이벤트 기록 (별도 세션, 실패 시 False)"""
        try:
            with Session(bind=db.get_bind()) as audit_db:
                audit_db.add(SystemLog(
                    level=level,
                    action=action,
                    message=message,
                    slot_id=slot_id,
                    booking_id=booking_id,
                    actor=actor,
                    details=details or {},
                ))
                audit_db.commit()
        except Exception:
            logger.warning("Failed to record audit event %s", action, exc_info=True)
            return False

        logger.info(
            "audit action=%s slot_id=%s booking_id=%s actor=%s",
            action, slot_id, booking_id, actor,
        )
        return True
