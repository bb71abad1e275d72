"""
예약 알림 발송
SMTP 가 설정되지 않았거나 발송에 실패하면 False 를 반환하고 예외를 던지지 않는다.
"""
import logging
import smtplib
from email.mime.text import MIMEText
from typing import Optional
from urllib.parse import quote

from pydantic import BaseModel

from app.config import settings

logger = logging.getLogger(__name__)


class BookingEmailData(BaseModel):
    """알림에 필요한 예약 정보 묶음"""
    visitor_name: str
    visitor_email: str
    slot_date: str
    slot_time: str
    slot_end_time: str
    group_size: int
    tracking_token: str
    special_requests: Optional[str] = None


def build_email_data(booking) -> Optional[BookingEmailData]:
    """방문자 이메일과 추적 토큰이 모두 있을 때만 묶음 생성"""
    visitor = booking.visitor
    if not visitor or not visitor.email or not booking.tracking_token:
        return None
    slot = booking.slot
    return BookingEmailData(
        visitor_name=visitor.name,
        visitor_email=visitor.email,
        slot_date=slot.date.isoformat(),
        slot_time=slot.start_time[:5],
        slot_end_time=slot.end_time[:5],
        group_size=booking.group_size,
        tracking_token=booking.tracking_token,
        special_requests=booking.special_requests,
    )


def _tracking_url(data: BookingEmailData) -> str:
    return f"{settings.frontend_url}/track?email={quote(data.visitor_email)}&token={data.tracking_token}"


def _send(to_email: str, subject: str, body: str) -> bool:
    if not settings.smtp_host:
        logger.debug("SMTP host not configured; skipping email to %s", to_email)
        return False

    msg = MIMEText(body, "plain")
    msg["Subject"] = subject
    msg["From"] = settings.mail_from
    msg["To"] = to_email
    try:
        with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=10) as server:
            server.starttls()
            if settings.smtp_user and settings.smtp_password:
                server.login(settings.smtp_user, settings.smtp_password)
            server.sendmail(settings.mail_from, [to_email], msg.as_string())
        logger.info("Email '%s' sent to %s", subject, to_email)
        return True
    except Exception as e:
        logger.exception("Failed to send email to %s: %s", to_email, e)
        return False


class NotificationService:
    """예약 확정/리마인더 메일"""

    @staticmethod
    def send_booking_confirmation(data: BookingEmailData) -> bool:
        body = "\n".join([
            f"Hello {data.visitor_name},",
            "",
            f"Your visit on {data.slot_date} {data.slot_time}-{data.slot_end_time} "
            f"for {data.group_size} visitor(s) is confirmed.",
            f"Tracking token: {data.tracking_token}",
            f"Manage your booking: {_tracking_url(data)}",
        ])
        return _send(data.visitor_email, "Your visit booking is confirmed", body)

    @staticmethod
    def send_booking_reminder(data: BookingEmailData) -> bool:
        body = "\n".join([
            f"Hello {data.visitor_name},",
            "",
            f"This is a reminder of your visit on {data.slot_date} "
            f"{data.slot_time}-{data.slot_end_time}.",
            f"Tracking token: {data.tracking_token}",
            f"Manage your booking: {_tracking_url(data)}",
        ])
        return _send(data.visitor_email, "Reminder: your visit is tomorrow", body)
