"""
애플리케이션 설정 파일
환경 변수를 통해 설정 관리
"""
from pydantic_settings import BaseSettings
from typing import Optional
from pathlib import Path


class Settings(BaseSettings):
    """애플리케이션 설정"""

    # 데이터베이스 설정
    database_url: str = "sqlite:///./visit_booking.db"

    # JWT 설정
    secret_key: str = "your-secret-key-here-change-in-production"
    algorithm: str = "HS256"

    # 애플리케이션 설정
    app_name: str = "Visit Booking Engine"
    debug: bool = False
    log_level: str = "INFO"

    # CORS 설정
    allowed_origins: list[str] = ["http://localhost:3000", "http://localhost:5173"]

    # 슬롯 시작 시각을 해석하는 기준 시간대
    timezone: str = "UTC"

    # 슬롯 잠금 대기 한도 (초)
    slot_lock_timeout_seconds: float = 10.0

    # 스케줄러 설정
    scheduler_enabled: bool = True
    expiry_interval_minutes: int = 60
    reminders_enabled: bool = True
    reminder_hour: int = 9

    # 메일 설정 (smtp_host 가 비어 있으면 발송하지 않음)
    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_user: Optional[str] = None
    smtp_password: Optional[str] = None
    mail_from: str = "Visit Booking <noreply@localhost>"
    frontend_url: str = "http://localhost:5173"

    class Config:
        # 실행 위치와 무관하게 프로젝트 루트의 .env 를 찾도록 고정
        env_file = str(Path(__file__).resolve().parents[1] / ".env")
        case_sensitive = False


settings = Settings()
