"""
인증 관련 함수
JWT 토큰 생성 및 검증 (사용자 계정과 비밀번호는 외부 서비스가 관리)
"""
from datetime import datetime, timedelta, timezone
from typing import Optional
from jose import JWTError, jwt
from pydantic import ValidationError
from app.config import settings
from app.schemas.auth import TokenPayload


def create_access_token(actor_id: str, role: str, expires_delta: Optional[timedelta] = None) -> str:
    """JWT 액세스 토큰 생성 (운영 도구 및 테스트용)"""
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(minutes=30))

    to_encode = {
        "sub": str(actor_id),
        "role": role,
        "iat": int(now.timestamp()),
        "exp": int(expire.timestamp()),
    }
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def verify_token(token: str) -> Optional[TokenPayload]:
    """JWT 토큰 검증 및 페이로드 반환"""
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
        if payload.get("sub") is None:
            return None
        return TokenPayload(**payload)
    except (JWTError, ValidationError):
        return None
