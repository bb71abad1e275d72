"""
인증 의존성 및 권한 검사
FastAPI 의존성 주입 패턴 사용
"""
from fastapi import Depends, Header
from typing import Optional
from app.security.auth import verify_token
from app.schemas.auth import ActorRole, TokenPayload
from app.utils.exceptions import UnauthorizedException, ForbiddenException


def _extract_token(authorization: str) -> str:
    # Bearer 토큰 형식 추출 (Scheme과 Token 분리)
    try:
        scheme, token = authorization.split()
    except ValueError:
        raise UnauthorizedException(detail="Invalid authorization header format")
    if scheme.lower() != "bearer":
        raise UnauthorizedException(detail="Invalid authentication scheme")
    return token


async def get_current_actor(authorization: Optional[str] = Header(None)) -> TokenPayload:
    """
    현재 인증된 요청자 가져오기
    - Authorization 헤더에서 Bearer 토큰을 추출하고 검증합니다.
    """
    if not authorization:
        raise UnauthorizedException(detail="Missing authorization header")

    token_payload = verify_token(_extract_token(authorization))
    if not token_payload:
        raise UnauthorizedException(detail="Invalid or expired token")
    return token_payload


def get_current_manager(actor: TokenPayload = Depends(get_current_actor)) -> TokenPayload:
    """
    요청자가 관리자(ADMIN) 또는 매니저(MANAGER)인지 확인
    - 슬롯 생성/수정/삭제에 사용
    """
    if actor.role not in [ActorRole.ADMIN, ActorRole.MANAGER]:
        raise ForbiddenException(detail="Manager or admin access required")
    return actor
