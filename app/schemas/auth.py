"""
인증 토큰 관련 Pydantic 스키마
"""
from pydantic import BaseModel
from enum import Enum


class ActorRole(str, Enum):
    """요청자 역할"""
    ADMIN = "admin"
    MANAGER = "manager"
    STAFF = "staff"


class TokenPayload(BaseModel):
    """토큰 페이로드"""
    sub: str
    exp: int
    iat: int
    role: ActorRole
