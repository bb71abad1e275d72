"""
방문 예약 관련 Pydantic 스키마 (API 요청/응답)
"""
from pydantic import BaseModel, Field, field_validator
from datetime import datetime
from typing import Optional
from enum import Enum
import re

from app.schemas.slot import SlotResponse


_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class BookingStatus(str, Enum):
    """예약 상태"""
    TENTATIVE = "tentative"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    NO_SHOW = "no_show"


class BookingCreate(BaseModel):
    """예약 생성 요청 (직원)"""
    slot_id: int
    visitor_id: int
    group_size: int = Field(1, ge=1)
    special_requests: Optional[str] = Field(None, max_length=1000)
    notes: Optional[str] = Field(None, max_length=1000)


class PublicBookingCreate(BaseModel):
    """비로그인 예약 생성 요청"""
    slot_id: int
    name: str = Field(..., min_length=1, max_length=100)
    email: str
    phone: Optional[str] = Field(None, max_length=20)
    group_size: int = Field(1, ge=1)
    special_requests: Optional[str] = Field(None, max_length=1000)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        v = v.strip()
        if not _EMAIL_RE.match(v):
            raise ValueError("Invalid email format")
        return v


class BookingUpdate(BaseModel):
    """예약 정보 수정"""
    group_size: Optional[int] = Field(None, ge=1)
    special_requests: Optional[str] = Field(None, max_length=1000)
    notes: Optional[str] = Field(None, max_length=1000)
    status: Optional[BookingStatus] = None


class BookingCancel(BaseModel):
    """예약 취소 요청"""
    reason: str = Field(..., min_length=1, max_length=500)


class PublicBookingAccess(BaseModel):
    """이메일 + 추적 토큰"""
    email: str
    token: str = Field(..., min_length=1, max_length=32)


class PublicBookingCancel(PublicBookingAccess):
    reason: str = Field(..., min_length=1, max_length=500)


class PublicBookingUpdate(PublicBookingAccess):
    group_size: Optional[int] = Field(None, ge=1)
    special_requests: Optional[str] = Field(None, max_length=1000)
    notes: Optional[str] = Field(None, max_length=1000)


class BookingResponse(BaseModel):
    """예약 응답"""
    id: int
    slot_id: int
    visitor_id: int
    group_size: int
    status: BookingStatus
    special_requests: Optional[str]
    notes: Optional[str]
    cancellation_reason: Optional[str]
    confirmed_at: Optional[datetime]
    cancelled_at: Optional[datetime]
    created_by: Optional[str]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class PublicBookingResponse(BookingResponse):
    """공개 예약 응답 (추적 토큰과 슬롯 포함)"""
    tracking_token: Optional[str]
    slot: SlotResponse


class BookingListResponse(BaseModel):
    """예약 목록 응답"""
    total: int
    items: list[BookingResponse]
