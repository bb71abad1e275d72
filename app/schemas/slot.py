"""
방문 슬롯 관련 Pydantic 스키마 (API 요청/응답)
"""
from pydantic import BaseModel, Field
import datetime as dt
from typing import Optional, Union
from enum import Enum


class SlotStatus(str, Enum):
    """슬롯 상태"""
    AVAILABLE = "available"
    BOOKED = "booked"
    CANCELLED = "cancelled"
    MAINTENANCE = "maintenance"
    EXPIRED = "expired"


class SlotCreate(BaseModel):
    """슬롯 생성 요청"""
    date: Union[dt.date, str] = Field(..., description="방문 날짜 (YYYY-MM-DD)")
    start_time: str = Field(..., description="시작 시각 (HH:MM 또는 HH:MM:SS)")
    end_time: str = Field(..., description="종료 시각 (HH:MM 또는 HH:MM:SS)")
    duration_minutes: Optional[int] = Field(None, gt=0)
    capacity: int = Field(..., gt=0)
    status: Optional[SlotStatus] = None
    description: Optional[str] = Field(None, max_length=500)


class SlotUpdate(BaseModel):
    """슬롯 정보 수정"""
    date: Optional[Union[dt.date, str]] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    duration_minutes: Optional[int] = Field(None, gt=0)
    capacity: Optional[int] = Field(None, gt=0)
    status: Optional[SlotStatus] = None
    description: Optional[str] = Field(None, max_length=500)


class SlotResponse(BaseModel):
    """슬롯 응답"""
    id: int
    date: dt.date
    start_time: str
    end_time: str
    duration_minutes: int
    capacity: int
    booked_count: int
    status: SlotStatus
    description: Optional[str]
    created_by: Optional[str]
    created_at: dt.datetime
    updated_at: dt.datetime

    class Config:
        from_attributes = True


class SlotListResponse(BaseModel):
    """슬롯 목록 응답"""
    total: int
    items: list[SlotResponse]


class SlotAvailabilityResponse(BaseModel):
    """잔여 정원 확인 응답"""
    slot_id: int
    status: SlotStatus
    available_capacity: int
    active_bookings: int
    is_available: bool


class ScheduleIssueResponse(BaseModel):
    """일정 문제 응답"""
    id: int
    conflict_type: str
    title: str
    description: Optional[str]
    severity: str
    status: str
    affected_slot_id: Optional[int]
    conflicting_slot_id: Optional[int]
    created_at: dt.datetime

    class Config:
        from_attributes = True


class ScheduleIssueResolve(BaseModel):
    """일정 문제 처리 요청"""
    status: str = Field("resolved", pattern="^(resolved|dismissed)$")
