"""
방문 슬롯 관리 API 라우트
"""
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import Optional
from datetime import date
from app.database import get_db
from app.dependencies import get_current_actor, get_current_manager
from app.schemas.auth import TokenPayload
from app.schemas.slot import (
    SlotCreate,
    SlotUpdate,
    SlotResponse,
    SlotListResponse,
    SlotAvailabilityResponse,
    ScheduleIssueResponse,
    ScheduleIssueResolve,
    SlotStatus,
)
from app.models.schedule_conflict import ConflictStatus
from app.services.slot_service import SlotService

router = APIRouter(
    prefix="/api/slots",
    tags=["Visit Slots"]
)


@router.post("", response_model=SlotResponse, status_code=status.HTTP_201_CREATED)
def create_slot(
        slot_data: SlotCreate,
        db: Session = Depends(get_db),
        actor: TokenPayload = Depends(get_current_manager)
):
    """새로운 방문 슬롯 생성"""
    return SlotService.create_slot(db, slot_data.model_dump(), actor.sub)


@router.get("", response_model=SlotListResponse)
def list_slots(
        db: Session = Depends(get_db),
        _: TokenPayload = Depends(get_current_actor),
        skip: int = Query(0, ge=0),
        limit: int = Query(100, ge=1, le=1000),
        date_from: Optional[date] = Query(None),
        date_to: Optional[date] = Query(None),
        status: Optional[SlotStatus] = Query(None)
):
    """방문 슬롯 목록 조회 (날짜 범위, 상태 필터)"""
    slots, total = SlotService.list_slots(db, date_from, date_to, status, skip, limit)
    return {
        "total": total,
        "items": slots
    }


@router.get("/public/available", response_model=list[SlotResponse])
def list_public_available_slots(
        db: Session = Depends(get_db),
        date_from: Optional[date] = Query(None),
        date_to: Optional[date] = Query(None)
):
    """예약 가능한 슬롯 조회 (인증 불필요)"""
    return SlotService.list_public_available_slots(db, date_from, date_to)


@router.get("/issues", response_model=list[ScheduleIssueResponse])
def list_schedule_issues(
        db: Session = Depends(get_db),
        _: TokenPayload = Depends(get_current_manager)
):
    """미해결 일정 문제 조회"""
    return SlotService.list_schedule_issues(db)


@router.post("/issues/{conflict_id}/resolve", response_model=ScheduleIssueResponse)
def resolve_schedule_issue(
        conflict_id: int,
        resolve_data: ScheduleIssueResolve,
        db: Session = Depends(get_db),
        _: TokenPayload = Depends(get_current_manager)
):
    """일정 문제 해결 또는 무시 처리"""
    return SlotService.resolve_conflict(db, conflict_id, ConflictStatus(resolve_data.status))


@router.get("/{slot_id}", response_model=SlotResponse)
def get_slot(
        slot_id: int,
        db: Session = Depends(get_db),
        _: TokenPayload = Depends(get_current_actor)
):
    """방문 슬롯 상세 조회"""
    return SlotService.get_slot(db, slot_id)


@router.get("/{slot_id}/availability", response_model=SlotAvailabilityResponse)
def check_availability(
        slot_id: int,
        db: Session = Depends(get_db),
        group_size: int = Query(1, ge=1)
):
    """잔여 정원 확인 (인증 불필요)"""
    return SlotService.check_availability(db, slot_id, group_size)


@router.put("/{slot_id}", response_model=SlotResponse)
def update_slot(
        slot_id: int,
        slot_data: SlotUpdate,
        db: Session = Depends(get_db),
        actor: TokenPayload = Depends(get_current_manager)
):
    """방문 슬롯 정보 수정"""
    return SlotService.update_slot(db, slot_id, slot_data.model_dump(exclude_unset=True), actor.sub)


@router.delete("/{slot_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_slot(
        slot_id: int,
        db: Session = Depends(get_db),
        actor: TokenPayload = Depends(get_current_manager)
):
    """방문 슬롯 삭제 (활성 예약이 없을 때만)"""
    SlotService.delete_slot(db, slot_id, actor.sub)
    return None
