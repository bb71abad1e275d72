"""
방문 예약 관리 API 라우트 (직원용)
"""
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import Optional
from app.database import get_db
from app.dependencies import get_current_actor
from app.schemas.auth import TokenPayload
from app.schemas.booking import (
    BookingCreate,
    BookingUpdate,
    BookingCancel,
    BookingResponse,
    BookingListResponse,
    BookingStatus
)
from app.services.booking_service import BookingService

router = APIRouter(
    prefix="/api/bookings",
    tags=["Bookings"]
)


@router.post("", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
def create_booking(
        booking_data: BookingCreate,
        db: Session = Depends(get_db),
        actor: TokenPayload = Depends(get_current_actor)
):
    """새로운 방문 예약 생성 (tentative)"""
    return BookingService.create_booking(
        db,
        booking_data.slot_id,
        booking_data.visitor_id,
        booking_data.group_size,
        special_requests=booking_data.special_requests,
        actor=actor.sub,
        notes=booking_data.notes,
    )


@router.get("", response_model=BookingListResponse)
def list_bookings(
        db: Session = Depends(get_db),
        _: TokenPayload = Depends(get_current_actor),
        skip: int = Query(0, ge=0),
        limit: int = Query(100, ge=1, le=1000),
        slot_id: Optional[int] = Query(None),
        visitor_id: Optional[int] = Query(None),
        status: Optional[BookingStatus] = Query(None)
):
    """방문 예약 목록 조회 (슬롯, 방문자, 상태 필터)"""
    bookings, total = BookingService.list_bookings(db, slot_id, visitor_id, status, skip, limit)
    return {
        "total": total,
        "items": bookings
    }


@router.get("/{booking_id}", response_model=BookingResponse)
def get_booking(
        booking_id: int,
        db: Session = Depends(get_db),
        _: TokenPayload = Depends(get_current_actor)
):
    """방문 예약 상세 조회"""
    return BookingService.get_booking(db, booking_id)


@router.put("/{booking_id}", response_model=BookingResponse)
def update_booking(
        booking_id: int,
        booking_data: BookingUpdate,
        db: Session = Depends(get_db),
        actor: TokenPayload = Depends(get_current_actor)
):
    """방문 예약 정보 수정"""
    return BookingService.update_booking(db, booking_id, booking_data.model_dump(exclude_unset=True), actor.sub)


@router.post("/{booking_id}/confirm", response_model=BookingResponse)
def confirm_booking(
        booking_id: int,
        db: Session = Depends(get_db),
        actor: TokenPayload = Depends(get_current_actor)
):
    """방문 예약 확정"""
    return BookingService.confirm_booking(db, booking_id, actor.sub)


@router.post("/{booking_id}/cancel", response_model=BookingResponse)
def cancel_booking(
        booking_id: int,
        cancel_data: BookingCancel,
        db: Session = Depends(get_db),
        actor: TokenPayload = Depends(get_current_actor)
):
    """방문 예약 취소 (상태 변경)"""
    return BookingService.cancel_booking(db, booking_id, cancel_data.reason, actor.sub)


@router.post("/{booking_id}/complete", response_model=BookingResponse)
def complete_booking(
        booking_id: int,
        db: Session = Depends(get_db),
        actor: TokenPayload = Depends(get_current_actor)
):
    """방문 완료 처리"""
    return BookingService.complete_booking(db, booking_id, actor.sub)


@router.post("/{booking_id}/no-show", response_model=BookingResponse)
def mark_no_show(
        booking_id: int,
        db: Session = Depends(get_db),
        actor: TokenPayload = Depends(get_current_actor)
):
    """미방문 처리"""
    return BookingService.mark_no_show(db, booking_id, actor.sub)
