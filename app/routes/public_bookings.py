"""
공개 예약 API 라우트 (인증 불필요, 이메일 + 추적 토큰)
"""
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from app.database import get_db
from app.schemas.booking import (
    PublicBookingCreate,
    PublicBookingCancel,
    PublicBookingUpdate,
    PublicBookingResponse,
)
from app.services.booking_service import BookingService

router = APIRouter(
    prefix="/api/public/bookings",
    tags=["Public Bookings"]
)


@router.post("", response_model=PublicBookingResponse, status_code=status.HTTP_201_CREATED)
def create_public_booking(
        booking_data: PublicBookingCreate,
        db: Session = Depends(get_db)
):
    """비로그인 방문 예약 생성 (추적 토큰 발급)"""
    return BookingService.create_public_booking(
        db,
        booking_data.slot_id,
        name=booking_data.name,
        email=booking_data.email,
        group_size=booking_data.group_size,
        phone=booking_data.phone,
        special_requests=booking_data.special_requests,
    )


@router.get("/track", response_model=PublicBookingResponse)
def track_booking(
        email: str = Query(...),
        token: str = Query(...),
        db: Session = Depends(get_db)
):
    """이메일과 추적 토큰으로 예약 조회"""
    return BookingService.track_booking(db, email, token)


@router.put("/cancel", response_model=PublicBookingResponse)
def cancel_public_booking(
        cancel_data: PublicBookingCancel,
        db: Session = Depends(get_db)
):
    """이메일과 추적 토큰으로 예약 취소"""
    return BookingService.cancel_public_booking(db, cancel_data.email, cancel_data.token, cancel_data.reason)


@router.put("/update", response_model=PublicBookingResponse)
def update_public_booking(
        update_data: PublicBookingUpdate,
        db: Session = Depends(get_db)
):
    """이메일과 추적 토큰으로 예약 수정"""
    updates = update_data.model_dump(exclude_unset=True, exclude={"email", "token"})
    return BookingService.update_public_booking(db, update_data.email, update_data.token, updates)
