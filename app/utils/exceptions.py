"""
사용자 정의 예외 클래스
엔진 오류는 모두 AppException 을 상속하며 고정된 kind 를 가진다.
"""
from fastapi import HTTPException, status


class AppException(Exception):
    """기본 애플리케이션 예외"""
    kind = "AppError"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, status_code: int = None, **extra):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.extra = extra
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"kind": self.kind, "detail": self.message, **self.extra}


class InvalidTimeRange(AppException):
    """시작 시각이 종료 시각 이후이거나 시간 형식이 잘못됨"""
    kind = "InvalidTimeRange"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class InvalidDate(AppException):
    """날짜를 해석할 수 없거나 과거 날짜"""
    kind = "InvalidDate"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class SlotNotFound(AppException):
    kind = "SlotNotFound"
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, slot_id=None):
        super().__init__(f"Visit slot with ID {slot_id} not found")


class BookingNotFound(AppException):
    kind = "BookingNotFound"
    status_code = status.HTTP_404_NOT_FOUND


class VisitorNotFound(AppException):
    kind = "VisitorNotFound"
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, visitor_id=None):
        super().__init__(f"Visitor with ID {visitor_id} not found")


class SlotUnavailable(AppException):
    """예약 불가 상태의 슬롯"""
    kind = "SlotUnavailable"
    status_code = status.HTTP_409_CONFLICT


class CapacityExceeded(AppException):
    """요청 인원이 잔여 정원을 초과"""
    kind = "CapacityExceeded"
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, available: int, requested: int):
        self.available = available
        self.requested = requested
        super().__init__(
            f"Not enough capacity. Available: {available}, Requested: {requested}",
            available=available,
            requested=requested,
        )


class ScheduleConflictError(AppException):
    """같은 날짜의 기존 슬롯과 시간이 겹침"""
    kind = "ScheduleConflict"
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, conflicting_slot_id: int):
        self.conflicting_slot_id = conflicting_slot_id
        super().__init__(
            "Time slot conflicts with existing slots",
            conflicting_slot_id=conflicting_slot_id,
        )


class SlotHasActiveBookings(AppException):
    kind = "SlotHasActiveBookings"
    status_code = status.HTTP_409_CONFLICT


class BookingImmutable(AppException):
    """완료된 예약은 변경 불가"""
    kind = "BookingImmutable"
    status_code = status.HTTP_409_CONFLICT


class AlreadyCancelled(AppException):
    kind = "AlreadyCancelled"
    status_code = status.HTTP_409_CONFLICT


class InvalidTransition(AppException):
    """허용되지 않는 상태 전이"""
    kind = "InvalidTransition"
    status_code = status.HTTP_409_CONFLICT


class NoFieldsToUpdate(AppException):
    kind = "NoFieldsToUpdate"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str = "No valid fields to update"):
        super().__init__(message)


class SlotBusy(AppException):
    """슬롯 잠금 대기 시간 초과"""
    kind = "SlotBusy"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class UnauthorizedException(HTTPException):
    """인증이 필요하거나 인증이 실패했을 때 발생"""
    def __init__(self, detail: str = "Not authenticated"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"}
        )


class ForbiddenException(HTTPException):
    """권한이 없을 때 발생"""
    def __init__(self, detail: str = "Not enough permissions"):
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)
