"""
시간/날짜 유틸리티
시각은 저장 경계에서만 HH:MM:SS 문자열이며, 비교는 자정 기준 초 단위로 한다.
"""
import re
from datetime import date, datetime, time, timezone, tzinfo
from typing import Union

from dateutil import parser as date_parser

from app.utils.exceptions import InvalidDate, InvalidTimeRange

_TIME_RE = re.compile(r"^([01]?\d|2[0-3]):[0-5]\d(:[0-5]\d)?$")

TimeLike = Union[str, time]
DateLike = Union[str, date, datetime]


def utcnow() -> datetime:
    """현재 UTC 시각 (timezone-aware)"""
    return datetime.now(timezone.utc)


def format_time(value: TimeLike) -> str:
    """HH:MM 또는 HH:MM:SS 를 HH:MM:SS 로 정규화"""
    if isinstance(value, time):
        return value.strftime("%H:%M:%S")

    text = (value or "").strip() if isinstance(value, str) else ""
    if not _TIME_RE.match(text):
        raise InvalidTimeRange(f"Invalid time format: {value!r}. Expected HH:MM or HH:MM:SS")

    parts = text.split(":")
    if len(parts) == 2:
        parts.append("00")
    hours, minutes, seconds = parts
    return f"{int(hours):02d}:{minutes}:{seconds}"


def time_to_seconds(value: TimeLike) -> int:
    """자정 이후 경과 초"""
    hours, minutes, seconds = (int(p) for p in format_time(value).split(":"))
    return hours * 3600 + minutes * 60 + seconds


def seconds_to_time(total_seconds: int) -> time:
    return time(total_seconds // 3600, (total_seconds % 3600) // 60, total_seconds % 60)


def compare_times(a: TimeLike, b: TimeLike) -> int:
    """두 시각 비교 (-1, 0, 1)"""
    left, right = time_to_seconds(a), time_to_seconds(b)
    if left < right:
        return -1
    if left > right:
        return 1
    return 0


def minutes_between(start: TimeLike, end: TimeLike) -> int:
    return (time_to_seconds(end) - time_to_seconds(start)) // 60


def parse_calendar_date(value: DateLike) -> datetime:
    """
    날짜 입력을 UTC 기준 datetime 으로 해석
    - YYYY-MM-DD 는 UTC 자정에 고정하여 로컬 시간대에 의한 하루 밀림을 막는다.
    """
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if not isinstance(value, str) or not value.strip():
        raise InvalidDate("Date is required")

    text = value.strip()
    try:
        parsed = date_parser.isoparse(text)
    except (ValueError, OverflowError):
        # ISO 8601 이 아니면 일반 형식으로 해석 (예: "Tue, 05 Mar 2024")
        try:
            parsed = date_parser.parse(text)
        except (ValueError, OverflowError) as exc:
            raise InvalidDate(f"Invalid date provided: {value}") from exc

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def to_slot_date(value: DateLike) -> date:
    """슬롯 저장용 달력 날짜 (UTC 기준)"""
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    return parse_calendar_date(value).astimezone(timezone.utc).date()


def slot_start_datetime(slot_date: date, start_time: TimeLike, tz: tzinfo) -> datetime:
    """슬롯 날짜 + 시작 시각을 지정 시간대의 datetime 으로 결합"""
    return datetime.combine(slot_date, seconds_to_time(time_to_seconds(start_time)), tzinfo=tz)
