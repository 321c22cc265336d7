from datetime import date as date_type
from typing import List, Literal, Optional
from pydantic import BaseModel

from tutorbook.reservations.schemas.reservations import ReservationRead


class CalendarSlot(BaseModel):
    id: int
    start_time: str
    end_time: str


class CalendarDay(BaseModel):
    """Один день: окна доступности и бронирования"""

    date: date_type
    weekday: int
    weekday_name: str
    slots: List[CalendarSlot]
    reservations: List[ReservationRead]


class CalendarPeriod(BaseModel):
    start_date: date_type
    end_date: date_type


class CalendarSummary(BaseModel):
    total_reservations: int = 0
    completed_reservations: int = 0
    upcoming_reservations: int = 0


class CalendarResponse(BaseModel):
    view: Literal["week", "month"]
    anchor_date: date_type
    period: CalendarPeriod
    days: List[CalendarDay]
    summary: Optional[CalendarSummary] = None
