from collections import defaultdict
from datetime import date, datetime, time, timedelta
from typing import Dict, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from tutorbook.core.dependencies import Actor
from tutorbook.core.exceptions import ValidationError
from tutorbook.core.validations import (
    WEEKDAY_NAMES,
    combine_utc,
    ensure_utc,
    format_hhmm,
    month_range,
    to_weekday,
    utc_now,
    week_range,
)
from tutorbook.reservations.crud.reservations import get_reservations_in_period
from tutorbook.reservations.models import Reservation, ReservationState
from tutorbook.reservations.schemas.calendar import (
    CalendarDay,
    CalendarPeriod,
    CalendarResponse,
    CalendarSlot,
    CalendarSummary,
)
from tutorbook.reservations.schemas.reservations import ReservationRead
from tutorbook.teachers.crud.schedule import get_slots
from tutorbook.teachers.models import TeacherAvailableSlot

VIEWS = ("week", "month")


class CalendarService:
    """Календарь актора: слоты (для преподавателя) и бронирования по дням"""

    def __init__(self, session: AsyncSession):
        self.session = session

    @staticmethod
    def get_period(view: str, anchor_date: date) -> Tuple[date, date]:
        if view == "week":
            return week_range(anchor_date)
        if view == "month":
            return month_range(anchor_date)
        raise ValidationError(
            "view must be 'week' or 'month'", details={"field": "view", "value": view}
        )

    async def get_calendar(
        self,
        actor: Actor,
        view: str,
        anchor_date: Optional[date] = None,
        now: Optional[datetime] = None,
    ) -> CalendarResponse:
        anchor_date = anchor_date or utc_now().date()
        start_date, end_date = self.get_period(view, anchor_date)

        slots_by_weekday: Dict[int, List[TeacherAvailableSlot]] = defaultdict(list)
        if actor.is_teacher:
            for slot in await get_slots(self.session, actor.id, active_only=True):
                slots_by_weekday[slot.weekday].append(slot)

        reservations = await get_reservations_in_period(
            self.session,
            actor,
            combine_utc(start_date, time.min),
            combine_utc(end_date + timedelta(days=1), time.min),
        )
        reservations_by_day: Dict[date, List[Reservation]] = defaultdict(list)
        for reservation in reservations:
            reservations_by_day[ensure_utc(reservation.reserve_time).date()].append(
                reservation
            )

        days = []
        current = start_date
        while current <= end_date:
            weekday = to_weekday(current)
            days.append(
                CalendarDay(
                    date=current,
                    weekday=weekday,
                    weekday_name=WEEKDAY_NAMES[weekday],
                    slots=[
                        CalendarSlot(
                            id=slot.id,
                            start_time=format_hhmm(slot.start_time),
                            end_time=format_hhmm(slot.end_time),
                        )
                        for slot in slots_by_weekday.get(weekday, [])
                    ],
                    reservations=[
                        ReservationRead.model_validate(reservation)
                        for reservation in reservations_by_day.get(current, [])
                    ],
                )
            )
            current += timedelta(days=1)

        summary = None
        if view == "month":
            summary = self._summarize(reservations, ensure_utc(now) if now else utc_now())

        return CalendarResponse(
            view=view,
            anchor_date=anchor_date,
            period=CalendarPeriod(start_date=start_date, end_date=end_date),
            days=days,
            summary=summary,
        )

    @staticmethod
    def _summarize(reservations: List[Reservation], now: datetime) -> CalendarSummary:
        return CalendarSummary(
            total_reservations=len(reservations),
            completed_reservations=sum(
                1 for r in reservations if r.state == ReservationState.fully_completed
            ),
            upcoming_reservations=sum(
                1
                for r in reservations
                if r.state == ReservationState.pending
                and ensure_utc(r.reserve_time) > now
            ),
        )
