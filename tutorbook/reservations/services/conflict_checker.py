import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import List, Optional

from sqlalchemy.future import select
from sqlalchemy.ext.asyncio import AsyncSession

from tutorbook.core.config import (
    CONFLICT_CHECK_DEFAULT_DAYS,
    CONFLICT_CHECK_MAX_DAYS,
    RESERVATION_MIN_LEAD_HOURS,
)
from tutorbook.core.exceptions import (
    OutsideAvailableHoursError,
    ScheduleConflictError,
    ValidationError,
)
from tutorbook.core.validations import (
    combine_utc,
    ensure_utc,
    format_hhmm,
    minutes_of_day,
    to_weekday,
    utc_now,
)
from tutorbook.reservations.models import Reservation
from tutorbook.teachers.models import TeacherAvailableSlot

logger = logging.getLogger(__name__)


def intervals_overlap(a, b, c, d) -> bool:
    """Полуоткрытые [a, b) и [c, d) пересекаются"""
    return a < d and b > c


@dataclass
class ConflictResult:
    has_conflict: bool
    conflicts: List[Reservation] = field(default_factory=list)


@dataclass
class SlotWindowCheck:
    weekday: int
    start_time: time
    end_time: time
    from_date: date
    to_date: date
    conflicts: List[Reservation]
    overlapping_slots: List[TeacherAvailableSlot]

    @property
    def has_conflict(self) -> bool:
        return bool(self.conflicts or self.overlapping_slots)


class ConflictChecker:
    """Проверка кандидата на пересечения с бронированиями и покрытие слотами"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def check_conflict(
        self,
        teacher_id: int,
        start: datetime,
        end: datetime,
        exclude_reservation_id: Optional[int] = None,
    ) -> ConflictResult:
        """Активные бронирования преподавателя, пересекающие [start, end)"""
        start, end = ensure_utc(start), ensure_utc(end)

        query = select(Reservation).where(
            Reservation.teacher_id == teacher_id,
            Reservation.active_clause(),
            Reservation.reserve_time < end,
            Reservation.end_time > start,
        )
        if exclude_reservation_id is not None:
            query = query.where(Reservation.id != exclude_reservation_id)

        result = await self.session.execute(query.order_by(Reservation.reserve_time))
        conflicts = list(result.scalars().all())
        return ConflictResult(has_conflict=bool(conflicts), conflicts=conflicts)

    async def find_covering_slot(
        self, teacher_id: int, start: datetime, end: datetime
    ) -> Optional[TeacherAvailableSlot]:
        """Активный слот дня недели start, целиком содержащий окно бронирования"""
        start, end = ensure_utc(start), ensure_utc(end)

        # Слот не переходит через полночь, значит и бронирование не может
        if end.date() != start.date():
            return None

        result = await self.session.execute(
            select(TeacherAvailableSlot)
            .where(
                TeacherAvailableSlot.teacher_id == teacher_id,
                TeacherAvailableSlot.is_active.is_(True),
                TeacherAvailableSlot.weekday == to_weekday(start),
                TeacherAvailableSlot.start_time <= start.time(),
                TeacherAvailableSlot.end_time >= end.time(),
            )
            .order_by(TeacherAvailableSlot.start_time)
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def ensure_bookable(
        self,
        teacher_id: int,
        start: datetime,
        end: datetime,
        now: Optional[datetime] = None,
    ) -> TeacherAvailableSlot:
        """
        Проверка перед бронированием. Вызывается внутри транзакции
        бронирования после блокировки расписания преподавателя.
        """
        start, end = ensure_utc(start), ensure_utc(end)
        now = ensure_utc(now) if now else utc_now()

        if start <= now:
            raise ValidationError(
                "Reservation time must be in the future",
                details={"field": "reserve_time", "reserve_time": start.isoformat()},
            )

        if start < now + timedelta(hours=RESERVATION_MIN_LEAD_HOURS):
            raise ValidationError(
                f"Reservation must be made at least {RESERVATION_MIN_LEAD_HOURS} hours in advance",
                details={
                    "field": "reserve_time",
                    "reserve_time": start.isoformat(),
                    "min_lead_hours": RESERVATION_MIN_LEAD_HOURS,
                },
            )

        conflict = await self.check_conflict(teacher_id, start, end)
        if conflict.has_conflict:
            raise ScheduleConflictError(
                "Requested time overlaps an existing reservation",
                details={
                    "teacher_id": teacher_id,
                    "start": start.isoformat(),
                    "end": end.isoformat(),
                    "conflicting_reservation_ids": [r.id for r in conflict.conflicts],
                },
            )

        slot = await self.find_covering_slot(teacher_id, start, end)
        if slot is None:
            raise OutsideAvailableHoursError(
                teacher_id,
                to_weekday(start),
                format_hhmm(start.time()),
                format_hhmm(end.time()),
            )

        return slot

    async def check_slot_window(
        self,
        teacher_id: int,
        weekday: int,
        start_time: time,
        end_time: time,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None,
    ) -> SlotWindowCheck:
        """
        Проверка окна слота для UI: активные бронирования этого дня недели
        в периоде и активные слоты, которые пересекают окно.
        """
        if not 0 <= weekday <= 6:
            raise ValidationError(
                "weekday must be an integer 0-6", details={"field": "weekday"}
            )
        if start_time >= end_time:
            raise ValidationError(
                "end_time must be later than start_time on the same day",
                details={"field": "end_time"},
            )

        from_date = from_date or utc_now().date()
        to_date = to_date or from_date + timedelta(days=CONFLICT_CHECK_DEFAULT_DAYS)

        if to_date < from_date:
            raise ValidationError(
                "to_date must not be before from_date", details={"field": "to_date"}
            )
        if (to_date - from_date).days > CONFLICT_CHECK_MAX_DAYS:
            raise ValidationError(
                f"Period must not exceed {CONFLICT_CHECK_MAX_DAYS} days",
                details={"field": "to_date", "max_days": CONFLICT_CHECK_MAX_DAYS},
            )

        result = await self.session.execute(
            select(Reservation)
            .where(
                Reservation.teacher_id == teacher_id,
                Reservation.active_clause(),
                Reservation.reserve_time >= combine_utc(from_date, time.min),
                Reservation.reserve_time
                < combine_utc(to_date + timedelta(days=1), time.min),
            )
            .order_by(Reservation.reserve_time)
        )

        window_start, window_end = minutes_of_day(start_time), minutes_of_day(end_time)
        conflicts = []
        for reservation in result.scalars().all():
            reserve_time = ensure_utc(reservation.reserve_time)
            if to_weekday(reserve_time) != weekday:
                continue
            res_start = minutes_of_day(reserve_time.time())
            res_end = res_start + reservation.duration_minutes
            if intervals_overlap(window_start, window_end, res_start, res_end):
                conflicts.append(reservation)

        slot_result = await self.session.execute(
            select(TeacherAvailableSlot)
            .where(
                TeacherAvailableSlot.teacher_id == teacher_id,
                TeacherAvailableSlot.is_active.is_(True),
                TeacherAvailableSlot.weekday == weekday,
                TeacherAvailableSlot.start_time < end_time,
                TeacherAvailableSlot.end_time > start_time,
            )
            .order_by(TeacherAvailableSlot.start_time)
        )

        return SlotWindowCheck(
            weekday=weekday,
            start_time=start_time,
            end_time=end_time,
            from_date=from_date,
            to_date=to_date,
            conflicts=conflicts,
            overlapping_slots=list(slot_result.scalars().all()),
        )
