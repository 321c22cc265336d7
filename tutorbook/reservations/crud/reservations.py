import logging
import math
from dataclasses import dataclass
from datetime import datetime, time, timedelta
from typing import List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.future import select
from sqlalchemy.ext.asyncio import AsyncSession

from tutorbook.core.database import (
    TEACHER_SCHEDULE_LOCK,
    TransactionManager,
    advisory_xact_lock,
    db_operation,
)
from tutorbook.core.dependencies import Actor, ActorRole
from tutorbook.core.exceptions import (
    ForbiddenError,
    InvalidStateTransitionError,
    NotFoundError,
    ValidationError,
)
from tutorbook.core.logging_utils import log_business_event
from tutorbook.core.config import RESERVATION_CANCEL_MIN_HOURS
from tutorbook.core.validations import combine_utc, ensure_utc, utc_now
from tutorbook.reservations.models import (
    Reservation,
    ReservationState,
    ReservationStatus,
)
from tutorbook.reservations.schemas.reservations import (
    ReservationCreate,
    ReservationFilters,
)
from tutorbook.reservations.services.conflict_checker import ConflictChecker
from tutorbook.students.crud import ledger
from tutorbook.students.schemas.ledger import LessonBalance
from tutorbook.teachers.crud.teachers import get_course_for_teacher, get_teacher_by_id

logger = logging.getLogger(__name__)


@dataclass
class ReservationResult:
    reservation: Reservation
    remaining_lessons: LessonBalance


@dataclass
class CancellationResult:
    reservation: Reservation
    refunded_lessons: int
    remaining_lessons: LessonBalance


def _status_field(role: ActorRole) -> str:
    return "teacher_status" if role == ActorRole.teacher else "student_status"


def ensure_participant(reservation: Reservation, actor: Actor, action: str) -> None:
    """Только назначенный преподаватель или студент"""
    if actor.role == ActorRole.teacher and reservation.teacher_id == actor.id:
        return
    if actor.role == ActorRole.student and reservation.student_id == actor.id:
        return
    raise ForbiddenError(
        action, "reservation", "only the assigned teacher or student may do this"
    )


async def _load_reservation(
    session: AsyncSession, reservation_id: int, for_update: bool = False
) -> Reservation:
    query = select(Reservation).where(
        Reservation.id == reservation_id, Reservation.not_deleted()
    )
    if for_update:
        query = query.with_for_update()

    result = await session.execute(query.execution_options(populate_existing=True))
    reservation = result.scalar_one_or_none()
    if reservation is None:
        raise NotFoundError("Reservation", str(reservation_id))
    return reservation


@db_operation
async def get_reservation(
    session: AsyncSession, reservation_id: int, actor: Actor
) -> Reservation:
    reservation = await _load_reservation(session, reservation_id)
    ensure_participant(reservation, actor, "view")
    return reservation


@db_operation
async def create_reservation(
    session: AsyncSession,
    student_id: int,
    data: ReservationCreate,
    now: Optional[datetime] = None,
) -> ReservationResult:
    """
    Бронирование урока одной единицей работы.

    Под блокировкой расписания преподавателя: проверка курса, времени,
    пересечений и покрытия слотом, списание урока (FIFO) и вставка
    бронирования в {reserved, reserved}. Либо все, либо ничего.
    """
    start = combine_utc(data.reserve_date, data.reserve_time)

    async with TransactionManager(session):
        await advisory_xact_lock(session, TEACHER_SCHEDULE_LOCK, data.teacher_id)

        await get_teacher_by_id(session, data.teacher_id)
        course = await get_course_for_teacher(session, data.course_id, data.teacher_id)
        end = start + timedelta(minutes=course.duration_minutes)

        await ConflictChecker(session).ensure_bookable(data.teacher_id, start, end, now)

        entry = await ledger.reserve_unit(session, student_id, data.course_id)

        reservation = Reservation(
            course_id=data.course_id,
            teacher_id=data.teacher_id,
            student_id=student_id,
            ledger_entry_id=entry.id,
            reserve_time=start,
            end_time=end,
            duration_minutes=course.duration_minutes,
            teacher_status=ReservationStatus.reserved,
            student_status=ReservationStatus.reserved,
        )
        session.add(reservation)
        await session.flush()
        reservation_id = reservation.id

    reservation = await _load_reservation(session, reservation_id)
    balance = await ledger.remaining(session, student_id, data.course_id)

    log_business_event(
        "reservation_created",
        "reservation",
        reservation.id,
        {
            "teacher_id": reservation.teacher_id,
            "student_id": student_id,
            "course_id": reservation.course_id,
            "ledger_entry_id": reservation.ledger_entry_id,
            "reserve_time": start.isoformat(),
            "remaining": balance.remaining,
        },
    )
    return ReservationResult(reservation=reservation, remaining_lessons=balance)


@db_operation
async def mark_complete(
    session: AsyncSession,
    reservation_id: int,
    actor: Actor,
    notes: Optional[str] = None,
) -> Reservation:
    """Сторона актора переходит reserved -> completed; учет не меняется"""
    field = _status_field(actor.role)

    async with TransactionManager(session):
        reservation = await _load_reservation(session, reservation_id, for_update=True)
        ensure_participant(reservation, actor, "complete")

        if reservation.state == ReservationState.cancelled:
            raise InvalidStateTransitionError(
                reservation_id, "complete", "reservation is cancelled"
            )
        if getattr(reservation, field) != ReservationStatus.reserved:
            raise InvalidStateTransitionError(
                reservation_id,
                "complete",
                f"{actor.role.value} has already marked it as completed",
            )

        setattr(reservation, field, ReservationStatus.completed)
        if notes:
            if actor.role == ActorRole.teacher:
                reservation.teacher_notes = notes
            else:
                reservation.student_notes = notes
        await session.flush()

    reservation = await _load_reservation(session, reservation_id)
    log_business_event(
        "reservation_completed",
        "reservation",
        reservation.id,
        {
            "by": actor.role.value,
            "is_fully_completed": reservation.is_fully_completed,
        },
    )
    return reservation


@db_operation
async def cancel_reservation(
    session: AsyncSession,
    reservation_id: int,
    actor: Actor,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> CancellationResult:
    """
    Отмена для обеих сторон с возвратом урока в ту же запись учета.

    Повторная отмена и отмена уже проведенного урока запрещены,
    поэтому двойной возврат невозможен. Отмена возможна не позже чем
    за RESERVATION_CANCEL_MIN_HOURS часов до начала урока.
    """
    now = ensure_utc(now) if now else utc_now()

    async with TransactionManager(session):
        reservation = await _load_reservation(session, reservation_id, for_update=True)
        ensure_participant(reservation, actor, "cancel")

        if reservation.state == ReservationState.cancelled:
            raise InvalidStateTransitionError(
                reservation_id, "cancel", "reservation is already cancelled"
            )
        if ReservationStatus.completed in (
            reservation.teacher_status,
            reservation.student_status,
        ):
            raise InvalidStateTransitionError(
                reservation_id, "cancel", "lesson was already marked as completed"
            )
        if ensure_utc(reservation.reserve_time) - now < timedelta(
            hours=RESERVATION_CANCEL_MIN_HOURS
        ):
            raise InvalidStateTransitionError(
                reservation_id,
                "cancel",
                f"lessons can be cancelled at least {RESERVATION_CANCEL_MIN_HOURS} "
                "hours before the start",
            )

        reservation.teacher_status = ReservationStatus.cancelled
        reservation.student_status = ReservationStatus.cancelled
        reservation.cancelled_by = actor.role.value
        reservation.cancel_reason = reason

        await ledger.release_unit(session, reservation.ledger_entry_id)
        await session.flush()

    reservation = await _load_reservation(session, reservation_id)
    balance = await ledger.remaining(
        session, reservation.student_id, reservation.course_id
    )

    log_business_event(
        "reservation_cancelled",
        "reservation",
        reservation.id,
        {
            "by": actor.role.value,
            "reason": reason,
            "ledger_entry_id": reservation.ledger_entry_id,
            "remaining": balance.remaining,
        },
    )
    return CancellationResult(
        reservation=reservation, refunded_lessons=1, remaining_lessons=balance
    )


@db_operation
async def list_reservations(
    session: AsyncSession,
    actor: Actor,
    filters: Optional[ReservationFilters] = None,
    page: int = 1,
    size: int = 20,
) -> Tuple[List[Reservation], int, int]:
    """Бронирования актора, новые сверху. Returns (items, total, pages)"""
    if page < 1:
        raise ValidationError("Page must be >= 1")
    if size < 1 or size > 100:
        raise ValidationError("Size must be between 1 and 100")

    owner_column = (
        Reservation.teacher_id if actor.role == ActorRole.teacher else Reservation.student_id
    )
    conditions = [owner_column == actor.id, Reservation.not_deleted()]

    if filters:
        if filters.date_from and filters.date_to and filters.date_to < filters.date_from:
            raise ValidationError(
                "date_to must not be before date_from", details={"field": "date_to"}
            )
        if filters.course_id:
            conditions.append(Reservation.course_id == filters.course_id)
        if filters.state:
            conditions.append(Reservation.state_clause(filters.state))
        if filters.date_from:
            conditions.append(
                Reservation.reserve_time >= combine_utc(filters.date_from, time.min)
            )
        if filters.date_to:
            conditions.append(
                Reservation.reserve_time
                < combine_utc(filters.date_to + timedelta(days=1), time.min)
            )

    total_result = await session.execute(
        select(func.count(Reservation.id)).where(*conditions)
    )
    total = total_result.scalar() or 0

    result = await session.execute(
        select(Reservation)
        .where(*conditions)
        .order_by(Reservation.reserve_time.desc(), Reservation.id.desc())
        .offset((page - 1) * size)
        .limit(size)
    )
    pages = max(1, math.ceil(total / size))
    return list(result.scalars().all()), total, pages


@db_operation
async def get_reservations_in_period(
    session: AsyncSession, actor: Actor, start: datetime, end: datetime
) -> List[Reservation]:
    """Неотмененные бронирования актора в [start, end)"""
    owner_column = (
        Reservation.teacher_id if actor.role == ActorRole.teacher else Reservation.student_id
    )
    result = await session.execute(
        select(Reservation)
        .where(
            owner_column == actor.id,
            Reservation.not_deleted(),
            ~Reservation.state_clause(ReservationState.cancelled),
            Reservation.reserve_time >= ensure_utc(start),
            Reservation.reserve_time < ensure_utc(end),
        )
        .order_by(Reservation.reserve_time)
    )
    return list(result.scalars().all())
