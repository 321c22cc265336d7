from datetime import date
from typing import Literal, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Path, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from tutorbook.core.database import get_session
from tutorbook.core.dependencies import Actor, get_current_actor, require_student
from tutorbook.core.exceptions import ForbiddenError
from tutorbook.core.limits import limiter
from tutorbook.reservations.crud.reservations import (
    cancel_reservation,
    create_reservation,
    get_reservation,
    list_reservations,
    mark_complete,
)
from tutorbook.reservations.models import ReservationState
from tutorbook.reservations.schemas.calendar import CalendarResponse
from tutorbook.reservations.schemas.reservations import (
    ReservationCancel,
    ReservationCancelResponse,
    ReservationCreate,
    ReservationCreateResponse,
    ReservationFilters,
    ReservationListResponse,
    ReservationRead,
    ReservationStatusResponse,
    ReservationStatusUpdate,
)
from tutorbook.reservations.services.calendar import CalendarService
from tutorbook.reservations.services.notification_service import (
    notify_reservation_event,
)

router = APIRouter(prefix="/reservations", tags=["Reservations"])

STATUS_TYPE_ROLES = {
    "teacher-complete": "teacher",
    "student-complete": "student",
}


@router.post(
    "", response_model=ReservationCreateResponse, status_code=status.HTTP_201_CREATED
)
@limiter.limit("20/minute")
async def book_lesson(
    request: Request,
    payload: ReservationCreate,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(require_student),
    db: AsyncSession = Depends(get_session),
):
    """
    Book a lesson for the current student.

    Consumes one prepaid lesson of the course. Fails with 400 when the time is
    in the past, less than the lead time away, outside the teacher's slots or
    when no lessons remain, and with 409 when it overlaps another booking.
    """
    result = await create_reservation(db, actor.id, payload)
    background_tasks.add_task(notify_reservation_event, "created", result.reservation)

    return ReservationCreateResponse(
        reservation=ReservationRead.model_validate(result.reservation),
        remaining_lessons=result.remaining_lessons,
    )


@router.get("", response_model=ReservationListResponse)
@limiter.limit("60/minute")
async def get_my_reservations(
    request: Request,
    page: int = Query(1, ge=1, description="Page number"),
    size: int = Query(20, ge=1, le=100, description="Page size"),
    course_id: Optional[int] = Query(None, gt=0),
    state: Optional[ReservationState] = Query(None),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_session),
):
    filters = ReservationFilters(
        course_id=course_id, state=state, date_from=date_from, date_to=date_to
    )
    reservations, total, pages = await list_reservations(db, actor, filters, page, size)

    return ReservationListResponse(
        reservations=[ReservationRead.model_validate(r) for r in reservations],
        total=total,
        page=page,
        size=size,
        pages=pages,
        filters=filters.model_dump(mode="json", exclude_none=True) or None,
    )


@router.get("/calendar", response_model=CalendarResponse)
@limiter.limit("60/minute")
async def get_calendar(
    request: Request,
    view: Literal["week", "month"] = Query("week"),
    anchor: Optional[date] = Query(None, alias="date", description="Defaults to today"),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_session),
):
    """Week (Monday to Sunday) or month calendar of the current actor."""
    return await CalendarService(db).get_calendar(actor, view, anchor)


@router.get("/{reservation_id}", response_model=ReservationRead)
@limiter.limit("60/minute")
async def get_reservation_details(
    request: Request,
    reservation_id: int = Path(..., gt=0),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_session),
):
    reservation = await get_reservation(db, reservation_id, actor)
    return ReservationRead.model_validate(reservation)


@router.patch("/{reservation_id}/status", response_model=ReservationStatusResponse)
@limiter.limit("20/minute")
async def complete_reservation(
    request: Request,
    payload: ReservationStatusUpdate,
    background_tasks: BackgroundTasks,
    reservation_id: int = Path(..., gt=0),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_session),
):
    """Mark the lesson as completed for the caller's side."""
    if STATUS_TYPE_ROLES[payload.status_type] != actor.role.value:
        raise ForbiddenError(
            payload.status_type,
            "reservation",
            f"{actor.role.value} cannot set {payload.status_type}",
        )

    reservation = await mark_complete(db, reservation_id, actor, payload.notes)
    background_tasks.add_task(notify_reservation_event, "completed", reservation)

    return ReservationStatusResponse(
        reservation=ReservationRead.model_validate(reservation),
        is_fully_completed=reservation.is_fully_completed,
    )


@router.post("/{reservation_id}/cancel", response_model=ReservationCancelResponse)
@limiter.limit("20/minute")
async def cancel_lesson(
    request: Request,
    background_tasks: BackgroundTasks,
    payload: Optional[ReservationCancel] = None,
    reservation_id: int = Path(..., gt=0),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_session),
):
    """Cancel for both sides and return the lesson to the student's balance."""
    reason = payload.reason if payload else None
    result = await cancel_reservation(db, reservation_id, actor, reason)
    background_tasks.add_task(notify_reservation_event, "cancelled", result.reservation)

    return ReservationCancelResponse(
        reservation=ReservationRead.model_validate(result.reservation),
        refunded_lessons=result.refunded_lessons,
        remaining_lessons=result.remaining_lessons,
    )
