from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Path, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from tutorbook.core.database import get_session
from tutorbook.core.dependencies import Actor, get_current_actor, require_teacher
from tutorbook.core.limits import limiter
from tutorbook.core.validations import format_hhmm, parse_hhmm
from tutorbook.reservations.services.conflict_checker import ConflictChecker
from tutorbook.teachers.crud.schedule import get_slots, replace_slots
from tutorbook.teachers.crud.teachers import get_teacher_by_id
from tutorbook.teachers.schemas.schedule import (
    ConflictCheckResponse,
    ConflictingReservation,
    ScheduleReplaceRequest,
    ScheduleReplaceResponse,
    ScheduleResponse,
    SlotRead,
)

router = APIRouter(prefix="/teachers", tags=["Teacher Schedule"])


@router.get("/schedule", response_model=ScheduleResponse)
@limiter.limit("60/minute")
async def get_my_schedule(
    request: Request,
    actor: Actor = Depends(require_teacher),
    db: AsyncSession = Depends(get_session),
):
    """All weekly slots of the current teacher, inactive ones included."""
    slots = await get_slots(db, actor.id)
    return ScheduleResponse(
        teacher_id=actor.id, slots=[SlotRead.model_validate(s) for s in slots]
    )


@router.put("/schedule", response_model=ScheduleReplaceResponse)
@limiter.limit("10/minute")
async def replace_my_schedule(
    request: Request,
    payload: ScheduleReplaceRequest,
    actor: Actor = Depends(require_teacher),
    db: AsyncSession = Depends(get_session),
):
    """
    Replace the full weekly schedule.

    The submitted set becomes the whole schedule: previous slots are removed.
    Overlapping active slots on one weekday are rejected with 409 and nothing
    is saved.
    """
    result = await replace_slots(db, actor.id, payload.slots)
    return ScheduleReplaceResponse(
        teacher_id=actor.id,
        slots=[SlotRead.model_validate(s) for s in result.slots],
        created_count=result.created_count,
        deleted_count=result.deleted_count,
    )


@router.get("/schedule/conflicts", response_model=ConflictCheckResponse)
@limiter.limit("30/minute")
async def check_schedule_conflicts(
    request: Request,
    weekday: int = Query(..., ge=0, le=6, description="0 = Sunday ... 6 = Saturday"),
    start_time: str = Query(..., description="HH:MM, UTC"),
    end_time: str = Query(..., description="HH:MM, UTC"),
    from_date: Optional[date] = Query(None, description="Defaults to today"),
    to_date: Optional[date] = Query(None, description="Defaults to 30 days after from_date"),
    actor: Actor = Depends(require_teacher),
    db: AsyncSession = Depends(get_session),
):
    """
    Check a slot window before saving it: active reservations on that weekday
    whose time overlaps the window, and active slots that overlap it.
    """
    check = await ConflictChecker(db).check_slot_window(
        actor.id,
        weekday,
        parse_hhmm(start_time, "start_time"),
        parse_hhmm(end_time, "end_time"),
        from_date,
        to_date,
    )
    return ConflictCheckResponse(
        has_conflict=check.has_conflict,
        weekday=check.weekday,
        start_time=format_hhmm(check.start_time),
        end_time=format_hhmm(check.end_time),
        from_date=check.from_date,
        to_date=check.to_date,
        conflicts=[ConflictingReservation.model_validate(r) for r in check.conflicts],
        overlapping_slots=[SlotRead.model_validate(s) for s in check.overlapping_slots],
    )


@router.get("/{teacher_id}/schedule", response_model=ScheduleResponse)
@limiter.limit("60/minute")
async def get_teacher_schedule(
    request: Request,
    teacher_id: int = Path(..., gt=0, description="Teacher ID"),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_session),
):
    """Active slots of any teacher, for picking a booking time."""
    await get_teacher_by_id(db, teacher_id)
    slots = await get_slots(db, teacher_id, active_only=True)
    return ScheduleResponse(
        teacher_id=teacher_id, slots=[SlotRead.model_validate(s) for s in slots]
    )
