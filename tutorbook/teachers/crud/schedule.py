import logging
from dataclasses import dataclass
from datetime import time
from typing import Any, Dict, List, Sequence, Tuple, Union

from sqlalchemy import delete
from sqlalchemy.future import select
from sqlalchemy.ext.asyncio import AsyncSession

from tutorbook.core.config import MAX_SLOTS_PER_TEACHER
from tutorbook.core.database import (
    TEACHER_SCHEDULE_LOCK,
    TransactionManager,
    advisory_xact_lock,
    db_operation,
)
from tutorbook.core.exceptions import ScheduleConflictError, ValidationError
from tutorbook.core.logging_utils import log_business_event
from tutorbook.core.validations import format_hhmm, parse_hhmm
from tutorbook.teachers.crud.teachers import get_teacher_by_id
from tutorbook.teachers.models import TeacherAvailableSlot
from tutorbook.teachers.schemas.schedule import SlotInput

logger = logging.getLogger(__name__)


@dataclass
class NormalizedSlot:
    index: int
    weekday: int
    start_time: time
    end_time: time
    is_active: bool


@dataclass
class ScheduleReplaceResult:
    slots: List[TeacherAvailableSlot]
    created_count: int
    deleted_count: int


def _as_dict(slot: Union[SlotInput, Dict[str, Any]]) -> Dict[str, Any]:
    if isinstance(slot, SlotInput):
        return slot.model_dump()
    return dict(slot)


def validate_slots(slots: Sequence[Union[SlotInput, Dict[str, Any]]]) -> List[NormalizedSlot]:
    """
    Проверяет каждый слот и возвращает нормализованный набор.

    Все ошибки по полям собираются и отдаются одной ValidationError
    с details.fields = [{"field": "slots[i].start_time", "message": ...}].
    """
    if len(slots) > MAX_SLOTS_PER_TEACHER:
        raise ValidationError(
            f"A teacher can have at most {MAX_SLOTS_PER_TEACHER} slots",
            details={"max_slots": MAX_SLOTS_PER_TEACHER, "submitted": len(slots)},
        )

    errors = []
    normalized = []

    for index, raw in enumerate(slots):
        data = _as_dict(raw)
        prefix = f"slots[{index}]"
        slot_errors = []

        weekday = data.get("weekday")
        if isinstance(weekday, bool) or not isinstance(weekday, int) or not 0 <= weekday <= 6:
            slot_errors.append(
                {"field": f"{prefix}.weekday", "message": "weekday must be an integer 0-6"}
            )

        times = {}
        for field in ("start_time", "end_time"):
            try:
                times[field] = parse_hhmm(data.get(field), field)
            except ValidationError as e:
                slot_errors.append({"field": f"{prefix}.{field}", "message": e.message})

        if len(times) == 2 and times["start_time"] >= times["end_time"]:
            slot_errors.append(
                {
                    "field": f"{prefix}.end_time",
                    "message": "end_time must be later than start_time on the same day",
                }
            )

        if slot_errors:
            errors.extend(slot_errors)
            continue

        normalized.append(
            NormalizedSlot(
                index=index,
                weekday=weekday,
                start_time=times["start_time"],
                end_time=times["end_time"],
                is_active=bool(data.get("is_active", True)),
            )
        )

    if errors:
        raise ValidationError(
            f"Invalid schedule: {len(errors)} error(s)", details={"fields": errors}
        )

    return normalized


def find_overlapping_pair(
    slots: Sequence[NormalizedSlot],
) -> Union[Tuple[NormalizedSlot, NormalizedSlot], None]:
    """Первая пара активных слотов одного дня недели, которые пересекаются"""
    active = sorted(
        (slot for slot in slots if slot.is_active),
        key=lambda slot: (slot.weekday, slot.start_time, slot.index),
    )
    for previous, current in zip(active, active[1:]):
        if previous.weekday != current.weekday:
            continue
        # После сортировки достаточно сравнить соседей
        if current.start_time < previous.end_time:
            return previous, current
    return None


def ensure_no_overlaps(slots: Sequence[NormalizedSlot]) -> None:
    pair = find_overlapping_pair(slots)
    if pair is None:
        return

    first, second = sorted(pair, key=lambda slot: slot.index)
    raise ScheduleConflictError(
        f"Slots {first.index} and {second.index} overlap on weekday {first.weekday}",
        details={
            "weekday": first.weekday,
            "first": {
                "index": first.index,
                "start_time": format_hhmm(first.start_time),
                "end_time": format_hhmm(first.end_time),
            },
            "second": {
                "index": second.index,
                "start_time": format_hhmm(second.start_time),
                "end_time": format_hhmm(second.end_time),
            },
        },
    )


@db_operation
async def get_slots(
    session: AsyncSession, teacher_id: int, active_only: bool = False
) -> List[TeacherAvailableSlot]:
    query = select(TeacherAvailableSlot).where(
        TeacherAvailableSlot.teacher_id == teacher_id
    )
    if active_only:
        query = query.where(TeacherAvailableSlot.is_active.is_(True))

    result = await session.execute(
        query.order_by(
            TeacherAvailableSlot.weekday,
            TeacherAvailableSlot.start_time,
            TeacherAvailableSlot.id,
        )
    )
    return list(result.scalars().all())


@db_operation
async def replace_slots(
    session: AsyncSession,
    teacher_id: int,
    slots: Sequence[Union[SlotInput, Dict[str, Any]]],
) -> ScheduleReplaceResult:
    """
    Полная замена слотов преподавателя одной транзакцией.

    При любой ошибке прежний набор остается нетронутым.
    """
    normalized = validate_slots(slots)
    ensure_no_overlaps(normalized)

    async with TransactionManager(session):
        await get_teacher_by_id(session, teacher_id)
        await advisory_xact_lock(session, TEACHER_SCHEDULE_LOCK, teacher_id)

        deleted = await session.execute(
            delete(TeacherAvailableSlot).where(
                TeacherAvailableSlot.teacher_id == teacher_id
            )
        )

        new_slots = [
            TeacherAvailableSlot(
                teacher_id=teacher_id,
                weekday=slot.weekday,
                start_time=slot.start_time,
                end_time=slot.end_time,
                is_active=slot.is_active,
            )
            for slot in normalized
        ]
        session.add_all(new_slots)
        await session.flush()

    deleted_count = deleted.rowcount or 0
    log_business_event(
        "schedule_replaced",
        "teacher",
        teacher_id,
        {"created": len(new_slots), "deleted": deleted_count},
    )

    new_slots.sort(key=lambda slot: (slot.weekday, slot.start_time, slot.id))
    return ScheduleReplaceResult(
        slots=new_slots, created_count=len(new_slots), deleted_count=deleted_count
    )
