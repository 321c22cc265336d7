import logging
from typing import List

from sqlalchemy import func
from sqlalchemy.future import select
from sqlalchemy.ext.asyncio import AsyncSession

from tutorbook.core.database import db_operation
from tutorbook.core.exceptions import (
    InsufficientLessonBalanceError,
    LedgerInvariantViolationError,
)
from tutorbook.students.models import LessonPurchase
from tutorbook.students.schemas.ledger import CourseLessonBalance, LessonBalance
from tutorbook.teachers.models import Course

logger = logging.getLogger(__name__)


@db_operation
async def reserve_unit(
    session: AsyncSession, student_id: int, course_id: int
) -> LessonPurchase:
    """
    Списывает один урок с самой старой покупки, где есть остаток.

    Все записи пары блокируются FOR UPDATE, поэтому параллельное
    бронирование последнего урока дождется коммита и увидит 0.
    Коммит делает вызывающая транзакция.
    """
    result = await session.execute(
        select(LessonPurchase)
        .where(
            LessonPurchase.student_id == student_id,
            LessonPurchase.course_id == course_id,
        )
        .order_by(LessonPurchase.created_at, LessonPurchase.id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    entries = result.scalars().all()

    entry = next((e for e in entries if e.quantity_remaining > 0), None)
    if entry is None:
        raise InsufficientLessonBalanceError(student_id, course_id)

    entry.quantity_used += 1
    await session.flush()

    logger.debug(
        f"Lesson unit reserved from purchase {entry.id}",
        extra={
            "student_id": student_id,
            "course_id": course_id,
            "ledger_entry_id": entry.id,
            "quantity_used": entry.quantity_used,
        },
    )
    return entry


@db_operation
async def release_unit(session: AsyncSession, entry_id: int) -> LessonPurchase:
    """Возвращает один урок в запись; уход ниже нуля - внутренняя ошибка"""
    result = await session.execute(
        select(LessonPurchase)
        .where(LessonPurchase.id == entry_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    entry = result.scalar_one_or_none()

    if entry is None:
        logger.error(f"Ledger entry {entry_id} not found on release")
        raise LedgerInvariantViolationError(
            f"Ledger entry {entry_id} does not exist",
            details={"ledger_entry_id": entry_id},
        )

    if entry.quantity_used <= 0:
        logger.error(
            f"Double release detected for ledger entry {entry_id}",
            extra={
                "ledger_entry_id": entry_id,
                "quantity_used": entry.quantity_used,
                "quantity_total": entry.quantity_total,
            },
        )
        raise LedgerInvariantViolationError(
            f"Ledger entry {entry_id} has no used lessons to release",
            details={
                "ledger_entry_id": entry_id,
                "quantity_used": entry.quantity_used,
                "quantity_total": entry.quantity_total,
            },
        )

    entry.quantity_used -= 1
    await session.flush()
    return entry


@db_operation
async def remaining(
    session: AsyncSession, student_id: int, course_id: int
) -> LessonBalance:
    result = await session.execute(
        select(
            func.coalesce(func.sum(LessonPurchase.quantity_total), 0),
            func.coalesce(func.sum(LessonPurchase.quantity_used), 0),
        ).where(
            LessonPurchase.student_id == student_id,
            LessonPurchase.course_id == course_id,
        )
    )
    total, used = result.one()
    return LessonBalance(total=total, used=used, remaining=total - used)


@db_operation
async def get_student_balances(
    session: AsyncSession, student_id: int
) -> List[CourseLessonBalance]:
    """Остатки по всем курсам студента"""
    result = await session.execute(
        select(
            LessonPurchase.course_id,
            Course.name,
            Course.teacher_id,
            func.sum(LessonPurchase.quantity_total),
            func.sum(LessonPurchase.quantity_used),
        )
        .join(Course, Course.id == LessonPurchase.course_id)
        .where(LessonPurchase.student_id == student_id)
        .group_by(LessonPurchase.course_id, Course.name, Course.teacher_id)
        .order_by(LessonPurchase.course_id)
    )

    return [
        CourseLessonBalance(
            course_id=course_id,
            course_name=name,
            teacher_id=teacher_id,
            total=total,
            used=used,
            remaining=total - used,
        )
        for course_id, name, teacher_id, total, used in result.all()
    ]
