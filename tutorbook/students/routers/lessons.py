from fastapi import APIRouter, Depends, Path, Request
from sqlalchemy.ext.asyncio import AsyncSession

from tutorbook.core.database import get_session
from tutorbook.core.dependencies import Actor, require_student
from tutorbook.core.limits import limiter
from tutorbook.students.crud.ledger import get_student_balances, remaining
from tutorbook.students.schemas.ledger import (
    CourseLessonBalance,
    LessonBalance,
    StudentLessonsResponse,
)

router = APIRouter(prefix="/students", tags=["Student Lessons"])


@router.get("/lessons", response_model=StudentLessonsResponse)
@limiter.limit("60/minute")
async def get_my_lessons(
    request: Request,
    actor: Actor = Depends(require_student),
    db: AsyncSession = Depends(get_session),
):
    """Purchased, used and remaining lessons per course"""
    courses = await get_student_balances(db, actor.id)
    total = sum(c.total for c in courses)
    used = sum(c.used for c in courses)
    return StudentLessonsResponse(
        student_id=actor.id,
        courses=courses,
        totals=LessonBalance(total=total, used=used, remaining=total - used),
    )


@router.get("/lessons/{course_id}", response_model=CourseLessonBalance)
@limiter.limit("60/minute")
async def get_my_course_lessons(
    request: Request,
    course_id: int = Path(..., gt=0, description="Course ID"),
    actor: Actor = Depends(require_student),
    db: AsyncSession = Depends(get_session),
):
    balance = await remaining(db, actor.id, course_id)
    return CourseLessonBalance(course_id=course_id, **balance.model_dump())
