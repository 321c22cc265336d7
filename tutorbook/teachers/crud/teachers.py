from sqlalchemy.future import select
from sqlalchemy.ext.asyncio import AsyncSession

from tutorbook.core.database import db_operation
from tutorbook.core.exceptions import NotFoundError, ValidationError
from tutorbook.teachers.models import UserTeacher, Course


@db_operation
async def get_teacher_by_id(session: AsyncSession, teacher_id: int) -> UserTeacher:
    if teacher_id <= 0:
        raise ValidationError("Teacher ID must be positive")

    result = await session.execute(select(UserTeacher).where(UserTeacher.id == teacher_id))
    teacher = result.scalar_one_or_none()

    if not teacher:
        raise NotFoundError("Teacher", str(teacher_id))

    return teacher


@db_operation
async def get_course_for_teacher(
    session: AsyncSession, course_id: int, teacher_id: int
) -> Course:
    """Курс должен существовать, быть активным и принадлежать преподавателю"""
    result = await session.execute(select(Course).where(Course.id == course_id))
    course = result.scalar_one_or_none()

    if not course:
        raise NotFoundError("Course", str(course_id))

    if course.teacher_id != teacher_id:
        raise ValidationError(
            f"Course {course_id} does not belong to teacher {teacher_id}",
            details={"course_id": course_id, "teacher_id": teacher_id},
        )

    if not course.is_active:
        raise ValidationError(
            f"Course {course_id} is not active", details={"course_id": course_id}
        )

    return course
