from typing import List, Optional
from pydantic import BaseModel, Field


class LessonBalance(BaseModel):
    """Остаток по паре (студент, курс), суммарно по всем покупкам"""

    total: int = Field(0, ge=0)
    used: int = Field(0, ge=0)
    remaining: int = 0


class CourseLessonBalance(LessonBalance):
    course_id: int
    course_name: Optional[str] = None
    teacher_id: Optional[int] = None


class StudentLessonsResponse(BaseModel):
    student_id: int
    courses: List[CourseLessonBalance]
    totals: LessonBalance
