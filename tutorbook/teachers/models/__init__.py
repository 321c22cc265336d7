from tutorbook.core.database import Base
from .teachers import UserTeacher, Course
from .slots import TeacherAvailableSlot

__all__ = [
    "Base",
    "UserTeacher",
    "Course",
    "TeacherAvailableSlot",
]
