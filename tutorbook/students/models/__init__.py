from tutorbook.core.database import Base
from .users import UserStudent
from .lessons import LessonPurchase

__all__ = [
    "Base",
    "UserStudent",
    "LessonPurchase",
]
