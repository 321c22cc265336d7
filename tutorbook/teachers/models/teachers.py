from sqlalchemy import (
    Column,
    Integer,
    String,
    DateTime,
    BigInteger,
    Boolean,
    ForeignKey,
)
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from tutorbook.core.config import DEFAULT_LESSON_DURATION_MINUTES
from tutorbook.core.database import Base


class UserTeacher(Base):
    __tablename__ = "teachers"

    id = Column(Integer, primary_key=True, index=True)
    telegram_id = Column(BigInteger, unique=True, index=True, nullable=False)
    first_name = Column(String(50), nullable=False)
    last_name = Column(String(50), nullable=True)
    username = Column(String(64), nullable=True, index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    courses = relationship("Course", back_populates="teacher", lazy="select")
    available_slots = relationship(
        "TeacherAvailableSlot",
        back_populates="teacher",
        cascade="all, delete-orphan",
        lazy="select",
    )

    @property
    def full_name(self):
        return " ".join(part for part in (self.first_name, self.last_name) if part)


class Course(Base):
    """Курс преподавателя; длительность урока берется отсюда"""

    __tablename__ = "courses"

    id = Column(Integer, primary_key=True, index=True)
    teacher_id = Column(
        Integer,
        ForeignKey("teachers.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name = Column(String(200), nullable=False)
    duration_minutes = Column(
        Integer, default=DEFAULT_LESSON_DURATION_MINUTES, nullable=False
    )
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    teacher = relationship("UserTeacher", back_populates="courses")

    def __repr__(self):
        return f"<Course(id={self.id}, teacher_id={self.teacher_id}, name={self.name})>"
