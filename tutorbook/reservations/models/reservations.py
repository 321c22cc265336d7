"""Reservation Model - booked lesson of a course at an absolute UTC time"""
import uuid as uuid_lib
from enum import Enum

from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    DateTime,
    ForeignKey,
    Index,
    Enum as SQLEnum,
    and_,
    not_,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from tutorbook.core.database import Base


class ReservationStatus(str, Enum):
    """Статус одной стороны бронирования"""

    reserved = "reserved"
    completed = "completed"
    cancelled = "cancelled"


class ReservationState(str, Enum):
    """Общее состояние, вычисляется из двух статусов и не хранится"""

    pending = "pending"
    fully_completed = "fully_completed"
    cancelled = "cancelled"


def compute_composite_state(
    teacher_status: ReservationStatus, student_status: ReservationStatus
) -> ReservationState:
    if ReservationStatus.cancelled in (teacher_status, student_status):
        return ReservationState.cancelled
    if (
        teacher_status == ReservationStatus.completed
        and student_status == ReservationStatus.completed
    ):
        return ReservationState.fully_completed
    return ReservationState.pending


_status_type = SQLEnum(
    ReservationStatus,
    name="reservation_status",
    native_enum=False,
    length=20,
    values_callable=lambda enum: [item.value for item in enum],
)


class Reservation(Base):
    __tablename__ = "reservations"

    id = Column(Integer, primary_key=True, index=True)
    uuid = Column(
        String(36),
        unique=True,
        nullable=False,
        default=lambda: str(uuid_lib.uuid4()),
    )

    course_id = Column(
        Integer, ForeignKey("courses.id", ondelete="RESTRICT"), nullable=False
    )
    teacher_id = Column(
        Integer, ForeignKey("teachers.id", ondelete="RESTRICT"), nullable=False
    )
    student_id = Column(
        Integer, ForeignKey("students.id", ondelete="RESTRICT"), nullable=False
    )

    # Запись учета, из которой списан урок (логическая ссылка, без FK)
    ledger_entry_id = Column(Integer, nullable=False)

    reserve_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=False)
    duration_minutes = Column(Integer, nullable=False)

    teacher_status = Column(
        _status_type, default=ReservationStatus.reserved, nullable=False
    )
    student_status = Column(
        _status_type, default=ReservationStatus.reserved, nullable=False
    )

    cancelled_by = Column(String(20), nullable=True)
    cancel_reason = Column(Text, nullable=True)
    teacher_notes = Column(Text, nullable=True)
    student_notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    course = relationship("Course", lazy="selectin")
    teacher = relationship("UserTeacher", lazy="selectin")
    student = relationship("UserStudent", lazy="selectin")

    __table_args__ = (
        # Поиск пересечений по преподавателю
        Index("ix_reservations_teacher_time", "teacher_id", "reserve_time"),
        Index("ix_reservations_student_time", "student_id", "reserve_time"),
        Index("ix_reservations_course", "course_id"),
    )

    @property
    def course_name(self):
        return self.course.name if self.course else None

    @property
    def teacher_name(self):
        return self.teacher.full_name if self.teacher else None

    @property
    def student_name(self):
        return self.student.full_name if self.student else None

    @property
    def state(self) -> ReservationState:
        return compute_composite_state(self.teacher_status, self.student_status)

    @property
    def is_fully_completed(self) -> bool:
        return self.state == ReservationState.fully_completed

    @classmethod
    def not_deleted(cls):
        return cls.deleted_at.is_(None)

    @classmethod
    def state_clause(cls, state: ReservationState):
        """SQL-условие, эквивалентное compute_composite_state(...) == state"""
        cancelled = (cls.teacher_status == ReservationStatus.cancelled) | (
            cls.student_status == ReservationStatus.cancelled
        )
        both_completed = and_(
            cls.teacher_status == ReservationStatus.completed,
            cls.student_status == ReservationStatus.completed,
        )
        if state == ReservationState.cancelled:
            return cancelled
        if state == ReservationState.fully_completed:
            return both_completed
        return and_(not_(cancelled), not_(both_completed))

    @classmethod
    def active_clause(cls):
        """Бронирования, которые занимают время преподавателя"""
        return and_(cls.not_deleted(), cls.state_clause(ReservationState.pending))

    def __repr__(self):
        return (
            f"<Reservation(id={self.id}, teacher_id={self.teacher_id}, "
            f"student_id={self.student_id}, at={self.reserve_time}, state={self.state.value})>"
        )
