from sqlalchemy import (
    Column,
    Integer,
    Time,
    Boolean,
    ForeignKey,
    DateTime,
    Index,
    CheckConstraint,
)
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from tutorbook.core.database import Base


class TeacherAvailableSlot(Base):
    """
    Недельное окно доступности преподавателя (UTC).

    weekday: 0 = воскресенье ... 6 = суббота.
    Окно не переходит через полночь: start_time < end_time.
    """

    __tablename__ = "teacher_available_slots"

    id = Column(Integer, primary_key=True)
    teacher_id = Column(
        Integer,
        ForeignKey("teachers.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    weekday = Column(Integer, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    teacher = relationship("UserTeacher", back_populates="available_slots")

    __table_args__ = (
        CheckConstraint("weekday >= 0 AND weekday <= 6", name="ck_slot_weekday"),
        CheckConstraint("start_time < end_time", name="ck_slot_time_order"),
        Index("ix_slots_teacher_weekday", "teacher_id", "weekday"),
    )

    def __repr__(self):
        return (
            f"<TeacherAvailableSlot(id={self.id}, teacher_id={self.teacher_id}, "
            f"weekday={self.weekday}, {self.start_time}-{self.end_time})>"
        )
