"""Lesson Purchase Model - prepaid lesson quantity per (student, course)"""
from sqlalchemy import (
    Column,
    Integer,
    DateTime,
    ForeignKey,
    Index,
    CheckConstraint,
)
from sqlalchemy.sql import func
from tutorbook.core.database import Base


class LessonPurchase(Base):
    """
    Запись учета оплаченных занятий.

    Создается внешним потоком оплаты заказа; здесь меняется только
    quantity_used. Инвариант 0 <= quantity_used <= quantity_total.
    """

    __tablename__ = "lesson_purchases"

    id = Column(Integer, primary_key=True, index=True)
    student_id = Column(
        Integer,
        ForeignKey("students.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    course_id = Column(
        Integer,
        ForeignKey("courses.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    # Оплаченный заказ, из которого появилась запись
    order_id = Column(Integer, nullable=True)

    quantity_total = Column(Integer, nullable=False)
    quantity_used = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        CheckConstraint("quantity_total >= 0", name="ck_lesson_purchase_total"),
        CheckConstraint(
            "quantity_used >= 0 AND quantity_used <= quantity_total",
            name="ck_lesson_purchase_used",
        ),
        Index("ix_lesson_purchases_student_course", "student_id", "course_id"),
    )

    @property
    def quantity_remaining(self) -> int:
        return self.quantity_total - self.quantity_used

    def __repr__(self):
        return (
            f"<LessonPurchase(id={self.id}, student_id={self.student_id}, "
            f"course_id={self.course_id}, used={self.quantity_used}/{self.quantity_total})>"
        )
