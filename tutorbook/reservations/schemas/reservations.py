from datetime import date, time, datetime
from typing import Any, Dict, List, Optional, Literal
from pydantic import BaseModel, Field, ConfigDict, field_validator

from tutorbook.core.exceptions import ValidationError
from tutorbook.core.validations import ensure_utc, parse_hhmm
from tutorbook.reservations.models import ReservationState, ReservationStatus
from tutorbook.students.schemas.ledger import LessonBalance


class ReservationCreate(BaseModel):
    """Схема для бронирования урока; дата и время в UTC"""

    course_id: int = Field(..., gt=0, description="Course ID")
    teacher_id: int = Field(..., gt=0, description="Teacher ID")
    reserve_date: date = Field(..., description="Lesson date (UTC)")
    reserve_time: time = Field(..., description="Lesson start, HH:MM (UTC)")

    @field_validator("reserve_time", mode="before")
    @classmethod
    def parse_reserve_time(cls, value):
        try:
            return parse_hhmm(value, "reserve_time")
        except ValidationError as e:
            raise ValueError(e.message)


class ReservationRead(BaseModel):
    id: int
    uuid: str
    course_id: int
    course_name: Optional[str] = None
    teacher_id: int
    teacher_name: Optional[str] = None
    student_id: int
    student_name: Optional[str] = None
    reserve_time: datetime
    end_time: datetime
    duration_minutes: int
    teacher_status: ReservationStatus
    student_status: ReservationStatus
    state: ReservationState
    is_fully_completed: bool
    cancelled_by: Optional[str] = None
    cancel_reason: Optional[str] = None
    teacher_notes: Optional[str] = None
    student_notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @field_validator("reserve_time", "end_time", "created_at", "updated_at")
    @classmethod
    def as_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value)


class ReservationCreateResponse(BaseModel):
    reservation: ReservationRead
    remaining_lessons: LessonBalance


class ReservationStatusUpdate(BaseModel):
    """Отметка о проведении урока одной из сторон"""

    status_type: Literal["teacher-complete", "student-complete"]
    notes: Optional[str] = Field(None, max_length=1000)

    model_config = ConfigDict(str_strip_whitespace=True)


class ReservationStatusResponse(BaseModel):
    reservation: ReservationRead
    is_fully_completed: bool


class ReservationCancel(BaseModel):
    reason: Optional[str] = Field(None, max_length=500, description="Reason for cancellation")

    model_config = ConfigDict(str_strip_whitespace=True)


class ReservationCancelResponse(BaseModel):
    reservation: ReservationRead
    refunded_lessons: int
    remaining_lessons: LessonBalance


class ReservationFilters(BaseModel):
    course_id: Optional[int] = Field(None, gt=0)
    state: Optional[ReservationState] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None


class ReservationListResponse(BaseModel):
    """Ответ со списком бронирований"""

    reservations: List[ReservationRead]
    total: int = Field(..., ge=0)
    page: int = Field(..., ge=1)
    size: int = Field(..., ge=1, le=100)
    pages: int = Field(..., ge=1)
    filters: Optional[Dict[str, Any]] = None
