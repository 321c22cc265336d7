from datetime import date, time, datetime
from typing import List
from pydantic import BaseModel, Field, ConfigDict, field_serializer, field_validator

from tutorbook.core.validations import ensure_utc
from tutorbook.reservations.models import ReservationStatus


class SlotInput(BaseModel):
    """Один слот из полного набора; формат времени проверяется при замене"""

    weekday: int = Field(..., description="0 = Sunday ... 6 = Saturday")
    start_time: str = Field(..., description="HH:MM, UTC")
    end_time: str = Field(..., description="HH:MM, UTC")
    is_active: bool = Field(True, description="Inactive slots are stored but never cover bookings")

    model_config = ConfigDict(str_strip_whitespace=True)


class ScheduleReplaceRequest(BaseModel):
    """Полный набор слотов преподавателя; пустой список удаляет все слоты"""

    slots: List[SlotInput] = Field(default_factory=list)


class SlotRead(BaseModel):
    id: int
    teacher_id: int
    weekday: int
    start_time: time
    end_time: time
    is_active: bool

    model_config = ConfigDict(from_attributes=True)

    @field_serializer("start_time", "end_time")
    def serialize_time(self, value: time) -> str:
        return value.strftime("%H:%M")


class ScheduleResponse(BaseModel):
    teacher_id: int
    slots: List[SlotRead]


class ScheduleReplaceResponse(ScheduleResponse):
    created_count: int
    deleted_count: int


class ConflictingReservation(BaseModel):
    id: int
    uuid: str
    course_id: int
    student_id: int
    reserve_time: datetime
    end_time: datetime
    teacher_status: ReservationStatus
    student_status: ReservationStatus

    model_config = ConfigDict(from_attributes=True)

    @field_validator("reserve_time", "end_time")
    @classmethod
    def as_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)


class ConflictCheckResponse(BaseModel):
    has_conflict: bool
    weekday: int
    start_time: str
    end_time: str
    from_date: date
    to_date: date
    conflicts: List[ConflictingReservation]
    overlapping_slots: List[SlotRead]

