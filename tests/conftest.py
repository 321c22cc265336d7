import os

# Окружение задается до импорта приложения: config читается при импорте
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["ENVIRONMENT"] = "test"
os.environ["LOG_FORMAT"] = "text"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["NOTIFICATIONS_ENABLED"] = "true"
os.environ.setdefault("TELEGRAM_BOT_TOKEN_TEACHER", "123456:teacher-test-token")
os.environ.setdefault("TELEGRAM_BOT_TOKEN_STUDENT", "654321:student-test-token")

from dataclasses import dataclass
from datetime import date, timedelta
from unittest.mock import AsyncMock

import pytest
from httpx import ASGITransport, AsyncClient

from tutorbook.core.database import Base, async_session, engine
from tutorbook.core.dependencies import Actor, ActorRole, get_current_actor
from tutorbook.core.validations import parse_hhmm, to_weekday, utc_now
from tutorbook.main import app
from tutorbook.students.models import LessonPurchase, UserStudent
from tutorbook.teachers.models import Course, TeacherAvailableSlot, UserTeacher

MONDAY = 1


def future_date(weekday: int, min_days: int = 2) -> date:
    """Ближайшая дата с нужным днем недели (0 = воскресенье), не раньше min_days"""
    day = utc_now().date() + timedelta(days=min_days)
    while to_weekday(day) != weekday:
        day += timedelta(days=1)
    return day


@dataclass
class World:
    teacher: UserTeacher
    other_teacher: UserTeacher
    course: Course
    student: UserStudent
    other_student: UserStudent

    @property
    def teacher_actor(self) -> Actor:
        return Actor(id=self.teacher.id, role=ActorRole.teacher, telegram_id=self.teacher.telegram_id)

    @property
    def student_actor(self) -> Actor:
        return Actor(id=self.student.id, role=ActorRole.student, telegram_id=self.student.telegram_id)

    @property
    def other_student_actor(self) -> Actor:
        return Actor(
            id=self.other_student.id,
            role=ActorRole.student,
            telegram_id=self.other_student.telegram_id,
        )

    @property
    def other_teacher_actor(self) -> Actor:
        return Actor(
            id=self.other_teacher.id,
            role=ActorRole.teacher,
            telegram_id=self.other_teacher.telegram_id,
        )


@pytest.fixture
async def database():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    # In-memory база живет в одном соединении; новое соединение для нового event loop
    await engine.dispose()


@pytest.fixture
async def session(database):
    async with async_session() as s:
        yield s


@pytest.fixture
async def world(database) -> World:
    """Преподаватель с курсом на 30 минут и слотом Пн 09:00-10:00, два студента"""
    async with async_session() as s:
        teacher = UserTeacher(telegram_id=1001, first_name="Anna", last_name="Petrova")
        other_teacher = UserTeacher(telegram_id=1002, first_name="Boris")
        student = UserStudent(telegram_id=2001, first_name="Ivan")
        other_student = UserStudent(telegram_id=2002, first_name="Olga")
        s.add_all([teacher, other_teacher, student, other_student])
        await s.flush()

        course = Course(teacher_id=teacher.id, name="Guitar basics", duration_minutes=30)
        s.add(course)
        await s.flush()

        s.add(
            TeacherAvailableSlot(
                teacher_id=teacher.id,
                weekday=MONDAY,
                start_time=parse_hhmm("09:00"),
                end_time=parse_hhmm("10:00"),
                is_active=True,
            )
        )
        await s.commit()

    return World(
        teacher=teacher,
        other_teacher=other_teacher,
        course=course,
        student=student,
        other_student=other_student,
    )


async def add_purchase(
    student_id: int, course_id: int, total: int, used: int = 0, created_at=None
) -> int:
    async with async_session() as s:
        entry = LessonPurchase(
            student_id=student_id,
            course_id=course_id,
            quantity_total=total,
            quantity_used=used,
        )
        if created_at is not None:
            entry.created_at = created_at
        s.add(entry)
        await s.commit()
        return entry.id


async def get_purchase(entry_id: int) -> LessonPurchase:
    async with async_session() as s:
        return await s.get(LessonPurchase, entry_id)


@pytest.fixture
def act_as():
    """act_as(actor) подменяет аутентификацию для следующих запросов"""

    def _act_as(actor: Actor):
        app.dependency_overrides[get_current_actor] = lambda: actor

    yield _act_as
    app.dependency_overrides.clear()


@pytest.fixture
def telegram_mock(monkeypatch):
    mock = AsyncMock(return_value=True)
    monkeypatch.setattr(
        "tutorbook.reservations.services.notification_service.send_telegram_message",
        mock,
    )
    return mock


@pytest.fixture
async def client(database, telegram_mock):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
