from datetime import timedelta
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

from sqlalchemy.dialects import postgresql

from conftest import MONDAY, add_purchase, future_date
from tutorbook.core.database import TEACHER_SCHEDULE_LOCK, advisory_xact_lock
from tutorbook.core.validations import combine_utc, parse_hhmm
from tutorbook.reservations.crud import reservations as reservations_crud
from tutorbook.reservations.schemas.reservations import ReservationCreate
from tutorbook.reservations.services.conflict_checker import (
    ConflictChecker,
    ConflictResult,
)
from tutorbook.students.crud.ledger import release_unit, reserve_unit
from tutorbook.teachers.crud import schedule as schedule_crud


def postgres_session():
    session = MagicMock()
    session.get_bind.return_value = SimpleNamespace(
        dialect=SimpleNamespace(name="postgresql")
    )
    session.execute = AsyncMock()
    return session


async def test_advisory_lock_statement_on_postgresql():
    session = postgres_session()

    await advisory_xact_lock(session, TEACHER_SCHEDULE_LOCK, 2**31 + 5)

    statement, params = session.execute.await_args.args
    assert str(statement) == "SELECT pg_advisory_xact_lock(:namespace, :key)"
    # Ключ сворачивается в диапазон int4
    assert params == {"namespace": TEACHER_SCHEDULE_LOCK, "key": 6}


async def test_advisory_lock_is_skipped_on_sqlite(session):
    calls = []
    original_execute = session.execute

    async def spy(statement, *args, **kwargs):
        calls.append(str(statement))
        return await original_execute(statement, *args, **kwargs)

    session.execute = spy
    await advisory_xact_lock(session, TEACHER_SCHEDULE_LOCK, 1)

    assert calls == []


async def test_booking_takes_teacher_lock_before_conflict_read(world, session, monkeypatch):
    await add_purchase(world.student.id, world.course.id, 1)
    order = []

    async def lock(session_, namespace, key):
        order.append(("lock", namespace, key))

    async def check_conflict(self, teacher_id, start, end, exclude_reservation_id=None):
        order.append(("conflict", teacher_id))
        return ConflictResult(has_conflict=False)

    monkeypatch.setattr(reservations_crud, "advisory_xact_lock", lock)
    monkeypatch.setattr(ConflictChecker, "check_conflict", check_conflict)

    monday = future_date(MONDAY)
    data = ReservationCreate(
        course_id=world.course.id,
        teacher_id=world.teacher.id,
        reserve_date=monday,
        reserve_time="09:00",
    )
    await reservations_crud.create_reservation(
        session,
        world.student.id,
        data,
        now=combine_utc(monday, parse_hhmm("09:00")) - timedelta(days=3),
    )

    assert order == [
        ("lock", TEACHER_SCHEDULE_LOCK, world.teacher.id),
        ("conflict", world.teacher.id),
    ]


async def test_schedule_replace_takes_teacher_lock_before_delete(world, session, monkeypatch):
    order = []
    real_delete = schedule_crud.delete

    async def lock(session_, namespace, key):
        order.append(("lock", namespace, key))

    def delete(*args, **kwargs):
        order.append(("delete",))
        return real_delete(*args, **kwargs)

    monkeypatch.setattr(schedule_crud, "advisory_xact_lock", lock)
    monkeypatch.setattr(schedule_crud, "delete", delete)

    await schedule_crud.replace_slots(
        session,
        world.teacher.id,
        [{"weekday": 2, "start_time": "10:00", "end_time": "11:00"}],
    )

    assert order == [("lock", TEACHER_SCHEDULE_LOCK, world.teacher.id), ("delete",)]


async def test_ledger_rows_are_read_for_update(world, session):
    entry_id = await add_purchase(world.student.id, world.course.id, 2)
    statements = []
    original_execute = session.execute

    async def spy(statement, *args, **kwargs):
        statements.append(statement)
        return await original_execute(statement, *args, **kwargs)

    session.execute = spy
    await reserve_unit(session, world.student.id, world.course.id)
    await release_unit(session, entry_id)

    compiled = [str(s.compile(dialect=postgresql.dialect())) for s in statements]
    assert len(compiled) == 2
    assert all(sql.rstrip().endswith("FOR UPDATE") for sql in compiled)
