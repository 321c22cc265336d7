from datetime import timedelta

import pytest
from sqlalchemy import func, select

from conftest import MONDAY, add_purchase, future_date, get_purchase
from tutorbook.core.exceptions import InvalidStateTransitionError, ValidationError
from tutorbook.core.validations import combine_utc, parse_hhmm, utc_now
from tutorbook.reservations.crud.reservations import (
    cancel_reservation,
    create_reservation,
    get_reservation,
)
from tutorbook.reservations.models import Reservation, ReservationState
from tutorbook.reservations.schemas.reservations import ReservationCreate


def booking(world, day, at="09:30"):
    return {
        "course_id": world.course.id,
        "teacher_id": world.teacher.id,
        "reserve_date": day.isoformat(),
        "reserve_time": at,
    }


async def book(client, act_as, world, actor, day, at="09:30"):
    act_as(actor)
    return await client.post("/api/v1/reservations", json=booking(world, day, at))


async def count_reservations(session) -> int:
    result = await session.execute(select(func.count(Reservation.id)))
    return result.scalar()


async def test_booking_consumes_one_lesson_and_blocks_overlap(client, world, act_as):
    await add_purchase(world.student.id, world.course.id, 1)
    await add_purchase(world.other_student.id, world.course.id, 1)
    monday = future_date(MONDAY)

    response = await book(client, act_as, world, world.student_actor, monday, "09:30")

    assert response.status_code == 201
    body = response.json()
    assert body["remaining_lessons"] == {"total": 1, "used": 1, "remaining": 0}
    reservation = body["reservation"]
    assert reservation["teacher_status"] == "reserved"
    assert reservation["student_status"] == "reserved"
    assert reservation["state"] == "pending"
    assert reservation["duration_minutes"] == 30
    assert reservation["course_name"] == "Guitar basics"

    response = await book(client, act_as, world, world.other_student_actor, monday, "09:45")

    assert response.status_code == 409
    body = response.json()
    assert body["error"] == "SCHEDULE_CONFLICT"
    assert body["details"]["conflicting_reservation_ids"] == [reservation["id"]]


async def test_adjacent_bookings_do_not_conflict(client, world, act_as):
    await add_purchase(world.student.id, world.course.id, 2)
    monday = future_date(MONDAY)

    first = await book(client, act_as, world, world.student_actor, monday, "09:00")
    second = await book(client, act_as, world, world.student_actor, monday, "09:30")

    assert first.status_code == 201
    assert second.status_code == 201
    assert second.json()["remaining_lessons"]["remaining"] == 0


async def test_no_balance_creates_nothing(client, world, act_as, session):
    await add_purchase(world.student.id, world.course.id, 2, used=2)

    response = await book(client, act_as, world, world.student_actor, future_date(MONDAY))

    assert response.status_code == 400
    assert response.json()["error"] == "INSUFFICIENT_LESSON_BALANCE"
    assert await count_reservations(session) == 0


async def test_outside_available_hours(client, world, act_as, session):
    entry_id = await add_purchase(world.student.id, world.course.id, 1)

    # Урок 09:45-10:15 выходит за слот 09:00-10:00
    response = await book(client, act_as, world, world.student_actor, future_date(MONDAY), "09:45")

    assert response.status_code == 400
    assert response.json()["error"] == "OUTSIDE_AVAILABLE_HOURS"
    assert (await get_purchase(entry_id)).quantity_used == 0
    assert await count_reservations(session) == 0


async def test_wrong_weekday_is_outside_available_hours(client, world, act_as):
    await add_purchase(world.student.id, world.course.id, 1)

    response = await book(client, act_as, world, world.student_actor, future_date(2), "09:30")

    assert response.status_code == 400
    assert response.json()["error"] == "OUTSIDE_AVAILABLE_HOURS"


@pytest.mark.parametrize("hours_before", [-1, 0, 2, 23])
async def test_past_or_too_soon_is_rejected(world, session, hours_before):
    await add_purchase(world.student.id, world.course.id, 1)
    monday = future_date(MONDAY)
    start = combine_utc(monday, parse_hhmm("09:30"))

    data = ReservationCreate(
        course_id=world.course.id,
        teacher_id=world.teacher.id,
        reserve_date=monday,
        reserve_time="09:30",
    )
    with pytest.raises(ValidationError):
        await create_reservation(
            session, world.student.id, data, now=start - timedelta(hours=hours_before)
        )

    assert await count_reservations(session) == 0


async def test_booking_exactly_at_lead_time_is_allowed(world, session):
    await add_purchase(world.student.id, world.course.id, 1)
    monday = future_date(MONDAY)
    start = combine_utc(monday, parse_hhmm("09:30"))

    data = ReservationCreate(
        course_id=world.course.id,
        teacher_id=world.teacher.id,
        reserve_date=monday,
        reserve_time="09:30",
    )
    result = await create_reservation(
        session, world.student.id, data, now=start - timedelta(hours=24)
    )

    assert result.remaining_lessons.remaining == 0


async def test_course_of_another_teacher_is_rejected(client, world, act_as):
    await add_purchase(world.student.id, world.course.id, 1)
    payload = booking(world, future_date(MONDAY))
    payload["teacher_id"] = world.other_teacher.id
    act_as(world.student_actor)

    response = await client.post("/api/v1/reservations", json=payload)

    assert response.status_code == 400
    assert response.json()["error"] == "VALIDATION_ERROR"


async def test_malformed_booking_is_field_scoped(client, world, act_as):
    act_as(world.student_actor)
    payload = booking(world, future_date(MONDAY), "9.30")

    response = await client.post("/api/v1/reservations", json=payload)

    assert response.status_code == 400
    fields = [error["field"] for error in response.json()["details"]["fields"]]
    assert fields == ["body -> reserve_time"]


async def test_teachers_cannot_book(client, world, act_as):
    response = await book(client, act_as, world, world.teacher_actor, future_date(MONDAY))

    assert response.status_code == 403


async def test_cancel_by_teacher_refunds_and_blocks_completion(client, world, act_as):
    entry_id = await add_purchase(world.student.id, world.course.id, 3, used=1)
    created = await book(client, act_as, world, world.student_actor, future_date(MONDAY))
    reservation_id = created.json()["reservation"]["id"]
    assert (await get_purchase(entry_id)).quantity_used == 2

    act_as(world.teacher_actor)
    response = await client.post(
        f"/api/v1/reservations/{reservation_id}/cancel", json={"reason": "Sick"}
    )

    assert response.status_code == 200
    body = response.json()
    assert body["refunded_lessons"] == 1
    assert body["remaining_lessons"]["remaining"] == 2
    assert body["reservation"]["teacher_status"] == "cancelled"
    assert body["reservation"]["student_status"] == "cancelled"
    assert body["reservation"]["cancelled_by"] == "teacher"
    assert body["reservation"]["cancel_reason"] == "Sick"
    assert (await get_purchase(entry_id)).quantity_used == 1

    response = await client.patch(
        f"/api/v1/reservations/{reservation_id}/status",
        json={"status_type": "teacher-complete"},
    )
    assert response.status_code == 409
    assert response.json()["error"] == "INVALID_STATE_TRANSITION"


async def test_second_cancel_never_double_refunds(client, world, act_as):
    entry_id = await add_purchase(world.student.id, world.course.id, 1)
    created = await book(client, act_as, world, world.student_actor, future_date(MONDAY))
    reservation_id = created.json()["reservation"]["id"]

    first = await client.post(f"/api/v1/reservations/{reservation_id}/cancel")
    second = await client.post(f"/api/v1/reservations/{reservation_id}/cancel")

    assert first.status_code == 200
    assert second.status_code == 409
    assert (await get_purchase(entry_id)).quantity_used == 0


async def test_cancelled_reservation_frees_the_time(client, world, act_as):
    await add_purchase(world.student.id, world.course.id, 1)
    await add_purchase(world.other_student.id, world.course.id, 1)
    monday = future_date(MONDAY)
    created = await book(client, act_as, world, world.student_actor, monday)
    await client.post(f"/api/v1/reservations/{created.json()['reservation']['id']}/cancel")

    response = await book(client, act_as, world, world.other_student_actor, monday)

    assert response.status_code == 201


async def test_completion_needs_both_sides_and_keeps_ledger(client, world, act_as):
    entry_id = await add_purchase(world.student.id, world.course.id, 2)
    created = await book(client, act_as, world, world.student_actor, future_date(MONDAY))
    reservation_id = created.json()["reservation"]["id"]

    act_as(world.teacher_actor)
    response = await client.patch(
        f"/api/v1/reservations/{reservation_id}/status",
        json={"status_type": "teacher-complete", "notes": "Scales practiced"},
    )
    assert response.status_code == 200
    assert response.json()["is_fully_completed"] is False
    assert response.json()["reservation"]["teacher_notes"] == "Scales practiced"

    act_as(world.student_actor)
    response = await client.patch(
        f"/api/v1/reservations/{reservation_id}/status",
        json={"status_type": "student-complete"},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["is_fully_completed"] is True
    assert body["reservation"]["state"] == "fully_completed"
    assert (await get_purchase(entry_id)).quantity_used == 1

    # После полного завершения переходов нет
    response = await client.patch(
        f"/api/v1/reservations/{reservation_id}/status",
        json={"status_type": "student-complete"},
    )
    assert response.status_code == 409
    response = await client.post(f"/api/v1/reservations/{reservation_id}/cancel")
    assert response.status_code == 409
    assert (await get_purchase(entry_id)).quantity_used == 1


async def test_cancel_after_one_side_completed_is_rejected(client, world, act_as):
    await add_purchase(world.student.id, world.course.id, 1)
    created = await book(client, act_as, world, world.student_actor, future_date(MONDAY))
    reservation_id = created.json()["reservation"]["id"]

    act_as(world.teacher_actor)
    await client.patch(
        f"/api/v1/reservations/{reservation_id}/status",
        json={"status_type": "teacher-complete"},
    )
    act_as(world.student_actor)
    response = await client.post(f"/api/v1/reservations/{reservation_id}/cancel")

    assert response.status_code == 409


async def test_half_completed_reservation_still_blocks_time(client, world, act_as):
    await add_purchase(world.student.id, world.course.id, 1)
    await add_purchase(world.other_student.id, world.course.id, 1)
    monday = future_date(MONDAY)
    created = await book(client, act_as, world, world.student_actor, monday)

    act_as(world.teacher_actor)
    await client.patch(
        f"/api/v1/reservations/{created.json()['reservation']['id']}/status",
        json={"status_type": "teacher-complete"},
    )

    response = await book(client, act_as, world, world.other_student_actor, monday)
    assert response.status_code == 409


async def test_status_type_must_match_role(client, world, act_as):
    await add_purchase(world.student.id, world.course.id, 1)
    created = await book(client, act_as, world, world.student_actor, future_date(MONDAY))

    response = await client.patch(
        f"/api/v1/reservations/{created.json()['reservation']['id']}/status",
        json={"status_type": "teacher-complete"},
    )

    assert response.status_code == 403


async def test_only_participants_can_touch_reservation(client, world, act_as):
    entry_id = await add_purchase(world.student.id, world.course.id, 1)
    created = await book(client, act_as, world, world.student_actor, future_date(MONDAY))
    reservation_id = created.json()["reservation"]["id"]

    act_as(world.other_student_actor)
    assert (await client.get(f"/api/v1/reservations/{reservation_id}")).status_code == 403
    assert (
        await client.post(f"/api/v1/reservations/{reservation_id}/cancel")
    ).status_code == 403

    act_as(world.other_teacher_actor)
    response = await client.patch(
        f"/api/v1/reservations/{reservation_id}/status",
        json={"status_type": "teacher-complete"},
    )
    assert response.status_code == 403
    assert (await get_purchase(entry_id)).quantity_used == 1


async def test_unknown_reservation(client, world, act_as):
    act_as(world.student_actor)

    response = await client.get("/api/v1/reservations/9999")

    assert response.status_code == 404
    assert response.json()["error"] == "NOT_FOUND"


async def test_soft_deleted_reservation_is_invisible(client, world, act_as, session):
    await add_purchase(world.student.id, world.course.id, 1)
    created = await book(client, act_as, world, world.student_actor, future_date(MONDAY))
    reservation_id = created.json()["reservation"]["id"]

    reservation = await session.get(Reservation, reservation_id)
    reservation.deleted_at = utc_now()
    await session.commit()

    response = await client.get(f"/api/v1/reservations/{reservation_id}")
    assert response.status_code == 404


async def test_list_filters_and_pagination(client, world, act_as):
    await add_purchase(world.student.id, world.course.id, 3)
    first_monday = future_date(MONDAY)
    second_monday = first_monday + timedelta(days=7)
    first = await book(client, act_as, world, world.student_actor, first_monday, "09:00")
    await book(client, act_as, world, world.student_actor, second_monday, "09:00")
    await client.post(f"/api/v1/reservations/{first.json()['reservation']['id']}/cancel")

    response = await client.get("/api/v1/reservations", params={"size": 1})
    body = response.json()
    assert response.status_code == 200
    assert body["total"] == 2
    assert body["pages"] == 2
    assert body["reservations"][0]["reserve_time"].startswith(second_monday.isoformat())

    response = await client.get("/api/v1/reservations", params={"state": "pending"})
    assert [r["state"] for r in response.json()["reservations"]] == ["pending"]

    response = await client.get(
        "/api/v1/reservations",
        params={"date_from": first_monday.isoformat(), "date_to": first_monday.isoformat()},
    )
    assert [r["id"] for r in response.json()["reservations"]] == [first.json()["reservation"]["id"]]

    act_as(world.teacher_actor)
    response = await client.get("/api/v1/reservations")
    assert response.json()["total"] == 2


async def test_notifications_go_to_both_parties(client, world, act_as, telegram_mock):
    await add_purchase(world.student.id, world.course.id, 1)

    response = await book(client, act_as, world, world.student_actor, future_date(MONDAY))

    assert response.status_code == 201
    chat_ids = sorted(call.args[0] for call in telegram_mock.await_args_list)
    assert chat_ids == [world.teacher.telegram_id, world.student.telegram_id]


async def test_notification_failure_keeps_reservation(client, world, act_as, telegram_mock, session):
    telegram_mock.side_effect = RuntimeError("telegram down")
    await add_purchase(world.student.id, world.course.id, 1)

    response = await book(client, act_as, world, world.student_actor, future_date(MONDAY))

    assert response.status_code == 201
    assert await count_reservations(session) == 1


async def booked_monday(world, session):
    """Бронь на ближайший понедельник 09:30, сделанная за три дня; -> (id, start, entry_id)"""
    entry_id = await add_purchase(world.student.id, world.course.id, 1)
    monday = future_date(MONDAY)
    start = combine_utc(monday, parse_hhmm("09:30"))
    data = ReservationCreate(
        course_id=world.course.id,
        teacher_id=world.teacher.id,
        reserve_date=monday,
        reserve_time="09:30",
    )
    result = await create_reservation(
        session, world.student.id, data, now=start - timedelta(days=3)
    )
    return result.reservation.id, start, entry_id


@pytest.mark.parametrize(
    "before_start",
    [timedelta(hours=23, minutes=59), timedelta(0), timedelta(hours=-1)],
)
async def test_late_cancellation_is_rejected_without_refund(world, session, before_start):
    reservation_id, start, entry_id = await booked_monday(world, session)

    with pytest.raises(InvalidStateTransitionError):
        await cancel_reservation(
            session, reservation_id, world.student_actor, now=start - before_start
        )

    assert (await get_purchase(entry_id)).quantity_used == 1
    reservation = await get_reservation(session, reservation_id, world.student_actor)
    assert reservation.state == ReservationState.pending


async def test_cancellation_exactly_at_cut_off_is_refunded(world, session):
    reservation_id, start, entry_id = await booked_monday(world, session)

    result = await cancel_reservation(
        session, reservation_id, world.teacher_actor, now=start - timedelta(hours=24)
    )

    assert result.refunded_lessons == 1
    assert result.reservation.state == ReservationState.cancelled
    assert (await get_purchase(entry_id)).quantity_used == 0
