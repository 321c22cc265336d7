from datetime import datetime, timezone

from tutorbook.core.telegram_sender import BotType
from tutorbook.reservations.models import Reservation, ReservationStatus
from tutorbook.reservations.services import notification_service
from tutorbook.reservations.services.notification_service import (
    build_reservation_messages,
    notify_reservation_event,
)
from tutorbook.students.models import UserStudent
from tutorbook.teachers.models import Course, UserTeacher


def make_reservation(**overrides) -> Reservation:
    fields = dict(
        id=7,
        course_id=3,
        teacher_id=1,
        student_id=2,
        ledger_entry_id=1,
        reserve_time=datetime(2030, 1, 7, 9, 30, tzinfo=timezone.utc),
        end_time=datetime(2030, 1, 7, 10, 0, tzinfo=timezone.utc),
        duration_minutes=30,
        teacher_status=ReservationStatus.reserved,
        student_status=ReservationStatus.reserved,
        course=Course(id=3, teacher_id=1, name="Guitar basics"),
        teacher=UserTeacher(id=1, telegram_id=1001, first_name="Anna", last_name="Petrova"),
        student=UserStudent(id=2, telegram_id=2001, first_name="Ivan"),
    )
    fields.update(overrides)
    return Reservation(**fields)


def test_messages_for_both_parties():
    messages = build_reservation_messages("created", make_reservation())

    assert [(m.chat_id, m.bot_type) for m in messages] == [
        (1001, BotType.TEACHER),
        (2001, BotType.STUDENT),
    ]
    assert "2030-01-07 09:30 UTC" in messages[0].text
    assert "Student: Ivan" in messages[0].text
    assert "Teacher: Anna Petrova" in messages[1].text


def test_cancel_message_carries_reason():
    reservation = make_reservation(
        teacher_status=ReservationStatus.cancelled,
        student_status=ReservationStatus.cancelled,
        cancel_reason="Sick",
    )

    messages = build_reservation_messages("cancelled", reservation)

    assert all("Reason: Sick" in m.text for m in messages)


def test_recipient_without_telegram_is_skipped():
    reservation = make_reservation(
        student=UserStudent(id=2, telegram_id=None, first_name="Ivan")
    )

    messages = build_reservation_messages("created", reservation)

    assert [m.chat_id for m in messages] == [1001]


async def test_failed_delivery_is_counted(telegram_mock):
    telegram_mock.side_effect = [True, False]

    delivered = await notify_reservation_event("created", make_reservation())

    assert delivered == 1
    assert telegram_mock.await_count == 2


async def test_notifications_can_be_disabled(telegram_mock, monkeypatch):
    monkeypatch.setattr(notification_service, "NOTIFICATIONS_ENABLED", False)

    delivered = await notify_reservation_event("created", make_reservation())

    assert delivered == 0
    telegram_mock.assert_not_awaited()


def test_user_text_is_html_escaped():
    reservation = make_reservation(
        teacher_status=ReservationStatus.cancelled,
        student_status=ReservationStatus.cancelled,
        cancel_reason="Sick <3 & tired",
        course=Course(id=3, teacher_id=1, name="C++ <intro>"),
        student=UserStudent(id=2, telegram_id=2001, first_name="<Ivan>"),
    )

    teacher_message, student_message = build_reservation_messages("cancelled", reservation)

    assert "Reason: Sick &lt;3 &amp; tired" in teacher_message.text
    assert "Course: C++ &lt;intro&gt;" in student_message.text
    assert "Student: &lt;Ivan&gt;" in teacher_message.text
    assert teacher_message.text.startswith("<b>")
