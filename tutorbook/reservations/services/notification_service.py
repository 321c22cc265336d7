"""
Notification Service - Telegram messages to both parties of a reservation.

Runs as a background task after the transaction has committed; a failed
send is logged and never affects the reservation.
"""
import html
import logging
from dataclasses import dataclass
from typing import List

from tutorbook.core.config import NOTIFICATIONS_ENABLED
from tutorbook.core.telegram_sender import BotType, send_telegram_message
from tutorbook.core.validations import ensure_utc
from tutorbook.reservations.models import Reservation

logger = logging.getLogger(__name__)

EVENT_TITLES = {
    "created": "📅 New lesson booked",
    "cancelled": "❌ Lesson cancelled",
    "completed": "✅ Lesson marked as completed",
}


@dataclass
class OutgoingMessage:
    chat_id: int
    text: str
    bot_type: BotType


def build_reservation_messages(event: str, reservation: Reservation) -> List[OutgoingMessage]:
    """Сообщения преподавателю и студенту; получатели без telegram_id пропускаются"""
    title = EVENT_TITLES.get(event, "Reservation update")
    when = ensure_utc(reservation.reserve_time).strftime("%Y-%m-%d %H:%M UTC")
    # parse_mode=HTML: пользовательский текст экранируется
    course = html.escape(reservation.course_name or str(reservation.course_id))
    teacher = html.escape(reservation.teacher_name or "")
    student = html.escape(reservation.student_name or "")

    lines = [
        f"<b>{title}</b>",
        f"Course: {course}",
        f"Time: {when} ({reservation.duration_minutes} min)",
    ]
    if event == "cancelled" and reservation.cancel_reason:
        lines.append(f"Reason: {html.escape(reservation.cancel_reason)}")
    if event == "completed" and reservation.is_fully_completed:
        lines.append("Both sides confirmed the lesson.")

    messages = []
    if reservation.teacher and reservation.teacher.telegram_id:
        messages.append(
            OutgoingMessage(
                chat_id=reservation.teacher.telegram_id,
                text="\n".join(lines + [f"Student: {student}"]),
                bot_type=BotType.TEACHER,
            )
        )
    if reservation.student and reservation.student.telegram_id:
        messages.append(
            OutgoingMessage(
                chat_id=reservation.student.telegram_id,
                text="\n".join(lines + [f"Teacher: {teacher}"]),
                bot_type=BotType.STUDENT,
            )
        )
    return messages


async def notify_reservation_event(event: str, reservation: Reservation) -> int:
    """Returns how many messages were delivered"""
    if not NOTIFICATIONS_ENABLED:
        logger.debug(f"Notifications disabled, skipping '{event}' for reservation {reservation.id}")
        return 0

    delivered = 0
    try:
        for message in build_reservation_messages(event, reservation):
            if await send_telegram_message(
                message.chat_id, message.text, bot_type=message.bot_type
            ):
                delivered += 1
            else:
                logger.warning(
                    "Reservation notification not delivered",
                    extra={
                        "reservation_id": reservation.id,
                        "event": event,
                        "bot_type": message.bot_type.value,
                    },
                )
    except Exception as e:
        logger.error(
            f"Error sending '{event}' notification for reservation {reservation.id}: {e}"
        )

    return delivered
