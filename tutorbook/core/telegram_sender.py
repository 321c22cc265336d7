import httpx
import logging
from enum import Enum
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from tutorbook.core.config import TELEGRAM_BOT_TOKEN_TEACHER, TELEGRAM_BOT_TOKEN_STUDENT

logger = logging.getLogger(__name__)

TELEGRAM_API_URL = "https://api.telegram.org"
SEND_ATTEMPTS = 3


class BotType(str, Enum):
    TEACHER = "TEACHER"
    STUDENT = "STUDENT"


def _bot_token(bot_type: BotType):
    if bot_type == BotType.TEACHER:
        return TELEGRAM_BOT_TOKEN_TEACHER
    return TELEGRAM_BOT_TOKEN_STUDENT


async def send_telegram_message(
    chat_id: int,
    text: str,
    parse_mode: str = "HTML",
    bot_type: BotType = BotType.STUDENT,
) -> bool:
    """
    Send a message to a Telegram user.

    Network errors are retried a few times; any failure ends up as ``False``
    and a log line, never as an exception.

    Args:
        chat_id: Telegram chat ID (user ID)
        text: Message text
        parse_mode: HTML or MarkdownV2
        bot_type: Which bot to use for sending

    Returns:
        bool: True if successful, False otherwise
    """
    token = _bot_token(bot_type)

    if not token:
        logger.warning(f"Token for {bot_type} is not set. Cannot send notification.")
        return False

    url = f"{TELEGRAM_API_URL}/bot{token}/sendMessage"
    payload = {"chat_id": chat_id, "text": text, "parse_mode": parse_mode}

    try:
        async with httpx.AsyncClient() as client:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(SEND_ATTEMPTS),
                wait=wait_exponential(multiplier=0.5, max=4),
                retry=retry_if_exception_type(httpx.TransportError),
            ):
                with attempt:
                    response = await client.post(url, json=payload, timeout=10.0)

        if response.status_code == 200:
            return True

        logger.error(f"Failed to send Telegram message ({bot_type}): {response.text}")
        return False

    except RetryError as e:
        logger.error(
            f"Telegram unreachable after {SEND_ATTEMPTS} attempts ({bot_type}): "
            f"{e.last_attempt.exception()}"
        )
        return False
    except httpx.HTTPError as e:
        logger.error(f"Error sending Telegram message ({bot_type}): {str(e)}")
        return False
