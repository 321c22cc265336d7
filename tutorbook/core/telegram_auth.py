import hashlib
import hmac
import json
import logging
import urllib.parse
from urllib.parse import unquote_plus
from typing import Dict, Any
from datetime import datetime, timezone

from tutorbook.core.exceptions import AuthenticationError, ConfigurationError

logger = logging.getLogger(__name__)


class TelegramAuthError(Exception):
    """Internal reason why initData was rejected"""

    def __init__(self, message: str, error_code: str = "AUTH_ERROR"):
        self.message = message
        self.error_code = error_code
        super().__init__(self.message)


class TelegramAuth:
    """Verifies Telegram Mini-App initData signed by one bot"""

    def __init__(self, bot_token: str, max_age_seconds: int = 86400):
        if not bot_token:
            raise ConfigurationError("bot_token", "Bot token is required")
        self.bot_token = bot_token
        self.max_age_seconds = max_age_seconds
        self.secret_key = hmac.new(
            b"WebAppData", bot_token.encode(), hashlib.sha256
        ).digest()

    def validate_auth_date(self, auth_date: str) -> bool:
        try:
            if not auth_date:
                return False

            auth_timestamp = int(auth_date)
            current_timestamp = int(datetime.now(timezone.utc).timestamp())

            return current_timestamp - auth_timestamp <= self.max_age_seconds
        except (ValueError, TypeError):
            return False

    def validate_init_data(self, raw_query: str) -> Dict[str, Any]:
        """
        Check the initData signature and return the parsed fields.

        The data-check-string is every field except ``hash`` as ``key=value``
        sorted by key and joined with newlines; the signature is
        HMAC-SHA256 of it keyed by HMAC-SHA256("WebAppData", bot_token).
        """
        if not raw_query or not raw_query.strip():
            raise TelegramAuthError("Empty query data", "EMPTY_DATA")

        params = dict(urllib.parse.parse_qsl(raw_query, keep_blank_values=False))

        their_hash = params.pop("hash", None)
        if not their_hash:
            raise TelegramAuthError("Hash parameter missing", "NO_HASH")

        data_check_string = "\n".join(f"{k}={params[k]}" for k in sorted(params))
        calc_hash = hmac.new(
            self.secret_key, data_check_string.encode(), hashlib.sha256
        ).hexdigest()

        if not hmac.compare_digest(calc_hash, their_hash):
            raise TelegramAuthError("Telegram signature mismatch", "INVALID_HASH")

        # JSON поля разбираем только после проверки подписи
        if "user" in params:
            try:
                params["user"] = json.loads(unquote_plus(params["user"]))
            except json.JSONDecodeError:
                raise TelegramAuthError("Invalid user data format", "INVALID_USER_DATA")

        return params

    def authenticate(self, init_data: str) -> Dict[str, Any]:
        """Returns the Telegram ``user`` object of verified initData"""
        try:
            parsed_data = self.validate_init_data(init_data)

            if "auth_date" not in parsed_data:
                raise TelegramAuthError(
                    "Authentication timestamp missing", "NO_AUTH_DATE"
                )

            if not self.validate_auth_date(parsed_data["auth_date"]):
                raise TelegramAuthError("Authentication expired", "EXPIRED_AUTH")

            user_data = parsed_data.get("user")
            if not isinstance(user_data, dict) or "id" not in user_data:
                raise TelegramAuthError("Incomplete user data", "INCOMPLETE_USER_DATA")

            return user_data

        except TelegramAuthError as e:
            logger.warning(f"Telegram auth failed with code: {e.error_code}")
            # Клиенту всегда отдаем общий ответ
            raise AuthenticationError("Authentication failed")
