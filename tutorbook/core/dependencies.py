from dataclasses import dataclass
from enum import Enum
from typing import Optional

from fastapi import Depends, Header
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tutorbook.core.config import TELEGRAM_BOT_TOKEN_TEACHER, TELEGRAM_BOT_TOKEN_STUDENT
from tutorbook.core.database import get_session
from tutorbook.core.exceptions import (
    AuthenticationError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from tutorbook.core.telegram_auth import TelegramAuth
from tutorbook.teachers.models import UserTeacher
from tutorbook.students.models import UserStudent

security = HTTPBearer(
    scheme_name="Telegram InitData",
    description="Enter your Telegram Web App initData string",
    auto_error=False,
)


class ActorRole(str, Enum):
    teacher = "teacher"
    student = "student"


@dataclass(frozen=True)
class Actor:
    """Аутентифицированный участник запроса"""

    id: int
    role: ActorRole
    telegram_id: Optional[int] = None

    @property
    def is_teacher(self) -> bool:
        return self.role == ActorRole.teacher

    @property
    def is_student(self) -> bool:
        return self.role == ActorRole.student


_authenticators = {}


def get_telegram_auth(role: ActorRole) -> TelegramAuth:
    """Один TelegramAuth на роль, создается при первом запросе"""
    if role not in _authenticators:
        token = (
            TELEGRAM_BOT_TOKEN_TEACHER
            if role == ActorRole.teacher
            else TELEGRAM_BOT_TOKEN_STUDENT
        )
        _authenticators[role] = TelegramAuth(token)
    return _authenticators[role]


def parse_role(value: Optional[str]) -> ActorRole:
    try:
        return ActorRole((value or "").strip().lower())
    except ValueError:
        raise ValidationError(
            "X-Client-Role header must be 'teacher' or 'student'",
            details={"field": "X-Client-Role", "value": value},
        )


async def get_current_actor(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    x_client_role: Optional[str] = Header(None, alias="X-Client-Role"),
    session: AsyncSession = Depends(get_session),
) -> Actor:
    """
    Dependency: проверяет initData ботом нужной роли и находит
    локального преподавателя или студента по telegram_id
    """
    if credentials is None or not credentials.credentials.strip():
        raise AuthenticationError("Authentication data is required")

    role = parse_role(x_client_role)
    user_data = get_telegram_auth(role).authenticate(credentials.credentials)
    telegram_id = int(user_data["id"])

    model = UserTeacher if role == ActorRole.teacher else UserStudent
    result = await session.execute(select(model).where(model.telegram_id == telegram_id))
    user = result.scalar_one_or_none()
    if user is None:
        raise NotFoundError(role.value.capitalize(), str(telegram_id))

    return Actor(id=user.id, role=role, telegram_id=telegram_id)


async def require_teacher(actor: Actor = Depends(get_current_actor)) -> Actor:
    if not actor.is_teacher:
        raise ForbiddenError("access", "teacher endpoint", "teacher role required")
    return actor


async def require_student(actor: Actor = Depends(get_current_actor)) -> Actor:
    if not actor.is_student:
        raise ForbiddenError("access", "student endpoint", "student role required")
    return actor
