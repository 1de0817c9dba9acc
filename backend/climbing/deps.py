from dataclasses import dataclass
from typing import AsyncIterator
from zoneinfo import ZoneInfo

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy import select
from sqlalchemy.exc import ProgrammingError
from sqlalchemy.ext.asyncio import AsyncSession

from .config import get_settings
from .database import async_session
from .domain.services import BookingPolicy
from .infrastructure.notifications import LoggingNotificationSink
from .models import User, UserRole
from .utils.auth import decode_access_token
from .utils.time import local_now

_BEARER = {"WWW-Authenticate": "Bearer"}


@dataclass(frozen=True)
class CurrentUser:
    id: int
    role: UserRole

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


async def get_session() -> AsyncIterator[AsyncSession]:
    async with async_session() as session:
        yield session


def _bearer_user_id(authorization: str | None) -> int:
    if authorization is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Authorization header required", headers=_BEARER
        )
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Bearer token required", headers=_BEARER)
    settings = get_settings()
    try:
        return decode_access_token(token, secret=settings.auth_secret, algorithms=[settings.auth_algorithm])
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid or expired token", headers=_BEARER
        ) from exc


async def get_current_user(
    authorization: str | None = Header(default=None),
    session: AsyncSession = Depends(get_session),
) -> CurrentUser:
    user_id = _bearer_user_id(authorization)
    try:
        role = await session.scalar(select(User.role).where(User.id == user_id))
    except ProgrammingError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="users table unavailable") from exc
    finally:
        # The lookup autobegins a transaction; end it so handlers can open their own.
        await session.rollback()
    if role is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="user not found", headers=_BEARER)
    return CurrentUser(id=user_id, role=UserRole(role))


async def get_current_user_id(user: CurrentUser = Depends(get_current_user)) -> int:
    return user.id


async def get_optional_user_id(authorization: str | None = Header(default=None)) -> int | None:
    """Calendar views work anonymously; a token only adds the caller's own registrations."""
    if authorization is None:
        return None
    return _bearer_user_id(authorization)


async def require_admin(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if not user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="admin role required")
    return user


def get_booking_policy() -> BookingPolicy:
    settings = get_settings()
    tz = ZoneInfo(settings.local_timezone)
    return BookingPolicy(
        window_hours=settings.booking_window_hours,
        comment_max_length=settings.comment_max_length,
        clock=lambda: local_now(tz),
    )


def get_notifier() -> LoggingNotificationSink:
    return LoggingNotificationSink(get_settings().admin_emails)
