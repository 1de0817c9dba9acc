from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Iterator, Protocol


class NotificationType(StrEnum):
    RESERVATION_CONFIRMED = "reservation.confirmed"
    RESERVATION_CANCELLED = "reservation.cancelled"
    RESERVATION_ADMIN_CANCELLED = "reservation.admin_cancelled"
    EVENT_CONFIRMED = "event.confirmed"
    EVENT_CANCELLED = "event.cancelled"
    EVENT_ADMIN_CANCELLED = "event.admin_cancelled"
    WAITLIST_PROMOTED = "waitlist.promoted"


class Channel(StrEnum):
    USER = "user"
    ADMIN = "admin"


@dataclass(frozen=True)
class Notification:
    type: NotificationType
    channel: Channel
    user_id: int
    slot_id: int | None = None
    event_id: int | None = None
    reservation_id: int | None = None
    participants: int | None = None
    extra: dict[str, Any] = field(default_factory=dict)


class NotificationSink(Protocol):
    async def send(self, notification: Notification) -> None: ...


class NotificationOutbox:
    """
    Collects notifications produced inside a transaction.

    The caller drains it only after commit; a rolled-back transaction simply drops it.
    """

    def __init__(self) -> None:
        self._items: list[Notification] = []

    def add(self, notification: Notification) -> None:
        self._items.append(notification)

    def notify_user_and_admin(self, type_: NotificationType, *, user_id: int, **fields: Any) -> None:
        self.add(Notification(type=type_, channel=Channel.USER, user_id=user_id, **fields))
        self.add(Notification(type=type_, channel=Channel.ADMIN, user_id=user_id, **fields))

    def drain(self) -> list[Notification]:
        items, self._items = self._items, []
        return items

    def __iter__(self) -> Iterator[Notification]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)
