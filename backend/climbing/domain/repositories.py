from __future__ import annotations

from datetime import date, datetime, time
from typing import Iterable, Protocol

from ..models import Event, EventType, Reservation, TimeSlot, User, WaitlistEntry


class SlotRepository(Protocol):
    async def get(self, slot_id: int) -> TimeSlot | None: ...

    async def get_for_update(self, slot_id: int) -> TimeSlot | None: ...

    async def get_many(self, slot_ids: Iterable[int]) -> list[TimeSlot]: ...

    async def lock_many(self, slot_ids: Iterable[int]) -> list[TimeSlot]: ...

    async def list_by_event(self, event_id: int) -> list[TimeSlot]: ...

    async def list_by_events(self, event_ids: Iterable[int]) -> list[TimeSlot]: ...

    async def list_by_date(self, day: date) -> list[TimeSlot]: ...

    async def list_by_date_range(self, start: date, end: date) -> list[TimeSlot]: ...

    async def create(
        self,
        *,
        slot_date: date,
        start_time: time,
        end_time: time,
        max_participants: int,
        title: str | None = None,
        event_id: int | None = None,
    ) -> TimeSlot: ...

    async def save(self, slot: TimeSlot) -> TimeSlot: ...

    async def delete(self, slot_ids: Iterable[int]) -> None: ...


class EventRepository(Protocol):
    async def get(self, event_id: int) -> Event | None: ...

    async def get_for_update(self, event_id: int) -> Event | None: ...

    async def get_many(self, event_ids: Iterable[int]) -> dict[int, Event]: ...

    async def list_active_on(self, day: date) -> list[Event]: ...

    async def list_active_between(self, start: date, end: date) -> list[Event]: ...

    async def list_all(self) -> list[Event]: ...

    async def create(
        self,
        *,
        title: str,
        event_type: EventType,
        start_date: date,
        end_date: date,
        max_participants: int,
        start_time: time | None = None,
        end_time: time | None = None,
        description: str | None = None,
        location: str | None = None,
    ) -> Event: ...

    async def save(self, event: Event) -> Event: ...

    async def delete(self, event: Event) -> None: ...


class ReservationRepository(Protocol):
    async def sum_confirmed(self, slot_id: int) -> int: ...

    async def sum_confirmed_many(self, slot_ids: Iterable[int]) -> dict[int, int]: ...

    async def user_confirmed_slot_ids(self, user_id: int, slot_ids: Iterable[int]) -> set[int]: ...

    async def find_for_user_and_slot(self, user_id: int, slot_id: int) -> Reservation | None: ...

    async def get(self, reservation_id: int) -> Reservation | None: ...

    async def get_for_update(self, reservation_id: int) -> Reservation | None: ...

    async def list_confirmed_by_slots(self, slot_ids: Iterable[int]) -> list[Reservation]: ...

    async def list_by_user(self, user_id: int) -> list[tuple[Reservation, TimeSlot]]: ...

    async def create(
        self,
        *,
        slot_id: int,
        user_id: int,
        participants: int,
        comment: str | None,
    ) -> Reservation: ...

    async def save(self, reservation: Reservation) -> Reservation: ...


class WaitlistRepository(Protocol):
    async def get(self, entry_id: int) -> WaitlistEntry | None: ...

    async def exists(self, slot_id: int, user_id: int) -> bool: ...

    async def max_position(self, slot_id: int) -> int: ...

    async def create(self, *, slot_id: int, user_id: int, position: int) -> WaitlistEntry: ...

    async def delete(self, entry: WaitlistEntry) -> None: ...

    async def decrement_positions_after(self, slot_id: int, position: int) -> None: ...

    async def first_unnotified(self, slot_id: int) -> WaitlistEntry | None: ...

    async def mark_notified(self, entry: WaitlistEntry, at: datetime) -> WaitlistEntry: ...

    async def list_by_slot(self, slot_id: int) -> list[WaitlistEntry]: ...

    async def list_by_user(self, user_id: int) -> list[tuple[WaitlistEntry, TimeSlot]]: ...


class UserDirectory(Protocol):
    async def get_many(self, user_ids: Iterable[int]) -> dict[int, User]: ...
