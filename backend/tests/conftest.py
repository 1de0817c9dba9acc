import asyncio
import itertools
from collections import defaultdict
from datetime import date, datetime, time, timedelta
from typing import Any, Hashable, Iterable

import pytest
from climbing.domain.notifications import NotificationOutbox
from climbing.domain.services import BookingPolicy
from climbing.models import (
    CancelledBy,
    Event,
    EventType,
    Reservation,
    ReservationStatus,
    TimeSlot,
    User,
    UserRole,
    WaitlistEntry,
)

NOW = datetime(2026, 3, 2, 8, 0)


class FrozenClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class FakeStore:
    """In-memory rows plus per-row locks that mimic SELECT ... FOR UPDATE."""

    def __init__(self) -> None:
        self.users: dict[int, User] = {}
        self.events: dict[int, Event] = {}
        self.slots: dict[int, TimeSlot] = {}
        self.reservations: dict[int, Reservation] = {}
        self.waitlist: dict[int, WaitlistEntry] = {}
        self.locks: defaultdict[Hashable, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._ids = itertools.count(1)

    def next_id(self) -> int:
        return next(self._ids)

    def stamp(self, row_id: int) -> datetime:
        # Monotonic creation times so ordering by created_at is deterministic.
        return NOW - timedelta(days=30) + timedelta(seconds=row_id)

    def transaction(self) -> "FakeTransaction":
        return FakeTransaction(self)

    def add_user(self, *, role: UserRole = UserRole.USER, first_name: str = "Ada") -> User:
        user_id = self.next_id()
        user = User(
            id=user_id,
            email=f"user{user_id}@example.com",
            first_name=first_name,
            last_name=f"Climber{user_id}",
            phone=None,
            role=role,
            email_notifications_enabled=True,
            preferred_language="pl",
            created_at=self.stamp(user_id),
            updated_at=self.stamp(user_id),
        )
        self.users[user_id] = user
        return user

    def add_slot(
        self,
        *,
        starts_at: datetime,
        max_participants: int = 4,
        blocked: bool = False,
        event_id: int | None = None,
        title: str | None = None,
        duration: timedelta = timedelta(hours=2),
    ) -> TimeSlot:
        slot_id = self.next_id()
        slot = TimeSlot(
            id=slot_id,
            event_id=event_id,
            slot_date=starts_at.date(),
            start_time=starts_at.time(),
            end_time=(starts_at + duration).time(),
            max_participants=max_participants,
            title=title,
            blocked=blocked,
            block_reason="maintenance" if blocked else None,
            created_at=self.stamp(slot_id),
            updated_at=self.stamp(slot_id),
        )
        self.slots[slot_id] = slot
        return slot

    def add_event(
        self,
        *,
        start_date: date,
        end_date: date,
        max_participants: int = 5,
        start_time: time | None = time(9, 0),
        end_time: time | None = time(15, 0),
        active: bool = True,
        title: str = "Lead climbing course",
    ) -> Event:
        event_id = self.next_id()
        event = Event(
            id=event_id,
            title=title,
            description=None,
            location=None,
            event_type=EventType.COURSE,
            start_date=start_date,
            end_date=end_date,
            start_time=start_time,
            end_time=end_time,
            max_participants=max_participants,
            active=active,
            created_at=self.stamp(event_id),
            updated_at=self.stamp(event_id),
        )
        self.events[event_id] = event
        return event

    def add_reservation(
        self,
        slot: TimeSlot,
        user_id: int,
        *,
        participants: int = 1,
        status: ReservationStatus = ReservationStatus.CONFIRMED,
        cancelled_by: CancelledBy | None = None,
    ) -> Reservation:
        res_id = self.next_id()
        reservation = Reservation(
            id=res_id,
            time_slot_id=slot.id,
            user_id=user_id,
            participants=participants,
            comment=None,
            status=status,
            cancelled_by=cancelled_by,
            cancelled_by_user_id=None,
            version=1,
            created_at=self.stamp(res_id),
            updated_at=self.stamp(res_id),
        )
        self.reservations[res_id] = reservation
        return reservation

    def add_waitlist(self, slot: TimeSlot, user_id: int, *, position: int) -> WaitlistEntry:
        entry_id = self.next_id()
        entry = WaitlistEntry(
            id=entry_id,
            time_slot_id=slot.id,
            user_id=user_id,
            position=position,
            notified_at=None,
            created_at=self.stamp(entry_id),
        )
        self.waitlist[entry_id] = entry
        return entry

    def confirmed_sum(self, slot_id: int) -> int:
        return sum(
            r.participants
            for r in self.reservations.values()
            if r.time_slot_id == slot_id and r.status == ReservationStatus.CONFIRMED
        )

    def rows_for(self, user_id: int, slot_id: int) -> list[Reservation]:
        return [r for r in self.reservations.values() if r.user_id == user_id and r.time_slot_id == slot_id]

    def positions(self, slot_id: int) -> list[int]:
        return sorted(e.position for e in self.waitlist.values() if e.time_slot_id == slot_id)


class FakeTransaction:
    def __init__(self, store: FakeStore) -> None:
        self.store = store
        self._held: list[Hashable] = []
        self.slots = FakeSlotRepository(store, self)
        self.events = FakeEventRepository(store, self)
        self.reservations = FakeReservationRepository(store)
        self.waitlist = FakeWaitlistRepository(store)
        self.users = FakeUserDirectory(store)

    async def lock(self, key: Hashable) -> None:
        if key in self._held:
            return
        await self.store.locks[key].acquire()
        self._held.append(key)

    async def __aenter__(self) -> "FakeTransaction":
        return self

    async def __aexit__(self, exc_type: object, exc: object, tb: object) -> bool:
        for key in reversed(self._held):
            self.store.locks[key].release()
        self._held.clear()
        return False


class FakeSlotRepository:
    def __init__(self, store: FakeStore, tx: FakeTransaction) -> None:
        self.store = store
        self.tx = tx

    async def get(self, slot_id: int) -> TimeSlot | None:
        return self.store.slots.get(slot_id)

    async def get_for_update(self, slot_id: int) -> TimeSlot | None:
        if slot_id not in self.store.slots:
            return None
        await self.tx.lock(("slot", slot_id))
        return self.store.slots.get(slot_id)

    async def get_many(self, slot_ids: Iterable[int]) -> list[TimeSlot]:
        return [self.store.slots[i] for i in sorted(set(slot_ids)) if i in self.store.slots]

    async def lock_many(self, slot_ids: Iterable[int]) -> list[TimeSlot]:
        locked = []
        for slot_id in sorted(set(slot_ids)):
            slot = await self.get_for_update(slot_id)
            if slot is not None:
                locked.append(slot)
        return locked

    async def list_by_event(self, event_id: int) -> list[TimeSlot]:
        slots = [s for s in self.store.slots.values() if s.event_id == event_id]
        return sorted(slots, key=lambda s: s.starts_at)

    async def list_by_events(self, event_ids: Iterable[int]) -> list[TimeSlot]:
        wanted = set(event_ids)
        return sorted((s for s in self.store.slots.values() if s.event_id in wanted), key=lambda s: s.starts_at)

    async def list_by_date(self, day: date) -> list[TimeSlot]:
        return sorted((s for s in self.store.slots.values() if s.slot_date == day), key=lambda s: s.start_time)

    async def list_by_date_range(self, start: date, end: date) -> list[TimeSlot]:
        return sorted((s for s in self.store.slots.values() if start <= s.slot_date <= end), key=lambda s: s.starts_at)

    async def create(self, **fields: Any) -> TimeSlot:
        slot_id = self.store.next_id()
        slot = TimeSlot(
            id=slot_id,
            blocked=False,
            block_reason=None,
            title=fields.pop("title", None),
            event_id=fields.pop("event_id", None),
            created_at=self.store.stamp(slot_id),
            updated_at=self.store.stamp(slot_id),
            **fields,
        )
        self.store.slots[slot_id] = slot
        return slot

    async def save(self, slot: TimeSlot) -> TimeSlot:
        return slot

    async def delete(self, slot_ids: Iterable[int]) -> None:
        ids = set(slot_ids)
        for table in (self.store.waitlist, self.store.reservations):
            for row_id in [k for k, row in table.items() if row.time_slot_id in ids]:
                del table[row_id]
        for slot_id in ids:
            self.store.slots.pop(slot_id, None)


class FakeEventRepository:
    def __init__(self, store: FakeStore, tx: FakeTransaction) -> None:
        self.store = store
        self.tx = tx

    async def get(self, event_id: int) -> Event | None:
        return self.store.events.get(event_id)

    async def get_for_update(self, event_id: int) -> Event | None:
        if event_id not in self.store.events:
            return None
        await self.tx.lock(("event", event_id))
        return self.store.events.get(event_id)

    async def get_many(self, event_ids: Iterable[int]) -> dict[int, Event]:
        return {i: self.store.events[i] for i in event_ids if i in self.store.events}

    async def list_active_on(self, day: date) -> list[Event]:
        return [e for e in self.store.events.values() if e.active and e.start_date <= day <= e.end_date]

    async def list_active_between(self, start: date, end: date) -> list[Event]:
        return [e for e in self.store.events.values() if e.active and e.start_date <= end and e.end_date >= start]

    async def list_all(self) -> list[Event]:
        return sorted(self.store.events.values(), key=lambda e: (e.start_date, e.id))

    async def create(self, **fields: Any) -> Event:
        event_id = self.store.next_id()
        event = Event(
            id=event_id,
            active=True,
            created_at=self.store.stamp(event_id),
            updated_at=self.store.stamp(event_id),
            **fields,
        )
        self.store.events[event_id] = event
        return event

    async def save(self, event: Event) -> Event:
        return event

    async def delete(self, event: Event) -> None:
        self.store.events.pop(event.id, None)


class FakeReservationRepository:
    def __init__(self, store: FakeStore) -> None:
        self.store = store

    async def sum_confirmed(self, slot_id: int) -> int:
        total = self.store.confirmed_sum(slot_id)
        # Yield so concurrent transactions interleave between read and write.
        await asyncio.sleep(0)
        return total

    async def sum_confirmed_many(self, slot_ids: Iterable[int]) -> dict[int, int]:
        counts = {}
        for slot_id in set(slot_ids):
            total = self.store.confirmed_sum(slot_id)
            if total:
                counts[slot_id] = total
        await asyncio.sleep(0)
        return counts

    async def user_confirmed_slot_ids(self, user_id: int, slot_ids: Iterable[int]) -> set[int]:
        wanted = set(slot_ids)
        return {
            r.time_slot_id
            for r in self.store.reservations.values()
            if r.user_id == user_id and r.time_slot_id in wanted and r.is_confirmed
        }

    async def find_for_user_and_slot(self, user_id: int, slot_id: int) -> Reservation | None:
        rows = self.store.rows_for(user_id, slot_id)
        return rows[0] if rows else None

    async def get(self, reservation_id: int) -> Reservation | None:
        return self.store.reservations.get(reservation_id)

    async def get_for_update(self, reservation_id: int) -> Reservation | None:
        return self.store.reservations.get(reservation_id)

    async def list_confirmed_by_slots(self, slot_ids: Iterable[int]) -> list[Reservation]:
        wanted = set(slot_ids)
        rows = [r for r in self.store.reservations.values() if r.time_slot_id in wanted and r.is_confirmed]
        return sorted(rows, key=lambda r: (r.created_at, r.id))

    async def list_by_user(self, user_id: int) -> list[tuple[Reservation, TimeSlot]]:
        return [
            (r, self.store.slots[r.time_slot_id])
            for r in self.store.reservations.values()
            if r.user_id == user_id and r.time_slot_id in self.store.slots
        ]

    async def create(self, *, slot_id: int, user_id: int, participants: int, comment: str | None) -> Reservation:
        assert not self.store.rows_for(user_id, slot_id), "unique (user, slot) violated"
        res_id = self.store.next_id()
        reservation = Reservation(
            id=res_id,
            time_slot_id=slot_id,
            user_id=user_id,
            participants=participants,
            comment=comment,
            status=ReservationStatus.CONFIRMED,
            cancelled_by=None,
            cancelled_by_user_id=None,
            version=1,
            created_at=self.store.stamp(res_id),
            updated_at=self.store.stamp(res_id),
        )
        self.store.reservations[res_id] = reservation
        return reservation

    async def save(self, reservation: Reservation) -> Reservation:
        return reservation


class FakeWaitlistRepository:
    def __init__(self, store: FakeStore) -> None:
        self.store = store

    def _for_slot(self, slot_id: int) -> list[WaitlistEntry]:
        return sorted((e for e in self.store.waitlist.values() if e.time_slot_id == slot_id), key=lambda e: e.position)

    async def get(self, entry_id: int) -> WaitlistEntry | None:
        return self.store.waitlist.get(entry_id)

    async def exists(self, slot_id: int, user_id: int) -> bool:
        return any(e.user_id == user_id for e in self._for_slot(slot_id))

    async def max_position(self, slot_id: int) -> int:
        return max((e.position for e in self._for_slot(slot_id)), default=0)

    async def create(self, *, slot_id: int, user_id: int, position: int) -> WaitlistEntry:
        entry_id = self.store.next_id()
        entry = WaitlistEntry(
            id=entry_id,
            time_slot_id=slot_id,
            user_id=user_id,
            position=position,
            notified_at=None,
            created_at=self.store.stamp(entry_id),
        )
        self.store.waitlist[entry_id] = entry
        return entry

    async def delete(self, entry: WaitlistEntry) -> None:
        self.store.waitlist.pop(entry.id, None)

    async def decrement_positions_after(self, slot_id: int, position: int) -> None:
        for entry in self._for_slot(slot_id):
            if entry.position > position:
                entry.position -= 1

    async def first_unnotified(self, slot_id: int) -> WaitlistEntry | None:
        return next((e for e in self._for_slot(slot_id) if e.notified_at is None), None)

    async def mark_notified(self, entry: WaitlistEntry, at: datetime) -> WaitlistEntry:
        entry.notified_at = at
        return entry

    async def list_by_slot(self, slot_id: int) -> list[WaitlistEntry]:
        return self._for_slot(slot_id)

    async def list_by_user(self, user_id: int) -> list[tuple[WaitlistEntry, TimeSlot]]:
        return [(e, self.store.slots[e.time_slot_id]) for e in self.store.waitlist.values() if e.user_id == user_id]


class FakeUserDirectory:
    def __init__(self, store: FakeStore) -> None:
        self.store = store

    async def get_many(self, user_ids: Iterable[int]) -> dict[int, User]:
        return {i: self.store.users[i] for i in user_ids if i in self.store.users}


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(NOW)


@pytest.fixture
def policy(clock: FrozenClock) -> BookingPolicy:
    return BookingPolicy(window_hours=12, comment_max_length=500, clock=clock)


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def outbox() -> NotificationOutbox:
    return NotificationOutbox()


@pytest.fixture
def tomorrow() -> datetime:
    """Well outside the booking window."""
    return NOW + timedelta(days=1, hours=2)
