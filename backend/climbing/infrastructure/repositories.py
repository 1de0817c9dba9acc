from __future__ import annotations

from datetime import date, datetime, time
from typing import Any, Iterable, List, Optional, Tuple, cast

from sqlalchemy import Select, delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.repositories import (
    EventRepository,
    ReservationRepository,
    SlotRepository,
    UserDirectory,
    WaitlistRepository,
)
from ..models import Event, EventType, Reservation, ReservationStatus, TimeSlot, User, WaitlistEntry
from ..utils.time import utc_now_naive

# Re-read locked rows so changes committed by whoever held the lock before us are visible.
_LOCKED = {"populate_existing": True}


class SqlAlchemySlotRepository(SlotRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, slot_id: int) -> TimeSlot | None:
        return await self.session.get(TimeSlot, slot_id)

    async def get_for_update(self, slot_id: int) -> TimeSlot | None:
        stmt = select(TimeSlot).where(TimeSlot.id == slot_id).with_for_update().execution_options(**_LOCKED)
        result = await self.session.scalar(stmt)
        return result if isinstance(result, TimeSlot) else None

    async def get_many(self, slot_ids: Iterable[int]) -> List[TimeSlot]:
        ids = list(slot_ids)
        if not ids:
            return []
        rows = await self.session.scalars(select(TimeSlot).where(TimeSlot.id.in_(ids)).order_by(TimeSlot.id))
        return list(rows.all())

    async def lock_many(self, slot_ids: Iterable[int]) -> List[TimeSlot]:
        ids = sorted(set(slot_ids))
        if not ids:
            return []
        # Always lock in id order so two multi-slot transactions cannot deadlock.
        stmt = (
            select(TimeSlot)
            .where(TimeSlot.id.in_(ids))
            .order_by(TimeSlot.id)
            .with_for_update()
            .execution_options(**_LOCKED)
        )
        rows = await self.session.scalars(stmt)
        return list(rows.all())

    async def list_by_event(self, event_id: int) -> List[TimeSlot]:
        stmt = select(TimeSlot).where(TimeSlot.event_id == event_id).order_by(TimeSlot.slot_date, TimeSlot.start_time)
        rows = await self.session.scalars(stmt)
        return list(rows.all())

    async def list_by_events(self, event_ids: Iterable[int]) -> List[TimeSlot]:
        ids = list(event_ids)
        if not ids:
            return []
        stmt = select(TimeSlot).where(TimeSlot.event_id.in_(ids)).order_by(TimeSlot.slot_date, TimeSlot.start_time)
        rows = await self.session.scalars(stmt)
        return list(rows.all())

    async def list_by_date(self, day: date) -> List[TimeSlot]:
        stmt = select(TimeSlot).where(TimeSlot.slot_date == day).order_by(TimeSlot.start_time)
        rows = await self.session.scalars(stmt)
        return list(rows.all())

    async def list_by_date_range(self, start: date, end: date) -> List[TimeSlot]:
        stmt = (
            select(TimeSlot)
            .where(TimeSlot.slot_date >= start, TimeSlot.slot_date <= end)
            .order_by(TimeSlot.slot_date, TimeSlot.start_time)
        )
        rows = await self.session.scalars(stmt)
        return list(rows.all())

    async def create(
        self,
        *,
        slot_date: date,
        start_time: time,
        end_time: time,
        max_participants: int,
        title: str | None = None,
        event_id: int | None = None,
    ) -> TimeSlot:
        now = utc_now_naive()
        slot = TimeSlot(
            slot_date=slot_date,
            start_time=start_time,
            end_time=end_time,
            max_participants=max_participants,
            title=title,
            event_id=event_id,
            blocked=False,
            block_reason=None,
            created_at=now,
            updated_at=now,
        )
        self.session.add(slot)
        await self.session.flush()
        return slot

    async def save(self, slot: TimeSlot) -> TimeSlot:
        self.session.add(slot)
        await self.session.flush()
        return slot

    async def delete(self, slot_ids: Iterable[int]) -> None:
        ids = list(slot_ids)
        if not ids:
            return
        await self.session.execute(delete(WaitlistEntry).where(WaitlistEntry.time_slot_id.in_(ids)))
        await self.session.execute(delete(Reservation).where(Reservation.time_slot_id.in_(ids)))
        await self.session.execute(delete(TimeSlot).where(TimeSlot.id.in_(ids)))


class SqlAlchemyEventRepository(EventRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, event_id: int) -> Event | None:
        return await self.session.get(Event, event_id)

    async def get_for_update(self, event_id: int) -> Event | None:
        stmt = select(Event).where(Event.id == event_id).with_for_update().execution_options(**_LOCKED)
        result = await self.session.scalar(stmt)
        return result if isinstance(result, Event) else None

    async def get_many(self, event_ids: Iterable[int]) -> dict[int, Event]:
        ids = list(event_ids)
        if not ids:
            return {}
        rows = await self.session.scalars(select(Event).where(Event.id.in_(ids)))
        return {event.id: event for event in rows.all()}

    async def list_active_on(self, day: date) -> List[Event]:
        stmt = (
            select(Event)
            .where(Event.active.is_(True), Event.start_date <= day, Event.end_date >= day)
            .order_by(Event.start_date, Event.id)
        )
        rows = await self.session.scalars(stmt)
        return list(rows.all())

    async def list_active_between(self, start: date, end: date) -> List[Event]:
        stmt = (
            select(Event)
            .where(Event.active.is_(True), Event.start_date <= end, Event.end_date >= start)
            .order_by(Event.start_date, Event.id)
        )
        rows = await self.session.scalars(stmt)
        return list(rows.all())

    async def list_all(self) -> List[Event]:
        rows = await self.session.scalars(select(Event).order_by(Event.start_date, Event.id))
        return list(rows.all())

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
    ) -> Event:
        now = utc_now_naive()
        event = Event(
            title=title,
            event_type=event_type,
            start_date=start_date,
            end_date=end_date,
            start_time=start_time,
            end_time=end_time,
            max_participants=max_participants,
            description=description,
            location=location,
            active=True,
            created_at=now,
            updated_at=now,
        )
        self.session.add(event)
        await self.session.flush()
        return event

    async def save(self, event: Event) -> Event:
        event.updated_at = utc_now_naive()
        self.session.add(event)
        await self.session.flush()
        return event

    async def delete(self, event: Event) -> None:
        await self.session.delete(event)
        await self.session.flush()


class SqlAlchemyReservationRepository(ReservationRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def sum_confirmed(self, slot_id: int) -> int:
        stmt = select(func.coalesce(func.sum(Reservation.participants), 0)).where(
            Reservation.time_slot_id == slot_id,
            Reservation.status == ReservationStatus.CONFIRMED,
        )
        return int(await self.session.scalar(stmt) or 0)

    async def sum_confirmed_many(self, slot_ids: Iterable[int]) -> dict[int, int]:
        ids = list(slot_ids)
        if not ids:
            return {}
        stmt: Select[Tuple[int, Any]] = (
            select(
                Reservation.time_slot_id,
                func.coalesce(func.sum(Reservation.participants), 0).label("confirmed"),
            )
            .where(
                Reservation.time_slot_id.in_(ids),
                Reservation.status == ReservationStatus.CONFIRMED,
            )
            .group_by(Reservation.time_slot_id)
        )
        rows = await self.session.execute(stmt)
        return {slot_id: int(confirmed) for slot_id, confirmed in rows.all()}

    async def user_confirmed_slot_ids(self, user_id: int, slot_ids: Iterable[int]) -> set[int]:
        ids = list(slot_ids)
        if not ids:
            return set()
        stmt = select(Reservation.time_slot_id).where(
            Reservation.user_id == user_id,
            Reservation.time_slot_id.in_(ids),
            Reservation.status == ReservationStatus.CONFIRMED,
        )
        rows = await self.session.scalars(stmt)
        return set(rows.all())

    async def find_for_user_and_slot(self, user_id: int, slot_id: int) -> Reservation | None:
        stmt = (
            select(Reservation)
            .where(Reservation.user_id == user_id, Reservation.time_slot_id == slot_id)
            .execution_options(**_LOCKED)
        )
        result = await self.session.scalar(stmt)
        return result if isinstance(result, Reservation) else None

    async def get(self, reservation_id: int) -> Reservation | None:
        return await self.session.get(Reservation, reservation_id)

    async def get_for_update(self, reservation_id: int) -> Optional[Reservation]:
        stmt = (
            select(Reservation)
            .where(Reservation.id == reservation_id)
            .with_for_update()
            .execution_options(**_LOCKED)
        )
        result = await self.session.scalar(stmt)
        return result if isinstance(result, Reservation) else None

    async def list_confirmed_by_slots(self, slot_ids: Iterable[int]) -> List[Reservation]:
        ids = list(slot_ids)
        if not ids:
            return []
        stmt = (
            select(Reservation)
            .where(Reservation.time_slot_id.in_(ids), Reservation.status == ReservationStatus.CONFIRMED)
            .order_by(Reservation.created_at, Reservation.id)
        )
        rows = await self.session.scalars(stmt)
        return list(rows.all())

    async def list_by_user(self, user_id: int) -> List[Tuple[Reservation, TimeSlot]]:
        stmt: Select[Tuple[Reservation, TimeSlot]] = (
            select(Reservation, TimeSlot)
            .join(TimeSlot, Reservation.time_slot_id == TimeSlot.id)
            .where(Reservation.user_id == user_id)
            .order_by(TimeSlot.slot_date, TimeSlot.start_time)
        )
        rows = await self.session.execute(stmt)
        return cast(List[Tuple[Reservation, TimeSlot]], list(rows.all()))

    async def create(
        self,
        *,
        slot_id: int,
        user_id: int,
        participants: int,
        comment: str | None,
    ) -> Reservation:
        now = utc_now_naive()
        reservation = Reservation(
            time_slot_id=slot_id,
            user_id=user_id,
            participants=participants,
            comment=comment,
            status=ReservationStatus.CONFIRMED,
            cancelled_by=None,
            cancelled_by_user_id=None,
            version=1,
            created_at=now,
            updated_at=now,
        )
        self.session.add(reservation)
        await self.session.flush()
        return reservation

    async def save(self, reservation: Reservation) -> Reservation:
        self.session.add(reservation)
        await self.session.flush()
        return reservation


class SqlAlchemyWaitlistRepository(WaitlistRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, entry_id: int) -> WaitlistEntry | None:
        stmt = select(WaitlistEntry).where(WaitlistEntry.id == entry_id).execution_options(**_LOCKED)
        result = await self.session.scalar(stmt)
        return result if isinstance(result, WaitlistEntry) else None

    async def exists(self, slot_id: int, user_id: int) -> bool:
        stmt = select(WaitlistEntry.id).where(
            WaitlistEntry.time_slot_id == slot_id,
            WaitlistEntry.user_id == user_id,
        )
        return await self.session.scalar(stmt) is not None

    async def max_position(self, slot_id: int) -> int:
        stmt = select(func.coalesce(func.max(WaitlistEntry.position), 0)).where(WaitlistEntry.time_slot_id == slot_id)
        return int(await self.session.scalar(stmt) or 0)

    async def create(self, *, slot_id: int, user_id: int, position: int) -> WaitlistEntry:
        entry = WaitlistEntry(
            time_slot_id=slot_id,
            user_id=user_id,
            position=position,
            notified_at=None,
            created_at=utc_now_naive(),
        )
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def delete(self, entry: WaitlistEntry) -> None:
        await self.session.delete(entry)
        await self.session.flush()

    async def decrement_positions_after(self, slot_id: int, position: int) -> None:
        stmt = (
            update(WaitlistEntry)
            .where(WaitlistEntry.time_slot_id == slot_id, WaitlistEntry.position > position)
            .values(position=WaitlistEntry.position - 1)
            .execution_options(synchronize_session="fetch")
        )
        await self.session.execute(stmt)

    async def first_unnotified(self, slot_id: int) -> WaitlistEntry | None:
        stmt = (
            select(WaitlistEntry)
            .where(WaitlistEntry.time_slot_id == slot_id, WaitlistEntry.notified_at.is_(None))
            .order_by(WaitlistEntry.position)
            .limit(1)
        )
        result = await self.session.scalar(stmt)
        return result if isinstance(result, WaitlistEntry) else None

    async def mark_notified(self, entry: WaitlistEntry, at: datetime) -> WaitlistEntry:
        entry.notified_at = at
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def list_by_slot(self, slot_id: int) -> List[WaitlistEntry]:
        stmt = select(WaitlistEntry).where(WaitlistEntry.time_slot_id == slot_id).order_by(WaitlistEntry.position)
        rows = await self.session.scalars(stmt)
        return list(rows.all())

    async def list_by_user(self, user_id: int) -> List[Tuple[WaitlistEntry, TimeSlot]]:
        stmt: Select[Tuple[WaitlistEntry, TimeSlot]] = (
            select(WaitlistEntry, TimeSlot)
            .join(TimeSlot, WaitlistEntry.time_slot_id == TimeSlot.id)
            .where(WaitlistEntry.user_id == user_id)
            .order_by(TimeSlot.slot_date, TimeSlot.start_time)
        )
        rows = await self.session.execute(stmt)
        return cast(List[Tuple[WaitlistEntry, TimeSlot]], list(rows.all()))


class SqlAlchemyUserDirectory(UserDirectory):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_many(self, user_ids: Iterable[int]) -> dict[int, User]:
        ids = list(user_ids)
        if not ids:
            return {}
        rows = await self.session.scalars(select(User).where(User.id.in_(ids)))
        return {user.id: user for user in rows.all()}
