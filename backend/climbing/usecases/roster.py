from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta

from ..domain.repositories import EventRepository, ReservationRepository, SlotRepository, UserDirectory
from ..domain.services import BookingPolicy
from ..models import Event, Reservation, TimeSlot, User

LOOKAHEAD_DAYS = 365
HISTORY_DAYS = 365


@dataclass(frozen=True)
class BookingRow:
    reservation: Reservation
    slot: TimeSlot
    user: User
    event: Event | None


async def bookings_between(
    slot_repo: SlotRepository,
    event_repo: EventRepository,
    res_repo: ReservationRepository,
    users: UserDirectory,
    *,
    start: date,
    end: date,
    newest_first: bool = False,
) -> list[BookingRow]:
    """Confirmed reservations on slots dated within [start, end], in slot order then booking order."""
    slots = await slot_repo.list_by_date_range(start, end)
    if not slots:
        return []
    by_id = {slot.id: slot for slot in slots}
    reservations = await res_repo.list_confirmed_by_slots(by_id)
    if not reservations:
        return []

    directory = await users.get_many({r.user_id for r in reservations})
    events = await event_repo.get_many({slot.event_id for slot in slots if slot.event_id is not None})

    rows = []
    for reservation in reservations:
        user = directory.get(reservation.user_id)
        if user is None:
            continue
        slot = by_id[reservation.time_slot_id]
        event = events.get(slot.event_id) if slot.event_id is not None else None
        rows.append(BookingRow(reservation=reservation, slot=slot, user=user, event=event))
    rows.sort(key=lambda row: (row.slot.starts_at, row.reservation.created_at, row.reservation.id))
    if newest_first:
        rows.sort(key=lambda row: row.slot.starts_at, reverse=True)
    return rows


async def upcoming_bookings(
    slot_repo: SlotRepository,
    event_repo: EventRepository,
    res_repo: ReservationRepository,
    users: UserDirectory,
    *,
    policy: BookingPolicy,
) -> list[BookingRow]:
    today = policy.now().date()
    return await bookings_between(
        slot_repo, event_repo, res_repo, users, start=today, end=today + timedelta(days=LOOKAHEAD_DAYS)
    )


async def past_bookings(
    slot_repo: SlotRepository,
    event_repo: EventRepository,
    res_repo: ReservationRepository,
    users: UserDirectory,
    *,
    policy: BookingPolicy,
) -> list[BookingRow]:
    today = policy.now().date()
    return await bookings_between(
        slot_repo,
        event_repo,
        res_repo,
        users,
        start=today - timedelta(days=HISTORY_DAYS),
        end=today - timedelta(days=1),
        newest_first=True,
    )
