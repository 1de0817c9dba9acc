from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from ..domain.errors import EventNotFoundError, SlotNotFoundError
from ..domain.repositories import EventRepository, ReservationRepository, SlotRepository
from ..domain.services import BookingPolicy, SlotAvailability, determine_availability, event_participants
from ..models import Event, TimeSlot
from ..utils.time import combine


@dataclass(frozen=True)
class SlotView:
    slot: TimeSlot
    confirmed: int
    status: SlotAvailability
    user_registered: bool
    reservation_id: int | None = None


@dataclass(frozen=True)
class EventSummary:
    event: Event
    current_participants: int
    user_registered: bool
    enrollment_open: bool


@dataclass(frozen=True)
class DayView:
    day: date
    slots: list[SlotView]
    events: list[EventSummary]


@dataclass(frozen=True)
class DaySummary:
    day: date
    total_slots: int
    available_slots: int
    user_reserved: bool


@dataclass(frozen=True)
class MonthView:
    year: int
    month: int
    days: list[DaySummary]
    events: list[EventSummary]

    @property
    def year_month(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"


def _slot_view(
    slot: TimeSlot,
    confirmed: int,
    *,
    user_registered: bool,
    policy: BookingPolicy,
    now: datetime,
    reservation_id: int | None = None,
) -> SlotView:
    status = determine_availability(
        slot.starts_at,
        blocked=slot.blocked,
        max_participants=slot.max_participants,
        reserved=confirmed,
        policy=policy,
        now=now,
    )
    return SlotView(
        slot=slot,
        confirmed=confirmed,
        status=status,
        user_registered=user_registered,
        reservation_id=reservation_id,
    )


async def _summarize_events(
    slot_repo: SlotRepository,
    res_repo: ReservationRepository,
    events: list[Event],
    *,
    user_id: int | None,
    policy: BookingPolicy,
    now: datetime,
) -> list[EventSummary]:
    if not events:
        return []
    slots = await slot_repo.list_by_events(event.id for event in events)
    slot_ids = [slot.id for slot in slots]
    counts = await res_repo.sum_confirmed_many(slot_ids) if slot_ids else {}
    mine = await res_repo.user_confirmed_slot_ids(user_id, slot_ids) if user_id is not None and slot_ids else set()

    per_event: dict[int, list[int]] = defaultdict(list)
    registered: set[int] = set()
    for slot in slots:
        if slot.event_id is None:
            continue
        per_event[slot.event_id].append(counts.get(slot.id, 0))
        if slot.id in mine:
            registered.add(slot.event_id)

    return [
        EventSummary(
            event=event,
            current_participants=event_participants(per_event.get(event.id, [])),
            user_registered=event.id in registered,
            enrollment_open=event.active
            and policy.is_within_booking_window(combine(event.start_date, event.start_time), now),
        )
        for event in events
    ]


async def get_slot_details(
    slot_repo: SlotRepository,
    res_repo: ReservationRepository,
    *,
    slot_id: int,
    user_id: int | None,
    policy: BookingPolicy,
) -> SlotView:
    slot = await slot_repo.get(slot_id)
    if slot is None:
        raise SlotNotFoundError("slot not found", slot_id=slot_id)
    confirmed = await res_repo.sum_confirmed(slot_id)

    reservation_id = None
    if user_id is not None:
        reservation = await res_repo.find_for_user_and_slot(user_id, slot_id)
        if reservation is not None and reservation.is_confirmed:
            reservation_id = reservation.id
    return _slot_view(
        slot,
        confirmed,
        user_registered=reservation_id is not None,
        policy=policy,
        now=policy.now(),
        reservation_id=reservation_id,
    )


async def get_day_view(
    slot_repo: SlotRepository,
    event_repo: EventRepository,
    res_repo: ReservationRepository,
    *,
    day: date,
    user_id: int | None,
    policy: BookingPolicy,
) -> DayView:
    """Standalone slots of the day plus the active events running on it; event days are shown via their event."""
    now = policy.now()
    slots = sorted(
        (slot for slot in await slot_repo.list_by_date(day) if not slot.belongs_to_event),
        key=lambda slot: slot.start_time,
    )
    slot_ids = [slot.id for slot in slots]
    counts = await res_repo.sum_confirmed_many(slot_ids) if slot_ids else {}
    mine = await res_repo.user_confirmed_slot_ids(user_id, slot_ids) if user_id is not None and slot_ids else set()

    events = await event_repo.list_active_on(day)
    return DayView(
        day=day,
        slots=[
            _slot_view(slot, counts.get(slot.id, 0), user_registered=slot.id in mine, policy=policy, now=now)
            for slot in slots
        ],
        events=await _summarize_events(slot_repo, res_repo, events, user_id=user_id, policy=policy, now=now),
    )


async def get_event_summary(
    slot_repo: SlotRepository,
    event_repo: EventRepository,
    res_repo: ReservationRepository,
    *,
    event_id: int,
    user_id: int | None,
    policy: BookingPolicy,
) -> EventSummary:
    event = await event_repo.get(event_id)
    if event is None:
        raise EventNotFoundError("event not found", event_id=event_id)
    summaries = await _summarize_events(
        slot_repo, res_repo, [event], user_id=user_id, policy=policy, now=policy.now()
    )
    return summaries[0]


def _bookable(slot: TimeSlot, confirmed: int, *, policy: BookingPolicy, now: datetime) -> bool:
    status = determine_availability(
        slot.starts_at,
        blocked=slot.blocked,
        max_participants=slot.max_participants,
        reserved=confirmed,
        policy=policy,
        now=now,
    )
    return status == SlotAvailability.AVAILABLE


def month_bounds(year: int, month: int) -> tuple[date, date]:
    first = date(year, month, 1)
    next_first = (first + timedelta(days=31)).replace(day=1)
    return first, next_first - timedelta(days=1)


async def get_month_view(
    slot_repo: SlotRepository,
    event_repo: EventRepository,
    res_repo: ReservationRepository,
    *,
    year: int,
    month: int,
    user_id: int | None,
    policy: BookingPolicy,
) -> MonthView:
    """
    Per-day counts of standalone slots still bookable, plus the active events overlapping the month.

    Occupancy for the whole month is read in one grouped query.
    """
    first, last = month_bounds(year, month)
    now = policy.now()
    slots = [slot for slot in await slot_repo.list_by_date_range(first, last) if not slot.belongs_to_event]
    slot_ids = [slot.id for slot in slots]
    counts = await res_repo.sum_confirmed_many(slot_ids) if slot_ids else {}
    mine = await res_repo.user_confirmed_slot_ids(user_id, slot_ids) if user_id is not None and slot_ids else set()

    by_day: dict[date, list[TimeSlot]] = defaultdict(list)
    for slot in slots:
        by_day[slot.slot_date].append(slot)

    days = []
    day = first
    while day <= last:
        day_slots = by_day.get(day, [])
        available = sum(1 for slot in day_slots if _bookable(slot, counts.get(slot.id, 0), policy=policy, now=now))
        days.append(
            DaySummary(
                day=day,
                total_slots=len(day_slots),
                available_slots=available,
                user_reserved=any(slot.id in mine for slot in day_slots),
            )
        )
        day += timedelta(days=1)

    events = await event_repo.list_active_between(first, last)
    return MonthView(
        year=year,
        month=month,
        days=days,
        events=await _summarize_events(slot_repo, res_repo, events, user_id=user_id, policy=policy, now=now),
    )
