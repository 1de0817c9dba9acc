from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, time
from typing import Any

from ..domain.errors import EventHasBookingsError, EventNotFoundError, InvalidInputError
from ..domain.notifications import Channel, Notification, NotificationOutbox, NotificationType
from ..domain.repositories import EventRepository, ReservationRepository, SlotRepository, UserDirectory
from ..domain.services import event_participants
from ..models import CancelledBy, Event, EventType, Reservation, TimeSlot, User
from ..utils.time import DAY_END, DAY_START, utc_now_naive
from .event_slots import ensure_slots
from .reservations import mark_cancelled

logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = (
    "title",
    "description",
    "location",
    "event_type",
    "start_date",
    "end_date",
    "start_time",
    "end_time",
    "max_participants",
    "active",
)
_CLEARABLE_FIELDS = ("description", "location", "start_time", "end_time")
_SCHEDULE_FIELDS = ("start_date", "end_date", "start_time", "end_time")


@dataclass(frozen=True)
class EventDetails:
    event: Event
    slots: list[TimeSlot]
    counts: dict[int, int]

    @property
    def current_participants(self) -> int:
        return event_participants(self.counts)


def _validate_event_fields(
    *,
    start_date: date,
    end_date: date,
    start_time: time | None,
    end_time: time | None,
    max_participants: int,
) -> None:
    if end_date < start_date:
        raise InvalidInputError("end_date must not be before start_date")
    # Unset times fall back to the whole day when the event is expanded into slots.
    effective_start = start_time if start_time is not None else DAY_START
    effective_end = end_time if end_time is not None else DAY_END
    if effective_end <= effective_start:
        raise InvalidInputError(
            "end_time must be later than start_time",
            start_time=effective_start.isoformat(),
            end_time=effective_end.isoformat(),
        )
    if max_participants < 1:
        raise InvalidInputError("max_participants must be >= 1")


async def create_event(
    event_repo: EventRepository,
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
    _validate_event_fields(
        start_date=start_date,
        end_date=end_date,
        start_time=start_time,
        end_time=end_time,
        max_participants=max_participants,
    )
    return await event_repo.create(
        title=title,
        event_type=event_type,
        start_date=start_date,
        end_date=end_date,
        max_participants=max_participants,
        start_time=start_time,
        end_time=end_time,
        description=description,
        location=location,
    )


async def update_event(
    event_repo: EventRepository,
    slot_repo: SlotRepository,
    res_repo: ReservationRepository,
    *,
    event_id: int,
    changes: dict[str, Any],
) -> Event:
    """
    Apply admin edits and keep already expanded slots in step.

    `description`, `location` and the times may be cleared with an explicit None.
    A schedule change drops the expanded slots so they are rebuilt on next use,
    which is refused while anyone holds a confirmed booking. A capacity change is
    copied onto every slot and may not go below the busiest day.
    """
    event = await event_repo.get_for_update(event_id)
    if event is None:
        raise EventNotFoundError("event not found", event_id=event_id)

    before = {name: getattr(event, name) for name in _UPDATABLE_FIELDS}
    for name, value in changes.items():
        if name not in _UPDATABLE_FIELDS:
            continue
        if value is None and name not in _CLEARABLE_FIELDS:
            continue
        setattr(event, name, value)
    _validate_event_fields(
        start_date=event.start_date,
        end_date=event.end_date,
        start_time=event.start_time,
        end_time=event.end_time,
        max_participants=event.max_participants,
    )

    rescheduled = any(getattr(event, name) != before[name] for name in _SCHEDULE_FIELDS)
    resized = event.max_participants != before["max_participants"]
    slots = await slot_repo.list_by_event(event_id) if rescheduled or resized else []
    if slots:
        locked = await slot_repo.lock_many(slot.id for slot in slots)
        counts = await res_repo.sum_confirmed_many(slot.id for slot in locked)
        booked = event_participants(counts)
        if rescheduled:
            if booked:
                raise EventHasBookingsError(
                    "cancel the event's bookings before changing its dates or times",
                    event_id=event_id,
                    confirmed=booked,
                )
            await slot_repo.delete(slot.id for slot in locked)
            logger.info("dropped %d unbooked slot(s) of rescheduled event %s", len(locked), event_id)
        else:
            if event.max_participants < booked:
                raise InvalidInputError(
                    "max_participants is below the confirmed participants",
                    max_participants=event.max_participants,
                    confirmed=booked,
                )
            for slot in locked:
                slot.max_participants = event.max_participants
                slot.updated_at = utc_now_naive()
                await slot_repo.save(slot)
    return await event_repo.save(event)


async def delete_event(
    event_repo: EventRepository,
    slot_repo: SlotRepository,
    res_repo: ReservationRepository,
    *,
    event_id: int,
    admin_id: int,
    outbox: NotificationOutbox,
) -> tuple[Event, list[Reservation]]:
    """
    Delete an event with its slots, reservations and waitlist entries.

    Confirmed reservations are cancelled by the admin first; each affected user
    gets one notification, however many days they were booked on.
    """
    event = await event_repo.get_for_update(event_id)
    if event is None:
        raise EventNotFoundError("event not found", event_id=event_id)

    slots = await slot_repo.list_by_event(event_id)
    cancelled: list[Reservation] = []
    if slots:
        slot_ids = [slot.id for slot in await slot_repo.lock_many(slot.id for slot in slots)]
        for reservation in await res_repo.list_confirmed_by_slots(slot_ids):
            mark_cancelled(reservation, by=CancelledBy.ADMIN, actor_id=admin_id)
            cancelled.append(await res_repo.save(reservation))

        notified: set[int] = set()
        for reservation in cancelled:
            if reservation.user_id in notified:
                continue
            notified.add(reservation.user_id)
            outbox.add(
                Notification(
                    type=NotificationType.EVENT_ADMIN_CANCELLED,
                    channel=Channel.USER,
                    user_id=reservation.user_id,
                    event_id=event_id,
                    extra={"title": event.title, "start_date": event.start_date.isoformat()},
                )
            )
        await slot_repo.delete(slot_ids)

    await event_repo.delete(event)
    return event, cancelled


async def get_event_details(
    event_repo: EventRepository,
    slot_repo: SlotRepository,
    res_repo: ReservationRepository,
    *,
    event_id: int,
) -> EventDetails:
    event = await event_repo.get_for_update(event_id)
    if event is None:
        raise EventNotFoundError("event not found", event_id=event_id)
    slots = await ensure_slots(slot_repo, event)
    counts = await res_repo.sum_confirmed_many(slot.id for slot in slots)
    return EventDetails(event=event, slots=slots, counts=counts)


async def event_participants_list(
    event_repo: EventRepository,
    slot_repo: SlotRepository,
    res_repo: ReservationRepository,
    users: UserDirectory,
    *,
    event_id: int,
) -> tuple[Event, list[tuple[Reservation, User]]]:
    """One row per registered user, keeping their earliest reservation across the event's days."""
    event = await event_repo.get(event_id)
    if event is None:
        raise EventNotFoundError("event not found", event_id=event_id)
    slots = await slot_repo.list_by_event(event_id)
    if not slots:
        return event, []

    first_by_user: dict[int, Reservation] = {}
    for reservation in await res_repo.list_confirmed_by_slots(slot.id for slot in slots):
        current = first_by_user.get(reservation.user_id)
        if current is None or reservation.created_at < current.created_at:
            first_by_user[reservation.user_id] = reservation

    directory = await users.get_many(first_by_user)
    return event, [
        (reservation, directory[user_id]) for user_id, reservation in first_by_user.items() if user_id in directory
    ]


async def list_events(event_repo: EventRepository) -> list[Event]:
    """Every event, active or not, by start date."""
    return await event_repo.list_all()
