from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

from ..domain.errors import (
    AlreadyCancelledError,
    AlreadyRegisteredError,
    DuplicateReservationError,
    EventInactiveError,
    EventNotFoundError,
    ForbiddenError,
    NoActiveSlotsError,
    ReservationNotFoundError,
    SlotNotFoundError,
    VersionConflictError,
)
from ..domain.notifications import NotificationOutbox, NotificationType
from ..domain.repositories import EventRepository, ReservationRepository, SlotRepository, WaitlistRepository
from ..domain.services import (
    BookingPolicy,
    SlotSnapshot,
    check_capacity,
    event_participants,
    validate_participants,
    validate_reservation,
)
from ..models import CancelledBy, Event, Reservation, ReservationStatus, TimeSlot, WaitlistEntry
from ..utils.time import combine, utc_now_naive
from .event_slots import ensure_slots
from .waitlist import promote_next

ReservationScope = Literal["upcoming", "past"]


@dataclass
class EventReservationGroup:
    event: Event
    reservations: list[tuple[Reservation, TimeSlot]] = field(default_factory=list)

    @property
    def first(self) -> Reservation:
        return self.reservations[0][0]


@dataclass
class UserReservations:
    standalone: list[tuple[Reservation, TimeSlot]]
    events: list[EventReservationGroup]


def mark_confirmed(reservation: Reservation, *, participants: int, comment: str | None) -> None:
    reservation.status = ReservationStatus.CONFIRMED
    reservation.cancelled_by = None
    reservation.cancelled_by_user_id = None
    reservation.participants = participants
    reservation.comment = comment
    reservation.version += 1
    reservation.updated_at = utc_now_naive()


def mark_cancelled(reservation: Reservation, *, by: CancelledBy, actor_id: int) -> None:
    reservation.status = ReservationStatus.CANCELLED
    reservation.cancelled_by = by
    reservation.cancelled_by_user_id = actor_id
    reservation.version += 1
    reservation.updated_at = utc_now_naive()


async def _confirm_for_slot(
    res_repo: ReservationRepository,
    *,
    slot_id: int,
    user_id: int,
    participants: int,
    comment: str | None,
) -> tuple[Reservation, bool]:
    """Insert a confirmed row, or reactivate the user's cancelled one. Returns (reservation, reactivated)."""
    existing = await res_repo.find_for_user_and_slot(user_id, slot_id)
    if existing is None:
        created = await res_repo.create(slot_id=slot_id, user_id=user_id, participants=participants, comment=comment)
        return created, False
    if existing.is_confirmed:
        raise DuplicateReservationError("user already has a confirmed reservation for this slot")
    mark_confirmed(existing, participants=participants, comment=comment)
    return await res_repo.save(existing), True


async def create_reservation(
    slot_repo: SlotRepository,
    res_repo: ReservationRepository,
    *,
    slot_id: int,
    user_id: int,
    participants: int,
    comment: str | None,
    policy: BookingPolicy,
    outbox: NotificationOutbox,
) -> tuple[Reservation, TimeSlot, bool]:
    validate_participants(participants)

    slot = await slot_repo.get_for_update(slot_id)
    if slot is None:
        raise SlotNotFoundError("slot not found", slot_id=slot_id)

    now = policy.now()
    existing = await res_repo.find_for_user_and_slot(user_id, slot_id)
    reserved = await res_repo.sum_confirmed(slot_id)

    snapshot = SlotSnapshot(
        starts_at=slot.starts_at,
        blocked=slot.blocked,
        max_participants=slot.max_participants,
        reserved=reserved,
        user_has_confirmed_reservation=existing is not None and existing.is_confirmed,
    )
    validate_reservation(snapshot, participants=participants, policy=policy, now=now)

    reservation, reactivated = await _confirm_for_slot(
        res_repo,
        slot_id=slot.id,
        user_id=user_id,
        participants=participants,
        comment=policy.sanitize_comment(comment),
    )
    outbox.notify_user_and_admin(
        NotificationType.RESERVATION_CONFIRMED,
        user_id=user_id,
        slot_id=slot.id,
        reservation_id=reservation.id,
        participants=participants,
    )
    return reservation, slot, reactivated


async def cancel_reservation(
    slot_repo: SlotRepository,
    res_repo: ReservationRepository,
    waitlist_repo: WaitlistRepository,
    *,
    reservation_id: int,
    user_id: int,
    policy: BookingPolicy,
    outbox: NotificationOutbox,
    as_admin: bool = False,
    version: int | None = None,
) -> tuple[Reservation, TimeSlot, WaitlistEntry | None]:
    found = await res_repo.get(reservation_id)
    if found is None:
        raise ReservationNotFoundError("reservation not found", reservation_id=reservation_id)
    if found.user_id != user_id and not as_admin:
        raise ForbiddenError("you can only cancel your own reservations")

    # Slot first, then reservation: the same lock order as booking.
    slot = await slot_repo.get_for_update(found.time_slot_id)
    reservation = await res_repo.get_for_update(reservation_id)
    if slot is None or reservation is None:
        raise ReservationNotFoundError("reservation not found", reservation_id=reservation_id)

    if reservation.is_cancelled:
        raise AlreadyCancelledError("reservation is already cancelled")
    if version is not None and reservation.version != version:
        raise VersionConflictError("version mismatch", current_version=reservation.version)

    now = policy.now()
    if not as_admin:
        policy.check_window(slot.starts_at, now)

    mark_cancelled(reservation, by=CancelledBy.ADMIN if as_admin else CancelledBy.USER, actor_id=user_id)
    reservation = await res_repo.save(reservation)
    outbox.notify_user_and_admin(
        NotificationType.RESERVATION_ADMIN_CANCELLED if as_admin else NotificationType.RESERVATION_CANCELLED,
        user_id=reservation.user_id,
        slot_id=slot.id,
        reservation_id=reservation.id,
        participants=reservation.participants,
    )

    promoted = None
    if not slot.blocked and not policy.is_past(slot.starts_at, now):
        promoted = await promote_next(waitlist_repo, slot_id=slot.id, outbox=outbox)
    return reservation, slot, promoted


async def create_event_reservation(
    event_repo: EventRepository,
    slot_repo: SlotRepository,
    res_repo: ReservationRepository,
    *,
    event_id: int,
    user_id: int,
    participants: int,
    comment: str | None,
    policy: BookingPolicy,
    outbox: NotificationOutbox,
) -> tuple[Event, list[Reservation]]:
    """
    Sign a user up for every remaining day of an event.

    All active slots are locked up front in id order and written in the
    caller's transaction, so a rejection on any day leaves no partial booking.
    Capacity is checked at event level: the busiest day against the event's limit.
    """
    validate_participants(participants)

    event = await event_repo.get_for_update(event_id)
    if event is None:
        raise EventNotFoundError("event not found", event_id=event_id)
    if not event.active:
        raise EventInactiveError("event is not active")

    now = policy.now()
    policy.check_window(combine(event.start_date, event.start_time), now)

    slots = await ensure_slots(slot_repo, event)
    candidate_ids = [slot.id for slot in slots if not slot.blocked and not policy.is_past(slot.starts_at, now)]
    active = [slot for slot in await slot_repo.lock_many(candidate_ids) if not slot.blocked] if candidate_ids else []
    if not active:
        raise NoActiveSlotsError("event has no bookable days left")

    active_ids = [slot.id for slot in active]
    if await res_repo.user_confirmed_slot_ids(user_id, active_ids):
        raise AlreadyRegisteredError("user is already registered for this event")

    counts = await res_repo.sum_confirmed_many(active_ids)
    check_capacity(event.max_participants, event_participants(counts), requested=participants)

    sanitized = policy.sanitize_comment(comment)
    reservations: list[Reservation] = []
    for slot in active:
        reservation, _ = await _confirm_for_slot(
            res_repo,
            slot_id=slot.id,
            user_id=user_id,
            participants=participants,
            comment=sanitized,
        )
        reservations.append(reservation)

    outbox.notify_user_and_admin(
        NotificationType.EVENT_CONFIRMED,
        user_id=user_id,
        event_id=event.id,
        participants=participants,
        extra={"slots_reserved": len(reservations)},
    )
    return event, reservations


async def cancel_event_reservation(
    event_repo: EventRepository,
    slot_repo: SlotRepository,
    res_repo: ReservationRepository,
    waitlist_repo: WaitlistRepository,
    *,
    event_id: int,
    user_id: int,
    policy: BookingPolicy,
    outbox: NotificationOutbox,
) -> tuple[Event, list[Reservation]]:
    event = await event_repo.get(event_id)
    if event is None:
        raise EventNotFoundError("event not found", event_id=event_id)
    slots = await slot_repo.list_by_event(event_id)
    if not slots:
        raise ReservationNotFoundError("no reservation for this event", event_id=event_id)

    now = policy.now()
    earliest = min(slots, key=lambda slot: slot.starts_at)
    policy.check_window(earliest.starts_at, now)

    cancelled: list[tuple[Reservation, TimeSlot]] = []
    for slot in await slot_repo.lock_many(slot.id for slot in slots):
        reservation = await res_repo.find_for_user_and_slot(user_id, slot.id)
        if reservation is None or not reservation.is_confirmed:
            continue
        mark_cancelled(reservation, by=CancelledBy.USER, actor_id=user_id)
        cancelled.append((await res_repo.save(reservation), slot))

    if not cancelled:
        raise ReservationNotFoundError("no reservation for this event", event_id=event_id)

    outbox.notify_user_and_admin(
        NotificationType.EVENT_CANCELLED,
        user_id=user_id,
        event_id=event.id,
        extra={"slots_cancelled": len(cancelled)},
    )
    for _, slot in cancelled:
        if not slot.blocked and not policy.is_past(slot.starts_at, now):
            await promote_next(waitlist_repo, slot_id=slot.id, outbox=outbox)
    return event, [reservation for reservation, _ in cancelled]


async def list_user_reservations(
    res_repo: ReservationRepository,
    event_repo: EventRepository,
    *,
    user_id: int,
    scope: ReservationScope,
    policy: BookingPolicy,
) -> UserReservations:
    """
    The user's reservations split into standalone slots and per-event groups.

    Upcoming includes admin-cancelled reservations so the user can see them;
    past shows only what actually took place.
    """
    now = policy.now()
    rows = sorted(await res_repo.list_by_user(user_id), key=lambda row: row[1].starts_at)
    if scope == "upcoming":
        selected = [
            (res, slot)
            for res, slot in rows
            if not policy.is_past(slot.starts_at, now) and (res.is_confirmed or res.is_cancelled_by_admin)
        ]
    else:
        selected = [(res, slot) for res, slot in rows if policy.is_past(slot.starts_at, now) and res.is_confirmed]

    event_ids = {slot.event_id for _, slot in selected if slot.event_id is not None}
    events = await event_repo.get_many(event_ids) if event_ids else {}

    standalone: list[tuple[Reservation, TimeSlot]] = []
    groups: dict[int, EventReservationGroup] = {}
    for res, slot in selected:
        event = events.get(slot.event_id) if slot.event_id is not None else None
        if event is None:
            standalone.append((res, slot))
            continue
        groups.setdefault(event.id, EventReservationGroup(event=event)).reservations.append((res, slot))
    return UserReservations(standalone=standalone, events=list(groups.values()))


async def get_user_reservation(
    res_repo: ReservationRepository,
    slot_repo: SlotRepository,
    *,
    reservation_id: int,
    user_id: int,
) -> tuple[Reservation, TimeSlot] | None:
    reservation = await res_repo.get(reservation_id)
    if reservation is None or reservation.user_id != user_id:
        return None
    slot = await slot_repo.get(reservation.time_slot_id)
    if slot is None:
        return None
    return reservation, slot
