from __future__ import annotations

import logging
from datetime import date, time
from typing import Any

from ..domain.errors import EventNotFoundError, InvalidInputError, SlotNotFoundError
from ..domain.notifications import NotificationOutbox, NotificationType
from ..domain.repositories import EventRepository, ReservationRepository, SlotRepository, UserDirectory
from ..domain.services import spots_left
from ..models import CancelledBy, Reservation, TimeSlot, User
from ..utils.time import utc_now_naive
from .reservations import mark_cancelled

logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = ("slot_date", "start_time", "end_time", "max_participants", "title")


def _validate_slot_fields(*, start_time: time, end_time: time, max_participants: int) -> None:
    if start_time >= end_time:
        raise InvalidInputError("start_time must be earlier than end_time")
    if max_participants < 1:
        raise InvalidInputError("max_participants must be >= 1")


async def create_slot(
    slot_repo: SlotRepository,
    event_repo: EventRepository,
    *,
    slot_date: date,
    start_time: time,
    end_time: time,
    max_participants: int,
    title: str | None = None,
    event_id: int | None = None,
) -> TimeSlot:
    _validate_slot_fields(start_time=start_time, end_time=end_time, max_participants=max_participants)
    if event_id is not None and await event_repo.get(event_id) is None:
        raise EventNotFoundError("event not found", event_id=event_id)
    return await slot_repo.create(
        slot_date=slot_date,
        start_time=start_time,
        end_time=end_time,
        max_participants=max_participants,
        title=title,
        event_id=event_id,
    )


async def update_slot(
    slot_repo: SlotRepository,
    res_repo: ReservationRepository,
    *,
    slot_id: int,
    changes: dict[str, Any],
) -> TimeSlot:
    slot = await slot_repo.get_for_update(slot_id)
    if slot is None:
        raise SlotNotFoundError("slot not found", slot_id=slot_id)
    for name, value in changes.items():
        if name in _UPDATABLE_FIELDS and value is not None:
            setattr(slot, name, value)
    _validate_slot_fields(start_time=slot.start_time, end_time=slot.end_time, max_participants=slot.max_participants)

    # Capacity may not drop below what is already booked.
    reserved = await res_repo.sum_confirmed(slot_id)
    if spots_left(slot.max_participants, reserved) < 0:
        raise InvalidInputError(
            "max_participants is below the confirmed participants",
            max_participants=slot.max_participants,
            confirmed=reserved,
        )
    slot.updated_at = utc_now_naive()
    return await slot_repo.save(slot)


async def _cancel_all_for_slot(
    res_repo: ReservationRepository,
    *,
    slot: TimeSlot,
    admin_id: int,
    outbox: NotificationOutbox,
) -> list[Reservation]:
    cancelled: list[Reservation] = []
    for reservation in await res_repo.list_confirmed_by_slots([slot.id]):
        mark_cancelled(reservation, by=CancelledBy.ADMIN, actor_id=admin_id)
        reservation = await res_repo.save(reservation)
        cancelled.append(reservation)
        outbox.notify_user_and_admin(
            NotificationType.RESERVATION_ADMIN_CANCELLED,
            user_id=reservation.user_id,
            slot_id=slot.id,
            reservation_id=reservation.id,
            participants=reservation.participants,
        )
    return cancelled


async def block_slot(
    slot_repo: SlotRepository,
    res_repo: ReservationRepository,
    *,
    slot_id: int,
    reason: str | None,
    admin_id: int,
    outbox: NotificationOutbox,
) -> tuple[TimeSlot, list[Reservation]]:
    """Block a slot and cancel its confirmed reservations on the admin's behalf."""
    slot = await slot_repo.get_for_update(slot_id)
    if slot is None:
        raise SlotNotFoundError("slot not found", slot_id=slot_id)
    slot.block(reason)
    slot.updated_at = utc_now_naive()
    slot = await slot_repo.save(slot)
    cancelled = await _cancel_all_for_slot(res_repo, slot=slot, admin_id=admin_id, outbox=outbox)
    logger.info("slot %s blocked, %d reservation(s) cancelled", slot_id, len(cancelled))
    return slot, cancelled


async def unblock_slot(slot_repo: SlotRepository, *, slot_id: int) -> TimeSlot:
    slot = await slot_repo.get_for_update(slot_id)
    if slot is None:
        raise SlotNotFoundError("slot not found", slot_id=slot_id)
    slot.unblock()
    slot.updated_at = utc_now_naive()
    return await slot_repo.save(slot)


async def delete_slot(
    slot_repo: SlotRepository,
    res_repo: ReservationRepository,
    *,
    slot_id: int,
    admin_id: int,
    outbox: NotificationOutbox,
) -> tuple[TimeSlot, list[Reservation]]:
    slot = await slot_repo.get_for_update(slot_id)
    if slot is None:
        raise SlotNotFoundError("slot not found", slot_id=slot_id)
    cancelled = await _cancel_all_for_slot(res_repo, slot=slot, admin_id=admin_id, outbox=outbox)
    await slot_repo.delete([slot_id])
    logger.info("slot %s deleted, %d reservation(s) cancelled", slot_id, len(cancelled))
    return slot, cancelled


async def slot_participants(
    slot_repo: SlotRepository,
    res_repo: ReservationRepository,
    users: UserDirectory,
    *,
    slot_id: int,
) -> tuple[TimeSlot, list[tuple[Reservation, User]]]:
    slot = await slot_repo.get(slot_id)
    if slot is None:
        raise SlotNotFoundError("slot not found", slot_id=slot_id)
    reservations = sorted(await res_repo.list_confirmed_by_slots([slot_id]), key=lambda r: r.created_at)
    directory = await users.get_many({r.user_id for r in reservations})
    return slot, [(r, directory[r.user_id]) for r in reservations if r.user_id in directory]
