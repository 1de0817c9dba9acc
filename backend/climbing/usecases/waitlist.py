from __future__ import annotations

import logging

from ..domain.errors import (
    AlreadyWaitlistedError,
    DuplicateReservationError,
    ForbiddenError,
    SlotBlockedError,
    SlotInPastError,
    SlotNotFoundError,
    SpotsAvailableError,
    WaitlistEntryNotFoundError,
)
from ..domain.notifications import Channel, Notification, NotificationOutbox, NotificationType
from ..domain.repositories import ReservationRepository, SlotRepository, WaitlistRepository
from ..domain.services import BookingPolicy, is_full, spots_left
from ..models import TimeSlot, WaitlistEntry
from ..utils.time import utc_now_naive

logger = logging.getLogger(__name__)


async def join_waitlist(
    slot_repo: SlotRepository,
    res_repo: ReservationRepository,
    waitlist_repo: WaitlistRepository,
    *,
    slot_id: int,
    user_id: int,
    policy: BookingPolicy,
) -> tuple[WaitlistEntry, TimeSlot]:
    slot = await slot_repo.get_for_update(slot_id)
    if slot is None:
        raise SlotNotFoundError("slot not found", slot_id=slot_id)

    now = policy.now()
    if policy.is_past(slot.starts_at, now):
        raise SlotInPastError("slot has already started", starts_at=slot.starts_at.isoformat())
    if slot.blocked:
        raise SlotBlockedError("slot is blocked")

    existing = await res_repo.find_for_user_and_slot(user_id, slot_id)
    if existing is not None and existing.is_confirmed:
        raise DuplicateReservationError("user already has a confirmed reservation for this slot")
    if await waitlist_repo.exists(slot_id, user_id):
        raise AlreadyWaitlistedError("user is already on the waitlist for this slot")

    reserved = await res_repo.sum_confirmed(slot_id)
    if not is_full(slot.max_participants, reserved):
        raise SpotsAvailableError(
            "slot still has free spots, book it instead",
            spots_left=spots_left(slot.max_participants, reserved),
        )

    position = await waitlist_repo.max_position(slot_id) + 1
    entry = await waitlist_repo.create(slot_id=slot_id, user_id=user_id, position=position)
    return entry, slot


async def leave_waitlist(
    slot_repo: SlotRepository,
    waitlist_repo: WaitlistRepository,
    *,
    entry_id: int,
    user_id: int,
    as_admin: bool = False,
) -> WaitlistEntry:
    entry = await waitlist_repo.get(entry_id)
    if entry is None:
        raise WaitlistEntryNotFoundError("waitlist entry not found", entry_id=entry_id)
    if entry.user_id != user_id and not as_admin:
        raise ForbiddenError("you can only leave your own waitlist entries")

    # Positions may have shifted while we waited for the slot lock.
    await slot_repo.get_for_update(entry.time_slot_id)
    entry = await waitlist_repo.get(entry_id)
    if entry is None:
        raise WaitlistEntryNotFoundError("waitlist entry not found", entry_id=entry_id)

    position = entry.position
    await waitlist_repo.delete(entry)
    await waitlist_repo.decrement_positions_after(entry.time_slot_id, position)
    return entry


async def promote_next(
    waitlist_repo: WaitlistRepository,
    *,
    slot_id: int,
    outbox: NotificationOutbox,
) -> WaitlistEntry | None:
    """
    Notify the first not-yet-notified waitlisted user that a spot may be free.

    Advisory only: the entry stays on the list and no reservation is created.
    Must run while the caller holds the slot lock.
    """
    entry = await waitlist_repo.first_unnotified(slot_id)
    if entry is None:
        return None
    entry = await waitlist_repo.mark_notified(entry, utc_now_naive())
    outbox.add(
        Notification(
            type=NotificationType.WAITLIST_PROMOTED,
            channel=Channel.USER,
            user_id=entry.user_id,
            slot_id=slot_id,
            extra={"position": entry.position},
        )
    )
    logger.info("waitlist entry %s promoted for slot %s", entry.id, slot_id)
    return entry


async def list_user_waitlist(
    waitlist_repo: WaitlistRepository,
    *,
    user_id: int,
) -> list[tuple[WaitlistEntry, TimeSlot]]:
    return await waitlist_repo.list_by_user(user_id)
