from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from ..domain.errors import SlotNotFoundError
from ..domain.repositories import ReservationRepository, SlotRepository
from ..domain.services import event_participants, is_full, spots_left
from ..models import TimeSlot


@dataclass(frozen=True)
class Occupancy:
    slot_id: int
    max_participants: int
    confirmed: int

    @property
    def spots_left(self) -> int:
        return spots_left(self.max_participants, self.confirmed)

    @property
    def full(self) -> bool:
        return is_full(self.max_participants, self.confirmed)


def occupancy_of(slot: TimeSlot, confirmed: int) -> Occupancy:
    return Occupancy(slot_id=slot.id, max_participants=slot.max_participants, confirmed=confirmed)


async def slot_occupancy(
    slot_repo: SlotRepository,
    res_repo: ReservationRepository,
    *,
    slot_id: int,
) -> Occupancy:
    slot = await slot_repo.get(slot_id)
    if slot is None:
        raise SlotNotFoundError("slot not found", slot_id=slot_id)
    return occupancy_of(slot, await res_repo.sum_confirmed(slot_id))


async def batch_occupancy(
    slot_repo: SlotRepository,
    res_repo: ReservationRepository,
    *,
    slot_ids: Iterable[int],
) -> dict[int, Occupancy]:
    """Occupancy for every existing slot in `slot_ids`; unknown ids are left out."""
    slots = await slot_repo.get_many(slot_ids)
    if not slots:
        return {}
    counts = await res_repo.sum_confirmed_many(slot.id for slot in slots)
    return {slot.id: occupancy_of(slot, counts.get(slot.id, 0)) for slot in slots}


async def event_occupancy(
    res_repo: ReservationRepository,
    *,
    slots: Iterable[TimeSlot],
) -> int:
    slot_ids = [slot.id for slot in slots]
    if not slot_ids:
        return 0
    return event_participants(await res_repo.sum_confirmed_many(slot_ids))
