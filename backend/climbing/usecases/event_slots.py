from __future__ import annotations

import logging
from datetime import timedelta

from ..domain.repositories import SlotRepository
from ..models import Event, TimeSlot
from ..utils.time import DAY_END, DAY_START

logger = logging.getLogger(__name__)


async def ensure_slots(slot_repo: SlotRepository, event: Event) -> list[TimeSlot]:
    """
    Return the event's slots, creating one per calendar day on first use.

    Expansion happens at most once per event; callers that may race on it
    must hold the event row lock.
    """
    slots = await slot_repo.list_by_event(event.id)
    if slots:
        return slots

    start = event.start_time or DAY_START
    end = event.end_time or DAY_END
    day = event.start_date
    while day <= event.end_date:
        slots.append(
            await slot_repo.create(
                slot_date=day,
                start_time=start,
                end_time=end,
                max_participants=event.max_participants,
                event_id=event.id,
            )
        )
        day += timedelta(days=1)
    logger.info("expanded event %s into %d slot(s)", event.id, len(slots))
    return slots
