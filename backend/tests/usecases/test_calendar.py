from datetime import date, datetime, timedelta

import pytest
from climbing.domain.errors import EventNotFoundError, SlotNotFoundError
from climbing.domain.services import SlotAvailability
from climbing.models import ReservationStatus
from climbing.usecases import calendar as uc


@pytest.mark.asyncio
async def test_slot_details_for_anonymous_and_registered_user(store, policy, tomorrow) -> None:
    slot = store.add_slot(starts_at=tomorrow, max_participants=3)
    mine = store.add_reservation(slot, user_id=1, participants=2)
    store.add_reservation(slot, user_id=2, status=ReservationStatus.CANCELLED)

    async with store.transaction() as tx:
        anonymous = await uc.get_slot_details(tx.slots, tx.reservations, slot_id=slot.id, user_id=None, policy=policy)
        owner = await uc.get_slot_details(tx.slots, tx.reservations, slot_id=slot.id, user_id=1, policy=policy)
        cancelled = await uc.get_slot_details(tx.slots, tx.reservations, slot_id=slot.id, user_id=2, policy=policy)

    assert anonymous.confirmed == 2
    assert anonymous.status == SlotAvailability.AVAILABLE
    assert anonymous.user_registered is False
    assert (owner.user_registered, owner.reservation_id) == (True, mine.id)
    assert (cancelled.user_registered, cancelled.reservation_id) == (False, None)


@pytest.mark.asyncio
async def test_slot_details_reports_full_and_closed(store, policy, clock) -> None:
    full = store.add_slot(starts_at=clock.now + timedelta(days=1), max_participants=1)
    store.add_reservation(full, user_id=1)
    closing = store.add_slot(starts_at=clock.now + timedelta(hours=2))

    async with store.transaction() as tx:
        full_view = await uc.get_slot_details(tx.slots, tx.reservations, slot_id=full.id, user_id=None, policy=policy)
        closing_view = await uc.get_slot_details(
            tx.slots, tx.reservations, slot_id=closing.id, user_id=None, policy=policy
        )
        with pytest.raises(SlotNotFoundError):
            await uc.get_slot_details(tx.slots, tx.reservations, slot_id=999, user_id=None, policy=policy)

    assert full_view.status == SlotAvailability.FULL
    assert closing_view.status == SlotAvailability.BOOKING_CLOSED


@pytest.mark.asyncio
async def test_day_view_lists_standalone_slots_and_running_events(store, policy, clock) -> None:
    day = (clock.now + timedelta(days=3)).date()
    event = store.add_event(start_date=clock.now.date(), end_date=day + timedelta(days=1), max_participants=6)
    store.add_event(start_date=day, end_date=day, active=False, title="Cancelled trip")
    event_slot = store.add_slot(starts_at=clock.now + timedelta(days=3, hours=1), event_id=event.id)
    late = store.add_slot(starts_at=clock.now + timedelta(days=3, hours=8))
    early = store.add_slot(starts_at=clock.now + timedelta(days=3, hours=2), blocked=True)
    store.add_slot(starts_at=clock.now + timedelta(days=4))
    store.add_reservation(late, user_id=1, participants=3)
    store.add_reservation(event_slot, user_id=1, participants=2)

    async with store.transaction() as tx:
        view = await uc.get_day_view(tx.slots, tx.events, tx.reservations, day=day, user_id=1, policy=policy)

    assert view.day == day
    assert [v.slot.id for v in view.slots] == [early.id, late.id]
    assert view.slots[0].status == SlotAvailability.BLOCKED
    assert (view.slots[1].confirmed, view.slots[1].user_registered) == (3, True)
    assert len(view.events) == 1
    summary = view.events[0]
    assert summary.event is event
    assert summary.current_participants == 2
    assert summary.user_registered is True
    # The first day starts in an hour, past the online booking cutoff.
    assert summary.enrollment_open is False


@pytest.mark.asyncio
async def test_event_summary_enrollment(store, policy, clock) -> None:
    start = (clock.now + timedelta(days=5)).date()
    upcoming = store.add_event(start_date=start, end_date=start + timedelta(days=1))
    inactive = store.add_event(start_date=start, end_date=start, active=False)

    async with store.transaction() as tx:
        open_summary = await uc.get_event_summary(
            tx.slots, tx.events, tx.reservations, event_id=upcoming.id, user_id=None, policy=policy
        )
        closed_summary = await uc.get_event_summary(
            tx.slots, tx.events, tx.reservations, event_id=inactive.id, user_id=2, policy=policy
        )
        with pytest.raises(EventNotFoundError):
            await uc.get_event_summary(tx.slots, tx.events, tx.reservations, event_id=999, user_id=None, policy=policy)

    assert open_summary.enrollment_open is True
    assert open_summary.current_participants == 0
    assert open_summary.user_registered is False
    assert closed_summary.enrollment_open is False


@pytest.mark.parametrize(
    "year,month,last",
    [(2028, 2, date(2028, 2, 29)), (2026, 2, date(2026, 2, 28)), (2026, 12, date(2026, 12, 31))],
)
def test_month_bounds(year: int, month: int, last: date) -> None:
    assert uc.month_bounds(year, month) == (date(year, month, 1), last)


@pytest.mark.asyncio
async def test_month_view_summarizes_each_day_and_overlapping_events(store, policy, clock) -> None:
    assert clock.now == datetime(2026, 3, 2, 8, 0)
    full = store.add_slot(starts_at=datetime(2026, 3, 5, 10, 0), max_participants=2)
    store.add_slot(starts_at=datetime(2026, 3, 5, 14, 0))
    store.add_slot(starts_at=datetime(2026, 3, 5, 17, 0), blocked=True)
    store.add_slot(starts_at=datetime(2026, 3, 2, 10, 0))
    store.add_slot(starts_at=datetime(2026, 4, 1, 10, 0))
    store.add_reservation(full, user_id=1, participants=2)

    spanning = store.add_event(start_date=date(2026, 2, 27), end_date=date(2026, 3, 3))
    camp = store.add_event(start_date=date(2026, 3, 10), end_date=date(2026, 3, 10))
    store.add_event(start_date=date(2026, 3, 20), end_date=date(2026, 3, 21), active=False)
    store.add_event(start_date=date(2026, 4, 2), end_date=date(2026, 4, 3))
    camp_day = store.add_slot(starts_at=datetime(2026, 3, 10, 9, 0), event_id=camp.id)
    store.add_reservation(camp_day, user_id=1, participants=3)

    async with store.transaction() as tx:
        view = await uc.get_month_view(
            tx.slots, tx.events, tx.reservations, year=2026, month=3, user_id=1, policy=policy
        )
        anonymous = await uc.get_month_view(
            tx.slots, tx.events, tx.reservations, year=2026, month=3, user_id=None, policy=policy
        )

    assert view.year_month == "2026-03"
    assert len(view.days) == 31
    by_day = {day.day: day for day in view.days}
    fifth = by_day[date(2026, 3, 5)]
    assert (fifth.total_slots, fifth.available_slots, fifth.user_reserved) == (3, 1, True)
    # Starts within the online booking cutoff.
    second = by_day[date(2026, 3, 2)]
    assert (second.total_slots, second.available_slots) == (1, 0)
    # Event days are shown through their event only.
    assert by_day[date(2026, 3, 10)].total_slots == 0

    assert [summary.event.id for summary in view.events] == [spanning.id, camp.id]
    camp_summary = view.events[1]
    assert camp_summary.current_participants == 3
    assert camp_summary.user_registered is True
    assert not any(day.user_reserved for day in anonymous.days)
    assert not any(summary.user_registered for summary in anonymous.events)
