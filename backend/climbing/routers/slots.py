from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_booking_policy, get_optional_user_id, get_session
from ..domain.services import BookingPolicy
from ..infrastructure.repositories import (
    SqlAlchemyEventRepository,
    SqlAlchemyReservationRepository,
    SqlAlchemySlotRepository,
)
from ..schemas import DayViewRead, MonthViewRead, OccupancyRead, SlotDetailRead
from ..usecases import calendar as calendar_usecase
from ..usecases import capacity as capacity_usecase
from .errors import HANDLED_ERRORS, to_http_exception

router = APIRouter(prefix="", tags=["slots"])

MAX_BATCH = 200


# Declared before /slots/{slot_id} so "occupancy" is not parsed as an id.
@router.get("/slots/occupancy", response_model=List[OccupancyRead])
async def batch_occupancy(
    slot_ids: List[int] = Query(..., min_length=1, max_length=MAX_BATCH),
    session: AsyncSession = Depends(get_session),
) -> list[OccupancyRead]:
    rows = await capacity_usecase.batch_occupancy(
        SqlAlchemySlotRepository(session),
        SqlAlchemyReservationRepository(session),
        slot_ids=slot_ids,
    )
    return [OccupancyRead.from_occupancy(rows[slot_id]) for slot_id in sorted(rows)]


@router.get("/slots/{slot_id}/occupancy", response_model=OccupancyRead)
async def slot_occupancy(
    slot_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
) -> OccupancyRead:
    try:
        occupancy = await capacity_usecase.slot_occupancy(
            SqlAlchemySlotRepository(session),
            SqlAlchemyReservationRepository(session),
            slot_id=slot_id,
        )
    except HANDLED_ERRORS as exc:
        raise to_http_exception(exc) from exc
    return OccupancyRead.from_occupancy(occupancy)


@router.get("/slots/{slot_id}", response_model=SlotDetailRead)
async def get_slot(
    slot_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    user_id: Optional[int] = Depends(get_optional_user_id),
    policy: BookingPolicy = Depends(get_booking_policy),
) -> SlotDetailRead:
    try:
        view = await calendar_usecase.get_slot_details(
            SqlAlchemySlotRepository(session),
            SqlAlchemyReservationRepository(session),
            slot_id=slot_id,
            user_id=user_id,
            policy=policy,
        )
    except HANDLED_ERRORS as exc:
        raise to_http_exception(exc) from exc

    event_title = None
    if view.slot.event_id is not None:
        event = await SqlAlchemyEventRepository(session).get(view.slot.event_id)
        event_title = event.title if event is not None else None
    return SlotDetailRead.from_view(view, event_title=event_title)


@router.get("/calendar/day/{day}", response_model=DayViewRead)
async def get_day(
    day: date,
    session: AsyncSession = Depends(get_session),
    user_id: Optional[int] = Depends(get_optional_user_id),
    policy: BookingPolicy = Depends(get_booking_policy),
) -> DayViewRead:
    view = await calendar_usecase.get_day_view(
        SqlAlchemySlotRepository(session),
        SqlAlchemyEventRepository(session),
        SqlAlchemyReservationRepository(session),
        day=day,
        user_id=user_id,
        policy=policy,
    )
    return DayViewRead.from_view(view)


@router.get("/calendar/month/{year_month}", response_model=MonthViewRead)
async def get_month(
    year_month: str = Path(..., pattern=r"^\d{4}-(0[1-9]|1[0-2])$"),
    session: AsyncSession = Depends(get_session),
    user_id: Optional[int] = Depends(get_optional_user_id),
    policy: BookingPolicy = Depends(get_booking_policy),
) -> MonthViewRead:
    year, month = (int(part) for part in year_month.split("-"))
    view = await calendar_usecase.get_month_view(
        SqlAlchemySlotRepository(session),
        SqlAlchemyEventRepository(session),
        SqlAlchemyReservationRepository(session),
        year=year,
        month=month,
        user_id=user_id,
        policy=policy,
    )
    return MonthViewRead.from_view(view)
