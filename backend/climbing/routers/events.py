from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Path, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import CurrentUser, get_booking_policy, get_current_user, get_notifier, get_optional_user_id, get_session
from ..domain.notifications import NotificationOutbox, NotificationSink
from ..domain.services import BookingPolicy
from ..infrastructure.notifications import dispatch_notifications
from ..infrastructure.repositories import (
    SqlAlchemyEventRepository,
    SqlAlchemyReservationRepository,
    SqlAlchemySlotRepository,
    SqlAlchemyWaitlistRepository,
)
from ..schemas import EventCancelRead, EventReservationCreate, EventReservationRead, EventSummaryRead
from ..usecases import calendar as calendar_usecase
from ..usecases import reservations as reservation_usecase
from ..utils.audit_log import audit_after_commit
from .errors import HANDLED_ERRORS, to_http_exception

router = APIRouter(prefix="/events", tags=["events"])


@router.get("/{event_id}", response_model=EventSummaryRead)
async def get_event(
    event_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    user_id: Optional[int] = Depends(get_optional_user_id),
    policy: BookingPolicy = Depends(get_booking_policy),
) -> EventSummaryRead:
    try:
        summary = await calendar_usecase.get_event_summary(
            SqlAlchemySlotRepository(session),
            SqlAlchemyEventRepository(session),
            SqlAlchemyReservationRepository(session),
            event_id=event_id,
            user_id=user_id,
            policy=policy,
        )
    except HANDLED_ERRORS as exc:
        raise to_http_exception(exc) from exc
    return EventSummaryRead.from_summary(summary)


@router.post("/{event_id}/reservations", response_model=EventReservationRead, status_code=status.HTTP_201_CREATED)
async def create_event_reservation(
    payload: EventReservationCreate,
    background_tasks: BackgroundTasks,
    event_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    user: CurrentUser = Depends(get_current_user),
    policy: BookingPolicy = Depends(get_booking_policy),
    notifier: NotificationSink = Depends(get_notifier),
) -> EventReservationRead:
    outbox = NotificationOutbox()
    try:
        async with session.begin():
            event, reservations = await reservation_usecase.create_event_reservation(
                SqlAlchemyEventRepository(session),
                SqlAlchemySlotRepository(session),
                SqlAlchemyReservationRepository(session),
                event_id=event_id,
                user_id=user.id,
                participants=payload.participants,
                comment=payload.comment,
                policy=policy,
                outbox=outbox,
            )
    except HANDLED_ERRORS as exc:
        raise to_http_exception(exc) from exc

    background_tasks.add_task(dispatch_notifications, notifier, outbox.drain())
    audit_after_commit(
        action="event_reservation.created",
        initiator="user",
        user_id=user.id,
        event_id=event.id,
        participants=payload.participants,
        extra={"slots_reserved": len(reservations)},
    )
    return EventReservationRead(
        event_id=event.id,
        slots_reserved=len(reservations),
        reservation_ids=[reservation.id for reservation in reservations],
    )


@router.post("/{event_id}/reservations/cancel", response_model=EventCancelRead)
async def cancel_event_reservation(
    background_tasks: BackgroundTasks,
    event_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    user: CurrentUser = Depends(get_current_user),
    policy: BookingPolicy = Depends(get_booking_policy),
    notifier: NotificationSink = Depends(get_notifier),
) -> EventCancelRead:
    outbox = NotificationOutbox()
    try:
        async with session.begin():
            event, cancelled = await reservation_usecase.cancel_event_reservation(
                SqlAlchemyEventRepository(session),
                SqlAlchemySlotRepository(session),
                SqlAlchemyReservationRepository(session),
                SqlAlchemyWaitlistRepository(session),
                event_id=event_id,
                user_id=user.id,
                policy=policy,
                outbox=outbox,
            )
    except HANDLED_ERRORS as exc:
        raise to_http_exception(exc) from exc

    background_tasks.add_task(dispatch_notifications, notifier, outbox.drain())
    audit_after_commit(
        action="event_reservation.cancelled",
        initiator="user",
        user_id=user.id,
        event_id=event.id,
        extra={"slots_cancelled": len(cancelled)},
    )
    return EventCancelRead(event_id=event.id, slots_cancelled=len(cancelled))
