from datetime import date
from typing import List

from fastapi import APIRouter, BackgroundTasks, Depends, Path, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import CurrentUser, get_booking_policy, get_notifier, get_session, require_admin
from ..domain.notifications import NotificationOutbox, NotificationSink
from ..domain.services import BookingPolicy
from ..infrastructure.notifications import dispatch_notifications
from ..infrastructure.repositories import (
    SqlAlchemyEventRepository,
    SqlAlchemyReservationRepository,
    SqlAlchemySlotRepository,
    SqlAlchemyUserDirectory,
    SqlAlchemyWaitlistRepository,
)
from ..schemas import (
    BookingAdminRead,
    EventCreate,
    EventDeleteRead,
    EventDetailsRead,
    EventRead,
    EventUpdate,
    OccupancyRead,
    ParticipantRead,
    ReservationRead,
    SlotAdminActionRead,
    SlotBlock,
    SlotCreate,
    SlotRead,
    SlotUpdate,
)
from ..usecases import events as event_usecase
from ..usecases import reservations as reservation_usecase
from ..usecases import roster as roster_usecase
from ..usecases import slots as slot_usecase
from ..usecases.capacity import occupancy_of
from ..utils.audit_log import audit_after_commit
from .errors import HANDLED_ERRORS, to_http_exception

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


# slots


@router.post("/slots", response_model=SlotRead, status_code=status.HTTP_201_CREATED)
async def create_slot(
    payload: SlotCreate,
    session: AsyncSession = Depends(get_session),
    admin: CurrentUser = Depends(require_admin),
) -> SlotRead:
    try:
        async with session.begin():
            slot = await slot_usecase.create_slot(
                SqlAlchemySlotRepository(session),
                SqlAlchemyEventRepository(session),
                slot_date=payload.slot_date,
                start_time=payload.start_time,
                end_time=payload.end_time,
                max_participants=payload.max_participants,
                title=payload.title,
                event_id=payload.event_id,
            )
    except HANDLED_ERRORS as exc:
        raise to_http_exception(exc) from exc

    audit_after_commit(action="slot.created", initiator="admin", user_id=None, actor_id=admin.id, slot_id=slot.id)
    return SlotRead.from_db(slot=slot)


@router.patch("/slots/{slot_id}", response_model=SlotRead)
async def update_slot(
    payload: SlotUpdate,
    slot_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    admin: CurrentUser = Depends(require_admin),
) -> SlotRead:
    try:
        async with session.begin():
            slot = await slot_usecase.update_slot(
                SqlAlchemySlotRepository(session),
                SqlAlchemyReservationRepository(session),
                slot_id=slot_id,
                changes=payload.model_dump(exclude_unset=True),
            )
    except HANDLED_ERRORS as exc:
        raise to_http_exception(exc) from exc

    audit_after_commit(action="slot.updated", initiator="admin", user_id=None, actor_id=admin.id, slot_id=slot.id)
    return SlotRead.from_db(slot=slot)


@router.post("/slots/{slot_id}/block", response_model=SlotAdminActionRead)
async def block_slot(
    background_tasks: BackgroundTasks,
    payload: SlotBlock | None = None,
    slot_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    admin: CurrentUser = Depends(require_admin),
    notifier: NotificationSink = Depends(get_notifier),
) -> SlotAdminActionRead:
    outbox = NotificationOutbox()
    try:
        async with session.begin():
            slot, cancelled = await slot_usecase.block_slot(
                SqlAlchemySlotRepository(session),
                SqlAlchemyReservationRepository(session),
                slot_id=slot_id,
                reason=payload.reason if payload is not None else None,
                admin_id=admin.id,
                outbox=outbox,
            )
    except HANDLED_ERRORS as exc:
        raise to_http_exception(exc) from exc

    background_tasks.add_task(dispatch_notifications, notifier, outbox.drain())
    audit_after_commit(
        action="slot.blocked",
        initiator="admin",
        user_id=None,
        actor_id=admin.id,
        slot_id=slot.id,
        message=slot.block_reason,
        extra={"cancelled_reservations": len(cancelled)},
    )
    return SlotAdminActionRead(slot=SlotRead.from_db(slot=slot), cancelled_reservations=len(cancelled))


@router.post("/slots/{slot_id}/unblock", response_model=SlotRead)
async def unblock_slot(
    slot_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    admin: CurrentUser = Depends(require_admin),
) -> SlotRead:
    try:
        async with session.begin():
            slot = await slot_usecase.unblock_slot(SqlAlchemySlotRepository(session), slot_id=slot_id)
    except HANDLED_ERRORS as exc:
        raise to_http_exception(exc) from exc

    audit_after_commit(action="slot.unblocked", initiator="admin", user_id=None, actor_id=admin.id, slot_id=slot.id)
    return SlotRead.from_db(slot=slot)


@router.delete("/slots/{slot_id}", response_model=SlotAdminActionRead)
async def delete_slot(
    background_tasks: BackgroundTasks,
    slot_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    admin: CurrentUser = Depends(require_admin),
    notifier: NotificationSink = Depends(get_notifier),
) -> SlotAdminActionRead:
    outbox = NotificationOutbox()
    try:
        async with session.begin():
            slot, cancelled = await slot_usecase.delete_slot(
                SqlAlchemySlotRepository(session),
                SqlAlchemyReservationRepository(session),
                slot_id=slot_id,
                admin_id=admin.id,
                outbox=outbox,
            )
    except HANDLED_ERRORS as exc:
        raise to_http_exception(exc) from exc

    background_tasks.add_task(dispatch_notifications, notifier, outbox.drain())
    audit_after_commit(
        action="slot.deleted",
        initiator="admin",
        user_id=None,
        actor_id=admin.id,
        slot_id=slot_id,
        extra={"cancelled_reservations": len(cancelled)},
    )
    return SlotAdminActionRead(slot=SlotRead.from_db(slot=slot), cancelled_reservations=len(cancelled))


@router.get("/slots/{slot_id}/participants", response_model=List[ParticipantRead])
async def list_slot_participants(
    slot_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
) -> list[ParticipantRead]:
    try:
        _, rows = await slot_usecase.slot_participants(
            SqlAlchemySlotRepository(session),
            SqlAlchemyReservationRepository(session),
            SqlAlchemyUserDirectory(session),
            slot_id=slot_id,
        )
    except HANDLED_ERRORS as exc:
        raise to_http_exception(exc) from exc
    return [ParticipantRead.from_db(reservation=reservation, user=user) for reservation, user in rows]


# events


@router.get("/events", response_model=List[EventRead])
async def list_events(session: AsyncSession = Depends(get_session)) -> list[EventRead]:
    events = await event_usecase.list_events(SqlAlchemyEventRepository(session))
    return [EventRead.from_db(event=event) for event in events]


@router.post("/events", response_model=EventRead, status_code=status.HTTP_201_CREATED)
async def create_event(
    payload: EventCreate,
    session: AsyncSession = Depends(get_session),
    admin: CurrentUser = Depends(require_admin),
) -> EventRead:
    try:
        async with session.begin():
            event = await event_usecase.create_event(SqlAlchemyEventRepository(session), **payload.model_dump())
    except HANDLED_ERRORS as exc:
        raise to_http_exception(exc) from exc

    audit_after_commit(action="event.created", initiator="admin", user_id=None, actor_id=admin.id, event_id=event.id)
    return EventRead.from_db(event=event)


@router.patch("/events/{event_id}", response_model=EventRead)
async def update_event(
    payload: EventUpdate,
    event_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    admin: CurrentUser = Depends(require_admin),
) -> EventRead:
    try:
        async with session.begin():
            event = await event_usecase.update_event(
                SqlAlchemyEventRepository(session),
                SqlAlchemySlotRepository(session),
                SqlAlchemyReservationRepository(session),
                event_id=event_id,
                changes=payload.model_dump(exclude_unset=True),
            )
    except HANDLED_ERRORS as exc:
        raise to_http_exception(exc) from exc

    audit_after_commit(action="event.updated", initiator="admin", user_id=None, actor_id=admin.id, event_id=event.id)
    return EventRead.from_db(event=event)


@router.get("/events/{event_id}", response_model=EventDetailsRead)
async def get_event_details(
    event_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
) -> EventDetailsRead:
    # Listing may expand the event into slots, so it runs as a write transaction.
    try:
        async with session.begin():
            details = await event_usecase.get_event_details(
                SqlAlchemyEventRepository(session),
                SqlAlchemySlotRepository(session),
                SqlAlchemyReservationRepository(session),
                event_id=event_id,
            )
    except HANDLED_ERRORS as exc:
        raise to_http_exception(exc) from exc

    base = EventRead.from_db(event=details.event)
    return EventDetailsRead(
        **base.model_dump(),
        current_participants=details.current_participants,
        slots=[OccupancyRead.from_occupancy(occupancy_of(slot, details.counts.get(slot.id, 0))) for slot in details.slots],
    )


@router.delete("/events/{event_id}", response_model=EventDeleteRead)
async def delete_event(
    background_tasks: BackgroundTasks,
    event_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    admin: CurrentUser = Depends(require_admin),
    notifier: NotificationSink = Depends(get_notifier),
) -> EventDeleteRead:
    outbox = NotificationOutbox()
    try:
        async with session.begin():
            event, cancelled = await event_usecase.delete_event(
                SqlAlchemyEventRepository(session),
                SqlAlchemySlotRepository(session),
                SqlAlchemyReservationRepository(session),
                event_id=event_id,
                admin_id=admin.id,
                outbox=outbox,
            )
    except HANDLED_ERRORS as exc:
        raise to_http_exception(exc) from exc

    background_tasks.add_task(dispatch_notifications, notifier, outbox.drain())
    audit_after_commit(
        action="event.deleted",
        initiator="admin",
        user_id=None,
        actor_id=admin.id,
        event_id=event_id,
        message=event.title,
        extra={"cancelled_reservations": len(cancelled)},
    )
    return EventDeleteRead(event_id=event_id, cancelled_reservations=len(cancelled))


@router.get("/events/{event_id}/participants", response_model=List[ParticipantRead])
async def list_event_participants(
    event_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
) -> list[ParticipantRead]:
    try:
        _, rows = await event_usecase.event_participants_list(
            SqlAlchemyEventRepository(session),
            SqlAlchemySlotRepository(session),
            SqlAlchemyReservationRepository(session),
            SqlAlchemyUserDirectory(session),
            event_id=event_id,
        )
    except HANDLED_ERRORS as exc:
        raise to_http_exception(exc) from exc
    return [ParticipantRead.from_db(reservation=reservation, user=user) for reservation, user in rows]


# reservations


@router.post("/reservations/{reservation_id}/cancel", response_model=ReservationRead)
async def cancel_reservation(
    background_tasks: BackgroundTasks,
    reservation_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    admin: CurrentUser = Depends(require_admin),
    policy: BookingPolicy = Depends(get_booking_policy),
    notifier: NotificationSink = Depends(get_notifier),
) -> ReservationRead:
    outbox = NotificationOutbox()
    try:
        async with session.begin():
            reservation, slot, promoted = await reservation_usecase.cancel_reservation(
                SqlAlchemySlotRepository(session),
                SqlAlchemyReservationRepository(session),
                SqlAlchemyWaitlistRepository(session),
                reservation_id=reservation_id,
                user_id=admin.id,
                policy=policy,
                outbox=outbox,
                as_admin=True,
            )
    except HANDLED_ERRORS as exc:
        raise to_http_exception(exc) from exc

    background_tasks.add_task(dispatch_notifications, notifier, outbox.drain())
    audit_after_commit(
        action="reservation.admin_cancelled",
        initiator="admin",
        user_id=reservation.user_id,
        actor_id=admin.id,
        reservation_id=reservation.id,
        slot_id=slot.id,
        participants=reservation.participants,
        status_from="confirmed",
        status_to=reservation.status,
        version=reservation.version,
    )
    if promoted is not None:
        audit_after_commit(
            action="waitlist.promoted",
            initiator="system",
            user_id=promoted.user_id,
            slot_id=slot.id,
            extra={"entry_id": promoted.id, "position": promoted.position},
        )
    return ReservationRead.from_db(reservation=reservation, slot=slot)


def _repos(session: AsyncSession) -> tuple[
    SqlAlchemySlotRepository, SqlAlchemyEventRepository, SqlAlchemyReservationRepository, SqlAlchemyUserDirectory
]:
    return (
        SqlAlchemySlotRepository(session),
        SqlAlchemyEventRepository(session),
        SqlAlchemyReservationRepository(session),
        SqlAlchemyUserDirectory(session),
    )


@router.get("/reservations/upcoming", response_model=List[BookingAdminRead])
async def list_upcoming_reservations(
    session: AsyncSession = Depends(get_session),
    policy: BookingPolicy = Depends(get_booking_policy),
) -> list[BookingAdminRead]:
    rows = await roster_usecase.upcoming_bookings(*_repos(session), policy=policy)
    return [BookingAdminRead.from_row(row) for row in rows]


@router.get("/reservations/past", response_model=List[BookingAdminRead])
async def list_past_reservations(
    session: AsyncSession = Depends(get_session),
    policy: BookingPolicy = Depends(get_booking_policy),
) -> list[BookingAdminRead]:
    rows = await roster_usecase.past_bookings(*_repos(session), policy=policy)
    return [BookingAdminRead.from_row(row) for row in rows]


@router.get("/reservations/date/{day}", response_model=List[BookingAdminRead])
async def list_reservations_on(day: date, session: AsyncSession = Depends(get_session)) -> list[BookingAdminRead]:
    rows = await roster_usecase.bookings_between(*_repos(session), start=day, end=day)
    return [BookingAdminRead.from_row(row) for row in rows]
