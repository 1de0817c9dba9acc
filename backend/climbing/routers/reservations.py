from typing import Literal, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Header, HTTPException, Path, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import CurrentUser, get_booking_policy, get_current_user, get_notifier, get_session
from ..domain.notifications import NotificationOutbox, NotificationSink
from ..domain.services import BookingPolicy
from ..infrastructure.notifications import dispatch_notifications
from ..infrastructure.repositories import (
    SqlAlchemyEventRepository,
    SqlAlchemyReservationRepository,
    SqlAlchemySlotRepository,
    SqlAlchemyWaitlistRepository,
)
from ..schemas import MyReservationsRead, ReservationCancel, ReservationCreate, ReservationRead
from ..usecases import reservations as reservation_usecase
from ..utils.audit_log import audit_after_commit
from .errors import HANDLED_ERRORS, to_http_exception

router = APIRouter(prefix="", tags=["reservations"])


def _extract_version(if_match: Optional[str], payload: Optional[ReservationCancel]) -> Optional[int]:
    """Expected version from If-Match (preferred) or the body; None when the client sent neither."""
    if if_match:
        raw = if_match.strip()
        if raw.startswith("W/"):
            raw = raw[2:]
        raw = raw.strip('"')
        try:
            version = int(raw)
        except ValueError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="invalid If-Match header") from exc
        if version < 1:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="version must be >= 1")
        return version
    if payload is not None and payload.version is not None:
        if payload.version < 1:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="version must be >= 1")
        return payload.version
    return None


def _set_etag(response: Response, version: int) -> None:
    response.headers["ETag"] = f'"{version}"'


@router.post("/reservations", response_model=ReservationRead, status_code=status.HTTP_201_CREATED)
async def create_reservation(
    payload: ReservationCreate,
    response: Response,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_session),
    user: CurrentUser = Depends(get_current_user),
    policy: BookingPolicy = Depends(get_booking_policy),
    notifier: NotificationSink = Depends(get_notifier),
) -> ReservationRead:
    slot_repo = SqlAlchemySlotRepository(session)
    res_repo = SqlAlchemyReservationRepository(session)
    outbox = NotificationOutbox()
    try:
        async with session.begin():
            reservation, slot, reactivated = await reservation_usecase.create_reservation(
                slot_repo,
                res_repo,
                slot_id=payload.slot_id,
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
        action="reservation.reactivated" if reactivated else "reservation.created",
        initiator="user",
        user_id=user.id,
        reservation_id=reservation.id,
        slot_id=slot.id,
        participants=reservation.participants,
        status_to=reservation.status,
        version=reservation.version,
    )
    _set_etag(response, reservation.version)
    return ReservationRead.from_db(reservation=reservation, slot=slot)


@router.get("/me/reservations", response_model=MyReservationsRead)
async def list_my_reservations(
    scope: Literal["upcoming", "past"] = Query(default="upcoming"),
    session: AsyncSession = Depends(get_session),
    user: CurrentUser = Depends(get_current_user),
    policy: BookingPolicy = Depends(get_booking_policy),
) -> MyReservationsRead:
    result = await reservation_usecase.list_user_reservations(
        SqlAlchemyReservationRepository(session),
        SqlAlchemyEventRepository(session),
        user_id=user.id,
        scope=scope,
        policy=policy,
    )
    return MyReservationsRead.from_result(result)


@router.get("/me/reservations/{reservation_id}", response_model=ReservationRead)
async def get_my_reservation(
    response: Response,
    reservation_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    user: CurrentUser = Depends(get_current_user),
) -> ReservationRead:
    row = await reservation_usecase.get_user_reservation(
        SqlAlchemyReservationRepository(session),
        SqlAlchemySlotRepository(session),
        reservation_id=reservation_id,
        user_id=user.id,
    )
    if row is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="reservation not found")
    reservation, slot = row
    _set_etag(response, reservation.version)
    return ReservationRead.from_db(reservation=reservation, slot=slot)


@router.post("/me/reservations/{reservation_id}/cancel", response_model=ReservationRead)
async def cancel_reservation(
    response: Response,
    background_tasks: BackgroundTasks,
    reservation_id: int = Path(..., ge=1),
    payload: Optional[ReservationCancel] = None,
    if_match: Optional[str] = Header(default=None, alias="If-Match"),
    session: AsyncSession = Depends(get_session),
    user: CurrentUser = Depends(get_current_user),
    policy: BookingPolicy = Depends(get_booking_policy),
    notifier: NotificationSink = Depends(get_notifier),
) -> ReservationRead:
    version = _extract_version(if_match, payload)
    slot_repo = SqlAlchemySlotRepository(session)
    res_repo = SqlAlchemyReservationRepository(session)
    waitlist_repo = SqlAlchemyWaitlistRepository(session)
    outbox = NotificationOutbox()
    try:
        async with session.begin():
            reservation, slot, promoted = await reservation_usecase.cancel_reservation(
                slot_repo,
                res_repo,
                waitlist_repo,
                reservation_id=reservation_id,
                user_id=user.id,
                policy=policy,
                outbox=outbox,
                version=version,
            )
    except HANDLED_ERRORS as exc:
        raise to_http_exception(exc) from exc

    background_tasks.add_task(dispatch_notifications, notifier, outbox.drain())
    audit_after_commit(
        action="reservation.cancelled",
        initiator="user",
        user_id=user.id,
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
    _set_etag(response, reservation.version)
    return ReservationRead.from_db(reservation=reservation, slot=slot)
