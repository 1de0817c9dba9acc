from fastapi import APIRouter, Depends, Path, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import CurrentUser, get_booking_policy, get_current_user, get_session
from ..domain.services import BookingPolicy
from ..infrastructure.repositories import (
    SqlAlchemyReservationRepository,
    SqlAlchemySlotRepository,
    SqlAlchemyWaitlistRepository,
)
from ..schemas import WaitlistEntryRead
from ..usecases import waitlist as waitlist_usecase
from ..utils.audit_log import audit_after_commit
from .errors import HANDLED_ERRORS, to_http_exception

router = APIRouter(prefix="", tags=["waitlist"])


@router.post("/waitlist/slots/{slot_id}", response_model=WaitlistEntryRead, status_code=status.HTTP_201_CREATED)
async def join_waitlist(
    slot_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    user: CurrentUser = Depends(get_current_user),
    policy: BookingPolicy = Depends(get_booking_policy),
) -> WaitlistEntryRead:
    try:
        async with session.begin():
            entry, slot = await waitlist_usecase.join_waitlist(
                SqlAlchemySlotRepository(session),
                SqlAlchemyReservationRepository(session),
                SqlAlchemyWaitlistRepository(session),
                slot_id=slot_id,
                user_id=user.id,
                policy=policy,
            )
    except HANDLED_ERRORS as exc:
        raise to_http_exception(exc) from exc

    audit_after_commit(
        action="waitlist.joined",
        initiator="user",
        user_id=user.id,
        slot_id=slot.id,
        extra={"entry_id": entry.id, "position": entry.position},
    )
    return WaitlistEntryRead.from_db(entry=entry, slot=slot)


@router.delete("/waitlist/{entry_id}", status_code=status.HTTP_204_NO_CONTENT)
async def leave_waitlist(
    entry_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    user: CurrentUser = Depends(get_current_user),
) -> None:
    try:
        async with session.begin():
            entry = await waitlist_usecase.leave_waitlist(
                SqlAlchemySlotRepository(session),
                SqlAlchemyWaitlistRepository(session),
                entry_id=entry_id,
                user_id=user.id,
                as_admin=user.is_admin,
            )
    except HANDLED_ERRORS as exc:
        raise to_http_exception(exc) from exc

    audit_after_commit(
        action="waitlist.left",
        initiator="admin" if entry.user_id != user.id else "user",
        user_id=entry.user_id,
        actor_id=user.id,
        slot_id=entry.time_slot_id,
        extra={"entry_id": entry.id, "position": entry.position},
    )


@router.get("/me/waitlist", response_model=list[WaitlistEntryRead])
async def list_my_waitlist(
    session: AsyncSession = Depends(get_session),
    user: CurrentUser = Depends(get_current_user),
) -> list[WaitlistEntryRead]:
    rows = await waitlist_usecase.list_user_waitlist(SqlAlchemyWaitlistRepository(session), user_id=user.id)
    return [WaitlistEntryRead.from_db(entry=entry, slot=slot) for entry, slot in rows]
