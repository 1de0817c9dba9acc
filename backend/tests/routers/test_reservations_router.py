from datetime import datetime, time, timedelta
from typing import Any, cast

import pytest
from climbing.domain.errors import NoSpotsError, VersionConflictError
from climbing.domain.notifications import NotificationType
from climbing.models import CancelledBy, Reservation, ReservationStatus, TimeSlot, WaitlistEntry
from climbing.routers import reservations as router
from climbing.schemas import ReservationCancel, ReservationCreate, ReservationRead
from climbing.utils import audit_log
from fastapi import BackgroundTasks, HTTPException, Response
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession


class DummySession:
    async def __aenter__(self) -> "DummySession":
        return self

    async def __aexit__(self, exc_type: object, exc: object, tb: object) -> bool:
        return False

    def begin(self) -> "DummySession":
        return self


class DummyUser:
    id = 200
    is_admin = False


def _slot(slot_id: int = 1) -> TimeSlot:
    day = datetime.now().date() + timedelta(days=2)
    return TimeSlot(
        id=slot_id,
        event_id=None,
        slot_date=day,
        start_time=time(10, 0),
        end_time=time(12, 0),
        max_participants=4,
        title="Top rope",
        blocked=False,
        block_reason=None,
    )


def _reservation(
    slot_id: int = 1,
    status: ReservationStatus = ReservationStatus.CONFIRMED,
    version: int = 1,
) -> Reservation:
    now = datetime.now()
    return Reservation(
        id=100,
        time_slot_id=slot_id,
        user_id=200,
        participants=2,
        comment=None,
        status=status,
        cancelled_by=CancelledBy.USER if status == ReservationStatus.CANCELLED else None,
        cancelled_by_user_id=None,
        version=version,
        created_at=now,
        updated_at=now,
    )


@pytest.fixture
def audit_calls(monkeypatch: pytest.MonkeyPatch) -> list[dict[str, Any]]:
    calls: list[dict[str, Any]] = []

    def fake_emit(**kwargs: Any) -> None:
        calls.append(kwargs)

    monkeypatch.setattr(audit_log, "emit_audit_log", fake_emit)
    monkeypatch.setattr(router, "SqlAlchemySlotRepository", lambda s: s)  # type: ignore[assignment]
    monkeypatch.setattr(router, "SqlAlchemyReservationRepository", lambda s: s)  # type: ignore[assignment]
    monkeypatch.setattr(router, "SqlAlchemyWaitlistRepository", lambda s: s)  # type: ignore[assignment]
    return calls


async def _create(payload: ReservationCreate, response: Response, tasks: BackgroundTasks) -> ReservationRead:
    return await router.create_reservation(
        payload=payload,
        response=response,
        background_tasks=tasks,
        session=cast(AsyncSession, DummySession()),
        user=DummyUser(),  # type: ignore[arg-type]
        policy=None,  # type: ignore[arg-type]
        notifier=None,  # type: ignore[arg-type]
    )


async def _cancel(reservation_id: int, **kwargs: Any) -> ReservationRead:
    return await router.cancel_reservation(
        response=kwargs.pop("response", Response()),
        background_tasks=kwargs.pop("background_tasks", BackgroundTasks()),
        reservation_id=reservation_id,
        session=cast(AsyncSession, DummySession()),
        user=DummyUser(),  # type: ignore[arg-type]
        policy=None,  # type: ignore[arg-type]
        notifier=None,  # type: ignore[arg-type]
        **kwargs,
    )


@pytest.mark.asyncio
async def test_create_reservation_emits_audit_and_schedules_notifications(
    monkeypatch: pytest.MonkeyPatch, audit_calls: list[dict[str, Any]]
) -> None:
    slot = _slot()
    reservation = _reservation()

    async def fake_create_reservation(*args: object, **kwargs: Any) -> tuple[Reservation, TimeSlot, bool]:
        kwargs["outbox"].notify_user_and_admin(
            NotificationType.RESERVATION_CONFIRMED, user_id=reservation.user_id, slot_id=slot.id
        )
        return reservation, slot, False

    monkeypatch.setattr(router.reservation_usecase, "create_reservation", fake_create_reservation)

    response = Response()
    tasks = BackgroundTasks()
    result = await _create(ReservationCreate(slot_id=slot.id, participants=2), response, tasks)

    assert result.reservation_id == reservation.id
    assert result.status == "CONFIRMED"
    assert result.title == "Top rope"
    assert response.headers["ETag"] == '"1"'
    assert len(tasks.tasks) == 1
    assert len(tasks.tasks[0].args[1]) == 2
    assert len(audit_calls) == 1
    assert audit_calls[0]["action"] == "reservation.created"
    assert audit_calls[0]["reservation_id"] == reservation.id


@pytest.mark.asyncio
async def test_reactivation_is_audited_as_such(monkeypatch: pytest.MonkeyPatch, audit_calls: list[dict[str, Any]]) -> None:
    slot = _slot()
    reservation = _reservation(version=3)

    async def fake_create_reservation(*args: object, **kwargs: object) -> tuple[Reservation, TimeSlot, bool]:
        return reservation, slot, True

    monkeypatch.setattr(router.reservation_usecase, "create_reservation", fake_create_reservation)

    await _create(ReservationCreate(slot_id=slot.id), Response(), BackgroundTasks())
    assert audit_calls[0]["action"] == "reservation.reactivated"
    assert audit_calls[0]["version"] == 3


@pytest.mark.asyncio
async def test_create_reservation_maps_capacity_error_to_409(
    monkeypatch: pytest.MonkeyPatch, audit_calls: list[dict[str, Any]]
) -> None:
    async def fake_create_reservation(*args: object, **kwargs: object) -> tuple[Reservation, TimeSlot, bool]:
        raise NoSpotsError("no spots left", slot_id=1)

    monkeypatch.setattr(router.reservation_usecase, "create_reservation", fake_create_reservation)

    tasks = BackgroundTasks()
    with pytest.raises(HTTPException) as excinfo:
        await _create(ReservationCreate(slot_id=1), Response(), tasks)
    assert excinfo.value.status_code == 409
    assert excinfo.value.detail["kind"] == "capacity_exceeded"  # type: ignore[index]
    assert tasks.tasks == []
    assert audit_calls == []


@pytest.mark.asyncio
async def test_lock_timeout_returns_retryable_503(monkeypatch: pytest.MonkeyPatch, audit_calls: list[dict[str, Any]]) -> None:
    async def fake_create_reservation(*args: object, **kwargs: object) -> tuple[Reservation, TimeSlot, bool]:
        raise OperationalError("SELECT ... FOR UPDATE", None, Exception("Lock wait timeout exceeded"))

    monkeypatch.setattr(router.reservation_usecase, "create_reservation", fake_create_reservation)

    with pytest.raises(HTTPException) as excinfo:
        await _create(ReservationCreate(slot_id=1), Response(), BackgroundTasks())
    assert excinfo.value.status_code == 503
    assert excinfo.value.headers == {"Retry-After": "1"}
    assert excinfo.value.detail["retryable"] is True  # type: ignore[index]


@pytest.mark.asyncio
async def test_cancel_passes_if_match_version_and_audits_promotion(
    monkeypatch: pytest.MonkeyPatch, audit_calls: list[dict[str, Any]]
) -> None:
    slot = _slot()
    reservation = _reservation(status=ReservationStatus.CANCELLED, version=2)
    promoted = WaitlistEntry(id=7, time_slot_id=slot.id, user_id=300, position=1, notified_at=datetime.now())
    seen: dict[str, Any] = {}

    async def fake_cancel(*args: object, **kwargs: Any) -> tuple[Reservation, TimeSlot, WaitlistEntry]:
        seen.update(kwargs)
        return reservation, slot, promoted

    monkeypatch.setattr(router.reservation_usecase, "cancel_reservation", fake_cancel)

    response = Response()
    result = await _cancel(reservation.id, payload=ReservationCancel(version=9), if_match='"1"', response=response)

    assert seen["version"] == 1
    assert seen["user_id"] == DummyUser.id
    assert result.status == "CANCELLED"
    assert response.headers["ETag"] == '"2"'
    assert [c["action"] for c in audit_calls] == ["reservation.cancelled", "waitlist.promoted"]
    assert audit_calls[1]["user_id"] == 300


@pytest.mark.asyncio
async def test_cancel_audit_failure_does_not_fail_request(
    monkeypatch: pytest.MonkeyPatch, audit_calls: list[dict[str, Any]]
) -> None:
    slot = _slot()
    reservation = _reservation(status=ReservationStatus.CANCELLED, version=2)

    async def fake_cancel(*args: object, **kwargs: object) -> tuple[Reservation, TimeSlot, None]:
        return reservation, slot, None

    def failing_emit(**kwargs: Any) -> None:
        raise RuntimeError("fail log")

    monkeypatch.setattr(router.reservation_usecase, "cancel_reservation", fake_cancel)
    monkeypatch.setattr(audit_log, "emit_audit_log", failing_emit)

    result = await _cancel(reservation.id, payload=None, if_match=None)
    assert result.reservation_id == reservation.id


@pytest.mark.asyncio
async def test_cancel_version_conflict_maps_to_409(
    monkeypatch: pytest.MonkeyPatch, audit_calls: list[dict[str, Any]]
) -> None:
    async def fake_cancel(*args: object, **kwargs: object) -> tuple[Reservation, TimeSlot, None]:
        raise VersionConflictError("version mismatch", current_version=2)

    monkeypatch.setattr(router.reservation_usecase, "cancel_reservation", fake_cancel)

    with pytest.raises(HTTPException) as excinfo:
        await _cancel(100, payload=ReservationCancel(version=1), if_match=None)
    assert excinfo.value.status_code == 409
    assert excinfo.value.detail["code"] == "version_conflict"  # type: ignore[index]
