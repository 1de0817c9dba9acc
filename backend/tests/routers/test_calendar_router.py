from datetime import date
from typing import Any, AsyncIterator

import pytest
from climbing.deps import get_session
from climbing.routers import slots as router
from climbing.usecases.calendar import DaySummary, MonthView
from fastapi import FastAPI
from fastapi.testclient import TestClient


class DummyRepo:
    def __init__(self, session: object) -> None:  # pragma: no cover - interface only
        self.session = session


@pytest.fixture
def client(monkeypatch: pytest.MonkeyPatch) -> TestClient:
    for name in ("SqlAlchemySlotRepository", "SqlAlchemyEventRepository", "SqlAlchemyReservationRepository"):
        monkeypatch.setattr(router, name, DummyRepo)

    app = FastAPI()
    app.include_router(router.router)

    async def override_get_session() -> AsyncIterator[object]:
        yield object()

    app.dependency_overrides[get_session] = override_get_session
    return TestClient(app)


def test_month_view_parses_year_and_month(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    seen: dict[str, Any] = {}

    async def fake_month_view(*repos: DummyRepo, **kwargs: Any) -> MonthView:
        seen.update(kwargs)
        days = [
            DaySummary(day=date(2026, 2, 1), total_slots=0, available_slots=0, user_reserved=False),
            DaySummary(day=date(2026, 2, 2), total_slots=3, available_slots=1, user_reserved=False),
        ]
        return MonthView(year=2026, month=2, days=days, events=[])

    monkeypatch.setattr(router.calendar_usecase, "get_month_view", fake_month_view)

    res = client.get("/calendar/month/2026-02")
    assert res.status_code == 200
    assert (seen["year"], seen["month"], seen["user_id"]) == (2026, 2, None)
    body = res.json()
    assert body["year_month"] == "2026-02"
    assert body["days"][1] == {"day": "2026-02-02", "total_slots": 3, "available_slots": 1, "has_user_reservation": False}
    assert body["events"] == []


@pytest.mark.parametrize("value", ["2026-13", "2026-00", "2026-2", "26-02", "2026-02-01"])
def test_month_view_rejects_malformed_month(client: TestClient, value: str) -> None:
    assert client.get(f"/calendar/month/{value}").status_code == 422
