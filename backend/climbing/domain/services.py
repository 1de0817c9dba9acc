from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import StrEnum
from typing import Callable, Iterable, Mapping
from zoneinfo import ZoneInfo

from ..utils.time import local_now
from .errors import (
    DuplicateReservationError,
    InsufficientSpotsError,
    InvalidInputError,
    NoSpotsError,
    OutsideBookingWindowError,
    SlotBlockedError,
    SlotInPastError,
)

DEFAULT_BOOKING_WINDOW_HOURS = 12
DEFAULT_COMMENT_MAX_LENGTH = 500


class SlotAvailability(StrEnum):
    AVAILABLE = "AVAILABLE"
    FULL = "FULL"
    BLOCKED = "BLOCKED"
    BOOKING_CLOSED = "BOOKING_CLOSED"
    PAST = "PAST"


@dataclass(frozen=True)
class BookingPolicy:
    """
    Online booking and cancellation rules.

    A slot is bookable online while its start lies at or beyond `now + window_hours`.
    `clock` returns naive local wall-clock time, the same representation slots use.
    """

    window_hours: int = DEFAULT_BOOKING_WINDOW_HOURS
    comment_max_length: int = DEFAULT_COMMENT_MAX_LENGTH
    clock: Callable[[], datetime] = field(default=lambda: local_now(ZoneInfo("Europe/Warsaw")))

    def now(self) -> datetime:
        return self.clock()

    def cutoff(self, now: datetime) -> datetime:
        return now + timedelta(hours=self.window_hours)

    def is_past(self, starts_at: datetime, now: datetime) -> bool:
        return starts_at < now

    def is_within_booking_window(self, starts_at: datetime, now: datetime) -> bool:
        return starts_at >= self.cutoff(now)

    def check_window(self, starts_at: datetime, now: datetime) -> None:
        if not self.is_within_booking_window(starts_at, now):
            raise OutsideBookingWindowError(
                f"online booking closes {self.window_hours}h before start",
                window_hours=self.window_hours,
                closes_at=(starts_at - timedelta(hours=self.window_hours)).isoformat(),
            )

    def sanitize_comment(self, comment: str | None) -> str | None:
        if comment is None or not comment.strip():
            return None
        return comment[: self.comment_max_length]


@dataclass(frozen=True)
class SlotSnapshot:
    starts_at: datetime
    blocked: bool
    max_participants: int
    reserved: int
    user_has_confirmed_reservation: bool


def validate_participants(participants: int) -> None:
    if participants < 1:
        raise InvalidInputError("participants must be at least 1", participants=participants)


def check_capacity(max_participants: int, reserved: int, *, requested: int) -> int:
    """Return spots left after taking `requested` seats, or raise a capacity error."""
    remaining = spots_left(max_participants, reserved)
    if remaining <= 0:
        raise NoSpotsError("no spots left", spots_left=0, requested=requested)
    if requested > remaining:
        raise InsufficientSpotsError(spots_left=remaining, requested=requested)
    return remaining - requested


def validate_reservation(snapshot: SlotSnapshot, *, participants: int, policy: BookingPolicy, now: datetime) -> int:
    """
    Pure validation of a single-slot booking against a locked snapshot.
    Returns spots left after booking if OK. Raises domain errors otherwise.
    """
    validate_participants(participants)
    if policy.is_past(snapshot.starts_at, now):
        raise SlotInPastError("slot has already started", starts_at=snapshot.starts_at.isoformat())
    if snapshot.blocked:
        raise SlotBlockedError("slot is blocked")
    policy.check_window(snapshot.starts_at, now)
    if snapshot.user_has_confirmed_reservation:
        raise DuplicateReservationError("user already has a confirmed reservation for this slot")
    return check_capacity(snapshot.max_participants, snapshot.reserved, requested=participants)


def spots_left(max_participants: int, reserved: int) -> int:
    return max_participants - reserved


def is_full(max_participants: int, reserved: int) -> bool:
    return spots_left(max_participants, reserved) <= 0


def event_participants(counts: Mapping[int, int] | Iterable[int]) -> int:
    """The busiest day decides how full a multi-day event is: the same people attend every day."""
    values = counts.values() if isinstance(counts, Mapping) else counts
    return max(values, default=0)


def determine_availability(
    starts_at: datetime,
    *,
    blocked: bool,
    max_participants: int,
    reserved: int,
    policy: BookingPolicy,
    now: datetime,
) -> SlotAvailability:
    if policy.is_past(starts_at, now):
        return SlotAvailability.PAST
    if blocked:
        return SlotAvailability.BLOCKED
    if is_full(max_participants, reserved):
        return SlotAvailability.FULL
    if not policy.is_within_booking_window(starts_at, now):
        return SlotAvailability.BOOKING_CLOSED
    return SlotAvailability.AVAILABLE

