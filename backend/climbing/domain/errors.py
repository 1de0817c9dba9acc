from __future__ import annotations

from enum import StrEnum
from typing import Any


class ErrorKind(StrEnum):
    NOT_FOUND = "not_found"
    INVALID_INPUT = "invalid_input"
    CONFLICT = "conflict"
    CAPACITY_EXCEEDED = "capacity_exceeded"
    WINDOW_VIOLATION = "window_violation"
    FORBIDDEN = "forbidden"


class ReservationError(Exception):
    """Business-rule rejection. Never retried; surfaced to the caller as-is."""

    kind: ErrorKind = ErrorKind.CONFLICT
    code: str = "conflict"

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def to_detail(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "kind": self.kind.value,
            "message": self.message,
            "retryable": False,
            **self.context,
        }


# not found


class NotFoundError(ReservationError):
    kind = ErrorKind.NOT_FOUND
    code = "not_found"


class SlotNotFoundError(NotFoundError):
    code = "slot_not_found"


class EventNotFoundError(NotFoundError):
    code = "event_not_found"


class ReservationNotFoundError(NotFoundError):
    code = "reservation_not_found"


class WaitlistEntryNotFoundError(NotFoundError):
    code = "waitlist_entry_not_found"


# invalid input


class InvalidInputError(ReservationError):
    kind = ErrorKind.INVALID_INPUT
    code = "invalid_input"


# conflicts


class ConflictError(ReservationError):
    kind = ErrorKind.CONFLICT
    code = "conflict"


class DuplicateReservationError(ConflictError):
    code = "already_booked"


class AlreadyRegisteredError(ConflictError):
    code = "already_registered"


class AlreadyCancelledError(ConflictError):
    code = "already_cancelled"


class AlreadyWaitlistedError(ConflictError):
    code = "already_waitlisted"


class SpotsAvailableError(ConflictError):
    code = "spots_available"


class SlotBlockedError(ConflictError):
    code = "slot_blocked"


class EventInactiveError(ConflictError):
    code = "event_inactive"


class EventHasBookingsError(ConflictError):
    code = "event_has_bookings"


class NoActiveSlotsError(ConflictError):
    code = "no_active_slots"


class VersionConflictError(ConflictError):
    code = "version_conflict"


# capacity


class CapacityError(ReservationError):
    kind = ErrorKind.CAPACITY_EXCEEDED
    code = "capacity_exceeded"


class NoSpotsError(CapacityError):
    code = "no_spots"


class InsufficientSpotsError(CapacityError):
    code = "insufficient_spots"

    def __init__(self, *, spots_left: int, requested: int) -> None:
        super().__init__(
            f"only {spots_left} spot(s) left, {requested} requested",
            spots_left=spots_left,
            requested=requested,
        )


# booking window


class WindowViolationError(ReservationError):
    kind = ErrorKind.WINDOW_VIOLATION
    code = "window_violation"


class SlotInPastError(WindowViolationError):
    code = "slot_in_past"


class OutsideBookingWindowError(WindowViolationError):
    code = "outside_booking_window"


# ownership


class ForbiddenError(ReservationError):
    kind = ErrorKind.FORBIDDEN
    code = "forbidden"
