from datetime import date, datetime, time
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_serializer

from .domain.services import SlotAvailability
from .models import Event, EventType, Reservation, TimeSlot, User, WaitlistEntry
from .usecases.calendar import DayView, EventSummary, MonthView, SlotView
from .usecases.capacity import Occupancy
from .usecases.reservations import EventReservationGroup, UserReservations
from .usecases.roster import BookingRow


class _SlotTimes(BaseModel):
    slot_date: date
    start_time: time
    end_time: time

    @field_serializer("start_time", "end_time")
    def _ser_time(self, value: time) -> str:
        return value.strftime("%H:%M")


class SlotCreate(BaseModel):
    slot_date: date
    start_time: time
    end_time: time
    max_participants: int = Field(ge=1)
    title: Optional[str] = Field(default=None, max_length=200)
    event_id: Optional[int] = None


class SlotUpdate(BaseModel):
    slot_date: Optional[date] = None
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    max_participants: Optional[int] = Field(default=None, ge=1)
    title: Optional[str] = Field(default=None, max_length=200)


class SlotBlock(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=255)


class SlotRead(_SlotTimes):
    slot_id: int
    max_participants: int
    title: Optional[str]
    event_id: Optional[int]
    blocked: bool
    block_reason: Optional[str]

    @classmethod
    def from_db(cls, *, slot: TimeSlot, event_title: Optional[str] = None) -> "SlotRead":
        return cls(
            slot_id=slot.id,
            slot_date=slot.slot_date,
            start_time=slot.start_time,
            end_time=slot.end_time,
            max_participants=slot.max_participants,
            title=slot.title or event_title,
            event_id=slot.event_id,
            blocked=slot.blocked,
            block_reason=slot.block_reason,
        )


class SlotAdminActionRead(BaseModel):
    slot: SlotRead
    cancelled_reservations: int


class SlotDetailRead(_SlotTimes):
    slot_id: int
    title: Optional[str]
    event_id: Optional[int]
    max_participants: int
    current_participants: int
    status: SlotAvailability
    is_user_registered: bool
    reservation_id: Optional[int] = None

    @classmethod
    def from_view(cls, view: SlotView, *, event_title: Optional[str] = None) -> "SlotDetailRead":
        slot = view.slot
        return cls(
            slot_id=slot.id,
            slot_date=slot.slot_date,
            start_time=slot.start_time,
            end_time=slot.end_time,
            title=slot.title or event_title,
            event_id=slot.event_id,
            max_participants=slot.max_participants,
            current_participants=view.confirmed,
            status=view.status,
            is_user_registered=view.user_registered,
            reservation_id=view.reservation_id,
        )


class OccupancyRead(BaseModel):
    slot_id: int
    max_participants: int
    confirmed: int
    spots_left: int
    full: bool

    @classmethod
    def from_occupancy(cls, occupancy: Occupancy) -> "OccupancyRead":
        return cls(
            slot_id=occupancy.slot_id,
            max_participants=occupancy.max_participants,
            confirmed=occupancy.confirmed,
            spots_left=occupancy.spots_left,
            full=occupancy.full,
        )


class EventCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=2000)
    location: Optional[str] = Field(default=None, max_length=255)
    event_type: EventType = EventType.COURSE
    start_date: date
    end_date: date
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    max_participants: int = Field(ge=1)


class EventUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=2000)
    location: Optional[str] = Field(default=None, max_length=255)
    event_type: Optional[EventType] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    max_participants: Optional[int] = Field(default=None, ge=1)
    active: Optional[bool] = None


class EventRead(BaseModel):
    event_id: int
    title: str
    description: Optional[str]
    location: Optional[str]
    event_type: EventType
    start_date: date
    end_date: date
    start_time: Optional[time]
    end_time: Optional[time]
    is_multi_day: bool
    max_participants: int
    active: bool

    @classmethod
    def from_db(cls, *, event: Event) -> "EventRead":
        return cls(
            event_id=event.id,
            title=event.title,
            description=event.description,
            location=event.location,
            event_type=event.event_type,
            start_date=event.start_date,
            end_date=event.end_date,
            start_time=event.start_time,
            end_time=event.end_time,
            is_multi_day=event.is_multi_day,
            max_participants=event.max_participants,
            active=event.active,
        )


class EventDetailsRead(EventRead):
    current_participants: int
    slots: list[OccupancyRead]


class EventSummaryRead(EventRead):
    current_participants: int
    is_user_registered: bool
    enrollment_open: bool

    @classmethod
    def from_summary(cls, summary: EventSummary) -> "EventSummaryRead":
        base = EventRead.from_db(event=summary.event)
        return cls(
            **base.model_dump(),
            current_participants=summary.current_participants,
            is_user_registered=summary.user_registered,
            enrollment_open=summary.enrollment_open,
        )


class EventDeleteRead(BaseModel):
    event_id: int
    cancelled_reservations: int


class DayViewRead(BaseModel):
    day: date
    slots: list[SlotDetailRead]
    events: list[EventSummaryRead]

    @classmethod
    def from_view(cls, view: DayView) -> "DayViewRead":
        return cls(
            day=view.day,
            slots=[SlotDetailRead.from_view(slot) for slot in view.slots],
            events=[EventSummaryRead.from_summary(summary) for summary in view.events],
        )


class DaySummaryRead(BaseModel):
    day: date
    total_slots: int
    available_slots: int
    has_user_reservation: bool


class MonthViewRead(BaseModel):
    year_month: str
    days: list[DaySummaryRead]
    events: list[EventSummaryRead]

    @classmethod
    def from_view(cls, view: MonthView) -> "MonthViewRead":
        return cls(
            year_month=view.year_month,
            days=[
                DaySummaryRead(
                    day=day.day,
                    total_slots=day.total_slots,
                    available_slots=day.available_slots,
                    has_user_reservation=day.user_reserved,
                )
                for day in view.days
            ],
            events=[EventSummaryRead.from_summary(summary) for summary in view.events],
        )


class ReservationCreate(BaseModel):
    slot_id: int
    participants: int = Field(default=1, ge=1)
    comment: Optional[str] = None


class ReservationCancel(BaseModel):
    version: Optional[int] = Field(default=None, ge=1)


class EventReservationCreate(BaseModel):
    participants: int = Field(default=1, ge=1)
    comment: Optional[str] = None


class ReservationRead(_SlotTimes):
    reservation_id: int
    slot_id: int
    user_id: int
    participants: int
    comment: Optional[str]
    status: Literal["CONFIRMED", "CANCELLED", "CANCELLED_BY_ADMIN"]
    version: int
    title: Optional[str] = None
    event_id: Optional[int] = None
    created_at: datetime

    @classmethod
    def from_db(cls, *, reservation: Reservation, slot: TimeSlot, event_title: Optional[str] = None) -> "ReservationRead":
        return cls(
            reservation_id=reservation.id,
            slot_id=reservation.time_slot_id,
            user_id=reservation.user_id,
            participants=reservation.participants,
            comment=reservation.comment,
            status=reservation.display_status,  # type: ignore[arg-type]
            version=reservation.version,
            slot_date=slot.slot_date,
            start_time=slot.start_time,
            end_time=slot.end_time,
            title=slot.title or event_title,
            event_id=slot.event_id,
            created_at=reservation.created_at,
        )


class EventReservationRead(BaseModel):
    event_id: int
    slots_reserved: int
    reservation_ids: list[int]


class EventCancelRead(BaseModel):
    event_id: int
    slots_cancelled: int


class EventReservationGroupRead(BaseModel):
    event_id: int
    title: str
    start_date: date
    end_date: date
    participants: int
    status: str
    reservations: list[ReservationRead]

    @classmethod
    def from_group(cls, group: EventReservationGroup) -> "EventReservationGroupRead":
        first = group.first
        return cls(
            event_id=group.event.id,
            title=group.event.title,
            start_date=group.event.start_date,
            end_date=group.event.end_date,
            participants=first.participants,
            status=first.display_status,
            reservations=[
                ReservationRead.from_db(reservation=res, slot=slot, event_title=group.event.title)
                for res, slot in group.reservations
            ],
        )


class MyReservationsRead(BaseModel):
    slots: list[ReservationRead]
    events: list[EventReservationGroupRead]

    @classmethod
    def from_result(cls, result: UserReservations) -> "MyReservationsRead":
        return cls(
            slots=[ReservationRead.from_db(reservation=res, slot=slot) for res, slot in result.standalone],
            events=[EventReservationGroupRead.from_group(group) for group in result.events],
        )


class WaitlistEntryRead(_SlotTimes):
    entry_id: int
    slot_id: int
    position: int
    notified: bool
    title: Optional[str] = None

    @classmethod
    def from_db(cls, *, entry: WaitlistEntry, slot: TimeSlot) -> "WaitlistEntryRead":
        return cls(
            entry_id=entry.id,
            slot_id=entry.time_slot_id,
            position=entry.position,
            notified=entry.was_notified,
            slot_date=slot.slot_date,
            start_time=slot.start_time,
            end_time=slot.end_time,
            title=slot.title,
        )


class ParticipantRead(BaseModel):
    reservation_id: int
    user_id: int
    full_name: str
    email: str
    phone: Optional[str]
    participants: int
    comment: Optional[str]
    created_at: datetime

    @classmethod
    def from_db(cls, *, reservation: Reservation, user: User) -> "ParticipantRead":
        return cls(
            reservation_id=reservation.id,
            user_id=user.id,
            full_name=user.full_name,
            email=user.email,
            phone=user.phone,
            participants=reservation.participants,
            comment=reservation.comment,
            created_at=reservation.created_at,
        )


class BookingAdminRead(_SlotTimes):
    reservation_id: int
    slot_id: int
    user_id: int
    full_name: str
    email: str
    phone: Optional[str]
    title: Optional[str]
    comment: Optional[str]
    participants: int
    event_id: Optional[int]
    event_start_date: Optional[date]
    event_end_date: Optional[date]

    @classmethod
    def from_row(cls, row: BookingRow) -> "BookingAdminRead":
        event = row.event
        return cls(
            reservation_id=row.reservation.id,
            slot_id=row.slot.id,
            user_id=row.user.id,
            full_name=row.user.full_name,
            email=row.user.email,
            phone=row.user.phone,
            slot_date=row.slot.slot_date,
            start_time=row.slot.start_time,
            end_time=row.slot.end_time,
            title=row.slot.title or (event.title if event is not None else None),
            comment=row.reservation.comment,
            participants=row.reservation.participants,
            event_id=row.slot.event_id,
            event_start_date=event.start_date if event is not None else None,
            event_end_date=event.end_date if event is not None else None,
        )
