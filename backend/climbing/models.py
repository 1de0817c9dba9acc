from __future__ import annotations

from datetime import date, datetime, time
from enum import StrEnum
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, Enum, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql.sqltypes import BigInteger, Date, DateTime, Integer, String, Time


class Base(DeclarativeBase):
    pass


def _enum(enum_cls: type[StrEnum]) -> Enum:
    return Enum(
        enum_cls,
        values_callable=lambda cls: [e.value for e in cls],
        native_enum=False,
    )


class UserRole(StrEnum):
    USER = "user"
    ADMIN = "admin"


class EventType(StrEnum):
    COURSE = "course"
    TRAINING = "training"
    WORKSHOP = "workshop"


class ReservationStatus(StrEnum):
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class CancelledBy(StrEnum):
    USER = "user"
    ADMIN = "admin"


class User(Base):
    __tablename__ = "users"
    __table_args__ = (UniqueConstraint("email", name="uq_users_email"),)

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    role: Mapped[UserRole] = mapped_column(_enum(UserRole), nullable=False, default=UserRole.USER)
    email_notifications_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    preferred_language: Mapped[str] = mapped_column(String(5), nullable=False, default="pl")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


class Event(Base):
    __tablename__ = "events"
    __table_args__ = (
        CheckConstraint("start_date <= end_date", name="chk_events_dates"),
        CheckConstraint("max_participants >= 1", name="chk_events_capacity"),
        Index("idx_events_dates", "start_date", "end_date"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(2000), nullable=True)
    location: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    event_type: Mapped[EventType] = mapped_column(_enum(EventType), nullable=False, default=EventType.COURSE)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    start_time: Mapped[Optional[time]] = mapped_column(Time, nullable=True)
    end_time: Mapped[Optional[time]] = mapped_column(Time, nullable=True)
    max_participants: Mapped[int] = mapped_column(Integer, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)

    slots: Mapped[list["TimeSlot"]] = relationship(back_populates="event", passive_deletes=True)

    @property
    def is_multi_day(self) -> bool:
        return self.end_date > self.start_date


class TimeSlot(Base):
    __tablename__ = "time_slots"
    __table_args__ = (
        CheckConstraint("start_time < end_time", name="chk_slots_time"),
        CheckConstraint("max_participants >= 1", name="chk_slots_capacity"),
        Index("idx_slots_date", "slot_date"),
        Index("idx_slots_event", "event_id"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    event_id: Mapped[Optional[int]] = mapped_column(ForeignKey("events.id", ondelete="SET NULL"), nullable=True)
    slot_date: Mapped[date] = mapped_column(Date, nullable=False)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)
    max_participants: Mapped[int] = mapped_column(Integer, nullable=False)
    title: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    blocked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    block_reason: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)

    event: Mapped[Optional["Event"]] = relationship(back_populates="slots")
    reservations: Mapped[list["Reservation"]] = relationship(back_populates="slot", passive_deletes=True)
    waitlist_entries: Mapped[list["WaitlistEntry"]] = relationship(back_populates="slot", passive_deletes=True)

    @property
    def starts_at(self) -> datetime:
        return datetime.combine(self.slot_date, self.start_time)

    @property
    def ends_at(self) -> datetime:
        return datetime.combine(self.slot_date, self.end_time)

    @property
    def belongs_to_event(self) -> bool:
        return self.event_id is not None

    def block(self, reason: str | None) -> None:
        self.blocked = True
        self.block_reason = reason

    def unblock(self) -> None:
        self.blocked = False
        self.block_reason = None


class Reservation(Base):
    __tablename__ = "reservations"
    __table_args__ = (
        CheckConstraint("participants >= 1", name="chk_res_participants"),
        UniqueConstraint("user_id", "time_slot_id", name="uq_res_user_slot"),
        Index("idx_res_slot", "time_slot_id"),
        Index("idx_res_user", "user_id"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    time_slot_id: Mapped[int] = mapped_column(ForeignKey("time_slots.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    participants: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    comment: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    status: Mapped[ReservationStatus] = mapped_column(
        _enum(ReservationStatus),
        nullable=False,
        default=ReservationStatus.CONFIRMED,
    )
    cancelled_by: Mapped[Optional[CancelledBy]] = mapped_column(_enum(CancelledBy), nullable=True)
    cancelled_by_user_id: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)

    slot: Mapped["TimeSlot"] = relationship(back_populates="reservations")

    @property
    def is_confirmed(self) -> bool:
        return self.status == ReservationStatus.CONFIRMED

    @property
    def is_cancelled(self) -> bool:
        return self.status == ReservationStatus.CANCELLED

    @property
    def is_cancelled_by_admin(self) -> bool:
        return self.is_cancelled and self.cancelled_by == CancelledBy.ADMIN

    @property
    def display_status(self) -> str:
        """CONFIRMED, CANCELLED or CANCELLED_BY_ADMIN, as shown in history views."""
        if self.is_cancelled_by_admin:
            return "CANCELLED_BY_ADMIN"
        return self.status.value.upper()


class WaitlistEntry(Base):
    __tablename__ = "waitlist"
    __table_args__ = (
        CheckConstraint("position >= 1", name="chk_waitlist_position"),
        UniqueConstraint("user_id", "time_slot_id", name="uq_waitlist_user_slot"),
        Index("idx_waitlist_slot_position", "time_slot_id", "position"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    time_slot_id: Mapped[int] = mapped_column(ForeignKey("time_slots.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    notified_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)

    slot: Mapped["TimeSlot"] = relationship(back_populates="waitlist_entries")

    @property
    def was_notified(self) -> bool:
        return self.notified_at is not None
