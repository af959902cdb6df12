from datetime import datetime
from uuid import UUID

from sqlalchemy import DateTime, Enum, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.config.table_names import TableNames
from src.guests.dtos import CheckInMethod, InvitationEventStatus
from src.models.base import Base, TimeStamp, utc_now


class Guest(Base, TimeStamp):
    __tablename__ = TableNames.GUESTS.value
    __table_args__ = (UniqueConstraint("wedding_id", "invite_code", name="uq_guests_invite_code"),)

    wedding_id: Mapped[UUID] = mapped_column(
        ForeignKey(f"{TableNames.WEDDINGS.value}.uuid", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    first_name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    last_name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    # Short guest-facing code used for manual check-in
    invite_code: Mapped[str | None] = mapped_column(String(16), nullable=True)
    household_id: Mapped[UUID | None] = mapped_column(nullable=True, index=True)
    # Party size cap for this guest, None means the wedding-wide maximum
    total_guests: Mapped[int | None] = mapped_column(Integer, nullable=True)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def __repr__(self) -> str:
        return f"<Guest {self.full_name}>"


class Event(Base, TimeStamp):
    __tablename__ = TableNames.EVENTS.value

    wedding_id: Mapped[UUID] = mapped_column(
        ForeignKey(f"{TableNames.WEDDINGS.value}.uuid", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    starts_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    venue: Mapped[str | None] = mapped_column(String(500), nullable=True)
    address: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<Event {self.name} on {self.starts_at}>"


class Invitation(Base, TimeStamp):
    __tablename__ = TableNames.INVITATIONS.value

    wedding_id: Mapped[UUID] = mapped_column(
        ForeignKey(f"{TableNames.WEDDINGS.value}.uuid", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    guest_id: Mapped[UUID] = mapped_column(
        ForeignKey(f"{TableNames.GUESTS.value}.uuid", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    token: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)

    guest: Mapped[Guest] = relationship(Guest, lazy="joined")
    events: Mapped[list["InvitationEvent"]] = relationship(
        "InvitationEvent", back_populates="invitation", lazy="selectin"
    )

    def __repr__(self) -> str:
        return f"<Invitation {self.token}>"


class InvitationEvent(Base, TimeStamp):
    __tablename__ = TableNames.INVITATION_EVENTS.value
    __table_args__ = (
        UniqueConstraint("invitation_id", "event_id", name="uq_invitation_events_pair"),
    )

    invitation_id: Mapped[UUID] = mapped_column(
        ForeignKey(f"{TableNames.INVITATIONS.value}.uuid", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    event_id: Mapped[UUID] = mapped_column(
        ForeignKey(f"{TableNames.EVENTS.value}.uuid", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    status: Mapped[InvitationEventStatus] = mapped_column(
        Enum(
            InvitationEventStatus,
            name="invitation_event_status_enum",
            values_callable=lambda x: [e.value for e in x],
        ),
        default=InvitationEventStatus.INVITED,
        nullable=False,
    )
    headcount: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    invitation: Mapped[Invitation] = relationship(Invitation, back_populates="events")
    event: Mapped[Event] = relationship(Event, lazy="joined")

    def __repr__(self) -> str:
        return f"<InvitationEvent {self.invitation_id}/{self.event_id} {self.status}>"


class Attendance(Base, TimeStamp):
    """Existence of the row is the checked-in state."""

    __tablename__ = TableNames.ATTENDANCE.value

    invitation_event_id: Mapped[UUID] = mapped_column(
        ForeignKey(f"{TableNames.INVITATION_EVENTS.value}.uuid", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    wedding_id: Mapped[UUID] = mapped_column(
        ForeignKey(f"{TableNames.WEDDINGS.value}.uuid", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    checked_in_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    checked_in_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    method: Mapped[CheckInMethod] = mapped_column(
        Enum(
            CheckInMethod,
            name="check_in_method_enum",
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<Attendance {self.invitation_event_id} at {self.checked_in_at}>"
