from uuid import UUID

from sqlalchemy import Float, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.config.table_names import TableNames
from src.models.base import Base, TimeStamp


class SeatingTable(Base, TimeStamp):
    # Owned by the wedding through its event
    __tablename__ = TableNames.SEATING_TABLES.value

    event_id: Mapped[UUID] = mapped_column(
        ForeignKey(f"{TableNames.EVENTS.value}.uuid", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    pos_x: Mapped[float] = mapped_column(Float, default=0, nullable=False)
    pos_y: Mapped[float] = mapped_column(Float, default=0, nullable=False)

    seats: Mapped[list["Seat"]] = relationship(
        "Seat", lazy="selectin", order_by="Seat.seat_number"
    )

    def __repr__(self) -> str:
        return f"<SeatingTable {self.name} ({self.capacity})>"


class Seat(Base, TimeStamp):
    __tablename__ = TableNames.SEATS.value
    __table_args__ = (
        UniqueConstraint("table_id", "seat_number", name="uq_seats_table_seat_number"),
        UniqueConstraint("table_id", "guest_id", name="uq_seats_table_guest"),
    )

    table_id: Mapped[UUID] = mapped_column(
        ForeignKey(f"{TableNames.SEATING_TABLES.value}.uuid", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    seat_number: Mapped[int] = mapped_column(Integer, nullable=False)
    guest_id: Mapped[UUID | None] = mapped_column(
        ForeignKey(f"{TableNames.GUESTS.value}.uuid", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    def __repr__(self) -> str:
        return f"<Seat {self.seat_number} at {self.table_id}>"
