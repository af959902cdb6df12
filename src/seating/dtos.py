from dataclasses import dataclass, field
from uuid import UUID


@dataclass(frozen=True)
class SeatDTO:
    uuid: UUID
    table_id: UUID
    seat_number: int
    guest_id: UUID | None = None
    guest_name: str | None = None


@dataclass(frozen=True)
class TableDTO:
    uuid: UUID
    event_id: UUID
    name: str
    capacity: int
    pos_x: float
    pos_y: float
    seats: list[SeatDTO] = field(default_factory=list)


@dataclass(frozen=True)
class TablePositionUpdate:
    table_id: UUID
    pos_x: float
    pos_y: float
