from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from src.cache.namespace import get_cache_manager
from src.errors import LifecycleError, to_http_exception
from src.seating.dtos import SeatDTO, TablePositionUpdate
from src.seating.repository.read_models import SeatingReadModel, SqlSeatingReadModel
from src.seating.repository.write_models import SeatingWriteModel, SqlSeatingWriteModel
from src.seating.urls import ASSIGN_SEAT_URL, EVENT_SEATING_URL, SEAT_URL, TABLE_POSITIONS_URL
from src.tenants.context import get_wedding_id

router = APIRouter()


class AssignSeatRequest(BaseModel):
    table_id: UUID
    guest_id: UUID
    seat_number: int


class SeatResponse(BaseModel):
    id: UUID
    table_id: UUID
    seat_number: int
    guest_id: UUID | None = None
    guest_name: str | None = None


class AssignSeatResponse(BaseModel):
    success: bool
    seat: SeatResponse


class TablePosition(BaseModel):
    id: UUID
    pos_x: float
    pos_y: float


class TablePositionsRequest(BaseModel):
    updates: list[TablePosition] = Field(min_length=1)


class MessageResponse(BaseModel):
    success: bool
    message: str


class SeatingTableResponse(BaseModel):
    id: UUID
    event_id: UUID
    name: str
    capacity: int
    pos_x: float
    pos_y: float
    seats: list[SeatResponse]


def get_seating_write_model() -> SeatingWriteModel:
    return SqlSeatingWriteModel(cache=get_cache_manager())


def get_seating_read_model() -> SeatingReadModel:
    return SqlSeatingReadModel(cache=get_cache_manager())


def _seat_response(seat: SeatDTO) -> SeatResponse:
    return SeatResponse(
        id=seat.uuid,
        table_id=seat.table_id,
        seat_number=seat.seat_number,
        guest_id=seat.guest_id,
        guest_name=seat.guest_name,
    )


@router.post(ASSIGN_SEAT_URL, response_model=AssignSeatResponse)
async def assign_seat(
    request: AssignSeatRequest,
    wedding_id: UUID = Depends(get_wedding_id),
    write_model: SeatingWriteModel = Depends(get_seating_write_model),
) -> AssignSeatResponse:
    try:
        seat = await write_model.assign_seat(
            wedding_id, request.table_id, request.guest_id, request.seat_number
        )
    except LifecycleError as e:
        raise to_http_exception(e)
    return AssignSeatResponse(success=True, seat=_seat_response(seat))


@router.delete(SEAT_URL, response_model=MessageResponse)
async def unassign_seat(
    seat_id: UUID,
    wedding_id: UUID = Depends(get_wedding_id),
    write_model: SeatingWriteModel = Depends(get_seating_write_model),
) -> MessageResponse:
    try:
        await write_model.unassign_seat(wedding_id, seat_id)
    except LifecycleError as e:
        raise to_http_exception(e)
    return MessageResponse(success=True, message="Seat assignment removed successfully")


@router.put(TABLE_POSITIONS_URL, response_model=MessageResponse)
async def update_table_positions(
    request: TablePositionsRequest,
    wedding_id: UUID = Depends(get_wedding_id),
    write_model: SeatingWriteModel = Depends(get_seating_write_model),
) -> MessageResponse:
    try:
        moved = await write_model.move_table_positions(
            wedding_id,
            [
                TablePositionUpdate(table_id=update.id, pos_x=update.pos_x, pos_y=update.pos_y)
                for update in request.updates
            ],
        )
    except LifecycleError as e:
        raise to_http_exception(e)
    return MessageResponse(success=True, message=f"{moved} table position(s) updated")


@router.get(EVENT_SEATING_URL, response_model=list[SeatingTableResponse])
async def get_event_seating(
    event_id: UUID,
    wedding_id: UUID = Depends(get_wedding_id),
    read_model: SeatingReadModel = Depends(get_seating_read_model),
) -> list[SeatingTableResponse]:
    try:
        tables = await read_model.get_event_seating(wedding_id, event_id)
    except LifecycleError as e:
        raise to_http_exception(e)
    return [
        SeatingTableResponse(
            id=table["uuid"],
            event_id=table["event_id"],
            name=table["name"],
            capacity=table["capacity"],
            pos_x=table["pos_x"],
            pos_y=table["pos_y"],
            seats=[
                SeatResponse(
                    id=seat["uuid"],
                    table_id=seat["table_id"],
                    seat_number=seat["seat_number"],
                    guest_id=seat["guest_id"],
                    guest_name=seat["guest_name"],
                )
                for seat in table["seats"]
            ],
        )
        for table in tables
    ]
