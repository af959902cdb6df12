"""Seat assignment.

A guest holds at most one seat per table and a seat holds at most one
guest. Both rules are unique constraints on ``seats``; the checks below only
produce friendlier errors, a lost race still ends up as one of the two
conflicts.
"""

import logging
from abc import ABC, abstractmethod
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.cache.namespace import CacheNamespaceManager
from src.config.database import async_session_manager
from src.errors import (
    GuestAlreadySeatedError,
    InputValidationError,
    NotFoundError,
    SeatTakenError,
    UpstreamFailure,
)
from src.guests.repository.orm_models import Event
from src.seating.dtos import SeatDTO, TablePositionUpdate
from src.seating.repository.orm_models import Seat, SeatingTable
from src.tenants.resolvers import resolve_guest, resolve_seat, resolve_table

logger = logging.getLogger(__name__)


class SeatingWriteModel(ABC):
    @abstractmethod
    async def assign_seat(
        self, wedding_id: UUID, table_id: UUID, guest_id: UUID, seat_number: int
    ) -> SeatDTO:
        raise NotImplementedError

    @abstractmethod
    async def unassign_seat(self, wedding_id: UUID, seat_id: UUID) -> SeatDTO:
        """Clear a seat. Clearing an empty seat is a no-op."""
        raise NotImplementedError

    @abstractmethod
    async def move_table_positions(
        self, wedding_id: UUID, updates: list[TablePositionUpdate]
    ) -> int:
        """Apply every position update or none of them. Returns the number of tables moved."""
        raise NotImplementedError


class SqlSeatingWriteModel(SeatingWriteModel):
    def __init__(
        self,
        session_overwrite: AsyncSession | None = None,
        cache: CacheNamespaceManager | None = None,
    ):
        self._session_overwrite = session_overwrite
        self._cache = cache

    async def _bump(self, wedding_id: UUID) -> None:
        if self._cache:
            await self._cache.bump_after_commit(wedding_id)

    async def _seat_at(self, session: AsyncSession, table_id: UUID, seat_number: int) -> Seat | None:
        result = await session.execute(
            select(Seat).where(Seat.table_id == table_id, Seat.seat_number == seat_number)
        )
        return result.scalar_one_or_none()

    async def _seat_of(self, session: AsyncSession, table_id: UUID, guest_id: UUID) -> Seat | None:
        result = await session.execute(
            select(Seat).where(Seat.table_id == table_id, Seat.guest_id == guest_id)
        )
        return result.scalar_one_or_none()

    async def assign_seat(
        self, wedding_id: UUID, table_id: UUID, guest_id: UUID, seat_number: int
    ) -> SeatDTO:
        try:
            async with async_session_manager(session_overwrite=self._session_overwrite) as session:
                table = await resolve_table(session, wedding_id, table_id)
                guest = await resolve_guest(session, wedding_id, guest_id)
                if not 1 <= seat_number <= table.capacity:
                    raise InputValidationError(
                        f"Seat number must be between 1 and {table.capacity}"
                    )
                guest_name = guest.full_name

                seat = await self._seat_at(session, table_id, seat_number)
                if seat is not None and seat.guest_id == guest_id:
                    return SeatDTO(seat.uuid, table_id, seat_number, guest_id, guest_name)
                if seat is not None and seat.guest_id is not None:
                    raise SeatTakenError(seat_number)
                guest_seat = await self._seat_of(session, table_id, guest_id)
                if guest_seat is not None:
                    raise GuestAlreadySeatedError(guest_seat.seat_number)

                try:
                    if seat is not None:
                        seat_id = seat.uuid
                        result = await session.execute(
                            update(Seat)
                            .where(Seat.uuid == seat_id, Seat.guest_id.is_(None))
                            .values(guest_id=guest_id)
                            .execution_options(synchronize_session=False)
                        )
                        if result.rowcount != 1:
                            raise SeatTakenError(seat_number)
                    else:
                        seat = Seat(table_id=table_id, seat_number=seat_number, guest_id=guest_id)
                        session.add(seat)
                        await session.flush()
                        seat_id = seat.uuid
                except IntegrityError as e:
                    await session.rollback()
                    await self._raise_conflict(session, table_id, guest_id, seat_number, e)
        except SQLAlchemyError as e:
            raise UpstreamFailure(f"Failed to assign seat: {e}") from e

        logger.info(f"Seat {seat_number} at table {table_id} assigned to guest {guest_id}")
        await self._bump(wedding_id)
        return SeatDTO(seat_id, table_id, seat_number, guest_id, guest_name)

    async def _raise_conflict(
        self,
        session: AsyncSession,
        table_id: UUID,
        guest_id: UUID,
        seat_number: int,
        error: IntegrityError,
    ) -> None:
        """Turn a unique violation from a concurrent assignment into the matching conflict."""
        seat = await self._seat_at(session, table_id, seat_number)
        if seat is not None and seat.guest_id not in (None, guest_id):
            raise SeatTakenError(seat_number) from error
        guest_seat = await self._seat_of(session, table_id, guest_id)
        if guest_seat is not None:
            raise GuestAlreadySeatedError(guest_seat.seat_number) from error
        raise UpstreamFailure(f"Failed to assign seat: {error}") from error

    async def unassign_seat(self, wedding_id: UUID, seat_id: UUID) -> SeatDTO:
        try:
            async with async_session_manager(session_overwrite=self._session_overwrite) as session:
                seat = await resolve_seat(session, wedding_id, seat_id)
                dto = SeatDTO(seat.uuid, seat.table_id, seat.seat_number)
                if seat.guest_id is None:
                    return dto
                await session.execute(
                    update(Seat)
                    .where(Seat.uuid == seat_id)
                    .values(guest_id=None)
                    .execution_options(synchronize_session=False)
                )
        except SQLAlchemyError as e:
            raise UpstreamFailure(f"Failed to unassign seat: {e}") from e

        await self._bump(wedding_id)
        return dto

    async def move_table_positions(
        self, wedding_id: UUID, updates: list[TablePositionUpdate]
    ) -> int:
        if not updates:
            raise InputValidationError("No table positions to update")

        table_ids = {position.table_id for position in updates}
        try:
            async with async_session_manager(session_overwrite=self._session_overwrite) as session:
                owned = set(
                    (
                        await session.execute(
                            select(SeatingTable.uuid)
                            .join(Event, SeatingTable.event_id == Event.uuid)
                            .where(SeatingTable.uuid.in_(table_ids), Event.wedding_id == wedding_id)
                        )
                    )
                    .scalars()
                    .all()
                )
                if owned != table_ids:
                    raise NotFoundError("Table")

                for position in updates:
                    await session.execute(
                        update(SeatingTable)
                        .where(SeatingTable.uuid == position.table_id)
                        .values(pos_x=position.pos_x, pos_y=position.pos_y)
                        .execution_options(synchronize_session=False)
                    )
        except SQLAlchemyError as e:
            raise UpstreamFailure(f"Failed to move tables: {e}") from e

        await self._bump(wedding_id)
        return len(table_ids)
