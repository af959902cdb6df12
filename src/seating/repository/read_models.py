import abc
from dataclasses import asdict
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.cache.namespace import CacheNamespaceManager
from src.config.database import async_session_manager
from src.errors import UpstreamFailure
from src.guests.repository.orm_models import Guest
from src.seating.dtos import SeatDTO, TableDTO
from src.seating.repository.orm_models import SeatingTable
from src.tenants.resolvers import resolve_event


class SeatingReadModel(abc.ABC):
    @abc.abstractmethod
    async def get_event_seating(self, wedding_id: UUID, event_id: UUID) -> list[dict]:
        """Seating chart of one event: tables with their seats and occupants."""
        raise NotImplementedError


class SqlSeatingReadModel(SeatingReadModel):
    def __init__(
        self,
        session_overwrite: AsyncSession | None = None,
        cache: CacheNamespaceManager | None = None,
    ):
        self._session_overwrite = session_overwrite
        self._cache = cache

    async def get_event_seating(self, wedding_id: UUID, event_id: UUID) -> list[dict]:
        async def fetch() -> list[dict]:
            return [asdict(table) for table in await self._load(wedding_id, event_id)]

        if self._cache is None:
            return await fetch()
        return await self._cache.cached(wedding_id, f"seating:event:{event_id}", fetch)

    async def _load(self, wedding_id: UUID, event_id: UUID) -> list[TableDTO]:
        try:
            async with async_session_manager(session_overwrite=self._session_overwrite) as session:
                await resolve_event(session, wedding_id, event_id)
                tables = (
                    (
                        await session.execute(
                            select(SeatingTable)
                            .where(SeatingTable.event_id == event_id)
                            .order_by(SeatingTable.name)
                        )
                    )
                    .scalars()
                    .all()
                )
                guest_ids = {seat.guest_id for table in tables for seat in table.seats if seat.guest_id}
                names = {}
                if guest_ids:
                    guests = await session.execute(
                        select(Guest).where(Guest.uuid.in_(guest_ids), Guest.wedding_id == wedding_id)
                    )
                    names = {guest.uuid: guest.full_name for guest in guests.scalars().all()}

                return [
                    TableDTO(
                        uuid=table.uuid,
                        event_id=table.event_id,
                        name=table.name,
                        capacity=table.capacity,
                        pos_x=table.pos_x,
                        pos_y=table.pos_y,
                        seats=[
                            SeatDTO(
                                uuid=seat.uuid,
                                table_id=table.uuid,
                                seat_number=seat.seat_number,
                                guest_id=seat.guest_id,
                                guest_name=names.get(seat.guest_id),
                            )
                            for seat in table.seats
                        ],
                    )
                    for table in tables
                ]
        except SQLAlchemyError as e:
            raise UpstreamFailure(f"Failed to load seating: {e}") from e
