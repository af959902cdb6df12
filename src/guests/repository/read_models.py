import abc
from dataclasses import asdict
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.cache.namespace import CacheNamespaceManager
from src.config.database import async_session_manager
from src.errors import UpstreamFailure
from src.guests.dtos import CheckInStatsDTO, InvitationEventStatus
from src.guests.repository.orm_models import Attendance, Event, InvitationEvent
from src.tenants.resolvers import resolve_event


class CheckInStatsReadModel(abc.ABC):
    @abc.abstractmethod
    async def get_stats(self, wedding_id: UUID, event_id: UUID | None = None) -> dict:
        """
        Get RSVP and attendance counts for the wedding, or for one of its events.
        Keys follow CheckInStatsDTO.
        """
        raise NotImplementedError


class SqlCheckInStatsReadModel(CheckInStatsReadModel):
    def __init__(
        self,
        session_overwrite: AsyncSession | None = None,
        cache: CacheNamespaceManager | None = None,
    ):
        self._session_overwrite = session_overwrite
        self._cache = cache

    async def get_stats(self, wedding_id: UUID, event_id: UUID | None = None) -> dict:
        async def fetch() -> dict:
            return asdict(await self._compute(wedding_id, event_id))

        if self._cache is None:
            return await fetch()
        return await self._cache.cached(wedding_id, f"checkin:stats:{event_id or 'all'}", fetch)

    async def _compute(self, wedding_id: UUID, event_id: UUID | None) -> CheckInStatsDTO:
        try:
            async with async_session_manager(session_overwrite=self._session_overwrite) as session:
                event_filters = [Event.wedding_id == wedding_id]
                if event_id is not None:
                    await resolve_event(session, wedding_id, event_id)
                    event_filters.append(Event.uuid == event_id)

                rsvp_rows = await session.execute(
                    select(
                        InvitationEvent.status,
                        func.count(InvitationEvent.uuid),
                        func.coalesce(func.sum(InvitationEvent.headcount), 0),
                    )
                    .join(Event, InvitationEvent.event_id == Event.uuid)
                    .where(*event_filters)
                    .group_by(InvitationEvent.status)
                )
                counts = {status: 0 for status in InvitationEventStatus}
                accepted_headcount = 0
                for status, count, headcount in rsvp_rows.all():
                    counts[InvitationEventStatus(status)] = count
                    if status == InvitationEventStatus.ACCEPTED:
                        accepted_headcount = int(headcount)

                checked_in = await session.scalar(
                    select(func.count(Attendance.uuid))
                    .join(InvitationEvent, Attendance.invitation_event_id == InvitationEvent.uuid)
                    .join(Event, InvitationEvent.event_id == Event.uuid)
                    .where(Attendance.wedding_id == wedding_id, *event_filters)
                )
        except SQLAlchemyError as e:
            raise UpstreamFailure(f"Failed to load check-in stats: {e}") from e

        return CheckInStatsDTO(
            invited=counts[InvitationEventStatus.INVITED],
            accepted=counts[InvitationEventStatus.ACCEPTED],
            declined=counts[InvitationEventStatus.DECLINED],
            accepted_headcount=accepted_headcount,
            checked_in=checked_in or 0,
        )
