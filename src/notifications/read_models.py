import abc
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.config.database import async_session_manager
from src.errors import UpstreamFailure
from src.notifications.dtos import Channel
from src.notifications.rate_limiter import RateLimiter, RateLimitStatus
from src.tenants.resolvers import resolve_invitation


class RateLimitReadModel(abc.ABC):
    @abc.abstractmethod
    async def get_status(
        self, wedding_id: UUID, invitation_id: UUID, channel: Channel
    ) -> RateLimitStatus:
        """Non-authoritative hint; the check at send time decides."""
        raise NotImplementedError


class SqlRateLimitReadModel(RateLimitReadModel):
    def __init__(self, rate_limiter: RateLimiter, session_overwrite: AsyncSession | None = None):
        self._rate_limiter = rate_limiter
        self._session_overwrite = session_overwrite

    async def get_status(
        self, wedding_id: UUID, invitation_id: UUID, channel: Channel
    ) -> RateLimitStatus:
        try:
            async with async_session_manager(session_overwrite=self._session_overwrite) as session:
                invitation = await resolve_invitation(session, wedding_id, invitation_id)
                token = invitation.token
        except SQLAlchemyError as e:
            raise UpstreamFailure(f"Failed to load invitation: {e}") from e
        return await self._rate_limiter.remaining(token, channel)
