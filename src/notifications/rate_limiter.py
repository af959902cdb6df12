"""Per (invitation, channel, UTC day) send limit backed by the mail log."""

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, time, timedelta
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.config.database import async_session_manager
from src.config.settings import settings
from src.errors import RateLimitedError, UpstreamFailure
from src.models.base import utc_now
from src.notifications.dtos import Channel, MessageKind
from src.notifications.orm_models import MailLog

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitStatus:
    sent_today: int
    remaining: int
    max_per_day: int
    window_reset_at: datetime

    @property
    def can_send(self) -> bool:
        return self.remaining > 0


def utc_day_window(now: datetime) -> tuple[datetime, datetime]:
    """Start of the UTC day containing ``now`` and the next UTC midnight."""
    start = datetime.combine(now.date(), time.min, tzinfo=now.tzinfo)
    return start, start + timedelta(days=1)


class MailLogStore(ABC):
    @abstractmethod
    async def count_since(
        self, token: str, channel: Channel, since: datetime, until: datetime
    ) -> int:
        """Count send attempts for (token, channel) with ``since <= sent_at < until``."""
        raise NotImplementedError

    @abstractmethod
    async def record(
        self,
        wedding_id: UUID,
        token: str,
        channel: Channel,
        kind: MessageKind,
        destination: str,
        success: bool,
        sent_at: datetime,
        provider_message_id: str | None = None,
        error_message: str | None = None,
    ) -> None:
        raise NotImplementedError


class SqlMailLogStore(MailLogStore):
    def __init__(self, session_overwrite: AsyncSession | None = None):
        self._session_overwrite = session_overwrite

    async def count_since(
        self, token: str, channel: Channel, since: datetime, until: datetime
    ) -> int:
        try:
            async with async_session_manager(session_overwrite=self._session_overwrite) as session:
                count = await session.scalar(
                    select(func.count(MailLog.uuid)).where(
                        MailLog.token == token,
                        MailLog.channel == channel,
                        MailLog.sent_at >= since,
                        MailLog.sent_at < until,
                    )
                )
        except SQLAlchemyError as e:
            raise UpstreamFailure(f"Failed to read mail log: {e}") from e
        return count or 0

    async def record(
        self,
        wedding_id: UUID,
        token: str,
        channel: Channel,
        kind: MessageKind,
        destination: str,
        success: bool,
        sent_at: datetime,
        provider_message_id: str | None = None,
        error_message: str | None = None,
    ) -> None:
        try:
            async with async_session_manager(session_overwrite=self._session_overwrite) as session:
                session.add(
                    MailLog(
                        wedding_id=wedding_id,
                        token=token,
                        channel=channel,
                        kind=kind,
                        destination=destination,
                        sent_at=sent_at,
                        success=success,
                        provider_message_id=provider_message_id,
                        error_message=error_message,
                    )
                )
        except SQLAlchemyError as e:
            raise UpstreamFailure(f"Failed to write mail log: {e}") from e


class RateLimiter:
    """Gate sends at ``max_per_day`` attempts per invitation and channel per UTC day.

    Failed attempts count too. The count-then-send sequence is not atomic, so
    two concurrent sends for the same invitation can both pass the gate.
    """

    def __init__(
        self,
        mail_logs: MailLogStore,
        max_per_day: int = settings.rate_limit_max_per_day,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._mail_logs = mail_logs
        self._max_per_day = max_per_day
        self._clock = clock

    async def remaining(self, token: str, channel: Channel) -> RateLimitStatus:
        start, reset_at = utc_day_window(self._clock())
        sent_today = await self._mail_logs.count_since(token, channel, start, reset_at)
        return RateLimitStatus(
            sent_today=sent_today,
            remaining=max(0, self._max_per_day - sent_today),
            max_per_day=self._max_per_day,
            window_reset_at=reset_at,
        )

    async def check_and_consume(
        self, token: str, channel: Channel, ignore_limit: bool = False
    ) -> RateLimitStatus:
        """Raise RateLimitedError when the daily limit is reached.

        Nothing is consumed until ``record_attempt`` writes the log row.
        """
        status = await self.remaining(token, channel)
        if not status.can_send:
            if not ignore_limit:
                raise RateLimitedError(status)
            logger.info(f"Rate limit ignored for invitation {token} on {channel.value}")
        return status

    async def record_attempt(
        self,
        wedding_id: UUID,
        token: str,
        channel: Channel,
        kind: MessageKind,
        destination: str,
        success: bool,
        provider_message_id: str | None = None,
        error_message: str | None = None,
    ) -> None:
        await self._mail_logs.record(
            wedding_id=wedding_id,
            token=token,
            channel=channel,
            kind=kind,
            destination=destination,
            success=success,
            sent_at=self._clock(),
            provider_message_id=provider_message_id,
            error_message=error_message,
        )


def get_rate_limiter() -> RateLimiter:
    return RateLimiter(mail_logs=SqlMailLogStore())
