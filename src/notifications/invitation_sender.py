"""Individual invitation and reminder sends.

The bulk invitation and reminder runs go through ``send_invitation`` too, so
rate limiting and mail logging behave the same on every path.
"""

import logging
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.cache.namespace import CacheNamespaceManager
from src.config.database import async_session_manager
from src.config.settings import settings
from src.errors import InputValidationError, NotFoundError, UpstreamFailure
from src.guests.repository.orm_models import Guest, InvitationEvent
from src.models.wedding import Wedding
from src.notifications.channels.base import ChannelSender
from src.notifications.dtos import Channel, MessageKind, RenderedMessage, SendResultDTO
from src.notifications.rate_limiter import RateLimiter
from src.notifications.templates import EventLine, render_invitation, rsvp_url
from src.tenants.resolvers import resolve_invitation

logger = logging.getLogger(__name__)


def destination_for(guest: Guest, channel: Channel) -> str | None:
    value = guest.email if channel == Channel.EMAIL else guest.phone
    return value.strip() if value and value.strip() else None


@dataclass(frozen=True)
class PreparedInvitation:
    token: str
    destination: str
    message: RenderedMessage


class InvitationSender:
    def __init__(
        self,
        senders: dict[Channel, ChannelSender],
        rate_limiter: RateLimiter,
        cache: CacheNamespaceManager | None = None,
        session_overwrite: AsyncSession | None = None,
        frontend_url: str = settings.frontend_url,
    ):
        self._senders = senders
        self._rate_limiter = rate_limiter
        self._cache = cache
        self._session_overwrite = session_overwrite
        self._frontend_url = frontend_url

    async def send_invitation(
        self,
        wedding_id: UUID,
        invitation_id: UUID,
        event_ids: list[UUID],
        channel: Channel,
        ignore_rate_limit: bool = False,
        kind: MessageKind = MessageKind.INVITATION,
    ) -> SendResultDTO:
        """Send one invitation (or reminder) for the given events of the invitation.

        An empty ``event_ids`` means every event on the invitation. The mail log
        row is written for failed attempts as well, then the failure is raised.
        """
        sender = self._senders.get(channel)
        if sender is None:
            raise InputValidationError(f"Unsupported channel: {channel}")

        prepared = await self._prepare(wedding_id, invitation_id, event_ids, channel, kind)
        status = await self._rate_limiter.check_and_consume(
            prepared.token, channel, ignore_limit=ignore_rate_limit
        )

        try:
            provider_message_id = await sender.send(prepared.message, prepared.destination)
        except UpstreamFailure as e:
            logger.warning(f"Failed to send {kind.value} to {prepared.destination}: {e}")
            await self._rate_limiter.record_attempt(
                wedding_id=wedding_id,
                token=prepared.token,
                channel=channel,
                kind=kind,
                destination=prepared.destination,
                success=False,
                error_message=str(e),
            )
            raise

        await self._rate_limiter.record_attempt(
            wedding_id=wedding_id,
            token=prepared.token,
            channel=channel,
            kind=kind,
            destination=prepared.destination,
            success=True,
            provider_message_id=provider_message_id,
        )
        logger.info(f"Sent {kind.value} via {channel.value} to {prepared.destination}")

        if self._cache:
            await self._cache.bump_after_commit(wedding_id)

        return SendResultDTO(
            channel=channel,
            destination=prepared.destination,
            provider_message_id=provider_message_id,
            remaining_today=max(0, status.remaining - 1),
        )

    async def _prepare(
        self,
        wedding_id: UUID,
        invitation_id: UUID,
        event_ids: list[UUID],
        channel: Channel,
        kind: MessageKind,
    ) -> PreparedInvitation:
        try:
            async with async_session_manager(session_overwrite=self._session_overwrite) as session:
                invitation = await resolve_invitation(session, wedding_id, invitation_id)
                wedding = await session.get(Wedding, wedding_id)

                stmt = select(InvitationEvent).where(
                    InvitationEvent.invitation_id == invitation.uuid
                )
                if event_ids:
                    stmt = stmt.where(InvitationEvent.event_id.in_(event_ids))
                result = await session.execute(stmt)
                invitation_events = [
                    invitation_event
                    for invitation_event in result.unique().scalars().all()
                    if invitation_event.event.wedding_id == wedding_id
                ]
                if not invitation_events:
                    raise NotFoundError("Invitation for the selected events")

                guest = invitation.guest
                destination = destination_for(guest, channel)
                if destination is None:
                    raise InputValidationError(
                        f"{guest.full_name} has no {'email address' if channel == Channel.EMAIL else 'phone number'}"
                    )

                couple_names = (wedding.couple_display_name or wedding.name) if wedding else ""
                message = render_invitation(
                    channel=channel,
                    kind=kind,
                    guest_name=guest.full_name,
                    first_name=guest.first_name,
                    couple_names=couple_names,
                    events=[
                        EventLine(
                            name=ie.event.name, starts_at=ie.event.starts_at, venue=ie.event.venue
                        )
                        for ie in invitation_events
                    ],
                    url=rsvp_url(self._frontend_url, invitation.token),
                    invite_code=guest.invite_code,
                )
                return PreparedInvitation(
                    token=invitation.token, destination=destination, message=message
                )
        except SQLAlchemyError as e:
            raise UpstreamFailure(f"Failed to load invitation: {e}") from e
