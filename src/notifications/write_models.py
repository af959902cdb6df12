"""Recipient planning for bulk invitation and reminder runs."""

import secrets
from abc import ABC, abstractmethod
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.config.database import async_session_manager
from src.errors import InputValidationError, UpstreamFailure
from src.guests.dtos import InvitationEventStatus
from src.guests.repository.orm_models import Event, Guest, Invitation, InvitationEvent
from src.tenants.resolvers import resolve_event

RESPONDED_STATUSES = (InvitationEventStatus.ACCEPTED, InvitationEventStatus.DECLINED)


def generate_invitation_token() -> str:
    return secrets.token_urlsafe(24)


@dataclass(frozen=True)
class BulkTarget:
    guest_name: str
    invitation_id: UUID | None
    event_ids: list[UUID]
    # Set when the guest is left out of the run
    skip_reason: str | None = None


class BulkRecipientWriteModel(ABC):
    @abstractmethod
    async def prepare_invite_all(self, wedding_id: UUID, event_ids: list[UUID]) -> list[BulkTarget]:
        """One target per guest of the wedding.

        Guests who already responded to any event are skipped. Missing
        invitations and invitation events for ``event_ids`` are created.
        """
        raise NotImplementedError

    @abstractmethod
    async def pending_reminders(self, wedding_id: UUID, event_ids: list[UUID]) -> list[BulkTarget]:
        """Invitations that have not responded to at least one of ``event_ids``."""
        raise NotImplementedError


class SqlBulkRecipientWriteModel(BulkRecipientWriteModel):
    def __init__(self, session_overwrite: AsyncSession | None = None):
        self._session_overwrite = session_overwrite

    async def _check_events(self, session: AsyncSession, wedding_id: UUID, event_ids: list[UUID]):
        if not event_ids:
            raise InputValidationError("Select at least one event")
        for event_id in event_ids:
            await resolve_event(session, wedding_id, event_id)

    async def prepare_invite_all(self, wedding_id: UUID, event_ids: list[UUID]) -> list[BulkTarget]:
        event_ids = list(dict.fromkeys(event_ids))
        try:
            async with async_session_manager(session_overwrite=self._session_overwrite) as session:
                await self._check_events(session, wedding_id, event_ids)

                guests = (
                    (
                        await session.execute(
                            select(Guest)
                            .where(Guest.wedding_id == wedding_id)
                            .order_by(Guest.last_name, Guest.first_name)
                        )
                    )
                    .scalars()
                    .all()
                )
                invitations = (
                    (
                        await session.execute(
                            select(Invitation)
                            .where(Invitation.wedding_id == wedding_id)
                            .order_by(Invitation.created_at)
                        )
                    )
                    .unique()
                    .scalars()
                    .all()
                )
                invitations_by_guest: dict[UUID, list[Invitation]] = {}
                for invitation in invitations:
                    invitations_by_guest.setdefault(invitation.guest_id, []).append(invitation)

                targets = []
                for guest in guests:
                    guest_invitations = invitations_by_guest.get(guest.uuid, [])
                    responded = any(
                        invitation_event.status in RESPONDED_STATUSES
                        for invitation in guest_invitations
                        for invitation_event in invitation.events
                    )
                    if responded:
                        targets.append(
                            BulkTarget(
                                guest_name=guest.full_name,
                                invitation_id=None,
                                event_ids=[],
                                skip_reason="already responded",
                            )
                        )
                        continue

                    if guest_invitations:
                        invitation = guest_invitations[0]
                    else:
                        invitation = Invitation(
                            wedding_id=wedding_id,
                            guest_id=guest.uuid,
                            token=generate_invitation_token(),
                        )
                        session.add(invitation)
                        await session.flush()

                    existing = {ie.event_id for ie in invitation.events} if guest_invitations else set()
                    for event_id in event_ids:
                        if event_id not in existing:
                            session.add(
                                InvitationEvent(
                                    invitation_id=invitation.uuid,
                                    event_id=event_id,
                                    status=InvitationEventStatus.INVITED,
                                    headcount=1,
                                )
                            )
                    targets.append(
                        BulkTarget(
                            guest_name=guest.full_name,
                            invitation_id=invitation.uuid,
                            event_ids=event_ids,
                        )
                    )
                await session.flush()
                return targets
        except SQLAlchemyError as e:
            raise UpstreamFailure(f"Failed to prepare bulk invitations: {e}") from e

    async def pending_reminders(self, wedding_id: UUID, event_ids: list[UUID]) -> list[BulkTarget]:
        event_ids = list(dict.fromkeys(event_ids))
        try:
            async with async_session_manager(session_overwrite=self._session_overwrite) as session:
                await self._check_events(session, wedding_id, event_ids)

                rows = await session.execute(
                    select(Invitation.uuid, Guest.first_name, Guest.last_name, InvitationEvent.event_id)
                    .join(Guest, Invitation.guest_id == Guest.uuid)
                    .join(InvitationEvent, InvitationEvent.invitation_id == Invitation.uuid)
                    .join(Event, InvitationEvent.event_id == Event.uuid)
                    .where(
                        Invitation.wedding_id == wedding_id,
                        Event.wedding_id == wedding_id,
                        InvitationEvent.event_id.in_(event_ids),
                        InvitationEvent.status == InvitationEventStatus.INVITED,
                    )
                    .order_by(Guest.last_name, Guest.first_name, Invitation.uuid)
                )
                pending: dict[UUID, tuple[str, list[UUID]]] = {}
                for invitation_id, first_name, last_name, event_id in rows.all():
                    name = f"{first_name} {last_name}".strip()
                    pending.setdefault(invitation_id, (name, []))[1].append(event_id)

                return [
                    BulkTarget(guest_name=name, invitation_id=invitation_id, event_ids=pending_events)
                    for invitation_id, (name, pending_events) in pending.items()
                ]
        except SQLAlchemyError as e:
            raise UpstreamFailure(f"Failed to load pending reminders: {e}") from e
