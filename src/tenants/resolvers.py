"""Tenant-scoped lookups.

Every lookup by id goes through one of these functions. Each filters by the
wedding, joining through intermediate tables where the row carries no
``wedding_id`` of its own, and raises ``NotFoundError`` when nothing matches,
so a row of another wedding looks exactly like a missing row.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.announcements.repository.orm_models import Announcement
from src.errors import NotFoundError
from src.guests.repository.orm_models import Event, Guest, Invitation, InvitationEvent
from src.seating.repository.orm_models import Seat, SeatingTable


async def resolve_guest(session: AsyncSession, wedding_id: UUID, guest_id: UUID) -> Guest:
    result = await session.execute(
        select(Guest).where(Guest.uuid == guest_id, Guest.wedding_id == wedding_id)
    )
    guest = result.scalar_one_or_none()
    if guest is None:
        raise NotFoundError("Guest")
    return guest


async def resolve_guest_by_invite_code(
    session: AsyncSession, wedding_id: UUID, invite_code: str
) -> Guest:
    result = await session.execute(
        select(Guest).where(
            Guest.invite_code == invite_code.strip().upper(),
            Guest.wedding_id == wedding_id,
        )
    )
    guest = result.scalar_one_or_none()
    if guest is None:
        raise NotFoundError("Guest")
    return guest


async def resolve_event(session: AsyncSession, wedding_id: UUID, event_id: UUID) -> Event:
    result = await session.execute(
        select(Event).where(Event.uuid == event_id, Event.wedding_id == wedding_id)
    )
    event = result.scalar_one_or_none()
    if event is None:
        raise NotFoundError("Event")
    return event


async def resolve_invitation(
    session: AsyncSession, wedding_id: UUID, invitation_id: UUID
) -> Invitation:
    result = await session.execute(
        select(Invitation).where(
            Invitation.uuid == invitation_id, Invitation.wedding_id == wedding_id
        )
    )
    invitation = result.unique().scalar_one_or_none()
    if invitation is None:
        raise NotFoundError("Invitation")
    return invitation


async def resolve_invitation_by_token(
    session: AsyncSession, wedding_id: UUID, token: str
) -> Invitation:
    result = await session.execute(
        select(Invitation).where(Invitation.token == token, Invitation.wedding_id == wedding_id)
    )
    invitation = result.unique().scalar_one_or_none()
    if invitation is None:
        raise NotFoundError("Invitation")
    return invitation


async def resolve_invitation_event(
    session: AsyncSession, wedding_id: UUID, invitation: Invitation, event_id: UUID
) -> InvitationEvent:
    """The invitation must already be resolved for ``wedding_id``; the event is re-checked."""
    result = await session.execute(
        select(InvitationEvent)
        .join(Event, InvitationEvent.event_id == Event.uuid)
        .where(
            InvitationEvent.invitation_id == invitation.uuid,
            InvitationEvent.event_id == event_id,
            Event.wedding_id == wedding_id,
        )
    )
    invitation_event = result.unique().scalar_one_or_none()
    if invitation_event is None:
        raise NotFoundError("Invitation for this event")
    return invitation_event


async def resolve_table(
    session: AsyncSession, wedding_id: UUID, table_id: UUID
) -> SeatingTable:
    result = await session.execute(
        select(SeatingTable)
        .join(Event, SeatingTable.event_id == Event.uuid)
        .where(SeatingTable.uuid == table_id, Event.wedding_id == wedding_id)
    )
    table = result.scalar_one_or_none()
    if table is None:
        raise NotFoundError("Table")
    return table


async def resolve_seat(session: AsyncSession, wedding_id: UUID, seat_id: UUID) -> Seat:
    result = await session.execute(
        select(Seat)
        .join(SeatingTable, Seat.table_id == SeatingTable.uuid)
        .join(Event, SeatingTable.event_id == Event.uuid)
        .where(Seat.uuid == seat_id, Event.wedding_id == wedding_id)
    )
    seat = result.scalar_one_or_none()
    if seat is None:
        raise NotFoundError("Seat")
    return seat


async def resolve_announcement(
    session: AsyncSession, wedding_id: UUID, announcement_id: UUID
) -> Announcement:
    result = await session.execute(
        select(Announcement).where(
            Announcement.uuid == announcement_id, Announcement.wedding_id == wedding_id
        )
    )
    announcement = result.scalar_one_or_none()
    if announcement is None:
        raise NotFoundError("Announcement")
    return announcement
