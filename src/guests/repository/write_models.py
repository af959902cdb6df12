"""Guest lifecycle write model: RSVP and check-in transitions.

Returns DTOs, never ORM models. Every mutation bumps the wedding's cache
namespace once its transaction has committed.
"""

from abc import ABC, abstractmethod
from urllib.parse import parse_qs, urlparse
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.cache.namespace import CacheNamespaceManager
from src.config.database import async_session_manager
from src.config.settings import settings
from src.errors import AlreadyCheckedInError, NotAcceptedError, NotFoundError, UpstreamFailure
from src.guests.dtos import (
    CheckInDTO,
    CheckInMethod,
    InvitationEventDTO,
    InvitationEventStatus,
    RsvpResponse,
)
from src.guests.repository.orm_models import Attendance, Guest, Invitation, InvitationEvent
from src.models.base import as_utc, utc_now
from src.tenants.resolvers import (
    resolve_guest_by_invite_code,
    resolve_invitation_by_token,
    resolve_invitation_event,
)


def extract_token(scanned: str) -> str:
    """QR codes may carry the full check-in URL rather than the bare token."""
    scanned = scanned.strip()
    if "token=" in scanned:
        values = parse_qs(urlparse(scanned).query).get("token")
        if values:
            return values[0]
    return scanned


def clamp_headcount(
    headcount: int,
    guest_total_guests: int | None,
    max_party_size: int,
    plus_ones_enabled: bool = True,
) -> int:
    if not plus_ones_enabled:
        return 1
    limit = min(guest_total_guests or max_party_size, max_party_size)
    return min(max(headcount, 1), max(limit, 1))


class GuestLifecycleWriteModel(ABC):
    @abstractmethod
    async def record_rsvp(
        self,
        wedding_id: UUID,
        token: str,
        event_id: UUID,
        response: RsvpResponse,
        headcount: int,
    ) -> InvitationEventDTO:
        """Overwrite the RSVP state of one invitation for one event."""
        raise NotImplementedError

    @abstractmethod
    async def check_in(
        self,
        wedding_id: UUID,
        invite_code: str,
        event_id: UUID,
        checked_in_by: str | None = None,
    ) -> CheckInDTO:
        """Check a guest in by invite code. Exactly once per invitation event."""
        raise NotImplementedError

    @abstractmethod
    async def check_in_by_token(
        self,
        wedding_id: UUID,
        token: str,
        checked_in_by: str | None = None,
    ) -> CheckInDTO:
        """Check a guest in from a scanned QR token, for the first accepted event."""
        raise NotImplementedError


class SqlGuestLifecycleWriteModel(GuestLifecycleWriteModel):
    def __init__(
        self,
        session_overwrite: AsyncSession | None = None,
        cache: CacheNamespaceManager | None = None,
        max_party_size: int = settings.max_party_size,
        plus_ones_enabled: bool = settings.plus_ones_enabled,
    ):
        self._session_overwrite = session_overwrite
        self._cache = cache
        self._max_party_size = max_party_size
        self._plus_ones_enabled = plus_ones_enabled

    async def _bump(self, wedding_id: UUID) -> None:
        if self._cache:
            await self._cache.bump_after_commit(wedding_id)

    async def record_rsvp(
        self,
        wedding_id: UUID,
        token: str,
        event_id: UUID,
        response: RsvpResponse,
        headcount: int,
    ) -> InvitationEventDTO:
        status = InvitationEventStatus(response.value)
        try:
            async with async_session_manager(session_overwrite=self._session_overwrite) as session:
                invitation = await resolve_invitation_by_token(session, wedding_id, token)
                invitation_event = await resolve_invitation_event(
                    session, wedding_id, invitation, event_id
                )

                if status == InvitationEventStatus.ACCEPTED:
                    stored_headcount = clamp_headcount(
                        headcount,
                        invitation.guest.total_guests,
                        self._max_party_size,
                        self._plus_ones_enabled,
                    )
                else:
                    stored_headcount = 0

                # Single statement, so duplicate submissions never interleave
                await session.execute(
                    update(InvitationEvent)
                    .where(InvitationEvent.uuid == invitation_event.uuid)
                    .values(status=status, headcount=stored_headcount)
                )

                result = InvitationEventDTO(
                    uuid=invitation_event.uuid,
                    invitation_id=invitation.uuid,
                    event_id=event_id,
                    status=status,
                    headcount=stored_headcount,
                )
        except SQLAlchemyError as e:
            raise UpstreamFailure(f"Failed to record RSVP: {e}") from e

        await self._bump(wedding_id)
        return result

    async def check_in(
        self,
        wedding_id: UUID,
        invite_code: str,
        event_id: UUID,
        checked_in_by: str | None = None,
    ) -> CheckInDTO:
        try:
            async with async_session_manager(session_overwrite=self._session_overwrite) as session:
                guest = await resolve_guest_by_invite_code(session, wedding_id, invite_code)
                invitation = await self._get_invitation_for_guest(session, wedding_id, guest)
                invitation_event = await resolve_invitation_event(
                    session, wedding_id, invitation, event_id
                )
                if invitation_event.status != InvitationEventStatus.ACCEPTED:
                    raise NotAcceptedError()

                result = await self._create_attendance(
                    session,
                    wedding_id=wedding_id,
                    guest=guest,
                    invitation_event=invitation_event,
                    method=CheckInMethod.MANUAL,
                    checked_in_by=checked_in_by,
                )
        except SQLAlchemyError as e:
            raise UpstreamFailure(f"Failed to check in guest: {e}") from e

        await self._bump(wedding_id)
        return result

    async def check_in_by_token(
        self,
        wedding_id: UUID,
        token: str,
        checked_in_by: str | None = None,
    ) -> CheckInDTO:
        token = extract_token(token)
        try:
            async with async_session_manager(session_overwrite=self._session_overwrite) as session:
                invitation = await resolve_invitation_by_token(session, wedding_id, token)
                accepted = [
                    invitation_event
                    for invitation_event in invitation.events
                    if invitation_event.status == InvitationEventStatus.ACCEPTED
                    and invitation_event.event.wedding_id == wedding_id
                ]
                if not accepted:
                    raise NotAcceptedError()

                existing = await session.execute(
                    select(Attendance.checked_in_at)
                    .where(
                        Attendance.invitation_event_id.in_([ie.uuid for ie in accepted]),
                        Attendance.wedding_id == wedding_id,
                    )
                    .order_by(Attendance.checked_in_at)
                    .limit(1)
                )
                checked_in_at = existing.scalar_one_or_none()
                if checked_in_at is not None:
                    raise AlreadyCheckedInError(as_utc(checked_in_at), invitation.guest.full_name)

                # Deterministic choice, so concurrent scans race on the same row
                first_event = min(
                    accepted, key=lambda ie: (as_utc(ie.event.starts_at), str(ie.uuid))
                )
                result = await self._create_attendance(
                    session,
                    wedding_id=wedding_id,
                    guest=invitation.guest,
                    invitation_event=first_event,
                    method=CheckInMethod.QR_CODE,
                    checked_in_by=checked_in_by,
                )
        except SQLAlchemyError as e:
            raise UpstreamFailure(f"Failed to check in guest: {e}") from e

        await self._bump(wedding_id)
        return result

    async def _get_invitation_for_guest(
        self, session: AsyncSession, wedding_id: UUID, guest: Guest
    ) -> Invitation:
        result = await session.execute(
            select(Invitation)
            .where(Invitation.guest_id == guest.uuid, Invitation.wedding_id == wedding_id)
            .order_by(Invitation.created_at)
            .limit(1)
        )
        invitation = result.unique().scalar_one_or_none()
        if invitation is None:
            raise NotFoundError("Invitation")
        return invitation

    async def _create_attendance(
        self,
        session: AsyncSession,
        wedding_id: UUID,
        guest: Guest,
        invitation_event: InvitationEvent,
        method: CheckInMethod,
        checked_in_by: str | None,
    ) -> CheckInDTO:
        """Insert the attendance row; the unique constraint decides who wins."""
        # Captured up front: a rollback expires every loaded instance
        guest_name = guest.full_name
        invite_code = guest.invite_code
        invitation_event_id = invitation_event.uuid
        event = invitation_event.event
        event_id, event_name, event_venue = event.uuid, event.name, event.venue

        attendance = Attendance(
            invitation_event_id=invitation_event_id,
            wedding_id=wedding_id,
            checked_in_at=utc_now(),
            checked_in_by=checked_in_by,
            method=method,
        )
        session.add(attendance)
        try:
            await session.flush()
        except IntegrityError as e:
            await session.rollback()
            existing = await session.execute(
                select(Attendance.checked_in_at).where(
                    Attendance.invitation_event_id == invitation_event_id
                )
            )
            checked_in_at = existing.scalar_one_or_none()
            if checked_in_at is None:
                raise UpstreamFailure(f"Failed to check in guest: {e}") from e
            raise AlreadyCheckedInError(as_utc(checked_in_at), guest_name) from e

        return CheckInDTO(
            attendance_id=attendance.uuid,
            invitation_event_id=invitation_event_id,
            event_id=event_id,
            guest_name=guest_name,
            invite_code=invite_code,
            event_name=event_name,
            event_venue=event_venue,
            checked_in_at=as_utc(attendance.checked_in_at),
            method=method,
        )
