"""Announcement persistence for the batch dispatcher.

Status transitions are conditional updates (``UPDATE ... WHERE status IN``)
so two admins racing on the same announcement cannot both win. Recipient
outcomes only apply to rows that are still pending, which is what makes a
re-run after a crash safe.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.announcements.dtos import (
    AnnouncementDTO,
    AnnouncementStatsDTO,
    AnnouncementStatus,
    BatchDTO,
    BatchStatus,
    RecipientDTO,
    RecipientStatus,
)
from src.announcements.repository.orm_models import (
    Announcement,
    AnnouncementBatch,
    AnnouncementRecipient,
)
from src.config.database import async_session_manager
from src.config.settings import settings
from src.errors import (
    AnnouncementStateError,
    DispatchInProgressError,
    InputValidationError,
    NotFoundError,
    UpstreamFailure,
)
from src.guests.repository.orm_models import Guest, Invitation
from src.models.base import as_utc, utc_now
from src.notifications.dtos import Channel
from src.notifications.invitation_sender import destination_for
from src.notifications.worker_pool import chunked
from src.tenants.resolvers import resolve_announcement

OPEN_BATCH_STATUSES = (BatchStatus.PENDING, BatchStatus.SENDING)


def _to_dto(announcement: Announcement) -> AnnouncementDTO:
    return AnnouncementDTO(
        uuid=announcement.uuid,
        wedding_id=announcement.wedding_id,
        title=announcement.title,
        subject=announcement.subject,
        content=announcement.content,
        channel=announcement.channel,
        status=announcement.status,
        batch_size=announcement.batch_size,
        total_recipients=announcement.total_recipients,
        sent_count=announcement.sent_count,
        failed_count=announcement.failed_count,
        scheduled_at=as_utc(announcement.scheduled_at),
    )


def _batch_to_dto(batch: AnnouncementBatch) -> BatchDTO:
    return BatchDTO(
        uuid=batch.uuid,
        batch_number=batch.batch_number,
        total_in_batch=batch.total_in_batch,
        status=batch.status,
        sent_count=batch.sent_count,
        failed_count=batch.failed_count,
    )


class AnnouncementWriteModel(ABC):
    @abstractmethod
    async def create_announcement(
        self,
        wedding_id: UUID,
        title: str,
        subject: str,
        content: str,
        channel: Channel,
        guest_ids: list[UUID] | None = None,
        send_to_all: bool = False,
        scheduled_at: datetime | None = None,
        batch_size: int = settings.announcement_default_batch_size,
        created_by: str | None = None,
    ) -> AnnouncementDTO:
        raise NotImplementedError

    @abstractmethod
    async def claim_for_dispatch(
        self, wedding_id: UUID, announcement_id: UUID, resume: bool = False
    ) -> AnnouncementDTO:
        """Move the announcement to ``sending``; raise AnnouncementStateError if not allowed."""
        raise NotImplementedError

    @abstractmethod
    async def renew_lease(self, announcement_id: UUID) -> None:
        raise NotImplementedError

    @abstractmethod
    async def release_lease(self, announcement_id: UUID) -> None:
        raise NotImplementedError

    @abstractmethod
    async def plan_batches(self, announcement_id: UUID, batch_size: int) -> list[BatchDTO]:
        """Batch the unbatched pending recipients; return every open batch in order."""
        raise NotImplementedError

    @abstractmethod
    async def start_batch(self, batch_id: UUID) -> list[RecipientDTO]:
        raise NotImplementedError

    @abstractmethod
    async def mark_recipient(
        self,
        recipient_id: UUID,
        status: RecipientStatus,
        provider_message_id: str | None = None,
        error_message: str | None = None,
    ) -> bool:
        """Record a recipient outcome. Returns False if the recipient was no longer pending."""
        raise NotImplementedError

    @abstractmethod
    async def complete_batch(self, batch_id: UUID) -> BatchDTO:
        raise NotImplementedError

    @abstractmethod
    async def get_status(self, announcement_id: UUID) -> AnnouncementStatus:
        raise NotImplementedError

    @abstractmethod
    async def finalize(self, announcement_id: UUID) -> AnnouncementDTO:
        """Recompute the counts from recipient rows and settle a ``sending`` status."""
        raise NotImplementedError

    @abstractmethod
    async def reset_for_resend(self, wedding_id: UUID, announcement_id: UUID) -> AnnouncementDTO:
        raise NotImplementedError

    @abstractmethod
    async def cancel(self, wedding_id: UUID, announcement_id: UUID) -> AnnouncementDTO:
        raise NotImplementedError

    @abstractmethod
    async def get_stats(self, wedding_id: UUID, announcement_id: UUID) -> AnnouncementStatsDTO:
        raise NotImplementedError

    @abstractmethod
    async def list_due(self, now: datetime) -> list[tuple[UUID, UUID]]:
        """(wedding_id, announcement_id) of scheduled announcements that are due."""
        raise NotImplementedError


class SqlAnnouncementWriteModel(AnnouncementWriteModel):
    def __init__(
        self,
        session_overwrite: AsyncSession | None = None,
        min_batch_size: int = settings.announcement_min_batch_size,
        max_batch_size: int = settings.announcement_max_batch_size,
        lease_seconds: int = settings.dispatch_lease_seconds,
    ):
        self._session_overwrite = session_overwrite
        self._min_batch_size = min_batch_size
        self._max_batch_size = max_batch_size
        self._lease_seconds = lease_seconds

    def _session(self):
        return async_session_manager(session_overwrite=self._session_overwrite)

    async def create_announcement(
        self,
        wedding_id: UUID,
        title: str,
        subject: str,
        content: str,
        channel: Channel,
        guest_ids: list[UUID] | None = None,
        send_to_all: bool = False,
        scheduled_at: datetime | None = None,
        batch_size: int = settings.announcement_default_batch_size,
        created_by: str | None = None,
    ) -> AnnouncementDTO:
        if not self._min_batch_size <= batch_size <= self._max_batch_size:
            raise InputValidationError(
                f"Batch size must be between {self._min_batch_size} and {self._max_batch_size}"
            )
        if not send_to_all and not guest_ids:
            raise InputValidationError("Select at least one guest or send to all guests")

        try:
            async with self._session() as session:
                stmt = select(Guest).where(Guest.wedding_id == wedding_id)
                if not send_to_all:
                    requested = set(guest_ids)
                    stmt = stmt.where(Guest.uuid.in_(requested))
                guests = (await session.execute(stmt)).scalars().all()
                if not send_to_all and len(guests) != len(requested):
                    raise NotFoundError("Guest")

                announcement = Announcement(
                    wedding_id=wedding_id,
                    title=title,
                    subject=subject,
                    content=content,
                    channel=channel,
                    status=(
                        AnnouncementStatus.SCHEDULED if scheduled_at else AnnouncementStatus.DRAFT
                    ),
                    scheduled_at=scheduled_at,
                    batch_size=batch_size,
                    total_recipients=len(guests),
                    sent_count=0,
                    failed_count=0,
                    created_by=created_by,
                )
                session.add(announcement)
                await session.flush()

                for guest in guests:
                    destination = destination_for(guest, channel)
                    session.add(
                        AnnouncementRecipient(
                            announcement_id=announcement.uuid,
                            guest_id=guest.uuid,
                            destination=destination,
                            status=(
                                RecipientStatus.PENDING if destination else RecipientStatus.SKIPPED
                            ),
                            error_message=(
                                None
                                if destination
                                else f"No {'email address' if channel == Channel.EMAIL else 'phone number'}"
                            ),
                        )
                    )
                await session.flush()
                return _to_dto(announcement)
        except SQLAlchemyError as e:
            raise UpstreamFailure(f"Failed to create announcement: {e}") from e

    async def claim_for_dispatch(
        self, wedding_id: UUID, announcement_id: UUID, resume: bool = False
    ) -> AnnouncementDTO:
        allowed = [AnnouncementStatus.DRAFT, AnnouncementStatus.SCHEDULED]
        if resume:
            allowed.append(AnnouncementStatus.SENDING)
        now = utc_now()
        try:
            async with self._session() as session:
                announcement = await resolve_announcement(session, wedding_id, announcement_id)
                # A sending announcement is only taken over when no run holds a live lease
                result = await session.execute(
                    update(Announcement)
                    .where(
                        Announcement.uuid == announcement_id,
                        Announcement.status.in_(allowed),
                        or_(
                            Announcement.status != AnnouncementStatus.SENDING,
                            Announcement.dispatch_lease_until.is_(None),
                            Announcement.dispatch_lease_until < now,
                        ),
                    )
                    .values(
                        status=AnnouncementStatus.SENDING,
                        dispatch_lease_until=now + timedelta(seconds=self._lease_seconds),
                    )
                    .execution_options(synchronize_session=False)
                )
                await session.refresh(announcement)
                if result.rowcount != 1:
                    lease_until = as_utc(announcement.dispatch_lease_until)
                    if (
                        announcement.status == AnnouncementStatus.SENDING
                        and lease_until is not None
                        and lease_until >= now
                    ):
                        raise DispatchInProgressError()
                    raise AnnouncementStateError(announcement.status.value, "dispatch")
                return _to_dto(announcement)
        except SQLAlchemyError as e:
            raise UpstreamFailure(f"Failed to claim announcement: {e}") from e

    async def renew_lease(self, announcement_id: UUID) -> None:
        try:
            async with self._session() as session:
                await session.execute(
                    update(Announcement)
                    .where(
                        Announcement.uuid == announcement_id,
                        Announcement.status == AnnouncementStatus.SENDING,
                    )
                    .values(dispatch_lease_until=utc_now() + timedelta(seconds=self._lease_seconds))
                    .execution_options(synchronize_session=False)
                )
        except SQLAlchemyError as e:
            raise UpstreamFailure(f"Failed to renew dispatch lease: {e}") from e

    async def release_lease(self, announcement_id: UUID) -> None:
        try:
            async with self._session() as session:
                await session.execute(
                    update(Announcement)
                    .where(Announcement.uuid == announcement_id)
                    .values(dispatch_lease_until=None)
                    .execution_options(synchronize_session=False)
                )
        except SQLAlchemyError as e:
            raise UpstreamFailure(f"Failed to release dispatch lease: {e}") from e

    async def plan_batches(self, announcement_id: UUID, batch_size: int) -> list[BatchDTO]:
        try:
            async with self._session() as session:
                open_batches = (
                    (
                        await session.execute(
                            select(AnnouncementBatch)
                            .where(
                                AnnouncementBatch.announcement_id == announcement_id,
                                AnnouncementBatch.status.in_(OPEN_BATCH_STATUSES),
                            )
                            .order_by(AnnouncementBatch.batch_number)
                        )
                    )
                    .scalars()
                    .all()
                )
                open_batch_ids = [batch.uuid for batch in open_batches]

                unbatched_stmt = select(AnnouncementRecipient.uuid).where(
                    AnnouncementRecipient.announcement_id == announcement_id,
                    AnnouncementRecipient.status == RecipientStatus.PENDING,
                )
                if open_batch_ids:
                    unbatched_stmt = unbatched_stmt.where(
                        AnnouncementRecipient.batch_id.is_(None)
                        | AnnouncementRecipient.batch_id.not_in(open_batch_ids)
                    )
                unbatched = (
                    (
                        await session.execute(
                            unbatched_stmt.order_by(
                                AnnouncementRecipient.created_at, AnnouncementRecipient.uuid
                            )
                        )
                    )
                    .scalars()
                    .all()
                )

                last_number = await session.scalar(
                    select(func.coalesce(func.max(AnnouncementBatch.batch_number), 0)).where(
                        AnnouncementBatch.announcement_id == announcement_id
                    )
                )
                new_batches = []
                for recipient_ids in chunked(unbatched, batch_size):
                    last_number += 1
                    batch = AnnouncementBatch(
                        announcement_id=announcement_id,
                        batch_number=last_number,
                        total_in_batch=len(recipient_ids),
                        sent_count=0,
                        failed_count=0,
                        status=BatchStatus.PENDING,
                    )
                    session.add(batch)
                    await session.flush()
                    await session.execute(
                        update(AnnouncementRecipient)
                        .where(AnnouncementRecipient.uuid.in_(list(recipient_ids)))
                        .values(batch_id=batch.uuid)
                        .execution_options(synchronize_session=False)
                    )
                    new_batches.append(batch)

                return [_batch_to_dto(batch) for batch in [*open_batches, *new_batches]]
        except SQLAlchemyError as e:
            raise UpstreamFailure(f"Failed to plan announcement batches: {e}") from e

    async def start_batch(self, batch_id: UUID) -> list[RecipientDTO]:
        try:
            async with self._session() as session:
                await session.execute(
                    update(AnnouncementBatch)
                    .where(AnnouncementBatch.uuid == batch_id)
                    .values(
                        status=BatchStatus.SENDING,
                        started_at=func.coalesce(AnnouncementBatch.started_at, utc_now()),
                    )
                    .execution_options(synchronize_session=False)
                )
                rows = await session.execute(
                    select(AnnouncementRecipient, Guest, Invitation.token)
                    .join(Guest, AnnouncementRecipient.guest_id == Guest.uuid)
                    .outerjoin(Invitation, Invitation.guest_id == Guest.uuid)
                    .where(AnnouncementRecipient.batch_id == batch_id)
                    .order_by(AnnouncementRecipient.created_at, AnnouncementRecipient.uuid)
                )
                recipients: dict[UUID, RecipientDTO] = {}
                for recipient, guest, token in rows.unique().all():
                    # A guest with several invitations yields several rows; the first wins
                    if recipient.uuid in recipients:
                        continue
                    recipients[recipient.uuid] = RecipientDTO(
                        uuid=recipient.uuid,
                        guest_id=guest.uuid,
                        guest_name=guest.full_name,
                        destination=recipient.destination,
                        status=recipient.status,
                        invitation_token=token,
                    )
                return list(recipients.values())
        except SQLAlchemyError as e:
            raise UpstreamFailure(f"Failed to start batch {batch_id}: {e}") from e

    async def mark_recipient(
        self,
        recipient_id: UUID,
        status: RecipientStatus,
        provider_message_id: str | None = None,
        error_message: str | None = None,
    ) -> bool:
        values = {
            "status": status,
            "provider_message_id": provider_message_id,
            "error_message": error_message,
        }
        if status == RecipientStatus.SENT:
            values["sent_at"] = utc_now()
        try:
            async with self._session() as session:
                result = await session.execute(
                    update(AnnouncementRecipient)
                    .where(
                        AnnouncementRecipient.uuid == recipient_id,
                        AnnouncementRecipient.status == RecipientStatus.PENDING,
                    )
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                return result.rowcount == 1
        except SQLAlchemyError as e:
            raise UpstreamFailure(f"Failed to record recipient {recipient_id}: {e}") from e

    async def _count_by_status(self, session: AsyncSession, *filters) -> dict[RecipientStatus, int]:
        rows = await session.execute(
            select(AnnouncementRecipient.status, func.count(AnnouncementRecipient.uuid))
            .where(*filters)
            .group_by(AnnouncementRecipient.status)
        )
        counts = {status: 0 for status in RecipientStatus}
        for status, count in rows.all():
            counts[RecipientStatus(status)] = count
        return counts

    async def complete_batch(self, batch_id: UUID) -> BatchDTO:
        try:
            async with self._session() as session:
                counts = await self._count_by_status(
                    session, AnnouncementRecipient.batch_id == batch_id
                )
                sent, failed = counts[RecipientStatus.SENT], counts[RecipientStatus.FAILED]
                await session.execute(
                    update(AnnouncementBatch)
                    .where(AnnouncementBatch.uuid == batch_id)
                    .values(
                        sent_count=sent,
                        failed_count=failed,
                        status=(
                            BatchStatus.FAILED if sent == 0 and failed > 0 else BatchStatus.COMPLETED
                        ),
                        completed_at=utc_now(),
                    )
                    .execution_options(synchronize_session=False)
                )
                batch = await session.get(AnnouncementBatch, batch_id, populate_existing=True)
                return _batch_to_dto(batch)
        except SQLAlchemyError as e:
            raise UpstreamFailure(f"Failed to complete batch {batch_id}: {e}") from e

    async def get_status(self, announcement_id: UUID) -> AnnouncementStatus:
        try:
            async with self._session() as session:
                status = await session.scalar(
                    select(Announcement.status).where(Announcement.uuid == announcement_id)
                )
        except SQLAlchemyError as e:
            raise UpstreamFailure(f"Failed to read announcement status: {e}") from e
        if status is None:
            raise NotFoundError("Announcement")
        return AnnouncementStatus(status)

    async def finalize(self, announcement_id: UUID) -> AnnouncementDTO:
        try:
            async with self._session() as session:
                counts = await self._count_by_status(
                    session, AnnouncementRecipient.announcement_id == announcement_id
                )
                sent, failed = counts[RecipientStatus.SENT], counts[RecipientStatus.FAILED]
                await session.execute(
                    update(Announcement)
                    .where(Announcement.uuid == announcement_id)
                    .values(
                        total_recipients=sum(counts.values()),
                        sent_count=sent,
                        failed_count=failed,
                        dispatch_lease_until=None,
                    )
                    .execution_options(synchronize_session=False)
                )
                await session.execute(
                    update(Announcement)
                    .where(
                        Announcement.uuid == announcement_id,
                        Announcement.status == AnnouncementStatus.SENDING,
                    )
                    .values(
                        status=(
                            AnnouncementStatus.FAILED
                            if sent == 0 and failed > 0
                            else AnnouncementStatus.SENT
                        )
                    )
                    .execution_options(synchronize_session=False)
                )
                announcement = await session.get(Announcement, announcement_id, populate_existing=True)
                return _to_dto(announcement)
        except SQLAlchemyError as e:
            raise UpstreamFailure(f"Failed to finalize announcement: {e}") from e

    async def reset_for_resend(self, wedding_id: UUID, announcement_id: UUID) -> AnnouncementDTO:
        try:
            async with self._session() as session:
                announcement = await resolve_announcement(session, wedding_id, announcement_id)
                current_status = announcement.status
                if current_status in (AnnouncementStatus.SENDING, AnnouncementStatus.CANCELLED):
                    raise AnnouncementStateError(current_status.value, "resend")

                result = await session.execute(
                    update(Announcement)
                    .where(
                        Announcement.uuid == announcement_id,
                        Announcement.status == current_status,
                    )
                    .values(status=AnnouncementStatus.DRAFT, dispatch_lease_until=None)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    raise AnnouncementStateError(current_status.value, "resend")

                # Sent recipients are never touched
                await session.execute(
                    update(AnnouncementRecipient)
                    .where(
                        AnnouncementRecipient.announcement_id == announcement_id,
                        AnnouncementRecipient.status.in_(
                            [RecipientStatus.FAILED, RecipientStatus.PENDING]
                        ),
                    )
                    .values(status=RecipientStatus.PENDING, batch_id=None, error_message=None)
                    .execution_options(synchronize_session=False)
                )
                await session.execute(
                    update(AnnouncementBatch)
                    .where(
                        AnnouncementBatch.announcement_id == announcement_id,
                        AnnouncementBatch.status.in_(OPEN_BATCH_STATUSES),
                    )
                    .values(status=BatchStatus.COMPLETED, completed_at=utc_now())
                    .execution_options(synchronize_session=False)
                )
                await session.refresh(announcement)
                return _to_dto(announcement)
        except SQLAlchemyError as e:
            raise UpstreamFailure(f"Failed to reset announcement: {e}") from e

    async def cancel(self, wedding_id: UUID, announcement_id: UUID) -> AnnouncementDTO:
        try:
            async with self._session() as session:
                announcement = await resolve_announcement(session, wedding_id, announcement_id)
                current_status = announcement.status
                result = await session.execute(
                    update(Announcement)
                    .where(
                        Announcement.uuid == announcement_id,
                        Announcement.status.in_(
                            [
                                AnnouncementStatus.DRAFT,
                                AnnouncementStatus.SCHEDULED,
                                AnnouncementStatus.SENDING,
                            ]
                        ),
                    )
                    .values(status=AnnouncementStatus.CANCELLED)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    raise AnnouncementStateError(current_status.value, "cancel")
                await session.refresh(announcement)
                return _to_dto(announcement)
        except SQLAlchemyError as e:
            raise UpstreamFailure(f"Failed to cancel announcement: {e}") from e

    async def get_stats(self, wedding_id: UUID, announcement_id: UUID) -> AnnouncementStatsDTO:
        try:
            async with self._session() as session:
                announcement = await resolve_announcement(session, wedding_id, announcement_id)
                counts = await self._count_by_status(
                    session, AnnouncementRecipient.announcement_id == announcement_id
                )
                return AnnouncementStatsDTO(
                    status=announcement.status,
                    total_recipients=sum(counts.values()),
                    sent_count=counts[RecipientStatus.SENT],
                    failed_count=counts[RecipientStatus.FAILED],
                    pending_count=counts[RecipientStatus.PENDING],
                    skipped_count=counts[RecipientStatus.SKIPPED],
                    scheduled_at=as_utc(announcement.scheduled_at),
                )
        except SQLAlchemyError as e:
            raise UpstreamFailure(f"Failed to load announcement stats: {e}") from e

    async def list_due(self, now: datetime) -> list[tuple[UUID, UUID]]:
        try:
            async with self._session() as session:
                rows = await session.execute(
                    select(Announcement.wedding_id, Announcement.uuid)
                    .where(
                        Announcement.status == AnnouncementStatus.SCHEDULED,
                        Announcement.scheduled_at <= now,
                    )
                    .order_by(Announcement.scheduled_at)
                )
                return [(wedding_id, announcement_id) for wedding_id, announcement_id in rows.all()]
        except SQLAlchemyError as e:
            raise UpstreamFailure(f"Failed to list due announcements: {e}") from e
