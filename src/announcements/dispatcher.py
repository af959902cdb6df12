"""Resumable batched announcement dispatch.

Batches are planned and persisted before anything is sent, then processed
one after another; recipients inside a batch go through a bounded worker
pool. Each recipient outcome is persisted as it happens, so re-running a
crashed dispatch with ``resume=True`` only contacts recipients that are
still pending. A running dispatch holds a lease on the announcement, so a
resume cannot overlap a run that is still alive.
"""

import logging
from uuid import UUID

from src.announcements.dtos import (
    AnnouncementDTO,
    AnnouncementStatus,
    DispatchResult,
    RecipientDTO,
    RecipientStatus,
)
from src.announcements.repository.write_models import AnnouncementWriteModel
from src.cache.namespace import CacheNamespaceManager
from src.config.settings import settings
from src.errors import LifecycleError, RateLimitedError
from src.models.base import utc_now
from src.notifications.channels.base import ChannelSender
from src.notifications.dtos import Channel, MessageKind
from src.notifications.rate_limiter import RateLimiter
from src.notifications.templates import render_announcement
from src.notifications.worker_pool import run_bounded

logger = logging.getLogger(__name__)


class BatchDispatcher:
    def __init__(
        self,
        store: AnnouncementWriteModel,
        senders: dict[Channel, ChannelSender],
        rate_limiter: RateLimiter,
        cache: CacheNamespaceManager | None = None,
        concurrency: int = settings.dispatch_concurrency,
    ):
        self._store = store
        self._senders = senders
        self._rate_limiter = rate_limiter
        self._cache = cache
        self._concurrency = concurrency

    async def _bump(self, wedding_id: UUID) -> None:
        if self._cache:
            await self._cache.bump_after_commit(wedding_id)

    async def dispatch(
        self, wedding_id: UUID, announcement_id: UUID, resume: bool = False
    ) -> DispatchResult:
        announcement = await self._store.claim_for_dispatch(wedding_id, announcement_id, resume)
        # Claiming already changed the status
        await self._bump(wedding_id)

        try:
            result = await self._run(announcement, resume)
        except Exception:
            # Hand the announcement back so a resume can take over straight away
            await self._abandon(announcement)
            raise

        logger.info(
            f"Announcement {announcement.uuid} dispatch finished: {result.status.value}, "
            f"{result.sent} sent, {result.failed} failed, {result.skipped} skipped"
        )
        return result

    async def _run(self, announcement: AnnouncementDTO, resume: bool) -> DispatchResult:
        batches = await self._store.plan_batches(announcement.uuid, announcement.batch_size)
        logger.info(
            f"Dispatching announcement {announcement.uuid} in {len(batches)} batch(es)"
            + (" (resumed)" if resume else "")
        )

        result = DispatchResult(announcement_id=announcement.uuid)
        for batch in batches:
            await self._store.renew_lease(announcement.uuid)
            recipients = await self._store.start_batch(batch.uuid)
            logger.info(
                f"Announcement {announcement.uuid}: batch {batch.batch_number} started "
                f"with {len(recipients)} recipient(s)"
            )

            async def deliver(recipient: RecipientDTO) -> None:
                await self._deliver(announcement, recipient, result)

            await run_bounded(recipients, deliver, self._concurrency)

            completed = await self._store.complete_batch(batch.uuid)
            result.batches += 1
            await self._bump(announcement.wedding_id)
            logger.info(
                f"Announcement {announcement.uuid}: batch {completed.batch_number} {completed.status.value} "
                f"({completed.sent_count} sent, {completed.failed_count} failed)"
            )

            if await self._store.get_status(announcement.uuid) == AnnouncementStatus.CANCELLED:
                logger.info(f"Announcement {announcement.uuid} cancelled, stopping dispatch")
                result.cancelled = True
                break

        final = await self._store.finalize(announcement.uuid)
        result.status = final.status
        await self._bump(announcement.wedding_id)
        return result

    async def _abandon(self, announcement: AnnouncementDTO) -> None:
        logger.error(f"Dispatch of announcement {announcement.uuid} aborted, left resumable")
        try:
            await self._store.release_lease(announcement.uuid)
        except LifecycleError:
            # The lease still runs out on its own
            logger.exception(f"Failed to release dispatch lease of {announcement.uuid}")
        # Recipients persisted before the abort must show up in cached stats
        await self._bump(announcement.wedding_id)

    async def _deliver(
        self, announcement: AnnouncementDTO, recipient: RecipientDTO, result: DispatchResult
    ) -> None:
        """Send to one recipient and persist the outcome.

        Send and rate limit failures are recorded on the recipient. A failure to
        persist the outcome escapes and aborts the run.
        """
        if recipient.status.is_terminal:
            return

        if not recipient.destination:
            await self._record(result, recipient, RecipientStatus.SKIPPED, error="No destination")
            return

        channel = announcement.channel
        if recipient.invitation_token:
            try:
                await self._rate_limiter.check_and_consume(recipient.invitation_token, channel)
            except RateLimitedError as e:
                await self._record(result, recipient, RecipientStatus.SKIPPED, error=str(e))
                return
            except LifecycleError as e:
                await self._record(
                    result, recipient, RecipientStatus.SKIPPED, error=f"Rate limit unavailable: {e}"
                )
                return

        message = render_announcement(
            channel, announcement.subject, announcement.content, recipient.guest_name
        )
        try:
            provider_message_id = await self._senders[channel].send(message, recipient.destination)
        except LifecycleError as e:
            logger.warning(f"Failed to send announcement to {recipient.destination}: {e}")
            await self._log_attempt(announcement, recipient, success=False, error=str(e))
            await self._record(result, recipient, RecipientStatus.FAILED, error=str(e))
            return

        await self._log_attempt(announcement, recipient, success=True, provider_message_id=provider_message_id)
        await self._record(
            result, recipient, RecipientStatus.SENT, provider_message_id=provider_message_id
        )

    async def _record(
        self,
        result: DispatchResult,
        recipient: RecipientDTO,
        status: RecipientStatus,
        provider_message_id: str | None = None,
        error: str | None = None,
    ) -> None:
        applied = await self._store.mark_recipient(
            recipient.uuid, status, provider_message_id=provider_message_id, error_message=error
        )
        if not applied:
            return
        result.processed += 1
        if status == RecipientStatus.SENT:
            result.sent += 1
        elif status == RecipientStatus.FAILED:
            result.failed += 1
            result.errors.append(f"{recipient.guest_name}: {error}")
        else:
            result.skipped += 1
            result.errors.append(f"{recipient.guest_name}: skipped, {error}")

    async def _log_attempt(
        self,
        announcement: AnnouncementDTO,
        recipient: RecipientDTO,
        success: bool,
        provider_message_id: str | None = None,
        error: str | None = None,
    ) -> None:
        if not recipient.invitation_token:
            return
        try:
            await self._rate_limiter.record_attempt(
                wedding_id=announcement.wedding_id,
                token=recipient.invitation_token,
                channel=announcement.channel,
                kind=MessageKind.ANNOUNCEMENT,
                destination=recipient.destination,
                success=success,
                provider_message_id=provider_message_id,
                error_message=error,
            )
        except LifecycleError:
            # The recipient row is the delivery record; the log only feeds the rate limiter
            logger.exception(f"Failed to write mail log for {recipient.destination}")

    async def resend(self, wedding_id: UUID, announcement_id: UUID) -> DispatchResult:
        """Retry failed and pending recipients; sent recipients are never contacted again."""
        await self._store.reset_for_resend(wedding_id, announcement_id)
        return await self.dispatch(wedding_id, announcement_id)

    async def cancel(self, wedding_id: UUID, announcement_id: UUID) -> AnnouncementDTO:
        announcement = await self._store.cancel(wedding_id, announcement_id)
        await self._bump(wedding_id)
        return announcement

    async def dispatch_due(self, now=None) -> list[DispatchResult]:
        results = []
        for wedding_id, announcement_id in await self._store.list_due(now or utc_now()):
            try:
                results.append(await self.dispatch(wedding_id, announcement_id))
            except LifecycleError:
                logger.exception(f"Failed to dispatch scheduled announcement {announcement_id}")
        return results
