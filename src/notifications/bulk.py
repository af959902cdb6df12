import logging
from uuid import UUID

from src.cache.namespace import CacheNamespaceManager
from src.config.settings import settings
from src.errors import InputValidationError, LifecycleError, RateLimitedError
from src.notifications.dtos import BulkSendResult, Channel, MessageKind
from src.notifications.invitation_sender import InvitationSender
from src.notifications.worker_pool import chunked, run_bounded
from src.notifications.write_models import BulkRecipientWriteModel, BulkTarget

logger = logging.getLogger(__name__)


class BulkInvitationService:
    """Bulk invitation and RSVP reminder runs.

    Every guest goes through the individual send path, so the rate limiter and
    the mail log see bulk sends exactly like single sends. Per guest failures
    are collected in the result and never abort the run.
    """

    def __init__(
        self,
        recipients: BulkRecipientWriteModel,
        invitation_sender: InvitationSender,
        cache: CacheNamespaceManager | None = None,
        batch_size: int = settings.announcement_default_batch_size,
        concurrency: int = settings.dispatch_concurrency,
    ):
        self._recipients = recipients
        self._invitation_sender = invitation_sender
        self._cache = cache
        self._batch_size = batch_size
        self._concurrency = concurrency

    async def send_invite_all(
        self,
        wedding_id: UUID,
        event_ids: list[UUID],
        channel: Channel = Channel.EMAIL,
        ignore_rate_limit: bool = False,
    ) -> BulkSendResult:
        targets = await self._recipients.prepare_invite_all(wedding_id, event_ids)
        # Invitations may have been created even if nothing gets sent
        if self._cache:
            await self._cache.bump_after_commit(wedding_id)
        logger.info(f"Bulk invite for wedding {wedding_id}: {len(targets)} guest(s)")
        return await self._run(
            wedding_id, targets, channel, ignore_rate_limit, MessageKind.INVITATION
        )

    async def send_reminders(
        self,
        wedding_id: UUID,
        event_ids: list[UUID],
        channel: Channel = Channel.EMAIL,
        ignore_rate_limit: bool = True,
    ) -> BulkSendResult:
        targets = await self._recipients.pending_reminders(wedding_id, event_ids)
        logger.info(f"Bulk RSVP reminders for wedding {wedding_id}: {len(targets)} invitation(s)")
        return await self._run(wedding_id, targets, channel, ignore_rate_limit, MessageKind.REMINDER)

    async def _run(
        self,
        wedding_id: UUID,
        targets: list[BulkTarget],
        channel: Channel,
        ignore_rate_limit: bool,
        kind: MessageKind,
    ) -> BulkSendResult:
        result = BulkSendResult()

        async def send_one(target: BulkTarget) -> None:
            result.processed += 1
            if target.skip_reason:
                logger.debug(f"Skipping {target.guest_name}: {target.skip_reason}")
                result.skipped += 1
                return
            try:
                await self._invitation_sender.send_invitation(
                    wedding_id=wedding_id,
                    invitation_id=target.invitation_id,
                    event_ids=target.event_ids,
                    channel=channel,
                    ignore_rate_limit=ignore_rate_limit,
                    kind=kind,
                )
                result.sent += 1
            except (RateLimitedError, InputValidationError) as e:
                # Rate limited, or no destination for this channel
                logger.debug(f"Skipping {target.guest_name}: {e}")
                result.skipped += 1
                result.errors.append(f"{target.guest_name}: skipped, {e}")
            except LifecycleError as e:
                logger.warning(f"Bulk {kind.value} to {target.guest_name} failed: {e}")
                result.errors.append(f"{target.guest_name}: {e}")

        for batch in chunked(targets, self._batch_size):
            await run_bounded(batch, send_one, self._concurrency)

        logger.info(
            f"Bulk {kind.value} for wedding {wedding_id} finished: {result.processed} processed, "
            f"{result.sent} sent, {result.skipped} skipped, {len(result.errors)} error(s)"
        )
        return result
