from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from src.announcements.dispatcher import BatchDispatcher
from src.announcements.dtos import AnnouncementDTO, AnnouncementStatus, DispatchResult
from src.announcements.repository.write_models import (
    AnnouncementWriteModel,
    SqlAnnouncementWriteModel,
)
from src.announcements.urls import (
    ANNOUNCEMENT_STATS_URL,
    ANNOUNCEMENTS_URL,
    CANCEL_ANNOUNCEMENT_URL,
    RESEND_ANNOUNCEMENT_URL,
    SEND_ANNOUNCEMENT_URL,
)
from src.cache.namespace import CacheNamespaceManager, get_cache_manager
from src.config.settings import settings
from src.errors import LifecycleError, to_http_exception
from src.notifications.channels import get_channel_senders
from src.notifications.dtos import Channel
from src.notifications.rate_limiter import get_rate_limiter
from src.tenants.context import get_wedding_id

router = APIRouter()


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CreateAnnouncementRequest(CamelModel):
    title: str = Field(min_length=1)
    subject: str = Field(min_length=1)
    content: str = Field(min_length=1)
    channel: Channel = Channel.EMAIL
    guest_ids: list[UUID] = []
    send_to_all: bool = False
    scheduled_at: datetime | None = None
    batch_size: int = settings.announcement_default_batch_size


class AnnouncementResponse(CamelModel):
    id: UUID
    title: str
    subject: str
    channel: Channel
    status: AnnouncementStatus
    batch_size: int
    total_recipients: int
    sent_count: int
    failed_count: int
    scheduled_at: datetime | None = None


class SendAnnouncementRequest(CamelModel):
    resume: bool = False


class DispatchResponse(CamelModel):
    success: bool
    status: AnnouncementStatus | None
    processed: int
    sent: int
    failed: int
    skipped: int
    batches: int
    cancelled: bool
    errors: list[str]


class AnnouncementStatsResponse(CamelModel):
    status: AnnouncementStatus
    total_recipients: int
    sent_count: int
    failed_count: int
    pending_count: int
    skipped_count: int
    scheduled_at: datetime | None = None


def get_announcement_write_model() -> AnnouncementWriteModel:
    return SqlAnnouncementWriteModel()


def get_batch_dispatcher() -> BatchDispatcher:
    return BatchDispatcher(
        store=get_announcement_write_model(),
        senders=get_channel_senders(),
        rate_limiter=get_rate_limiter(),
        cache=get_cache_manager(),
    )


def _announcement_response(announcement: AnnouncementDTO) -> AnnouncementResponse:
    return AnnouncementResponse(
        id=announcement.uuid,
        title=announcement.title,
        subject=announcement.subject,
        channel=announcement.channel,
        status=announcement.status,
        batch_size=announcement.batch_size,
        total_recipients=announcement.total_recipients,
        sent_count=announcement.sent_count,
        failed_count=announcement.failed_count,
        scheduled_at=announcement.scheduled_at,
    )


def _dispatch_response(result: DispatchResult) -> DispatchResponse:
    return DispatchResponse(
        success=result.status != AnnouncementStatus.FAILED,
        status=result.status,
        processed=result.processed,
        sent=result.sent,
        failed=result.failed,
        skipped=result.skipped,
        batches=result.batches,
        cancelled=result.cancelled,
        errors=result.errors,
    )


@router.post(ANNOUNCEMENTS_URL, response_model=AnnouncementResponse, status_code=201)
async def create_announcement(
    request: CreateAnnouncementRequest,
    wedding_id: UUID = Depends(get_wedding_id),
    write_model: AnnouncementWriteModel = Depends(get_announcement_write_model),
    cache: CacheNamespaceManager = Depends(get_cache_manager),
) -> AnnouncementResponse:
    try:
        announcement = await write_model.create_announcement(
            wedding_id=wedding_id,
            title=request.title,
            subject=request.subject,
            content=request.content,
            channel=request.channel,
            guest_ids=request.guest_ids,
            send_to_all=request.send_to_all,
            scheduled_at=request.scheduled_at,
            batch_size=request.batch_size,
        )
    except LifecycleError as e:
        raise to_http_exception(e)

    await cache.bump_after_commit(wedding_id)
    return _announcement_response(announcement)


@router.post(SEND_ANNOUNCEMENT_URL, response_model=DispatchResponse)
async def send_announcement(
    announcement_id: UUID,
    request: SendAnnouncementRequest | None = None,
    wedding_id: UUID = Depends(get_wedding_id),
    dispatcher: BatchDispatcher = Depends(get_batch_dispatcher),
) -> DispatchResponse:
    """
    Send an announcement in batches.
    With resume=true an interrupted run continues where it stopped.
    """
    resume = request.resume if request else False
    try:
        result = await dispatcher.dispatch(wedding_id, announcement_id, resume=resume)
    except LifecycleError as e:
        raise to_http_exception(e)
    return _dispatch_response(result)


@router.post(RESEND_ANNOUNCEMENT_URL, response_model=DispatchResponse)
async def resend_announcement(
    announcement_id: UUID,
    wedding_id: UUID = Depends(get_wedding_id),
    dispatcher: BatchDispatcher = Depends(get_batch_dispatcher),
) -> DispatchResponse:
    """Retry failed and pending recipients only."""
    try:
        result = await dispatcher.resend(wedding_id, announcement_id)
    except LifecycleError as e:
        raise to_http_exception(e)
    return _dispatch_response(result)


@router.post(CANCEL_ANNOUNCEMENT_URL, response_model=AnnouncementResponse)
async def cancel_announcement(
    announcement_id: UUID,
    wedding_id: UUID = Depends(get_wedding_id),
    dispatcher: BatchDispatcher = Depends(get_batch_dispatcher),
) -> AnnouncementResponse:
    try:
        announcement = await dispatcher.cancel(wedding_id, announcement_id)
    except LifecycleError as e:
        raise to_http_exception(e)
    return _announcement_response(announcement)


@router.get(ANNOUNCEMENT_STATS_URL, response_model=AnnouncementStatsResponse)
async def get_announcement_stats(
    announcement_id: UUID,
    wedding_id: UUID = Depends(get_wedding_id),
    write_model: AnnouncementWriteModel = Depends(get_announcement_write_model),
    cache: CacheNamespaceManager = Depends(get_cache_manager),
) -> AnnouncementStatsResponse:
    async def fetch() -> dict:
        stats = await write_model.get_stats(wedding_id, announcement_id)
        return AnnouncementStatsResponse(
            status=stats.status,
            total_recipients=stats.total_recipients,
            sent_count=stats.sent_count,
            failed_count=stats.failed_count,
            pending_count=stats.pending_count,
            skipped_count=stats.skipped_count,
            scheduled_at=stats.scheduled_at,
        ).model_dump(mode="json")

    try:
        payload = await cache.cached(wedding_id, f"announcements:{announcement_id}:stats", fetch)
    except LifecycleError as e:
        raise to_http_exception(e)
    return AnnouncementStatsResponse(**payload)
