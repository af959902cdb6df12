from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from src.cache.namespace import get_cache_manager
from src.errors import LifecycleError, to_http_exception
from src.notifications.bulk import BulkInvitationService
from src.notifications.channels import get_channel_senders
from src.notifications.dtos import Channel
from src.notifications.invitation_sender import InvitationSender
from src.notifications.rate_limiter import get_rate_limiter
from src.notifications.read_models import RateLimitReadModel, SqlRateLimitReadModel
from src.notifications.urls import (
    BULK_RSVP_REMINDERS_URL,
    RATE_LIMIT_URL,
    SEND_BULK_INVITE_ALL_URL,
    SEND_INVITATION_URL,
)
from src.notifications.write_models import SqlBulkRecipientWriteModel
from src.tenants.context import get_wedding_id

router = APIRouter()


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SendInvitationRequest(CamelModel):
    event_ids: list[UUID] = []
    channel: Channel = Channel.EMAIL
    ignore_rate_limit: bool = False


class SendInvitationResponse(CamelModel):
    success: bool
    channel: Channel
    destination: str
    message_id: str
    remaining_today: int


class RateLimitResponse(CamelModel):
    remaining: int
    sent_today: int
    max_per_day: int
    can_send: bool
    window_ends_at: datetime


class BulkInviteRequest(CamelModel):
    event_ids: list[UUID]
    channel: Channel = Channel.EMAIL
    ignore_rate_limit: bool = False


class BulkReminderRequest(CamelModel):
    event_ids: list[UUID]
    channel: Channel = Channel.EMAIL
    ignore_rate_limit: bool = True


class BulkSendResponse(CamelModel):
    processed: int
    sent: int
    skipped: int
    errors: list[str]


def get_invitation_sender() -> InvitationSender:
    return InvitationSender(
        senders=get_channel_senders(),
        rate_limiter=get_rate_limiter(),
        cache=get_cache_manager(),
    )


def get_rate_limit_read_model() -> RateLimitReadModel:
    return SqlRateLimitReadModel(rate_limiter=get_rate_limiter())


def get_bulk_invitation_service() -> BulkInvitationService:
    return BulkInvitationService(
        recipients=SqlBulkRecipientWriteModel(),
        invitation_sender=get_invitation_sender(),
        cache=get_cache_manager(),
    )


@router.post(SEND_INVITATION_URL, response_model=SendInvitationResponse)
async def send_invitation(
    invitation_id: UUID,
    request: SendInvitationRequest,
    wedding_id: UUID = Depends(get_wedding_id),
    sender: InvitationSender = Depends(get_invitation_sender),
) -> SendInvitationResponse:
    try:
        result = await sender.send_invitation(
            wedding_id=wedding_id,
            invitation_id=invitation_id,
            event_ids=request.event_ids,
            channel=request.channel,
            ignore_rate_limit=request.ignore_rate_limit,
        )
    except LifecycleError as e:
        raise to_http_exception(e)

    return SendInvitationResponse(
        success=True,
        channel=result.channel,
        destination=result.destination,
        message_id=result.provider_message_id,
        remaining_today=result.remaining_today,
    )


@router.get(RATE_LIMIT_URL, response_model=RateLimitResponse)
async def get_rate_limit(
    invitation_id: UUID,
    channel: Channel = Channel.EMAIL,
    wedding_id: UUID = Depends(get_wedding_id),
    read_model: RateLimitReadModel = Depends(get_rate_limit_read_model),
) -> RateLimitResponse:
    try:
        status = await read_model.get_status(wedding_id, invitation_id, channel)
    except LifecycleError as e:
        raise to_http_exception(e)

    return RateLimitResponse(
        remaining=status.remaining,
        sent_today=status.sent_today,
        max_per_day=status.max_per_day,
        can_send=status.can_send,
        window_ends_at=status.window_reset_at,
    )


@router.post(SEND_BULK_INVITE_ALL_URL, response_model=BulkSendResponse)
async def send_bulk_invite_all(
    request: BulkInviteRequest,
    wedding_id: UUID = Depends(get_wedding_id),
    service: BulkInvitationService = Depends(get_bulk_invitation_service),
) -> BulkSendResponse:
    """Invite every guest who has not responded yet to the selected events."""
    try:
        result = await service.send_invite_all(
            wedding_id,
            request.event_ids,
            channel=request.channel,
            ignore_rate_limit=request.ignore_rate_limit,
        )
    except LifecycleError as e:
        raise to_http_exception(e)
    return BulkSendResponse(
        processed=result.processed, sent=result.sent, skipped=result.skipped, errors=result.errors
    )


@router.post(BULK_RSVP_REMINDERS_URL, response_model=BulkSendResponse)
async def send_bulk_rsvp_reminders(
    request: BulkReminderRequest,
    wedding_id: UUID = Depends(get_wedding_id),
    service: BulkInvitationService = Depends(get_bulk_invitation_service),
) -> BulkSendResponse:
    try:
        result = await service.send_reminders(
            wedding_id,
            request.event_ids,
            channel=request.channel,
            ignore_rate_limit=request.ignore_rate_limit,
        )
    except LifecycleError as e:
        raise to_http_exception(e)
    return BulkSendResponse(
        processed=result.processed, sent=result.sent, skipped=result.skipped, errors=result.errors
    )
