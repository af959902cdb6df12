from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from src.cache.namespace import get_cache_manager
from src.errors import LifecycleError, to_http_exception
from src.guests.dtos import InvitationEventStatus, RsvpResponse
from src.guests.repository.write_models import (
    GuestLifecycleWriteModel,
    SqlGuestLifecycleWriteModel,
)
from src.guests.urls import RECORD_RSVP_URL
from src.tenants.context import get_wedding_id

router = APIRouter()


class RSVPSubmit(BaseModel):
    response: RsvpResponse
    headcount: int = Field(default=1, ge=0)


class RSVPResult(BaseModel):
    message: str
    status: InvitationEventStatus
    headcount: int


def get_guest_lifecycle_write_model() -> GuestLifecycleWriteModel:
    return SqlGuestLifecycleWriteModel(cache=get_cache_manager())


@router.post(RECORD_RSVP_URL, response_model=RSVPResult)
async def record_rsvp(
    token: str,
    event_id: UUID,
    rsvp_data: RSVPSubmit,
    wedding_id: UUID = Depends(get_wedding_id),
    write_model: GuestLifecycleWriteModel = Depends(get_guest_lifecycle_write_model),
) -> RSVPResult:
    """
    Record the guest's response for one event.
    Submitting again overwrites the previous response.
    """
    try:
        result = await write_model.record_rsvp(
            wedding_id=wedding_id,
            token=token,
            event_id=event_id,
            response=rsvp_data.response,
            headcount=rsvp_data.headcount,
        )
    except LifecycleError as e:
        raise to_http_exception(e)

    message = (
        "Thank you for confirming your attendance!"
        if result.status == InvitationEventStatus.ACCEPTED
        else "We're sorry you can't make it. Your response has been recorded."
    )
    return RSVPResult(message=message, status=result.status, headcount=result.headcount)
