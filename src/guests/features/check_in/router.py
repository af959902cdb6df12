from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from src.errors import AlreadyCheckedInError, LifecycleError, to_http_exception
from src.guests.dtos import CheckInDTO, CheckInMethod
from src.guests.features.record_rsvp.router import get_guest_lifecycle_write_model
from src.guests.repository.write_models import GuestLifecycleWriteModel
from src.guests.urls import CHECK_IN_URL, MANUAL_CHECK_IN_URL
from src.tenants.context import get_wedding_id

router = APIRouter()


class CheckInSubmit(BaseModel):
    """Scanned QR code: a bare token or the check-in URL carrying it."""

    token: str = Field(min_length=1)
    checked_in_by: str | None = None


class ManualCheckInSubmit(BaseModel):
    invite_code: str = Field(min_length=1)
    event_id: UUID
    checked_in_by: str | None = None


class CheckedInGuest(BaseModel):
    name: str
    invite_code: str | None = None


class CheckInResult(BaseModel):
    success: bool
    message: str
    guest: CheckedInGuest
    event_id: UUID
    event_name: str
    event_venue: str | None = None
    checked_in_at: datetime
    method: CheckInMethod


def _check_in_result(check_in: CheckInDTO) -> CheckInResult:
    return CheckInResult(
        success=True,
        message=f"{check_in.guest_name} checked in to {check_in.event_name}",
        guest=CheckedInGuest(name=check_in.guest_name, invite_code=check_in.invite_code),
        event_id=check_in.event_id,
        event_name=check_in.event_name,
        event_venue=check_in.event_venue,
        checked_in_at=check_in.checked_in_at,
        method=check_in.method,
    )


def _already_checked_in(error: AlreadyCheckedInError) -> JSONResponse:
    return JSONResponse(
        status_code=error.status_code,
        content={
            "success": False,
            "detail": str(error),
            "already_checked_in": True,
            "guest_name": error.guest_name,
            "checked_in_at": error.checked_in_at.isoformat(),
        },
    )


@router.post(CHECK_IN_URL, response_model=CheckInResult)
async def check_in_by_token(
    check_in_data: CheckInSubmit,
    wedding_id: UUID = Depends(get_wedding_id),
    write_model: GuestLifecycleWriteModel = Depends(get_guest_lifecycle_write_model),
):
    try:
        check_in = await write_model.check_in_by_token(
            wedding_id, check_in_data.token, checked_in_by=check_in_data.checked_in_by
        )
    except AlreadyCheckedInError as e:
        return _already_checked_in(e)
    except LifecycleError as e:
        raise to_http_exception(e)
    return _check_in_result(check_in)


@router.post(MANUAL_CHECK_IN_URL, response_model=CheckInResult)
async def manual_check_in(
    check_in_data: ManualCheckInSubmit,
    wedding_id: UUID = Depends(get_wedding_id),
    write_model: GuestLifecycleWriteModel = Depends(get_guest_lifecycle_write_model),
):
    try:
        check_in = await write_model.check_in(
            wedding_id,
            check_in_data.invite_code,
            check_in_data.event_id,
            checked_in_by=check_in_data.checked_in_by,
        )
    except AlreadyCheckedInError as e:
        return _already_checked_in(e)
    except LifecycleError as e:
        raise to_http_exception(e)
    return _check_in_result(check_in)
