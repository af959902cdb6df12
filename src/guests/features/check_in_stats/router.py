from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from src.cache.namespace import get_cache_manager
from src.errors import LifecycleError, to_http_exception
from src.guests.repository.read_models import CheckInStatsReadModel, SqlCheckInStatsReadModel
from src.guests.urls import CHECK_IN_STATS_URL
from src.tenants.context import get_wedding_id

router = APIRouter()


class CheckInStatsResponse(BaseModel):
    invited: int
    accepted: int
    declined: int
    accepted_headcount: int
    checked_in: int


def get_check_in_stats_read_model() -> CheckInStatsReadModel:
    return SqlCheckInStatsReadModel(cache=get_cache_manager())


@router.get(CHECK_IN_STATS_URL, response_model=CheckInStatsResponse)
async def get_check_in_stats(
    event_id: UUID | None = None,
    wedding_id: UUID = Depends(get_wedding_id),
    read_model: CheckInStatsReadModel = Depends(get_check_in_stats_read_model),
) -> CheckInStatsResponse:
    try:
        stats = await read_model.get_stats(wedding_id, event_id)
    except LifecycleError as e:
        raise to_http_exception(e)
    return CheckInStatsResponse(**stats)
