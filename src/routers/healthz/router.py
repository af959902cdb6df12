import logging

from fastapi import APIRouter
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from src.cache.namespace import get_cache_manager
from src.config.database import async_session_manager

logger = logging.getLogger(__name__)

router = APIRouter()


class HealthCheckResponse(BaseModel):
    status: str
    database: bool
    cache: bool
    version: str = "0.1.0"


async def _database_reachable() -> bool:
    try:
        async with async_session_manager(auto_commit=False) as session:
            await session.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.warning(f"Database unreachable: {e}")
        return False
    return True


@router.get("/", response_model=HealthCheckResponse)
async def health_check() -> HealthCheckResponse:
    """
    Report whether the API can reach its database and cache store.

    A cache outage only degrades the service, reads fall back to the database.
    """
    database = await _database_reachable()
    cache = await get_cache_manager().ping()
    if not database:
        status = "unhealthy"
    elif not cache:
        status = "degraded"
    else:
        status = "healthy"
    return HealthCheckResponse(status=status, database=database, cache=cache)
