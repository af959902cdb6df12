import logging
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from src.cache.namespace import CacheNamespaceManager, get_cache_manager
from src.cache.urls import CACHE_INVALIDATE_URL
from src.tenants.context import get_wedding_id

logger = logging.getLogger(__name__)

router = APIRouter()


class CacheInvalidateResponse(BaseModel):
    success: bool
    version: int


@router.post(CACHE_INVALIDATE_URL, response_model=CacheInvalidateResponse)
async def invalidate_cache(
    wedding_id: UUID = Depends(get_wedding_id),
    cache: CacheNamespaceManager = Depends(get_cache_manager),
) -> CacheInvalidateResponse:
    """Force-bump the wedding's cache namespace, for recovery from a suspected stale cache."""
    version = await cache.bump_namespace_version(wedding_id)
    logger.info(f"Cache namespace of wedding {wedding_id} manually bumped to v{version}")
    return CacheInvalidateResponse(success=True, version=version)
