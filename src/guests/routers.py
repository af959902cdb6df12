from fastapi import APIRouter

from .features.check_in.router import router as check_in_router
from .features.check_in_stats.router import router as check_in_stats_router
from .features.record_rsvp.router import router as record_rsvp_router

router = APIRouter()

router.include_router(record_rsvp_router)
router.include_router(check_in_router)
router.include_router(check_in_stats_router)
