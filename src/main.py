import asyncio
from contextlib import asynccontextmanager

import sentry_sdk
from alembic import command
from alembic.config import Config
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration

from src.announcements.router import router as announcements_router
from src.cache.router import router as cache_router
from src.config.logging import setup_logging
from src.config.settings import settings
from src.guests.routers import router as guests_router
from src.notifications.router import router as notifications_router
from src.routers.healthz.router import router as healthz_router
from src.seating.router import router as seating_router


async def run_migrations():
    alembic_cfg = Config("alembic.ini")
    await asyncio.to_thread(command.upgrade, alembic_cfg, "head")


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    if settings.RUN_MIGRATIONS_ON_STARTUP:
        await run_migrations()
    yield


if settings.SENTRY_DSN:
    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENVIRONMENT,
        traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
        profiles_sample_rate=settings.SENTRY_PROFILES_SAMPLE_RATE,
        integrations=[
            StarletteIntegration(transaction_style="endpoint"),
            FastApiIntegration(transaction_style="endpoint"),
        ],
        send_default_pii=False,
    )

app = FastAPI(
    title="Wedding Guest Lifecycle API",
    description="RSVP, check-in, invitations, announcements and seating for wedding guests",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,  # type: ignore[arg-type]
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(healthz_router, prefix="/healthz", tags=["Healthz"])
app.include_router(guests_router, tags=["Guests"])
app.include_router(notifications_router, tags=["Invitations"])
app.include_router(announcements_router, tags=["Announcements"])
app.include_router(seating_router, tags=["Seating"])
app.include_router(cache_router, tags=["Cache"])


@app.get("/", tags=["Root"])
async def root():
    return {"message": "Welcome to the Wedding Guest Lifecycle API"}
