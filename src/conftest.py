import os
import tempfile
from contextlib import asynccontextmanager
from datetime import UTC, datetime, timedelta
from uuid import UUID

# Must be set before src.config is imported
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{tempfile.mkdtemp()}/lifecycle.db"
os.environ.setdefault("REDIS_URL", "")

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

import src.announcements.repository.orm_models  # noqa: E402, F401
import src.notifications.orm_models  # noqa: E402, F401
from src.cache.namespace import get_cache_manager  # noqa: E402
from src.config.database import async_session_manager, engine  # noqa: E402
from src.guests.dtos import InvitationEventStatus  # noqa: E402
from src.guests.repository.orm_models import Event, Guest, Invitation, InvitationEvent  # noqa: E402
from src.main import app  # noqa: E402
from src.models import BaseModel, Wedding  # noqa: E402
from src.seating.repository.orm_models import Seat, SeatingTable  # noqa: E402


@pytest.fixture(autouse=True)
async def database():
    """Fresh schema for every test."""
    async with engine.begin() as conn:
        await conn.run_sync(BaseModel.metadata.drop_all)
        await conn.run_sync(BaseModel.metadata.create_all)
    get_cache_manager.cache_clear()
    yield
    get_cache_manager.cache_clear()
    await engine.dispose()


@pytest.fixture(scope="function")
async def client():
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture(scope="function")
def client_factory():
    @asynccontextmanager
    async def factory(overrides: dict | None = None):
        app.dependency_overrides.update(overrides or {})
        try:
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as ac:
                yield ac
        finally:
            app.dependency_overrides.clear()

    return factory


class Seed:
    """Committed test data. Returns ids only, so nothing is used detached."""

    async def wedding(self, name: str = "Ana & Ben") -> UUID:
        async with async_session_manager() as session:
            wedding = Wedding(name=name, couple_display_name=name)
            session.add(wedding)
            await session.flush()
            return wedding.uuid

    async def guest(
        self,
        wedding_id: UUID,
        first_name: str = "John",
        last_name: str = "Doe",
        email: str | None = "john@example.com",
        phone: str | None = None,
        invite_code: str | None = None,
        total_guests: int | None = None,
    ) -> UUID:
        async with async_session_manager() as session:
            guest = Guest(
                wedding_id=wedding_id,
                first_name=first_name,
                last_name=last_name,
                email=email,
                phone=phone,
                invite_code=invite_code,
                total_guests=total_guests,
            )
            session.add(guest)
            await session.flush()
            return guest.uuid

    async def event(
        self,
        wedding_id: UUID,
        name: str = "Ceremony",
        starts_at: datetime | None = None,
        venue: str | None = "Old Chapel",
    ) -> UUID:
        async with async_session_manager() as session:
            event = Event(
                wedding_id=wedding_id,
                name=name,
                starts_at=starts_at or datetime(2027, 6, 12, 14, 0, tzinfo=UTC),
                venue=venue,
            )
            session.add(event)
            await session.flush()
            return event.uuid

    async def invitation(
        self,
        wedding_id: UUID,
        guest_id: UUID,
        token: str,
        events: dict[UUID, InvitationEventStatus] | None = None,
        headcount: int = 1,
    ) -> UUID:
        async with async_session_manager() as session:
            invitation = Invitation(wedding_id=wedding_id, guest_id=guest_id, token=token)
            session.add(invitation)
            await session.flush()
            for event_id, status in (events or {}).items():
                session.add(
                    InvitationEvent(
                        invitation_id=invitation.uuid,
                        event_id=event_id,
                        status=status,
                        headcount=headcount,
                    )
                )
            await session.flush()
            return invitation.uuid

    async def table(
        self, event_id: UUID, name: str = "Table 1", capacity: int = 8, pos_x=0.0, pos_y=0.0
    ) -> UUID:
        async with async_session_manager() as session:
            table = SeatingTable(
                event_id=event_id, name=name, capacity=capacity, pos_x=pos_x, pos_y=pos_y
            )
            session.add(table)
            await session.flush()
            return table.uuid

    async def seat(self, table_id: UUID, seat_number: int, guest_id: UUID | None = None) -> UUID:
        async with async_session_manager() as session:
            seat = Seat(table_id=table_id, seat_number=seat_number, guest_id=guest_id)
            session.add(seat)
            await session.flush()
            return seat.uuid


@pytest.fixture(scope="function")
def seed() -> Seed:
    return Seed()


@pytest.fixture(scope="function")
def later():
    """Event start times relative to a fixed day."""

    def at(hours: int) -> datetime:
        return datetime(2027, 6, 12, 12, 0, tzinfo=UTC) + timedelta(hours=hours)

    return at
