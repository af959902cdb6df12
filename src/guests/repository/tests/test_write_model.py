"""Tests for SqlGuestLifecycleWriteModel."""

import asyncio
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from src.cache.namespace import CacheNamespaceManager
from src.cache.store import InMemoryKeyValueStore
from src.config.database import async_session_manager
from src.errors import AlreadyCheckedInError, NotAcceptedError, NotFoundError
from src.guests.dtos import CheckInMethod, InvitationEventStatus, RsvpResponse
from src.guests.repository.orm_models import Attendance, InvitationEvent
from src.guests.repository.write_models import (
    SqlGuestLifecycleWriteModel,
    clamp_headcount,
    extract_token,
)

ACCEPTED = InvitationEventStatus.ACCEPTED
INVITED = InvitationEventStatus.INVITED


async def count_rows(model, *filters) -> int:
    async with async_session_manager() as session:
        return await session.scalar(select(func.count()).select_from(model).where(*filters))


@pytest.fixture
def cache():
    return CacheNamespaceManager(InMemoryKeyValueStore())


@pytest.mark.asyncio
async def test_record_rsvp_accepts_with_clamped_headcount(seed, cache):
    wedding_id = await seed.wedding()
    event_id = await seed.event(wedding_id)
    guest_id = await seed.guest(wedding_id, total_guests=2)
    await seed.invitation(wedding_id, guest_id, "tok-1", {event_id: INVITED})
    write_model = SqlGuestLifecycleWriteModel(cache=cache, max_party_size=4)
    version_before = await cache.current_version(wedding_id)

    result = await write_model.record_rsvp(wedding_id, "tok-1", event_id, RsvpResponse.ACCEPTED, 9)

    assert result.status == ACCEPTED
    assert result.headcount == 2
    assert await cache.current_version(wedding_id) > version_before


@pytest.mark.asyncio
async def test_record_rsvp_twice_keeps_one_row_last_write_wins(seed):
    wedding_id = await seed.wedding()
    event_id = await seed.event(wedding_id)
    guest_id = await seed.guest(wedding_id)
    await seed.invitation(wedding_id, guest_id, "tok-1", {event_id: INVITED})
    write_model = SqlGuestLifecycleWriteModel()

    await write_model.record_rsvp(wedding_id, "tok-1", event_id, RsvpResponse.ACCEPTED, 2)
    result = await write_model.record_rsvp(wedding_id, "tok-1", event_id, RsvpResponse.DECLINED, 2)

    assert result.status == InvitationEventStatus.DECLINED
    assert result.headcount == 0
    assert await count_rows(InvitationEvent, InvitationEvent.event_id == event_id) == 1
    async with async_session_manager() as session:
        stored = await session.scalar(
            select(InvitationEvent.status).where(InvitationEvent.event_id == event_id)
        )
    assert stored == InvitationEventStatus.DECLINED


@pytest.mark.asyncio
async def test_record_rsvp_unknown_event_is_not_found(seed):
    wedding_id = await seed.wedding()
    event_id = await seed.event(wedding_id)
    other_event_id = await seed.event(wedding_id, name="Brunch")
    guest_id = await seed.guest(wedding_id)
    await seed.invitation(wedding_id, guest_id, "tok-1", {event_id: INVITED})

    with pytest.raises(NotFoundError):
        await SqlGuestLifecycleWriteModel().record_rsvp(
            wedding_id, "tok-1", other_event_id, RsvpResponse.ACCEPTED, 1
        )


@pytest.mark.asyncio
async def test_record_rsvp_other_wedding_looks_missing(seed):
    wedding_id = await seed.wedding()
    other_wedding_id = await seed.wedding("Cleo & Dan")
    event_id = await seed.event(wedding_id)
    guest_id = await seed.guest(wedding_id)
    await seed.invitation(wedding_id, guest_id, "tok-1", {event_id: INVITED})

    with pytest.raises(NotFoundError):
        await SqlGuestLifecycleWriteModel().record_rsvp(
            other_wedding_id, "tok-1", event_id, RsvpResponse.ACCEPTED, 1
        )


@pytest.mark.asyncio
async def test_check_in_by_invite_code(seed):
    wedding_id = await seed.wedding()
    event_id = await seed.event(wedding_id)
    guest_id = await seed.guest(wedding_id, invite_code="ABC123")
    await seed.invitation(wedding_id, guest_id, "tok-1", {event_id: ACCEPTED})

    result = await SqlGuestLifecycleWriteModel().check_in(
        wedding_id, " abc123 ", event_id, checked_in_by="door"
    )

    assert result.guest_name == "John Doe"
    assert result.event_id == event_id
    assert result.method == CheckInMethod.MANUAL
    assert result.checked_in_at.tzinfo is not None


@pytest.mark.asyncio
async def test_check_in_twice_reports_original_time(seed):
    wedding_id = await seed.wedding()
    event_id = await seed.event(wedding_id)
    guest_id = await seed.guest(wedding_id, invite_code="ABC123")
    await seed.invitation(wedding_id, guest_id, "tok-1", {event_id: ACCEPTED})
    write_model = SqlGuestLifecycleWriteModel()

    first = await write_model.check_in(wedding_id, "ABC123", event_id)
    with pytest.raises(AlreadyCheckedInError) as exc_info:
        await write_model.check_in(wedding_id, "ABC123", event_id)

    assert exc_info.value.checked_in_at == first.checked_in_at
    assert exc_info.value.guest_name == "John Doe"


@pytest.mark.asyncio
async def test_check_in_requires_accepted_rsvp(seed):
    wedding_id = await seed.wedding()
    event_id = await seed.event(wedding_id)
    guest_id = await seed.guest(wedding_id, invite_code="ABC123")
    await seed.invitation(wedding_id, guest_id, "tok-1", {event_id: INVITED})

    with pytest.raises(NotAcceptedError):
        await SqlGuestLifecycleWriteModel().check_in(wedding_id, "ABC123", event_id)
    assert await count_rows(Attendance) == 0


@pytest.mark.asyncio
async def test_check_in_unknown_invite_code(seed):
    wedding_id = await seed.wedding()
    event_id = await seed.event(wedding_id)

    with pytest.raises(NotFoundError):
        await SqlGuestLifecycleWriteModel().check_in(wedding_id, "NOPE", event_id)


@pytest.mark.asyncio
async def test_concurrent_check_ins_succeed_exactly_once(seed):
    wedding_id = await seed.wedding()
    event_id = await seed.event(wedding_id)
    guest_id = await seed.guest(wedding_id, invite_code="ABC123")
    await seed.invitation(wedding_id, guest_id, "tok-1", {event_id: ACCEPTED})

    outcomes = await asyncio.gather(
        *(SqlGuestLifecycleWriteModel().check_in(wedding_id, "ABC123", event_id) for _ in range(5)),
        return_exceptions=True,
    )

    successes = [outcome for outcome in outcomes if not isinstance(outcome, BaseException)]
    conflicts = [outcome for outcome in outcomes if isinstance(outcome, AlreadyCheckedInError)]
    assert len(successes) == 1
    assert len(conflicts) == 4
    assert {conflict.checked_in_at for conflict in conflicts} == {successes[0].checked_in_at}
    assert await count_rows(Attendance) == 1


@pytest.mark.asyncio
async def test_check_in_by_token_uses_earliest_accepted_event(seed, later):
    wedding_id = await seed.wedding()
    dinner_id = await seed.event(wedding_id, name="Dinner", starts_at=later(6))
    ceremony_id = await seed.event(wedding_id, name="Ceremony", starts_at=later(2))
    brunch_id = await seed.event(wedding_id, name="Brunch", starts_at=later(0))
    guest_id = await seed.guest(wedding_id)
    await seed.invitation(
        wedding_id,
        guest_id,
        "tok-1",
        {dinner_id: ACCEPTED, ceremony_id: ACCEPTED, brunch_id: INVITED},
    )

    result = await SqlGuestLifecycleWriteModel().check_in_by_token(
        wedding_id, "https://wedding.example/admin/checkin?token=tok-1"
    )

    assert result.event_id == ceremony_id
    assert result.method == CheckInMethod.QR_CODE

    with pytest.raises(AlreadyCheckedInError) as exc_info:
        await SqlGuestLifecycleWriteModel().check_in_by_token(wedding_id, "tok-1")
    assert exc_info.value.checked_in_at == result.checked_in_at


@pytest.mark.asyncio
async def test_check_in_by_token_without_accepted_event(seed):
    wedding_id = await seed.wedding()
    event_id = await seed.event(wedding_id)
    guest_id = await seed.guest(wedding_id)
    await seed.invitation(wedding_id, guest_id, "tok-1", {event_id: INVITED})

    with pytest.raises(NotAcceptedError):
        await SqlGuestLifecycleWriteModel().check_in_by_token(wedding_id, "tok-1")


@pytest.mark.asyncio
async def test_check_in_by_token_unknown_token(seed):
    wedding_id = await seed.wedding()

    with pytest.raises(NotFoundError):
        await SqlGuestLifecycleWriteModel().check_in_by_token(wedding_id, str(uuid4()))


def test_extract_token():
    assert extract_token("abc") == "abc"
    assert extract_token(" https://x.example/admin/checkin?token=abc&x=1 ") == "abc"


def test_clamp_headcount():
    assert clamp_headcount(3, None, 4) == 3
    assert clamp_headcount(0, None, 4) == 1
    assert clamp_headcount(6, None, 4) == 4
    assert clamp_headcount(6, 2, 4) == 2
    assert clamp_headcount(6, 10, 4) == 4
    assert clamp_headcount(3, None, 4, plus_ones_enabled=False) == 1
