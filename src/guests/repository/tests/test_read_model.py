import pytest

from src.cache.namespace import CacheNamespaceManager
from src.cache.store import InMemoryKeyValueStore
from src.errors import NotFoundError
from src.guests.dtos import InvitationEventStatus, RsvpResponse
from src.guests.repository.read_models import SqlCheckInStatsReadModel
from src.guests.repository.write_models import SqlGuestLifecycleWriteModel


async def seed_party(seed):
    wedding_id = await seed.wedding()
    ceremony_id = await seed.event(wedding_id)
    brunch_id = await seed.event(wedding_id, name="Brunch")
    statuses = [
        InvitationEventStatus.ACCEPTED,
        InvitationEventStatus.ACCEPTED,
        InvitationEventStatus.DECLINED,
        InvitationEventStatus.INVITED,
    ]
    for index, status in enumerate(statuses):
        guest_id = await seed.guest(
            wedding_id, first_name=f"Guest{index}", invite_code=f"CODE{index}"
        )
        await seed.invitation(
            wedding_id,
            guest_id,
            f"tok-{index}",
            {ceremony_id: status, brunch_id: InvitationEventStatus.INVITED},
            headcount=2,
        )
    return wedding_id, ceremony_id, brunch_id


@pytest.mark.asyncio
async def test_stats_for_one_event(seed):
    wedding_id, ceremony_id, _ = await seed_party(seed)
    await SqlGuestLifecycleWriteModel().check_in(wedding_id, "CODE0", ceremony_id)

    stats = await SqlCheckInStatsReadModel().get_stats(wedding_id, ceremony_id)

    assert stats == {
        "invited": 1,
        "accepted": 2,
        "declined": 1,
        "accepted_headcount": 4,
        "checked_in": 1,
    }


@pytest.mark.asyncio
async def test_stats_across_events(seed):
    wedding_id, _, _ = await seed_party(seed)

    stats = await SqlCheckInStatsReadModel().get_stats(wedding_id)

    assert stats["invited"] == 5
    assert stats["accepted"] == 2
    assert stats["checked_in"] == 0


@pytest.mark.asyncio
async def test_stats_of_other_wedding_event_is_not_found(seed):
    _, ceremony_id, _ = await seed_party(seed)
    other_wedding_id = await seed.wedding("Cleo & Dan")

    with pytest.raises(NotFoundError):
        await SqlCheckInStatsReadModel().get_stats(other_wedding_id, ceremony_id)


@pytest.mark.asyncio
async def test_cached_stats_refresh_after_rsvp(seed):
    wedding_id, ceremony_id, _ = await seed_party(seed)
    cache = CacheNamespaceManager(InMemoryKeyValueStore())
    read_model = SqlCheckInStatsReadModel(cache=cache)
    write_model = SqlGuestLifecycleWriteModel(cache=cache)

    before = await read_model.get_stats(wedding_id, ceremony_id)
    await write_model.record_rsvp(wedding_id, "tok-3", ceremony_id, RsvpResponse.ACCEPTED, 1)
    after = await read_model.get_stats(wedding_id, ceremony_id)

    assert before["accepted"] == 2
    assert after["accepted"] == 3
    assert after["invited"] == 0
