import pytest

from src.guests.dtos import InvitationEventStatus
from src.guests.urls import CHECK_IN_STATS_URL, MANUAL_CHECK_IN_URL
from src.tenants.context import WEDDING_ID_HEADER


@pytest.mark.asyncio
async def test_stats_follow_check_ins(seed, client):
    wedding_id = await seed.wedding()
    event_id = await seed.event(wedding_id)
    guest_id = await seed.guest(wedding_id, invite_code="ABC123")
    await seed.invitation(
        wedding_id, guest_id, "tok-1", {event_id: InvitationEventStatus.ACCEPTED}, headcount=2
    )
    headers = {WEDDING_ID_HEADER: str(wedding_id)}

    before = await client.get(CHECK_IN_STATS_URL, params={"event_id": str(event_id)}, headers=headers)
    checked_in = await client.post(
        MANUAL_CHECK_IN_URL,
        json={"invite_code": "ABC123", "event_id": str(event_id)},
        headers=headers,
    )
    after = await client.get(CHECK_IN_STATS_URL, params={"event_id": str(event_id)}, headers=headers)

    assert before.json() == {
        "invited": 0,
        "accepted": 1,
        "declined": 0,
        "accepted_headcount": 2,
        "checked_in": 0,
    }
    assert checked_in.status_code == 200
    assert after.json()["checked_in"] == 1
