from uuid import uuid4

import pytest

from src.errors import InputValidationError, NotFoundError, RateLimitedError, UpstreamFailure
from src.guests.dtos import InvitationEventStatus
from src.notifications.dtos import Channel, MessageKind
from src.notifications.invitation_sender import InvitationSender
from src.notifications.rate_limiter import RateLimiter
from src.notifications.tests.inmemory_models import (
    FixedClock,
    InMemoryMailLogStore,
    RecordingSender,
)

INVITED = InvitationEventStatus.INVITED


def build_sender(max_per_day=3, failing=None):
    mail_logs = InMemoryMailLogStore()
    email = RecordingSender(Channel.EMAIL, failing=failing)
    sms = RecordingSender(Channel.SMS, failing=failing)
    sender = InvitationSender(
        senders={Channel.EMAIL: email, Channel.SMS: sms},
        rate_limiter=RateLimiter(mail_logs, max_per_day=max_per_day, clock=FixedClock()),
        frontend_url="https://wedding.example",
    )
    return sender, email, sms, mail_logs


@pytest.fixture
async def invitation(seed):
    wedding_id = await seed.wedding()
    ceremony_id = await seed.event(wedding_id)
    brunch_id = await seed.event(wedding_id, name="Brunch")
    guest_id = await seed.guest(wedding_id, phone="555 123 4567", invite_code="ABC123")
    invitation_id = await seed.invitation(
        wedding_id, guest_id, "tok-1", {ceremony_id: INVITED, brunch_id: INVITED}
    )
    return wedding_id, invitation_id, ceremony_id, brunch_id


@pytest.mark.asyncio
async def test_send_invitation_by_email(invitation):
    wedding_id, invitation_id, ceremony_id, _ = invitation
    sender, email, _, mail_logs = build_sender()

    result = await sender.send_invitation(wedding_id, invitation_id, [ceremony_id], Channel.EMAIL)

    assert result.destination == "john@example.com"
    assert result.provider_message_id == "msg-1"
    assert result.remaining_today == 2
    message = email.sent[0][1]
    assert "https://wedding.example/rsvp?token=tok-1" in message.text
    assert "Ceremony" in message.text
    assert "Brunch" not in message.text
    assert [entry.success for entry in mail_logs.entries] == [True]
    assert mail_logs.entries[0].kind == MessageKind.INVITATION


@pytest.mark.asyncio
async def test_empty_event_selection_covers_every_event(invitation):
    wedding_id, invitation_id, _, _ = invitation
    sender, email, _, _ = build_sender()

    await sender.send_invitation(wedding_id, invitation_id, [], Channel.EMAIL)

    text = email.sent[0][1].text
    assert "Ceremony" in text
    assert "Brunch" in text


@pytest.mark.asyncio
async def test_sms_goes_to_guest_phone(invitation):
    wedding_id, invitation_id, _, _ = invitation
    sender, email, sms, _ = build_sender()

    await sender.send_invitation(wedding_id, invitation_id, [], Channel.SMS)

    assert sms.destinations == ["555 123 4567"]
    assert not email.sent


@pytest.mark.asyncio
async def test_fourth_send_is_rate_limited_unless_ignored(invitation):
    wedding_id, invitation_id, _, _ = invitation
    sender, email, _, _ = build_sender(max_per_day=3)

    for _ in range(3):
        await sender.send_invitation(wedding_id, invitation_id, [], Channel.EMAIL)
    with pytest.raises(RateLimitedError):
        await sender.send_invitation(wedding_id, invitation_id, [], Channel.EMAIL)
    result = await sender.send_invitation(
        wedding_id, invitation_id, [], Channel.EMAIL, ignore_rate_limit=True
    )

    assert len(email.sent) == 4
    assert result.remaining_today == 0


@pytest.mark.asyncio
async def test_provider_failure_is_logged_then_raised(invitation):
    wedding_id, invitation_id, _, _ = invitation
    sender, _, _, mail_logs = build_sender(failing={"john@example.com"})

    with pytest.raises(UpstreamFailure):
        await sender.send_invitation(wedding_id, invitation_id, [], Channel.EMAIL)

    assert len(mail_logs.entries) == 1
    assert mail_logs.entries[0].success is False
    assert "rejected" in mail_logs.entries[0].error_message


@pytest.mark.asyncio
async def test_guest_without_email_is_rejected(seed):
    wedding_id = await seed.wedding()
    event_id = await seed.event(wedding_id)
    guest_id = await seed.guest(wedding_id, email=None)
    invitation_id = await seed.invitation(wedding_id, guest_id, "tok-1", {event_id: INVITED})
    sender, _, _, mail_logs = build_sender()

    with pytest.raises(InputValidationError):
        await sender.send_invitation(wedding_id, invitation_id, [], Channel.EMAIL)
    assert not mail_logs.entries


@pytest.mark.asyncio
async def test_invitation_of_other_wedding_is_not_found(invitation, seed):
    _, invitation_id, _, _ = invitation
    other_wedding_id = await seed.wedding("Cleo & Dan")
    sender, _, _, _ = build_sender()

    with pytest.raises(NotFoundError):
        await sender.send_invitation(other_wedding_id, invitation_id, [], Channel.EMAIL)


@pytest.mark.asyncio
async def test_event_not_on_invitation_is_not_found(invitation):
    wedding_id, invitation_id, _, _ = invitation
    sender, _, _, _ = build_sender()

    with pytest.raises(NotFoundError):
        await sender.send_invitation(wedding_id, invitation_id, [uuid4()], Channel.EMAIL)


@pytest.mark.asyncio
async def test_unsupported_channel(invitation):
    wedding_id, invitation_id, _, _ = invitation
    sender, _, _, _ = build_sender()

    with pytest.raises(InputValidationError):
        await sender.send_invitation(wedding_id, invitation_id, [], Channel.WHATSAPP)
