from datetime import UTC, datetime

from src.notifications.dtos import Channel, MessageKind
from src.notifications.templates import (
    EventLine,
    render_announcement,
    render_invitation,
    rsvp_url,
)

EVENTS = [
    EventLine(name="Dinner", starts_at=datetime(2027, 6, 12, 19, 0, tzinfo=UTC), venue="Barn"),
    EventLine(name="Ceremony", starts_at=datetime(2027, 6, 12, 14, 0, tzinfo=UTC)),
]


def render(channel, kind=MessageKind.INVITATION):
    return render_invitation(
        channel=channel,
        kind=kind,
        guest_name="John Doe",
        first_name="John",
        couple_names="Ana & Ben",
        events=EVENTS,
        url="https://wedding.example/rsvp?token=tok-1",
        invite_code="ABC123",
    )


def test_rsvp_url():
    assert rsvp_url("https://wedding.example/", "tok-1") == "https://wedding.example/rsvp?token=tok-1"


def test_email_invitation_lists_every_event():
    message = render(Channel.EMAIL)

    assert message.subject == "You're invited to Ana & Ben's wedding!"
    assert "- Dinner: Saturday 12 June 2027, 19:00 at Barn" in message.text
    assert "- Ceremony: Saturday 12 June 2027, 14:00" in message.text
    assert "ABC123" in message.text
    assert "Ana &amp; Ben" in message.html


def test_sms_invitation_is_short_and_names_first_event():
    message = render(Channel.SMS)

    assert message.html is None
    assert message.text.startswith("Hi John! You're invited to Ana & Ben's Ceremony")
    assert "RSVP: https://wedding.example/rsvp?token=tok-1" in message.text


def test_reminder_subject():
    message = render(Channel.EMAIL, MessageKind.REMINDER)

    assert message.subject == "Reminder: please RSVP for Ana & Ben's wedding"
    assert "haven't received your RSVP" in message.text


def test_announcement_email_keeps_editor_html():
    message = render_announcement(Channel.EMAIL, "Shuttle", "<p>Bus at 13:00</p>", "John <Doe>")

    assert message.subject == "Shuttle"
    assert "<p>Bus at 13:00</p>" in message.html
    assert "John &lt;Doe&gt;" in message.html


def test_announcement_sms_is_plain():
    message = render_announcement(Channel.WHATSAPP, "Shuttle", "Bus at 13:00", "John Doe")

    assert message.text == "Shuttle\n\nBus at 13:00"
    assert message.html is None
