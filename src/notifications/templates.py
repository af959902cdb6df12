"""Message templates.

Rendering is a pure function of its arguments: plain format strings, no I/O.
Email gets subject, text and html; SMS and WhatsApp only use the text.
"""

from dataclasses import dataclass
from datetime import datetime
from html import escape

from src.notifications.dtos import Channel, MessageKind, RenderedMessage


@dataclass(frozen=True)
class EventLine:
    name: str
    starts_at: datetime
    venue: str | None = None

    def describe(self) -> str:
        when = self.starts_at.strftime("%A %d %B %Y, %H:%M")
        return f"{self.name}: {when}" + (f" at {self.venue}" if self.venue else "")


@dataclass
class MessageTemplates:
    INVITATION_SUBJECT = "You're invited to {couple_names}'s wedding!"
    INVITATION_TEXT = """Dear {guest_name},

We are delighted to invite you to celebrate with us:

{event_lines}

Please let us know if you can attend: {rsvp_url}
Your invite code: {invite_code}

With love,
{couple_names}
"""
    INVITATION_HTML = """<!DOCTYPE html>
<html>
<body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
    <p>Dear {guest_name},</p>
    <p>We are delighted to invite you to celebrate with us:</p>
    <div style="background-color: #fefae0; padding: 20px; border-radius: 8px; margin: 20px 0;">
        {event_items}
    </div>
    <div style="text-align: center; margin: 30px 0;">
        <a href="{rsvp_url}" style="background-color: #d4a373; color: white; padding: 15px 30px; text-decoration: none; border-radius: 5px; font-size: 18px;">
            RSVP Now
        </a>
    </div>
    <p>Your invite code: <strong>{invite_code}</strong></p>
    <p>With love,<br>{couple_names}</p>
</body>
</html>
"""

    REMINDER_SUBJECT = "Reminder: please RSVP for {couple_names}'s wedding"
    REMINDER_TEXT = """Dear {guest_name},

We haven't received your RSVP yet for:

{event_lines}

Please respond here: {rsvp_url}

With love,
{couple_names}
"""
    REMINDER_HTML = """<!DOCTYPE html>
<html>
<body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
    <p>Dear {guest_name},</p>
    <p>We haven't received your RSVP yet for:</p>
    <div style="background-color: #fefae0; padding: 20px; border-radius: 8px; margin: 20px 0;">
        {event_items}
    </div>
    <p><a href="{rsvp_url}">Respond here</a></p>
    <p>With love,<br>{couple_names}</p>
</body>
</html>
"""

    # Short formats keep SMS within as few segments as possible
    INVITATION_SHORT = (
        "Hi {first_name}! You're invited to {couple_names}'s {event_name}\n"
        "{event_when}\nRSVP: {rsvp_url}\nCode: {invite_code}"
    )
    REMINDER_SHORT = "Hi {first_name}! Please RSVP for {couple_names}'s {event_name}: {rsvp_url}"

    ANNOUNCEMENT_TEXT = "Dear {guest_name},\n\n{content}\n"
    ANNOUNCEMENT_HTML = """<!DOCTYPE html>
<html>
<body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
    <p>Dear {guest_name},</p>
    {content}
</body>
</html>
"""


def rsvp_url(frontend_url: str, token: str) -> str:
    return f"{frontend_url.rstrip('/')}/rsvp?token={token}"


def render_invitation(
    channel: Channel,
    kind: MessageKind,
    guest_name: str,
    first_name: str,
    couple_names: str,
    events: list[EventLine],
    url: str,
    invite_code: str | None,
) -> RenderedMessage:
    """Render an invitation or an RSVP reminder for the given events."""
    reminder = kind == MessageKind.REMINDER
    subject_template = (
        MessageTemplates.REMINDER_SUBJECT if reminder else MessageTemplates.INVITATION_SUBJECT
    )
    subject = subject_template.format(couple_names=couple_names)
    first_event = min(events, key=lambda event: event.starts_at)

    if channel != Channel.EMAIL:
        short = MessageTemplates.REMINDER_SHORT if reminder else MessageTemplates.INVITATION_SHORT
        text = short.format(
            first_name=first_name,
            couple_names=couple_names,
            event_name=first_event.name,
            event_when=first_event.starts_at.strftime("%d %B %Y, %H:%M"),
            rsvp_url=url,
            invite_code=invite_code or "",
        )
        return RenderedMessage(subject=subject, text=text)

    event_lines = "\n".join(f"- {event.describe()}" for event in events)
    event_items = "".join(f"<p>{escape(event.describe())}</p>" for event in events)
    values = {
        "guest_name": guest_name,
        "couple_names": couple_names,
        "rsvp_url": url,
        "invite_code": invite_code or "",
    }
    text_template = MessageTemplates.REMINDER_TEXT if reminder else MessageTemplates.INVITATION_TEXT
    html_template = MessageTemplates.REMINDER_HTML if reminder else MessageTemplates.INVITATION_HTML
    return RenderedMessage(
        subject=subject,
        text=text_template.format(event_lines=event_lines, **values),
        html=html_template.format(
            event_items=event_items,
            **{key: escape(value) for key, value in values.items()},
        ),
    )


def render_announcement(
    channel: Channel, subject: str, content: str, guest_name: str
) -> RenderedMessage:
    """``content`` is editor HTML for email and plain text for the phone channels."""
    if channel != Channel.EMAIL:
        return RenderedMessage(subject=subject, text=f"{subject}\n\n{content}")
    return RenderedMessage(
        subject=subject,
        text=MessageTemplates.ANNOUNCEMENT_TEXT.format(guest_name=guest_name, content=content),
        html=MessageTemplates.ANNOUNCEMENT_HTML.format(
            guest_name=escape(guest_name), content=content
        ),
    )
