from dataclasses import dataclass
from enum import Enum


class Channel(str, Enum):
    EMAIL = "email"
    SMS = "sms"
    WHATSAPP = "whatsapp"


class MessageKind(str, Enum):
    INVITATION = "invitation"
    REMINDER = "reminder"
    ANNOUNCEMENT = "announcement"


@dataclass(frozen=True)
class RenderedMessage:
    subject: str
    text: str
    html: str | None = None


@dataclass(frozen=True)
class SendResultDTO:
    channel: Channel
    destination: str
    provider_message_id: str
    remaining_today: int


@dataclass
class BulkSendResult:
    """Aggregate outcome of a bulk invitation or reminder run."""

    processed: int = 0
    sent: int = 0
    skipped: int = 0
    errors: list[str] | None = None

    def __post_init__(self):
        if self.errors is None:
            self.errors = []
