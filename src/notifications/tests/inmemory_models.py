"""In-memory notification collaborators for testing - no providers required."""

from dataclasses import dataclass
from datetime import UTC, datetime
from uuid import UUID

from src.errors import UpstreamFailure
from src.notifications.channels.base import ChannelSender
from src.notifications.dtos import Channel, MessageKind, RenderedMessage
from src.notifications.rate_limiter import MailLogStore


@dataclass
class MailLogEntry:
    wedding_id: UUID
    token: str
    channel: Channel
    kind: MessageKind
    destination: str
    success: bool
    sent_at: datetime
    provider_message_id: str | None = None
    error_message: str | None = None


class InMemoryMailLogStore(MailLogStore):
    def __init__(self):
        self.entries: list[MailLogEntry] = []

    async def count_since(self, token, channel, since, until):
        return sum(
            1
            for entry in self.entries
            if entry.token == token and entry.channel == channel and since <= entry.sent_at < until
        )

    async def record(
        self,
        wedding_id,
        token,
        channel,
        kind,
        destination,
        success,
        sent_at,
        provider_message_id=None,
        error_message=None,
    ):
        self.entries.append(
            MailLogEntry(
                wedding_id=wedding_id,
                token=token,
                channel=channel,
                kind=kind,
                destination=destination,
                success=success,
                sent_at=sent_at,
                provider_message_id=provider_message_id,
                error_message=error_message,
            )
        )


class FixedClock:
    def __init__(self, now: datetime = datetime(2027, 6, 1, 9, 30, tzinfo=UTC)):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class RecordingSender(ChannelSender):
    """Records every delivery instead of sending it.

    Destinations listed in ``failing`` are rejected like a provider would.
    """

    def __init__(self, channel: Channel = Channel.EMAIL, failing: set[str] | None = None):
        self.channel = channel
        self.failing = failing or set()
        self.sent: list[tuple[str, RenderedMessage]] = []

    async def send(self, message: RenderedMessage, destination: str) -> str:
        if destination in self.failing:
            raise UpstreamFailure(f"Provider rejected {destination}")
        self.sent.append((destination, message))
        return f"msg-{len(self.sent)}"

    @property
    def destinations(self) -> list[str]:
        return [destination for destination, _ in self.sent]
