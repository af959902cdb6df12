from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from uuid import UUID

from src.notifications.dtos import Channel


class AnnouncementStatus(str, Enum):
    DRAFT = "draft"
    SCHEDULED = "scheduled"
    SENDING = "sending"
    SENT = "sent"
    FAILED = "failed"
    CANCELLED = "cancelled"


class RecipientStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self is not RecipientStatus.PENDING


class BatchStatus(str, Enum):
    PENDING = "pending"
    SENDING = "sending"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class AnnouncementDTO:
    uuid: UUID
    wedding_id: UUID
    title: str
    subject: str
    content: str
    channel: Channel
    status: AnnouncementStatus
    batch_size: int
    total_recipients: int = 0
    sent_count: int = 0
    failed_count: int = 0
    scheduled_at: datetime | None = None


@dataclass(frozen=True)
class RecipientDTO:
    uuid: UUID
    guest_id: UUID
    guest_name: str
    destination: str | None
    status: RecipientStatus
    # Present when the guest has an invitation, used for rate limiting
    invitation_token: str | None = None


@dataclass(frozen=True)
class BatchDTO:
    uuid: UUID
    batch_number: int
    total_in_batch: int
    status: BatchStatus
    sent_count: int = 0
    failed_count: int = 0


@dataclass(frozen=True)
class AnnouncementStatsDTO:
    status: AnnouncementStatus
    total_recipients: int
    sent_count: int
    failed_count: int
    pending_count: int
    skipped_count: int
    scheduled_at: datetime | None = None


@dataclass
class DispatchResult:
    """Run-level outcome returned to the admin who triggered the dispatch."""

    announcement_id: UUID | None = None
    processed: int = 0
    sent: int = 0
    failed: int = 0
    skipped: int = 0
    batches: int = 0
    cancelled: bool = False
    status: AnnouncementStatus | None = None
    errors: list[str] = field(default_factory=list)
