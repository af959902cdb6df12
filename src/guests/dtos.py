from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from uuid import UUID


class InvitationEventStatus(str, Enum):
    INVITED = "invited"
    ACCEPTED = "accepted"
    DECLINED = "declined"


class RsvpResponse(str, Enum):
    ACCEPTED = "accepted"
    DECLINED = "declined"


class CheckInMethod(str, Enum):
    QR_CODE = "qr_code"
    MANUAL = "manual"


@dataclass(frozen=True)
class InvitationEventDTO:
    """RSVP state of one guest for one event."""

    uuid: UUID
    invitation_id: UUID
    event_id: UUID
    status: InvitationEventStatus
    headcount: int


@dataclass(frozen=True)
class CheckInDTO:
    """Result of a successful check-in."""

    attendance_id: UUID
    invitation_event_id: UUID
    event_id: UUID
    guest_name: str
    invite_code: str | None
    event_name: str
    event_venue: str | None
    checked_in_at: datetime
    method: CheckInMethod


@dataclass(frozen=True)
class CheckInStatsDTO:
    invited: int
    accepted: int
    declined: int
    accepted_headcount: int
    checked_in: int
