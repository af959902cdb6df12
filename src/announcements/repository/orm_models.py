from datetime import datetime
from uuid import UUID

from sqlalchemy import DateTime, Enum, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from src.announcements.dtos import AnnouncementStatus, BatchStatus, RecipientStatus
from src.config.table_names import TableNames
from src.models.base import Base, TimeStamp
from src.notifications.dtos import Channel


class Announcement(Base, TimeStamp):
    __tablename__ = TableNames.ANNOUNCEMENTS.value

    wedding_id: Mapped[UUID] = mapped_column(
        ForeignKey(f"{TableNames.WEDDINGS.value}.uuid", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    subject: Mapped[str] = mapped_column(String(500), nullable=False)
    # HTML content from the editor
    content: Mapped[str] = mapped_column(Text, nullable=False)
    channel: Mapped[Channel] = mapped_column(
        Enum(Channel, name="channel_enum", values_callable=lambda x: [e.value for e in x]),
        default=Channel.EMAIL,
        nullable=False,
    )
    status: Mapped[AnnouncementStatus] = mapped_column(
        Enum(
            AnnouncementStatus,
            name="announcement_status_enum",
            values_callable=lambda x: [e.value for e in x],
        ),
        default=AnnouncementStatus.DRAFT,
        nullable=False,
        index=True,
    )
    scheduled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    batch_size: Mapped[int] = mapped_column(Integer, nullable=False)
    total_recipients: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    sent_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    failed_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    # Held by the run currently sending; renewed per batch
    dispatch_lease_until: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    def __repr__(self) -> str:
        return f"<Announcement {self.title} {self.status}>"


class AnnouncementBatch(Base, TimeStamp):
    __tablename__ = TableNames.ANNOUNCEMENT_BATCHES.value
    __table_args__ = (
        UniqueConstraint("announcement_id", "batch_number", name="uq_announcement_batches_number"),
    )

    announcement_id: Mapped[UUID] = mapped_column(
        ForeignKey(f"{TableNames.ANNOUNCEMENTS.value}.uuid", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    batch_number: Mapped[int] = mapped_column(Integer, nullable=False)
    total_in_batch: Mapped[int] = mapped_column(Integer, nullable=False)
    sent_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    failed_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    status: Mapped[BatchStatus] = mapped_column(
        Enum(BatchStatus, name="batch_status_enum", values_callable=lambda x: [e.value for e in x]),
        default=BatchStatus.PENDING,
        nullable=False,
    )
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<AnnouncementBatch #{self.batch_number} {self.status}>"


class AnnouncementRecipient(Base, TimeStamp):
    __tablename__ = TableNames.ANNOUNCEMENT_RECIPIENTS.value
    __table_args__ = (
        UniqueConstraint("announcement_id", "guest_id", name="uq_announcement_recipients_guest"),
    )

    announcement_id: Mapped[UUID] = mapped_column(
        ForeignKey(f"{TableNames.ANNOUNCEMENTS.value}.uuid", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    guest_id: Mapped[UUID] = mapped_column(
        ForeignKey(f"{TableNames.GUESTS.value}.uuid", ondelete="CASCADE"),
        nullable=False,
    )
    batch_id: Mapped[UUID | None] = mapped_column(
        ForeignKey(f"{TableNames.ANNOUNCEMENT_BATCHES.value}.uuid", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    # Email address or phone number, depending on the announcement channel
    destination: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[RecipientStatus] = mapped_column(
        Enum(
            RecipientStatus,
            name="recipient_status_enum",
            values_callable=lambda x: [e.value for e in x],
        ),
        default=RecipientStatus.PENDING,
        nullable=False,
        index=True,
    )
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    provider_message_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<AnnouncementRecipient {self.guest_id} {self.status}>"
