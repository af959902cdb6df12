from datetime import datetime
from uuid import UUID

from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from src.config.table_names import TableNames
from src.models.base import Base, TimeStamp, utc_now
from src.notifications.dtos import Channel, MessageKind


class MailLog(Base, TimeStamp):
    """One immutable row per send attempt, successful or not.

    Doubles as the rate limiter's source of truth.
    """

    __tablename__ = TableNames.MAIL_LOGS.value
    __table_args__ = (Index("ix_mail_logs_token_channel_sent_at", "token", "channel", "sent_at"),)

    wedding_id: Mapped[UUID] = mapped_column(
        ForeignKey(f"{TableNames.WEDDINGS.value}.uuid", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    token: Mapped[str] = mapped_column(String(64), nullable=False)
    channel: Mapped[Channel] = mapped_column(
        Enum(Channel, name="channel_enum", values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    kind: Mapped[MessageKind] = mapped_column(
        Enum(MessageKind, name="message_kind_enum", values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    destination: Mapped[str] = mapped_column(String(255), nullable=False)
    sent_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    provider_message_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<MailLog {self.channel} to={self.destination} success={self.success}>"
