"""initial_schema

Revision ID: 3f1c2a9d7b10
Revises:
Create Date: 2027-01-10 09:00:00.000000

"""

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "3f1c2a9d7b10"
down_revision = None
branch_labels = None
depends_on = None

CHANNELS = ("email", "sms", "whatsapp")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
    ]


def upgrade() -> None:
    op.create_table(
        "weddings",
        sa.Column("uuid", sa.UUID(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("couple_display_name", sa.String(length=255), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("uuid"),
    )

    op.create_table(
        "guests",
        sa.Column("uuid", sa.UUID(), nullable=False),
        sa.Column("wedding_id", sa.UUID(), nullable=False),
        sa.Column("first_name", sa.String(length=255), nullable=False),
        sa.Column("last_name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("phone", sa.String(length=50), nullable=True),
        sa.Column("invite_code", sa.String(length=16), nullable=True),
        sa.Column("household_id", sa.UUID(), nullable=True),
        sa.Column("total_guests", sa.Integer(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["wedding_id"], ["weddings.uuid"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("uuid"),
        sa.UniqueConstraint("wedding_id", "invite_code", name="uq_guests_invite_code"),
    )
    op.create_index("ix_guests_wedding_id", "guests", ["wedding_id"])
    op.create_index("ix_guests_first_name", "guests", ["first_name"])
    op.create_index("ix_guests_last_name", "guests", ["last_name"])
    op.create_index("ix_guests_household_id", "guests", ["household_id"])

    op.create_table(
        "events",
        sa.Column("uuid", sa.UUID(), nullable=False),
        sa.Column("wedding_id", sa.UUID(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("starts_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("venue", sa.String(length=500), nullable=True),
        sa.Column("address", sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["wedding_id"], ["weddings.uuid"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("uuid"),
    )
    op.create_index("ix_events_wedding_id", "events", ["wedding_id"])

    op.create_table(
        "invitations",
        sa.Column("uuid", sa.UUID(), nullable=False),
        sa.Column("wedding_id", sa.UUID(), nullable=False),
        sa.Column("guest_id", sa.UUID(), nullable=False),
        sa.Column("token", sa.String(length=64), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["wedding_id"], ["weddings.uuid"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["guest_id"], ["guests.uuid"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("uuid"),
    )
    op.create_index("ix_invitations_wedding_id", "invitations", ["wedding_id"])
    op.create_index("ix_invitations_guest_id", "invitations", ["guest_id"])
    op.create_index("ix_invitations_token", "invitations", ["token"], unique=True)

    op.create_table(
        "invitation_events",
        sa.Column("uuid", sa.UUID(), nullable=False),
        sa.Column("invitation_id", sa.UUID(), nullable=False),
        sa.Column("event_id", sa.UUID(), nullable=False),
        sa.Column(
            "status",
            sa.Enum("invited", "accepted", "declined", name="invitation_event_status_enum"),
            nullable=False,
        ),
        sa.Column("headcount", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["invitation_id"], ["invitations.uuid"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["event_id"], ["events.uuid"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("uuid"),
        sa.UniqueConstraint("invitation_id", "event_id", name="uq_invitation_events_pair"),
    )
    op.create_index("ix_invitation_events_invitation_id", "invitation_events", ["invitation_id"])
    op.create_index("ix_invitation_events_event_id", "invitation_events", ["event_id"])

    # The unique invitation_event_id is what makes check-in race free
    op.create_table(
        "attendance",
        sa.Column("uuid", sa.UUID(), nullable=False),
        sa.Column("invitation_event_id", sa.UUID(), nullable=False),
        sa.Column("wedding_id", sa.UUID(), nullable=False),
        sa.Column("checked_in_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("checked_in_by", sa.String(length=255), nullable=True),
        sa.Column(
            "method",
            sa.Enum("qr_code", "manual", name="check_in_method_enum"),
            nullable=False,
        ),
        *_timestamps(),
        sa.ForeignKeyConstraint(
            ["invitation_event_id"], ["invitation_events.uuid"], ondelete="CASCADE"
        ),
        sa.ForeignKeyConstraint(["wedding_id"], ["weddings.uuid"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("uuid"),
        sa.UniqueConstraint("invitation_event_id"),
    )
    op.create_index("ix_attendance_wedding_id", "attendance", ["wedding_id"])

    op.create_table(
        "mail_logs",
        sa.Column("uuid", sa.UUID(), nullable=False),
        sa.Column("wedding_id", sa.UUID(), nullable=False),
        sa.Column("token", sa.String(length=64), nullable=False),
        sa.Column("channel", sa.Enum(*CHANNELS, name="channel_enum"), nullable=False),
        sa.Column(
            "kind",
            sa.Enum("invitation", "reminder", "announcement", name="message_kind_enum"),
            nullable=False,
        ),
        sa.Column("destination", sa.String(length=255), nullable=False),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column("provider_message_id", sa.String(length=255), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["wedding_id"], ["weddings.uuid"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("uuid"),
    )
    op.create_index("ix_mail_logs_wedding_id", "mail_logs", ["wedding_id"])
    op.create_index(
        "ix_mail_logs_token_channel_sent_at", "mail_logs", ["token", "channel", "sent_at"]
    )

    op.create_table(
        "announcements",
        sa.Column("uuid", sa.UUID(), nullable=False),
        sa.Column("wedding_id", sa.UUID(), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("subject", sa.String(length=500), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        # channel_enum already exists after mail_logs
        sa.Column(
            "channel",
            postgresql.ENUM(*CHANNELS, name="channel_enum", create_type=False),
            nullable=False,
        ),
        sa.Column(
            "status",
            sa.Enum(
                "draft",
                "scheduled",
                "sending",
                "sent",
                "failed",
                "cancelled",
                name="announcement_status_enum",
            ),
            nullable=False,
        ),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("batch_size", sa.Integer(), nullable=False),
        sa.Column("total_recipients", sa.Integer(), nullable=False),
        sa.Column("sent_count", sa.Integer(), nullable=False),
        sa.Column("failed_count", sa.Integer(), nullable=False),
        sa.Column("created_by", sa.String(length=255), nullable=True),
        sa.Column("dispatch_lease_until", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["wedding_id"], ["weddings.uuid"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("uuid"),
    )
    op.create_index("ix_announcements_wedding_id", "announcements", ["wedding_id"])
    op.create_index("ix_announcements_status", "announcements", ["status"])

    op.create_table(
        "announcement_batches",
        sa.Column("uuid", sa.UUID(), nullable=False),
        sa.Column("announcement_id", sa.UUID(), nullable=False),
        sa.Column("batch_number", sa.Integer(), nullable=False),
        sa.Column("total_in_batch", sa.Integer(), nullable=False),
        sa.Column("sent_count", sa.Integer(), nullable=False),
        sa.Column("failed_count", sa.Integer(), nullable=False),
        sa.Column(
            "status",
            sa.Enum("pending", "sending", "completed", "failed", name="batch_status_enum"),
            nullable=False,
        ),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["announcement_id"], ["announcements.uuid"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("uuid"),
        sa.UniqueConstraint(
            "announcement_id", "batch_number", name="uq_announcement_batches_number"
        ),
    )
    op.create_index(
        "ix_announcement_batches_announcement_id", "announcement_batches", ["announcement_id"]
    )

    op.create_table(
        "announcement_recipients",
        sa.Column("uuid", sa.UUID(), nullable=False),
        sa.Column("announcement_id", sa.UUID(), nullable=False),
        sa.Column("guest_id", sa.UUID(), nullable=False),
        sa.Column("batch_id", sa.UUID(), nullable=True),
        sa.Column("destination", sa.String(length=255), nullable=True),
        sa.Column(
            "status",
            sa.Enum("pending", "sent", "failed", "skipped", name="recipient_status_enum"),
            nullable=False,
        ),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("provider_message_id", sa.String(length=255), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["announcement_id"], ["announcements.uuid"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["guest_id"], ["guests.uuid"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(
            ["batch_id"], ["announcement_batches.uuid"], ondelete="SET NULL"
        ),
        sa.PrimaryKeyConstraint("uuid"),
        sa.UniqueConstraint(
            "announcement_id", "guest_id", name="uq_announcement_recipients_guest"
        ),
    )
    op.create_index(
        "ix_announcement_recipients_announcement_id",
        "announcement_recipients",
        ["announcement_id"],
    )
    op.create_index(
        "ix_announcement_recipients_batch_id", "announcement_recipients", ["batch_id"]
    )
    op.create_index("ix_announcement_recipients_status", "announcement_recipients", ["status"])

    op.create_table(
        "seating_tables",
        sa.Column("uuid", sa.UUID(), nullable=False),
        sa.Column("event_id", sa.UUID(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("capacity", sa.Integer(), nullable=False),
        sa.Column("pos_x", sa.Float(), nullable=False, server_default="0"),
        sa.Column("pos_y", sa.Float(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.ForeignKeyConstraint(["event_id"], ["events.uuid"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("uuid"),
    )
    op.create_index("ix_seating_tables_event_id", "seating_tables", ["event_id"])

    op.create_table(
        "seats",
        sa.Column("uuid", sa.UUID(), nullable=False),
        sa.Column("table_id", sa.UUID(), nullable=False),
        sa.Column("seat_number", sa.Integer(), nullable=False),
        sa.Column("guest_id", sa.UUID(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["table_id"], ["seating_tables.uuid"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["guest_id"], ["guests.uuid"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("uuid"),
        sa.UniqueConstraint("table_id", "seat_number", name="uq_seats_table_seat_number"),
        sa.UniqueConstraint("table_id", "guest_id", name="uq_seats_table_guest"),
    )
    op.create_index("ix_seats_table_id", "seats", ["table_id"])
    op.create_index("ix_seats_guest_id", "seats", ["guest_id"])


def downgrade() -> None:
    op.drop_table("seats")
    op.drop_table("seating_tables")
    op.drop_table("announcement_recipients")
    op.drop_table("announcement_batches")
    op.drop_table("announcements")
    op.drop_table("mail_logs")
    op.drop_table("attendance")
    op.drop_table("invitation_events")
    op.drop_table("invitations")
    op.drop_table("events")
    op.drop_table("guests")
    op.drop_table("weddings")

    op.execute("DROP TYPE IF EXISTS recipient_status_enum")
    op.execute("DROP TYPE IF EXISTS batch_status_enum")
    op.execute("DROP TYPE IF EXISTS announcement_status_enum")
    op.execute("DROP TYPE IF EXISTS message_kind_enum")
    op.execute("DROP TYPE IF EXISTS channel_enum")
    op.execute("DROP TYPE IF EXISTS check_in_method_enum")
    op.execute("DROP TYPE IF EXISTS invitation_event_status_enum")
