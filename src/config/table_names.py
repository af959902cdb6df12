from enum import Enum


class TableNames(str, Enum):
    WEDDINGS = "weddings"
    GUESTS = "guests"
    EVENTS = "events"
    INVITATIONS = "invitations"
    INVITATION_EVENTS = "invitation_events"
    ATTENDANCE = "attendance"
    MAIL_LOGS = "mail_logs"
    ANNOUNCEMENTS = "announcements"
    ANNOUNCEMENT_RECIPIENTS = "announcement_recipients"
    ANNOUNCEMENT_BATCHES = "announcement_batches"
    SEATING_TABLES = "seating_tables"
    SEATS = "seats"
