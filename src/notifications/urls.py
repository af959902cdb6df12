SEND_INVITATION_URL = "/api/v1/admin/invitations/{invitation_id}/send"
RATE_LIMIT_URL = "/api/v1/admin/invitations/{invitation_id}/rate-limit"
SEND_BULK_INVITE_ALL_URL = "/api/v1/admin/invitations/send-bulk-invite-all"
BULK_RSVP_REMINDERS_URL = "/api/v1/admin/rsvp-reminders/bulk"
