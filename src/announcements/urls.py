ANNOUNCEMENTS_URL = "/api/v1/admin/announcements"
SEND_ANNOUNCEMENT_URL = "/api/v1/admin/announcements/{announcement_id}/send"
RESEND_ANNOUNCEMENT_URL = "/api/v1/admin/announcements/{announcement_id}/resend"
CANCEL_ANNOUNCEMENT_URL = "/api/v1/admin/announcements/{announcement_id}/cancel"
ANNOUNCEMENT_STATS_URL = "/api/v1/admin/announcements/{announcement_id}/stats"
