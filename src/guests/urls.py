RECORD_RSVP_URL = "/api/v1/rsvp/{token}/events/{event_id}"
CHECK_IN_URL = "/api/v1/admin/checkin"
MANUAL_CHECK_IN_URL = "/api/v1/admin/checkin/manual"
CHECK_IN_STATS_URL = "/api/v1/admin/checkin/stats"
