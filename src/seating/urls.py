ASSIGN_SEAT_URL = "/api/v1/admin/seating/assign-seat"
SEAT_URL = "/api/v1/admin/seating/seats/{seat_id}"
TABLE_POSITIONS_URL = "/api/v1/admin/seating/tables/positions"
EVENT_SEATING_URL = "/api/v1/admin/seating/events/{event_id}"
