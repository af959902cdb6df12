CACHE_INVALIDATE_URL = "/api/v1/admin/cache/invalidate"
