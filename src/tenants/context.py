from uuid import UUID

from fastapi import Header, HTTPException

WEDDING_ID_HEADER = "X-Wedding-Id"


async def get_wedding_id(x_wedding_id: str | None = Header(default=None)) -> UUID:
    """Resolve the owning wedding of an admin request.

    Authentication and membership checks happen upstream; here we only make
    sure every downstream operation receives a well-formed tenant id.
    """
    if not x_wedding_id:
        raise HTTPException(status_code=400, detail=f"{WEDDING_ID_HEADER} header is required")
    try:
        return UUID(x_wedding_id)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid {WEDDING_ID_HEADER} header")
