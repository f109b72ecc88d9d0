from typing import Optional

from fastapi import Header, HTTPException

# Identity is asserted by the upstream gateway; this service never sees credentials.
USER_HEADER = "X-User-Id"


async def get_current_user_id(x_user_id: Optional[str] = Header(default=None)) -> str:
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise HTTPException(
            status_code=401,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": USER_HEADER},
        )
    return user_id


async def get_optional_user_id(x_user_id: Optional[str] = Header(default=None)) -> Optional[str]:
    user_id = (x_user_id or "").strip()
    return user_id or None
