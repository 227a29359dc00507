"""Caller identity for the partner financials API.

Authentication happens upstream; the gateway forwards the authenticated user
id in the ``X-User-ID`` header.
"""

from typing import Annotated

from fastapi import Header, HTTPException, status


def get_current_user_id(
    x_user_id: Annotated[str | None, Header(alias="X-User-ID")] = None,
) -> str:
    """Return the caller's user id, rejecting unauthenticated requests.

    Raises:
        HTTPException: 401 when the header is missing or blank.
    """
    if x_user_id is None or not x_user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-ID header",
        )
    return x_user_id.strip()
