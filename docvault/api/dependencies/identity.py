from __future__ import annotations

import logging
from typing import Optional

from fastapi import Header, HTTPException, status

from docvault.models.identity import Identity
from docvault.models.schemas import Role

logger = logging.getLogger(__name__)


def _split_ids(raw: Optional[str]) -> frozenset[str]:
    if not raw:
        return frozenset()
    return frozenset(part.strip() for part in raw.split(",") if part.strip())


async def require_identity(
    x_user_id: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None),
    x_user_departments: Optional[str] = Header(None),
    x_user_mydrive: Optional[str] = Header(None),
    x_user_groups: Optional[str] = Header(None),
) -> Identity:
    """
    Build the caller's identity from headers set by the authenticating gateway.
    Tokens are verified upstream; this service trusts the forwarded claims.
    """
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="X-User-Id header missing")

    raw_role = (x_user_role or Role.USER.value).strip().upper()
    try:
        role = Role(raw_role)
    except ValueError:
        logger.warning("Rejected unknown role %r for user %s", raw_role, user_id)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unknown user role") from None

    return Identity(
        user_id=user_id,
        role=role,
        department_ids=_split_ids(x_user_departments),
        my_drive_department_id=(x_user_mydrive or "").strip() or None,
        group_ids=_split_ids(x_user_groups),
    )
