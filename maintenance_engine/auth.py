"""
Caller identity

The upstream identity gateway authenticates the user and forwards the verified
identity as headers; this module turns them into an Actor.
"""

import logging
from typing import FrozenSet, Optional

from fastapi import Header, HTTPException

from .scope import Actor, Role

logger = logging.getLogger(__name__)


def _parse_branch_ids(raw: Optional[str]) -> FrozenSet[int]:
    if not raw:
        return frozenset()
    try:
        return frozenset(int(part) for part in raw.split(",") if part.strip())
    except ValueError:
        logger.warning(f"⚠️ Malformed X-Branch-Ids header: '{raw}'")
        raise HTTPException(status_code=401, detail="Invalid branch list in identity headers")


async def get_current_actor(
    x_user_id: Optional[int] = Header(None),
    x_tenant_id: Optional[int] = Header(None),
    x_role: Optional[str] = Header(None),
    x_branch_ids: Optional[str] = Header(None),
) -> Actor:
    """Resolve the authenticated actor from gateway headers"""
    if x_user_id is None or x_tenant_id is None or not x_role:
        logger.error("❌ No identity headers provided")
        raise HTTPException(
            status_code=401,
            detail="Not authenticated. Identity headers X-User-Id, X-Tenant-Id and X-Role are required.",
        )

    try:
        role = Role(x_role)
    except ValueError:
        logger.warning(f"⚠️ Unknown role '{x_role}' for user {x_user_id}")
        raise HTTPException(status_code=401, detail=f"Unknown role '{x_role}'")

    # The system role is reserved for the background sweeps
    if role == Role.SYSTEM:
        logger.warning(f"🚫 SECURITY: user {x_user_id} presented the system role over HTTP")
        raise HTTPException(status_code=401, detail="Role not allowed over HTTP")

    return Actor(
        user_id=x_user_id,
        tenant_id=x_tenant_id,
        role=role,
        branch_ids=_parse_branch_ids(x_branch_ids),
    )
