"""
Authorization policy

A single capability check per service operation: (actor, operation, resource) -> allow/deny.
"""

import enum
import logging
from typing import Any, Optional

from .exceptions import AccessDenied
from .scope import Actor, Role

logger = logging.getLogger(__name__)


class Operation(str, enum.Enum):
    VIEW = "view"
    MANAGE_CONTRACT = "manage_contract"
    SCHEDULE_VISIT = "schedule_visit"
    EXECUTE_VISIT = "execute_visit"
    OVERRIDE_VISIT = "override_visit"
    CORRECT_VISIT = "correct_visit"
    VIEW_ANALYTICS = "view_analytics"
    RUN_SWEEP = "run_sweep"


_MANAGERS = {Role.BUSINESS_OWNER, Role.MANAGER, Role.SYSTEM}

_ROLE_GRANTS = {
    Operation.VIEW: set(Role),
    Operation.MANAGE_CONTRACT: _MANAGERS,
    Operation.SCHEDULE_VISIT: _MANAGERS,
    Operation.OVERRIDE_VISIT: _MANAGERS,
    Operation.CORRECT_VISIT: {Role.BUSINESS_OWNER},
    Operation.VIEW_ANALYTICS: {Role.BUSINESS_OWNER, Role.MANAGER},
    Operation.RUN_SWEEP: {Role.BUSINESS_OWNER, Role.SYSTEM},
}


def is_allowed(actor: Actor, operation: Operation, resource: Optional[Any] = None) -> bool:
    if operation == Operation.EXECUTE_VISIT:
        # Assigned technician, or anyone holding override authority
        if actor.role in _ROLE_GRANTS[Operation.OVERRIDE_VISIT]:
            return True
        return (
            actor.role == Role.TECHNICIAN
            and resource is not None
            and getattr(resource, "assigned_technician_id", None) == actor.user_id
        )
    return actor.role in _ROLE_GRANTS.get(operation, set())


def authorize(actor: Actor, operation: Operation, resource: Optional[Any] = None) -> None:
    """Raise AccessDenied (and log a security event) unless the actor may perform the operation"""
    if is_allowed(actor, operation, resource):
        return
    resource_ref = (
        f"{type(resource).__name__}#{getattr(resource, 'id', '?')}" if resource is not None else "-"
    )
    logger.warning(
        f"🚫 SECURITY: user {actor.user_id} (tenant {actor.tenant_id}, role {actor.role.value}) "
        f"denied {operation.value} on {resource_ref}"
    )
    raise AccessDenied(f"Role '{actor.role.value}' may not perform '{operation.value}'")
