"""
Caller identity and data scope

Every repository and service call takes an explicit Scope. It is derived once
from the authenticated Actor and never read from ambient state.
"""

import enum
from dataclasses import dataclass, field
from typing import FrozenSet, Optional


class Role(str, enum.Enum):
    BUSINESS_OWNER = "business_owner"
    MANAGER = "manager"
    TECHNICIAN = "technician"
    STAFF = "staff"
    SYSTEM = "system"  # periodic sweeps


@dataclass(frozen=True)
class Scope:
    """
    Tenant/branch visibility for a call.

    branch_ids=None means every branch of the tenant (business owners, sweeps).
    """

    tenant_id: int
    branch_ids: Optional[FrozenSet[int]] = None

    def allows_branch(self, branch_id: Optional[int]) -> bool:
        if self.branch_ids is None:
            return True
        return branch_id in self.branch_ids

    def contains(self, tenant_id: int, branch_id: Optional[int]) -> bool:
        return tenant_id == self.tenant_id and self.allows_branch(branch_id)


@dataclass(frozen=True)
class Actor:
    user_id: int
    tenant_id: int
    role: Role
    branch_ids: FrozenSet[int] = field(default_factory=frozenset)

    @property
    def scope(self) -> Scope:
        if self.role in (Role.BUSINESS_OWNER, Role.SYSTEM):
            return Scope(tenant_id=self.tenant_id)
        return Scope(tenant_id=self.tenant_id, branch_ids=frozenset(self.branch_ids))


def system_actor(tenant_id: int) -> Actor:
    """Actor used by the periodic sweeps"""
    return Actor(user_id=0, tenant_id=tenant_id, role=Role.SYSTEM)
