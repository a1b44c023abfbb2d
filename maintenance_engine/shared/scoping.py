"""Shared tenant/branch scoping helpers for repositories"""

import logging
from typing import Optional, TypeVar

from sqlalchemy.orm import Query

from ..exceptions import AccessDenied, NotFoundError
from ..scope import Scope

logger = logging.getLogger(__name__)

T = TypeVar("T")


def apply_scope(query: Query, model, scope: Scope) -> Query:
    """Filter a query to the scope's tenant and, when restricted, its branches"""
    query = query.filter(model.tenant_id == scope.tenant_id)
    if scope.branch_ids is not None:
        query = query.filter(model.branch_id.in_(sorted(scope.branch_ids)))
    return query


def ensure_in_scope(row: Optional[T], scope: Scope, label: str, row_id) -> T:
    """
    Reject rather than filter: a row that exists outside the caller's scope is an
    AccessDenied (security event), a missing row is NotFound.
    """
    if row is None:
        raise NotFoundError(f"{label} {row_id} not found")
    if not scope.contains(row.tenant_id, getattr(row, "branch_id", None)):
        logger.warning(
            f"🚫 SECURITY: cross-scope access to {label} {row_id} "
            f"(row tenant {row.tenant_id}, caller tenant {scope.tenant_id})"
        )
        raise AccessDenied(f"{label} {row_id} is outside your tenant/branch scope")
    return row
