"""
Branch stock ledger

Shared with the stock-transfer module: every read-modify-write locks the
branch+part row first. Nothing here commits; the caller's transaction decides.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from ...exceptions import AccessDenied, InsufficientStock
from ...models_stock import BranchStock, StockMovement
from ...scope import Scope

logger = logging.getLogger(__name__)


class StockLedger:
    def __init__(self, db: Session):
        self.db = db

    def _stock_row(self, scope: Scope, branch_id: int, part_id: int, lock: bool) -> Optional[BranchStock]:
        if not scope.allows_branch(branch_id):
            raise AccessDenied(f"Branch {branch_id} is outside your scope")
        query = self.db.query(BranchStock).filter(
            BranchStock.tenant_id == scope.tenant_id,
            BranchStock.branch_id == branch_id,
            BranchStock.part_id == part_id,
        )
        if lock:
            query = query.with_for_update()
        return query.first()

    def get_stock(self, scope: Scope, branch_id: int, part_id: int, lock: bool = False) -> int:
        row = self._stock_row(scope, branch_id, part_id, lock)
        return row.quantity if row else 0

    def decrement_stock(
        self,
        scope: Scope,
        branch_id: int,
        part_id: int,
        quantity: int,
        visit_id: Optional[int],
        at: datetime,
        reason: str = "visit_completion",
    ) -> int:
        """Lock, check, decrement and append a movement record; returns the remaining quantity"""
        row = self._stock_row(scope, branch_id, part_id, lock=True)
        available = row.quantity if row else 0
        if row is None or available < quantity:
            raise InsufficientStock(part_id=part_id, requested=quantity, available=available)

        row.quantity = available - quantity
        self.db.add(
            StockMovement(
                tenant_id=scope.tenant_id,
                branch_id=branch_id,
                part_id=part_id,
                quantity_delta=-quantity,
                visit_id=visit_id,
                reason=reason,
                created_at=at,
            )
        )
        self.db.flush()
        logger.info(
            f"📦 Stock decremented: branch {branch_id}, part {part_id}, -{quantity} "
            f"(remaining {row.quantity}, visit {visit_id})"
        )
        return row.quantity

    def get_movements(self, scope: Scope, visit_id: int) -> list[StockMovement]:
        return (
            self.db.query(StockMovement)
            .filter(StockMovement.tenant_id == scope.tenant_id, StockMovement.visit_id == visit_id)
            .order_by(StockMovement.id)
            .all()
        )
