"""
Branch stock and the append-only stock movement ledger
"""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, UniqueConstraint

from .database import Base


class BranchStock(Base):
    """On-hand quantity of a part at a branch"""

    __tablename__ = "branch_stock"
    __table_args__ = (UniqueConstraint("branch_id", "part_id", name="uq_branch_stock_part"),)

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, nullable=False, index=True)
    branch_id = Column(Integer, nullable=False, index=True)
    part_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    quantity = Column(Integer, nullable=False, default=0)


class StockMovement(Base):
    __tablename__ = "stock_movements"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, nullable=False, index=True)
    branch_id = Column(Integer, nullable=False, index=True)
    part_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    quantity_delta = Column(Integer, nullable=False)
    visit_id = Column(Integer, ForeignKey("maintenance_visits.id"), nullable=True, index=True)
    reason = Column(String(100), nullable=False, default="visit_completion")
    created_at = Column(DateTime, nullable=False)
