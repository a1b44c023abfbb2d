"""
Contract and directory models
"""

import enum

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .clock import generate_public_id
from .database import Base


class ContractStatus(str, enum.Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


TERMINAL_CONTRACT_STATUSES = {ContractStatus.COMPLETED.value, ContractStatus.CANCELLED.value}


class FrequencyKind(str, enum.Enum):
    ONE_TIME = "one_time"
    FIXED_INTERVAL = "fixed_interval"


class FrequencyUnit(str, enum.Enum):
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    QUARTER = "quarter"
    HALF_YEAR = "half_year"
    YEAR = "year"


# Directory tables are owned by the customer/product/staff modules; the engine
# only reads them to validate references at contract create/update.


class Customer(Base):
    __tablename__ = "customers"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    phone = Column(String(50), nullable=True)
    email = Column(String(255), nullable=True)


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    sku = Column(String(100), nullable=True)
    cost_price = Column(Float, nullable=True)
    is_spare_part = Column(Boolean, default=False, nullable=False)


class Technician(Base):
    """Staff member who can execute visits; id matches the user's id"""

    __tablename__ = "technicians"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, nullable=False, index=True)
    branch_id = Column(Integer, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)


class MaintenanceContract(Base):
    __tablename__ = "maintenance_contracts"
    __table_args__ = (
        Index("ix_maintenance_contracts_scope_status", "tenant_id", "branch_id", "status"),
    )

    id = Column(Integer, primary_key=True, index=True)
    public_id = Column(
        String(36), unique=True, nullable=False, index=True, default=generate_public_id
    )

    # Ownership - set at creation, never reassigned
    tenant_id = Column(Integer, nullable=False, index=True)
    branch_id = Column(Integer, nullable=False, index=True)

    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=False)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    assigned_technician_id = Column(Integer, ForeignKey("technicians.id"), nullable=True)

    # Recurrence: one_time, or fixed_interval every <frequency_value> <frequency_unit>
    frequency_kind = Column(String(20), nullable=False, default=FrequencyKind.ONE_TIME.value)
    frequency_value = Column(Integer, nullable=True)
    frequency_unit = Column(String(20), nullable=True)

    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=True)
    # Materialization never goes below this date (set on resume)
    materialize_from = Column(Date, nullable=True)

    contract_value = Column(Float, nullable=True)
    currency = Column(String(10), default="USD")
    special_instructions = Column(Text, nullable=True)

    # Status workflow: active ⇄ paused → completed/cancelled
    # completed: end date passed (expiration sweep)
    # cancelled: owner/manager cancelled, or soft-delete of a contract with history
    status = Column(String(20), default=ContractStatus.ACTIVE.value, nullable=False, index=True)
    paused_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    cancellation_reason = Column(String(500), nullable=True)
    completed_at = Column(DateTime, nullable=True)

    renewed_from_id = Column(Integer, ForeignKey("maintenance_contracts.id"), nullable=True)

    created_by = Column(Integer, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    customer = relationship("Customer")
    product = relationship("Product")
    assigned_technician = relationship("Technician")
    renewed_from = relationship("MaintenanceContract", remote_side=[id])
    visits = relationship(
        "MaintenanceVisit",
        back_populates="contract",
        order_by="MaintenanceVisit.scheduled_date",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<MaintenanceContract id={self.id} tenant={self.tenant_id} status={self.status}>"
