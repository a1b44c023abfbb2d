"""
Visit Management Models for Contract Execution
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
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .clock import generate_public_id
from .database import Base


class VisitStatus(str, enum.Enum):
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    MISSED = "missed"


TERMINAL_VISIT_STATUSES = {VisitStatus.COMPLETED.value, VisitStatus.CANCELLED.value}


class VisitPriority(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class MaintenanceVisit(Base):
    """One dated occurrence of maintenance work under a contract"""

    __tablename__ = "maintenance_visits"
    __table_args__ = (
        # One materialized visit per recurrence slot; manual visits have no slot
        UniqueConstraint("contract_id", "occurrence_date", name="uq_visit_contract_occurrence"),
        Index("ix_maintenance_visits_scope_date", "tenant_id", "branch_id", "scheduled_date"),
    )

    id = Column(Integer, primary_key=True, index=True)
    public_id = Column(
        String(36), unique=True, nullable=False, index=True, default=generate_public_id
    )

    tenant_id = Column(Integer, nullable=False, index=True)
    branch_id = Column(Integer, nullable=False, index=True)
    contract_id = Column(Integer, ForeignKey("maintenance_contracts.id"), nullable=False)

    # Scheduling
    scheduled_date = Column(Date, nullable=False, index=True)
    scheduled_time = Column(String(5), nullable=True)  # HH:MM format
    occurrence_date = Column(Date, nullable=True)  # Recurrence slot this visit fills
    rescheduled_from = Column(Date, nullable=True)
    assigned_technician_id = Column(Integer, ForeignKey("technicians.id"), nullable=True)
    priority = Column(String(10), default=VisitPriority.MEDIUM.value, nullable=False)

    # Status workflow: scheduled → in_progress → completed
    # scheduled: Visit is scheduled and upcoming
    # in_progress: Technician started the job (actual_start_time set)
    # completed: Job finished, parts and cost captured (actual_end_time set)
    # cancelled: Cancelled with a reason (manual, window shrink, contract cancel/expiry)
    # missed: Never started before scheduled_date + grace, or left over when the contract expired (sweeps only)
    status = Column(String(20), default=VisitStatus.SCHEDULED.value, nullable=False, index=True)

    # Actual execution times
    actual_start_time = Column(DateTime, nullable=True)
    actual_end_time = Column(DateTime, nullable=True)

    work_description = Column(Text, nullable=True)
    completion_notes = Column(Text, nullable=True)
    cancellation_reason = Column(String(500), nullable=True)
    missed_at = Column(DateTime, nullable=True)

    total_cost = Column(Float, nullable=True)
    total_cost_overridden = Column(Boolean, default=False, nullable=False)
    customer_rating = Column(Integer, nullable=True)  # 1-5

    # Audit trail
    started_by = Column(Integer, nullable=True)
    completed_by = Column(Integer, nullable=True)
    cancelled_by = Column(Integer, nullable=True)

    # Timestamps
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    contract = relationship("MaintenanceContract", back_populates="visits")
    parts = relationship("VisitPart", back_populates="visit", cascade="all, delete-orphan")
    corrections = relationship(
        "VisitCorrection", back_populates="visit", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<MaintenanceVisit id={self.id} contract={self.contract_id} {self.scheduled_date} {self.status}>"


class VisitPart(Base):
    """Part consumed during a visit"""

    __tablename__ = "maintenance_visit_parts"

    id = Column(Integer, primary_key=True, index=True)
    visit_id = Column(Integer, ForeignKey("maintenance_visits.id"), nullable=False, index=True)
    part_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_cost = Column(Float, nullable=False)

    visit = relationship("MaintenanceVisit", back_populates="parts")


class VisitCorrection(Base):
    """Audit row for an administrative correction of a completed/cancelled visit"""

    __tablename__ = "maintenance_visit_corrections"

    id = Column(Integer, primary_key=True, index=True)
    visit_id = Column(Integer, ForeignKey("maintenance_visits.id"), nullable=False, index=True)
    tenant_id = Column(Integer, nullable=False)
    corrected_by = Column(Integer, nullable=False)
    field = Column(String(50), nullable=False)
    old_value = Column(Text, nullable=True)
    new_value = Column(Text, nullable=True)
    reason = Column(String(500), nullable=False)
    created_at = Column(DateTime, nullable=False)

    visit = relationship("MaintenanceVisit", back_populates="corrections")
