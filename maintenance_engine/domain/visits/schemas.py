"""Visit domain schemas - Pydantic models for validation"""

from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class VisitPartResponse(BaseModel):
    part_id: int
    quantity: int
    unit_cost: float

    class Config:
        from_attributes = True


class VisitResponse(BaseModel):
    id: int
    public_id: str
    tenant_id: int
    branch_id: int
    contract_id: int
    scheduled_date: date
    scheduled_time: Optional[str]
    occurrence_date: Optional[date]
    rescheduled_from: Optional[date]
    assigned_technician_id: Optional[int]
    priority: str
    status: str
    actual_start_time: Optional[datetime]
    actual_end_time: Optional[datetime]
    work_description: Optional[str]
    completion_notes: Optional[str]
    cancellation_reason: Optional[str]
    missed_at: Optional[datetime]
    total_cost: Optional[float]
    total_cost_overridden: bool
    customer_rating: Optional[int]
    parts: List[VisitPartResponse] = []
    created_at: Optional[datetime]
    updated_at: Optional[datetime]

    class Config:
        from_attributes = True


class PartUsage(BaseModel):
    """A part consumed during a visit; unit_cost defaults to the product cost price"""

    part_id: int
    quantity: int
    unit_cost: Optional[float] = None


class VisitComplete(BaseModel):
    completion_notes: Optional[str] = None
    parts: List[PartUsage] = Field(default_factory=list)
    customer_rating: Optional[int] = None
    total_cost_override: Optional[float] = None


class VisitCancel(BaseModel):
    reason: Optional[str] = None


class VisitReschedule(BaseModel):
    scheduled_date: date
    scheduled_time: Optional[str] = None


class VisitUpdate(BaseModel):
    """Edits allowed while a visit is still scheduled"""

    scheduled_time: Optional[str] = None
    assigned_technician_id: Optional[int] = None
    priority: Optional[str] = None
    work_description: Optional[str] = None


class VisitCorrection(BaseModel):
    """Administrative correction of a completed/cancelled visit (audited)"""

    reason: str
    completion_notes: Optional[str] = None
    customer_rating: Optional[int] = None
    work_description: Optional[str] = None
    total_cost: Optional[float] = None


class VisitCorrectionResponse(BaseModel):
    id: int
    visit_id: int
    corrected_by: int
    field: str
    old_value: Optional[str]
    new_value: Optional[str]
    reason: str
    created_at: datetime

    class Config:
        from_attributes = True


class StockMovementResponse(BaseModel):
    id: int
    branch_id: int
    part_id: int
    quantity_delta: int
    visit_id: Optional[int]
    reason: str
    created_at: datetime

    class Config:
        from_attributes = True
