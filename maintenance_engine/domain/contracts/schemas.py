"""Contract domain schemas - Pydantic models for validation"""

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel


class ContractCreate(BaseModel):
    branch_id: int
    customer_id: int
    product_id: int
    assigned_technician_id: Optional[int] = None
    frequency_kind: str = "one_time"  # one_time, fixed_interval
    frequency_value: Optional[int] = None
    frequency_unit: Optional[str] = None  # day, week, month, quarter, half_year, year
    start_date: date
    end_date: Optional[date] = None
    contract_value: Optional[float] = None
    currency: str = "USD"
    special_instructions: Optional[str] = None


class ContractUpdate(BaseModel):
    """
    Partial update. Fields left out are untouched; end_date and
    assigned_technician_id may be sent as null to clear them.
    """

    customer_id: Optional[int] = None
    product_id: Optional[int] = None
    assigned_technician_id: Optional[int] = None
    frequency_kind: Optional[str] = None
    frequency_value: Optional[int] = None
    frequency_unit: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    contract_value: Optional[float] = None
    currency: Optional[str] = None
    special_instructions: Optional[str] = None


class ContractRenew(BaseModel):
    """New window for the renewed contract; start defaults to the day after the old end"""

    start_date: Optional[date] = None
    end_date: Optional[date] = None
    contract_value: Optional[float] = None
    frequency_kind: Optional[str] = None
    frequency_value: Optional[int] = None
    frequency_unit: Optional[str] = None
    special_instructions: Optional[str] = None


class ContractCancel(BaseModel):
    reason: Optional[str] = None


class ContractResponse(BaseModel):
    id: int
    public_id: str
    tenant_id: int
    branch_id: int
    customer_id: int
    product_id: int
    assigned_technician_id: Optional[int]
    frequency_kind: str
    frequency_value: Optional[int]
    frequency_unit: Optional[str]
    start_date: date
    end_date: Optional[date]
    materialize_from: Optional[date]
    contract_value: Optional[float]
    currency: Optional[str]
    special_instructions: Optional[str]
    status: str
    paused_at: Optional[datetime]
    cancelled_at: Optional[datetime]
    cancellation_reason: Optional[str]
    completed_at: Optional[datetime]
    renewed_from_id: Optional[int]
    created_by: Optional[int]
    created_at: Optional[datetime]
    updated_at: Optional[datetime]

    class Config:
        from_attributes = True


class ContractHealthResponse(BaseModel):
    contract_id: int
    completed_visits: int
    total_visits: int
    completion_rate: float
    days_until_expiry: Optional[int]
    is_expiring_soon: bool
    is_expired: bool
    health: str
    next_visit_date: Optional[date] = None


class ContractDeleteResponse(BaseModel):
    contract_id: int
    deleted: bool  # False means it had history and was cancelled instead
    status: Optional[str] = None
