"""Scheduling domain schemas - Pydantic models for validation"""

from datetime import date
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field

from ..visits.schemas import VisitResponse


class MaterializeRequest(BaseModel):
    through: Optional[date] = None  # Defaults to the end of next month


class MaterializeResponse(BaseModel):
    contract_id: int
    through: date
    created_count: int
    visits: List[VisitResponse]


class ScheduleVisitRequest(BaseModel):
    """Manual "schedule visit" action"""

    contract_id: int
    scheduled_date: date
    scheduled_time: Optional[str] = None
    assigned_technician_id: Optional[int] = None
    priority: Optional[str] = None
    work_description: Optional[str] = None


class MaterializeOccurrenceRequest(BaseModel):
    """Turn a virtual calendar entry into a real visit, by key or by contract + date"""

    key: Optional[str] = None
    contract_id: Optional[int] = None
    occurrence_date: Optional[date] = None


class RealCalendarEntry(BaseModel):
    kind: Literal["real"] = "real"
    key: str
    entry_date: date
    visit: VisitResponse


class VirtualCalendarEntry(BaseModel):
    kind: Literal["virtual"] = "virtual"
    key: str
    entry_date: date
    contract_id: int
    branch_id: int
    assigned_technician_id: Optional[int]
    # Not independently actionable: the client offers "materialize and schedule"
    action: Literal["materialize"] = "materialize"


CalendarEntry = Annotated[
    Union[RealCalendarEntry, VirtualCalendarEntry], Field(discriminator="kind")
]


class CalendarResponse(BaseModel):
    start: date
    end: date
    entries: List[CalendarEntry]
    real_count: int
    virtual_count: int
