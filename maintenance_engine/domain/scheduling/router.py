"""Scheduling router - materialization and calendar endpoints"""

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import get_current_actor
from ...clock import Clock, get_clock
from ...database import get_db
from ...exceptions import ValidationError
from ...scope import Actor
from ..visits.schemas import VisitResponse
from .schemas import (
    CalendarResponse,
    MaterializeOccurrenceRequest,
    MaterializeRequest,
    MaterializeResponse,
    RealCalendarEntry,
    ScheduleVisitRequest,
    VirtualCalendarEntry,
)
from .service import RealVisitEntry, VisitSchedulingService, parse_virtual_key

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/maintenance/schedule", tags=["Maintenance Scheduling"])


def get_scheduling_service(
    db: Session = Depends(get_db), clock: Clock = Depends(get_clock)
) -> VisitSchedulingService:
    """Dependency injection for VisitSchedulingService"""
    return VisitSchedulingService(db, clock)


@router.post("/contracts/{contract_id}/materialize", response_model=MaterializeResponse)
def materialize_contract(
    contract_id: int,
    data: MaterializeRequest,
    actor: Actor = Depends(get_current_actor),
    service: VisitSchedulingService = Depends(get_scheduling_service),
):
    """Create the missing visits of a contract through a horizon date (idempotent)"""
    through = data.through or service.default_horizon()
    visits = service.materialize_for_contract(contract_id, actor, through)
    return MaterializeResponse(
        contract_id=contract_id,
        through=through,
        created_count=len(visits),
        visits=[VisitResponse.model_validate(v) for v in visits],
    )


@router.post("/visits", response_model=VisitResponse, status_code=201)
def schedule_visit(
    data: ScheduleVisitRequest,
    actor: Actor = Depends(get_current_actor),
    service: VisitSchedulingService = Depends(get_scheduling_service),
):
    """Manually schedule a one-off visit under a contract"""
    return service.schedule_visit(data, actor)


@router.post("/occurrences", response_model=VisitResponse)
def materialize_occurrence(
    data: MaterializeOccurrenceRequest,
    actor: Actor = Depends(get_current_actor),
    service: VisitSchedulingService = Depends(get_scheduling_service),
):
    """'Materialize and schedule' a virtual calendar entry"""
    if data.key:
        contract_id, occurrence_date = parse_virtual_key(data.key)
    elif data.contract_id is not None and data.occurrence_date is not None:
        contract_id, occurrence_date = data.contract_id, data.occurrence_date
    else:
        raise ValidationError("Provide a virtual key, or contract_id and occurrence_date", field="key")
    return service.materialize_occurrence(contract_id, occurrence_date, actor)


@router.get("/calendar", response_model=CalendarResponse)
def get_calendar(
    start: date = Query(...),
    end: date = Query(...),
    branch_id: Optional[int] = Query(None),
    actor: Actor = Depends(get_current_actor),
    service: VisitSchedulingService = Depends(get_scheduling_service),
):
    """Real visits and virtual projections in a date range, sorted by date"""
    entries = []
    real_count = 0
    for entry in service.get_calendar(start, end, actor, branch_id=branch_id):
        if isinstance(entry, RealVisitEntry):
            real_count += 1
            entries.append(
                RealCalendarEntry(
                    key=entry.key,
                    entry_date=entry.entry_date,
                    visit=VisitResponse.model_validate(entry.visit),
                )
            )
        else:
            entries.append(
                VirtualCalendarEntry(
                    key=entry.key,
                    entry_date=entry.entry_date,
                    contract_id=entry.contract_id,
                    branch_id=entry.branch_id,
                    assigned_technician_id=entry.assigned_technician_id,
                )
            )
    return CalendarResponse(
        start=start,
        end=end,
        entries=entries,
        real_count=real_count,
        virtual_count=len(entries) - real_count,
    )
