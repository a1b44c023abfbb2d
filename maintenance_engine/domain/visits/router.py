"""Visit router - FastAPI endpoints for visit execution"""

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import get_current_actor
from ...clock import Clock, get_clock
from ...database import get_db
from ...scope import Actor
from .schemas import (
    StockMovementResponse,
    VisitCancel,
    VisitComplete,
    VisitCorrection,
    VisitCorrectionResponse,
    VisitReschedule,
    VisitResponse,
    VisitUpdate,
)
from .service import VisitExecutionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/maintenance/visits", tags=["Maintenance Visits"])


def get_visit_service(
    db: Session = Depends(get_db), clock: Clock = Depends(get_clock)
) -> VisitExecutionService:
    """Dependency injection for VisitExecutionService"""
    return VisitExecutionService(db, clock)


@router.get("", response_model=list[VisitResponse])
def get_visits(
    status: Optional[str] = Query(None),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    technician_id: Optional[int] = Query(None),
    contract_id: Optional[int] = Query(None),
    limit: Optional[int] = Query(None, ge=1, le=500),
    offset: int = Query(0, ge=0),
    actor: Actor = Depends(get_current_actor),
    service: VisitExecutionService = Depends(get_visit_service),
):
    """List visits with status/date/technician/contract filters"""
    return service.list_visits(
        actor,
        status=status,
        date_from=date_from,
        date_to=date_to,
        technician_id=technician_id,
        contract_id=contract_id,
        limit=limit,
        offset=offset,
    )


@router.get("/today", response_model=list[VisitResponse])
def get_today_visits(
    actor: Actor = Depends(get_current_actor),
    service: VisitExecutionService = Depends(get_visit_service),
):
    """The caller's visits for today"""
    return service.get_today_visits(actor)


@router.get("/{visit_id}", response_model=VisitResponse)
def get_visit(
    visit_id: int,
    actor: Actor = Depends(get_current_actor),
    service: VisitExecutionService = Depends(get_visit_service),
):
    return service.get_visit(visit_id, actor)


@router.patch("/{visit_id}", response_model=VisitResponse)
def update_visit(
    visit_id: int,
    data: VisitUpdate,
    actor: Actor = Depends(get_current_actor),
    service: VisitExecutionService = Depends(get_visit_service),
):
    return service.update_visit(visit_id, data, actor)


@router.get("/{visit_id}/stock-movements", response_model=list[StockMovementResponse])
def get_visit_stock_movements(
    visit_id: int,
    actor: Actor = Depends(get_current_actor),
    service: VisitExecutionService = Depends(get_visit_service),
):
    return service.get_stock_movements(visit_id, actor)


@router.get("/{visit_id}/corrections", response_model=list[VisitCorrectionResponse])
def get_visit_corrections(
    visit_id: int,
    actor: Actor = Depends(get_current_actor),
    service: VisitExecutionService = Depends(get_visit_service),
):
    return service.get_corrections(visit_id, actor)


# ============================================================================
# STATE TRANSITIONS
# ============================================================================


@router.post("/{visit_id}/start", response_model=VisitResponse)
def start_visit(
    visit_id: int,
    actor: Actor = Depends(get_current_actor),
    service: VisitExecutionService = Depends(get_visit_service),
):
    """Start a scheduled visit (assigned technician or manager)"""
    return service.start_visit(visit_id, actor)


@router.post("/{visit_id}/complete", response_model=VisitResponse)
def complete_visit(
    visit_id: int,
    data: VisitComplete,
    actor: Actor = Depends(get_current_actor),
    service: VisitExecutionService = Depends(get_visit_service),
):
    """Complete an in-progress visit, consuming parts from branch stock"""
    return service.complete_visit(visit_id, data, actor)


@router.post("/{visit_id}/cancel", response_model=VisitResponse)
def cancel_visit(
    visit_id: int,
    data: VisitCancel,
    actor: Actor = Depends(get_current_actor),
    service: VisitExecutionService = Depends(get_visit_service),
):
    return service.cancel_visit(visit_id, data, actor)


@router.post("/{visit_id}/reschedule", response_model=VisitResponse)
def reschedule_visit(
    visit_id: int,
    data: VisitReschedule,
    actor: Actor = Depends(get_current_actor),
    service: VisitExecutionService = Depends(get_visit_service),
):
    return service.reschedule_visit(visit_id, data, actor)


@router.post("/{visit_id}/correct", response_model=VisitResponse)
def correct_visit(
    visit_id: int,
    data: VisitCorrection,
    actor: Actor = Depends(get_current_actor),
    service: VisitExecutionService = Depends(get_visit_service),
):
    """Administrative correction of a completed or cancelled visit (audited)"""
    return service.correct_visit(visit_id, data, actor)
