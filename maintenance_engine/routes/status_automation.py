"""
API endpoint for maintenance status automation
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..auth import get_current_actor
from ..clock import Clock, get_clock
from ..database import get_db
from ..policy import Operation, authorize
from ..scope import Actor
from ..services.status_automation import materialize_all_tenants, update_maintenance_statuses

router = APIRouter(prefix="/maintenance/automation", tags=["Maintenance Automation"])


class AutomationResult(BaseModel):
    contracts_expired: int
    visits_cancelled: int
    visits_missed: int
    visits_materialized: int
    total_updated: int


@router.post("/run", response_model=AutomationResult)
def run_status_automation(
    materialize: bool = False,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """
    Manually trigger the expiration and missed-visit sweeps for the caller's tenant
    (In production these run via the arq worker's cron jobs)
    """
    authorize(actor, Operation.RUN_SWEEP)
    summary = update_maintenance_statuses(db, clock, tenant_ids=[actor.tenant_id])
    created = 0
    if materialize:
        created = materialize_all_tenants(db, clock, tenant_ids=[actor.tenant_id])[actor.tenant_id]
    return AutomationResult(**summary, visits_materialized=created)
