"""
Automated status transitions for maintenance contracts and visits
Handles active/paused → completed once the end date passes (leftover visits missed or cancelled)
Handles scheduled → missed once scheduled date + grace has elapsed
Keeps active contracts materialized through the default horizon
"""

import logging
from datetime import timedelta
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from ..cache import invalidate_analytics_cache
from ..clock import Clock, system_clock
from ..config import MISSED_VISIT_GRACE_DAYS, MISSED_VISIT_GRACE_DAYS_BY_PRIORITY
from ..database import run_with_retry
from ..domain.contracts.repository import ContractRepository
from ..domain.contracts.service import ContractService
from ..domain.scheduling.service import VisitSchedulingService
from ..domain.visits.repository import VisitRepository
from ..exceptions import ConcurrencyConflict
from ..models import ContractStatus
from ..models_visit import MaintenanceVisit, VisitStatus
from ..policy import Operation, authorize
from ..scope import Actor, system_actor

logger = logging.getLogger(__name__)


def grace_days_for(priority: Optional[str]) -> int:
    """Missed-visit grace period, per priority when configured"""
    return MISSED_VISIT_GRACE_DAYS_BY_PRIORITY.get(priority, MISSED_VISIT_GRACE_DAYS)


def is_missed(visit: MaintenanceVisit, today) -> bool:
    return (
        visit.status == VisitStatus.SCHEDULED.value
        and visit.actual_start_time is None
        and visit.scheduled_date + timedelta(days=grace_days_for(visit.priority)) < today
    )


def mark_missed_visits(db: Session, actor: Actor, clock: Clock = system_clock) -> int:
    """
    Flag scheduled visits nobody started within the grace period.
    Each visit is re-read under a row lock so a visit started meanwhile is left alone.
    """
    authorize(actor, Operation.RUN_SWEEP)
    repo = VisitRepository()
    today = clock.today()
    candidate_ids = [
        v.id for v in repo.get_overdue_scheduled_visits(db, actor.scope, before=today) if is_missed(v, today)
    ]
    db.rollback()

    marked = 0
    for visit_id in candidate_ids:

        def operation() -> bool:
            try:
                visit = repo.get_visit_by_id(db, actor.scope, visit_id, for_update=True)
                if not is_missed(visit, today):
                    db.rollback()
                    return False
                visit.status = VisitStatus.MISSED.value
                visit.missed_at = clock.now()
                db.commit()
                return True
            except Exception:
                db.rollback()
                raise

        if run_with_retry(db, operation):
            marked += 1
            logger.info(f"⌛ Visit {visit_id} marked missed")
    return marked


def top_up_materialization(db: Session, actor: Actor, clock: Clock = system_clock) -> int:
    """Materialize every active contract of the actor's tenant through the default horizon"""
    authorize(actor, Operation.RUN_SWEEP)
    scheduling = VisitSchedulingService(db, clock)
    contract_ids = [
        c.id
        for c in ContractRepository.get_contracts(db, actor.scope, status=ContractStatus.ACTIVE.value)
    ]
    db.rollback()

    created = 0
    for contract_id in contract_ids:
        try:
            created += len(scheduling.materialize_for_contract(contract_id, actor))
        except ConcurrencyConflict as e:
            # Another worker is materializing this contract right now
            logger.warning(f"⚠️ Skipped contract {contract_id} during top-up: {e.message}")
    return created


def update_maintenance_statuses(
    db: Session, clock: Clock = system_clock, tenant_ids: Optional[Iterable[int]] = None
) -> dict:
    """
    Run the expiration and missed-visit sweeps for every tenant (or the given ones).
    Should be run as a scheduled job (e.g., daily cron); safe to run repeatedly.

    Returns:
        dict: Summary of status changes made
    """
    summary = {
        "contracts_expired": 0,
        "visits_cancelled": 0,
        "visits_missed": 0,
        "total_updated": 0,
    }
    tenants: List[int] = (
        sorted(tenant_ids) if tenant_ids is not None else ContractRepository.get_tenant_ids(db)
    )

    for tenant_id in tenants:
        actor = system_actor(tenant_id)
        try:
            expired, cancelled, closed_out = ContractService(db, clock).expire_due_contracts(actor)
            missed = closed_out + mark_missed_visits(db, actor, clock)
        except Exception as e:
            logger.error(f"❌ Error updating maintenance statuses for tenant {tenant_id}: {str(e)}")
            db.rollback()
            raise

        summary["contracts_expired"] += len(expired)
        summary["visits_cancelled"] += cancelled
        summary["visits_missed"] += missed
        if expired or cancelled or missed:
            invalidate_analytics_cache(tenant_id)

    summary["total_updated"] = (
        summary["contracts_expired"] + summary["visits_cancelled"] + summary["visits_missed"]
    )
    if summary["total_updated"]:
        logger.info(f"📊 Status automation summary: {summary}")
    else:
        logger.debug("ℹ️ No contract/visit status updates needed")
    return summary


def materialize_all_tenants(
    db: Session, clock: Clock = system_clock, tenant_ids: Optional[Iterable[int]] = None
) -> dict:
    """Horizon top-up across tenants; returns {tenant_id: visits created}"""
    tenants = sorted(tenant_ids) if tenant_ids is not None else ContractRepository.get_tenant_ids(db)
    created = {}
    for tenant_id in tenants:
        created[tenant_id] = top_up_materialization(db, system_actor(tenant_id), clock)
    logger.info(f"📅 Horizon top-up created {sum(created.values())} visit(s) across {len(tenants)} tenant(s)")
    return created
