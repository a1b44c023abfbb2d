"""Visit execution service - state machine for maintenance visits"""

import logging
from datetime import date
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from ...cache import invalidate_analytics_cache
from ...clock import Clock, system_clock
from ...database import run_with_retry
from ...directories import Directory
from ...exceptions import InsufficientStock, InvalidTransition, ValidationError
from ...models_stock import StockMovement
from ...models_visit import (
    TERMINAL_VISIT_STATUSES,
    MaintenanceVisit,
    VisitCorrection as VisitCorrectionRecord,
    VisitStatus,
)
from ...policy import Operation, authorize
from ...scope import Actor
from ...shared.validators import (
    require_text,
    validate_in_window,
    validate_priority,
    validate_rating,
    validate_time_of_day,
)
from ..contracts.repository import ContractRepository
from ..inventory.ledger import StockLedger
from .repository import VisitRepository
from .schemas import (
    PartUsage,
    VisitCancel,
    VisitComplete,
    VisitCorrection,
    VisitReschedule,
    VisitUpdate,
)

logger = logging.getLogger(__name__)

CORRECTABLE_FIELDS = ("completion_notes", "customer_rating", "work_description", "total_cost")


class VisitExecutionService:
    """Service layer for visit execution: start, complete, cancel, reschedule"""

    def __init__(self, db: Session, clock: Clock = system_clock):
        self.db = db
        self.clock = clock
        self.repo = VisitRepository()
        self.contract_repo = ContractRepository()
        self.ledger = StockLedger(db)
        self.directory = Directory(db)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_visit(self, visit_id: int, actor: Actor) -> MaintenanceVisit:
        authorize(actor, Operation.VIEW)
        return self.repo.get_visit_by_id(self.db, actor.scope, visit_id)

    def list_visits(
        self,
        actor: Actor,
        status: Optional[str] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        technician_id: Optional[int] = None,
        contract_id: Optional[int] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[MaintenanceVisit]:
        authorize(actor, Operation.VIEW)
        if status is not None:
            try:
                status = VisitStatus(status).value
            except ValueError:
                raise ValidationError(f"Unknown visit status '{status}'", field="status")
        return self.repo.get_visits(
            self.db,
            actor.scope,
            status=status,
            date_from=date_from,
            date_to=date_to,
            technician_id=technician_id,
            contract_id=contract_id,
            limit=limit,
            offset=offset,
        )

    def get_today_visits(self, actor: Actor) -> List[MaintenanceVisit]:
        """The caller's own visits for today (technician home screen)"""
        today = self.clock.today()
        return self.list_visits(actor, date_from=today, date_to=today, technician_id=actor.user_id)

    def get_stock_movements(self, visit_id: int, actor: Actor) -> List[StockMovement]:
        visit = self.get_visit(visit_id, actor)
        return self.ledger.get_movements(actor.scope, visit.id)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _locked_visit(self, visit_id: int, actor: Actor) -> MaintenanceVisit:
        return self.repo.get_visit_by_id(self.db, actor.scope, visit_id, for_update=True)

    def _require_status(self, visit: MaintenanceVisit, expected: str, action: str) -> None:
        if visit.status != expected:
            logger.warning(
                f"⚠️ Rejected {action} on visit {visit.id}: status is {visit.status}, expected {expected}"
            )
            raise InvalidTransition(
                f"Cannot {action} a visit that is {visit.status} (must be {expected})",
                current_status=visit.status,
            )

    def start_visit(self, visit_id: int, actor: Actor) -> MaintenanceVisit:
        """scheduled -> in_progress; records actual_start_time"""

        def operation() -> MaintenanceVisit:
            try:
                visit = self._locked_visit(visit_id, actor)
                authorize(actor, Operation.EXECUTE_VISIT, visit)
                self._require_status(visit, VisitStatus.SCHEDULED.value, "start")

                visit.status = VisitStatus.IN_PROGRESS.value
                visit.actual_start_time = self.clock.now()
                visit.started_by = actor.user_id
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise

            self.db.refresh(visit)
            invalidate_analytics_cache(visit.tenant_id)
            logger.info(f"▶️ Visit {visit.id} started by user {actor.user_id}")
            return visit

        return run_with_retry(self.db, operation)

    def complete_visit(self, visit_id: int, data: VisitComplete, actor: Actor) -> MaintenanceVisit:
        """
        in_progress -> completed.

        Parts are checked against branch stock before anything is written; the
        status change, part lines, stock decrements and movement records commit
        together or not at all.
        """
        notes = require_text(data.completion_notes, "completion_notes")
        rating = validate_rating(data.customer_rating)
        if data.total_cost_override is not None and data.total_cost_override < 0:
            raise ValidationError("total_cost_override cannot be negative", field="total_cost_override")

        def operation() -> MaintenanceVisit:
            try:
                visit = self._locked_visit(visit_id, actor)
                authorize(actor, Operation.EXECUTE_VISIT, visit)
                self._require_status(visit, VisitStatus.IN_PROGRESS.value, "complete")

                lines = self._price_parts(data.parts, actor)
                requested = self._aggregate_quantities(lines)

                # Check every part first so a shortage leaves nothing half-applied
                for part_id, quantity in requested.items():
                    available = self.ledger.get_stock(actor.scope, visit.branch_id, part_id, lock=True)
                    if available < quantity:
                        raise InsufficientStock(part_id=part_id, requested=quantity, available=available)

                now = self.clock.now()
                for line in lines:
                    self.repo.add_part(self.db, visit, line.part_id, line.quantity, line.unit_cost)
                for part_id, quantity in requested.items():
                    self.ledger.decrement_stock(
                        actor.scope, visit.branch_id, part_id, quantity, visit_id=visit.id, at=now
                    )

                parts_total = sum(line.quantity * line.unit_cost for line in lines)
                if data.total_cost_override is not None:
                    visit.total_cost = data.total_cost_override
                    visit.total_cost_overridden = True
                else:
                    visit.total_cost = round(parts_total, 2)
                    visit.total_cost_overridden = False

                visit.status = VisitStatus.COMPLETED.value
                visit.actual_end_time = max(now, visit.actual_start_time)
                visit.completion_notes = notes
                visit.customer_rating = rating
                visit.completed_by = actor.user_id
                self.db.commit()
            except InsufficientStock as e:
                self.db.rollback()
                logger.warning(f"⚠️ Visit {visit_id} not completed: {e.message}")
                raise
            except Exception:
                self.db.rollback()
                raise

            self.db.refresh(visit)
            invalidate_analytics_cache(visit.tenant_id)
            logger.info(
                f"✅ Visit {visit.id} completed by user {actor.user_id} "
                f"({len(lines)} part line(s), total {visit.total_cost})"
            )
            return visit

        return run_with_retry(self.db, operation)

    def _price_parts(self, parts: List[PartUsage], actor: Actor) -> List[PartUsage]:
        """Validate part lines and fill in the default unit cost from the product directory"""
        priced = []
        for index, usage in enumerate(parts):
            field = f"parts[{index}]"
            if usage.quantity is None or usage.quantity <= 0:
                raise ValidationError("Part quantity must be positive", field=f"{field}.quantity")
            if not self.directory.product_exists(actor.scope, usage.part_id):
                raise ValidationError(f"Part {usage.part_id} does not exist", field=f"{field}.part_id")
            if not self.directory.is_spare_part(actor.scope, usage.part_id):
                raise ValidationError(
                    f"Product {usage.part_id} is not a spare part and cannot be consumed on a visit",
                    field=f"{field}.part_id",
                )
            default_cost = self.directory.part_unit_cost(actor.scope, usage.part_id)
            unit_cost = usage.unit_cost if usage.unit_cost is not None else (default_cost or 0.0)
            if unit_cost < 0:
                raise ValidationError("Unit cost cannot be negative", field=f"{field}.unit_cost")
            priced.append(PartUsage(part_id=usage.part_id, quantity=usage.quantity, unit_cost=unit_cost))
        return priced

    @staticmethod
    def _aggregate_quantities(lines: List[PartUsage]) -> Dict[int, int]:
        # Sorted by part id so concurrent completions lock stock rows in the same order
        totals: Dict[int, int] = {}
        for line in lines:
            totals[line.part_id] = totals.get(line.part_id, 0) + line.quantity
        return dict(sorted(totals.items()))

    def cancel_visit(self, visit_id: int, data: VisitCancel, actor: Actor) -> MaintenanceVisit:
        """scheduled -> cancelled, with a required reason"""
        authorize(actor, Operation.SCHEDULE_VISIT)
        reason = require_text(data.reason, "reason")

        def operation() -> MaintenanceVisit:
            try:
                visit = self._locked_visit(visit_id, actor)
                self._require_status(visit, VisitStatus.SCHEDULED.value, "cancel")

                visit.status = VisitStatus.CANCELLED.value
                visit.cancellation_reason = reason
                visit.cancelled_by = actor.user_id
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise

            self.db.refresh(visit)
            invalidate_analytics_cache(visit.tenant_id)
            logger.info(f"🚫 Visit {visit.id} cancelled by user {actor.user_id}: {reason}")
            return visit

        return run_with_retry(self.db, operation)

    def reschedule_visit(self, visit_id: int, data: VisitReschedule, actor: Actor) -> MaintenanceVisit:
        """
        Move a visit to a new date/time inside the contract window.

        From scheduled: assigned technician or managers. From in_progress: override
        authority only, and the start is undone (actual_start_time cleared).
        """
        scheduled_time = validate_time_of_day(data.scheduled_time)

        def operation() -> MaintenanceVisit:
            try:
                visit = self._locked_visit(visit_id, actor)
                if visit.status == VisitStatus.IN_PROGRESS.value:
                    authorize(actor, Operation.OVERRIDE_VISIT, visit)
                else:
                    authorize(actor, Operation.EXECUTE_VISIT, visit)
                    self._require_status(visit, VisitStatus.SCHEDULED.value, "reschedule")

                contract = self.contract_repo.get_contract_by_id(self.db, actor.scope, visit.contract_id)
                validate_in_window(data.scheduled_date, contract.start_date, contract.end_date)
                if data.scheduled_date < self.clock.today():
                    raise ValidationError("Cannot reschedule a visit into the past", field="scheduled_date")

                previous = visit.scheduled_date
                if previous != data.scheduled_date:
                    visit.rescheduled_from = previous
                visit.scheduled_date = data.scheduled_date
                visit.scheduled_time = scheduled_time
                visit.status = VisitStatus.SCHEDULED.value
                visit.actual_start_time = None
                visit.started_by = None
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise

            self.db.refresh(visit)
            invalidate_analytics_cache(visit.tenant_id)
            logger.info(f"📅 Visit {visit.id} rescheduled from {previous} to {visit.scheduled_date}")
            return visit

        return run_with_retry(self.db, operation)

    def update_visit(self, visit_id: int, data: VisitUpdate, actor: Actor) -> MaintenanceVisit:
        """Edit time, technician, priority or description of a scheduled visit"""
        authorize(actor, Operation.SCHEDULE_VISIT)
        updates = {}
        if data.scheduled_time is not None:
            updates["scheduled_time"] = validate_time_of_day(data.scheduled_time)
        if data.priority is not None:
            updates["priority"] = validate_priority(data.priority)
        if data.work_description is not None:
            updates["work_description"] = data.work_description

        def operation() -> MaintenanceVisit:
            try:
                visit = self._locked_visit(visit_id, actor)
                self._require_status(visit, VisitStatus.SCHEDULED.value, "edit")
                if data.assigned_technician_id is not None:
                    if not self.directory.technician_in_branch(
                        actor.scope, data.assigned_technician_id, visit.branch_id
                    ):
                        raise ValidationError(
                            f"Technician {data.assigned_technician_id} does not work at branch {visit.branch_id}",
                            field="assigned_technician_id",
                        )
                    visit.assigned_technician_id = data.assigned_technician_id
                for key, value in updates.items():
                    setattr(visit, key, value)
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise

            self.db.refresh(visit)
            invalidate_analytics_cache(visit.tenant_id)
            logger.info(f"✏️ Visit {visit.id} updated by user {actor.user_id}")
            return visit

        return run_with_retry(self.db, operation)

    def correct_visit(self, visit_id: int, data: VisitCorrection, actor: Actor) -> MaintenanceVisit:
        """
        Administrative correction of a terminal visit. Writes one audit row per
        changed field; status, dates and stock are never touched.
        """
        authorize(actor, Operation.CORRECT_VISIT)
        reason = require_text(data.reason, "reason")
        changes = {}
        if data.completion_notes is not None:
            changes["completion_notes"] = require_text(data.completion_notes, "completion_notes")
        if data.customer_rating is not None:
            changes["customer_rating"] = validate_rating(data.customer_rating)
        if data.work_description is not None:
            changes["work_description"] = data.work_description
        if data.total_cost is not None:
            if data.total_cost < 0:
                raise ValidationError("total_cost cannot be negative", field="total_cost")
            changes["total_cost"] = data.total_cost
        if not changes:
            raise ValidationError(
                f"Nothing to correct; provide one of: {', '.join(CORRECTABLE_FIELDS)}"
            )

        def operation() -> MaintenanceVisit:
            try:
                visit = self._locked_visit(visit_id, actor)
                if visit.status not in TERMINAL_VISIT_STATUSES:
                    raise InvalidTransition(
                        f"Only completed or cancelled visits are corrected; this visit is {visit.status}",
                        current_status=visit.status,
                    )
                now = self.clock.now()
                for field, new_value in changes.items():
                    old_value = getattr(visit, field)
                    if old_value == new_value:
                        continue
                    self.repo.add_correction(
                        self.db,
                        visit_id=visit.id,
                        tenant_id=visit.tenant_id,
                        corrected_by=actor.user_id,
                        field=field,
                        old_value=None if old_value is None else str(old_value),
                        new_value=None if new_value is None else str(new_value),
                        reason=reason,
                        created_at=now,
                    )
                    setattr(visit, field, new_value)
                    if field == "total_cost":
                        visit.total_cost_overridden = True
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise

            self.db.refresh(visit)
            invalidate_analytics_cache(visit.tenant_id)
            logger.info(
                f"📝 Visit {visit.id} corrected by user {actor.user_id} "
                f"({', '.join(changes)}): {reason}"
            )
            return visit

        return run_with_retry(self.db, operation)

    def get_corrections(self, visit_id: int, actor: Actor) -> List[VisitCorrectionRecord]:
        visit = self.get_visit(visit_id, actor)
        return sorted(visit.corrections, key=lambda c: c.id)

