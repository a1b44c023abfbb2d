"""Contract service - Business logic for the maintenance contract lifecycle"""

import logging
from datetime import date, timedelta
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from ...cache import invalidate_analytics_cache
from ...clock import Clock, system_clock
from ...config import EXPIRING_SOON_DAYS
from ...database import run_with_retry
from ...directories import Directory
from ...exceptions import AccessDenied, InvalidTransition, ValidationError
from ...models import TERMINAL_CONTRACT_STATUSES, ContractStatus, MaintenanceContract
from ...models_visit import VisitStatus
from ...policy import Operation, authorize
from ...scope import Actor
from ...shared.validators import validate_window
from ..scheduling.recurrence import Frequency, next_occurrence
from ..visits.repository import VisitRepository
from .health import ContractHealth, compute_health
from .repository import ContractRepository
from .schemas import ContractCancel, ContractCreate, ContractRenew, ContractUpdate

logger = logging.getLogger(__name__)

REASON_OUTSIDE_WINDOW = "outside contract window"
REASON_CONTRACT_CANCELLED = "contract cancelled"
REASON_CONTRACT_EXPIRED = "contract expired"


class ContractService:
    """Service layer for contract business logic"""

    def __init__(self, db: Session, clock: Clock = system_clock):
        self.db = db
        self.clock = clock
        self.repo = ContractRepository()
        self.visit_repo = VisitRepository()
        self.directory = Directory(db)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_contracts(
        self,
        actor: Actor,
        status: Optional[str] = None,
        customer_id: Optional[int] = None,
        branch_id: Optional[int] = None,
    ) -> List[MaintenanceContract]:
        """Get all contracts visible to the caller"""
        authorize(actor, Operation.VIEW)
        if status is not None:
            try:
                status = ContractStatus(status).value
            except ValueError:
                raise ValidationError(f"Unknown contract status '{status}'", field="status")
        return self.repo.get_contracts(
            self.db, actor.scope, status=status, customer_id=customer_id, branch_id=branch_id
        )

    def get_contract(self, contract_id: int, actor: Actor) -> MaintenanceContract:
        """Get a specific contract"""
        authorize(actor, Operation.VIEW)
        return self.repo.get_contract_by_id(self.db, actor.scope, contract_id)

    def get_expiring_contracts(self, actor: Actor, days: int = EXPIRING_SOON_DAYS) -> List[MaintenanceContract]:
        """Active contracts ending within the next `days` days"""
        authorize(actor, Operation.VIEW)
        if days < 0:
            raise ValidationError("days cannot be negative", field="days")
        return self.repo.get_expiring_contracts(self.db, actor.scope, self.clock.today(), days)

    def get_health(self, contract_id: int, actor: Actor) -> Tuple[ContractHealth, Optional[date]]:
        """Derived health plus the next visit date (None when nothing is left to do)"""
        contract = self.get_contract(contract_id, actor)
        today = self.clock.today()
        visits = self.visit_repo.get_contract_visits(self.db, contract.id)
        health = compute_health(contract, visits, today)

        next_visit = None
        if contract.status == ContractStatus.ACTIVE.value:
            upcoming = [
                v.scheduled_date
                for v in visits
                if v.status == VisitStatus.SCHEDULED.value and v.scheduled_date >= today
            ]
            if upcoming:
                next_visit = min(upcoming)
            else:
                floor = today - timedelta(days=1)
                if contract.materialize_from and contract.materialize_from > today:
                    floor = contract.materialize_from - timedelta(days=1)
                taken = {v.occurrence_date or v.scheduled_date for v in visits}
                candidate = next_occurrence(
                    Frequency.from_contract(contract), contract.start_date, contract.end_date, floor
                )
                while candidate is not None and candidate in taken:
                    candidate = next_occurrence(
                        Frequency.from_contract(contract), contract.start_date, contract.end_date, candidate
                    )
                next_visit = candidate
        return health, next_visit

    # ------------------------------------------------------------------
    # Create / update
    # ------------------------------------------------------------------

    def _check_references(
        self,
        actor: Actor,
        branch_id: int,
        customer_id: int,
        product_id: int,
        technician_id: Optional[int],
    ) -> None:
        scope = actor.scope
        if not self.directory.customer_exists(scope, customer_id):
            raise ValidationError(f"Customer {customer_id} not found", field="customer_id")
        if not self.directory.product_exists(scope, product_id):
            raise ValidationError(f"Product {product_id} not found", field="product_id")
        if technician_id is not None and not self.directory.technician_in_branch(
            scope, technician_id, branch_id
        ):
            raise ValidationError(
                f"Technician {technician_id} does not work at branch {branch_id}",
                field="assigned_technician_id",
            )

    def create_contract(self, data: ContractCreate, actor: Actor) -> MaintenanceContract:
        """Create a new active contract after validating its references and recurrence"""
        authorize(actor, Operation.MANAGE_CONTRACT)
        logger.info(f"📥 Creating maintenance contract for tenant {actor.tenant_id}, branch {data.branch_id}")

        if not actor.scope.allows_branch(data.branch_id):
            logger.warning(
                f"🚫 SECURITY: user {actor.user_id} tried to create a contract in branch {data.branch_id}"
            )
            raise AccessDenied(f"Branch {data.branch_id} is outside your scope")

        frequency = Frequency.parse(data.frequency_kind, data.frequency_value, data.frequency_unit)
        validate_window(data.start_date, data.end_date)
        if data.contract_value is not None and data.contract_value < 0:
            raise ValidationError("contract_value cannot be negative", field="contract_value")
        self._check_references(
            actor, data.branch_id, data.customer_id, data.product_id, data.assigned_technician_id
        )

        try:
            contract = self.repo.create_contract(
                self.db,
                tenant_id=actor.tenant_id,
                branch_id=data.branch_id,
                customer_id=data.customer_id,
                product_id=data.product_id,
                assigned_technician_id=data.assigned_technician_id,
                frequency_kind=frequency.kind.value,
                frequency_value=frequency.value,
                frequency_unit=frequency.unit.value if frequency.unit else None,
                start_date=data.start_date,
                end_date=data.end_date,
                contract_value=data.contract_value,
                currency=data.currency,
                special_instructions=data.special_instructions,
                status=ContractStatus.ACTIVE.value,
                created_by=actor.user_id,
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(contract)
        invalidate_analytics_cache(actor.tenant_id)
        logger.info(f"✅ Contract {contract.id} created ({frequency.kind.value})")
        return contract

    def update_contract(self, contract_id: int, data: ContractUpdate, actor: Actor) -> MaintenanceContract:
        """
        Update a contract. Scheduled visits that fall outside a shrunk window are
        cancelled; completed and in-progress visits are never touched.
        """
        authorize(actor, Operation.MANAGE_CONTRACT)
        provided = data.model_fields_set

        def operation() -> MaintenanceContract:
            try:
                contract = self.repo.get_contract_by_id(self.db, actor.scope, contract_id, for_update=True)
                if contract.status in TERMINAL_CONTRACT_STATUSES:
                    raise InvalidTransition(
                        f"Contract {contract.id} is {contract.status} and can no longer be edited",
                        current_status=contract.status,
                    )

                merged = {
                    field: getattr(data, field) if field in provided else getattr(contract, field)
                    for field in (
                        "customer_id",
                        "product_id",
                        "assigned_technician_id",
                        "frequency_kind",
                        "frequency_value",
                        "frequency_unit",
                        "start_date",
                        "end_date",
                        "contract_value",
                        "currency",
                        "special_instructions",
                    )
                }
                for required in ("customer_id", "product_id", "frequency_kind", "start_date"):
                    if merged[required] is None:
                        raise ValidationError(f"{required} cannot be cleared", field=required)

                frequency = Frequency.parse(
                    merged["frequency_kind"], merged["frequency_value"], merged["frequency_unit"]
                )
                merged["frequency_kind"] = frequency.kind.value
                merged["frequency_value"] = frequency.value
                merged["frequency_unit"] = frequency.unit.value if frequency.unit else None
                validate_window(merged["start_date"], merged["end_date"])
                if merged["contract_value"] is not None and merged["contract_value"] < 0:
                    raise ValidationError("contract_value cannot be negative", field="contract_value")
                self._check_references(
                    actor,
                    contract.branch_id,
                    merged["customer_id"],
                    merged["product_id"],
                    merged["assigned_technician_id"],
                )

                old_technician = contract.assigned_technician_id
                self.repo.update_contract(self.db, contract, **merged)

                cancelled = self.visit_repo.get_open_visits_outside_window(
                    self.db, contract.id, contract.start_date, contract.end_date
                )
                for visit in cancelled:
                    visit.status = VisitStatus.CANCELLED.value
                    visit.cancellation_reason = REASON_OUTSIDE_WINDOW
                    visit.cancelled_by = actor.user_id

                if contract.assigned_technician_id != old_technician:
                    for visit in self.visit_repo.get_scheduled_visits(self.db, contract.id):
                        if visit.assigned_technician_id == old_technician:
                            visit.assigned_technician_id = contract.assigned_technician_id
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise

            self.db.refresh(contract)
            invalidate_analytics_cache(actor.tenant_id)
            logger.info(
                f"✏️ Contract {contract.id} updated by user {actor.user_id}"
                + (f", {len(cancelled)} visit(s) outside the window cancelled" if cancelled else "")
            )
            return contract

        return run_with_retry(self.db, operation)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _transition(self, contract_id: int, actor: Actor, expected: str, action: str, apply) -> MaintenanceContract:
        """Lock the contract, check its status and apply a state change in one transaction"""

        def operation() -> MaintenanceContract:
            try:
                contract = self.repo.get_contract_by_id(self.db, actor.scope, contract_id, for_update=True)
                if contract.status != expected:
                    logger.warning(
                        f"⚠️ Rejected {action} on contract {contract.id}: status is {contract.status}"
                    )
                    raise InvalidTransition(
                        f"Cannot {action} a contract that is {contract.status} (must be {expected})",
                        current_status=contract.status,
                    )
                apply(contract)
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise

            self.db.refresh(contract)
            invalidate_analytics_cache(actor.tenant_id)
            logger.info(f"🔄 Contract {contract.id} {action}d by user {actor.user_id}, now {contract.status}")
            return contract

        return run_with_retry(self.db, operation)

    def pause_contract(self, contract_id: int, actor: Actor) -> MaintenanceContract:
        """Stop materialization; visits already scheduled stay as they are"""
        authorize(actor, Operation.MANAGE_CONTRACT)

        def apply(contract: MaintenanceContract) -> None:
            contract.status = ContractStatus.PAUSED.value
            contract.paused_at = self.clock.now()

        return self._transition(contract_id, actor, ContractStatus.ACTIVE.value, "pause", apply)

    def resume_contract(self, contract_id: int, actor: Actor) -> MaintenanceContract:
        """Resume materialization from today; slots missed while paused are not backfilled"""
        authorize(actor, Operation.MANAGE_CONTRACT)

        def apply(contract: MaintenanceContract) -> None:
            contract.status = ContractStatus.ACTIVE.value
            contract.paused_at = None
            contract.materialize_from = self.clock.today()

        return self._transition(contract_id, actor, ContractStatus.PAUSED.value, "resume", apply)

    def cancel_contract(self, contract_id: int, data: ContractCancel, actor: Actor) -> MaintenanceContract:
        """Cancel the contract and every visit that has not started yet"""
        authorize(actor, Operation.MANAGE_CONTRACT)

        def operation() -> MaintenanceContract:
            try:
                contract = self.repo.get_contract_by_id(self.db, actor.scope, contract_id, for_update=True)
                count = self._cancel_locked(contract, actor, data.reason)
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise

            self.db.refresh(contract)
            invalidate_analytics_cache(actor.tenant_id)
            logger.info(f"🚫 Contract {contract.id} cancelled by user {actor.user_id} ({count} visit(s) cancelled)")
            return contract

        return run_with_retry(self.db, operation)

    def _cancel_locked(self, contract: MaintenanceContract, actor: Actor, reason: Optional[str]) -> int:
        if contract.status in TERMINAL_CONTRACT_STATUSES:
            raise InvalidTransition(
                f"Contract {contract.id} is already {contract.status}", current_status=contract.status
            )
        contract.status = ContractStatus.CANCELLED.value
        contract.cancelled_at = self.clock.now()
        contract.cancellation_reason = reason.strip() if reason and reason.strip() else None
        return self._cancel_scheduled_visits(contract.id, actor, REASON_CONTRACT_CANCELLED)

    def _cancel_scheduled_visits(self, contract_id: int, actor: Actor, reason: str) -> int:
        visits = self.visit_repo.get_scheduled_visits(self.db, contract_id)
        for visit in visits:
            visit.status = VisitStatus.CANCELLED.value
            visit.cancellation_reason = reason
            visit.cancelled_by = actor.user_id
        self.db.flush()
        return len(visits)

    def expire_contract(self, contract_id: int, actor: Actor) -> MaintenanceContract:
        """
        Mark an ended contract completed and close out its remaining scheduled visits.
        Running it again on an already completed/cancelled contract changes nothing.
        """
        authorize(actor, Operation.MANAGE_CONTRACT)

        def operation() -> MaintenanceContract:
            try:
                contract = self.repo.get_contract_by_id(self.db, actor.scope, contract_id, for_update=True)
                if contract.status in TERMINAL_CONTRACT_STATUSES:
                    self.db.rollback()
                    return contract
                today = self.clock.today()
                if contract.end_date is None or contract.end_date >= today:
                    raise InvalidTransition(
                        f"Contract {contract.id} has not reached its end date yet",
                        current_status=contract.status,
                    )
                self._expire_locked(contract, actor, today)
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise

            self.db.refresh(contract)
            invalidate_analytics_cache(actor.tenant_id)
            return contract

        return run_with_retry(self.db, operation)

    def _expire_locked(self, contract: MaintenanceContract, actor: Actor, today: date) -> Tuple[int, int]:
        """
        Close out a contract whose end date has passed. Scheduled visits that were
        due and never started become missed; any dated today or later are cancelled.
        Returns (cancelled, missed).
        """
        now = self.clock.now()
        contract.status = ContractStatus.COMPLETED.value
        contract.completed_at = now
        contract.paused_at = None

        missed = 0
        for visit in self.visit_repo.get_scheduled_visits(self.db, contract.id):
            if visit.scheduled_date < today and visit.actual_start_time is None:
                visit.status = VisitStatus.MISSED.value
                visit.missed_at = now
                missed += 1
        self.db.flush()
        cancelled = self._cancel_scheduled_visits(contract.id, actor, REASON_CONTRACT_EXPIRED)
        logger.info(
            f"⏰ Contract {contract.id} expired (end {contract.end_date}), "
            f"{missed} visit(s) missed, {cancelled} visit(s) cancelled"
        )
        return cancelled, missed

    def expire_due_contracts(self, actor: Actor) -> Tuple[List[int], int, int]:
        """
        Expiration sweep over every active/paused contract whose end date has passed.
        One transaction per contract; returns (expired ids, cancelled visits, missed visits).
        """
        authorize(actor, Operation.RUN_SWEEP)
        today = self.clock.today()
        due_ids = [c.id for c in self.repo.get_contracts_due_for_expiration(self.db, actor.scope, today)]
        self.db.rollback()

        expired: List[int] = []
        cancelled_total = 0
        missed_total = 0
        for contract_id in due_ids:

            def operation() -> Optional[Tuple[int, int]]:
                try:
                    contract = self.repo.get_contract_by_id(
                        self.db, actor.scope, contract_id, for_update=True
                    )
                    # Another sweep may have got here first
                    if contract.status in TERMINAL_CONTRACT_STATUSES:
                        self.db.rollback()
                        return None
                    counts = self._expire_locked(contract, actor, today)
                    self.db.commit()
                    return counts
                except Exception:
                    self.db.rollback()
                    raise

            counts = run_with_retry(self.db, operation)
            if counts is not None:
                expired.append(contract_id)
                cancelled_total += counts[0]
                missed_total += counts[1]

        if expired:
            logger.info(
                f"✅ Expiration sweep for tenant {actor.tenant_id}: {len(expired)} contract(s), "
                f"{cancelled_total} visit(s) cancelled, {missed_total} visit(s) missed"
            )
        return expired, cancelled_total, missed_total

    def renew_contract(self, contract_id: int, data: ContractRenew, actor: Actor) -> MaintenanceContract:
        """Create a follow-up contract linked to the old one; the old row is left as is"""
        authorize(actor, Operation.MANAGE_CONTRACT)
        source = self.repo.get_contract_by_id(self.db, actor.scope, contract_id)

        start_date = data.start_date
        if start_date is None:
            if source.end_date is None:
                raise ValidationError(
                    "start_date is required to renew an open-ended contract", field="start_date"
                )
            start_date = source.end_date + timedelta(days=1)

        renewal = ContractCreate(
            branch_id=source.branch_id,
            customer_id=source.customer_id,
            product_id=source.product_id,
            assigned_technician_id=source.assigned_technician_id,
            frequency_kind=data.frequency_kind or source.frequency_kind,
            frequency_value=data.frequency_value if data.frequency_value is not None else source.frequency_value,
            frequency_unit=data.frequency_unit or source.frequency_unit,
            start_date=start_date,
            end_date=data.end_date,
            contract_value=data.contract_value if data.contract_value is not None else source.contract_value,
            currency=source.currency or "USD",
            special_instructions=(
                data.special_instructions
                if data.special_instructions is not None
                else source.special_instructions
            ),
        )
        frequency = Frequency.parse(renewal.frequency_kind, renewal.frequency_value, renewal.frequency_unit)
        validate_window(renewal.start_date, renewal.end_date)
        technician_id = renewal.assigned_technician_id
        if technician_id is not None and not self.directory.technician_in_branch(
            actor.scope, technician_id, source.branch_id
        ):
            # Default technician left the branch; the renewal starts unassigned
            technician_id = None

        try:
            contract = self.repo.create_contract(
                self.db,
                tenant_id=source.tenant_id,
                branch_id=source.branch_id,
                customer_id=source.customer_id,
                product_id=source.product_id,
                assigned_technician_id=technician_id,
                frequency_kind=frequency.kind.value,
                frequency_value=frequency.value,
                frequency_unit=frequency.unit.value if frequency.unit else None,
                start_date=renewal.start_date,
                end_date=renewal.end_date,
                contract_value=renewal.contract_value,
                currency=renewal.currency,
                special_instructions=renewal.special_instructions,
                status=ContractStatus.ACTIVE.value,
                renewed_from_id=source.id,
                created_by=actor.user_id,
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(contract)
        invalidate_analytics_cache(actor.tenant_id)
        logger.info(f"🔁 Contract {source.id} renewed as contract {contract.id} starting {contract.start_date}")
        return contract

    def delete_contract(self, contract_id: int, actor: Actor) -> Tuple[bool, MaintenanceContract]:
        """
        Physically delete a contract with no work history; a contract with started
        or completed visits (or renewals) is cancelled instead.
        Returns (deleted, contract).
        """
        authorize(actor, Operation.MANAGE_CONTRACT)

        def operation() -> Tuple[bool, MaintenanceContract]:
            try:
                contract = self.repo.get_contract_by_id(self.db, actor.scope, contract_id, for_update=True)
                has_history = self.repo.has_started_visits(self.db, contract.id) or self.repo.has_renewals(
                    self.db, contract.id
                )
                if has_history:
                    if contract.status not in TERMINAL_CONTRACT_STATUSES:
                        self._cancel_locked(contract, actor, "deleted with visit history")
                    self.db.commit()
                    self.db.refresh(contract)
                    invalidate_analytics_cache(actor.tenant_id)
                    logger.info(f"🗃️ Contract {contract.id} has history, cancelled instead of deleted")
                    return False, contract

                self.repo.delete_contract(self.db, contract)
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise

            invalidate_analytics_cache(actor.tenant_id)
            logger.info(f"🗑️ Contract {contract_id} deleted by user {actor.user_id}")
            return True, contract

        return run_with_retry(self.db, operation)
