"""
Tests for the contract lifecycle and contract health
"""
from datetime import date, datetime, timedelta
from types import SimpleNamespace

import pytest

from conftest import (
    FOREIGN_CUSTOMER_ID,
    OTHER_BRANCH_TECHNICIAN_ID,
    TECHNICIAN_ID,
    TENANT,
    UNASSIGNED_TECHNICIAN_ID,
)
from maintenance_engine.domain.contracts.health import HealthLabel, compute_health
from maintenance_engine.domain.contracts.schemas import (
    ContractCancel,
    ContractCreate,
    ContractRenew,
    ContractUpdate,
)
from maintenance_engine.domain.contracts.service import (
    REASON_CONTRACT_CANCELLED,
    REASON_CONTRACT_EXPIRED,
    REASON_OUTSIDE_WINDOW,
)
from maintenance_engine.domain.visits.repository import VisitRepository
from maintenance_engine.domain.visits.schemas import VisitComplete
from maintenance_engine.exceptions import (
    AccessDenied,
    InvalidTransition,
    NotFoundError,
    ValidationError,
)
from maintenance_engine.models import ContractStatus
from maintenance_engine.models_visit import MaintenanceVisit, VisitStatus
from maintenance_engine.scope import system_actor


def visits_by_date(db, contract_id):
    db.expire_all()
    rows = db.query(MaintenanceVisit).filter(MaintenanceVisit.contract_id == contract_id).all()
    return {v.scheduled_date: v for v in rows}


class TestCreateContract:
    """Validation on create"""

    def test_creates_active_contract(self, make_contract, owner):
        contract = make_contract()
        assert contract.status == ContractStatus.ACTIVE.value
        assert contract.tenant_id == TENANT
        assert contract.created_by == owner.user_id
        assert contract.public_id

    def test_end_before_start(self, make_contract):
        with pytest.raises(ValidationError):
            make_contract(start_date=date(2026, 6, 1), end_date=date(2026, 5, 1))

    def test_zero_interval(self, make_contract):
        with pytest.raises(ValidationError) as exc:
            make_contract(frequency_value=0)
        assert exc.value.field == "frequency_value"

    def test_customer_of_other_tenant(self, make_contract):
        with pytest.raises(ValidationError) as exc:
            make_contract(customer_id=FOREIGN_CUSTOMER_ID)
        assert exc.value.field == "customer_id"

    def test_technician_must_work_at_branch(self, make_contract):
        with pytest.raises(ValidationError):
            make_contract(assigned_technician_id=OTHER_BRANCH_TECHNICIAN_ID)

    def test_manager_outside_branch(self, seed, contracts, other_branch_manager):
        data = ContractCreate(
            branch_id=10,
            customer_id=1,
            product_id=1,
            start_date=date(2026, 1, 1),
        )
        with pytest.raises(AccessDenied):
            contracts.create_contract(data, other_branch_manager)

    def test_technician_cannot_create(self, seed, contracts, technician):
        data = ContractCreate(branch_id=10, customer_id=1, product_id=1, start_date=date(2026, 1, 1))
        with pytest.raises(AccessDenied):
            contracts.create_contract(data, technician)


class TestReadScope:
    """Tenant and branch scoping on reads"""

    def test_foreign_tenant_is_denied(self, contracts, make_contract, foreign_owner):
        contract = make_contract()
        with pytest.raises(AccessDenied):
            contracts.get_contract(contract.id, foreign_owner)

    def test_missing_contract(self, seed, contracts, owner):
        with pytest.raises(NotFoundError):
            contracts.get_contract(9999, owner)

    def test_list_is_branch_scoped(self, contracts, make_contract, manager, other_branch_manager):
        contract = make_contract()
        assert [c.id for c in contracts.get_contracts(manager)] == [contract.id]
        assert contracts.get_contracts(other_branch_manager) == []

    def test_expiring_contracts(self, contracts, make_contract, owner):
        soon = make_contract(end_date=date(2026, 1, 20))
        make_contract()
        assert [c.id for c in contracts.get_expiring_contracts(owner, days=30)] == [soon.id]


class TestUpdateContract:
    """Edits and the visits they affect"""

    def test_shrinking_window_cancels_scheduled_visits_only(
        self, db, contracts, scheduling, visits, make_contract, owner, technician
    ):
        contract = make_contract()
        created = scheduling.materialize_for_contract(contract.id, owner, through=date(2026, 6, 30))
        visits.start_visit(created[0].id, technician)
        visits.complete_visit(created[0].id, VisitComplete(completion_notes="Done"), technician)

        contracts.update_contract(
            contract.id, ContractUpdate(start_date=date(2026, 2, 1), end_date=date(2026, 3, 31)), owner
        )

        by_date = visits_by_date(db, contract.id)
        assert by_date[date(2026, 1, 1)].status == VisitStatus.COMPLETED.value
        assert by_date[date(2026, 2, 1)].status == VisitStatus.SCHEDULED.value
        assert by_date[date(2026, 3, 1)].status == VisitStatus.SCHEDULED.value
        for month in (4, 5, 6):
            visit = by_date[date(2026, month, 1)]
            assert visit.status == VisitStatus.CANCELLED.value
            assert visit.cancellation_reason == REASON_OUTSIDE_WINDOW

    def test_frequency_change_keeps_existing_visits(self, db, contracts, scheduling, make_contract, owner):
        contract = make_contract()
        scheduling.materialize_for_contract(contract.id, owner, through=date(2026, 3, 1))

        updated = contracts.update_contract(contract.id, ContractUpdate(frequency_value=2), owner)

        assert updated.frequency_value == 2
        statuses = {v.status for v in visits_by_date(db, contract.id).values()}
        assert statuses == {VisitStatus.SCHEDULED.value}

    def test_technician_change_moves_scheduled_visits(self, db, contracts, scheduling, make_contract, owner):
        contract = make_contract()
        scheduling.materialize_for_contract(contract.id, owner, through=date(2026, 3, 1))

        contracts.update_contract(contract.id, ContractUpdate(assigned_technician_id=UNASSIGNED_TECHNICIAN_ID), owner)

        technicians = {v.assigned_technician_id for v in visits_by_date(db, contract.id).values()}
        assert technicians == {UNASSIGNED_TECHNICIAN_ID}

    def test_cleared_end_date(self, contracts, make_contract, owner):
        contract = make_contract()
        updated = contracts.update_contract(contract.id, ContractUpdate(end_date=None), owner)
        assert updated.end_date is None

    def test_cancelled_contract_cannot_be_edited(self, contracts, make_contract, owner):
        contract = make_contract()
        contracts.cancel_contract(contract.id, ContractCancel(reason="Customer left"), owner)
        with pytest.raises(InvalidTransition):
            contracts.update_contract(contract.id, ContractUpdate(contract_value=10.0), owner)


class TestLifecycle:
    """Pause, resume, cancel, expire, renew, delete"""

    def test_pause_and_resume(self, contracts, make_contract, owner):
        contract = make_contract()
        paused = contracts.pause_contract(contract.id, owner)
        assert paused.status == ContractStatus.PAUSED.value
        assert paused.paused_at is not None

        with pytest.raises(InvalidTransition):
            contracts.pause_contract(contract.id, owner)

        resumed = contracts.resume_contract(contract.id, owner)
        assert resumed.status == ContractStatus.ACTIVE.value
        assert resumed.materialize_from == date(2026, 1, 1)

    def test_cancel_leaves_started_visit_alone(
        self, db, contracts, scheduling, visits, make_contract, owner, technician
    ):
        contract = make_contract()
        created = scheduling.materialize_for_contract(contract.id, owner, through=date(2026, 3, 1))
        visits.start_visit(created[0].id, technician)

        cancelled = contracts.cancel_contract(contract.id, ContractCancel(reason="Customer left"), owner)

        assert cancelled.status == ContractStatus.CANCELLED.value
        assert cancelled.cancellation_reason == "Customer left"
        by_date = visits_by_date(db, contract.id)
        assert by_date[date(2026, 1, 1)].status == VisitStatus.IN_PROGRESS.value
        for month in (2, 3):
            assert by_date[date(2026, month, 1)].status == VisitStatus.CANCELLED.value
            assert by_date[date(2026, month, 1)].cancellation_reason == REASON_CONTRACT_CANCELLED

        with pytest.raises(InvalidTransition):
            contracts.cancel_contract(contract.id, ContractCancel(), owner)

    def test_expire_before_end_date(self, contracts, make_contract, owner):
        contract = make_contract()
        with pytest.raises(InvalidTransition):
            contracts.expire_contract(contract.id, owner)

    def test_expiration_sweep_is_idempotent(self, contracts, make_contract, owner, clock):
        ended = make_contract(end_date=date(2026, 1, 31))
        ongoing = make_contract()
        paused = make_contract(end_date=date(2026, 1, 15))
        contracts.pause_contract(paused.id, owner)

        clock.instant = datetime(2026, 2, 2, 0, 5)
        expired, _, _ = contracts.expire_due_contracts(system_actor(TENANT))
        assert sorted(expired) == sorted([ended.id, paused.id])

        assert contracts.expire_due_contracts(system_actor(TENANT)) == ([], 0, 0)
        assert contracts.get_contract(ended.id, owner).status == ContractStatus.COMPLETED.value
        assert contracts.get_contract(paused.id, owner).paused_at is None
        assert contracts.get_contract(ongoing.id, owner).status == ContractStatus.ACTIVE.value

        # Single-contract expire on a completed contract is a no-op
        assert contracts.expire_contract(ended.id, owner).status == ContractStatus.COMPLETED.value

    def test_expiry_closes_out_leftover_visits(
        self, db, contracts, scheduling, visits, make_contract, owner, technician, clock
    ):
        contract = make_contract(end_date=date(2026, 3, 1))
        created = scheduling.materialize_for_contract(contract.id, owner, through=date(2026, 3, 1))
        visits.start_visit(created[0].id, technician)
        # Left behind by an older window; still scheduled after the end date
        VisitRepository.create_visit(
            db,
            tenant_id=TENANT,
            branch_id=contract.branch_id,
            contract_id=contract.id,
            scheduled_date=date(2026, 3, 10),
            status=VisitStatus.SCHEDULED.value,
        )
        db.commit()

        clock.instant = datetime(2026, 3, 2, 8, 0)
        expired, cancelled, missed = contracts.expire_due_contracts(system_actor(TENANT))
        assert (expired, cancelled, missed) == ([contract.id], 1, 2)

        by_date = visits_by_date(db, contract.id)
        assert by_date[date(2026, 1, 1)].status == VisitStatus.IN_PROGRESS.value
        for last_due in (date(2026, 2, 1), date(2026, 3, 1)):
            assert by_date[last_due].status == VisitStatus.MISSED.value
            assert by_date[last_due].missed_at == clock.now()
        assert by_date[date(2026, 3, 10)].status == VisitStatus.CANCELLED.value
        assert by_date[date(2026, 3, 10)].cancellation_reason == REASON_CONTRACT_EXPIRED

        # The last-day visit can no longer be started on the completed contract
        with pytest.raises(InvalidTransition):
            visits.start_visit(created[2].id, technician)

    def test_sweep_requires_authority(self, contracts, make_contract, manager):
        make_contract()
        with pytest.raises(AccessDenied):
            contracts.expire_due_contracts(manager)

    def test_renew_keeps_history(self, contracts, make_contract, owner):
        source = make_contract()
        renewal = contracts.renew_contract(
            source.id, ContractRenew(end_date=date(2026, 12, 31), contract_value=1500.0), owner
        )

        assert renewal.id != source.id
        assert renewal.renewed_from_id == source.id
        assert renewal.start_date == date(2026, 7, 1)
        assert renewal.contract_value == 1500.0
        assert renewal.assigned_technician_id == TECHNICIAN_ID
        assert renewal.frequency_unit == "month"

        original = contracts.get_contract(source.id, owner)
        assert original.status == ContractStatus.ACTIVE.value
        assert original.end_date == date(2026, 6, 30)

    def test_renew_open_ended_needs_start(self, contracts, make_contract, owner):
        source = make_contract(end_date=None)
        with pytest.raises(ValidationError):
            contracts.renew_contract(source.id, ContractRenew(), owner)

    def test_delete_without_history(self, contracts, scheduling, make_contract, owner):
        contract = make_contract()
        scheduling.materialize_for_contract(contract.id, owner, through=date(2026, 3, 1))

        deleted, _ = contracts.delete_contract(contract.id, owner)

        assert deleted is True
        with pytest.raises(NotFoundError):
            contracts.get_contract(contract.id, owner)

    def test_delete_with_history_cancels(self, contracts, scheduling, visits, make_contract, owner, technician):
        contract = make_contract()
        created = scheduling.materialize_for_contract(contract.id, owner, through=date(2026, 3, 1))
        visits.start_visit(created[0].id, technician)

        deleted, kept = contracts.delete_contract(contract.id, owner)

        assert deleted is False
        assert kept.status == ContractStatus.CANCELLED.value

    def test_delete_renewed_contract_cancels(self, contracts, make_contract, owner):
        source = make_contract()
        contracts.renew_contract(source.id, ContractRenew(), owner)
        deleted, kept = contracts.delete_contract(source.id, owner)
        assert deleted is False
        assert kept.status == ContractStatus.CANCELLED.value


class TestContractHealth:
    """Derived health labels"""

    @staticmethod
    def _contract(end_date):
        return SimpleNamespace(id=1, start_date=date(2026, 1, 1), end_date=end_date)

    @staticmethod
    def _visits(completed, scheduled):
        rows = [SimpleNamespace(status="completed", scheduled_date=date(2026, 1, 1)) for _ in range(completed)]
        rows += [SimpleNamespace(status="scheduled", scheduled_date=date(2026, 1, 1)) for _ in range(scheduled)]
        return rows

    def test_excellent(self):
        today = date(2026, 5, 1)
        health = compute_health(self._contract(today + timedelta(days=60)), self._visits(9, 1), today)
        assert health.completion_rate == pytest.approx(0.9)
        assert health.health == HealthLabel.EXCELLENT

    def test_expiring_soon_is_warning(self):
        today = date(2026, 5, 1)
        health = compute_health(self._contract(today + timedelta(days=10)), self._visits(9, 1), today)
        assert health.is_expiring_soon is True
        assert health.health == HealthLabel.WARNING

    def test_expired_is_critical(self):
        today = date(2026, 5, 1)
        health = compute_health(self._contract(today - timedelta(days=1)), self._visits(10, 0), today)
        assert health.is_expired is True
        assert health.health == HealthLabel.CRITICAL

    def test_no_visits_due(self):
        health = compute_health(self._contract(None), [], date(2026, 5, 1))
        assert health.completion_rate == 0.0
        assert health.days_until_expiry is None
        assert health.health == HealthLabel.CRITICAL

    def test_cancelled_visits_are_not_due(self):
        visits = self._visits(1, 0) + [SimpleNamespace(status="cancelled", scheduled_date=date(2026, 1, 1))]
        health = compute_health(self._contract(None), visits, date(2026, 5, 1))
        assert health.total_visits == 1
        assert health.completion_rate == 1.0

    def test_health_through_service(self, contracts, scheduling, visits, make_contract, owner, technician, clock):
        contract = make_contract()
        created = scheduling.materialize_for_contract(contract.id, owner, through=date(2026, 3, 1))
        visits.start_visit(created[0].id, technician)
        visits.complete_visit(created[0].id, VisitComplete(completion_notes="Done"), technician)

        clock.instant = datetime(2026, 3, 1, 12, 0)
        health, next_visit = contracts.get_health(contract.id, owner)

        assert health.completed_visits == 1
        assert health.total_visits == 3
        assert health.completion_rate == pytest.approx(1 / 3)
        assert health.health == HealthLabel.CRITICAL
        assert next_visit == date(2026, 3, 1)
