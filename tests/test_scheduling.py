"""
Tests for visit materialization and the calendar view
"""
from datetime import date, datetime

import pytest

from conftest import BRANCH, OTHER_BRANCH_TECHNICIAN_ID, TECHNICIAN_ID
from maintenance_engine.domain.scheduling.schemas import ScheduleVisitRequest
from maintenance_engine.domain.scheduling.service import (
    RealVisitEntry,
    VirtualVisitEntry,
    parse_virtual_key,
)
from maintenance_engine.domain.visits.schemas import VisitCancel, VisitReschedule
from maintenance_engine.exceptions import AccessDenied, InvalidTransition, ValidationError
from maintenance_engine.models_visit import MaintenanceVisit, VisitStatus


def visit_dates(db, contract_id):
    rows = (
        db.query(MaintenanceVisit)
        .filter(MaintenanceVisit.contract_id == contract_id)
        .order_by(MaintenanceVisit.scheduled_date)
        .all()
    )
    return [v.scheduled_date for v in rows]


class TestMaterialization:
    """materialize_for_contract"""

    def test_creates_slots_through_horizon(self, db, scheduling, make_contract, owner):
        contract = make_contract()
        created = scheduling.materialize_for_contract(contract.id, owner, through=date(2026, 3, 1))

        assert [v.scheduled_date for v in created] == [date(2026, 1, 1), date(2026, 2, 1), date(2026, 3, 1)]
        for visit in created:
            assert visit.status == VisitStatus.SCHEDULED.value
            assert visit.occurrence_date == visit.scheduled_date
            assert visit.assigned_technician_id == TECHNICIAN_ID
            assert visit.branch_id == BRANCH
            assert visit.actual_start_time is None

    def test_idempotent(self, db, scheduling, make_contract, owner):
        contract = make_contract()
        scheduling.materialize_for_contract(contract.id, owner, through=date(2026, 3, 1))
        again = scheduling.materialize_for_contract(contract.id, owner, through=date(2026, 3, 1))

        assert again == []
        assert len(visit_dates(db, contract.id)) == 3

    def test_extending_horizon_only_adds_missing(self, db, scheduling, make_contract, owner):
        contract = make_contract()
        scheduling.materialize_for_contract(contract.id, owner, through=date(2026, 2, 1))
        created = scheduling.materialize_for_contract(contract.id, owner, through=date(2026, 12, 31))

        assert [v.scheduled_date for v in created] == [
            date(2026, 3, 1),
            date(2026, 4, 1),
            date(2026, 5, 1),
            date(2026, 6, 1),
        ]

    def test_default_horizon_is_end_of_next_month(self, scheduling, clock):
        clock.instant = datetime(2026, 1, 15, 9, 0)
        assert scheduling.default_horizon() == date(2026, 2, 28)

    def test_cancelled_slot_is_not_regenerated(self, db, scheduling, visits, make_contract, owner):
        contract = make_contract()
        created = scheduling.materialize_for_contract(contract.id, owner, through=date(2026, 3, 1))
        visits.cancel_visit(created[1].id, VisitCancel(reason="Customer away"), owner)

        assert scheduling.materialize_for_contract(contract.id, owner, through=date(2026, 3, 1)) == []

    def test_rescheduled_visit_keeps_its_slot(self, db, scheduling, visits, make_contract, owner):
        contract = make_contract()
        created = scheduling.materialize_for_contract(contract.id, owner, through=date(2026, 2, 1))
        visits.reschedule_visit(created[1].id, VisitReschedule(scheduled_date=date(2026, 2, 4)), owner)

        assert scheduling.materialize_for_contract(contract.id, owner, through=date(2026, 2, 28)) == []
        assert visit_dates(db, contract.id) == [date(2026, 1, 1), date(2026, 2, 4)]

    def test_paused_contract_does_not_materialize(self, scheduling, contracts, make_contract, owner):
        contract = make_contract()
        contracts.pause_contract(contract.id, owner)

        assert scheduling.materialize_for_contract(contract.id, owner, through=date(2026, 6, 30)) == []

    def test_resume_restarts_from_today(self, db, scheduling, contracts, make_contract, owner, clock):
        contract = make_contract()
        scheduling.materialize_for_contract(contract.id, owner, through=date(2026, 1, 31))
        contracts.pause_contract(contract.id, owner)

        clock.instant = datetime(2026, 3, 10, 9, 0)
        contracts.resume_contract(contract.id, owner)
        created = scheduling.materialize_for_contract(contract.id, owner, through=date(2026, 4, 30))

        assert [v.scheduled_date for v in created] == [date(2026, 4, 1)]

    def test_one_time_contract(self, scheduling, make_contract, owner):
        contract = make_contract(frequency_kind="one_time", frequency_value=None, frequency_unit=None,
                                 start_date=date(2026, 1, 20), end_date=None)
        created = scheduling.materialize_for_contract(contract.id, owner, through=date(2026, 12, 31))
        assert [v.scheduled_date for v in created] == [date(2026, 1, 20)]

    def test_technician_cannot_materialize(self, scheduling, make_contract, technician):
        contract = make_contract()
        with pytest.raises(AccessDenied):
            scheduling.materialize_for_contract(contract.id, technician, through=date(2026, 3, 1))

    def test_other_tenant_is_denied_not_hidden(self, scheduling, make_contract, foreign_owner):
        contract = make_contract()
        with pytest.raises(AccessDenied):
            scheduling.materialize_for_contract(contract.id, foreign_owner, through=date(2026, 3, 1))


class TestCalendar:
    """Real and virtual calendar entries"""

    def test_mixes_real_and_virtual_entries(self, scheduling, make_contract, owner):
        contract = make_contract()
        scheduling.materialize_for_contract(contract.id, owner, through=date(2026, 1, 31))

        entries = scheduling.get_calendar(date(2026, 1, 1), date(2026, 3, 31), owner)

        assert [type(e) for e in entries] == [RealVisitEntry, VirtualVisitEntry, VirtualVisitEntry]
        assert [e.entry_date for e in entries] == [date(2026, 1, 1), date(2026, 2, 1), date(2026, 3, 1)]
        assert entries[1].key == f"virtual:{contract.id}:2026-02-01"
        assert entries[0].key == f"visit:{entries[0].visit.id}"

    def test_no_virtual_entries_for_paused_contract(self, scheduling, contracts, make_contract, owner):
        contract = make_contract()
        contracts.pause_contract(contract.id, owner)
        assert scheduling.get_calendar(date(2026, 1, 1), date(2026, 3, 31), owner) == []

    def test_branch_scope_limits_entries(self, scheduling, make_contract, other_branch_manager):
        make_contract()
        assert scheduling.get_calendar(date(2026, 1, 1), date(2026, 3, 31), other_branch_manager) == []

    def test_rejects_inverted_range(self, scheduling, owner):
        with pytest.raises(ValidationError):
            scheduling.get_calendar(date(2026, 3, 1), date(2026, 1, 1), owner)

    def test_materialize_virtual_entry(self, db, scheduling, make_contract, owner):
        contract = make_contract()
        contract_id, occurrence = parse_virtual_key(f"virtual:{contract.id}:2026-02-01")

        visit = scheduling.materialize_occurrence(contract_id, occurrence, owner)
        same = scheduling.materialize_occurrence(contract_id, occurrence, owner)

        assert visit.scheduled_date == date(2026, 2, 1)
        assert same.id == visit.id
        assert visit_dates(db, contract.id) == [date(2026, 2, 1)]

    def test_materialize_rejects_non_slot_date(self, scheduling, make_contract, owner):
        contract = make_contract()
        with pytest.raises(ValidationError):
            scheduling.materialize_occurrence(contract.id, date(2026, 2, 2), owner)

    def test_malformed_virtual_key(self):
        with pytest.raises(ValidationError):
            parse_virtual_key("visit:12")


class TestManualScheduling:
    """schedule_visit"""

    def test_schedules_inside_window(self, scheduling, make_contract, manager):
        contract = make_contract()
        visit = scheduling.schedule_visit(
            ScheduleVisitRequest(
                contract_id=contract.id,
                scheduled_date=date(2026, 1, 10),
                scheduled_time="14:30",
                priority="urgent",
                work_description="Emergency leak check",
            ),
            manager,
        )
        assert visit.occurrence_date is None
        assert visit.scheduled_time == "14:30"
        assert visit.priority == "urgent"
        assert visit.assigned_technician_id == TECHNICIAN_ID

    def test_rejects_date_outside_window(self, scheduling, make_contract, manager):
        contract = make_contract()
        with pytest.raises(ValidationError) as exc:
            scheduling.schedule_visit(
                ScheduleVisitRequest(contract_id=contract.id, scheduled_date=date(2026, 7, 1)), manager
            )
        assert exc.value.field == "scheduled_date"

    def test_rejects_technician_from_other_branch(self, scheduling, make_contract, manager):
        contract = make_contract()
        with pytest.raises(ValidationError):
            scheduling.schedule_visit(
                ScheduleVisitRequest(
                    contract_id=contract.id,
                    scheduled_date=date(2026, 1, 10),
                    assigned_technician_id=OTHER_BRANCH_TECHNICIAN_ID,
                ),
                manager,
            )

    def test_rejects_bad_time(self, scheduling, make_contract, manager):
        contract = make_contract()
        with pytest.raises(ValidationError):
            scheduling.schedule_visit(
                ScheduleVisitRequest(contract_id=contract.id, scheduled_date=date(2026, 1, 10), scheduled_time="25:00"),
                manager,
            )

    def test_requires_active_contract(self, scheduling, contracts, make_contract, owner):
        contract = make_contract()
        contracts.pause_contract(contract.id, owner)
        with pytest.raises(InvalidTransition):
            scheduling.schedule_visit(
                ScheduleVisitRequest(contract_id=contract.id, scheduled_date=date(2026, 1, 10)), owner
            )
