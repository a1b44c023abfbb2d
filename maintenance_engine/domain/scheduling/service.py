"""
Visit scheduling service
Materializes contract recurrences into visits and builds the calendar view
"""

import calendar as month_calendar
import logging
from dataclasses import dataclass
from datetime import date
from typing import List, Optional, Tuple, Union

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...cache import invalidate_analytics_cache
from ...clock import Clock, system_clock
from ...config import DEFAULT_HORIZON_MONTHS
from ...database import run_with_retry
from ...directories import Directory
from ...exceptions import ConcurrencyConflict, InvalidTransition, ValidationError
from ...models import ContractStatus, MaintenanceContract
from ...models_visit import MaintenanceVisit, VisitPriority, VisitStatus
from ...policy import Operation, authorize
from ...scope import Actor
from ...shared.validators import (
    validate_in_window,
    validate_priority,
    validate_time_of_day,
)
from ..contracts.repository import ContractRepository
from ..visits.repository import VisitRepository
from .recurrence import Frequency, add_months, occurrences
from .schemas import ScheduleVisitRequest

logger = logging.getLogger(__name__)

MAX_CALENDAR_DAYS = 366


@dataclass(frozen=True)
class RealVisitEntry:
    """A persisted visit: durable id, opens the visit detail view"""

    visit: MaintenanceVisit

    @property
    def key(self) -> str:
        return f"visit:{self.visit.id}"

    @property
    def entry_date(self) -> date:
        return self.visit.scheduled_date


@dataclass(frozen=True)
class VirtualVisitEntry:
    """A projected, not yet materialized occurrence of an active contract"""

    contract_id: int
    branch_id: int
    projected_date: date
    assigned_technician_id: Optional[int] = None

    @property
    def key(self) -> str:
        return f"virtual:{self.contract_id}:{self.projected_date.isoformat()}"

    @property
    def entry_date(self) -> date:
        return self.projected_date


CalendarEntry = Union[RealVisitEntry, VirtualVisitEntry]


def parse_virtual_key(key: str) -> Tuple[int, date]:
    """Split 'virtual:<contract_id>:<YYYY-MM-DD>' into its parts"""
    try:
        prefix, contract_id, projected = key.split(":")
        if prefix != "virtual":
            raise ValueError(prefix)
        return int(contract_id), date.fromisoformat(projected)
    except ValueError:
        raise ValidationError(f"'{key}' is not a virtual calendar key", field="key")


def end_of_month(value: date, months_ahead: int = 0) -> date:
    shifted = add_months(value.replace(day=1), months_ahead)
    return shifted.replace(day=month_calendar.monthrange(shifted.year, shifted.month)[1])


class VisitSchedulingService:
    """Service layer for visit materialization and the calendar view"""

    def __init__(self, db: Session, clock: Clock = system_clock):
        self.db = db
        self.clock = clock
        self.contract_repo = ContractRepository()
        self.visit_repo = VisitRepository()
        self.directory = Directory(db)

    def default_horizon(self) -> date:
        """Through the end of next month (configurable)"""
        return end_of_month(self.clock.today(), DEFAULT_HORIZON_MONTHS)

    # ------------------------------------------------------------------
    # Materialization
    # ------------------------------------------------------------------

    def materialize_for_contract(
        self, contract_id: int, actor: Actor, through: Optional[date] = None
    ) -> List[MaintenanceVisit]:
        """
        Create exactly the missing visits for a contract up to `through`.

        Idempotent: repeated calls with no contract change create nothing new.
        The contract row lock serializes concurrent calls for the same contract.
        """
        authorize(actor, Operation.SCHEDULE_VISIT)
        through = through or self.default_horizon()

        def operation() -> List[MaintenanceVisit]:
            try:
                contract = self.contract_repo.get_contract_by_id(
                    self.db, actor.scope, contract_id, for_update=True
                )
                if contract.status != ContractStatus.ACTIVE.value:
                    logger.info(
                        f"⏸️ Contract {contract_id} is {contract.status}, nothing to materialize"
                    )
                    self.db.rollback()
                    return []
                created = self._materialize_locked(contract, through)
                self.db.commit()
            except IntegrityError as e:
                self.db.rollback()
                logger.warning(f"⚠️ Concurrent materialization for contract {contract_id}: {e}")
                raise ConcurrencyConflict(
                    f"Visits for contract {contract_id} were being scheduled concurrently, please retry"
                ) from e
            except Exception:
                self.db.rollback()
                raise

            if created:
                invalidate_analytics_cache(actor.tenant_id)
            logger.info(
                f"✅ Materialized {len(created)} visit(s) for contract {contract_id} through {through}"
            )
            return created

        return run_with_retry(self.db, operation)

    def _materialize_locked(self, contract: MaintenanceContract, through: date) -> List[MaintenanceVisit]:
        """Insert the missing slots; caller holds the contract lock and owns the commit"""
        existing = self.visit_repo.get_existing_slot_dates(self.db, contract.id)
        created = []
        for slot in occurrences(
            Frequency.from_contract(contract),
            contract.start_date,
            contract.end_date,
            through,
            existing=existing,
            not_before=contract.materialize_from,
        ):
            created.append(self._new_visit(contract, slot, occurrence_date=slot))
        return created

    def _new_visit(
        self,
        contract: MaintenanceContract,
        scheduled_date: date,
        occurrence_date: Optional[date] = None,
        scheduled_time: Optional[str] = None,
        technician_id: Optional[int] = None,
        priority: Optional[str] = None,
        work_description: Optional[str] = None,
    ) -> MaintenanceVisit:
        return self.visit_repo.create_visit(
            self.db,
            tenant_id=contract.tenant_id,
            branch_id=contract.branch_id,
            contract_id=contract.id,
            scheduled_date=scheduled_date,
            scheduled_time=scheduled_time,
            occurrence_date=occurrence_date,
            assigned_technician_id=technician_id or contract.assigned_technician_id,
            priority=priority or VisitPriority.MEDIUM.value,
            work_description=work_description or contract.special_instructions,
            status=VisitStatus.SCHEDULED.value,
        )

    def materialize_occurrence(self, contract_id: int, occurrence_date: date, actor: Actor) -> MaintenanceVisit:
        """
        "Materialize and schedule" a virtual calendar entry.
        Returns the existing visit when the slot was already materialized.
        """
        authorize(actor, Operation.SCHEDULE_VISIT)

        def operation() -> MaintenanceVisit:
            try:
                contract = self.contract_repo.get_contract_by_id(
                    self.db, actor.scope, contract_id, for_update=True
                )
                if contract.status != ContractStatus.ACTIVE.value:
                    raise InvalidTransition(
                        f"Contract {contract_id} is {contract.status}; only active contracts schedule visits",
                        current_status=contract.status,
                    )
                for visit in self.visit_repo.get_contract_visits(self.db, contract.id):
                    if (visit.occurrence_date or visit.scheduled_date) == occurrence_date:
                        self.db.rollback()
                        return visit

                slots = list(
                    occurrences(
                        Frequency.from_contract(contract),
                        contract.start_date,
                        contract.end_date,
                        through=occurrence_date,
                        not_before=occurrence_date,
                    )
                )
                if slots != [occurrence_date] or (
                    contract.materialize_from and occurrence_date < contract.materialize_from
                ):
                    raise ValidationError(
                        f"{occurrence_date.isoformat()} is not a scheduled occurrence of contract {contract_id}",
                        field="occurrence_date",
                    )
                visit = self._new_visit(contract, occurrence_date, occurrence_date=occurrence_date)
                self.db.commit()
            except IntegrityError as e:
                self.db.rollback()
                raise ConcurrencyConflict(
                    f"Occurrence {occurrence_date} of contract {contract_id} was scheduled concurrently, please retry"
                ) from e
            except Exception:
                self.db.rollback()
                raise

            self.db.refresh(visit)
            invalidate_analytics_cache(visit.tenant_id)
            logger.info(f"✅ Materialized occurrence {occurrence_date} of contract {contract_id} as visit {visit.id}")
            return visit

        return run_with_retry(self.db, operation)

    def schedule_visit(self, data: ScheduleVisitRequest, actor: Actor) -> MaintenanceVisit:
        """Manually schedule a one-off visit inside the contract window"""
        authorize(actor, Operation.SCHEDULE_VISIT)
        scheduled_time = validate_time_of_day(data.scheduled_time)
        priority = validate_priority(data.priority)

        def operation() -> MaintenanceVisit:
            try:
                contract = self.contract_repo.get_contract_by_id(
                    self.db, actor.scope, data.contract_id, for_update=True
                )
                if contract.status != ContractStatus.ACTIVE.value:
                    raise InvalidTransition(
                        f"Contract {contract.id} is {contract.status}; only active contracts schedule visits",
                        current_status=contract.status,
                    )
                validate_in_window(data.scheduled_date, contract.start_date, contract.end_date)
                if data.assigned_technician_id and not self.directory.technician_in_branch(
                    actor.scope, data.assigned_technician_id, contract.branch_id
                ):
                    raise ValidationError(
                        f"Technician {data.assigned_technician_id} does not work at branch {contract.branch_id}",
                        field="assigned_technician_id",
                    )
                visit = self._new_visit(
                    contract,
                    data.scheduled_date,
                    scheduled_time=scheduled_time,
                    technician_id=data.assigned_technician_id,
                    priority=priority,
                    work_description=data.work_description,
                )
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise

            self.db.refresh(visit)
            invalidate_analytics_cache(visit.tenant_id)
            logger.info(
                f"📅 Visit {visit.id} manually scheduled for contract {contract.id} on {visit.scheduled_date}"
            )
            return visit

        return run_with_retry(self.db, operation)

    # ------------------------------------------------------------------
    # Calendar
    # ------------------------------------------------------------------

    def get_calendar(
        self, start: date, end: date, actor: Actor, branch_id: Optional[int] = None
    ) -> List[CalendarEntry]:
        """
        Real visits in [start, end] plus virtual projections for active contracts
        whose recurrence falls in the range but has not been materialized yet.
        """
        authorize(actor, Operation.VIEW)
        if end < start:
            raise ValidationError("end must not be before start", field="end")
        if (end - start).days > MAX_CALENDAR_DAYS:
            raise ValidationError(
                f"Calendar range cannot exceed {MAX_CALENDAR_DAYS} days", field="end"
            )

        scope = actor.scope
        entries: List[CalendarEntry] = []

        for visit in self.visit_repo.get_visits(self.db, scope, date_from=start, date_to=end):
            if branch_id and visit.branch_id != branch_id:
                continue
            entries.append(RealVisitEntry(visit=visit))

        contracts = self.contract_repo.get_contracts(
            self.db, scope, status=ContractStatus.ACTIVE.value, branch_id=branch_id
        )
        taken = self.visit_repo.get_slot_dates_for_contracts(self.db, [c.id for c in contracts])
        for contract in contracts:
            if contract.start_date > end:
                continue
            floor = max(start, contract.materialize_from) if contract.materialize_from else start
            for slot in occurrences(
                Frequency.from_contract(contract),
                contract.start_date,
                contract.end_date,
                end,
                existing=taken[contract.id],
                not_before=floor,
            ):
                entries.append(
                    VirtualVisitEntry(
                        contract_id=contract.id,
                        branch_id=contract.branch_id,
                        projected_date=slot,
                        assigned_technician_id=contract.assigned_technician_id,
                    )
                )

        entries.sort(key=lambda e: (e.entry_date, isinstance(e, VirtualVisitEntry), e.key))
        return entries
