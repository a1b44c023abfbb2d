"""Visit repository - Database operations for maintenance visits"""

from datetime import date
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session, selectinload

from ...models_visit import MaintenanceVisit, VisitCorrection, VisitPart, VisitStatus
from ...scope import Scope
from ...shared.scoping import apply_scope, ensure_in_scope


class VisitRepository:
    """Repository for visit database operations; callers own the transaction"""

    @staticmethod
    def get_visit_by_id(
        db: Session, scope: Scope, visit_id: int, for_update: bool = False
    ) -> MaintenanceVisit:
        """Get a visit by ID; raises NotFoundError / AccessDenied"""
        query = db.query(MaintenanceVisit).filter(MaintenanceVisit.id == visit_id)
        if for_update:
            query = query.with_for_update()
        return ensure_in_scope(query.first(), scope, "Visit", visit_id)

    @staticmethod
    def get_visits(
        db: Session,
        scope: Scope,
        status: Optional[str] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        technician_id: Optional[int] = None,
        contract_id: Optional[int] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[MaintenanceVisit]:
        """Get visits in scope with optional filters, ordered by date"""
        query = apply_scope(db.query(MaintenanceVisit), MaintenanceVisit, scope).options(
            selectinload(MaintenanceVisit.parts)
        )

        if status:
            query = query.filter(MaintenanceVisit.status == status)
        if date_from:
            query = query.filter(MaintenanceVisit.scheduled_date >= date_from)
        if date_to:
            query = query.filter(MaintenanceVisit.scheduled_date <= date_to)
        if technician_id:
            query = query.filter(MaintenanceVisit.assigned_technician_id == technician_id)
        if contract_id:
            query = query.filter(MaintenanceVisit.contract_id == contract_id)

        query = query.order_by(
            MaintenanceVisit.scheduled_date, MaintenanceVisit.scheduled_time, MaintenanceVisit.id
        ).offset(offset)
        if limit:
            query = query.limit(limit)
        return query.all()

    @staticmethod
    def get_contract_visits(db: Session, contract_id: int) -> list[MaintenanceVisit]:
        return (
            db.query(MaintenanceVisit)
            .filter(MaintenanceVisit.contract_id == contract_id)
            .order_by(MaintenanceVisit.scheduled_date, MaintenanceVisit.id)
            .all()
        )

    @staticmethod
    def get_existing_slot_dates(db: Session, contract_id: int) -> set[date]:
        """
        Dates already taken for a contract, whatever the visit status.

        Materialized visits occupy their recurrence slot even after a reschedule;
        manual visits occupy the date they were scheduled on.
        """
        rows = (
            db.query(MaintenanceVisit.occurrence_date, MaintenanceVisit.scheduled_date)
            .filter(MaintenanceVisit.contract_id == contract_id)
            .all()
        )
        return {occurrence or scheduled for occurrence, scheduled in rows}

    @staticmethod
    def get_slot_dates_for_contracts(db: Session, contract_ids: list[int]) -> dict[int, set[date]]:
        """Batch version of get_existing_slot_dates for the calendar view"""
        taken: dict[int, set[date]] = {contract_id: set() for contract_id in contract_ids}
        if not contract_ids:
            return taken
        rows = (
            db.query(
                MaintenanceVisit.contract_id,
                MaintenanceVisit.occurrence_date,
                MaintenanceVisit.scheduled_date,
            )
            .filter(MaintenanceVisit.contract_id.in_(contract_ids))
            .all()
        )
        for contract_id, occurrence, scheduled in rows:
            taken[contract_id].add(occurrence or scheduled)
        return taken

    @staticmethod
    def get_open_visits_outside_window(
        db: Session, contract_id: int, start: date, end: Optional[date]
    ) -> list[MaintenanceVisit]:
        """Scheduled (not yet started) visits falling before start or after end"""
        outside = MaintenanceVisit.scheduled_date < start
        if end is not None:
            outside = or_(outside, MaintenanceVisit.scheduled_date > end)
        return (
            db.query(MaintenanceVisit)
            .filter(
                MaintenanceVisit.contract_id == contract_id,
                MaintenanceVisit.status == VisitStatus.SCHEDULED.value,
                outside,
            )
            .all()
        )

    @staticmethod
    def get_scheduled_visits(db: Session, contract_id: int) -> list[MaintenanceVisit]:
        """Not-yet-started visits of a contract"""
        return (
            db.query(MaintenanceVisit)
            .filter(
                MaintenanceVisit.contract_id == contract_id,
                MaintenanceVisit.status == VisitStatus.SCHEDULED.value,
            )
            .all()
        )

    @staticmethod
    def get_overdue_scheduled_visits(db: Session, scope: Scope, before: date) -> list[MaintenanceVisit]:
        """Scheduled visits whose date is before `before` (candidates for the missed sweep)"""
        query = apply_scope(db.query(MaintenanceVisit), MaintenanceVisit, scope)
        return (
            query.filter(
                MaintenanceVisit.status == VisitStatus.SCHEDULED.value,
                MaintenanceVisit.scheduled_date < before,
            )
            .order_by(MaintenanceVisit.scheduled_date)
            .all()
        )

    @staticmethod
    def create_visit(db: Session, **visit_data) -> MaintenanceVisit:
        visit = MaintenanceVisit(**visit_data)
        db.add(visit)
        db.flush()
        return visit

    @staticmethod
    def add_part(db: Session, visit: MaintenanceVisit, part_id: int, quantity: int, unit_cost: float) -> VisitPart:
        part = VisitPart(visit_id=visit.id, part_id=part_id, quantity=quantity, unit_cost=unit_cost)
        visit.parts.append(part)
        db.flush()
        return part

    @staticmethod
    def add_correction(db: Session, **correction_data) -> VisitCorrection:
        correction = VisitCorrection(**correction_data)
        db.add(correction)
        db.flush()
        return correction
