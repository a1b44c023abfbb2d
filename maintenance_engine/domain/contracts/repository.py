"""Contract repository - Database operations for maintenance contracts"""

from datetime import date, timedelta
from typing import Optional

from sqlalchemy.orm import Session, selectinload

from ...models import ContractStatus, MaintenanceContract
from ...models_visit import MaintenanceVisit, VisitStatus
from ...scope import Scope
from ...shared.scoping import apply_scope, ensure_in_scope


class ContractRepository:
    """Repository for contract database operations; callers own the transaction"""

    @staticmethod
    def get_contracts(
        db: Session,
        scope: Scope,
        status: Optional[str] = None,
        customer_id: Optional[int] = None,
        branch_id: Optional[int] = None,
    ) -> list[MaintenanceContract]:
        """Get all contracts in scope with optional filters"""
        query = apply_scope(db.query(MaintenanceContract), MaintenanceContract, scope)

        if status:
            query = query.filter(MaintenanceContract.status == status)
        if customer_id:
            query = query.filter(MaintenanceContract.customer_id == customer_id)
        if branch_id:
            query = query.filter(MaintenanceContract.branch_id == branch_id)

        return query.order_by(MaintenanceContract.created_at.desc(), MaintenanceContract.id.desc()).all()

    @staticmethod
    def get_contracts_with_visits(db: Session, scope: Scope) -> list[MaintenanceContract]:
        """Every contract in scope with its visits eagerly loaded (analytics rollups)"""
        query = apply_scope(db.query(MaintenanceContract), MaintenanceContract, scope)
        return query.options(selectinload(MaintenanceContract.visits)).order_by(MaintenanceContract.id).all()

    @staticmethod
    def get_contract_by_id(
        db: Session, scope: Scope, contract_id: int, for_update: bool = False
    ) -> MaintenanceContract:
        """
        Get a contract by ID; raises NotFoundError / AccessDenied.

        for_update takes a row lock held until the transaction ends; it is the
        per-contract mutual exclusion used by materialization.
        """
        query = db.query(MaintenanceContract).filter(MaintenanceContract.id == contract_id)
        if for_update:
            query = query.with_for_update()
        return ensure_in_scope(query.first(), scope, "Contract", contract_id)

    @staticmethod
    def get_expiring_contracts(
        db: Session, scope: Scope, today: date, days: int
    ) -> list[MaintenanceContract]:
        """Active contracts whose end date falls within [today, today + days]"""
        query = apply_scope(db.query(MaintenanceContract), MaintenanceContract, scope)
        return (
            query.filter(
                MaintenanceContract.status == ContractStatus.ACTIVE.value,
                MaintenanceContract.end_date.isnot(None),
                MaintenanceContract.end_date >= today,
                MaintenanceContract.end_date <= today + timedelta(days=days),
            )
            .order_by(MaintenanceContract.end_date)
            .all()
        )

    @staticmethod
    def get_contracts_due_for_expiration(
        db: Session, scope: Scope, today: date
    ) -> list[MaintenanceContract]:
        """Active or paused contracts whose end date has passed"""
        query = apply_scope(db.query(MaintenanceContract), MaintenanceContract, scope)
        return (
            query.filter(
                MaintenanceContract.status.in_(
                    [ContractStatus.ACTIVE.value, ContractStatus.PAUSED.value]
                ),
                MaintenanceContract.end_date.isnot(None),
                MaintenanceContract.end_date < today,
            )
            .order_by(MaintenanceContract.id)
            .all()
        )

    @staticmethod
    def get_tenant_ids(db: Session) -> list[int]:
        """Tenants owning at least one contract (periodic sweeps iterate these)"""
        rows = db.query(MaintenanceContract.tenant_id).distinct().all()
        return sorted(row[0] for row in rows)

    @staticmethod
    def create_contract(db: Session, **contract_data) -> MaintenanceContract:
        contract = MaintenanceContract(**contract_data)
        db.add(contract)
        db.flush()
        return contract

    @staticmethod
    def update_contract(db: Session, contract: MaintenanceContract, **updates) -> MaintenanceContract:
        """Update a contract with provided fields (None means "clear" here, callers filter)"""
        for key, value in updates.items():
            if hasattr(contract, key):
                setattr(contract, key, value)
        db.flush()
        return contract

    @staticmethod
    def has_started_visits(db: Session, contract_id: int) -> bool:
        """Whether any visit of the contract was ever worked on (in progress or completed)"""
        return (
            db.query(MaintenanceVisit.id)
            .filter(
                MaintenanceVisit.contract_id == contract_id,
                MaintenanceVisit.status.in_(
                    [VisitStatus.IN_PROGRESS.value, VisitStatus.COMPLETED.value]
                ),
            )
            .first()
            is not None
        )

    @staticmethod
    def has_renewals(db: Session, contract_id: int) -> bool:
        return (
            db.query(MaintenanceContract.id)
            .filter(MaintenanceContract.renewed_from_id == contract_id)
            .first()
            is not None
        )

    @staticmethod
    def delete_contract(db: Session, contract: MaintenanceContract) -> None:
        db.delete(contract)
        db.flush()
