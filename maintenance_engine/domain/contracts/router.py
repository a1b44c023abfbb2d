"""Contract router - FastAPI endpoints for maintenance contracts"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import get_current_actor
from ...clock import Clock, get_clock
from ...config import EXPIRING_SOON_DAYS
from ...database import get_db
from ...scope import Actor
from .schemas import (
    ContractCancel,
    ContractCreate,
    ContractDeleteResponse,
    ContractHealthResponse,
    ContractRenew,
    ContractResponse,
    ContractUpdate,
)
from .service import ContractService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/maintenance/contracts", tags=["Maintenance Contracts"])


def get_contract_service(
    db: Session = Depends(get_db), clock: Clock = Depends(get_clock)
) -> ContractService:
    """Dependency injection for ContractService"""
    return ContractService(db, clock)


# ============================================================================
# CORE CRUD OPERATIONS
# ============================================================================


@router.get("", response_model=list[ContractResponse])
def get_contracts(
    status: Optional[str] = Query(None),
    customer_id: Optional[int] = Query(None),
    branch_id: Optional[int] = Query(None),
    actor: Actor = Depends(get_current_actor),
    service: ContractService = Depends(get_contract_service),
):
    """List contracts visible to the caller"""
    return service.get_contracts(actor, status=status, customer_id=customer_id, branch_id=branch_id)


@router.get("/expiring", response_model=list[ContractResponse])
def get_expiring_contracts(
    days: int = Query(EXPIRING_SOON_DAYS, ge=0),
    actor: Actor = Depends(get_current_actor),
    service: ContractService = Depends(get_contract_service),
):
    """Active contracts ending within the next N days"""
    return service.get_expiring_contracts(actor, days)


@router.get("/{contract_id}", response_model=ContractResponse)
def get_contract(
    contract_id: int,
    actor: Actor = Depends(get_current_actor),
    service: ContractService = Depends(get_contract_service),
):
    return service.get_contract(contract_id, actor)


@router.get("/{contract_id}/health", response_model=ContractHealthResponse)
def get_contract_health(
    contract_id: int,
    actor: Actor = Depends(get_current_actor),
    service: ContractService = Depends(get_contract_service),
):
    """Derived health: completion rate, expiry proximity and label"""
    health, next_visit = service.get_health(contract_id, actor)
    return ContractHealthResponse(**health.to_dict(), next_visit_date=next_visit)


@router.post("", response_model=ContractResponse, status_code=201)
def create_contract(
    data: ContractCreate,
    actor: Actor = Depends(get_current_actor),
    service: ContractService = Depends(get_contract_service),
):
    return service.create_contract(data, actor)


@router.patch("/{contract_id}", response_model=ContractResponse)
def update_contract(
    contract_id: int,
    data: ContractUpdate,
    actor: Actor = Depends(get_current_actor),
    service: ContractService = Depends(get_contract_service),
):
    return service.update_contract(contract_id, data, actor)


@router.delete("/{contract_id}", response_model=ContractDeleteResponse)
def delete_contract(
    contract_id: int,
    actor: Actor = Depends(get_current_actor),
    service: ContractService = Depends(get_contract_service),
):
    """Delete a contract without history, otherwise cancel it"""
    deleted, contract = service.delete_contract(contract_id, actor)
    return ContractDeleteResponse(
        contract_id=contract_id, deleted=deleted, status=None if deleted else contract.status
    )


# ============================================================================
# LIFECYCLE ACTIONS
# ============================================================================


@router.post("/{contract_id}/pause", response_model=ContractResponse)
def pause_contract(
    contract_id: int,
    actor: Actor = Depends(get_current_actor),
    service: ContractService = Depends(get_contract_service),
):
    return service.pause_contract(contract_id, actor)


@router.post("/{contract_id}/resume", response_model=ContractResponse)
def resume_contract(
    contract_id: int,
    actor: Actor = Depends(get_current_actor),
    service: ContractService = Depends(get_contract_service),
):
    return service.resume_contract(contract_id, actor)


@router.post("/{contract_id}/cancel", response_model=ContractResponse)
def cancel_contract(
    contract_id: int,
    data: ContractCancel,
    actor: Actor = Depends(get_current_actor),
    service: ContractService = Depends(get_contract_service),
):
    return service.cancel_contract(contract_id, data, actor)


@router.post("/{contract_id}/expire", response_model=ContractResponse)
def expire_contract(
    contract_id: int,
    actor: Actor = Depends(get_current_actor),
    service: ContractService = Depends(get_contract_service),
):
    return service.expire_contract(contract_id, actor)


@router.post("/{contract_id}/renew", response_model=ContractResponse, status_code=201)
def renew_contract(
    contract_id: int,
    data: ContractRenew,
    actor: Actor = Depends(get_current_actor),
    service: ContractService = Depends(get_contract_service),
):
    """Create a renewal carrying the contract forward; the original is kept as history"""
    return service.renew_contract(contract_id, data, actor)
