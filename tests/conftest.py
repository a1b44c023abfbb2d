"""
Pytest configuration and shared fixtures
"""
import os
from datetime import date, datetime

# Test settings must be in place before the package reads its configuration
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["CACHE_ENABLED"] = "false"
os.environ["DB_LOG_SLOW_QUERIES"] = "false"
os.environ["LOCK_RETRY_BASE_DELAY"] = "0"

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from maintenance_engine import models, models_stock, models_visit  # noqa: F401
from maintenance_engine.clock import FrozenClock
from maintenance_engine.database import Base
from maintenance_engine.domain.contracts.schemas import ContractCreate
from maintenance_engine.domain.contracts.service import ContractService
from maintenance_engine.domain.scheduling.service import VisitSchedulingService
from maintenance_engine.domain.visits.service import VisitExecutionService
from maintenance_engine.models import Customer, Product, Technician
from maintenance_engine.models_stock import BranchStock
from maintenance_engine.scope import Actor, Role

TENANT = 1
OTHER_TENANT = 2
BRANCH = 10
OTHER_BRANCH = 20

CUSTOMER_ID = 1
SERVICE_PRODUCT_ID = 1
PART_ID = 2
EXPENSIVE_PART_ID = 3
TECHNICIAN_ID = 100
OTHER_BRANCH_TECHNICIAN_ID = 101
UNASSIGNED_TECHNICIAN_ID = 102

FOREIGN_CUSTOMER_ID = 50
FOREIGN_PRODUCT_ID = 50


@pytest.fixture
def engine():
    """Fresh in-memory database per test"""
    engine = create_engine(
        "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock():
    return FrozenClock(datetime(2026, 1, 1, 8, 0))


@pytest.fixture
def seed(db):
    """Two tenants, two branches, directory rows and part stock"""
    db.add_all(
        [
            Customer(id=CUSTOMER_ID, tenant_id=TENANT, name="Acme Facilities"),
            Customer(id=FOREIGN_CUSTOMER_ID, tenant_id=OTHER_TENANT, name="Other Tenant Customer"),
            Product(id=SERVICE_PRODUCT_ID, tenant_id=TENANT, name="Chiller servicing"),
            Product(id=PART_ID, tenant_id=TENANT, name="Air filter", cost_price=25.0, is_spare_part=True),
            Product(id=EXPENSIVE_PART_ID, tenant_id=TENANT, name="Compressor", cost_price=400.0, is_spare_part=True),
            Product(id=FOREIGN_PRODUCT_ID, tenant_id=OTHER_TENANT, name="Other Tenant Product"),
            Technician(id=TECHNICIAN_ID, tenant_id=TENANT, branch_id=BRANCH, name="Dana"),
            Technician(id=OTHER_BRANCH_TECHNICIAN_ID, tenant_id=TENANT, branch_id=OTHER_BRANCH, name="Sam"),
            Technician(id=UNASSIGNED_TECHNICIAN_ID, tenant_id=TENANT, branch_id=BRANCH, name="Lee"),
            BranchStock(tenant_id=TENANT, branch_id=BRANCH, part_id=PART_ID, quantity=10),
            BranchStock(tenant_id=TENANT, branch_id=BRANCH, part_id=EXPENSIVE_PART_ID, quantity=1),
        ]
    )
    db.commit()


@pytest.fixture
def owner():
    return Actor(user_id=1, tenant_id=TENANT, role=Role.BUSINESS_OWNER)


@pytest.fixture
def manager():
    return Actor(user_id=2, tenant_id=TENANT, role=Role.MANAGER, branch_ids=frozenset({BRANCH}))


@pytest.fixture
def other_branch_manager():
    return Actor(user_id=3, tenant_id=TENANT, role=Role.MANAGER, branch_ids=frozenset({OTHER_BRANCH}))


@pytest.fixture
def technician():
    return Actor(user_id=TECHNICIAN_ID, tenant_id=TENANT, role=Role.TECHNICIAN, branch_ids=frozenset({BRANCH}))


@pytest.fixture
def unassigned_technician():
    return Actor(
        user_id=UNASSIGNED_TECHNICIAN_ID,
        tenant_id=TENANT,
        role=Role.TECHNICIAN,
        branch_ids=frozenset({BRANCH}),
    )


@pytest.fixture
def foreign_owner():
    return Actor(user_id=9, tenant_id=OTHER_TENANT, role=Role.BUSINESS_OWNER)


@pytest.fixture
def contracts(db, clock):
    return ContractService(db, clock)


@pytest.fixture
def scheduling(db, clock):
    return VisitSchedulingService(db, clock)


@pytest.fixture
def visits(db, clock):
    return VisitExecutionService(db, clock)


@pytest.fixture
def make_contract(seed, contracts, owner):
    """Monthly contract 2026-01-01..2026-06-30 worth 1200 unless overridden"""

    def factory(**overrides):
        data = {
            "branch_id": BRANCH,
            "customer_id": CUSTOMER_ID,
            "product_id": SERVICE_PRODUCT_ID,
            "assigned_technician_id": TECHNICIAN_ID,
            "frequency_kind": "fixed_interval",
            "frequency_value": 1,
            "frequency_unit": "month",
            "start_date": date(2026, 1, 1),
            "end_date": date(2026, 6, 30),
            "contract_value": 1200.0,
        }
        data.update(overrides)
        return contracts.create_contract(ContractCreate(**data), owner)

    return factory


def stock_of(db, part_id, branch_id=BRANCH):
    row = (
        db.query(BranchStock)
        .filter(BranchStock.branch_id == branch_id, BranchStock.part_id == part_id)
        .first()
    )
    return row.quantity if row else 0
