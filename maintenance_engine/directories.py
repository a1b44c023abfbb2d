"""Read-only customer/product/technician lookups used to validate contract references"""

from sqlalchemy.orm import Session

from .models import Customer, Product, Technician
from .scope import Scope


class Directory:
    def __init__(self, db: Session):
        self.db = db

    def customer_exists(self, scope: Scope, customer_id: int) -> bool:
        return (
            self.db.query(Customer.id)
            .filter(Customer.id == customer_id, Customer.tenant_id == scope.tenant_id)
            .first()
            is not None
        )

    def product_exists(self, scope: Scope, product_id: int) -> bool:
        return (
            self.db.query(Product.id)
            .filter(Product.id == product_id, Product.tenant_id == scope.tenant_id)
            .first()
            is not None
        )

    def technician_in_branch(self, scope: Scope, technician_id: int, branch_id: int) -> bool:
        return (
            self.db.query(Technician.id)
            .filter(
                Technician.id == technician_id,
                Technician.tenant_id == scope.tenant_id,
                Technician.branch_id == branch_id,
                Technician.is_active.is_(True),
            )
            .first()
            is not None
        )

    def is_spare_part(self, scope: Scope, product_id: int) -> bool:
        return (
            self.db.query(Product.id)
            .filter(
                Product.id == product_id,
                Product.tenant_id == scope.tenant_id,
                Product.is_spare_part.is_(True),
            )
            .first()
            is not None
        )

    def part_unit_cost(self, scope: Scope, part_id: int):
        """Default unit cost for a part when the technician does not supply one"""
        row = (
            self.db.query(Product.cost_price)
            .filter(Product.id == part_id, Product.tenant_id == scope.tenant_id)
            .first()
        )
        return row[0] if row else None

    def technician_names(self, scope: Scope, technician_ids) -> dict:
        ids = sorted(set(technician_ids))
        if not ids:
            return {}
        rows = (
            self.db.query(Technician.id, Technician.name)
            .filter(Technician.tenant_id == scope.tenant_id, Technician.id.in_(ids))
            .all()
        )
        return {technician_id: name for technician_id, name in rows}
