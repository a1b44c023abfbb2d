"""
Maintenance engine error taxonomy

Services raise these; routers let them propagate and main.py maps them to HTTP responses.
"""

from typing import Optional


class MaintenanceError(Exception):
    """Base class for all business-rule failures surfaced to the caller"""

    status_code = 400
    code = "maintenance_error"

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field

    def to_dict(self) -> dict:
        detail = {"code": self.code, "message": self.message}
        if self.field:
            detail["field"] = self.field
        return detail


class ValidationError(MaintenanceError):
    """Malformed or out-of-window input, rejected before any state change"""

    status_code = 422
    code = "validation_error"


class NotFoundError(MaintenanceError):
    status_code = 404
    code = "not_found"


class InvalidTransition(MaintenanceError):
    """State machine violation (e.g. completing a visit that was never started)"""

    status_code = 409
    code = "invalid_transition"

    def __init__(self, message: str, current_status: Optional[str] = None):
        super().__init__(message, field="status")
        self.current_status = current_status


class InsufficientStock(MaintenanceError):
    """Completing a visit would drive branch stock negative"""

    status_code = 409
    code = "insufficient_stock"

    def __init__(self, part_id: int, requested: int, available: int):
        super().__init__(
            f"Insufficient stock for part {part_id}: requested {requested}, available {available}",
            field="parts",
        )
        self.part_id = part_id
        self.requested = requested
        self.available = available

    def to_dict(self) -> dict:
        detail = super().to_dict()
        detail.update(
            {"part_id": self.part_id, "requested": self.requested, "available": self.available}
        )
        return detail


class AccessDenied(MaintenanceError):
    """Cross-tenant/branch access or an operation the actor's role does not allow"""

    status_code = 403
    code = "access_denied"


class ConcurrencyConflict(MaintenanceError):
    """Concurrent modification detected; the caller should retry the whole operation"""

    status_code = 409
    code = "concurrency_conflict"
