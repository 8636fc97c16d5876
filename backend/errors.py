# errors.py — Domain error taxonomy with stable error codes
from typing import Any, Dict, Optional

# ============================================================
# ERROR CODE CATALOGUE
# code → default message + HTTP status surfaced to the caller
# ============================================================

ERROR_CATALOGUE = {
    "VALIDATION_ERROR": {"message": "Request validation failed", "http_status": 400},
    "INVALID_TRANSITION": {"message": "Invalid bounty status transition", "http_status": 400},
    "INSUFFICIENT_BUDGET": {"message": "Insufficient available budget", "http_status": 400},
    "UNAUTHORIZED": {"message": "Authentication required", "http_status": 401},
    "FORBIDDEN": {"message": "Insufficient permissions", "http_status": 403},
    "NOT_FOUND": {"message": "Resource not found", "http_status": 404},
    "CONFLICT": {"message": "Request conflicts with the current state", "http_status": 400},
    "INVALID_STATE": {"message": "Ledger state does not allow this operation", "http_status": 400},
    "INTERNAL_SERVER_ERROR": {"message": "Internal server error", "http_status": 500},
}


class AppError(Exception):
    """Base class for errors that map to a terminal API response."""

    code = "INTERNAL_SERVER_ERROR"

    def __init__(self, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        entry = ERROR_CATALOGUE[self.code]
        self.message = message or entry["message"]
        self.status_code = entry["http_status"]
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(AppError):
    """Malformed input or a disallowed state change"""
    code = "VALIDATION_ERROR"


class InvalidTransitionError(ValidationError):
    code = "INVALID_TRANSITION"

    def __init__(self, source, target):
        source = getattr(source, "value", source)
        target = getattr(target, "value", target)
        super().__init__(
            f"Cannot transition from {source} to {target}",
            details={"from": source, "to": target},
        )


class InsufficientBudgetError(ValidationError):
    code = "INSUFFICIENT_BUDGET"

    def __init__(self, required: int, available: int):
        super().__init__(
            "Insufficient available budget",
            details={"required": required, "available": available},
        )


class UnauthorizedError(AppError):
    code = "UNAUTHORIZED"


class ForbiddenError(AppError):
    code = "FORBIDDEN"


class NotFoundError(AppError):
    code = "NOT_FOUND"

    def __init__(self, resource: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(f"{resource} not found" if resource else None, details)


class ConflictError(AppError):
    """Valid request, but the entity's current state precludes it"""
    code = "CONFLICT"


class InvalidStateError(ConflictError):
    code = "INVALID_STATE"
