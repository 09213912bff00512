"""
Error taxonomy of the order service. Each error has a stable code, a human-readable
message and the HTTP status the API layer answers with.
"""
from typing import Any


class OrderServiceError(Exception):
    code = "error"
    http_status = 500

    def __init__(self, message: str, **context: Any):
        self.message = message
        self.context = context
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.message, "code": self.code}
        body.update({k: v for k, v in self.context.items() if v is not None})
        return body


class ValidationError(OrderServiceError):
    """Malformed input: unknown specialty, bad coordinates, bad price."""
    code = "validation_error"
    http_status = 400


class UnauthorizedError(OrderServiceError):
    code = "unauthorized"
    http_status = 401


class ForbiddenError(OrderServiceError):
    """Actor is not allowed to do this: wrong capability, not the owner or assignee."""
    code = "forbidden"
    http_status = 403


class NotFoundError(OrderServiceError):
    code = "not_found"
    http_status = 404


class ConflictError(OrderServiceError):
    """Precondition lost to a concurrent winner: duplicate open order, order already claimed."""
    code = "conflict"
    http_status = 409


class InvalidTransitionError(OrderServiceError):
    """Requested transition is not in the lifecycle table for the current status."""
    code = "invalid_transition"
    http_status = 409

    def __init__(self, current_status: str | None, target_status: str | None, action: str | None = None):
        self.current_status = current_status
        self.target_status = target_status
        self.action = action
        super().__init__(
            f"Cannot move order from {current_status} to {target_status}",
            currentStatus=current_status,
            targetStatus=target_status,
            action=action,
        )


class InvalidStateError(OrderServiceError):
    """Action needs the order in another mode (e.g. location reports outside accepted/in_progress)."""
    code = "invalid_state"
    http_status = 409

    def __init__(self, message: str, current_status: str | None = None):
        self.current_status = current_status
        super().__init__(message, currentStatus=current_status)


class SchemaError(OrderServiceError):
    """Database schema is not at the version this build expects."""
    code = "schema_error"
    http_status = 500
