"""
Application-wide exception hierarchy.

Services raise these types; the app-level error handlers registered in
``orderhub.utils.errors`` translate them into the standard JSON error body
once, so blueprints never hand-roll status codes for business failures.

Usage:
    from orderhub.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Order", resource_id=42)
    raise ValidationError("deadline is required", details={"deadline": "required"})

HTTP mapping:
    ValidationError         400
    UnauthorizedError       401
    ForbiddenError          403
    NotFoundError           404
    ConflictError           409  (DuplicateError, InvalidTransitionError)
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable model/entity name (e.g. "Order", "Task").
        resource_id: The PK that was looked up.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input is missing, malformed or violates a business rule.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown. Keys are field names;
                 values are error descriptions.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class UnauthorizedError(Exception):
    """Raised when no valid caller identity accompanies the request."""

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(message)


class ForbiddenError(Exception):
    """Raised when the caller is authenticated but lacks the role or ownership.

    Args:
        action: The operation that was refused (e.g. "order.deliver").
        role: The caller's role, for logging.
        reason: Optional explanation returned to the client.
    """

    def __init__(self, action: str, role: str | None = None, reason: str | None = None) -> None:
        self.action = action
        self.role = role
        self.reason = reason
        msg = reason or f"Not allowed to perform '{action}'"
        super().__init__(msg)


class ConflictError(Exception):
    """Raised when a state precondition does not hold. Maps to HTTP 409."""

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class DuplicateError(ConflictError):
    """Raised when an operation would duplicate a unique value.

    Args:
        resource: Model name.
        field: The unique field that would be duplicated.
        value: The conflicting value.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(
            f"{resource} with {field}={value!r} already exists",
            details={"field": field},
        )


class InvalidTransitionError(ConflictError):
    """Raised when a lifecycle action is not legal from the current status."""

    def __init__(
        self,
        resource: str,
        resource_id: int | str,
        action: str,
        current: str,
        reason: str | None = None,
    ) -> None:
        msg = f"Cannot '{action}' {resource} {resource_id} (status={current})"
        if reason:
            msg += f": {reason}"
        self.resource = resource
        self.resource_id = resource_id
        self.action = action
        self.current_status = current
        self.reason = reason
        super().__init__(msg, details={"action": action, "current_status": current})
