"""
Workflow-wide exception hierarchy.

Services raise these; blueprints register handlers against them once and
get consistent HTTP status codes everywhere.

Usage:
    from docflow.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Document", resource_id=42)
    raise ValidationError("Title is required", details={"title": "required"})
"""


class NotFoundError(Exception):
    """Raised when a requested document, step or record does not exist.

    Args:
        resource: Human-readable model/entity name (e.g. "Document", "Step").
        resource_id: The PK that was looked up. Included in logs and message.
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
    """Raised when input is missing or malformed.

    Always raised before any transaction is opened, so a ValidationError
    never leaves partial effects behind.  Maps to HTTP 422.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown; keys are field names.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class AuthorizationError(Exception):
    """Raised when the actor may not act on the target step or document.

    Covers both "not the assignee / step not active" and "not the document
    owner" (resubmit, delete).  Maps to HTTP 403.
    """


class OutOfOrderError(Exception):
    """Raised when a lower-order step has not been completed yet.

    Args:
        step_order: Order of the step the actor tried to act on.
        blocking_orders: Orders of the lower steps that are not done.
    """

    def __init__(self, step_order: int, blocking_orders: list[int]) -> None:
        self.step_order = step_order
        self.blocking_orders = blocking_orders
        super().__init__(
            f"Step {step_order} cannot be acted on before step(s) "
            f"{', '.join(str(o) for o in blocking_orders)} are completed"
        )


class InvalidStateError(Exception):
    """Raised when the document or step is not in the state an operation needs.

    Maps to HTTP 409.
    """


class NotOnHoldError(InvalidStateError):
    """Resubmission requested for a document that is not on hold."""


class NoExpiredStepError(InvalidStateError):
    """Document is on hold but has no expired step to restart."""


class ConflictError(Exception):
    """Raised when an operation would create a duplicate unique value.

    Maps to HTTP 409.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(f"{resource} with {field}={value!r} already exists")


class LockContentionError(Exception):
    """Raised when a workflow transaction kept hitting lock/serialization
    failures until the retry budget ran out.

    The whole request is safe to retry.  Maps to HTTP 503.
    """

    def __init__(self, operation: str, attempts: int) -> None:
        self.operation = operation
        self.attempts = attempts
        super().__init__(
            f"{operation} could not acquire its locks after {attempts} attempts; retry the request"
        )


class TemplateRenderError(Exception):
    """Raised by a template renderer.  Never fatal for document creation."""
