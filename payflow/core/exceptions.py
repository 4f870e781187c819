"""
Platform-wide exception hierarchy.

Services raise these; blueprints register handlers against them once and
get consistent HTTP status codes everywhere.

Usage:
    from payflow.core.exceptions import NotFoundError, InvalidStateError

    raise NotFoundError(resource="PaymentRequest", resource_id=42)
    raise InvalidStateError("Request is not awaiting approval", details={...})

HTTP mapping (see payflow/blueprints/__init__.py):
    NotFoundError, DecisionNotFoundError           -> 404
    ConflictError, InvalidStateError,
    AlreadyDecidedError                            -> 409
    ValidationError, StageConfigurationError,
    StageConfigMissingError                        -> 422
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable model/entity name (e.g. "PaymentRequest").
        resource_id: The PK that was looked up. Included in the message.
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
    """Raised when well-formed input violates a business rule.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
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
        msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)


# ── Approval chain errors ────────────────────────────────────────────────────


class StageConfigurationError(ValidationError):
    """The submitted approval chain is malformed (empty stage, gap, duplicate)."""


class InvalidStateError(Exception):
    """The request is not in a state that permits the attempted action.

    Args:
        message: Explanation shown to the caller.
        state: Derived state name of the request at the time of the attempt.
    """

    def __init__(self, message: str, state: str | None = None) -> None:
        self.state = state
        self.details = {"state": state} if state else {}
        super().__init__(message)


class DecisionNotFoundError(NotFoundError):
    """No decision row exists for (request, cycle, stage, department)."""

    def __init__(self, payment_request_id: int, stage_order: int, department_id: int) -> None:
        self.payment_request_id = payment_request_id
        self.stage_order = stage_order
        self.department_id = department_id
        super().__init__(
            resource="ApprovalDecision",
            resource_id=f"{payment_request_id}/stage {stage_order}/department {department_id}",
        )


class AlreadyDecidedError(Exception):
    """The matching decision row exists but is no longer pending."""

    def __init__(self, decision_id: int, status: str) -> None:
        self.decision_id = decision_id
        self.status = status
        self.details = {"decision_id": decision_id, "status": status}
        super().__init__(f"Decision {decision_id} already decided: {status}")


class StageConfigMissingError(Exception):
    """A stage the engine needs has no configured departments or ledger rows."""

    def __init__(self, stage_order: int, payment_request_id: int | None = None) -> None:
        self.stage_order = stage_order
        self.payment_request_id = payment_request_id
        self.details = {"stage_order": stage_order}
        msg = f"Stage {stage_order} has no configured departments"
        if payment_request_id is not None:
            msg += f" (payment_request={payment_request_id})"
        super().__init__(msg)
