"""
Workflow-wide exception hierarchy.

Every service and orchestrator raises these types and nothing else, so a
calling layer (API, CLI, batch job) can map them once.  ``http_status`` is
a hint for that layer; the engine itself never looks at it.

None of these errors are retried inside the engine.  ``ConflictError`` is
the only one a caller may reasonably retry, after reloading the document.

Usage:
    from scm_workflow.core.exceptions import NotFoundError, BusinessRuleError

    raise NotFoundError(resource="JobOrder", resource_id=42)
    raise BusinessRuleError("Photos are required", rule_code="SCRAP-V001")
"""

from __future__ import annotations


class WorkflowError(Exception):
    """Base class for all engine errors."""

    http_status = 400


class NotFoundError(WorkflowError):
    """Raised when a referenced document or record does not exist.

    Args:
        resource: Human-readable model name (e.g. "JobOrder", "SlaRecord").
        resource_id: The key that was looked up.
    """

    http_status = 404

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" with id '{resource_id}'"
        msg += " not found"
        super().__init__(msg)


class ValidationError(WorkflowError):
    """Raised when input is well-formed but unusable (negative amount, unknown mode).

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown.
    """

    http_status = 422

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class InvalidTransitionError(WorkflowError):
    """Raised by the transition guard when ``to_status`` is not a legal successor."""

    http_status = 422

    def __init__(
        self,
        document_type: str,
        from_status: str,
        to_status: str,
        allowed: list[str] | tuple[str, ...] = (),
    ) -> None:
        self.document_type = document_type
        self.from_status = from_status
        self.to_status = to_status
        self.allowed = sorted(allowed)
        allowed_str = ", ".join(self.allowed) if self.allowed else "none (terminal state)"
        super().__init__(
            f"Invalid status transition for {document_type}: "
            f"'{from_status}' -> '{to_status}'. Allowed transitions: {allowed_str}"
        )


class BusinessRuleError(WorkflowError):
    """Raised when a document-type precondition fails.

    ``rule_code`` is stable (e.g. "SCRAP-V001") so UIs and tests can match on
    it without parsing the message.
    """

    http_status = 422

    def __init__(self, message: str, rule_code: str = "BUSINESS_RULE_VIOLATION") -> None:
        self.rule_code = rule_code
        super().__init__(f"[{rule_code}] {message}")


class NoMatchingRuleError(WorkflowError):
    """Raised when no approval range contains the amount (configuration gap)."""

    http_status = 422

    def __init__(self, document_type: str, amount: float) -> None:
        self.document_type = document_type
        self.amount = amount
        super().__init__(f"No approval rule for {document_type} covers amount {amount}")


class RuleConfigurationError(WorkflowError):
    """Raised when approval ranges for a document type overlap or leave gaps."""

    http_status = 422

    def __init__(self, document_type: str, problems: list[str]) -> None:
        self.document_type = document_type
        self.problems = list(problems)
        super().__init__(
            f"Approval rules for {document_type} are misconfigured: " + "; ".join(self.problems)
        )


class AlreadyPausedError(WorkflowError):
    """Raised when pausing an SLA clock that is already stopped."""

    http_status = 409

    def __init__(self, document_type: str, document_id: int, kind: str) -> None:
        self.document_type = document_type
        self.document_id = document_id
        self.kind = kind
        super().__init__(f"{kind} SLA for {document_type} {document_id} is already paused")


class AlreadyRespondedError(WorkflowError):
    """Raised when the same approver responds twice to a parallel group."""

    http_status = 409

    def __init__(self, group_id: int, approver_id: int) -> None:
        self.group_id = group_id
        self.approver_id = approver_id
        super().__init__(f"Approver {approver_id} already responded to approval group {group_id}")


class GroupResolvedError(WorkflowError):
    """Raised when a response arrives for a group that is no longer pending."""

    http_status = 409

    def __init__(self, group_id: int, status: str) -> None:
        self.group_id = group_id
        self.status = status
        super().__init__(f"Approval group {group_id} is already {status}")


class ConflictError(WorkflowError):
    """Raised when a concurrent writer changed the record first.

    Args:
        resource: Model name.
        field: The field that conflicted (``version`` for optimistic locking).
        value: The conflicting value, if known.
    """

    http_status = 409

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(f"{resource} was modified concurrently ({field}={value!r}); reload and retry")


class OperationCancelledError(WorkflowError):
    """Raised when the caller's cancellation token fires before commit."""

    http_status = 499

    def __init__(self, operation: str) -> None:
        self.operation = operation
        super().__init__(f"Operation '{operation}' was cancelled; no changes were saved")
