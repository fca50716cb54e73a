# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Custom exceptions for the ToolVault orchestrator.

All exceptions inherit from ToolVaultError. Every error carries a stable
``code`` and a ``retryable`` flag; the workflow engine only re-attempts a
step when the error raised for it is retryable.

Error taxonomy:
- ValidationError          VALIDATION_ERROR    (don't retry)
- ToolExecutionError       EXECUTION_ERROR     (don't retry)
- ExecutionTimeoutError    TIMEOUT             (retry)
- DependencyFailedError    DEPENDENCY_FAILED   (don't retry)
- WorkerUnavailableError   WORKER_UNAVAILABLE  (retry)
- ExecutionCancelledError  CANCELLED           (don't retry)
- ReferenceResolutionError RESOLUTION_ERROR    (don't retry)
"""

from typing import Optional, Any


class ToolVaultError(Exception):
    """Base exception for all ToolVault errors."""

    code = "TOOLVAULT_ERROR"
    retryable = False

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        retryable: Optional[bool] = None,
        details: Optional[dict] = None
    ):
        """
        Initialize ToolVault error.

        Args:
            message: Human-readable error message
            code: Error code, defaults to the class code
            retryable: Override the class retry policy
            details: Additional error details
        """
        self.message = message
        if code is not None:
            self.code = code
        if retryable is not None:
            self.retryable = retryable
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict:
        """Convert error to a plain dictionary."""
        return {
            "error": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
            "details": self.details
        }


class NotFoundError(ToolVaultError):
    """Resource not found."""

    code = "NOT_FOUND"

    def __init__(self, resource: str, identifier: str, details: Optional[dict] = None):
        """
        Initialize not found error.

        Args:
            resource: Type of resource (e.g., "Tool", "Workflow")
            identifier: Resource identifier
            details: Additional error details
        """
        message = f"{resource} not found: {identifier}"
        super().__init__(message, details=details)
        self.resource = resource
        self.identifier = identifier


class ConflictError(ToolVaultError):
    """Resource conflict."""

    code = "CONFLICT"

    def __init__(self, message: str, resource: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(message, details=details)
        self.resource = resource


class ValidationError(ToolVaultError):
    """Validation failed."""

    code = "VALIDATION_ERROR"

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Any = None,
        details: Optional[dict] = None
    ):
        """
        Initialize validation error.

        Args:
            message: Validation error message
            field: Field that failed validation
            value: Offending value, if any
            details: Additional error details
        """
        details = dict(details or {})
        if field is not None:
            details.setdefault("field", field)
        super().__init__(message, details=details)
        self.field = field
        self.value = value


class ConditionError(ValidationError):
    """A step condition could not be compiled or evaluated."""

    def __init__(self, message: str, condition: Optional[str] = None):
        super().__init__(message, field="condition", details={"condition": condition})
        self.condition = condition


class WorkflowStateError(ToolVaultError):
    """Operation not allowed in the workflow's current state."""

    code = "INVALID_STATE"

    def __init__(self, message: str, workflow_id: Optional[str] = None, status: Optional[str] = None):
        super().__init__(message, details={"workflow_id": workflow_id, "status": status})
        self.workflow_id = workflow_id
        self.status = status


# ============================================================================
# EXECUTION ERRORS
# ============================================================================

class ExecutionError(ToolVaultError):
    """Base class for errors raised while running a tool."""

    code = "EXECUTION_ERROR"

    def __init__(
        self,
        message: str,
        execution_id: Optional[str] = None,
        tool_id: Optional[str] = None,
        details: Optional[dict] = None
    ):
        """
        Initialize execution error.

        Args:
            message: Execution error message
            execution_id: Execution identifier
            tool_id: Tool identifier
            details: Additional error details
        """
        super().__init__(message, details=details)
        self.execution_id = execution_id
        self.tool_id = tool_id

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["execution_id"] = self.execution_id
        data["tool_id"] = self.tool_id
        return data


class ToolExecutionError(ExecutionError):
    """
    Tool code raised or returned abnormally.
    Should NOT be retried - fix the tool or its input.
    """


class ExecutionTimeoutError(ExecutionError):
    """
    No terminal report within the allotted time.
    Retryable at the workflow layer.
    """

    code = "TIMEOUT"
    retryable = True

    def __init__(
        self,
        message: str,
        execution_id: Optional[str] = None,
        tool_id: Optional[str] = None,
        timeout_seconds: Optional[float] = None
    ):
        super().__init__(message, execution_id=execution_id, tool_id=tool_id,
                         details={"timeout_seconds": timeout_seconds})
        self.timeout_seconds = timeout_seconds


class WorkerUnavailableError(ExecutionError):
    """
    The isolated execution substrate failed to initialize.
    Should be retried.
    """

    code = "WORKER_UNAVAILABLE"
    retryable = True


class ExecutionCancelledError(ExecutionError):
    """Execution was cancelled before it reported a result."""

    code = "CANCELLED"


# ============================================================================
# WORKFLOW ERRORS
# ============================================================================

class DependencyFailedError(ToolVaultError):
    """A prerequisite step did not complete."""

    code = "DEPENDENCY_FAILED"

    def __init__(self, step_id: str, missing: list):
        super().__init__(
            f"Dependencies not met for step {step_id}: {', '.join(missing)}",
            details={"step_id": step_id, "missing": list(missing)}
        )
        self.step_id = step_id
        self.missing = list(missing)


class ReferenceResolutionError(ToolVaultError):
    """A ${stepId.path} reference could not be resolved."""

    code = "RESOLUTION_ERROR"

    def __init__(self, reference: str, reason: str):
        super().__init__(
            f"Cannot resolve reference {reference}: {reason}",
            details={"reference": reference}
        )
        self.reference = reference
        self.reason = reason

