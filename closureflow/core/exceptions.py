"""Custom exceptions for the closure-table workflow engine with detailed error information."""

import traceback
from datetime import datetime
from typing import Optional, Dict, Any, List
from enum import Enum


class ErrorSeverity(Enum):
    """Error severity levels for categorizing exceptions."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Categories of errors for better classification."""
    VALIDATION = "validation"
    EXECUTION = "execution"
    STORAGE = "storage"
    NETWORK = "network"
    GRAPH = "graph"


class WorkflowEngineError(Exception):
    """Base exception for all workflow engine errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        category: ErrorCategory = ErrorCategory.EXECUTION,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = False,
        retry_after: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.severity = severity
        self.category = category
        self.details = details or {}
        self.recoverable = recoverable
        self.retry_after = retry_after
        self.context = context or {}
        self.timestamp = datetime.utcnow()
        self.traceback_info = traceback.format_stack()

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging and API responses."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "severity": self.severity.value,
            "category": self.category.value,
            "details": self.details,
            "recoverable": self.recoverable,
            "retry_after": self.retry_after,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "exception_type": self.__class__.__name__
        }

    def add_context(self, **kwargs):
        """Add additional context to the exception."""
        self.context.update(kwargs)
        return self

    def add_details(self, **kwargs):
        """Add additional details to the exception."""
        self.details.update(kwargs)
        return self


class ValidationError(WorkflowEngineError):
    """Raised on malformed input: empty titles, unparsable ids, unknown enum values."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        validation_errors: Optional[List[str]] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.LOW,
            category=ErrorCategory.VALIDATION,
            **kwargs
        )
        self.validation_errors = validation_errors or []
        if field:
            self.add_context(field=field)
        if validation_errors:
            self.add_details(validation_errors=validation_errors)


class NotFoundError(WorkflowEngineError):
    """Raised when a node, workflow, task or starting node is absent or soft-deleted."""

    def __init__(
        self,
        message: str,
        entity: Optional[str] = None,
        entity_id: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.LOW,
            category=ErrorCategory.VALIDATION,
            **kwargs
        )
        if entity:
            self.add_context(entity=entity)
        if entity_id:
            self.add_context(entity_id=entity_id)


class CycleError(WorkflowEngineError):
    """Raised when a closure insertion or validation finds a node reachable from itself."""

    def __init__(
        self,
        message: str,
        ancestor_id: Optional[str] = None,
        descendant_id: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.GRAPH,
            **kwargs
        )
        if ancestor_id:
            self.add_context(ancestor_id=ancestor_id)
        if descendant_id:
            self.add_context(descendant_id=descendant_id)


class DependencyNotReadyError(WorkflowEngineError):
    """Raised when a node's predecessors have not all succeeded."""

    def __init__(
        self,
        message: str,
        node_id: Optional[str] = None,
        pending_parents: Optional[List[str]] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.MEDIUM,
            category=ErrorCategory.EXECUTION,
            recoverable=True,
            **kwargs
        )
        self.pending_parents = pending_parents or []
        if node_id:
            self.add_context(node_id=node_id)
        if pending_parents:
            self.add_details(pending_parents=pending_parents)


class DispatchError(WorkflowEngineError):
    """Raised when an external action invocation fails or reports a failure status."""

    def __init__(
        self,
        message: str,
        node_id: Optional[str] = None,
        task_id: Optional[str] = None,
        status_code: Optional[int] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.NETWORK,
            recoverable=True,
            **kwargs
        )
        self.status_code = status_code
        if node_id:
            self.add_context(node_id=node_id)
        if task_id:
            self.add_context(task_id=task_id)
        if status_code is not None:
            self.add_details(status_code=status_code)


class PersistenceError(WorkflowEngineError):
    """Raised when an underlying store operation fails."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        table: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.STORAGE,
            recoverable=True,
            retry_after=3,
            **kwargs
        )
        if operation:
            self.add_context(operation=operation)
        if table:
            self.add_context(table=table)


class ExecutionTimeoutError(WorkflowEngineError):
    """Raised when a workflow walk exceeds its execution deadline."""

    def __init__(
        self,
        message: str,
        workflow_id: Optional[str] = None,
        timeout: Optional[float] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.EXECUTION,
            **kwargs
        )
        if workflow_id:
            self.add_context(workflow_id=workflow_id)
        if timeout is not None:
            self.add_details(timeout=timeout)


def get_status_code_for_error(error: WorkflowEngineError) -> int:
    """Map an engine error to the HTTP status code the REST layer responds with."""
    if isinstance(error, ValidationError):
        return 400
    if isinstance(error, NotFoundError):
        return 404
    return 500


def create_error_response(error: WorkflowEngineError) -> Dict[str, Any]:
    """Create a standardized error response from a WorkflowEngineError."""
    return {
        "error": error.error_code,
        "message": error.message,
        "details": {
            **error.details,
            "severity": error.severity.value,
            "category": error.category.value,
            "recoverable": error.recoverable,
            "retry_after": error.retry_after,
            "timestamp": error.timestamp.isoformat()
        },
        "context": error.context
    }
