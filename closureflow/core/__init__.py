"""Core workflow engine components."""

from .exceptions import (
    WorkflowEngineError,
    ValidationError,
    NotFoundError,
    CycleError,
    DependencyNotReadyError,
    DispatchError,
    PersistenceError,
    ExecutionTimeoutError,
)
from .logging import setup_logging, get_logger
from .graph_store import GraphStore
from .execution_log import ExecutionLog
from .dependency_resolver import DependencyResolver
from .task_registry import TaskRegistry
from .task_dispatcher import TaskDispatcher
from .workflow_store import WorkflowStore
from .error_recovery import RetryConfig
from .execution_engine import ExecutionEngine

__all__ = [
    "WorkflowEngineError",
    "ValidationError",
    "NotFoundError",
    "CycleError",
    "DependencyNotReadyError",
    "DispatchError",
    "PersistenceError",
    "ExecutionTimeoutError",
    "setup_logging",
    "get_logger",
    "GraphStore",
    "ExecutionLog",
    "DependencyResolver",
    "TaskRegistry",
    "TaskDispatcher",
    "WorkflowStore",
    "RetryConfig",
    "ExecutionEngine",
]
