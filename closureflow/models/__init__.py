"""Data models for the workflow engine."""

from .core import (
    NodeType,
    WorkflowStatusEnum,
    TaskStatusEnum,
    LogStatusEnum,
    ROLLBACK_MESSAGE,
    Node,
    ClosureEntry,
    Workflow,
    WorkflowStartingNode,
    Task,
    NodeTask,
    ExecutionLogEntry,
    TaskOutcome,
    NodeExecutionResult,
    WorkflowRunResult,
)

__all__ = [
    "NodeType",
    "WorkflowStatusEnum",
    "TaskStatusEnum",
    "LogStatusEnum",
    "ROLLBACK_MESSAGE",
    "Node",
    "ClosureEntry",
    "Workflow",
    "WorkflowStartingNode",
    "Task",
    "NodeTask",
    "ExecutionLogEntry",
    "TaskOutcome",
    "NodeExecutionResult",
    "WorkflowRunResult",
]
