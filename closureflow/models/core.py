"""Core Pydantic models for the closure-table workflow engine."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field


class NodeType(str, Enum):
    """Closed set of node kinds."""
    START = "Start"
    TASK = "Task"
    END = "End"

    @property
    def gates_descendants(self) -> bool:
        """Whether descendants must wait for this node to succeed.

        End nodes are terminal sentinels and never hold anything back.
        """
        if self is NodeType.START or self is NodeType.TASK:
            return True
        if self is NodeType.END:
            return False
        raise ValueError(f"Unhandled node type: {self!r}")


class WorkflowStatusEnum(str, Enum):
    """Status of a workflow's latest run."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class TaskStatusEnum(str, Enum):
    """Outcome of the latest attempt of a node task."""
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


class LogStatusEnum(str, Enum):
    """Status recorded in an execution log entry."""
    SUCCESS = "success"
    FAILED = "failed"
    ROLLBACK = "rollback"


ROLLBACK_MESSAGE = "Node execution rolled back"


class Node(BaseModel):
    """A unit of workflow topology."""
    model_config = ConfigDict(from_attributes=True)

    id: str = Field(..., description="Unique node identifier")
    title: str = Field(..., description="Node title")
    type: NodeType = Field(..., description="Node type")
    description: Optional[str] = Field(None, description="Free-form description")
    created_at: datetime = Field(..., description="Creation timestamp")
    updated_at: Optional[datetime] = Field(None, description="Last update timestamp")
    deleted_at: Optional[datetime] = Field(None, description="Soft-delete timestamp")


class ClosureEntry(BaseModel):
    """One row of the transitive closure."""
    model_config = ConfigDict(from_attributes=True)

    ancestor: str
    descendant: str
    depth: int


class Workflow(BaseModel):
    """A workflow definition and the status of its latest run."""
    model_config = ConfigDict(from_attributes=True)

    id: str = Field(..., description="Unique workflow identifier")
    name: str = Field(..., description="Workflow name")
    description: Optional[str] = Field(None, description="Workflow description")
    status: WorkflowStatusEnum = Field(..., description="Current status")
    created_at: datetime
    updated_at: Optional[datetime] = None


class WorkflowStartingNode(BaseModel):
    """Binding of a workflow to an entry node."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    workflow_id: str
    node_id: str
    created_at: datetime


class Task(BaseModel):
    """Reusable action definition."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    type: Optional[str] = None
    method: str
    action: str
    params: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


class NodeTask(BaseModel):
    """A task attached to a node, with its latest outcome."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    node_id: str
    task_id: str
    order: int
    status: TaskStatusEnum
    retry_count: int = 0
    status_code: Optional[int] = None
    response: Optional[Any] = None
    error_message: Optional[str] = None


class ExecutionLogEntry(BaseModel):
    """Append-only record of a node execution attempt."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    workflow_id: Optional[str] = None
    node_id: str
    status: LogStatusEnum
    message: str
    executed_at: datetime


class TaskOutcome(BaseModel):
    """Result of a single attempt of a single node task."""
    node_task_id: str
    task_id: str
    order: int
    status: TaskStatusEnum
    status_code: Optional[int] = None
    response: Optional[Any] = None
    error_message: Optional[str] = None
    retry_count: int = 0

    @property
    def succeeded(self) -> bool:
        return self.status == TaskStatusEnum.SUCCESS


class NodeExecutionResult(BaseModel):
    """Aggregate outcome of running every task of a node."""
    node_id: str
    status: LogStatusEnum
    message: str
    task_outcomes: List[TaskOutcome] = Field(default_factory=list)


class WorkflowRunResult(BaseModel):
    """Summary of one execute_workflow call."""
    workflow_id: str
    status: WorkflowStatusEnum
    executed_nodes: List[str] = Field(default_factory=list, description="Nodes run during this call, in order")
    skipped_nodes: List[str] = Field(default_factory=list, description="Nodes that had already succeeded")
    deferred_nodes: List[str] = Field(default_factory=list, description="Nodes whose parents never completed")
    failed_node: Optional[str] = Field(None, description="Node that stopped the walk")
    message: str = ""
    started_at: datetime
    completed_at: Optional[datetime] = None
