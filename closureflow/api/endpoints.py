"""FastAPI REST endpoints for the workflow engine."""

from typing import Any, Dict, Iterator, List, Optional

from fastapi import APIRouter, Depends, Request, Response, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..core.execution_engine import ExecutionEngine
from ..core.graph_store import GraphStore
from ..core.logging import get_logger
from ..core.task_registry import TaskRegistry
from ..core.workflow_store import WorkflowStore
from ..models.core import (
    ExecutionLogEntry,
    Node,
    NodeTask,
    NodeType,
    Task,
    Workflow,
    WorkflowRunResult,
    WorkflowStartingNode,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/api/v1", tags=["workflow"])


def get_db_session(request: Request) -> Iterator[Session]:
    """Dependency yielding a session scoped to the request."""
    with request.app.state.database.session() as db:
        yield db


def get_execution_engine(request: Request) -> ExecutionEngine:
    """Dependency to get the execution engine."""
    return request.app.state.execution_engine


def get_graph_store(db: Session = Depends(get_db_session)) -> GraphStore:
    return GraphStore(db)


def get_task_registry(db: Session = Depends(get_db_session)) -> TaskRegistry:
    return TaskRegistry(db)


def get_workflow_store(db: Session = Depends(get_db_session)) -> WorkflowStore:
    return WorkflowStore(db)


# Request/Response models
class NodeCreate(BaseModel):
    """Request model for creating a node."""
    title: str = Field(..., description="Node title")
    type: NodeType = Field(..., description="Start, Task or End")
    description: Optional[str] = Field(None, description="Node description")


class NodeUpdate(BaseModel):
    """Request model for updating node metadata."""
    title: Optional[str] = None
    description: Optional[str] = None


class RelationshipCreate(BaseModel):
    """Request model for adding an edge between two nodes."""
    ancestor_id: str = Field(..., description="Node that must complete first")
    descendant_id: str = Field(..., description="Node that depends on the ancestor")


class RelationshipResponse(BaseModel):
    ancestor_id: str
    descendant_id: str
    message: str


class TaskCreate(BaseModel):
    """Request model for registering a reusable task."""
    title: str = Field(..., description="Task title")
    type: Optional[str] = Field(None, description="Free-form task classification")
    method: str = Field(..., description="HTTP method used to invoke the action")
    action: str = Field(..., description="Absolute URL or path relative to the action base URL")
    params: Dict[str, Any] = Field(default_factory=dict, description="Parameters sent with the action")


class NodeTaskCreate(BaseModel):
    """Request model for attaching a task to a node."""
    task_id: str = Field(..., description="Task to attach")
    order: int = Field(..., ge=0, description="Position of the task within the node")


class WorkflowCreate(BaseModel):
    """Request model for creating a workflow."""
    name: str = Field(..., description="Workflow name")
    description: Optional[str] = Field(None, description="Workflow description")


class StartingNodeCreate(BaseModel):
    """Request model for binding a starting node."""
    node_id: str = Field(..., description="Node the workflow starts from")


class RollbackRequest(BaseModel):
    """Request model for rolling back a node."""
    workflow_id: Optional[str] = Field(None, description="Defaults to the workflow of the node's latest entry")


# Nodes

@router.post("/nodes", response_model=Node, status_code=status.HTTP_201_CREATED, summary="Create a node")
def create_node(request: NodeCreate, graph_store: GraphStore = Depends(get_graph_store)) -> Node:
    node_id = graph_store.create_node(request.title, request.type, request.description)
    return graph_store.get_node(node_id)


@router.post(
    "/nodes/relationships",
    response_model=RelationshipResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add a dependency edge",
    description="Add ancestor -> descendant and extend the closure; rejects edges that would create a cycle"
)
def add_relationship(request: RelationshipCreate,
                     graph_store: GraphStore = Depends(get_graph_store)) -> RelationshipResponse:
    graph_store.add_relationship(request.ancestor_id, request.descendant_id)
    return RelationshipResponse(
        ancestor_id=request.ancestor_id,
        descendant_id=request.descendant_id,
        message="Relationship created"
    )


@router.get("/nodes/{node_id}", response_model=Node, summary="Get a node")
def get_node(node_id: str, graph_store: GraphStore = Depends(get_graph_store)) -> Node:
    return graph_store.get_node(node_id)


@router.patch("/nodes/{node_id}", response_model=Node, summary="Update node metadata")
def update_node(node_id: str, request: NodeUpdate,
                graph_store: GraphStore = Depends(get_graph_store)) -> Node:
    return graph_store.update_node(node_id, title=request.title, description=request.description)


@router.delete("/nodes/{node_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Soft-delete a node")
def delete_node(node_id: str, graph_store: GraphStore = Depends(get_graph_store)) -> Response:
    graph_store.delete_node(node_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/nodes/{node_id}/descendants", response_model=List[Node], summary="List descendants")
def get_descendants(node_id: str, graph_store: GraphStore = Depends(get_graph_store)) -> List[Node]:
    return graph_store.get_descendants(node_id)


@router.get("/nodes/{node_id}/ancestors", response_model=List[Node], summary="List ancestors")
def get_ancestors(node_id: str, graph_store: GraphStore = Depends(get_graph_store)) -> List[Node]:
    return graph_store.get_ancestors(node_id)


@router.post(
    "/nodes/{node_id}/tasks",
    response_model=NodeTask,
    status_code=status.HTTP_201_CREATED,
    summary="Attach a task to a node"
)
def attach_task(node_id: str, request: NodeTaskCreate,
                task_registry: TaskRegistry = Depends(get_task_registry)) -> NodeTask:
    node_task_id = task_registry.attach_task(node_id, request.task_id, request.order)
    return next(nt for nt in task_registry.list_node_tasks(node_id) if nt.id == node_task_id)


@router.get("/nodes/{node_id}/tasks", response_model=List[NodeTask], summary="List a node's tasks")
def list_node_tasks(node_id: str, graph_store: GraphStore = Depends(get_graph_store),
                    task_registry: TaskRegistry = Depends(get_task_registry)) -> List[NodeTask]:
    graph_store.get_node(node_id)
    return task_registry.list_node_tasks(node_id)


@router.post("/nodes/{node_id}/rollback", response_model=ExecutionLogEntry, summary="Roll back a node")
def rollback_node(node_id: str, request: Optional[RollbackRequest] = None,
                  execution_engine: ExecutionEngine = Depends(get_execution_engine)) -> ExecutionLogEntry:
    workflow_id = request.workflow_id if request else None
    logger.info(f"Rolling back node {node_id}")
    return execution_engine.rollback_node(node_id, workflow_id)


# Tasks

@router.post("/tasks", response_model=Task, status_code=status.HTTP_201_CREATED, summary="Register a task")
def create_task(request: TaskCreate, task_registry: TaskRegistry = Depends(get_task_registry)) -> Task:
    task_id = task_registry.create_task(
        request.title,
        method=request.method,
        action=request.action,
        params=request.params,
        task_type=request.type
    )
    return task_registry.get_task(task_id)


@router.get("/tasks", response_model=List[Task], summary="List tasks")
def list_tasks(task_registry: TaskRegistry = Depends(get_task_registry)) -> List[Task]:
    return task_registry.list_tasks()


# Workflows

@router.post("/workflows", response_model=Workflow, status_code=status.HTTP_201_CREATED, summary="Create a workflow")
def create_workflow(request: WorkflowCreate,
                    workflow_store: WorkflowStore = Depends(get_workflow_store)) -> Workflow:
    workflow_id = workflow_store.create_workflow(request.name, request.description)
    return workflow_store.get_workflow(workflow_id)


@router.get("/workflows/{workflow_id}", response_model=Workflow, summary="Get a workflow")
def get_workflow(workflow_id: str, workflow_store: WorkflowStore = Depends(get_workflow_store)) -> Workflow:
    return workflow_store.get_workflow(workflow_id)


@router.post(
    "/workflows/{workflow_id}/starting-nodes",
    response_model=WorkflowStartingNode,
    status_code=status.HTTP_201_CREATED,
    summary="Bind a starting node"
)
def add_starting_node(workflow_id: str, request: StartingNodeCreate,
                      workflow_store: WorkflowStore = Depends(get_workflow_store)) -> WorkflowStartingNode:
    return workflow_store.create_workflow_starting_node(workflow_id, request.node_id)


@router.post(
    "/workflows/{workflow_id}/execute",
    response_model=WorkflowRunResult,
    summary="Execute a workflow",
    description="Run the workflow synchronously; nodes that already succeeded in this workflow are skipped"
)
def execute_workflow(workflow_id: str,
                     execution_engine: ExecutionEngine = Depends(get_execution_engine)) -> WorkflowRunResult:
    logger.info(f"Executing workflow {workflow_id}")
    return execution_engine.execute_workflow(workflow_id)


@router.get(
    "/workflows/{workflow_id}/logs",
    response_model=List[ExecutionLogEntry],
    summary="Get workflow execution logs",
    description="Log entries of the workflow in chronological order"
)
def get_execution_logs(workflow_id: str,
                       execution_engine: ExecutionEngine = Depends(get_execution_engine)) -> List[ExecutionLogEntry]:
    return execution_engine.get_execution_logs(workflow_id)
