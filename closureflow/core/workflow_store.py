"""Workflow definitions, starting-node bindings and status transitions."""

from datetime import datetime
from typing import List, Optional, Union

from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from ..models.core import Node, Workflow, WorkflowStartingNode, WorkflowStatusEnum
from ..storage.models import NodeModel, WorkflowModel, WorkflowStartingNodeModel
from .exceptions import NotFoundError, PersistenceError, ValidationError
from .identifiers import new_id, parse_id
from .logging import get_logger

logger = get_logger(__name__)


ALLOWED_TRANSITIONS = {
    WorkflowStatusEnum.PENDING: {WorkflowStatusEnum.RUNNING},
    WorkflowStatusEnum.RUNNING: {WorkflowStatusEnum.COMPLETED, WorkflowStatusEnum.FAILED},
    # A finished workflow can only be started again by a manual retry
    WorkflowStatusEnum.COMPLETED: {WorkflowStatusEnum.RUNNING},
    WorkflowStatusEnum.FAILED: {WorkflowStatusEnum.RUNNING},
}


class WorkflowStore:
    """Persists workflows and the nodes a workflow run starts from."""

    def __init__(self, db_session: Session):
        self._db = db_session

    def create_workflow(self, name: str, description: Optional[str] = None) -> str:
        """
        Create a workflow in ``pending`` status.

        Raises:
            ValidationError: If the name is blank
            PersistenceError: If the insert fails
        """
        if not name or not name.strip():
            raise ValidationError("Workflow name cannot be empty", field="name")

        workflow_id = new_id()
        now = datetime.utcnow()
        self._db.add(WorkflowModel(
            id=workflow_id,
            name=name.strip(),
            description=description,
            status=WorkflowStatusEnum.PENDING.value,
            created_at=now,
            updated_at=now
        ))
        self._commit("create_workflow")
        logger.info(f"Created workflow '{name.strip()}' with ID: {workflow_id}")
        return workflow_id

    def get_workflow(self, workflow_id) -> Workflow:
        return Workflow.model_validate(self._get_live_model(parse_id(workflow_id, "workflow")))

    def list_workflows(self) -> List[Workflow]:
        try:
            models = (
                self._db.query(WorkflowModel)
                .filter(WorkflowModel.deleted_at.is_(None))
                .order_by(WorkflowModel.created_at.desc())
                .all()
            )
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to list workflows: {str(e)}", operation="list_workflows")
        return [Workflow.model_validate(model) for model in models]

    def create_workflow_starting_node(self, workflow_id, node_id) -> WorkflowStartingNode:
        """
        Bind a node as an entry point of the workflow.

        Bindings are kept in creation order; the first one is the entry point.

        Raises:
            NotFoundError: If the workflow or node does not exist
            ValidationError: If the node is already bound to the workflow
        """
        workflow = self._get_live_model(parse_id(workflow_id, "workflow"))
        node_id = parse_id(node_id)

        node = (
            self._db.query(NodeModel)
            .filter(NodeModel.id == node_id, NodeModel.deleted_at.is_(None))
            .first()
        )
        if node is None:
            raise NotFoundError(f"Node with ID '{node_id}' not found", entity="node", entity_id=node_id)

        duplicate = (
            self._db.query(WorkflowStartingNodeModel.id)
            .filter(
                WorkflowStartingNodeModel.workflow_id == workflow.id,
                WorkflowStartingNodeModel.node_id == node_id
            )
            .first()
        )
        if duplicate is not None:
            raise ValidationError(
                f"Node {node_id} is already a starting node of workflow {workflow.id}",
                field="node_id"
            )

        binding = WorkflowStartingNodeModel(
            workflow_id=workflow.id,
            node_id=node_id,
            created_at=datetime.utcnow()
        )
        self._db.add(binding)
        self._commit("create_workflow_starting_node")
        logger.info(f"Bound node {node_id} as starting node of workflow {workflow.id}")
        return WorkflowStartingNode.model_validate(binding)

    def get_starting_nodes(self, workflow_id) -> List[Node]:
        """
        Live starting nodes in binding order.

        Raises:
            NotFoundError: If the workflow is missing or has no live starting node
        """
        workflow = self._get_live_model(parse_id(workflow_id, "workflow"))
        try:
            models = (
                self._db.query(NodeModel)
                .join(WorkflowStartingNodeModel, WorkflowStartingNodeModel.node_id == NodeModel.id)
                .filter(
                    WorkflowStartingNodeModel.workflow_id == workflow.id,
                    NodeModel.deleted_at.is_(None)
                )
                .order_by(WorkflowStartingNodeModel.created_at, WorkflowStartingNodeModel.id)
                .all()
            )
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load starting nodes: {str(e)}", operation="get_starting_nodes")

        if not models:
            raise NotFoundError(
                f"Workflow '{workflow.id}' has no starting node",
                entity="workflow_starting_node", entity_id=workflow.id
            )
        return [Node.model_validate(model) for model in models]

    def set_status(self, workflow_id, status: Union[WorkflowStatusEnum, str]) -> Workflow:
        """
        Move a workflow to a new status.

        Raises:
            ValidationError: If the transition is not allowed
        """
        workflow = self._get_live_model(parse_id(workflow_id, "workflow"))
        try:
            target = WorkflowStatusEnum(status)
        except ValueError:
            raise ValidationError(f"Unknown workflow status '{status}'", field="status")

        current = WorkflowStatusEnum(workflow.status)
        if target not in ALLOWED_TRANSITIONS[current]:
            raise ValidationError(
                f"Workflow {workflow.id} cannot move from '{current.value}' to '{target.value}'",
                field="status"
            )

        workflow.status = target.value
        workflow.updated_at = datetime.utcnow()
        self._commit("set_status")
        logger.info(f"Workflow {workflow.id} status: {current.value} -> {target.value}")
        return Workflow.model_validate(workflow)

    def _get_live_model(self, workflow_id: str) -> WorkflowModel:
        try:
            model = (
                self._db.query(WorkflowModel)
                .filter(WorkflowModel.id == workflow_id, WorkflowModel.deleted_at.is_(None))
                .first()
            )
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to retrieve workflow: {str(e)}", operation="get_workflow")
        if model is None:
            raise NotFoundError(
                f"Workflow with ID '{workflow_id}' not found",
                entity="workflow", entity_id=workflow_id
            )
        return model

    def _commit(self, operation: str) -> None:
        try:
            self._db.commit()
        except SQLAlchemyError as e:
            self._db.rollback()
            logger.error(f"Database error during {operation}: {str(e)}")
            raise PersistenceError(f"Failed to {operation.replace('_', ' ')}: {str(e)}", operation=operation)
