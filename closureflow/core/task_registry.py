"""Task Registry component for reusable actions and their node attachments."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from ..models.core import NodeTask, Task, TaskStatusEnum
from ..storage.models import NodeModel, NodeTaskModel, TaskModel
from .exceptions import NotFoundError, PersistenceError, ValidationError
from .identifiers import new_id, parse_id
from .logging import get_logger

logger = get_logger(__name__)


HTTP_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS")


class TaskRegistry:
    """Registry of reusable tasks that workflow nodes run through the action executor."""

    def __init__(self, db_session: Session):
        self._db = db_session

    def create_task(self, title: str, method: str, action: str,
                    params: Optional[Dict[str, Any]] = None,
                    task_type: Optional[str] = None) -> str:
        """Register a reusable action.

        Args:
            title: Human readable name
            method: HTTP verb used to invoke the action
            action: Absolute URL, or a path relative to the configured base URL
            params: Parameters sent with every invocation
            task_type: Free-form classification

        Returns:
            str: The new task id

        Raises:
            ValidationError: If title or action is empty or the method is unknown
        """
        if not title or not title.strip():
            raise ValidationError("Task title cannot be empty", field="title")
        if not action or not action.strip():
            raise ValidationError("Task action cannot be empty", field="action")
        verb = (method or "").strip().upper()
        if verb not in HTTP_METHODS:
            raise ValidationError(
                f"Unsupported HTTP method '{method}'. Expected one of: {', '.join(HTTP_METHODS)}",
                field="method"
            )
        if params is not None and not isinstance(params, dict):
            raise ValidationError("Task params must be a mapping", field="params")

        task_id = new_id()
        now = datetime.utcnow()
        self._db.add(TaskModel(
            id=task_id,
            title=title.strip(),
            type=task_type,
            method=verb,
            action=action.strip(),
            params=params or {},
            created_at=now,
            updated_at=now
        ))
        self._commit("create_task")
        logger.info(f"Registered task '{title.strip()}' ({verb} {action.strip()}) with ID: {task_id}")
        return task_id

    def get_task(self, task_id) -> Task:
        return Task.model_validate(self._get_live_task(parse_id(task_id, "task")))

    def list_tasks(self) -> List[Task]:
        try:
            models = (
                self._db.query(TaskModel)
                .filter(TaskModel.deleted_at.is_(None))
                .order_by(TaskModel.created_at, TaskModel.id)
                .all()
            )
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to list tasks: {str(e)}", operation="list_tasks")
        return [Task.model_validate(model) for model in models]

    def attach_task(self, node_id, task_id, order: int) -> str:
        """Attach a task to a node at the given position.

        Raises:
            NotFoundError: If the node or the task does not exist
            ValidationError: If the node already has a task at ``order``
        """
        node_id = parse_id(node_id)
        task = self._get_live_task(parse_id(task_id, "task"))
        if order is None or order < 0:
            raise ValidationError("Task order must be a non-negative integer", field="order")

        node = (
            self._db.query(NodeModel)
            .filter(NodeModel.id == node_id, NodeModel.deleted_at.is_(None))
            .first()
        )
        if node is None:
            raise NotFoundError(f"Node with ID '{node_id}' not found", entity="node", entity_id=node_id)

        clash = (
            self._db.query(NodeTaskModel.id)
            .filter(
                NodeTaskModel.node_id == node_id,
                NodeTaskModel.order == order,
                NodeTaskModel.deleted_at.is_(None)
            )
            .first()
        )
        if clash is not None:
            raise ValidationError(f"Node {node_id} already has a task at order {order}", field="order")

        node_task_id = new_id()
        now = datetime.utcnow()
        self._db.add(NodeTaskModel(
            id=node_task_id,
            node_id=node_id,
            task_id=task.id,
            order=order,
            status=TaskStatusEnum.PENDING.value,
            retry_count=0,
            created_at=now,
            updated_at=now
        ))
        self._commit("attach_task")
        logger.info(f"Attached task {task.id} to node {node_id} at order {order}")
        return node_task_id

    def list_node_tasks(self, node_id) -> List[NodeTask]:
        """Live task attachments of a node in execution order."""
        try:
            models = (
                self._db.query(NodeTaskModel)
                .filter(NodeTaskModel.node_id == parse_id(node_id), NodeTaskModel.deleted_at.is_(None))
                .order_by(NodeTaskModel.order, NodeTaskModel.created_at)
                .all()
            )
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to list node tasks: {str(e)}", operation="list_node_tasks")
        return [NodeTask.model_validate(model) for model in models]

    def detach_task(self, node_task_id) -> None:
        node_task_id = parse_id(node_task_id, "node_task")
        model = (
            self._db.query(NodeTaskModel)
            .filter(NodeTaskModel.id == node_task_id, NodeTaskModel.deleted_at.is_(None))
            .first()
        )
        if model is None:
            raise NotFoundError(
                f"Node task with ID '{node_task_id}' not found",
                entity="node_task", entity_id=node_task_id
            )
        model.deleted_at = datetime.utcnow()
        self._commit("detach_task")
        logger.info(f"Detached node task {node_task_id} from node {model.node_id}")

    def _get_live_task(self, task_id: str) -> TaskModel:
        try:
            model = (
                self._db.query(TaskModel)
                .filter(TaskModel.id == task_id, TaskModel.deleted_at.is_(None))
                .first()
            )
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to retrieve task: {str(e)}", operation="get_task")
        if model is None:
            raise NotFoundError(f"Task with ID '{task_id}' not found", entity="task", entity_id=task_id)
        return model

    def _commit(self, operation: str) -> None:
        try:
            self._db.commit()
        except SQLAlchemyError as e:
            self._db.rollback()
            logger.error(f"Database error during {operation}: {str(e)}")
            raise PersistenceError(f"Failed to {operation.replace('_', ' ')}: {str(e)}", operation=operation)
