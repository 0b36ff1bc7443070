"""Task Dispatcher: runs the tasks attached to a node through an action executor."""

from datetime import datetime
from typing import List

from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from ..actions.base import ActionExecutor
from ..models.core import TaskOutcome, TaskStatusEnum
from ..storage.models import NodeTaskModel, TaskModel
from .exceptions import DispatchError, NotFoundError, PersistenceError
from .identifiers import parse_id
from .logging import get_logger

logger = get_logger(__name__)


class TaskDispatcher:
    """Invokes node tasks and records each outcome on its binding.

    A single call is a single attempt; retries are decided by the caller.
    """

    def __init__(self, db_session: Session, action_executor: ActionExecutor):
        self._db = db_session
        self.action_executor = action_executor

    def node_task_ids(self, node_id) -> List[str]:
        """Live bindings of a node in execution order."""
        try:
            rows = (
                self._db.query(NodeTaskModel.id)
                .filter(NodeTaskModel.node_id == parse_id(node_id), NodeTaskModel.deleted_at.is_(None))
                .order_by(NodeTaskModel.order, NodeTaskModel.created_at)
                .all()
            )
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load node tasks: {str(e)}", operation="node_task_ids")
        return [row.id for row in rows]

    def run_tasks(self, node_id) -> List[TaskOutcome]:
        """
        Run every task of a node once, in order.

        A failing task does not stop the tasks after it.

        Returns:
            List[TaskOutcome]: One outcome per binding, in execution order
        """
        outcomes = [self.run_task(node_task_id) for node_task_id in self.node_task_ids(node_id)]
        failed = sum(1 for outcome in outcomes if not outcome.succeeded)
        logger.info(f"Ran {len(outcomes)} task(s) for node {node_id}, {failed} failed")
        return outcomes

    def run_task(self, node_task_id) -> TaskOutcome:
        """
        Invoke one binding's action and persist the outcome.

        Transport failures are recorded as a failed outcome rather than raised.

        Raises:
            NotFoundError: If the binding or its task does not exist
            PersistenceError: If the outcome cannot be saved
        """
        binding = self._get_binding(parse_id(node_task_id, "node_task"))
        task = (
            self._db.query(TaskModel)
            .filter(TaskModel.id == binding.task_id, TaskModel.deleted_at.is_(None))
            .first()
        )
        if task is None:
            raise NotFoundError(
                f"Task with ID '{binding.task_id}' not found",
                entity="task", entity_id=binding.task_id
            )

        if binding.status != TaskStatusEnum.PENDING.value:
            binding.retry_count = (binding.retry_count or 0) + 1

        try:
            result = self.action_executor.invoke(task.method, task.action, task.params or {})
        except DispatchError as e:
            logger.warning(f"Task {task.id} of node {binding.node_id} could not be dispatched: {e.message}")
            binding.status = TaskStatusEnum.FAILED.value
            binding.status_code = e.status_code
            binding.response = None
            binding.error_message = e.message
        else:
            binding.status_code = result.status_code
            binding.response = result.body
            if result.ok:
                binding.status = TaskStatusEnum.SUCCESS.value
                binding.error_message = None
            else:
                binding.status = TaskStatusEnum.FAILED.value
                binding.error_message = f"{task.method} {task.action} returned status {result.status_code}"
                logger.warning(f"Task {task.id} of node {binding.node_id} failed: {binding.error_message}")

        binding.updated_at = datetime.utcnow()
        try:
            self._db.commit()
        except SQLAlchemyError as e:
            self._db.rollback()
            logger.error(f"Database error while recording task outcome: {str(e)}")
            raise PersistenceError(
                f"Failed to record task outcome: {str(e)}",
                operation="run_task", table="node_tasks"
            )

        return TaskOutcome(
            node_task_id=binding.id,
            task_id=binding.task_id,
            order=binding.order,
            status=TaskStatusEnum(binding.status),
            status_code=binding.status_code,
            response=binding.response,
            error_message=binding.error_message,
            retry_count=binding.retry_count
        )

    def _get_binding(self, node_task_id: str) -> NodeTaskModel:
        try:
            binding = (
                self._db.query(NodeTaskModel)
                .filter(NodeTaskModel.id == node_task_id, NodeTaskModel.deleted_at.is_(None))
                .first()
            )
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to retrieve node task: {str(e)}", operation="run_task")
        if binding is None:
            raise NotFoundError(
                f"Node task with ID '{node_task_id}' not found",
                entity="node_task", entity_id=node_task_id
            )
        return binding
