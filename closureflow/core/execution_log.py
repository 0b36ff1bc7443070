"""Append-only execution log: the ground truth for dependency readiness."""

from datetime import datetime
from typing import List, Optional, Union

from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from ..models.core import ExecutionLogEntry, LogStatusEnum
from ..storage.models import WorkflowLogModel
from .exceptions import PersistenceError, ValidationError
from .identifiers import parse_id
from .logging import get_logger

logger = get_logger(__name__)


class ExecutionLog:
    """Records node execution attempts.

    Entries are never updated or deleted. "Latest" always means the highest
    ``(executed_at, id)`` pair, so entries written within the same clock tick
    still have a total order.
    """

    def __init__(self, db_session: Session):
        self._db = db_session

    def append(self, workflow_id: Optional[str], node_id: str,
               status: Union[LogStatusEnum, str], message: str) -> ExecutionLogEntry:
        """
        Append an entry for a node.

        Args:
            workflow_id: Run the entry belongs to, ``None`` for out-of-run actions
            node_id: Node the entry describes
            status: ``success``, ``failed`` or ``rollback``
            message: Human readable outcome

        Raises:
            ValidationError: If the status is unknown
            PersistenceError: If the insert fails
        """
        try:
            status = LogStatusEnum(status)
        except ValueError:
            raise ValidationError(f"Unknown log status '{status}'", field="status")

        entry = WorkflowLogModel(
            workflow_id=parse_id(workflow_id, "workflow") if workflow_id is not None else None,
            node_id=parse_id(node_id),
            status=status.value,
            message=message,
            executed_at=datetime.utcnow()
        )
        try:
            self._db.add(entry)
            self._db.commit()
        except SQLAlchemyError as e:
            self._db.rollback()
            logger.error(f"Database error while appending log entry: {str(e)}")
            raise PersistenceError(
                f"Failed to append execution log entry: {str(e)}",
                operation="append_log", table="workflow_logs"
            )

        logger.debug(f"Logged {status.value} for node {entry.node_id}: {message}")
        return ExecutionLogEntry.model_validate(entry)

    def latest_for_node(self, node_id, workflow_id=None) -> Optional[ExecutionLogEntry]:
        """Most recent entry for the node, optionally within one workflow."""
        query = self._db.query(WorkflowLogModel).filter(WorkflowLogModel.node_id == parse_id(node_id))
        if workflow_id is not None:
            query = query.filter(WorkflowLogModel.workflow_id == parse_id(workflow_id, "workflow"))
        try:
            model = query.order_by(WorkflowLogModel.executed_at.desc(), WorkflowLogModel.id.desc()).first()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to read execution log: {str(e)}", operation="latest_for_node")
        return ExecutionLogEntry.model_validate(model) if model is not None else None

    def has_succeeded(self, node_id, workflow_id=None) -> bool:
        """Whether the node's most recent entry is a success."""
        latest = self.latest_for_node(node_id, workflow_id)
        return latest is not None and latest.status == LogStatusEnum.SUCCESS

    def entries_for_workflow(self, workflow_id) -> List[ExecutionLogEntry]:
        return self._entries(WorkflowLogModel.workflow_id == parse_id(workflow_id, "workflow"))

    def entries_for_node(self, node_id) -> List[ExecutionLogEntry]:
        return self._entries(WorkflowLogModel.node_id == parse_id(node_id))

    def successes_until(self, entry: ExecutionLogEntry) -> List[ExecutionLogEntry]:
        """Success entries at or before ``entry`` in the same workflow, newest first."""
        query = self._db.query(WorkflowLogModel).filter(
            WorkflowLogModel.status == LogStatusEnum.SUCCESS.value,
            (WorkflowLogModel.executed_at < entry.executed_at)
            | ((WorkflowLogModel.executed_at == entry.executed_at) & (WorkflowLogModel.id <= entry.id))
        )
        if entry.workflow_id is None:
            query = query.filter(WorkflowLogModel.workflow_id.is_(None))
        else:
            query = query.filter(WorkflowLogModel.workflow_id == entry.workflow_id)
        try:
            models = query.order_by(WorkflowLogModel.executed_at.desc(), WorkflowLogModel.id.desc()).all()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to read execution log: {str(e)}", operation="successes_until")
        return [ExecutionLogEntry.model_validate(model) for model in models]

    def _entries(self, condition) -> List[ExecutionLogEntry]:
        try:
            models = (
                self._db.query(WorkflowLogModel)
                .filter(condition)
                .order_by(WorkflowLogModel.executed_at, WorkflowLogModel.id)
                .all()
            )
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to read execution log: {str(e)}", operation="list_entries")
        return [ExecutionLogEntry.model_validate(model) for model in models]
