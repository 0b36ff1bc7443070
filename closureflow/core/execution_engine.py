"""Execution Engine: walks a workflow's closure and runs ready nodes."""

import threading
import time
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from ..actions.base import ActionExecutor
from ..models.core import (
    ExecutionLogEntry, LogStatusEnum, Node, NodeExecutionResult, ROLLBACK_MESSAGE,
    TaskOutcome, WorkflowRunResult, WorkflowStatusEnum
)
from ..storage.database import Database
from .dependency_resolver import DependencyResolver
from .error_recovery import RetryConfig
from .exceptions import (
    CycleError, ExecutionTimeoutError, NotFoundError, ValidationError, WorkflowEngineError
)
from .execution_log import ExecutionLog
from .graph_store import GraphStore
from .identifiers import parse_id
from .logging import ErrorRecoveryLogger, get_logger, logging_context
from .task_dispatcher import TaskDispatcher
from .workflow_store import WorkflowStore

logger = get_logger(__name__)


class RunContext:
    """Stores and bookkeeping for a single workflow run."""

    def __init__(self, db: Session, workflow_id: str, action_executor: ActionExecutor,
                 deadline: Optional[float]):
        self.db = db
        self.workflow_id = workflow_id
        self.graph = GraphStore(db)
        self.workflows = WorkflowStore(db)
        self.log = ExecutionLog(db)
        self.resolver = DependencyResolver(self.graph, self.log)
        self.dispatcher = TaskDispatcher(db, action_executor)
        self.deadline = deadline
        self.deferred: List[Node] = []
        self.result = WorkflowRunResult(
            workflow_id=workflow_id,
            status=WorkflowStatusEnum.RUNNING,
            started_at=datetime.utcnow()
        )


class ExecutionEngine:
    """Runs workflows one node at a time, in dependency order.

    Readiness is decided from the execution log alone, so a workflow that
    failed can be executed again and resumes after the nodes that already
    succeeded. Runs of the same workflow within one process are serialised.
    """

    def __init__(self, database: Database, action_executor: ActionExecutor,
                 retry_config: Optional[RetryConfig] = None,
                 execution_timeout: Optional[float] = None,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], None] = time.sleep):
        """Initialize the execution engine.

        Args:
            database: Store handle; each run opens its own session from it
            action_executor: Invokes the actions behind node tasks
            retry_config: Retry policy for failed tasks, defaults to ``RetryConfig()``
            execution_timeout: Seconds a single run may take, ``None`` for no limit
            clock: Monotonic clock used for the deadline
            sleep: Used for backoff between task attempts
        """
        self.database = database
        self.action_executor = action_executor
        self.retry_config = retry_config or RetryConfig()
        self.execution_timeout = execution_timeout
        self._clock = clock
        self._sleep = sleep
        self.recovery_logger = ErrorRecoveryLogger("execution_engine")

        # workflow id -> [lock, number of runs holding or waiting on it]
        self._workflow_locks: Dict[str, list] = {}
        self._lock_manager = threading.Lock()

    @classmethod
    def from_config(cls, database: Database, action_executor: ActionExecutor, config) -> 'ExecutionEngine':
        return cls(
            database,
            action_executor,
            retry_config=RetryConfig.from_config(config),
            execution_timeout=config.execution_timeout
        )

    def execute_workflow(self, workflow_id) -> WorkflowRunResult:
        """
        Run every node reachable from the workflow's starting nodes.

        Args:
            workflow_id: Workflow to run

        Returns:
            WorkflowRunResult: ``completed`` or ``failed`` with the nodes involved

        Raises:
            NotFoundError: If the workflow or its starting nodes do not exist
            ValidationError: If the workflow is already running
            CycleError: If the reachable graph contains a cycle
            ExecutionTimeoutError: If the run exceeds ``execution_timeout``
            PersistenceError: If the store fails mid-run
        """
        workflow_id = parse_id(workflow_id, "workflow")
        with self._workflow_lock(workflow_id):
            with self.database.session() as db, logging_context(workflow_id=workflow_id):
                deadline = None
                if self.execution_timeout:
                    deadline = self._clock() + self.execution_timeout
                ctx = RunContext(db, workflow_id, self.action_executor, deadline)
                return self._run(ctx)

    def rollback_node(self, node_id, workflow_id=None) -> ExecutionLogEntry:
        """
        Record that a node's execution was rolled back.

        Only the log changes; task side effects are not undone. Descendants
        stop being ready until the node succeeds again.

        Args:
            node_id: Node to roll back
            workflow_id: Workflow of the entry, defaults to that of the node's latest entry

        Raises:
            NotFoundError: If the node or workflow is missing, or no workflow is
                given and the node was never executed in one
        """
        with self.database.session() as db:
            graph = GraphStore(db)
            log = ExecutionLog(db)
            node = graph.get_node(node_id)
            if workflow_id is None:
                latest = log.latest_for_node(node.id)
                if latest is None or latest.workflow_id is None:
                    raise NotFoundError(
                        f"Node {node.id} has no execution in any workflow to roll back",
                        entity="execution_log",
                        entity_id=node.id
                    )
                workflow_id = latest.workflow_id
            else:
                WorkflowStore(db).get_workflow(workflow_id)
            entry = log.append(workflow_id, node.id, LogStatusEnum.ROLLBACK, ROLLBACK_MESSAGE)

        logger.info(f"Rolled back node {node.id} in workflow {workflow_id}")
        return entry

    def get_execution_logs(self, workflow_id) -> List[ExecutionLogEntry]:
        """Chronological log entries of a workflow."""
        with self.database.session() as db:
            workflow = WorkflowStore(db).get_workflow(workflow_id)
            return ExecutionLog(db).entries_for_workflow(workflow.id)

    def _run(self, ctx: RunContext) -> WorkflowRunResult:
        workflow = ctx.workflows.get_workflow(ctx.workflow_id)
        if workflow.status == WorkflowStatusEnum.RUNNING:
            raise ValidationError(f"Workflow {workflow.id} is already running", field="status")

        starting_nodes = ctx.workflows.get_starting_nodes(ctx.workflow_id)
        try:
            for node in starting_nodes:
                ctx.graph.validate_acyclic(node.id)
        except CycleError:
            self._mark_failed(ctx)
            raise

        ctx.workflows.set_status(ctx.workflow_id, WorkflowStatusEnum.RUNNING)
        logger.info(f"Starting workflow '{workflow.name}' from {len(starting_nodes)} starting node(s)")

        try:
            failed_node = self._walk(ctx, self._walk_order(ctx.graph, starting_nodes))
        except Exception:
            self._mark_failed(ctx)
            raise

        result = ctx.result
        result.deferred_nodes = [node.id for node in ctx.deferred]
        if failed_node is not None:
            result.status = WorkflowStatusEnum.FAILED
            result.failed_node = failed_node.id
            result.message = f"Node '{failed_node.title}' failed"
        elif ctx.deferred:
            result.status = WorkflowStatusEnum.FAILED
            result.message = (
                f"{len(ctx.deferred)} node(s) never became ready: "
                f"{', '.join(node.title for node in ctx.deferred)}"
            )
        else:
            result.status = WorkflowStatusEnum.COMPLETED
            result.message = f"Executed {len(result.executed_nodes)} node(s), skipped {len(result.skipped_nodes)}"

        ctx.workflows.set_status(ctx.workflow_id, result.status)
        result.completed_at = datetime.utcnow()
        log = logger.info if result.status == WorkflowStatusEnum.COMPLETED else logger.warning
        log(f"Workflow {ctx.workflow_id} {result.status.value}: {result.message}")
        return result

    def _walk_order(self, graph: GraphStore, starting_nodes: List[Node]) -> List[Node]:
        """Starting nodes, then each one's descendants by depth, each node once."""
        order = []
        seen = set()
        candidates = list(starting_nodes)
        for node in starting_nodes:
            candidates.extend(graph.get_descendants(node.id))
        for node in candidates:
            if node.id not in seen:
                seen.add(node.id)
                order.append(node)
        return order

    def _walk(self, ctx: RunContext, order: List[Node]) -> Optional[Node]:
        """Visit nodes in order, retrying deferred ones as parents complete.

        Returns:
            The node that failed, or ``None`` when no node failed
        """
        for node in order:
            if not self._visit(ctx, node):
                return node
            while True:
                ready = next(
                    (n for n in ctx.deferred if ctx.resolver.all_parents_completed(n.id, ctx.workflow_id)),
                    None
                )
                if ready is None:
                    break
                ctx.deferred.remove(ready)
                if not self._visit(ctx, ready):
                    return ready
        return None

    def _visit(self, ctx: RunContext, node: Node) -> bool:
        """Skip, defer or execute one node. Returns False if it failed."""
        if ctx.log.has_succeeded(node.id, ctx.workflow_id):
            logger.debug(f"Skipping node {node.id}: already succeeded")
            ctx.result.skipped_nodes.append(node.id)
            return True

        if not ctx.resolver.all_parents_completed(node.id, ctx.workflow_id):
            logger.debug(f"Deferring node {node.id}: parents not completed")
            ctx.deferred.append(node)
            return True

        self._check_deadline(ctx)
        with logging_context(node_id=node.id):
            execution = self._execute_node(ctx, node)
        ctx.log.append(ctx.workflow_id, node.id, execution.status, execution.message)
        ctx.result.executed_nodes.append(node.id)
        return execution.status == LogStatusEnum.SUCCESS

    def _execute_node(self, ctx: RunContext, node: Node) -> NodeExecutionResult:
        """Run all tasks of a node; the node succeeds only if every task does."""
        outcomes = [
            self._run_with_retry(ctx, node, node_task_id)
            for node_task_id in ctx.dispatcher.node_task_ids(node.id)
        ]
        failed = [outcome for outcome in outcomes if not outcome.succeeded]

        if failed:
            reasons = "; ".join(outcome.error_message or "unknown error" for outcome in failed)
            message = f"{len(failed)} of {len(outcomes)} task(s) failed: {reasons}"
            logger.warning(f"Node '{node.title}' failed: {message}")
            status = LogStatusEnum.FAILED
        else:
            message = f"Node '{node.title}' executed successfully ({len(outcomes)} task(s))"
            logger.info(message)
            status = LogStatusEnum.SUCCESS

        return NodeExecutionResult(node_id=node.id, status=status, message=message, task_outcomes=outcomes)

    def _run_with_retry(self, ctx: RunContext, node: Node, node_task_id: str) -> TaskOutcome:
        operation = f"task {node_task_id} of node {node.id}"
        attempt = 1
        outcome = ctx.dispatcher.run_task(node_task_id)
        while not outcome.succeeded and self.retry_config.should_retry(outcome.status_code, attempt):
            self.recovery_logger.log_recovery_attempt(
                operation, outcome.error_message, attempt, self.retry_config.max_attempts
            )
            self._check_deadline(ctx)
            self._sleep(self.retry_config.get_delay(attempt))
            attempt += 1
            outcome = ctx.dispatcher.run_task(node_task_id)

        if attempt > 1:
            if outcome.succeeded:
                self.recovery_logger.log_recovery_success(operation, attempt)
            else:
                self.recovery_logger.log_recovery_failure(operation, outcome.error_message, attempt)
        return outcome

    def _check_deadline(self, ctx: RunContext) -> None:
        if ctx.deadline is not None and self._clock() > ctx.deadline:
            raise ExecutionTimeoutError(
                f"Workflow {ctx.workflow_id} exceeded its execution timeout of {self.execution_timeout}s",
                workflow_id=ctx.workflow_id,
                timeout=self.execution_timeout
            )

    def _mark_failed(self, ctx: RunContext) -> None:
        """Best effort: move the workflow to ``failed`` through ``running``."""
        ctx.db.rollback()
        try:
            current = ctx.workflows.get_workflow(ctx.workflow_id).status
            if current == WorkflowStatusEnum.FAILED:
                return
            if current != WorkflowStatusEnum.RUNNING:
                ctx.workflows.set_status(ctx.workflow_id, WorkflowStatusEnum.RUNNING)
            ctx.workflows.set_status(ctx.workflow_id, WorkflowStatusEnum.FAILED)
        except WorkflowEngineError as e:
            logger.error(f"Could not mark workflow {ctx.workflow_id} as failed: {e.message}")

    @contextmanager
    def _workflow_lock(self, workflow_id: str):
        """Hold the lock serialising runs of one workflow.

        The lock is dropped once no run holds or waits on it.
        """
        with self._lock_manager:
            entry = self._workflow_locks.setdefault(workflow_id, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._lock_manager:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._workflow_locks[workflow_id]
