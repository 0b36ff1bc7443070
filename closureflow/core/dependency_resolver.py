"""Dependency readiness, answered from the closure table and the execution log."""

from typing import List, Optional

from ..models.core import Node
from .exceptions import DependencyNotReadyError, NotFoundError
from .execution_log import ExecutionLog
from .graph_store import GraphStore
from .identifiers import parse_id
from .logging import get_logger

logger = get_logger(__name__)


class DependencyResolver:
    """Decides whether a node may run.

    A node is ready once every live immediate predecessor that gates its
    descendants has ``success`` as its most recent log entry. Nodes without
    predecessors are always ready. Nothing here waits or polls.
    """

    def __init__(self, graph_store: GraphStore, execution_log: ExecutionLog):
        self.graph_store = graph_store
        self.execution_log = execution_log

    def pending_parents(self, node_id, workflow_id: Optional[str] = None) -> List[str]:
        """Ids of the immediate predecessors that have not succeeded yet."""
        pending = []
        for parent in self.graph_store.get_immediate_ancestors(node_id):
            if not parent.type.gates_descendants:
                continue
            if not self.execution_log.has_succeeded(parent.id, workflow_id):
                pending.append(parent.id)
        return pending

    def all_parents_completed(self, node_id, workflow_id: Optional[str] = None) -> bool:
        """
        Check whether all immediate predecessors of a node have completed.

        Args:
            node_id: Node to check
            workflow_id: Only consider log entries of this workflow when given

        Returns:
            bool: True if the node may run
        """
        pending = self.pending_parents(node_id, workflow_id)
        if pending:
            logger.debug(f"Node {node_id} waiting on {len(pending)} parent(s): {', '.join(pending)}")
        return not pending

    def require_parents_completed(self, node_id, workflow_id: Optional[str] = None) -> None:
        """
        Raises:
            DependencyNotReadyError: If any predecessor has not succeeded
        """
        pending = self.pending_parents(node_id, workflow_id)
        if pending:
            raise DependencyNotReadyError(
                f"Node {node_id} has {len(pending)} incomplete parent(s)",
                node_id=str(node_id),
                pending_parents=pending
            )

    def get_executed_nodes(self, current_node_id) -> List[Node]:
        """
        Nodes that had succeeded by the time of the current node's latest entry.

        Only entries of the same workflow as that entry count. The result is
        newest first and lists each node once.

        Raises:
            NotFoundError: If the current node has never been logged
        """
        node_id = parse_id(current_node_id)
        current = self.execution_log.latest_for_node(node_id)
        if current is None:
            raise NotFoundError(
                f"Node {node_id} has no execution log entry",
                entity="workflow_log", entity_id=node_id
            )

        nodes = []
        seen = set()
        for entry in self.execution_log.successes_until(current):
            if entry.node_id in seen:
                continue
            seen.add(entry.node_id)
            try:
                nodes.append(self.graph_store.get_node(entry.node_id))
            except NotFoundError:
                logger.debug(f"Executed node {entry.node_id} has since been deleted")
        return nodes
