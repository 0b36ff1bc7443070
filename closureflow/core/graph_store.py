"""Graph Store: node identity and the closure table that encodes the DAG."""

from datetime import datetime
from typing import List, Optional, Union

from sqlalchemy import func, select
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from ..models.core import ClosureEntry, Node, NodeType
from ..storage.models import NodeClosureModel, NodeModel
from .exceptions import CycleError, NotFoundError, PersistenceError, ValidationError
from .identifiers import new_id, parse_id
from .logging import get_logger

logger = get_logger(__name__)


class GraphStore:
    """Owns nodes and the consistency of their closure entries.

    Every node has exactly one reflexive ``(node, node, 0)`` entry, written when
    the node is created. Each ``(ancestor, descendant)`` pair is stored once,
    with the length of the shortest path between them as its depth.
    ``add_relationship`` is the only place the closure is extended.
    """

    def __init__(self, db_session: Session):
        self._db = db_session

    def create_node(self, title: str, node_type: Union[NodeType, str],
                    description: Optional[str] = None) -> str:
        """
        Create a node together with its reflexive closure entry.

        Args:
            title: Node title, must not be blank
            node_type: One of the NodeType members (or its value)
            description: Optional description

        Returns:
            str: The new node id

        Raises:
            ValidationError: If title or type is empty or the type is unknown
            PersistenceError: If the insert fails
        """
        if not title or not title.strip():
            raise ValidationError("Node title cannot be empty", field="title")
        resolved_type = self._resolve_type(node_type)

        node_id = new_id()
        try:
            self._db.add(NodeModel(
                id=node_id,
                title=title.strip(),
                type=resolved_type.value,
                description=description,
                created_at=datetime.utcnow()
            ))
            self._db.flush()
            self._db.add(NodeClosureModel(ancestor=node_id, descendant=node_id, depth=0))
            self._db.commit()
        except SQLAlchemyError as e:
            self._db.rollback()
            logger.error(f"Database error while creating node: {str(e)}")
            raise PersistenceError(f"Failed to create node: {str(e)}", operation="create_node", table="nodes")

        logger.info(f"Created {resolved_type.value} node '{title.strip()}' with ID: {node_id}")
        return node_id

    def get_node(self, node_id) -> Node:
        """
        Retrieve a live node.

        Raises:
            ValidationError: If the id is not a UUID
            NotFoundError: If the node is missing or soft-deleted
        """
        return Node.model_validate(self._get_live_model(parse_id(node_id)))

    def update_node(self, node_id, title: Optional[str] = None,
                    description: Optional[str] = None) -> Node:
        """Update mutable node metadata. Identity and type never change."""
        model = self._get_live_model(parse_id(node_id))
        if title is not None:
            if not title.strip():
                raise ValidationError("Node title cannot be empty", field="title")
            model.title = title.strip()
        if description is not None:
            model.description = description
        model.updated_at = datetime.utcnow()
        self._commit("update_node")
        return Node.model_validate(model)

    def delete_node(self, node_id) -> None:
        """Soft-delete a node; its closure entries stay for historical runs."""
        model = self._get_live_model(parse_id(node_id))
        model.deleted_at = datetime.utcnow()
        self._commit("delete_node")
        logger.info(f"Soft-deleted node {model.id}")

    def add_relationship(self, ancestor_id, descendant_id) -> None:
        """
        Add the edge ``ancestor -> descendant`` and extend the closure.

        For every ancestor ``p`` of ``ancestor_id`` (itself included) and every
        descendant ``c`` of ``descendant_id`` (itself included) the pair
        ``(p, c)`` gets depth ``depth(p, ancestor) + depth(descendant, c) + 1``,
        unless a shorter path is already recorded. All rows are written in one
        transaction.

        Raises:
            ValidationError: If either id is malformed
            NotFoundError: If either node is missing
            CycleError: If the edge would make a node reachable from itself
            PersistenceError: If the write fails; nothing is written
        """
        ancestor = parse_id(ancestor_id)
        descendant = parse_id(descendant_id)

        if ancestor == descendant:
            raise CycleError(
                f"Node {ancestor} cannot be its own ancestor",
                ancestor_id=ancestor, descendant_id=descendant
            )

        self._get_live_model(ancestor)
        self._get_live_model(descendant)

        if self.is_descendant(descendant, ancestor):
            logger.warning(f"Rejected relationship {ancestor} -> {descendant}: would create a cycle")
            raise CycleError(
                f"Cyclic dependency detected: {ancestor} is already a descendant of {descendant}",
                ancestor_id=ancestor, descendant_id=descendant
            )

        try:
            self._ensure_reflexive(ancestor)
            self._ensure_reflexive(descendant)

            upper = self._depth_map(NodeClosureModel.ancestor, NodeClosureModel.descendant == ancestor)
            lower = self._depth_map(NodeClosureModel.descendant, NodeClosureModel.ancestor == descendant)

            existing = {
                (row.ancestor, row.descendant): row
                for row in self._db.query(NodeClosureModel).filter(
                    NodeClosureModel.ancestor.in_([node for node, _ in upper]),
                    NodeClosureModel.descendant.in_([node for node, _ in lower])
                )
            }

            inserted = 0
            for upper_node, upper_depth in upper:
                for lower_node, lower_depth in lower:
                    depth = upper_depth + lower_depth + 1
                    row = existing.get((upper_node, lower_node))
                    if row is None:
                        row = NodeClosureModel(ancestor=upper_node, descendant=lower_node, depth=depth)
                        self._db.add(row)
                        existing[(upper_node, lower_node)] = row
                        inserted += 1
                    elif depth < row.depth:
                        row.depth = depth

            self._db.commit()
        except SQLAlchemyError as e:
            self._db.rollback()
            logger.error(f"Database error while adding relationship: {str(e)}")
            raise PersistenceError(
                f"Failed to add relationship: {str(e)}",
                operation="add_relationship", table="node_closure"
            )

        logger.info(f"Added relationship {ancestor} -> {descendant} ({inserted} closure entries)")

    def is_descendant(self, ancestor_id, descendant_id) -> bool:
        """Whether ``descendant_id`` is reachable from ``ancestor_id`` by at least one edge."""
        ancestor = parse_id(ancestor_id)
        descendant = parse_id(descendant_id)
        try:
            count = (
                self._db.query(func.count(NodeClosureModel.id))
                .filter(
                    NodeClosureModel.ancestor == ancestor,
                    NodeClosureModel.descendant == descendant,
                    NodeClosureModel.depth > 0
                )
                .scalar()
            )
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to query closure: {str(e)}", operation="is_descendant")
        return bool(count)

    def get_descendants(self, ancestor_id, include_self: bool = False) -> List[Node]:
        """Live descendants ordered by depth, then closure insertion order."""
        ancestor = parse_id(ancestor_id)
        self._get_live_model(ancestor)
        return self._related_nodes(
            NodeClosureModel.descendant,
            NodeClosureModel.ancestor == ancestor,
            min_depth=0 if include_self else 1
        )

    def get_ancestors(self, node_id, include_self: bool = False) -> List[Node]:
        """Live ancestors ordered from the closest to the farthest."""
        node = parse_id(node_id)
        self._get_live_model(node)
        return self._related_nodes(
            NodeClosureModel.ancestor,
            NodeClosureModel.descendant == node,
            min_depth=0 if include_self else 1
        )

    def get_immediate_ancestors(self, node_id) -> List[Node]:
        """Live nodes with a direct edge into ``node_id``."""
        node = parse_id(node_id)
        self._get_live_model(node)
        return self._related_nodes(
            NodeClosureModel.ancestor,
            NodeClosureModel.descendant == node,
            min_depth=1, max_depth=1
        )

    def get_immediate_ancestor(self, node_id) -> Node:
        ancestors = self.get_immediate_ancestors(node_id)
        if not ancestors:
            raise NotFoundError(f"Node {node_id} has no immediate ancestor", entity="node", entity_id=str(node_id))
        return ancestors[0]

    def get_immediate_descendants(self, node_id) -> List[Node]:
        """Live nodes with a direct edge from ``node_id``."""
        node = parse_id(node_id)
        self._get_live_model(node)
        return self._related_nodes(
            NodeClosureModel.descendant,
            NodeClosureModel.ancestor == node,
            min_depth=1, max_depth=1
        )

    def get_closure_entries(self, node_id=None) -> List[ClosureEntry]:
        """Closure rows in insertion order, optionally limited to rows touching a node."""
        query = self._db.query(NodeClosureModel)
        if node_id is not None:
            node = parse_id(node_id)
            query = query.filter(
                (NodeClosureModel.ancestor == node) | (NodeClosureModel.descendant == node)
            )
        return [ClosureEntry.model_validate(row) for row in query.order_by(NodeClosureModel.id)]

    def validate_acyclic(self, node_id) -> None:
        """
        Check the closure reachable from ``node_id`` for cycles.

        A node with more than one reflexive entry, or a reflexive entry with a
        positive depth, is reachable from itself.

        Raises:
            CycleError: If such an entry exists for the node or a descendant
        """
        node = parse_id(node_id)
        self._get_live_model(node)

        scope = select(NodeClosureModel.descendant).where(NodeClosureModel.ancestor == node)
        try:
            rows = (
                self._db.query(
                    NodeClosureModel.ancestor,
                    func.count(NodeClosureModel.id),
                    func.max(NodeClosureModel.depth)
                )
                .filter(
                    NodeClosureModel.ancestor == NodeClosureModel.descendant,
                    (NodeClosureModel.ancestor == node) | NodeClosureModel.ancestor.in_(scope)
                )
                .group_by(NodeClosureModel.ancestor)
                .all()
            )
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to validate graph: {str(e)}", operation="validate_acyclic")

        for cyclic_node, count, max_depth in rows:
            if count > 1 or max_depth > 0:
                logger.error(f"Cycle detected at node {cyclic_node} while validating from {node}")
                raise CycleError(
                    "Cyclic dependency detected",
                    ancestor_id=cyclic_node, descendant_id=cyclic_node
                ).add_details(validated_from=node)

    def _resolve_type(self, node_type: Union[NodeType, str]) -> NodeType:
        if isinstance(node_type, NodeType):
            return node_type
        if not node_type or not str(node_type).strip():
            raise ValidationError("Node type cannot be empty", field="type")
        wanted = str(node_type).strip().lower()
        for member in NodeType:
            if member.value.lower() == wanted:
                return member
        raise ValidationError(
            f"Unknown node type '{node_type}'. Expected one of: {', '.join(t.value for t in NodeType)}",
            field="type"
        )

    def _get_live_model(self, node_id: str) -> NodeModel:
        try:
            model = (
                self._db.query(NodeModel)
                .filter(NodeModel.id == node_id, NodeModel.deleted_at.is_(None))
                .first()
            )
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to retrieve node: {str(e)}", operation="get_node", table="nodes")
        if model is None:
            raise NotFoundError(f"Node with ID '{node_id}' not found", entity="node", entity_id=node_id)
        return model

    def _ensure_reflexive(self, node_id: str) -> None:
        exists = (
            self._db.query(NodeClosureModel.id)
            .filter(
                NodeClosureModel.ancestor == node_id,
                NodeClosureModel.descendant == node_id,
                NodeClosureModel.depth == 0
            )
            .first()
        )
        if exists is None:
            self._db.add(NodeClosureModel(ancestor=node_id, descendant=node_id, depth=0))
            self._db.flush()

    def _depth_map(self, column, condition):
        """``[(node_id, shortest depth)]`` for closure rows matching ``condition``."""
        rows = (
            self._db.query(column, func.min(NodeClosureModel.depth))
            .filter(condition)
            .group_by(column)
            .order_by(func.min(NodeClosureModel.depth), func.min(NodeClosureModel.id))
            .all()
        )
        return [(node_id, depth) for node_id, depth in rows]

    def _related_nodes(self, join_column, condition, min_depth: int,
                       max_depth: Optional[int] = None) -> List[Node]:
        try:
            query = (
                self._db.query(NodeModel)
                .join(NodeClosureModel, join_column == NodeModel.id)
                .filter(condition, NodeModel.deleted_at.is_(None), NodeClosureModel.depth >= min_depth)
            )
            if max_depth is not None:
                query = query.filter(NodeClosureModel.depth <= max_depth)
            models = query.order_by(NodeClosureModel.depth, NodeClosureModel.id).all()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to query closure: {str(e)}", operation="related_nodes")

        nodes = []
        seen = set()
        for model in models:
            if model.id not in seen:
                seen.add(model.id)
                nodes.append(Node.model_validate(model))
        return nodes

    def _commit(self, operation: str) -> None:
        try:
            self._db.commit()
        except SQLAlchemyError as e:
            self._db.rollback()
            logger.error(f"Database error during {operation}: {str(e)}")
            raise PersistenceError(f"Failed to {operation.replace('_', ' ')}: {str(e)}", operation=operation)
