"""SQLAlchemy database models for the closure-table workflow engine."""

from datetime import datetime
from sqlalchemy import Column, String, DateTime, Text, JSON, Integer, ForeignKey, Index
from sqlalchemy.orm import relationship
from .database import Base


class NodeModel(Base):
    """A unit of workflow topology."""
    __tablename__ = "nodes"

    id = Column(String(36), primary_key=True)
    title = Column(String, nullable=False)
    type = Column(String(32), nullable=False)  # Start, Task, End
    description = Column(Text)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    deleted_at = Column(DateTime)

    node_tasks = relationship("NodeTaskModel", back_populates="node")


class NodeClosureModel(Base):
    """One (ancestor, descendant, depth) row of the transitive closure.

    The integer primary key doubles as insertion order for deterministic
    traversal.
    """
    __tablename__ = "node_closure"

    id = Column(Integer, primary_key=True, autoincrement=True)
    ancestor = Column(String(36), ForeignKey("nodes.id"), nullable=False)
    descendant = Column(String(36), ForeignKey("nodes.id"), nullable=False)
    depth = Column(Integer, nullable=False)

    __table_args__ = (
        Index("idx_node_closure_ancestor_depth", "ancestor", "depth"),
        Index("idx_node_closure_descendant_depth", "descendant", "depth"),
    )


class WorkflowModel(Base):
    """A named workflow and the status of its latest run."""
    __tablename__ = "workflows"

    id = Column(String(36), primary_key=True)
    name = Column(String, nullable=False)
    description = Column(Text)
    status = Column(String(16), nullable=False)  # pending, running, completed, failed
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    deleted_at = Column(DateTime)

    starting_nodes = relationship(
        "WorkflowStartingNodeModel",
        back_populates="workflow",
        order_by="WorkflowStartingNodeModel.id"
    )
    logs = relationship("WorkflowLogModel", back_populates="workflow")


class WorkflowStartingNodeModel(Base):
    """Binding of a workflow to one of its entry nodes."""
    __tablename__ = "workflow_starting_nodes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    workflow_id = Column(String(36), ForeignKey("workflows.id"), nullable=False)
    node_id = Column(String(36), ForeignKey("nodes.id"), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    workflow = relationship("WorkflowModel", back_populates="starting_nodes")
    node = relationship("NodeModel")


class TaskModel(Base):
    """Reusable action definition."""
    __tablename__ = "tasks"

    id = Column(String(36), primary_key=True)
    title = Column(String, nullable=False)
    type = Column(String(64))
    method = Column(String(10), nullable=False)
    action = Column(Text, nullable=False)
    params = Column(JSON)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    deleted_at = Column(DateTime)


class NodeTaskModel(Base):
    """Attachment of a task to a node together with its last outcome."""
    __tablename__ = "node_tasks"

    id = Column(String(36), primary_key=True)
    node_id = Column(String(36), ForeignKey("nodes.id"), nullable=False)
    task_id = Column(String(36), ForeignKey("tasks.id"), nullable=False)
    order = Column(Integer, nullable=False)
    status = Column(String(16), nullable=False)  # pending, success, failed
    retry_count = Column(Integer, default=0, nullable=False)
    status_code = Column(Integer)
    response = Column(JSON)
    error_message = Column(Text)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    deleted_at = Column(DateTime)

    node = relationship("NodeModel", back_populates="node_tasks")
    task = relationship("TaskModel")

    __table_args__ = (
        Index("idx_node_tasks_node_order", "node_id", "order"),
    )


class WorkflowLogModel(Base):
    """Append-only record of a node execution attempt."""
    __tablename__ = "workflow_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    workflow_id = Column(String(36), ForeignKey("workflows.id"))
    node_id = Column(String(36), ForeignKey("nodes.id"), nullable=False)
    status = Column(String(16), nullable=False)  # success, failed, rollback
    message = Column(Text, nullable=False)
    executed_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    workflow = relationship("WorkflowModel", back_populates="logs")
    node = relationship("NodeModel")

    __table_args__ = (
        Index("idx_workflow_logs_node_executed", "node_id", "executed_at"),
        Index("idx_workflow_logs_workflow_executed", "workflow_id", "executed_at"),
    )
