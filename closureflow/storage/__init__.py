"""Database models and storage layer."""

from .database import Base, Database, create_database_engine
from .models import (
    NodeModel,
    NodeClosureModel,
    WorkflowModel,
    WorkflowStartingNodeModel,
    TaskModel,
    NodeTaskModel,
    WorkflowLogModel,
)

__all__ = [
    "Base",
    "Database",
    "create_database_engine",
    "NodeModel",
    "NodeClosureModel",
    "WorkflowModel",
    "WorkflowStartingNodeModel",
    "TaskModel",
    "NodeTaskModel",
    "WorkflowLogModel",
]
