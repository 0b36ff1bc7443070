"""Pytest configuration and fixtures."""

import pytest

from closureflow.actions.base import ActionResult
from closureflow.core.dependency_resolver import DependencyResolver
from closureflow.core.error_recovery import RetryConfig
from closureflow.core.execution_engine import ExecutionEngine
from closureflow.core.execution_log import ExecutionLog
from closureflow.core.graph_store import GraphStore
from closureflow.core.task_registry import TaskRegistry
from closureflow.core.workflow_store import WorkflowStore
from closureflow.models.core import NodeType
from closureflow.storage.database import Database


class FakeActionExecutor:
    """Answers invocations from a per-action script of status codes.

    Each entry of a script is consumed once, except the last which repeats.
    An exception in the script is raised instead of returning a result.
    """

    def __init__(self, scripts=None, default_status=200):
        self.scripts = {action: list(codes) for action, codes in (scripts or {}).items()}
        self.default_status = default_status
        self.calls = []

    def invoke(self, method, action, params):
        self.calls.append((method, action, params))
        script = self.scripts.get(action)
        if script:
            outcome = script.pop(0) if len(script) > 1 else script[0]
        else:
            outcome = self.default_status
        if isinstance(outcome, Exception):
            raise outcome
        return ActionResult(status_code=outcome, body={"action": action})

    def calls_for(self, action):
        return [call for call in self.calls if call[1] == action]


@pytest.fixture
def database():
    """In-memory database shared by every session of a test."""
    db = Database.from_url("sqlite:///:memory:")
    db.create_tables()
    yield db
    db.drop_tables()
    db.dispose()


@pytest.fixture
def session(database):
    db = database.create_session()
    yield db
    db.close()


@pytest.fixture
def graph_store(session):
    return GraphStore(session)


@pytest.fixture
def execution_log(session):
    return ExecutionLog(session)


@pytest.fixture
def resolver(graph_store, execution_log):
    return DependencyResolver(graph_store, execution_log)


@pytest.fixture
def task_registry(session):
    return TaskRegistry(session)


@pytest.fixture
def workflow_store(session):
    return WorkflowStore(session)


@pytest.fixture
def executor():
    return FakeActionExecutor()


@pytest.fixture
def engine(database, executor):
    """Engine without retries and without real sleeping."""
    return ExecutionEngine(database, executor, retry_config=RetryConfig(max_attempts=1), sleep=lambda _: None)


@pytest.fixture
def linear_workflow(graph_store, task_registry, workflow_store):
    """Start -> A -> End, with one task on A, bound from Start."""
    start = graph_store.create_node("Start", NodeType.START)
    a = graph_store.create_node("A", NodeType.TASK)
    end = graph_store.create_node("End", NodeType.END)
    graph_store.add_relationship(start, a)
    graph_store.add_relationship(a, end)

    task_id = task_registry.create_task("Call A", method="POST", action="http://actions.test/a", params={"x": 1})
    task_registry.attach_task(a, task_id, 0)

    workflow_id = workflow_store.create_workflow("linear")
    workflow_store.create_workflow_starting_node(workflow_id, start)
    return {"workflow": workflow_id, "start": start, "a": a, "end": end, "task": task_id}


@pytest.fixture
def make_executor():
    """Factory for scripted executors: ``make_executor({action: [503, 200]})``."""
    return FakeActionExecutor
