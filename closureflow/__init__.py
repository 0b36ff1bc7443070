"""ClosureFlow: a closure-table DAG workflow engine."""

__version__ = "1.0.0"
