"""Action executors that carry out the work behind node tasks."""

from .base import ActionExecutor, ActionResult
from .http import HttpActionExecutor

__all__ = [
    "ActionExecutor",
    "ActionResult",
    "HttpActionExecutor",
]
