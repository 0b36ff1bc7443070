"""Action executor interface used by the task dispatcher."""

from typing import Any, Dict, Optional, Protocol, runtime_checkable

from pydantic import BaseModel, Field


class ActionResult(BaseModel):
    """Raw outcome of one action invocation."""
    status_code: int = Field(..., description="Status code reported by the action")
    body: Optional[Any] = Field(None, description="Decoded response body")

    @property
    def ok(self) -> bool:
        return self.status_code < 400


@runtime_checkable
class ActionExecutor(Protocol):
    """Anything able to invoke a task's action.

    Implementations raise ``DispatchError`` when the action could not be
    reached at all; a reachable action that reports an error still returns an
    ``ActionResult``.
    """

    def invoke(self, method: str, action: str, params: Optional[Dict[str, Any]]) -> ActionResult:
        ...
