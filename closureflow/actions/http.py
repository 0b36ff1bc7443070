"""HTTP action executor built on requests."""

from typing import Any, Dict, Optional
from urllib.parse import urljoin

import requests

from ..core.exceptions import DispatchError
from ..core.logging import get_logger
from .base import ActionResult

logger = get_logger(__name__)


QUERY_STRING_METHODS = ("GET", "DELETE", "HEAD", "OPTIONS")


class HttpActionExecutor:
    """Invoke task actions as HTTP requests.

    ``GET``-like verbs send the task params as a query string, everything
    else sends them as a JSON body. Relative actions are resolved against
    ``base_url``.
    """

    def __init__(self, base_url: Optional[str] = None, timeout: float = 30.0,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url
        self.timeout = timeout
        self.session = session or requests.Session()

    @classmethod
    def from_config(cls, config) -> 'HttpActionExecutor':
        return cls(base_url=config.action_base_url, timeout=config.action_timeout)

    def resolve_url(self, action: str) -> str:
        if action.startswith(("http://", "https://")):
            return action
        if not self.base_url:
            raise DispatchError(f"Relative action '{action}' requires a configured base URL")
        return urljoin(self.base_url.rstrip("/") + "/", action.lstrip("/"))

    def invoke(self, method: str, action: str, params: Optional[Dict[str, Any]] = None) -> ActionResult:
        """
        Send the request and decode the response.

        Raises:
            DispatchError: On connection errors, timeouts and other transport failures
        """
        verb = method.upper()
        url = self.resolve_url(action)
        kwargs = {"timeout": self.timeout}
        if params:
            if verb in QUERY_STRING_METHODS:
                kwargs["params"] = params
            else:
                kwargs["json"] = params

        logger.debug(f"Invoking {verb} {url}")
        try:
            response = self.session.request(verb, url, **kwargs)
        except requests.Timeout as e:
            raise DispatchError(f"{verb} {url} timed out after {self.timeout}s: {str(e)}")
        except requests.RequestException as e:
            raise DispatchError(f"{verb} {url} failed: {str(e)}")

        return ActionResult(status_code=response.status_code, body=self._decode(response))

    def close(self) -> None:
        self.session.close()

    @staticmethod
    def _decode(response: requests.Response) -> Any:
        if not response.content:
            return None
        if "json" in response.headers.get("Content-Type", ""):
            try:
                return response.json()
            except ValueError:
                logger.debug("Response declared JSON but could not be decoded")
        return response.text
