"""Tests for the HTTP action executor."""

from unittest.mock import Mock

import pytest
import requests

from closureflow.actions.http import HttpActionExecutor
from closureflow.config import AppConfig
from closureflow.core.exceptions import DispatchError


def make_response(status_code=200, json_body=None, text="", content_type="application/json"):
    response = Mock(spec=requests.Response)
    response.status_code = status_code
    response.headers = {"Content-Type": content_type}
    response.text = text
    if json_body is not None:
        response.content = b"{}"
        response.json.return_value = json_body
    else:
        response.content = text.encode()
        response.json.side_effect = ValueError("no json")
    return response


@pytest.fixture
def http_session():
    session = Mock(spec=requests.Session)
    session.request.return_value = make_response(json_body={"ok": True})
    return session


class TestHttpActionExecutor:
    """Request shaping and response decoding."""

    def test_get_sends_query_string(self, http_session):
        executor = HttpActionExecutor(timeout=3, session=http_session)
        result = executor.invoke("get", "https://svc.test/items", {"page": 2})

        http_session.request.assert_called_once_with("GET", "https://svc.test/items", timeout=3, params={"page": 2})
        assert result.status_code == 200
        assert result.body == {"ok": True}
        assert result.ok

    def test_post_sends_json_body(self, http_session):
        executor = HttpActionExecutor(session=http_session)
        executor.invoke("POST", "https://svc.test/items", {"name": "x"})

        http_session.request.assert_called_once_with("POST", "https://svc.test/items", timeout=30.0, json={"name": "x"})

    def test_delete_sends_query_string(self, http_session):
        HttpActionExecutor(session=http_session).invoke("DELETE", "https://svc.test/items/1", {"force": "1"})
        assert http_session.request.call_args.kwargs["params"] == {"force": "1"}

    def test_relative_action_joined_to_base_url(self, http_session):
        executor = HttpActionExecutor(base_url="https://svc.test/api/", session=http_session)
        executor.invoke("PUT", "/jobs/7", None)

        http_session.request.assert_called_once_with("PUT", "https://svc.test/api/jobs/7", timeout=30.0)

    def test_relative_action_without_base_url(self, http_session):
        with pytest.raises(DispatchError):
            HttpActionExecutor(session=http_session).invoke("GET", "/jobs", None)

    def test_error_status_is_returned_not_raised(self, http_session):
        http_session.request.return_value = make_response(503, text="busy", content_type="text/plain")
        result = HttpActionExecutor(session=http_session).invoke("GET", "https://svc.test/x", None)

        assert result.status_code == 503
        assert result.body == "busy"
        assert not result.ok

    def test_undecodable_json_falls_back_to_text(self, http_session):
        http_session.request.return_value = make_response(200, text="not json")
        result = HttpActionExecutor(session=http_session).invoke("GET", "https://svc.test/x", None)
        assert result.body == "not json"

    @pytest.mark.parametrize("error", [
        requests.ConnectionError("refused"),
        requests.Timeout("slow"),
    ])
    def test_transport_errors_raise_dispatch_error(self, http_session, error):
        http_session.request.side_effect = error
        with pytest.raises(DispatchError):
            HttpActionExecutor(session=http_session).invoke("GET", "https://svc.test/x", None)

    def test_from_config(self):
        executor = HttpActionExecutor.from_config(
            AppConfig(action_base_url="https://svc.test", action_timeout=4.5)
        )
        assert executor.base_url == "https://svc.test"
        assert executor.timeout == 4.5
        executor.close()
