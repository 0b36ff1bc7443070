"""Tests for structured logging and logging context."""

import json
import logging
import sys

import pytest

from closureflow.core.exceptions import ValidationError
from closureflow.core.identifiers import new_id, parse_id
from closureflow.core.logging import (
    StructuredFormatter,
    WorkflowContextFilter,
    clear_logging_context,
    logging_context,
    _context_filter,
)


def make_record(message="hello", **extra):
    record = logging.LogRecord("closureflow.core.test", logging.INFO, __file__, 10, message, None, None)
    if extra:
        record.extra_fields = extra
    return record


class TestStructuredFormatter:
    def test_emits_json_with_extra_fields(self):
        payload = json.loads(StructuredFormatter().format(make_record(workflow_id="wf-1")))
        assert payload["message"] == "hello"
        assert payload["level"] == "INFO"
        assert payload["logger"] == "closureflow.core.test"
        assert payload["workflow_id"] == "wf-1"

    def test_includes_exception(self):
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = logging.LogRecord("x", logging.ERROR, __file__, 1, "failed", None, sys.exc_info())

        payload = json.loads(StructuredFormatter().format(record))
        assert payload["exception"]["type"] == "RuntimeError"
        assert payload["exception"]["message"] == "boom"


class TestLoggingContext:
    def test_filter_stamps_context(self):
        context_filter = WorkflowContextFilter()
        context_filter.set_context(node_id="n-1")
        record = make_record()

        assert context_filter.filter(record)
        assert record.extra_fields == {"node_id": "n-1"}

    def test_clear_specific_keys(self):
        context_filter = WorkflowContextFilter()
        context_filter.set_context(node_id="n-1", workflow_id="wf-1")
        context_filter.clear_context("node_id")

        record = make_record()
        context_filter.filter(record)
        assert record.extra_fields == {"workflow_id": "wf-1"}

    def test_context_manager_scopes_fields(self):
        clear_logging_context()
        with logging_context(workflow_id="wf-2"):
            record = make_record()
            _context_filter.filter(record)
            assert record.extra_fields["workflow_id"] == "wf-2"

        record = make_record()
        _context_filter.filter(record)
        assert "workflow_id" not in record.extra_fields


class TestIdentifiers:
    def test_parse_id_normalises_case(self):
        node_id = new_id()
        assert parse_id(node_id.upper()) == node_id

    def test_parse_id_rejects_garbage(self):
        with pytest.raises(ValidationError):
            parse_id("nope", entity="workflow")
