"""Tests for request-scoped logging."""

import logging

from hospital_portal.logging_config import RequestContextFilter, configure_logging, request_id_var


class TestRequestContextFilter:
    def make_record(self) -> logging.LogRecord:
        return logging.LogRecord("portal", logging.INFO, __file__, 1, "hello", None, None)

    def test_outside_a_request(self) -> None:
        record = self.make_record()
        assert RequestContextFilter().filter(record) is True
        assert record.request_id == "-"

    def test_inside_a_request(self) -> None:
        token = request_id_var.set("req-42")
        try:
            record = self.make_record()
            RequestContextFilter().filter(record)
        finally:
            request_id_var.reset(token)
        assert record.request_id == "req-42"


class TestConfigureLogging:
    def test_replaces_root_handlers(self) -> None:
        root = logging.getLogger()
        previous_handlers, previous_level = list(root.handlers), root.level
        try:
            configure_logging("debug")
            assert root.level == logging.DEBUG
            assert len(root.handlers) == 1
            assert any(isinstance(f, RequestContextFilter) for f in root.handlers[0].filters)
            assert logging.getLogger("httpx").level == logging.WARNING
        finally:
            root.handlers = previous_handlers
            root.setLevel(previous_level)
