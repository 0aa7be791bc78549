# tests/roots/test_audit.py
import json
import logging

from rootguard.audit import FanOutAuditSink, JsonlAuditSink, LoggingAuditSink
from rootguard.models import SecurityAuditLog, SecurityPolicyKind


def _record(outcome="rejected"):
    return SecurityAuditLog(
        directory="/work/../etc",
        normalized_path="/etc",
        policy=SecurityPolicyKind.STRICT,
        outcome=outcome,
        reason="path matches forbidden pattern '/etc'",
    )


class TestLoggingAuditSink:
    def test_rejection_logged_as_warning(self, caplog):
        with caplog.at_level(logging.INFO, logger="rootguard.audit.records"):
            LoggingAuditSink()(_record())
        [entry] = caplog.records
        assert entry.levelno == logging.WARNING
        assert json.loads(entry.getMessage())["normalizedPath"] == "/etc"

    def test_allowed_logged_as_info(self, caplog):
        with caplog.at_level(logging.INFO, logger="rootguard.audit.records"):
            LoggingAuditSink()(_record("allowed"))
        assert caplog.records[0].levelno == logging.INFO


class TestJsonlAuditSink:
    def test_creates_parent_and_appends(self, workspace):
        sink = JsonlAuditSink(workspace / "a" / "b" / "audit.jsonl")
        sink(_record())
        sink(_record("allowed"))

        lines = sink.log_file.read_text(encoding="utf-8").splitlines()
        assert [json.loads(line)["outcome"] for line in lines] == ["rejected", "allowed"]
        assert json.loads(lines[0])["policy"] == "strict"


class TestFanOutAuditSink:
    def test_failing_sink_does_not_stop_others(self, caplog):
        received = []

        def broken(record):
            raise OSError("disk full")

        FanOutAuditSink([broken, received.append])(_record())

        assert len(received) == 1
        assert "Audit sink" in caplog.text
