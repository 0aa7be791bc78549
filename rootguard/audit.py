# rootguard/audit.py
"""Audit sinks for validation records.

A sink is any callable that accepts a ``SecurityAuditLog``. Records are
written, never read back by the validator.
"""

import json
import logging
import threading
from collections.abc import Callable, Iterable
from pathlib import Path

from rootguard.models import SecurityAuditLog

AuditSink = Callable[[SecurityAuditLog], None]

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("rootguard.audit.records")


class LoggingAuditSink:
    """Write each record as one JSON line to the ``rootguard.audit.records`` logger.

    Accepted directories are logged at INFO, rejections at WARNING.
    """

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or audit_logger

    def __call__(self, record: SecurityAuditLog) -> None:
        level = logging.INFO if record.outcome == "allowed" else logging.WARNING
        self._logger.log(level, json.dumps(record.to_dict(), ensure_ascii=True))


class JsonlAuditSink:
    """Append records to a JSON-lines file.

    Storage format, one object per line:
        {"directory": "...", "normalizedPath": "...", "policy": "strict",
         "outcome": "rejected", "reason": "...", "timestamp": "2026-..."}
    """

    def __init__(self, log_file: Path | str) -> None:
        self._log_file = Path(log_file).expanduser()
        self._lock = threading.Lock()

    @property
    def log_file(self) -> Path:
        return self._log_file

    def __call__(self, record: SecurityAuditLog) -> None:
        line = json.dumps(record.to_dict(), ensure_ascii=True) + "\n"
        with self._lock:
            self._log_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self._log_file, "a", encoding="utf-8") as f:
                f.write(line)


class FanOutAuditSink:
    """Deliver each record to several sinks in order."""

    def __init__(self, sinks: Iterable[AuditSink]) -> None:
        self._sinks = list(sinks)

    def __call__(self, record: SecurityAuditLog) -> None:
        for sink in self._sinks:
            try:
                sink(record)
            except Exception:
                logger.error("Audit sink %r failed", sink, exc_info=True)
