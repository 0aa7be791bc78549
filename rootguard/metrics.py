"""Timing records for roots operations."""

import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

METRICS_HISTORY_SIZE = 100
DEFAULT_METRICS_LIMIT = 10


class OperationType(str, Enum):
    ROOTS_CHANGED = "roots_changed"
    DIRECTORY_VALIDATION = "directory_validation"
    CONFIG_UPDATE = "config_update"


@dataclass(frozen=True)
class OperationMetrics:
    """Timing of one completed operation."""

    operation: OperationType
    duration_ms: float
    success: bool
    timestamp: datetime = field(default_factory=datetime.now)
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "operation": self.operation.value,
            "duration_ms": self.duration_ms,
            "success": self.success,
            "timestamp": self.timestamp.isoformat(),
            "metadata": dict(self.metadata),
        }


class MetricsRecorder:
    """Bounded history of OperationMetrics; the oldest entries fall off.

    Usage:
        recorder = MetricsRecorder()
        started = recorder.start()
        ...
        recorder.record(OperationType.CONFIG_UPDATE, started, success=True)
    """

    def __init__(
        self,
        max_entries: int = METRICS_HISTORY_SIZE,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self._clock = clock
        self._history: deque[OperationMetrics] = deque(maxlen=max_entries)
        self._lock = threading.Lock()

    def start(self) -> float:
        return self._clock()

    def elapsed_ms(self, started: float) -> float:
        return max(0.0, (self._clock() - started) * 1000)

    def record(
        self,
        operation: OperationType,
        started: float,
        success: bool,
        **metadata: Any,
    ) -> OperationMetrics:
        """Store the timing of an operation begun at ``started`` (a ``start()`` value)."""
        entry = OperationMetrics(
            operation=operation,
            duration_ms=self.elapsed_ms(started),
            success=success,
            metadata=metadata,
        )
        with self._lock:
            self._history.append(entry)
        return entry

    def recent(
        self,
        limit: int = DEFAULT_METRICS_LIMIT,
        operation: OperationType | None = None,
    ) -> list[OperationMetrics]:
        """Return up to ``limit`` entries, newest first."""
        if limit <= 0:
            return []
        with self._lock:
            entries = list(self._history)
        if operation is not None:
            entries = [e for e in entries if e.operation is operation]
        return entries[::-1][:limit]

    def __len__(self) -> int:
        return len(self._history)
