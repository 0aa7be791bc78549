# rootguard/manager.py
"""Roots orchestration.

The manager receives "roots changed" notifications, validates every
declared root and hands the first valid one to the ConfigurationProvider.
Rejections are always reported in the returned result, never raised.
"""

import asyncio
import logging
import os
import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import replace
from typing import Any

from rootguard.metrics import (
    DEFAULT_METRICS_LIMIT,
    MetricsRecorder,
    OperationMetrics,
    OperationType,
)
from rootguard.models import (
    ConfigurationStatus,
    DirectoryInfo,
    RejectionCode,
    RootsNotification,
    RootsValidationResult,
)
from rootguard.provider import ConfigurationProvider
from rootguard.validator import SecurityValidator

logger = logging.getLogger(__name__)


class ChangeRateLimiter:
    """Minimum-interval limiter: at most ``rate`` accepted changes per second."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._last_accepted: float | None = None
        self._lock = threading.Lock()

    def try_acquire(self, rate: float) -> bool:
        with self._lock:
            now = self._clock()
            if self._last_accepted is not None and now - self._last_accepted < 1.0 / rate:
                return False
            self._last_accepted = now
            return True

    def reset(self) -> None:
        with self._lock:
            self._last_accepted = None


def _make_directory(directory: str) -> None:
    os.makedirs(directory, exist_ok=True)


class RootsManager:
    """Apply client root declarations to the configuration.

    Usage:
        manager = RootsManager(provider)
        result = await manager.handle_roots_changed({"roots": ["/work/qrimages"]})
        for rejected in result.rejected_details:
            print(rejected.directory, rejected.reason)
    """

    def __init__(
        self,
        provider: ConfigurationProvider,
        validator: SecurityValidator | None = None,
        rate_limiter: ChangeRateLimiter | None = None,
        metrics: MetricsRecorder | None = None,
    ) -> None:
        """Initialize the manager.

        Args:
            provider: Owner of the current directory
            validator: Validator for declared roots (the provider's when None)
            rate_limiter: Limits accepted notifications per second
            metrics: Timing history for roots operations
        """
        self._provider = provider
        self._validator = validator
        self._rate_limiter = rate_limiter or ChangeRateLimiter()
        self._metrics = metrics if metrics is not None else MetricsRecorder()

    @property
    def validator(self) -> SecurityValidator:
        return self._validator or self._provider.validator

    async def handle_roots_changed(
        self, notification: RootsNotification | Mapping[str, Any]
    ) -> RootsValidationResult:
        """Validate every declared root and adopt the first valid one.

        Returns:
            Aggregate result. ``valid``/``reason`` describe the adopted
            directory; ``details`` holds one result per declared root.
        """
        started = self._metrics.start()
        result = await self._apply_roots(notification)
        result = replace(result, processing_time_ms=self._metrics.elapsed_ms(started))
        self._metrics.record(
            OperationType.ROOTS_CHANGED,
            started,
            result.valid,
            roots=len(result.details),
            code=result.code.value if result.code else None,
        )
        return result

    async def _apply_roots(
        self, notification: RootsNotification | Mapping[str, Any]
    ) -> RootsValidationResult:
        if isinstance(notification, Mapping):
            notification = RootsNotification.from_dict(notification)

        problem = self._check_notification(notification)
        if problem:
            logger.warning("Ignoring malformed roots notification: %s", problem)
            return RootsValidationResult.rejected(
                "", RejectionCode.INVALID_INPUT, f"invalid roots notification: {problem}"
            )

        validator = self.validator
        if not self._rate_limiter.try_acquire(validator.rate_limit):
            logger.warning("Roots change rate limit exceeded (%s/s)", validator.rate_limit)
            return RootsValidationResult.rejected(
                "",
                RejectionCode.RATE_LIMITED,
                f"rate limit exceeded: at most {validator.rate_limit:g} root changes per second",
            )

        logger.debug("Roots changed from %s: %s", notification.source, list(notification.roots))
        outcomes = tuple(
            await asyncio.gather(
                *(validator.validate_directory_security(root) for root in notification.roots)
            )
        )
        for outcome in outcomes:
            if not outcome.valid:
                logger.info("Root rejected: %s (%s)", outcome.directory, outcome.reason)

        chosen = next((outcome for outcome in outcomes if outcome.valid), None)
        if chosen is None:
            return RootsValidationResult(
                valid=False,
                normalized_path="",
                reason=f"none of the {len(outcomes)} declared roots passed validation",
                code=RejectionCode.NO_VALID_ROOT,
                details=outcomes,
            )

        if not await self._provider.update_from_roots(chosen.normalized_path):
            return RootsValidationResult(
                valid=False,
                normalized_path=chosen.normalized_path,
                reason=f"configuration refused {chosen.normalized_path}",
                code=RejectionCode.UPDATE_REJECTED,
                directory=chosen.directory,
                details=outcomes,
            )

        logger.info("Adopted root directory %s", chosen.normalized_path)
        return RootsValidationResult(
            valid=True,
            normalized_path=chosen.normalized_path,
            directory=chosen.directory,
            details=outcomes,
        )

    def get_current_roots(self) -> ConfigurationStatus:
        return self._provider.get_status()

    async def validate_directory(self, directory: str) -> RootsValidationResult:
        """Check ``directory`` without touching the configuration."""
        started = self._metrics.start()
        result = await self.validator.validate_directory_security(directory)
        self._metrics.record(
            OperationType.DIRECTORY_VALIDATION,
            started,
            result.valid,
            directory=result.directory,
            code=result.code.value if result.code else None,
        )
        return result

    async def clear_roots_configuration(self) -> None:
        await self._provider.clear_roots_configuration()
        self._rate_limiter.reset()

    async def ensure_directory_with_security_check(self, directory: str) -> bool:
        """Validate ``directory`` and create it if missing.

        Returns:
            True if the directory passed validation and now exists and is
            writable. Creation is idempotent.
        """
        started = self._metrics.start()
        ready = await self._ensure_directory(directory)
        self._metrics.record(
            OperationType.DIRECTORY_VALIDATION, started, ready, directory=str(directory), create=True
        )
        return ready

    async def _ensure_directory(self, directory: str) -> bool:
        validator = self.validator
        result = await validator.validate_directory_security(directory)
        if not result.valid:
            logger.warning("Not creating %s: %s", directory, result.reason)
            return False

        try:
            await asyncio.wait_for(
                asyncio.to_thread(_make_directory, result.normalized_path),
                timeout=validator.probe_timeout,
            )
        except asyncio.TimeoutError:
            logger.error(
                "Creating %s timed out after %ss", result.normalized_path, validator.probe_timeout
            )
            return False
        except OSError as e:
            logger.error("Could not create %s: %s", result.normalized_path, e)
            return False

        info = await validator.get_directory_info(result.normalized_path)
        return info.exists and info.writable

    async def get_roots_directory_info(self, directory: str) -> DirectoryInfo:
        """Describe any directory, current or not."""
        validator = self.validator
        status = self._provider.get_status()
        try:
            is_current = validator.normalize_path(directory) == status.current_directory
        except (OSError, ValueError, TypeError):
            is_current = False
        return await validator.get_directory_info(
            directory, source=status.source if is_current else None
        )

    def get_performance_metrics(
        self, limit: int = DEFAULT_METRICS_LIMIT
    ) -> list[OperationMetrics]:
        """Most recent operation timings, newest first."""
        return self._metrics.recent(limit)

    @staticmethod
    def _check_notification(notification: RootsNotification) -> str:
        roots = notification.roots
        if roots is None:
            return "missing 'roots'"
        if isinstance(roots, str) or not isinstance(roots, (list, tuple)):
            return "'roots' must be a list of directories"
        if not roots:
            return "'roots' must not be empty"
        return ""
