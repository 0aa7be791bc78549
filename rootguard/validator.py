# rootguard/validator.py
"""Directory security validation.

This module holds the checking logic. A validator owns one immutable
``SecurityPolicy`` and keeps no state that affects outcomes, so calls can
run concurrently. Filesystem probes run in a worker thread under a timeout.
"""

import asyncio
import logging
import os
import tempfile
import time
from collections import deque
from collections.abc import Iterable
from dataclasses import replace

from rootguard.audit import AuditSink, LoggingAuditSink
from rootguard.models import (
    ConfigSource,
    DirectoryInfo,
    RejectionCode,
    RootsValidationResult,
    SecurityAuditLog,
    SecurityPolicyKind,
    SecurityValidationOptions,
)
from rootguard.paths import (
    has_control_characters,
    is_absolute,
    is_within,
    matches_pattern,
)
from rootguard.paths import normalize_path as _normalize_path
from rootguard.policy import SecurityPolicy

logger = logging.getLogger(__name__)

DEFAULT_PROBE_TIMEOUT = 5.0
AUDIT_HISTORY_SIZE = 1000


def _nearest_existing_ancestor(path: str) -> str:
    current = path
    while not os.path.exists(current):
        parent = os.path.dirname(current)
        if parent == current:
            break
        current = parent
    return current


def _probe_writable(directory: str) -> bool:
    """Blocking write check.

    An existing directory gets a marker file created and removed. A missing
    directory is writable if its nearest existing ancestor is.

    Raises:
        OSError: For I/O failures other than a permission denial
    """
    if os.path.isdir(directory):
        try:
            fd, marker = tempfile.mkstemp(prefix=".rootguard_write_test_", dir=directory)
        except PermissionError:
            return False
        os.close(fd)
        os.unlink(marker)
        return True
    if os.path.exists(directory):
        # A file is never a usable root
        return False
    ancestor = _nearest_existing_ancestor(directory)
    return os.path.isdir(ancestor) and os.access(ancestor, os.W_OK | os.X_OK)


def _stat_directory(directory: str) -> tuple[bool, bool]:
    exists = os.path.isdir(directory)
    return exists, exists and os.access(directory, os.W_OK | os.X_OK)


class SecurityValidator:
    """Validate directories against a SecurityPolicy.

    ``validate_directory_security`` never raises for bad input; every
    rejection is reported in the returned ``RootsValidationResult``.

    Usage:
        validator = SecurityValidator(merge_defaults("standard", whitelisted_directories=[root]))
        result = await validator.validate_directory_security("/work/qrimages/out")
        if not result.valid:
            print(result.reason)
    """

    def __init__(
        self,
        policy: SecurityPolicy,
        *,
        rate_limit: float = 1.0,
        audit_sink: AuditSink | None = None,
        base_directory: str | None = None,
        probe_timeout: float = DEFAULT_PROBE_TIMEOUT,
    ) -> None:
        """Initialize with a policy.

        Args:
            policy: The policy every check is made against
            rate_limit: Allowed root changes per second, enforced by RootsManager
            audit_sink: Receives one SecurityAuditLog per validation
            base_directory: Base for relative paths (cwd when None)
            probe_timeout: Seconds before a filesystem probe is abandoned
        """
        self._policy = policy
        self._rate_limit = rate_limit
        self._audit_sink = audit_sink or LoggingAuditSink()
        self._base_directory = base_directory
        self._probe_timeout = probe_timeout
        self._audit_history: deque[SecurityAuditLog] = deque(maxlen=AUDIT_HISTORY_SIZE)

    @property
    def policy(self) -> SecurityPolicy:
        return self._policy

    @property
    def kind(self) -> SecurityPolicyKind:
        return self._policy.kind

    @property
    def rate_limit(self) -> float:
        return self._rate_limit

    @property
    def probe_timeout(self) -> float:
        return self._probe_timeout

    async def validate_directory_security(
        self,
        directory: str | os.PathLike,
        options: SecurityValidationOptions | None = None,
    ) -> RootsValidationResult:
        """Check one directory against the policy.

        Args:
            directory: Path or ``file://`` URI to check
            options: Per-call options; non-empty ``allowed_roots`` replace
                the policy whitelist for this call

        Returns:
            RootsValidationResult with the normalized path or the reason for rejection
        """
        started = time.perf_counter()
        result = await self._validate(directory, options)
        result = replace(result, processing_time_ms=(time.perf_counter() - started) * 1000)
        if self._policy.enable_audit_logging:
            self.log_security_event(
                SecurityAuditLog(
                    directory=result.directory,
                    normalized_path=result.normalized_path,
                    policy=self._policy.kind,
                    outcome="allowed" if result.valid else "rejected",
                    reason=result.reason or "validation passed",
                )
            )
        if not result.valid:
            logger.debug("Rejected %r (%s): %s", result.directory, result.code, result.reason)
        return result

    async def _validate(
        self,
        directory: object,
        options: SecurityValidationOptions | None,
    ) -> RootsValidationResult:
        policy = self._policy

        if not isinstance(directory, (str, os.PathLike)):
            return RootsValidationResult.rejected(
                repr(directory),
                RejectionCode.INVALID_INPUT,
                f"directory must be a string, got {type(directory).__name__}",
            )
        raw = os.fspath(directory)
        if not isinstance(raw, str):
            return RootsValidationResult.rejected(
                repr(raw), RejectionCode.INVALID_INPUT, "directory must be a text path"
            )
        if not raw.strip():
            return RootsValidationResult.rejected(
                raw, RejectionCode.INVALID_INPUT, "directory must be a non-empty string"
            )
        if has_control_characters(raw):
            return RootsValidationResult.rejected(
                raw, RejectionCode.INVALID_INPUT, "directory contains NUL or control characters"
            )
        if not policy.allow_relative_paths and not is_absolute(raw):
            return RootsValidationResult.rejected(
                raw,
                RejectionCode.RELATIVE_PATH,
                f"relative paths are not allowed by the {policy.kind.value} policy: {raw}",
            )

        try:
            normalized = self.normalize_path(raw)
        except (OSError, ValueError) as e:
            return RootsValidationResult.rejected(
                raw, RejectionCode.INVALID_INPUT, f"path could not be normalized: {e}"
            )

        if len(normalized) > policy.max_path_length:
            return RootsValidationResult.rejected(
                raw,
                RejectionCode.PATH_TOO_LONG,
                f"normalized path is {len(normalized)} characters, "
                f"exceeds maximum of {policy.max_path_length}",
                normalized,
            )

        # Raw form too: normalization hides traversal sequences
        for pattern in sorted(policy.forbidden_patterns):
            if matches_pattern(pattern, raw, normalized, case_insensitive=policy.case_insensitive):
                return RootsValidationResult.rejected(
                    raw,
                    RejectionCode.FORBIDDEN_PATTERN,
                    f"path matches forbidden pattern {pattern!r}",
                    normalized,
                )

        if options is not None and options.allowed_roots:
            whitelist = self._normalize_roots(options.allowed_roots)
        else:
            whitelist = list(policy.whitelisted_directories)
        if not whitelist:
            return RootsValidationResult.rejected(
                raw,
                RejectionCode.NOT_WHITELISTED,
                "no whitelisted directories are configured",
                normalized,
            )
        if not any(is_within(normalized, root, policy.case_insensitive) for root in whitelist):
            return RootsValidationResult.rejected(
                raw,
                RejectionCode.NOT_WHITELISTED,
                f"{normalized} is not inside an allowed directory",
                normalized,
            )

        if policy.require_write_permission:
            try:
                writable = await self._run_probe(_probe_writable, normalized)
            except asyncio.TimeoutError:
                return RootsValidationResult.rejected(
                    raw,
                    RejectionCode.FILESYSTEM_ERROR,
                    f"could not verify write access: check timed out after {self._probe_timeout}s",
                    normalized,
                )
            except OSError as e:
                return RootsValidationResult.rejected(
                    raw,
                    RejectionCode.FILESYSTEM_ERROR,
                    f"could not verify write access: {e}",
                    normalized,
                )
            if not writable:
                return RootsValidationResult.rejected(
                    raw,
                    RejectionCode.PERMISSION_DENIED,
                    f"write permission denied for {normalized}",
                    normalized,
                )

        return RootsValidationResult.accepted(raw, normalized)

    async def _run_probe(self, probe, directory: str):
        return await asyncio.wait_for(
            asyncio.to_thread(probe, directory), timeout=self._probe_timeout
        )

    async def check_write_permissions(self, directory: str | os.PathLike) -> bool:
        """Run the write probe alone. Any failure to confirm is ``False``."""
        try:
            return await self._run_probe(_probe_writable, self.normalize_path(directory))
        except asyncio.TimeoutError:
            logger.warning("Write check for %s timed out after %ss", directory, self._probe_timeout)
            return False
        except (OSError, ValueError, TypeError) as e:
            logger.warning("Write check for %s failed: %s", directory, e)
            return False

    def normalize_path(self, path: str | os.PathLike) -> str:
        """Return the canonical absolute form of ``path`` (idempotent)."""
        return _normalize_path(path, self._base_directory)

    def _normalize_roots(self, roots: Iterable[str]) -> list[str]:
        return [self.normalize_path(root) for root in roots if str(root).strip()]

    def is_directory_allowed(self, directory: str | os.PathLike, allowed_roots: Iterable[str]) -> bool:
        """Whitelist check only: is ``directory`` equal to or under an allowed root?"""
        try:
            normalized = self.normalize_path(directory)
            roots = self._normalize_roots(allowed_roots)
        except (OSError, ValueError, TypeError):
            return False
        return any(is_within(normalized, root, self._policy.case_insensitive) for root in roots)

    def log_security_event(self, log: SecurityAuditLog) -> None:
        """Hand a record to the audit sink. Sink failures are logged, not raised."""
        self._audit_history.append(log)
        try:
            self._audit_sink(log)
        except Exception:
            logger.error("Audit sink failed for %s", log.directory, exc_info=True)

    def get_recent_audit_logs(self, limit: int = 100) -> list[SecurityAuditLog]:
        if limit <= 0:
            return []
        return list(self._audit_history)[-limit:]

    async def get_directory_info(
        self,
        directory: str | os.PathLike,
        source: ConfigSource | None = None,
    ) -> DirectoryInfo:
        """Describe ``directory`` as it is right now. Nothing is cached."""
        try:
            normalized = self.normalize_path(directory)
        except (OSError, ValueError, TypeError) as e:
            logger.warning("Cannot describe directory %r: %s", directory, e)
            return DirectoryInfo(
                path=str(directory),
                exists=False,
                writable=False,
                within_whitelist=False,
                source=source,
            )
        try:
            exists, writable = await self._run_probe(_stat_directory, normalized)
        except (asyncio.TimeoutError, OSError) as e:
            logger.warning("Directory status for %s unavailable: %s", normalized, e)
            exists, writable = False, False
        return DirectoryInfo(
            path=normalized,
            exists=exists,
            writable=writable,
            within_whitelist=self.is_directory_allowed(normalized, self._policy.whitelisted_directories),
            source=source,
        )
