"""Core data models for RootGuard."""

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class SecurityPolicyKind(str, Enum):
    """Named security levels. They select defaults only."""

    STRICT = "strict"
    STANDARD = "standard"
    PERMISSIVE = "permissive"


class ConfigSource(str, Enum):
    """Where the current directory came from, highest precedence first."""

    EXPLICIT = "explicit"
    ROOTS = "roots"
    ENVIRONMENT = "environment"
    DEFAULT = "default"

    @property
    def precedence(self) -> int:
        return _PRECEDENCE[self]


_PRECEDENCE = {
    ConfigSource.EXPLICIT: 3,
    ConfigSource.ROOTS: 2,
    ConfigSource.ENVIRONMENT: 1,
    ConfigSource.DEFAULT: 0,
}


class RejectionCode(str, Enum):
    """Machine-readable reason a directory was rejected."""

    INVALID_INPUT = "invalid_input"
    PATH_TOO_LONG = "path_too_long"
    RELATIVE_PATH = "relative_path"
    FORBIDDEN_PATTERN = "forbidden_pattern"
    NOT_WHITELISTED = "not_whitelisted"
    PERMISSION_DENIED = "permission_denied"
    FILESYSTEM_ERROR = "filesystem_error"  # could not check, not a policy denial
    RATE_LIMITED = "rate_limited"
    NO_VALID_ROOT = "no_valid_root"
    UPDATE_REJECTED = "update_rejected"


@dataclass(frozen=True)
class SecurityValidationOptions:
    """Options a validator is built from (and the factory cache key)."""

    policy: SecurityPolicyKind
    allowed_roots: tuple[str, ...] = ()
    enable_audit_log: bool = True
    rate_limit: float = 1.0


@dataclass(frozen=True)
class RootsValidationResult:
    """Immutable outcome of checking one directory.

    For an aggregate produced by ``RootsManager.handle_roots_changed`` the
    top-level fields describe the adopted directory and ``details`` holds
    the per-root outcomes in declaration order. ``processing_time_ms`` is
    the wall time the check took.
    """

    valid: bool
    normalized_path: str
    reason: str = ""
    code: RejectionCode | None = None
    directory: str = ""
    checked_at: datetime = field(default_factory=datetime.now)
    details: tuple["RootsValidationResult", ...] = ()
    processing_time_ms: float = 0.0

    @classmethod
    def accepted(cls, directory: str, normalized_path: str) -> "RootsValidationResult":
        """Create a result for an accepted directory."""
        return cls(valid=True, normalized_path=normalized_path, directory=directory)

    @classmethod
    def rejected(
        cls,
        directory: str,
        code: RejectionCode,
        reason: str,
        normalized_path: str = "",
    ) -> "RootsValidationResult":
        """Create a result for a rejected directory."""
        return cls(
            valid=False,
            normalized_path=normalized_path,
            reason=reason,
            code=code,
            directory=directory,
        )

    @property
    def rejected_details(self) -> list["RootsValidationResult"]:
        return [d for d in self.details if not d.valid]


@dataclass(frozen=True)
class RootsNotification:
    """A "roots changed" notification from the client."""

    roots: tuple[str, ...]
    source: str = "client"
    metadata: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], source: str = "client") -> "RootsNotification":
        """Create a notification from the ``{"roots": [...]}`` wire shape.

        Entries are kept as received; the manager rejects malformed ones.
        """
        roots = data.get("roots")
        if isinstance(roots, (list, tuple)):
            roots = tuple(roots)
        metadata = {k: v for k, v in data.items() if k != "roots"}
        return cls(roots=roots, source=source, metadata=metadata)


@dataclass(frozen=True)
class ConfigurationStatus:
    """Externally visible snapshot of the resolved directory."""

    current_directory: str
    source: ConfigSource
    last_updated: datetime


@dataclass(frozen=True)
class ConfigurationChangeEvent:
    """Emitted once per committed configuration change."""

    previous_directory: str
    new_directory: str
    new_source: ConfigSource
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class SecurityAuditLog:
    """One audit record per validation call."""

    directory: str
    normalized_path: str
    policy: SecurityPolicyKind
    outcome: str
    reason: str
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "directory": self.directory,
            "normalizedPath": self.normalized_path,
            "policy": self.policy.value,
            "outcome": self.outcome,
            "reason": self.reason,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class DirectoryInfo:
    """Derived status of a directory. Recomputed on every request."""

    path: str
    exists: bool
    writable: bool
    within_whitelist: bool
    source: ConfigSource | None = None
