# rootguard/policy.py
"""Security policies and the profiles they are built from.

A ``SecurityPolicy`` is immutable. Per-kind defaults are merged with
caller overrides by ``merge_defaults``, which always returns a new value
and never mutates the shared defaults.
"""

import logging
import os
import tempfile
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, fields
from typing import Any

from rootguard.exceptions import ConfigurationError
from rootguard.models import SecurityPolicyKind
from rootguard.paths import CASE_INSENSITIVE_DEFAULT, normalize_path

logger = logging.getLogger(__name__)

TRAVERSAL_PATTERNS: frozenset[str] = frozenset(["../", "..\\", "./", ".\\"])

ENCODED_TRAVERSAL_PATTERNS: frozenset[str] = frozenset(
    ["%2e%2e%2f", "%2e%2e%5c", "%2e%2e/", "%2e%2e\\", "..%2f", "..%5c"]
)

CRITICAL_SYSTEM_PATTERNS: frozenset[str] = frozenset(
    ["/etc", "/bin", "/sbin", "/usr/bin", "C:\\Windows", "C:\\Program Files"]
)

SYSTEM_PATH_PATTERNS: frozenset[str] = frozenset(
    [
        "/etc",
        "/usr",
        "/bin",
        "/sys",
        "/proc",
        "/root",
        "/home",
        "C:\\Windows",
        "C:\\System32",
        "C:\\Program Files",
        "C:\\Program Files (x86)",
        "C:\\Users\\Administrator",
        "C:\\ProgramData",
    ]
)

PRODUCTION_FORBIDDEN_PATTERNS: frozenset[str] = TRAVERSAL_PATTERNS | SYSTEM_PATH_PATTERNS

DEVELOPMENT_SUBDIRECTORIES = ("qrimages", "temp", "test-output", "build", "dist")
PRODUCTION_SUBDIRECTORIES = ("qrimages", "output")


@dataclass(frozen=True)
class SecurityPolicy:
    """Immutable security policy.

    Attributes:
        whitelisted_directories: Allowed directory prefixes, stored normalized
        forbidden_patterns: Substrings or path prefixes that disqualify a path
        allow_relative_paths: Resolve relative input instead of rejecting it
        require_write_permission: Probe the directory for write access
        enable_audit_logging: Emit one audit record per validation
        max_path_length: Maximum length of the normalized path
        case_insensitive: Fold case when matching the whitelist
        kind: The named level this policy was derived from
    """

    whitelisted_directories: tuple[str, ...] = ()
    forbidden_patterns: frozenset[str] = field(default_factory=frozenset)
    allow_relative_paths: bool = False
    require_write_permission: bool = False
    enable_audit_logging: bool = True
    max_path_length: int = 260
    case_insensitive: bool = CASE_INSENSITIVE_DEFAULT
    kind: SecurityPolicyKind = SecurityPolicyKind.STANDARD

    def __post_init__(self) -> None:
        if isinstance(self.whitelisted_directories, str):
            raise ConfigurationError(
                "whitelisted_directories must be a sequence of paths, not a string"
            )
        if not isinstance(self.max_path_length, int) or self.max_path_length <= 0:
            raise ConfigurationError(
                f"max_path_length must be a positive integer, got {self.max_path_length!r}",
                max_path_length=self.max_path_length,
            )
        normalized: list[str] = []
        for entry in self.whitelisted_directories:
            if not isinstance(entry, (str, os.PathLike)) or not str(entry).strip():
                raise ConfigurationError(f"Invalid whitelisted directory: {entry!r}")
            path = normalize_path(entry)
            if path not in normalized:
                normalized.append(path)
        object.__setattr__(self, "whitelisted_directories", tuple(normalized))
        object.__setattr__(self, "forbidden_patterns", frozenset(self.forbidden_patterns))
        object.__setattr__(self, "kind", SecurityPolicyKind(self.kind))


_KIND_DEFAULTS: Mapping[SecurityPolicyKind, Mapping[str, Any]] = {
    SecurityPolicyKind.STRICT: {
        "forbidden_patterns": (
            TRAVERSAL_PATTERNS | ENCODED_TRAVERSAL_PATTERNS | CRITICAL_SYSTEM_PATTERNS
        ),
        "allow_relative_paths": False,
        "require_write_permission": True,
        "enable_audit_logging": True,
        "max_path_length": 260,
    },
    SecurityPolicyKind.STANDARD: {
        "forbidden_patterns": ENCODED_TRAVERSAL_PATTERNS | CRITICAL_SYSTEM_PATTERNS,
        "allow_relative_paths": False,
        "require_write_permission": False,
        "enable_audit_logging": True,
        "max_path_length": 260,
    },
    SecurityPolicyKind.PERMISSIVE: {
        "forbidden_patterns": ENCODED_TRAVERSAL_PATTERNS,
        "allow_relative_paths": True,
        "require_write_permission": False,
        "enable_audit_logging": False,
        "max_path_length": 4096,
    },
}

_POLICY_FIELDS = frozenset(f.name for f in fields(SecurityPolicy))


def parse_policy_kind(value: Any) -> SecurityPolicyKind:
    """Coerce ``value`` to a SecurityPolicyKind or raise ConfigurationError."""
    if isinstance(value, SecurityPolicyKind):
        return value
    try:
        return SecurityPolicyKind(str(value).strip().lower())
    except ValueError:
        valid = ", ".join(k.value for k in SecurityPolicyKind)
        raise ConfigurationError(
            f"Unknown security policy: {value!r} (expected one of: {valid})",
            policy=value,
        ) from None


def merge_defaults(kind: SecurityPolicyKind | str, **overrides: Any) -> SecurityPolicy:
    """Build a policy from the defaults of ``kind`` and explicit overrides.

    Args:
        kind: Policy kind whose defaults are used for omitted fields
        **overrides: Any SecurityPolicy field

    Returns:
        A new SecurityPolicy

    Raises:
        ConfigurationError: For an unknown kind or an unknown field name
    """
    kind = parse_policy_kind(kind)
    unknown = set(overrides) - _POLICY_FIELDS
    if unknown:
        raise ConfigurationError(
            f"Unknown security policy fields: {', '.join(sorted(unknown))}"
        )
    values = dict(_KIND_DEFAULTS[kind])
    values.update({k: v for k, v in overrides.items() if v is not None})
    values["kind"] = kind
    return SecurityPolicy(**values)


def _under(cwd: str, names: Iterable[str]) -> list[str]:
    return [os.path.join(cwd, name) for name in names]


def development_policy(cwd: str | None = None) -> SecurityPolicy:
    """Relaxed policy for local work: the project tree and the OS temp root."""
    cwd = cwd or os.getcwd()
    return merge_defaults(
        SecurityPolicyKind.PERMISSIVE,
        whitelisted_directories=[cwd, *_under(cwd, DEVELOPMENT_SUBDIRECTORIES), tempfile.gettempdir()],
        forbidden_patterns=ENCODED_TRAVERSAL_PATTERNS | CRITICAL_SYSTEM_PATTERNS,
        allow_relative_paths=True,
        require_write_permission=False,
        enable_audit_logging=False,
        max_path_length=500,
    )


def production_policy(cwd: str | None = None) -> SecurityPolicy:
    """Locked-down policy: only the output folders under the working directory."""
    cwd = cwd or os.getcwd()
    return merge_defaults(
        SecurityPolicyKind.STRICT,
        whitelisted_directories=_under(cwd, PRODUCTION_SUBDIRECTORIES),
        forbidden_patterns=PRODUCTION_FORBIDDEN_PATTERNS | ENCODED_TRAVERSAL_PATTERNS,
        allow_relative_paths=False,
        require_write_permission=True,
        enable_audit_logging=True,
        max_path_length=260,
    )


def policy_from_env(environ: Mapping[str, str] | None = None) -> SecurityPolicy:
    """Build a policy from ``SECURITY_*`` environment variables.

    ``SECURITY_ALLOWED_DIRS`` is comma separated. ``SECURITY_STRICT_MODE=true``
    disables relative paths and enables the write probe and auditing.
    ``SECURITY_MAX_PATH_LENGTH`` must be an integer.
    """
    env = os.environ if environ is None else environ
    overrides: dict[str, Any] = {}
    kind = SecurityPolicyKind.STANDARD

    allowed = env.get("SECURITY_ALLOWED_DIRS", "")
    if allowed:
        overrides["whitelisted_directories"] = [d.strip() for d in allowed.split(",") if d.strip()]

    if env.get("SECURITY_STRICT_MODE", "").strip().lower() == "true":
        kind = SecurityPolicyKind.STRICT
        overrides["allow_relative_paths"] = False
        overrides["require_write_permission"] = True
        overrides["enable_audit_logging"] = True

    max_length = env.get("SECURITY_MAX_PATH_LENGTH", "").strip()
    if max_length:
        try:
            overrides["max_path_length"] = int(max_length)
        except ValueError:
            raise ConfigurationError(
                f"SECURITY_MAX_PATH_LENGTH must be an integer, got {max_length!r}"
            ) from None

    logger.debug("Security policy from environment: kind=%s overrides=%s", kind.value, sorted(overrides))
    return merge_defaults(kind, **overrides)


PROFILE_BUILDERS = {
    "development": development_policy,
    "production": production_policy,
}


def policy_for_profile(profile: str) -> SecurityPolicy:
    """Return the policy for ``development``, ``production`` or ``environment``."""
    name = profile.strip().lower()
    if name == "environment":
        return policy_from_env()
    builder = PROFILE_BUILDERS.get(name)
    if builder is None:
        raise ConfigurationError(
            f"Unknown security profile: {profile!r} "
            "(expected development, production or environment)",
            profile=profile,
        )
    return builder()
