# rootguard/factory.py
"""Factory and cache for SecurityValidator instances.

The factory is an ordinary object built by the composition root
(``rootguard.app``). Validators are cached by a canonical key so every
component that asks for the same configuration shares one instance.
"""

import logging
import threading
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from rootguard.audit import AuditSink
from rootguard.exceptions import ConfigurationError
from rootguard.models import SecurityPolicyKind, SecurityValidationOptions
from rootguard.policy import merge_defaults, parse_policy_kind, policy_for_profile
from rootguard.validator import DEFAULT_PROBE_TIMEOUT, SecurityValidator

logger = logging.getLogger(__name__)

MIN_RATE_LIMIT = 0.1
MAX_RATE_LIMIT = 100.0

_OPTION_KEYS = frozenset(["allowed_roots", "enable_audit_log", "rate_limit"])


@dataclass(frozen=True)
class _KindDefaults:
    allowed_roots: tuple[str, ...]
    enable_audit_log: bool
    rate_limit: float


DEFAULT_OPTIONS: Mapping[SecurityPolicyKind, _KindDefaults] = {
    SecurityPolicyKind.STRICT: _KindDefaults((), True, 1.0),
    SecurityPolicyKind.STANDARD: _KindDefaults((), True, 2.0),
    SecurityPolicyKind.PERMISSIVE: _KindDefaults((), False, 5.0),
}


@dataclass(frozen=True)
class CacheInfo:
    count: int
    configurations: list[str] = field(default_factory=list)


def _validate_rate_limit(rate_limit: Any) -> float:
    if isinstance(rate_limit, bool) or not isinstance(rate_limit, (int, float)):
        raise ConfigurationError(
            f"Rate limit must be a number, got {rate_limit!r}", rate_limit=rate_limit
        )
    if not MIN_RATE_LIMIT <= rate_limit <= MAX_RATE_LIMIT:
        raise ConfigurationError(
            f"Rate limit must be between {MIN_RATE_LIMIT} and {MAX_RATE_LIMIT:g} "
            f"changes per second, got {rate_limit}",
            rate_limit=rate_limit,
        )
    return float(rate_limit)


def _validate_roots(allowed_roots: Any) -> tuple[str, ...]:
    if isinstance(allowed_roots, str) or not isinstance(allowed_roots, Iterable):
        raise ConfigurationError(
            f"allowed_roots must be a list of directories, got {allowed_roots!r}"
        )
    roots = []
    for root in allowed_roots:
        if not isinstance(root, str) or not root.strip():
            raise ConfigurationError(f"Invalid root directory: {root!r}", root=root)
        roots.append(root)
    return tuple(roots)


class ValidatorFactory:
    """Build and cache SecurityValidator instances.

    Usage:
        factory = ValidatorFactory()
        validator = factory.create("standard", {"allowed_roots": ["/work/qrimages"]})
        assert factory.create("standard", {"allowed_roots": ["/work/qrimages"]}) is validator
    """

    def __init__(
        self,
        *,
        audit_sink: AuditSink | None = None,
        base_directory: str | None = None,
        probe_timeout: float = DEFAULT_PROBE_TIMEOUT,
    ) -> None:
        """Initialize the factory.

        Args:
            audit_sink: Passed to every validator this factory builds
            base_directory: Base for relative paths in built validators
            probe_timeout: Filesystem probe timeout for built validators
        """
        self._audit_sink = audit_sink
        self._base_directory = base_directory
        self._probe_timeout = probe_timeout
        self._validators: dict[str, SecurityValidator] = {}
        self._lock = threading.Lock()

    def create(
        self,
        policy_kind: SecurityPolicyKind | str,
        options: SecurityValidationOptions | Mapping[str, Any] | None = None,
    ) -> SecurityValidator:
        """Return the validator for ``policy_kind`` and ``options``.

        Omitted options fall back to the defaults of the policy kind. An
        equivalent configuration (roots compared as a sorted list) returns
        the cached instance.

        Raises:
            ConfigurationError: For an unknown kind, a rate limit outside
                [0.1, 100] or an empty/non-string root
        """
        kind = parse_policy_kind(policy_kind)
        resolved = self._resolve_options(kind, options)
        key = self._create_config_key(resolved)

        with self._lock:
            validator = self._validators.get(key)
            if validator is None:
                validator = self._build(resolved)
                self._validators[key] = validator
                logger.debug("Created validator %s", key)
        return validator

    def create_strict(self, allowed_roots: Iterable[str]) -> SecurityValidator:
        return self.create(
            SecurityPolicyKind.STRICT,
            {"allowed_roots": list(allowed_roots), "enable_audit_log": True, "rate_limit": 1},
        )

    def create_standard(
        self,
        allowed_roots: Iterable[str] | None = None,
        enable_audit_log: bool = True,
    ) -> SecurityValidator:
        return self.create(
            SecurityPolicyKind.STANDARD,
            {
                "allowed_roots": list(allowed_roots or []),
                "enable_audit_log": enable_audit_log,
                "rate_limit": 2,
            },
        )

    def create_permissive(self) -> SecurityValidator:
        return self.create(
            SecurityPolicyKind.PERMISSIVE,
            {"allowed_roots": [], "enable_audit_log": False, "rate_limit": 5},
        )

    def create_for_profile(self, profile: str) -> SecurityValidator:
        """Build a validator from a named profile policy.

        Profiles read the working directory and environment at call time,
        so their validators are not cached.
        """
        policy = policy_for_profile(profile)
        return SecurityValidator(
            policy,
            rate_limit=DEFAULT_OPTIONS[policy.kind].rate_limit,
            audit_sink=self._audit_sink,
            base_directory=self._base_directory,
            probe_timeout=self._probe_timeout,
        )

    def get_available_policies(self) -> list[SecurityPolicyKind]:
        return list(SecurityPolicyKind)

    def clear_cache(self) -> None:
        with self._lock:
            self._validators.clear()

    def get_cache_info(self) -> CacheInfo:
        with self._lock:
            return CacheInfo(count=len(self._validators), configurations=list(self._validators))

    def _resolve_options(
        self,
        kind: SecurityPolicyKind,
        options: SecurityValidationOptions | Mapping[str, Any] | None,
    ) -> SecurityValidationOptions:
        defaults = DEFAULT_OPTIONS[kind]
        if options is None:
            options = {}
        elif isinstance(options, SecurityValidationOptions):
            options = {
                "allowed_roots": options.allowed_roots,
                "enable_audit_log": options.enable_audit_log,
                "rate_limit": options.rate_limit,
            }
        unknown = set(options) - _OPTION_KEYS
        if unknown:
            raise ConfigurationError(f"Unknown validator options: {', '.join(sorted(unknown))}")

        allowed_roots = options.get("allowed_roots")
        enable_audit_log = options.get("enable_audit_log")
        rate_limit = options.get("rate_limit")

        return SecurityValidationOptions(
            policy=kind,
            allowed_roots=(
                _validate_roots(allowed_roots) if allowed_roots is not None else defaults.allowed_roots
            ),
            enable_audit_log=(
                bool(enable_audit_log) if enable_audit_log is not None else defaults.enable_audit_log
            ),
            rate_limit=(
                _validate_rate_limit(rate_limit) if rate_limit is not None else defaults.rate_limit
            ),
        )

    @staticmethod
    def _create_config_key(options: SecurityValidationOptions) -> str:
        roots = "|".join(sorted(options.allowed_roots))
        audit = str(options.enable_audit_log).lower()
        return f"{options.policy.value}:{roots}:{audit}:{options.rate_limit}"

    def _build(self, options: SecurityValidationOptions) -> SecurityValidator:
        if options.policy is SecurityPolicyKind.STRICT and not options.allowed_roots:
            logger.warning(
                "STRICT policy created without allowed roots; every directory will be rejected"
            )
        policy = merge_defaults(
            options.policy,
            whitelisted_directories=options.allowed_roots,
            enable_audit_logging=options.enable_audit_log,
        )
        return SecurityValidator(
            policy,
            rate_limit=options.rate_limit,
            audit_sink=self._audit_sink,
            base_directory=self._base_directory,
            probe_timeout=self._probe_timeout,
        )
