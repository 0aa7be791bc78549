"""Configuration management for RootGuard.

Settings are loaded from (in order of increasing priority):
    1. Built-in defaults (this file)
    2. ``~/.rootguard/config.yaml`` (or the file named by ROOTGUARD_CONFIG)
    3. Environment variables prefixed with ROOTGUARD_
"""

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from rootguard.exceptions import ConfigurationError
from rootguard.models import SecurityPolicyKind
from rootguard.policy import parse_policy_kind
from rootguard.provider import DEFAULT_ENV_VAR
from rootguard.validator import DEFAULT_PROBE_TIMEOUT

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path.home() / ".rootguard" / "config.yaml"


@dataclass
class AuditConfig:
    """Audit settings.

    Attributes:
        enabled: Force auditing on or off (policy default when None)
        log_file: Append records to this JSON-lines file as well as the log
    """

    enabled: bool | None = None
    log_file: Path | None = None


@dataclass
class RootGuardConfig:
    """Settings for the roots subsystem.

    Attributes:
        policy: Security policy kind for client roots
        allowed_roots: Whitelist for client roots
        rate_limit: Accepted root changes per second (policy default when None)
        default_directory: Lowest-precedence directory (``~/qrimages`` when None)
        explicit_directory: Operator override with the highest precedence
        env_var: Environment variable for the ENVIRONMENT level
        probe_timeout: Seconds before a filesystem probe is abandoned
        audit: Audit settings
    """

    policy: SecurityPolicyKind = SecurityPolicyKind.STANDARD
    allowed_roots: list[str] = field(default_factory=list)
    rate_limit: float | None = None
    default_directory: str | None = None
    explicit_directory: str | None = None
    env_var: str = DEFAULT_ENV_VAR
    probe_timeout: float = DEFAULT_PROBE_TIMEOUT
    audit: AuditConfig = field(default_factory=AuditConfig)

    @classmethod
    def _load_config_file(cls, config_path: Path) -> dict[str, Any]:
        """Load the YAML file; a missing or unreadable file yields ``{}``."""
        if not config_path.exists():
            return {}
        try:
            with open(config_path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"Failed to load config file {config_path}: {e}")
            return {}
        if not isinstance(data, dict):
            raise ConfigurationError(
                f"Config file {config_path} must contain a mapping", path=str(config_path)
            )
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RootGuardConfig":
        """Create config from a dictionary (the parsed YAML document).

        Raises:
            ConfigurationError: For values of the wrong type
        """
        roots_data = data.get("roots") or {}
        audit_data = data.get("audit") or {}
        if not isinstance(roots_data, Mapping) or not isinstance(audit_data, Mapping):
            raise ConfigurationError("'roots' and 'audit' sections must be mappings")

        allowed_roots = roots_data.get("allowed_roots") or []
        if isinstance(allowed_roots, str) or not isinstance(allowed_roots, list):
            raise ConfigurationError(
                f"roots.allowed_roots must be a list, got {allowed_roots!r}"
            )

        audit_file = audit_data.get("log_file")
        return cls(
            policy=parse_policy_kind(roots_data.get("policy", SecurityPolicyKind.STANDARD)),
            allowed_roots=[str(Path(str(p)).expanduser()) for p in allowed_roots],
            rate_limit=_optional_float(roots_data.get("rate_limit"), "roots.rate_limit"),
            default_directory=roots_data.get("default_directory"),
            explicit_directory=roots_data.get("explicit_directory"),
            env_var=roots_data.get("env_var") or DEFAULT_ENV_VAR,
            probe_timeout=_optional_float(roots_data.get("probe_timeout"), "roots.probe_timeout")
            or DEFAULT_PROBE_TIMEOUT,
            audit=AuditConfig(
                enabled=audit_data.get("enabled"),
                log_file=Path(audit_file).expanduser() if audit_file else None,
            ),
        )

    @classmethod
    def load(
        cls,
        config_path: Path | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> "RootGuardConfig":
        """Load the config file, then apply environment overrides.

        Environment:
            ROOTGUARD_CONFIG: Alternative config file path
            ROOTGUARD_POLICY: strict, standard or permissive
            ROOTGUARD_ALLOWED_ROOTS: Comma-separated whitelist (replaces the file's)
            ROOTGUARD_RATE_LIMIT: Accepted root changes per second
            ROOTGUARD_AUDIT_LOG: JSON-lines audit file
        """
        env = os.environ if environ is None else environ
        if config_path is None:
            if env.get("ROOTGUARD_CONFIG"):
                config_path = Path(env["ROOTGUARD_CONFIG"]).expanduser()
            else:
                config_path = DEFAULT_CONFIG_PATH

        config = cls.from_dict(cls._load_config_file(config_path))

        if env.get("ROOTGUARD_POLICY"):
            config.policy = parse_policy_kind(env["ROOTGUARD_POLICY"])
        if env.get("ROOTGUARD_ALLOWED_ROOTS"):
            config.allowed_roots = [
                str(Path(p.strip()).expanduser())
                for p in env["ROOTGUARD_ALLOWED_ROOTS"].split(",")
                if p.strip()
            ]
        if env.get("ROOTGUARD_RATE_LIMIT"):
            config.rate_limit = _optional_float(env["ROOTGUARD_RATE_LIMIT"], "ROOTGUARD_RATE_LIMIT")
        if env.get("ROOTGUARD_AUDIT_LOG"):
            config.audit.log_file = Path(env["ROOTGUARD_AUDIT_LOG"]).expanduser()

        return config

    def to_dict(self) -> dict[str, Any]:
        """Convert config to dictionary (for YAML serialization)."""
        return {
            "roots": {
                "policy": self.policy.value,
                "allowed_roots": list(self.allowed_roots),
                "rate_limit": self.rate_limit,
                "default_directory": self.default_directory,
                "explicit_directory": self.explicit_directory,
                "env_var": self.env_var,
                "probe_timeout": self.probe_timeout,
            },
            "audit": {
                "enabled": self.audit.enabled,
                "log_file": str(self.audit.log_file) if self.audit.log_file else None,
            },
        }


def _optional_float(value: Any, name: str) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{name} must be a number, got {value!r}") from None
