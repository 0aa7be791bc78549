# rootguard/__init__.py
"""RootGuard - security validation for client-declared directory roots.

This package validates directories a client declares as "roots" and
decides which directory the host application writes to:
- Path normalization and whitelist checks with no global state
- A cached validator factory built per security policy
- A configuration provider with a fixed precedence chain and observers
- A roots manager that turns notifications into configuration changes

Public API:
    SecurityValidator: Validates one directory against a SecurityPolicy
    ValidatorFactory: Builds and caches validators
    ConfigurationProvider: Resolves the current directory
    RootsManager: Applies roots notifications
    build_roots_manager: Composition root that wires everything together
"""

from rootguard.app import RootGuard, build_roots_manager
from rootguard.audit import FanOutAuditSink, JsonlAuditSink, LoggingAuditSink
from rootguard.config import AuditConfig, RootGuardConfig
from rootguard.events import ObserverRegistry, Subscription
from rootguard.exceptions import (
    ConfigurationError,
    ProviderNotInitializedError,
    RootGuardError,
)
from rootguard.factory import CacheInfo, ValidatorFactory
from rootguard.manager import ChangeRateLimiter, RootsManager
from rootguard.metrics import MetricsRecorder, OperationMetrics, OperationType
from rootguard.models import (
    ConfigSource,
    ConfigurationChangeEvent,
    ConfigurationStatus,
    DirectoryInfo,
    RejectionCode,
    RootsNotification,
    RootsValidationResult,
    SecurityAuditLog,
    SecurityPolicyKind,
    SecurityValidationOptions,
)
from rootguard.policy import (
    SecurityPolicy,
    development_policy,
    merge_defaults,
    policy_from_env,
    production_policy,
)
from rootguard.provider import ConfigurationProvider
from rootguard.validator import SecurityValidator

__version__ = "0.1.0"

__all__ = [
    # Core
    "SecurityValidator",
    "ValidatorFactory",
    "ConfigurationProvider",
    "RootsManager",
    "ChangeRateLimiter",
    "MetricsRecorder",
    # Policies
    "SecurityPolicy",
    "merge_defaults",
    "development_policy",
    "production_policy",
    "policy_from_env",
    # Models
    "SecurityPolicyKind",
    "ConfigSource",
    "RejectionCode",
    "SecurityValidationOptions",
    "RootsNotification",
    "RootsValidationResult",
    "ConfigurationStatus",
    "ConfigurationChangeEvent",
    "SecurityAuditLog",
    "DirectoryInfo",
    "CacheInfo",
    "OperationMetrics",
    "OperationType",
    # Events
    "ObserverRegistry",
    "Subscription",
    # Audit
    "LoggingAuditSink",
    "JsonlAuditSink",
    "FanOutAuditSink",
    # Exceptions
    "RootGuardError",
    "ConfigurationError",
    "ProviderNotInitializedError",
    # Configuration
    "RootGuardConfig",
    "AuditConfig",
    "RootGuard",
    "build_roots_manager",
]
