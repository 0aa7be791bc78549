"""Composition root.

Builds the factory, provider and manager explicitly and wires them
together. Nothing in the package keeps a module-level instance.
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass

from rootguard.audit import AuditSink, FanOutAuditSink, JsonlAuditSink, LoggingAuditSink
from rootguard.config import RootGuardConfig
from rootguard.factory import ValidatorFactory
from rootguard.manager import RootsManager
from rootguard.provider import ConfigurationProvider

logger = logging.getLogger(__name__)


@dataclass
class RootGuard:
    """The wired-up subsystem owned by the host process."""

    config: RootGuardConfig
    factory: ValidatorFactory
    provider: ConfigurationProvider
    manager: RootsManager


def build_audit_sink(config: RootGuardConfig) -> AuditSink:
    sinks: list[AuditSink] = [LoggingAuditSink()]
    if config.audit.log_file is not None:
        sinks.append(JsonlAuditSink(config.audit.log_file))
    return sinks[0] if len(sinks) == 1 else FanOutAuditSink(sinks)


async def build_roots_manager(
    config: RootGuardConfig | None = None,
    environ: Mapping[str, str] | None = None,
) -> RootGuard:
    """Create and initialize every component from ``config``.

    Raises:
        ConfigurationError: If the configuration is invalid
    """
    if config is None:
        config = RootGuardConfig.load(environ=environ)

    factory = ValidatorFactory(
        audit_sink=build_audit_sink(config),
        probe_timeout=config.probe_timeout,
    )
    provider = ConfigurationProvider(
        factory,
        policy_kind=config.policy,
        allowed_roots=config.allowed_roots,
        enable_audit_log=config.audit.enabled,
        rate_limit=config.rate_limit,
        default_directory=config.default_directory,
        explicit_directory=config.explicit_directory,
        env_var=config.env_var,
        environ=environ,
    )
    await provider.initialize()
    manager = RootsManager(provider)
    logger.debug("RootGuard ready with %s policy", config.policy.value)
    return RootGuard(config=config, factory=factory, provider=provider, manager=manager)
