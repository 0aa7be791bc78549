# rootguard/provider.py
"""Configuration provider for the active output directory.

Precedence, highest first:
    1. EXPLICIT     operator override (command line / config file)
    2. ROOTS        directory adopted from a validated client root
    3. ENVIRONMENT  the ``QR_DIRECTORY`` environment variable
    4. DEFAULT      ``~/qrimages``

All state lives in one immutable snapshot that is swapped under a lock, so
the directory and its source always change together.
"""

import asyncio
import logging
import os
from collections.abc import Iterable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime

from rootguard.events import ConfigurationObserver, ObserverRegistry, Subscription
from rootguard.exceptions import ConfigurationError, ProviderNotInitializedError
from rootguard.factory import ValidatorFactory
from rootguard.metrics import (
    DEFAULT_METRICS_LIMIT,
    MetricsRecorder,
    OperationMetrics,
    OperationType,
)
from rootguard.models import (
    ConfigSource,
    ConfigurationChangeEvent,
    ConfigurationStatus,
    DirectoryInfo,
    SecurityPolicyKind,
)
from rootguard.paths import normalize_path
from rootguard.policy import parse_policy_kind
from rootguard.validator import SecurityValidator

logger = logging.getLogger(__name__)

DEFAULT_ENV_VAR = "QR_DIRECTORY"


def default_qr_directory() -> str:
    return os.path.join(os.path.expanduser("~"), "qrimages")


@dataclass(frozen=True)
class _State:
    default: str
    explicit: str | None = None
    roots: str | None = None
    roots_valid: bool = False
    environment: str | None = None
    last_updated: datetime = field(default_factory=datetime.now)

    def resolve(self) -> tuple[str, ConfigSource]:
        if self.explicit is not None:
            return self.explicit, ConfigSource.EXPLICIT
        if self.roots is not None and self.roots_valid:
            return self.roots, ConfigSource.ROOTS
        if self.environment is not None:
            return self.environment, ConfigSource.ENVIRONMENT
        return self.default, ConfigSource.DEFAULT


def _normalize_setting(value: str, name: str) -> str:
    if not isinstance(value, (str, os.PathLike)) or not str(value).strip():
        raise ConfigurationError(f"{name} must be a non-empty path, got {value!r}")
    try:
        return normalize_path(value)
    except ValueError as e:
        raise ConfigurationError(f"Invalid {name}: {e}") from None


class ConfigurationProvider:
    """Resolve and update the current directory.

    Usage:
        provider = ConfigurationProvider(factory, allowed_roots=["/work/qrimages"])
        await provider.initialize()
        provider.on_configuration_change(lambda event: print(event.new_directory))
        if await provider.update_from_roots("/work/qrimages/batch-1"):
            directory = provider.get_current_qr_directory()
    """

    def __init__(
        self,
        factory: ValidatorFactory,
        *,
        policy_kind: SecurityPolicyKind | str = SecurityPolicyKind.STANDARD,
        allowed_roots: Iterable[str] = (),
        enable_audit_log: bool | None = None,
        rate_limit: float | None = None,
        default_directory: str | None = None,
        explicit_directory: str | None = None,
        env_var: str = DEFAULT_ENV_VAR,
        environ: Mapping[str, str] | None = None,
        metrics: MetricsRecorder | None = None,
    ) -> None:
        """Initialize the provider. Call ``initialize()`` before mutating it.

        Args:
            factory: Source of the validator for ROOTS updates
            policy_kind: Security policy used to validate roots
            allowed_roots: Whitelist for roots updates
            enable_audit_log: Audit override (policy default when None)
            rate_limit: Rate limit override (policy default when None)
            default_directory: Lowest-precedence directory (``~/qrimages``)
            explicit_directory: Highest-precedence override
            env_var: Environment variable consulted for the ENVIRONMENT level
            environ: Environment mapping (``os.environ`` when None)
            metrics: Timing history for configuration updates
        """
        self._factory = factory
        self._policy_kind = parse_policy_kind(policy_kind)
        self._allowed_roots = list(allowed_roots)
        self._enable_audit_log = enable_audit_log
        self._rate_limit = rate_limit
        self._env_var = env_var
        self._environ = environ
        self._validator: SecurityValidator | None = None
        self._observers = ObserverRegistry()
        self._lock = asyncio.Lock()
        self._metrics = metrics if metrics is not None else MetricsRecorder()
        self._state = _State(
            default=_normalize_setting(default_directory or default_qr_directory(), "default directory"),
            explicit=(
                _normalize_setting(explicit_directory, "explicit directory")
                if explicit_directory is not None
                else None
            ),
        )

    @property
    def initialized(self) -> bool:
        return self._validator is not None

    @property
    def validator(self) -> SecurityValidator:
        self._require_initialized("validator")
        return self._validator

    @property
    def policy_kind(self) -> SecurityPolicyKind:
        return self._policy_kind

    async def initialize(self) -> None:
        """Build the validator and read the environment level.

        Raises:
            ConfigurationError: If the policy options are invalid
        """
        self._validator = self._build_validator(self._allowed_roots)
        self._state = replace(self._state, environment=self._read_environment())
        directory, source = self._state.resolve()
        logger.info("Configuration provider ready: %s (source=%s)", directory, source.value)

    def get_current_qr_directory(self) -> str:
        """Return the directory selected by the precedence chain."""
        return self._state.resolve()[0]

    def get_configuration_source(self) -> ConfigSource:
        return self._state.resolve()[1]

    def get_status(self) -> ConfigurationStatus:
        state = self._state
        directory, source = state.resolve()
        return ConfigurationStatus(
            current_directory=directory,
            source=source,
            last_updated=state.last_updated,
        )

    async def update_from_roots(self, directory: str) -> bool:
        """Adopt ``directory`` as the ROOTS value if it passes validation.

        Returns:
            True if the directory was adopted, False if it was rejected.
            A rejection leaves the configuration untouched.

        Raises:
            ProviderNotInitializedError: If ``initialize()`` was not called
        """
        self._require_initialized("update_from_roots")
        started = self._metrics.start()
        adopted = await self._adopt_roots(directory)
        self._metrics.record(
            OperationType.CONFIG_UPDATE, started, adopted, action="update_from_roots"
        )
        return adopted

    async def _adopt_roots(self, directory: str) -> bool:
        validator = self._validator
        result = await validator.validate_directory_security(directory)
        if not result.valid:
            logger.warning("Roots directory rejected: %s (%s)", directory, result.reason)
            return False

        async with self._lock:
            # The whitelist may have changed while the probe was running
            if self._validator is not validator and not self._is_whitelisted(result.normalized_path):
                logger.warning(
                    "Roots directory %s no longer allowed after whitelist change",
                    result.normalized_path,
                )
                return False
            event = self._commit(
                replace(self._state, roots=result.normalized_path, roots_valid=True),
                always=True,
            )

        logger.info("Directory updated from roots: %s", result.normalized_path)
        await self._observers.publish(event)
        return True

    async def clear_roots_configuration(self) -> None:
        """Drop the ROOTS value. Resolution falls through to the next level."""
        with self._recording("clear_roots_configuration"):
            async with self._lock:
                event = self._commit(replace(self._state, roots=None, roots_valid=False))
        if event is not None:
            logger.info("Roots configuration cleared, now using %s", event.new_source.value)
            await self._observers.publish(event)

    async def set_explicit_directory(self, directory: str) -> None:
        """Set the EXPLICIT override.

        Raises:
            ConfigurationError: If ``directory`` is empty or malformed
        """
        with self._recording("set_explicit_directory"):
            explicit = _normalize_setting(directory, "explicit directory")
            async with self._lock:
                event = self._commit(replace(self._state, explicit=explicit), always=True)
        await self._observers.publish(event)

    async def clear_explicit_directory(self) -> None:
        with self._recording("clear_explicit_directory"):
            async with self._lock:
                event = self._commit(replace(self._state, explicit=None))
        if event is not None:
            await self._observers.publish(event)

    async def reload_environment(self) -> None:
        """Re-read the environment variable and apply the result."""
        with self._recording("reload_environment"):
            async with self._lock:
                event = self._commit(replace(self._state, environment=self._read_environment()))
        if event is not None:
            await self._observers.publish(event)

    async def update_allowed_directories(self, directories: Iterable[str]) -> None:
        """Replace the whitelist used for roots updates.

        A ROOTS value outside the new whitelist stops being valid and
        resolution falls through to the next level.

        Raises:
            ConfigurationError: If a directory is empty or not a string
            ProviderNotInitializedError: If ``initialize()`` was not called
        """
        self._require_initialized("update_allowed_directories")
        with self._recording("update_allowed_directories"):
            directories = list(directories)
            validator = self._build_validator(directories)
            async with self._lock:
                self._allowed_roots = directories
                self._validator = validator
                state = self._state
                roots_valid = state.roots is not None and self._is_whitelisted(state.roots)
                if state.roots is not None and not roots_valid:
                    logger.warning("Roots directory %s is outside the new whitelist", state.roots)
                event = self._commit(replace(state, roots_valid=roots_valid))
        if event is not None:
            await self._observers.publish(event)

    def get_configuration_metrics(
        self, limit: int = DEFAULT_METRICS_LIMIT
    ) -> list[OperationMetrics]:
        """Most recent configuration update timings, newest first."""
        return self._metrics.recent(limit, OperationType.CONFIG_UPDATE)

    def on_configuration_change(self, callback: ConfigurationObserver) -> Subscription:
        """Register ``callback``. Registering the same callback twice is a no-op."""
        return self._observers.subscribe(callback)

    def remove_configuration_observer(self, callback: ConfigurationObserver) -> None:
        self._observers.unsubscribe(callback)

    async def get_directory_info(self) -> DirectoryInfo:
        """Describe the current directory. Recomputed on every call."""
        self._require_initialized("get_directory_info")
        directory, source = self._state.resolve()
        return await self._validator.get_directory_info(directory, source=source)

    def get_allowed_directories(self) -> list[str]:
        if self._validator is not None:
            return list(self._validator.policy.whitelisted_directories)
        return [normalize_path(d) for d in self._allowed_roots]

    def _commit(self, new_state: _State, always: bool = False) -> ConfigurationChangeEvent | None:
        """Swap in ``new_state``; return an event if one should be published.

        Must be called with ``self._lock`` held.
        """
        previous_directory, _ = self._state.resolve()
        new_directory, new_source = new_state.resolve()
        now = datetime.now()
        self._state = replace(new_state, last_updated=now)
        if not always and new_directory == previous_directory:
            return None
        return ConfigurationChangeEvent(
            previous_directory=previous_directory,
            new_directory=new_directory,
            new_source=new_source,
            timestamp=now,
        )

    def _is_whitelisted(self, directory: str) -> bool:
        validator = self._validator
        return validator.is_directory_allowed(directory, validator.policy.whitelisted_directories)

    def _build_validator(self, allowed_roots: list[str]) -> SecurityValidator:
        options: dict = {"allowed_roots": allowed_roots}
        if self._enable_audit_log is not None:
            options["enable_audit_log"] = self._enable_audit_log
        if self._rate_limit is not None:
            options["rate_limit"] = self._rate_limit
        return self._factory.create(self._policy_kind, options)

    def _read_environment(self) -> str | None:
        env = os.environ if self._environ is None else self._environ
        value = env.get(self._env_var, "").strip()
        if not value:
            return None
        try:
            return normalize_path(value)
        except ValueError as e:
            logger.warning("Ignoring invalid %s=%r: %s", self._env_var, value, e)
            return None

    def _require_initialized(self, operation: str) -> None:
        if self._validator is None:
            raise ProviderNotInitializedError(operation)

    @contextmanager
    def _recording(self, action: str) -> Iterator[None]:
        """Record a CONFIG_UPDATE timing; an exception marks it failed."""
        started = self._metrics.start()
        try:
            yield
        except Exception:
            self._metrics.record(OperationType.CONFIG_UPDATE, started, False, action=action)
            raise
        self._metrics.record(OperationType.CONFIG_UPDATE, started, True, action=action)
