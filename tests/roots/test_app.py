# tests/roots/test_app.py
import json

import pytest

from rootguard.app import build_audit_sink, build_roots_manager
from rootguard.audit import FanOutAuditSink, LoggingAuditSink
from rootguard.config import AuditConfig, RootGuardConfig
from rootguard.exceptions import ConfigurationError
from rootguard.models import ConfigSource, SecurityPolicyKind


def test_logging_sink_without_audit_file():
    assert isinstance(build_audit_sink(RootGuardConfig()), LoggingAuditSink)


def test_file_sink_is_added(workspace):
    config = RootGuardConfig(audit=AuditConfig(log_file=workspace / "audit.jsonl"))
    assert isinstance(build_audit_sink(config), FanOutAuditSink)


@pytest.mark.asyncio
async def test_build_wires_components(workspace, allowed_root):
    log_file = workspace / "audit" / "roots.jsonl"
    config = RootGuardConfig(
        policy=SecurityPolicyKind.STANDARD,
        allowed_roots=[str(allowed_root)],
        default_directory=str(workspace / "default"),
        audit=AuditConfig(log_file=log_file),
    )

    guard = await build_roots_manager(config, environ={})

    assert guard.provider.initialized
    assert guard.manager.validator is guard.provider.validator
    assert guard.provider.get_configuration_source() is ConfigSource.DEFAULT

    result = await guard.manager.handle_roots_changed({"roots": ["/bad", str(allowed_root)]})
    assert result.valid
    assert guard.provider.get_configuration_source() is ConfigSource.ROOTS

    records = [json.loads(line) for line in log_file.read_text(encoding="utf-8").splitlines()]
    assert {"rejected", "allowed"} <= {r["outcome"] for r in records}
    assert all(r["policy"] == "standard" for r in records)


@pytest.mark.asyncio
async def test_build_reads_environment_level(workspace):
    env_dir = workspace / "env"
    guard = await build_roots_manager(
        RootGuardConfig(default_directory=str(workspace / "default")),
        environ={"QR_DIRECTORY": str(env_dir)},
    )
    assert guard.provider.get_current_qr_directory() == str(env_dir)
    assert guard.provider.get_configuration_source() is ConfigSource.ENVIRONMENT


@pytest.mark.asyncio
async def test_build_loads_config_when_omitted(workspace):
    config_file = workspace / "config.yaml"
    config_file.write_text("roots:\n  policy: permissive\n", encoding="utf-8")
    guard = await build_roots_manager(
        environ={"ROOTGUARD_CONFIG": str(config_file), "QR_DIRECTORY": str(workspace)}
    )
    assert guard.config.policy is SecurityPolicyKind.PERMISSIVE
    assert guard.provider.validator.kind is SecurityPolicyKind.PERMISSIVE


@pytest.mark.asyncio
async def test_invalid_rate_limit_is_reported(workspace):
    config = RootGuardConfig(rate_limit=500, default_directory=str(workspace))
    with pytest.raises(ConfigurationError):
        await build_roots_manager(config, environ={})


@pytest.mark.asyncio
async def test_separate_instances_share_nothing(workspace, allowed_root):
    config = RootGuardConfig(allowed_roots=[str(allowed_root)], default_directory=str(workspace))
    first = await build_roots_manager(config, environ={})
    second = await build_roots_manager(config, environ={})

    await first.manager.handle_roots_changed({"roots": [str(allowed_root)]})

    assert first.provider.get_configuration_source() is ConfigSource.ROOTS
    assert second.provider.get_configuration_source() is ConfigSource.DEFAULT
    assert first.factory is not second.factory
