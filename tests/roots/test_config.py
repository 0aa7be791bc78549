# tests/roots/test_config.py
from pathlib import Path

import pytest
import yaml

from rootguard.config import RootGuardConfig
from rootguard.exceptions import ConfigurationError
from rootguard.models import SecurityPolicyKind
from rootguard.validator import DEFAULT_PROBE_TIMEOUT


@pytest.fixture
def missing_config(workspace):
    return workspace / "no-such-config.yaml"


def _write(path: Path, data) -> Path:
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return path


class TestLoad:
    def test_defaults_without_file(self, missing_config):
        config = RootGuardConfig.load(config_path=missing_config, environ={})
        assert config.policy is SecurityPolicyKind.STANDARD
        assert config.allowed_roots == []
        assert config.rate_limit is None
        assert config.env_var == "QR_DIRECTORY"
        assert config.probe_timeout == DEFAULT_PROBE_TIMEOUT
        assert config.audit.enabled is None
        assert config.audit.log_file is None

    def test_yaml_file(self, workspace):
        path = _write(
            workspace / "config.yaml",
            {
                "roots": {
                    "policy": "strict",
                    "allowed_roots": [str(workspace / "qrimages")],
                    "rate_limit": 3,
                    "default_directory": str(workspace / "default"),
                    "probe_timeout": 1.5,
                },
                "audit": {"enabled": True, "log_file": str(workspace / "audit.jsonl")},
            },
        )
        config = RootGuardConfig.load(config_path=path, environ={})
        assert config.policy is SecurityPolicyKind.STRICT
        assert config.allowed_roots == [str(workspace / "qrimages")]
        assert config.rate_limit == 3.0
        assert config.default_directory == str(workspace / "default")
        assert config.probe_timeout == 1.5
        assert config.audit.enabled is True
        assert config.audit.log_file == workspace / "audit.jsonl"

    def test_home_is_expanded(self, workspace, monkeypatch):
        monkeypatch.setenv("HOME", str(workspace))
        path = _write(workspace / "config.yaml", {"roots": {"allowed_roots": ["~/qrimages"]}})
        config = RootGuardConfig.load(config_path=path, environ={})
        assert config.allowed_roots == [str(workspace / "qrimages")]

    def test_config_path_from_environment(self, workspace):
        path = _write(workspace / "custom.yaml", {"roots": {"policy": "permissive"}})
        config = RootGuardConfig.load(environ={"ROOTGUARD_CONFIG": str(path)})
        assert config.policy is SecurityPolicyKind.PERMISSIVE

    def test_environment_overrides_file(self, workspace):
        path = _write(
            workspace / "config.yaml",
            {"roots": {"policy": "strict", "allowed_roots": ["/from/file"], "rate_limit": 1}},
        )
        config = RootGuardConfig.load(
            config_path=path,
            environ={
                "ROOTGUARD_POLICY": "Permissive",
                "ROOTGUARD_ALLOWED_ROOTS": "/a, /b ,,",
                "ROOTGUARD_RATE_LIMIT": "4",
                "ROOTGUARD_AUDIT_LOG": str(workspace / "env-audit.jsonl"),
            },
        )
        assert config.policy is SecurityPolicyKind.PERMISSIVE
        assert config.allowed_roots == ["/a", "/b"]
        assert config.rate_limit == 4.0
        assert config.audit.log_file == workspace / "env-audit.jsonl"

    def test_unparseable_file_falls_back_to_defaults(self, workspace, caplog):
        path = workspace / "broken.yaml"
        path.write_text("roots: [unclosed\n", encoding="utf-8")
        config = RootGuardConfig.load(config_path=path, environ={})
        assert config.policy is SecurityPolicyKind.STANDARD
        assert "Failed to load config file" in caplog.text

    def test_empty_file(self, workspace):
        path = workspace / "empty.yaml"
        path.write_text("", encoding="utf-8")
        assert RootGuardConfig.load(config_path=path, environ={}).allowed_roots == []


class TestInvalidValues:
    def test_non_mapping_document(self, workspace):
        path = workspace / "list.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(ConfigurationError, match="mapping"):
            RootGuardConfig.load(config_path=path, environ={})

    def test_unknown_policy(self, missing_config):
        with pytest.raises(ConfigurationError):
            RootGuardConfig.load(config_path=missing_config, environ={"ROOTGUARD_POLICY": "lax"})

    def test_bad_rate_limit(self, missing_config):
        with pytest.raises(ConfigurationError, match="ROOTGUARD_RATE_LIMIT"):
            RootGuardConfig.load(
                config_path=missing_config, environ={"ROOTGUARD_RATE_LIMIT": "fast"}
            )

    def test_allowed_roots_must_be_list(self):
        with pytest.raises(ConfigurationError, match="allowed_roots"):
            RootGuardConfig.from_dict({"roots": {"allowed_roots": "/work"}})

    def test_sections_must_be_mappings(self):
        with pytest.raises(ConfigurationError):
            RootGuardConfig.from_dict({"roots": ["strict"]})


def test_to_dict_reloads_to_same_config(workspace):
    config = RootGuardConfig.from_dict(
        {
            "roots": {"policy": "strict", "allowed_roots": [str(workspace)], "rate_limit": 2},
            "audit": {"log_file": str(workspace / "audit.jsonl")},
        }
    )
    assert RootGuardConfig.from_dict(config.to_dict()) == config
