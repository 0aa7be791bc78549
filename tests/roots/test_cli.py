# tests/roots/test_cli.py
import pytest

from rootguard import cli


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, workspace):
    """Keep the user's config and environment out of CLI runs."""
    for name in (
        "ROOTGUARD_POLICY",
        "ROOTGUARD_ALLOWED_ROOTS",
        "ROOTGUARD_RATE_LIMIT",
        "ROOTGUARD_AUDIT_LOG",
        "ROOTGUARD_CONFIG",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("QR_DIRECTORY", str(workspace / "env-output"))
    monkeypatch.setattr(cli, "setup_logging", lambda *args, **kwargs: None)


@pytest.fixture
def base_args(workspace, allowed_root):
    return ["--config", str(workspace / "none.yaml"), "-A", str(allowed_root)]


class TestCommands:
    def test_status(self, base_args, capsys):
        assert cli.main([*base_args, "status"]) == cli.EXIT_OK
        out = capsys.readouterr().out
        assert "environment" in out

    def test_validate_allowed(self, base_args, allowed_root, capsys):
        assert cli.main([*base_args, "validate", str(allowed_root / "x")]) == cli.EXIT_OK
        assert "allowed" in capsys.readouterr().out

    def test_validate_rejected(self, base_args, capsys):
        assert cli.main([*base_args, "validate", "/definitely/elsewhere"]) == cli.EXIT_REJECTED
        assert "not_whitelisted" in capsys.readouterr().out

    def test_validate_with_profile(self, base_args, workspace, monkeypatch):
        monkeypatch.chdir(workspace)
        assert cli.main([*base_args, "validate", "--profile", "development", "build"]) == cli.EXIT_OK

    def test_roots(self, base_args, allowed_root, capsys):
        code = cli.main([*base_args, "roots", "/bad", str(allowed_root)])
        out = capsys.readouterr().out
        assert code == cli.EXIT_OK
        assert "Declared roots" in out
        assert "Current directory" in out

    def test_roots_none_valid(self, base_args):
        assert cli.main([*base_args, "roots", "/bad"]) == cli.EXIT_REJECTED

    def test_ensure(self, base_args, allowed_root):
        target = allowed_root / "made"
        assert cli.main([*base_args, "ensure", str(target)]) == cli.EXIT_OK
        assert target.is_dir()

    def test_ensure_outside_whitelist(self, base_args, workspace):
        assert cli.main([*base_args, "ensure", str(workspace / "nope")]) == cli.EXIT_REJECTED
        assert not (workspace / "nope").exists()


class TestErrors:
    def test_unknown_policy(self, base_args, capsys):
        assert cli.main(["--policy", "lax", *base_args, "status"]) == cli.EXIT_CONFIG_ERROR
        assert "Configuration error" in capsys.readouterr().out

    def test_missing_command(self):
        with pytest.raises(SystemExit):
            cli.main([])
