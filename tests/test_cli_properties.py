"""
Tests for the command-line interface.

Only commands that never touch the live host are exercised here; `run` and
`plan` are covered through the pipeline tests.
"""

from pathlib import Path

import pytest

from secure_bootstrap.backup_store import BackupStore
from secure_bootstrap.cli import (
    DEFAULT_ENV_FILE,
    EXIT_COMPLETED,
    EXIT_FAILED,
    EXIT_PRECONDITION,
    main,
)
from secure_bootstrap.config import DEFAULT_HMAC_SECRET
from secure_bootstrap.config_loader import DOCUMENTED_DEFAULTS
from secure_bootstrap.enums import ConfigurationDomain


@pytest.fixture
def workdir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Empty working directory with no bootstrap options in the environment."""
    for key in list(DOCUMENTED_DEFAULTS) + [
        "ROOT_PASSWORD", "AUDIT_SIGNING_KEY", "NOTIFY_WEBHOOK_URL",
        "TELEGRAM_BOT_TOKEN", "TELEGRAM_CHAT_ID", "SIMULATION_MODE",
    ]:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)
    return tmp_path


class TestConfigCommand:
    """The 'config' subcommand."""

    def test_init_creates_private_file(self, workdir: Path, capsys) -> None:
        assert main(["config", "init", "--language", "de"]) == EXIT_COMPLETED

        path = workdir / DEFAULT_ENV_FILE
        assert path.stat().st_mode & 0o777 == 0o600
        text = path.read_text()
        assert "LANGUAGE=de\n" in text
        assert not any(line.startswith("ROOT_PASSWORD=") for line in text.splitlines())
        assert "Configuration created" in capsys.readouterr().out

    def test_init_refuses_to_overwrite(self, workdir: Path) -> None:
        path = workdir / DEFAULT_ENV_FILE
        path.write_text("ADMIN_USER=ops\n")

        assert main(["config", "init"]) == EXIT_FAILED
        assert path.read_text() == "ADMIN_USER=ops\n"

        assert main(["config", "init", "--force"]) == EXIT_COMPLETED
        assert "ADMIN_USER=admin\n" in path.read_text()

    def test_validate_initialized_file(self, workdir: Path, capsys) -> None:
        main(["config", "init"])
        capsys.readouterr()

        assert main(["config", "validate"]) == EXIT_COMPLETED
        out = capsys.readouterr().out
        assert "Configuration is valid." in out
        assert "BACKUP_HMAC_SECRET" in out

    def test_validate_reports_errors(self, workdir: Path, capsys) -> None:
        (workdir / "custom.env").write_text("ADMIN_USER=root\nFIREWALL_EXTRA_PORTS=http\n")

        assert main(["config", "validate", "--path", "custom.env"]) == EXIT_PRECONDITION
        out = capsys.readouterr().out
        assert "Configuration is invalid:" in out
        assert "ADMIN_USER" in out
        assert "'http'" in out

    def test_unparseable_file_is_a_precondition_error(self, workdir: Path, capsys) -> None:
        (workdir / DEFAULT_ENV_FILE).write_text("SSH_PORT=twenty-two\n")

        assert main(["config", "show"]) == EXIT_PRECONDITION
        assert "SSH_PORT" in capsys.readouterr().err

    def test_show_reads_environment(self, workdir: Path, monkeypatch: pytest.MonkeyPatch, capsys) -> None:
        monkeypatch.setenv("SSH_PORT", "2222")

        assert main(["config", "show"]) == EXIT_COMPLETED
        out = capsys.readouterr().out
        assert "Configuration from: environment" in out
        assert "SSH port: 2222" in out


class TestBackupsCommand:
    """The 'backups' subcommand."""

    def _store(self, workdir: Path, monkeypatch: pytest.MonkeyPatch) -> tuple[BackupStore, Path]:
        state = workdir / "state"
        monkeypatch.setenv("STATE_DIR", str(state))
        artifact = workdir / "sshd.conf"
        artifact.write_text("Port 22\n")
        return BackupStore(state / "backups", DEFAULT_HMAC_SECRET), artifact

    def test_no_backups(self, workdir: Path, monkeypatch: pytest.MonkeyPatch, capsys) -> None:
        monkeypatch.setenv("STATE_DIR", str(workdir / "state"))

        assert main(["backups"]) == EXIT_COMPLETED
        assert "(no backup recorded)" in capsys.readouterr().out

    def test_verify_intact_and_modified_snapshots(
        self, workdir: Path, monkeypatch: pytest.MonkeyPatch, capsys
    ) -> None:
        store, artifact = self._store(workdir, monkeypatch)
        entry, _ = store.backup_once(artifact, ConfigurationDomain.SSH_POLICY)

        assert main(["backups", "--verify"]) == EXIT_COMPLETED
        assert "  OK" in capsys.readouterr().out

        Path(entry.backup_path).write_text("Port 2222\n")
        assert main(["backups", "--verify"]) == EXIT_FAILED
        assert "MODIFIED OR MISSING" in capsys.readouterr().out

    def test_tampered_manifest_is_reported(self, workdir: Path, monkeypatch: pytest.MonkeyPatch, capsys) -> None:
        store, artifact = self._store(workdir, monkeypatch)
        store.backup_once(artifact, ConfigurationDomain.SSH_POLICY)
        monkeypatch.setenv("BACKUP_HMAC_SECRET", "another-secret")

        assert main(["backups"]) == EXIT_FAILED
        assert "Error:" in capsys.readouterr().err


class TestEntryPoint:
    """Argument handling."""

    def test_no_command_prints_help(self, capsys) -> None:
        assert main([]) == EXIT_COMPLETED
        assert "secure-bootstrap" in capsys.readouterr().out

    def test_run_with_invalid_option_stops_before_touching_host(
        self, workdir: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("ASSUME_YES", "maybe")
        assert main(["run"]) == EXIT_PRECONDITION

    def test_explicit_missing_config_file(self, workdir: Path) -> None:
        assert main(["preflight", "--config", "absent.env"]) == EXIT_PRECONDITION
