"""
Tests for CLI commands — run, status, rollback, runs, profiles, backups.
"""

import json
import textwrap
from pathlib import Path

import pytest
from click.testing import CliRunner

from macsetup.main import cli

PROFILES = """\
    profiles:
      finder:
        description: Finder tweaks
        resources:
          - id: pref:com.apple.finder.ShowPathbar
            kind: preference_key
            desired_value: true
          - id: pref:com.apple.finder.AppleShowAllFiles
            kind: preference_key
            desired_value: true
        optional:
          - id: brew:jq
            kind: package
            desired_value: any
"""


@pytest.fixture
def config(tmp_path: Path) -> Path:
    path = tmp_path / "macsetup.yml"
    path.write_text(textwrap.dedent(PROFILES))
    return path


@pytest.fixture
def base_args(tmp_path: Path, config: Path) -> list[str]:
    return ["--config", str(config), "--state-dir", str(tmp_path / "state")]


class TestCLIGlobal:
    """Tests for global CLI behavior."""

    def test_help(self):
        runner = CliRunner()
        result = runner.invoke(cli, ["--help"])
        assert result.exit_code == 0
        assert "macOS workstation provisioning" in result.output
        for command in ("run", "status", "rollback", "runs", "profiles", "validate", "backups"):
            assert command in result.output

    def test_version(self):
        runner = CliRunner()
        result = runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output


class TestRunCommand:
    def test_mock_run(self, base_args):
        runner = CliRunner()
        result = runner.invoke(cli, [*base_args, "run", "finder", "--mock", "--no-confirm"])
        assert result.exit_code == 0, result.output
        assert "[mock] finder" in result.output
        assert "Result: ok — 2 applied, 0 unchanged, 0 skipped, 0 failed" in result.output

    def test_dry_run(self, base_args):
        runner = CliRunner()
        result = runner.invoke(cli, [*base_args, "run", "finder", "--mock", "--dry-run"])
        assert result.exit_code == 0, result.output
        assert "[dry-run] finder" in result.output
        assert "2 skipped" in result.output
        assert "would: defaults write" in result.output

    def test_with_optional(self, base_args):
        runner = CliRunner()
        result = runner.invoke(
            cli, [*base_args, "run", "finder", "--mock", "--no-confirm", "--with-optional"],
        )
        assert result.exit_code == 0, result.output
        assert "3 applied" in result.output

    def test_confirm_declined(self, base_args):
        runner = CliRunner()
        result = runner.invoke(cli, [*base_args, "run", "finder", "--mock"], input="n\n")
        assert result.exit_code == 1
        assert "Aborted by user." in result.output

    def test_confirm_accepted(self, base_args):
        runner = CliRunner()
        result = runner.invoke(cli, [*base_args, "run", "finder", "--mock"], input="y\n")
        assert result.exit_code == 0, result.output
        assert "2 applied" in result.output

    def test_json(self, base_args):
        runner = CliRunner()
        result = runner.invoke(
            cli, [*base_args, "run", "finder", "--mock", "--no-confirm", "--json"],
        )
        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["profile"] == "finder"
        assert data["run"]["counts"]["applied"] == 2
        assert [o["resource_id"] for o in data["run"]["outcomes"]] == [
            "pref:com.apple.finder.ShowPathbar",
            "pref:com.apple.finder.AppleShowAllFiles",
        ]

    def test_unknown_profile(self, base_args):
        runner = CliRunner()
        result = runner.invoke(cli, [*base_args, "run", "nope", "--mock", "--no-confirm"])
        assert result.exit_code == 1
        assert "Unknown profile 'nope'" in result.output

    def test_run_is_logged(self, base_args, tmp_path: Path):
        runner = CliRunner()
        runner.invoke(cli, [*base_args, "run", "finder", "--mock", "--no-confirm"])
        index = tmp_path / "state" / "runs" / "index.ndjson"
        assert index.is_file()
        assert json.loads(index.read_text().splitlines()[0])["profile"] == "finder"


class TestStatusCommand:
    def test_status_mock(self, base_args):
        runner = CliRunner()
        result = runner.invoke(cli, [*base_args, "status", "finder", "--mock"])
        assert result.exit_code == 0, result.output
        assert "Status — profile 'finder'" in result.output
        assert "0/2 in sync" in result.output
        assert "missing" in result.output

    def test_status_json_with_last_run(self, base_args):
        runner = CliRunner()
        runner.invoke(cli, [*base_args, "run", "finder", "--mock", "--no-confirm"])
        result = runner.invoke(cli, [*base_args, "status", "--mock", "--json"])
        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["total"] == 2
        assert data["last_run"]["profile"] == "finder"


class TestRollbackCommand:
    def test_no_backup(self, base_args):
        runner = CliRunner()
        result = runner.invoke(cli, [*base_args, "rollback", "pref:com.apple.finder.ShowPathbar", "--mock"])
        assert result.exit_code == 1
        assert "[NoBackupFound]" in result.output

    def test_no_backup_json(self, base_args):
        runner = CliRunner()
        result = runner.invoke(cli, [*base_args, "rollback", "pref:x.y", "--mock", "--json"])
        assert result.exit_code == 1
        data = json.loads(result.output)
        assert data["ok"] is False
        assert data["error_kind"] == "NoBackupFound"


class TestRunsCommand:
    def test_empty(self, base_args):
        runner = CliRunner()
        result = runner.invoke(cli, [*base_args, "runs"])
        assert result.exit_code == 0
        assert "No runs recorded yet." in result.output

    def test_lists_runs(self, base_args):
        runner = CliRunner()
        runner.invoke(cli, [*base_args, "run", "finder", "--mock", "--no-confirm"])
        runner.invoke(cli, [*base_args, "run", "finder", "--mock", "--dry-run"])
        result = runner.invoke(cli, [*base_args, "runs", "--json"])
        assert result.exit_code == 0
        entries = json.loads(result.output)
        assert len(entries) == 2
        assert entries[0]["dry_run"] is True


class TestProfilesCommand:
    def test_list(self, base_args):
        runner = CliRunner()
        result = runner.invoke(cli, [*base_args, "profiles"])
        assert result.exit_code == 0
        assert "finder: 2 resources + 1 optional" in result.output
        assert "Finder tweaks" in result.output

    def test_bundled(self, tmp_path: Path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        runner = CliRunner()
        result = runner.invoke(cli, ["profiles", "--json"])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["source"].startswith("<bundled>")
        assert "developer" in data["profiles"]


class TestValidateCommand:
    def test_valid(self, base_args):
        runner = CliRunner()
        result = runner.invoke(cli, [*base_args, "validate"])
        assert result.exit_code == 0
        assert "Profiles are valid" in result.output

    def test_invalid(self, tmp_path: Path):
        bad = tmp_path / "macsetup.yml"
        bad.write_text("profiles:\n  x:\n    resources:\n      - {id: a, kind: bogus}\n")
        runner = CliRunner()
        result = runner.invoke(cli, ["--config", str(bad), "validate"])
        assert result.exit_code == 1
        assert "Profile errors" in result.output
        assert "bogus" in result.output

    def test_missing_file(self, tmp_path: Path):
        runner = CliRunner()
        result = runner.invoke(cli, ["--config", str(tmp_path / "nope.yml"), "validate"])
        assert result.exit_code == 1
        assert "not found" in result.output


class TestBackupsCommand:
    def test_list_empty(self, base_args):
        runner = CliRunner()
        result = runner.invoke(cli, [*base_args, "backups", "list"])
        assert result.exit_code == 0
        assert "No backups found." in result.output

    def test_list_after_run(self, base_args):
        runner = CliRunner()
        runner.invoke(cli, [*base_args, "run", "finder", "--mock", "--no-confirm"])
        result = runner.invoke(cli, [*base_args, "backups", "list"])
        assert result.exit_code == 0
        assert "Backups (2)" in result.output
        assert "(created, nothing to restore)" in result.output

    def test_prune_needs_rule(self, base_args):
        runner = CliRunner()
        result = runner.invoke(cli, [*base_args, "backups", "prune"])
        assert result.exit_code == 1
        assert "Nothing to prune" in result.output

    def test_prune_keep(self, base_args):
        runner = CliRunner()
        result = runner.invoke(cli, [*base_args, "backups", "prune", "--keep", "1"])
        assert result.exit_code == 0
        assert "Removed 0 backup(s)" in result.output
