"""
Tests for adapters — command runner, registry, mocks, and the real adapters.
"""

import subprocess
from pathlib import Path
from types import SimpleNamespace

import pytest

from macsetup.adapters.base import CommandResult
from macsetup.adapters.mock import FakePackageManager, FakeVault
from macsetup.adapters.packages.homebrew import HomebrewAdapter
from macsetup.adapters.registry import MOCK_INSTALLER_SCRIPT, ROLES, AdapterRegistry
from macsetup.adapters.shell.command import run_command
from macsetup.adapters.shell.filesystem import LocalFileStore
from macsetup.adapters.system.defaults import DefaultsAdapter, format_value
from macsetup.adapters.system.launchd import LaunchdAdapter
from macsetup.core.config.settings import Settings
from macsetup.core.engine.privilege import PrivilegeSession
from macsetup.core.errors import (
    ErrorKind,
    ExternalCommandFailed,
    InvalidDeclaration,
    PermissionDenied,
    ProbeTimeout,
)
from macsetup.core.models.resource import InstallerSpec

# ── Command runner ──────────────────────────────────────────────────


class TestRunCommand:
    def test_captures_output(self, monkeypatch):
        seen = {}

        def fake_run(cmd, **kwargs):
            seen["cmd"] = cmd
            seen.update(kwargs)
            return SimpleNamespace(returncode=0, stdout="hello\n", stderr="")

        monkeypatch.setattr("macsetup.adapters.shell.command.subprocess.run", fake_run)
        result = run_command(["echo", "hello"], timeout=5, env_overrides={"FOO": "bar"})

        assert result.ok
        assert result.stdout == "hello\n"
        assert seen["timeout"] == 5
        assert seen["env"]["FOO"] == "bar"
        assert seen["input"] is None

    def test_timeout(self, monkeypatch):
        def fake_run(cmd, **kwargs):
            raise subprocess.TimeoutExpired(cmd, kwargs["timeout"])

        monkeypatch.setattr("macsetup.adapters.shell.command.subprocess.run", fake_run)
        result = run_command(["sleep", "100"], timeout=1)
        assert result.timed_out
        assert not result.ok

    def test_command_not_found(self, monkeypatch):
        def fake_run(cmd, **kwargs):
            raise FileNotFoundError(cmd[0])

        monkeypatch.setattr("macsetup.adapters.shell.command.subprocess.run", fake_run)
        result = run_command(["no-such-tool"])
        assert result.return_code == 127
        assert "command not found" in result.stderr

    def test_sudo_password_on_stdin(self, monkeypatch):
        seen = {}

        def fake_run(cmd, **kwargs):
            seen["cmd"] = cmd
            seen["input"] = kwargs["input"]
            return SimpleNamespace(returncode=0, stdout="", stderr="")

        monkeypatch.setattr("macsetup.adapters.shell.command.subprocess.run", fake_run)
        session = PrivilegeSession(prompt=lambda: "s3cret", validate=lambda _pw: True, is_root=False)
        session.ensure()
        run_command(["cp", "a", "b"], sudo=session)

        assert seen["cmd"] == ["sudo", "-S", "-k", "-p", "", "cp", "a", "b"]
        assert "s3cret" not in seen["cmd"]
        assert seen["input"] == "s3cret\n"

    def test_sudo_without_credential(self):
        session = PrivilegeSession(prompt=None, is_root=False)
        with pytest.raises(PermissionDenied):
            run_command(["cp", "a", "b"], sudo=session)

    def test_sudo_skipped_for_root(self, monkeypatch):
        seen = {}

        def fake_run(cmd, **kwargs):
            seen["cmd"] = cmd
            return SimpleNamespace(returncode=0, stdout="", stderr="")

        monkeypatch.setattr("macsetup.adapters.shell.command.subprocess.run", fake_run)
        run_command(["cp", "a", "b"], sudo=PrivilegeSession(is_root=True))
        assert seen["cmd"] == ["cp", "a", "b"]


class TestCommandResultCheck:
    def test_ok_returns_self(self):
        result = CommandResult(cmd=["true"])
        assert result.check("true") is result

    def test_probe_timeout(self):
        with pytest.raises(ProbeTimeout):
            CommandResult(cmd=["x"], timed_out=True, timeout=3).check("x", probing=True)

    def test_apply_timeout(self):
        with pytest.raises(ExternalCommandFailed, match="timed out after 3s"):
            CommandResult(cmd=["x"], timed_out=True, timeout=3).check("x")

    def test_permission(self):
        with pytest.raises(PermissionDenied):
            CommandResult(cmd=["x"], return_code=1, stderr="Operation not permitted").check("x")

    def test_exit_code(self):
        with pytest.raises(ExternalCommandFailed) as exc_info:
            CommandResult(cmd=["x"], return_code=2, stderr="boom").check("x")
        assert exc_info.value.return_code == 2
        assert "boom" in exc_info.value.output


# ── Registry and mocks ──────────────────────────────────────────────


class TestAdapterRegistry:
    def test_mock_binds_every_role(self):
        registry = AdapterRegistry.mock()
        assert registry.mock_mode
        assert sorted(registry.list_roles()) == sorted(ROLES)

    def test_real_binds_every_role(self):
        registry = AdapterRegistry.real(Settings())
        assert not registry.mock_mode
        assert registry.packages.name == "homebrew"
        assert registry.preferences.name == "defaults"
        assert sorted(registry.list_roles()) == sorted(ROLES)

    def test_unknown_role(self):
        with pytest.raises(ValueError, match="Unknown adapter role"):
            AdapterRegistry().register("printer", FakePackageManager())

    def test_missing_role(self):
        with pytest.raises(LookupError):
            AdapterRegistry().get("packages")

    def test_mutating_calls_collected(self):
        registry = AdapterRegistry.mock()
        registry.packages.query("jq")
        registry.packages.install("jq")
        assert registry.mutating_calls() == [("packages", "install", ("jq", None, False))]

    def test_mock_serves_seeded_installers(self, tmp_path: Path):
        installer = InstallerSpec(url="https://example.com/install.sh", creates="/Users/t/.tool/bin")
        registry = AdapterRegistry.mock([installer])

        script = registry.downloads.fetch(installer.url, tmp_path / "install.sh", timeout=5)
        registry.shell.run_script(script, [])
        assert script.read_bytes() == MOCK_INSTALLER_SCRIPT
        assert registry.files.exists("/Users/t/.tool/bin")

    def test_adapter_status(self):
        status = AdapterRegistry.mock().adapter_status()
        assert status["packages"]["available"] is True
        assert status["packages"]["type"] == "FakePackageManager"


class TestFakes:
    def test_injected_failure(self):
        pkgs = FakePackageManager()
        pkgs.set_failure("install", ExternalCommandFailed("boom"))
        with pytest.raises(ExternalCommandFailed):
            pkgs.install("jq")
        assert pkgs.calls("install") == [("jq", None, False)]
        assert "jq" not in pkgs.installed

        pkgs.clear_failure("install")
        pkgs.install("jq")
        assert pkgs.installed["jq"] == "1.0.0"

    def test_pinned_install_uses_versioned_name(self):
        pkgs = FakePackageManager(installed={"node": "22.1.0"})
        pkgs.install("node", version="18")
        assert pkgs.installed == {"node": "22.1.0", "node@18": "18"}
        assert pkgs.query("node") == "22.1.0"

    def test_vault_missing_item(self):
        with pytest.raises(ExternalCommandFailed, match="not found"):
            FakeVault().get("github", "token")


# ── Homebrew ────────────────────────────────────────────────────────


def _brew_with(monkeypatch, responses):
    calls = []

    def fake_run(cmd, **kwargs):
        calls.append(cmd)
        return responses.pop(0)

    monkeypatch.setattr("macsetup.adapters.packages.homebrew.run_command", fake_run)
    monkeypatch.setattr("macsetup.adapters.packages.homebrew.find_brew", lambda: "/opt/homebrew/bin/brew")
    return HomebrewAdapter(), calls


class TestHomebrewAdapter:
    def test_query_installed(self, monkeypatch):
        brew, calls = _brew_with(monkeypatch, [CommandResult(cmd=[], stdout="jq 1.6 1.7.1\n")])
        assert brew.query("jq") == "1.7.1"
        assert calls[0] == ["/opt/homebrew/bin/brew", "list", "--versions", "jq"]

    def test_query_not_installed(self, monkeypatch):
        brew, _ = _brew_with(monkeypatch, [CommandResult(cmd=[], return_code=1)])
        assert brew.query("jq") is None

    def test_query_timeout(self, monkeypatch):
        brew, _ = _brew_with(monkeypatch, [CommandResult(cmd=[], return_code=-1, timed_out=True, timeout=30)])
        with pytest.raises(ProbeTimeout):
            brew.query("jq")

    def test_query_cask(self, monkeypatch):
        brew, calls = _brew_with(monkeypatch, [CommandResult(cmd=[], stdout="iterm2 3.5.0\n")])
        assert brew.query("iterm2", cask=True) == "3.5.0"
        assert "--cask" in calls[0]

    def test_outdated(self, monkeypatch):
        payload = '{"formulae": [{"name": "jq", "installed_versions": ["1.6"]}], "casks": []}'
        brew, _ = _brew_with(monkeypatch, [CommandResult(cmd=[], stdout=payload)])
        assert brew.outdated("jq")

    def test_not_outdated(self, monkeypatch):
        brew, _ = _brew_with(monkeypatch, [CommandResult(cmd=[], stdout='{"formulae": [], "casks": []}')])
        assert not brew.outdated("jq")

    def test_install_pinned(self, monkeypatch):
        brew, calls = _brew_with(monkeypatch, [CommandResult(cmd=[])])
        brew.install("python", version="3.12")
        assert calls[0] == ["/opt/homebrew/bin/brew", "install", "python@3.12"]

    def test_install_failure(self, monkeypatch):
        brew, _ = _brew_with(monkeypatch, [CommandResult(cmd=[], return_code=1, stderr="No formula")])
        with pytest.raises(ExternalCommandFailed, match="brew install nope"):
            brew.install("nope")


# ── defaults ────────────────────────────────────────────────────────


def _defaults_with(monkeypatch, responses):
    calls = []

    def fake_run(cmd, **kwargs):
        calls.append(cmd)
        return responses.pop(0)

    monkeypatch.setattr("macsetup.adapters.system.defaults.run_command", fake_run)
    return DefaultsAdapter(), calls


class TestDefaultsAdapter:
    def test_read_bool(self, monkeypatch):
        store, calls = _defaults_with(monkeypatch, [
            CommandResult(cmd=[], stdout="Type is boolean\n"),
            CommandResult(cmd=[], stdout="1\n"),
        ])
        assert store.read("com.apple.dock", "autohide") == ("bool", True)
        assert calls[0] == ["defaults", "read-type", "com.apple.dock", "autohide"]

    def test_read_int(self, monkeypatch):
        store, _ = _defaults_with(monkeypatch, [
            CommandResult(cmd=[], stdout="Type is integer\n"),
            CommandResult(cmd=[], stdout="36\n"),
        ])
        assert store.read("com.apple.dock", "tilesize") == ("int", 36)

    def test_read_missing(self, monkeypatch):
        store, calls = _defaults_with(monkeypatch, [
            CommandResult(
                cmd=[], return_code=1,
                stderr="The domain/default pair of (com.apple.dock, nope) does not exist",
            ),
        ])
        assert store.read("com.apple.dock", "nope") is None
        assert len(calls) == 1

    def test_write(self, monkeypatch):
        store, calls = _defaults_with(monkeypatch, [CommandResult(cmd=[])])
        store.write("com.apple.finder", "ShowPathbar", True, "bool")
        assert calls[0] == ["defaults", "write", "com.apple.finder", "ShowPathbar", "-bool", "true"]

    def test_write_unknown_type(self, monkeypatch):
        store, calls = _defaults_with(monkeypatch, [])
        with pytest.raises(InvalidDeclaration, match="type 'array' cannot be written") as exc_info:
            store.write("d", "k", [1], "array")
        assert exc_info.value.kind is ErrorKind.INVALID_DECLARATION
        assert calls == []

    def test_write_with_sudo(self, monkeypatch):
        seen = {}

        def fake_run(cmd, **kwargs):
            seen["cmd"] = cmd
            seen.update(kwargs)
            return CommandResult(cmd=cmd)

        monkeypatch.setattr("macsetup.adapters.system.defaults.run_command", fake_run)
        sudo = PrivilegeSession.granted()
        DefaultsAdapter().write("/Library/Preferences/com.apple.loginwindow", "GuestEnabled", False, "bool", sudo=sudo)
        assert seen["cmd"][-2:] == ["-bool", "false"]
        assert seen["sudo"] is sudo

    @pytest.mark.parametrize("value,value_type,expected", [
        (True, "bool", "true"),
        ("no", "bool", "false"),
        (0.5, "float", "0.5"),
        ("Nlsv", "string", "Nlsv"),
    ])
    def test_format_value(self, value, value_type, expected):
        assert format_value(value, value_type) == expected


# ── Local files ─────────────────────────────────────────────────────


class TestLocalFileStore:
    def test_write_and_read(self, tmp_path: Path):
        store = LocalFileStore()
        target = tmp_path / "nested" / "config"
        store.write_bytes(str(target), b"data", mode=0o600)

        assert store.read_bytes(str(target)) == b"data"
        assert store.mode(str(target)) == 0o600
        assert list(target.parent.glob(".macsetup_*")) == []

    def test_missing(self, tmp_path: Path):
        store = LocalFileStore()
        assert store.read_bytes(str(tmp_path / "nope")) is None
        assert store.mode(str(tmp_path / "nope")) is None
        assert not store.exists(str(tmp_path / "nope"))

    def test_keeps_existing_mode(self, tmp_path: Path):
        target = tmp_path / "script.sh"
        target.write_bytes(b"old")
        target.chmod(0o755)
        LocalFileStore().write_bytes(str(target), b"new")
        assert target.stat().st_mode & 0o7777 == 0o755

    def test_directory_in_the_way(self, tmp_path: Path):
        with pytest.raises(ExternalCommandFailed, match="directory"):
            LocalFileStore().read_bytes(str(tmp_path))


# ── launchd ─────────────────────────────────────────────────────────


def _launchd_with(monkeypatch, tmp_path: Path, loaded: bool):
    calls = []

    def fake_run(cmd, **kwargs):
        calls.append(cmd)
        if cmd[:2] == ["launchctl", "list"]:
            return CommandResult(cmd=cmd, return_code=0 if loaded else 113)
        return CommandResult(cmd=cmd)

    monkeypatch.setattr("macsetup.adapters.system.launchd.run_command", fake_run)
    return LaunchdAdapter(agents_dir=tmp_path, files=LocalFileStore()), calls


class TestLaunchdAdapter:
    def test_register_loads(self, monkeypatch, tmp_path: Path):
        launchd, calls = _launchd_with(monkeypatch, tmp_path, loaded=False)
        launchd.register("com.user.job", b"<plist/>")

        path = tmp_path / "com.user.job.plist"
        assert path.read_bytes() == b"<plist/>"
        assert calls[-1] == ["launchctl", "load", "-w", str(path)]

    def test_reregister_unloads_first(self, monkeypatch, tmp_path: Path):
        (tmp_path / "com.user.job.plist").write_bytes(b"old")
        launchd, calls = _launchd_with(monkeypatch, tmp_path, loaded=True)
        launchd.register("com.user.job", b"new")
        assert [c[1] for c in calls] == ["list", "unload", "load"]

    def test_register_without_loading(self, monkeypatch, tmp_path: Path):
        (tmp_path / "com.user.job.plist").write_bytes(b"old")
        launchd, calls = _launchd_with(monkeypatch, tmp_path, loaded=True)
        result = launchd.register("com.user.job", b"restored", load=False)

        assert (tmp_path / "com.user.job.plist").read_bytes() == b"restored"
        assert [c[1] for c in calls] == ["list", "unload"]
        assert "not loaded" in result.output
