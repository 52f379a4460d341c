"""
Tests for the reconcile loop — probe, decide, back up, apply, verify.

Everything runs against the in-memory fakes of ``AdapterRegistry.mock()``.
"""

import hashlib
from pathlib import Path

import pytest

from macsetup.core.engine.privilege import PrivilegeSession
from macsetup.core.errors import ErrorKind, ExternalCommandFailed, InvalidDeclaration, ProbeTimeout
from macsetup.core.models.outcome import OutcomeStatus
from macsetup.core.models.resource import ResourceDeclaration
from macsetup.core.persistence.backup_store import BackupStore
from macsetup.core.reporting.status_reporter import StatusReporter
from tests.factories import managed_file, package, pam, pref

# ── Convergence ─────────────────────────────────────────────────────


class TestIdempotence:
    def test_second_run_is_all_unchanged(self, make_reconciler, registry):
        decls = [
            package("jq"),
            pref("ShowPathbar", True),
            managed_file("/Users/t/.gitconfig", content="[user]\n  name = t\n"),
        ]
        first = make_reconciler().run("dev", decls)
        assert [o.status for o in first.outcomes] == [OutcomeStatus.APPLIED] * 3

        before = len(registry.mutating_calls())
        second = make_reconciler().run("dev", decls)
        assert all(o.status is OutcomeStatus.UNCHANGED for o in second.outcomes)
        assert len(registry.mutating_calls()) == before

    def test_already_in_sync_is_untouched(self, make_reconciler, registry):
        registry.preferences.values[("com.example.app", "ShowPathbar")] = ("bool", True)
        record = make_reconciler().run("dev", [pref("ShowPathbar", True)])
        assert record.outcomes[0].status is OutcomeStatus.UNCHANGED
        assert registry.mutating_calls() == []

    def test_declaration_order_preserved(self, make_reconciler):
        decls = [pref("B", 1), pref("A", 2), package("zsh")]
        record = make_reconciler().run("dev", decls)
        assert [o.resource_id for o in record.outcomes] == [d.id for d in decls]

    def test_exactly_one_outcome_per_resource(self, make_reconciler):
        decls = [pref("A", 1), pref("B", 2)]
        record = make_reconciler().run("dev", decls)
        assert len(record.outcomes) == len(decls)


# ── Backups ─────────────────────────────────────────────────────────


class TestBackupBeforeMutate:
    def test_prior_value_captured(self, make_reconciler, registry, settings):
        registry.preferences.values[("com.apple.dock", "autohide")] = ("bool", False)
        decl = pref("autohide", True, domain="com.apple.dock")

        record = make_reconciler().run("dock", [decl])

        outcome = record.outcomes[0]
        assert outcome.status is OutcomeStatus.APPLIED
        assert outcome.backup_id is not None

        entry = BackupStore(settings.backups_dir).restore_latest(decl.id)
        assert entry.backup_id == outcome.backup_id
        assert entry.payload == {"domain": "com.apple.dock", "key": "autohide", "type": "bool", "value": False}

    def test_fresh_creation_records_marker(self, make_reconciler, settings):
        decl = managed_file("/Users/t/new.txt", content="hello")
        record = make_reconciler().run("files", [decl])

        entries = BackupStore(settings.backups_dir).entries(decl.id)
        assert len(entries) == 1
        assert not entries[0].restorable
        assert record.outcomes[0].backup_id == entries[0].backup_id

    def test_packages_not_backed_up(self, make_reconciler, settings):
        record = make_reconciler().run("dev", [package("jq")])
        assert record.outcomes[0].backup_id is None
        assert BackupStore(settings.backups_dir).resource_ids() == []

    def test_backup_failure_blocks_apply(self, make_reconciler, registry, monkeypatch):
        registry.preferences.values[("com.example.app", "A")] = ("int", 1)

        def refuse(*args, **kwargs):
            raise PermissionError("read-only state dir")

        reconciler = make_reconciler()
        monkeypatch.setattr(reconciler.backups, "capture", refuse)
        record = reconciler.run("dev", [pref("A", 2)])

        assert record.outcomes[0].failed
        assert registry.preferences.calls("write") == []


# ── Dry run ─────────────────────────────────────────────────────────


class TestDryRun:
    def test_no_mutation_no_backup(self, make_reconciler, registry, settings):
        registry.preferences.values[("com.example.app", "A")] = ("int", 1)
        decls = [
            pref("A", 2),
            package("jq"),
            managed_file("/Users/t/.zshrc", content="export X=1\n"),
            pam(),
        ]
        record = make_reconciler(dry_run=True).run("dev", decls)

        assert record.dry_run
        assert registry.mutating_calls() == []
        assert BackupStore(settings.backups_dir).resource_ids() == []
        assert all(o.status is OutcomeStatus.SKIPPED for o in record.outcomes)

    def test_skipped_outcomes_say_what_would_happen(self, make_reconciler):
        record = make_reconciler(dry_run=True).run("dev", [package("jq")])
        outcome = record.outcomes[0]
        assert outcome.message == "dry-run"
        assert outcome.annotations[0] == "would: brew install jq"

    def test_unchanged_still_reported(self, make_reconciler, registry):
        registry.packages.installed["jq"] = "1.7.1"
        record = make_reconciler(dry_run=True).run("dev", [package("jq")])
        assert record.outcomes[0].status is OutcomeStatus.UNCHANGED

    def test_unknown_state_skipped(self, make_reconciler, registry):
        registry.preferences.set_failure("read", ProbeTimeout("defaults read: timed out after 30s"))
        record = make_reconciler(dry_run=True).run("dev", [pref("A", 1)])
        outcome = record.outcomes[0]
        assert outcome.status is OutcomeStatus.SKIPPED
        assert "state unknown" in outcome.message


# ── Verification ────────────────────────────────────────────────────


class TestPostcondition:
    def test_write_that_does_not_stick_fails(self, make_reconciler, registry):
        registry.preferences.drop_writes = True
        record = make_reconciler().run("dev", [pref("A", 1)])

        outcome = record.outcomes[0]
        assert outcome.status is OutcomeStatus.FAILED
        assert outcome.error is ErrorKind.POSTCONDITION_NOT_MET
        assert outcome.backup_id is not None

    def test_package_install_that_does_not_stick(self, make_reconciler, registry):
        registry.packages.drop_writes = True
        record = make_reconciler().run("dev", [package("jq")])
        assert record.outcomes[0].error is ErrorKind.POSTCONDITION_NOT_MET


# ── Failure containment ─────────────────────────────────────────────


class TestFailSoft:
    def test_one_failure_does_not_stop_the_rest(self, make_reconciler, registry):
        registry.packages.set_failure(
            "install",
            ExternalCommandFailed("brew install jq: command exited with code 1", output="Error: No formula"),
        )
        record = make_reconciler().run("dev", [package("jq"), pref("A", 1)])

        jq, a = record.outcomes
        assert jq.status is OutcomeStatus.FAILED
        assert jq.error is ErrorKind.EXTERNAL_COMMAND_FAILED
        assert "No formula" in jq.output
        assert a.status is OutcomeStatus.APPLIED
        assert record.status == "partial"

    def test_unexpected_exception_becomes_failure(self, make_reconciler, registry, monkeypatch):
        def explode(*args, **kwargs):
            raise RuntimeError("adapter bug")

        monkeypatch.setattr(registry.preferences, "write", explode)
        record = make_reconciler().run("dev", [pref("A", 1), package("jq")])
        assert record.outcomes[0].error is ErrorKind.EXTERNAL_COMMAND_FAILED
        assert "adapter bug" in record.outcomes[0].message
        assert record.outcomes[1].status is OutcomeStatus.APPLIED

    def test_unknown_unprivileged_treated_as_change(self, make_reconciler, registry):
        registry.packages.set_failure("query", ProbeTimeout("brew list jq: timed out after 30s"))
        reconciler = make_reconciler()
        record = reconciler.run("dev", [package("jq")])

        # install is attempted; the re-probe is still unknown
        assert registry.packages.calls("install")
        assert record.outcomes[0].error is ErrorKind.POSTCONDITION_NOT_MET

    def test_unknown_privileged_fails_closed(self, make_reconciler, registry):
        registry.files.set_failure("read_bytes", ProbeTimeout("read timed out"))
        record = make_reconciler().run("touchid", [pam()])

        outcome = record.outcomes[0]
        assert outcome.status is OutcomeStatus.FAILED
        assert outcome.error is ErrorKind.PROBE_TIMEOUT
        assert registry.files.calls("write_bytes") == []


# ── Checksum gate ───────────────────────────────────────────────────


class TestChecksumGate:
    URL = "https://example.com/dotfiles/zshrc"

    def test_mismatch_never_written(self, make_reconciler, registry, settings):
        registry.downloads.artifacts[self.URL] = b"tampered"
        decl = managed_file("/Users/t/.zshrc", source_url=self.URL, digest="0" * 64)

        record = make_reconciler().run("dotfiles", [decl])

        outcome = record.outcomes[0]
        assert outcome.error is ErrorKind.DIGEST_MISMATCH
        assert registry.files.calls("write_bytes") == []
        assert list((settings.cache_dir / "downloads").glob("*")) == []

    def test_match_is_written(self, make_reconciler, registry):
        body = b"export PATH=/opt/homebrew/bin:$PATH\n"
        registry.downloads.artifacts[self.URL] = body
        decl = managed_file("/Users/t/.zshrc", source_url=self.URL, digest=hashlib.sha256(body).hexdigest())

        record = make_reconciler().run("dotfiles", [decl])

        assert record.outcomes[0].status is OutcomeStatus.APPLIED
        assert registry.files.files["/Users/t/.zshrc"] == body

    def test_no_digest_is_annotated_unverified(self, make_reconciler, registry):
        registry.downloads.artifacts[self.URL] = b"anything"
        decl = managed_file("/Users/t/.zshrc", source_url=self.URL)

        first = make_reconciler().run("dotfiles", [decl])
        assert first.outcomes[0].status is OutcomeStatus.APPLIED
        assert "unverified" in first.outcomes[0].annotations

        second = make_reconciler().run("dotfiles", [decl])
        assert second.outcomes[0].status is OutcomeStatus.UNCHANGED
        assert "unverified" in second.outcomes[0].annotations

    def test_installer_not_run_on_mismatch(self, make_reconciler, registry):
        url = "https://example.com/install.sh"
        registry.downloads.artifacts[url] = b"#!/bin/bash\nrm -rf ~\n"
        decl = ResourceDeclaration.parse({
            "id": "installer:oh-my-zsh",
            "kind": "package",
            "desired_value": {
                "name": "oh-my-zsh",
                "installer": {"url": url, "creates": "/Users/t/.oh-my-zsh/oh-my-zsh.sh", "digest": "f" * 64},
            },
        })
        record = make_reconciler().run("dev", [decl])

        assert record.outcomes[0].error is ErrorKind.DIGEST_MISMATCH
        assert registry.shell.calls("run_script") == []


# ── Privilege ───────────────────────────────────────────────────────


class TestPrivilege:
    def _session(self, answers: list, accept: bool = True) -> PrivilegeSession:
        return PrivilegeSession(prompt=lambda: answers.pop(0), validate=lambda _pw: accept, is_root=False)

    def test_prompted_once_for_many_resources(self, make_reconciler, registry):
        session = self._session(["secret"])
        decls = [pam(path="/etc/pam.d/sudo_local"), pam(path="/etc/pam.d/screensaver_local")]
        record = make_reconciler(privilege=session).run("touchid", decls)

        assert session.prompt_count == 1
        assert all(o.status is OutcomeStatus.APPLIED for o in record.outcomes)
        assert registry.files.sudo_writes == ["/etc/pam.d/sudo_local", "/etc/pam.d/screensaver_local"]

    def test_refusal_fails_all_privileged_without_reprompt(self, make_reconciler, registry):
        session = self._session([None])
        decls = [pam(path="/etc/pam.d/sudo_local"), pref("A", 1), pam(path="/etc/pam.d/other_local")]
        record = make_reconciler(privilege=session).run("touchid", decls)

        first, middle, last = record.outcomes
        assert first.error is ErrorKind.PERMISSION_DENIED
        assert middle.status is OutcomeStatus.APPLIED
        assert last.error is ErrorKind.PERMISSION_DENIED
        assert session.prompt_count == 1

    def test_rejected_password(self, make_reconciler):
        session = self._session(["wrong"], accept=False)
        record = make_reconciler(privilege=session).run("touchid", [pam()])
        assert record.outcomes[0].error is ErrorKind.PERMISSION_DENIED

    def test_unprivileged_run_never_prompts(self, make_reconciler):
        session = self._session([])
        make_reconciler(privilege=session).run("dev", [pref("A", 1), package("jq")])
        assert session.prompt_count == 0

    def test_session_closed_after_run(self, make_reconciler):
        session = self._session(["secret"])
        make_reconciler(privilege=session).run("touchid", [pam()])
        assert session.password is None


# ── Run lifecycle ───────────────────────────────────────────────────


class TestRunLifecycle:
    def test_duplicate_ids_rejected_before_probing(self, make_reconciler, registry):
        with pytest.raises(InvalidDeclaration, match="Duplicate"):
            make_reconciler().run("dev", [pref("A", 1), pref("A", 2)])
        assert registry.preferences.call_log == []

    def test_record_persisted(self, make_reconciler, settings):
        record = make_reconciler().run("dev", [pref("A", 1)])
        assert StatusReporter(settings.runs_dir).last().run_id == record.run_id

    def test_interrupt_persists_partial_record(self, make_reconciler, registry, settings, monkeypatch):
        original = registry.preferences.read

        def read(domain, key):
            if key == "B":
                raise KeyboardInterrupt
            return original(domain, key)

        monkeypatch.setattr(registry.preferences, "read", read)
        with pytest.raises(KeyboardInterrupt):
            make_reconciler().run("dev", [pref("A", 1), pref("B", 2), pref("C", 3)])

        record = StatusReporter(settings.runs_dir).last()
        assert record is not None
        assert [o.resource_id for o in record.outcomes] == ["pref:com.example.app.A"]

    def test_check_never_mutates(self, make_reconciler, registry):
        results = make_reconciler().check([pref("A", 1), package("jq"), pam()])
        assert [observed.exists for _, observed in results] == [False, False, False]
        assert registry.mutating_calls() == []


class TestStatePaths:
    def test_runs_and_backups_under_state_dir(self, make_reconciler, settings, tmp_state_dir: Path):
        make_reconciler().run("dev", [pref("A", 1)])
        assert (tmp_state_dir / "runs" / "index.ndjson").is_file()
        assert (tmp_state_dir / "backups").is_dir()
