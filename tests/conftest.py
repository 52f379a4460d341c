"""
Shared test fixtures and configuration.
"""

from pathlib import Path

import pytest

from macsetup.adapters.registry import AdapterRegistry
from macsetup.core.config.settings import Settings
from macsetup.core.engine.privilege import PrivilegeSession
from macsetup.core.engine.reconciler import Reconciler
from macsetup.core.persistence.backup_store import BackupStore
from macsetup.core.reporting.status_reporter import StatusReporter


@pytest.fixture
def tmp_state_dir(tmp_path: Path) -> Path:
    """Return a temporary directory for runs and backups."""
    state_dir = tmp_path / "state"
    state_dir.mkdir()
    return state_dir


@pytest.fixture
def settings(tmp_state_dir: Path) -> Settings:
    return Settings(state_dir=tmp_state_dir)


@pytest.fixture
def registry() -> AdapterRegistry:
    """Every role bound to a fresh in-memory fake."""
    return AdapterRegistry.mock()


@pytest.fixture
def make_reconciler(settings: Settings, registry: AdapterRegistry):
    """Build a Reconciler over the mock registry; keyword overrides go to Settings."""

    def _make(privilege: PrivilegeSession | None = None, **overrides) -> Reconciler:
        run_settings = settings.model_copy(update=overrides) if overrides else settings
        return Reconciler(
            run_settings,
            registry,
            backups=BackupStore(run_settings.backups_dir),
            privilege=privilege or PrivilegeSession.granted(),
            reporter=StatusReporter(run_settings.runs_dir),
        )

    return _make

