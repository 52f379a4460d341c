"""
Tests for observability — logging setup and CLI log levels.
"""

import logging
from logging.handlers import RotatingFileHandler

import pytest
from click.testing import CliRunner

from macsetup.core.observability.logging_config import _parse_level, resolve_level, setup_logging
from macsetup.main import cli


@pytest.fixture(autouse=True)
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


class TestParseLevel:
    @pytest.mark.parametrize("name,expected", [
        ("DEBUG", logging.DEBUG),
        ("info", logging.INFO),
        ("bogus", logging.WARNING),
        (None, logging.WARNING),
        ("", logging.WARNING),
    ])
    def test_levels(self, name, expected):
        assert _parse_level(name) == expected


class TestSetupLogging:
    def test_console_only(self):
        setup_logging(level="INFO")
        root = logging.getLogger()
        assert root.level == logging.INFO
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0], logging.StreamHandler)

    def test_file_handler_lower_level(self, tmp_path):
        log_file = tmp_path / "logs" / "macsetup.log"
        setup_logging(level="WARNING", log_file=str(log_file), log_file_level="DEBUG")
        root = logging.getLogger()

        assert root.level == logging.DEBUG
        assert log_file.parent.is_dir()
        file_handlers = [h for h in root.handlers if isinstance(h, logging.FileHandler)]
        assert len(file_handlers) == 1
        assert file_handlers[0].level == logging.DEBUG

        logging.getLogger("macsetup.test").debug("written to file only")
        file_handlers[0].flush()
        assert "written to file only" in log_file.read_text()
        file_handlers[0].close()

    def test_file_level_defaults_to_console(self, tmp_path):
        setup_logging(level="ERROR", log_file=str(tmp_path / "m.log"))
        handlers = logging.getLogger().handlers
        assert isinstance(handlers[1], RotatingFileHandler)
        assert handlers[1].level == logging.ERROR
        handlers[1].close()


class TestResolveLevel:
    def test_flag_precedence(self, monkeypatch):
        monkeypatch.setenv("MACSETUP_LOG_LEVEL", "INFO")
        assert resolve_level(debug=True, quiet=True) == "DEBUG"
        assert resolve_level(verbose=True, quiet=True) == "INFO"
        assert resolve_level(quiet=True) == "ERROR"

    def test_env_then_default(self, monkeypatch):
        monkeypatch.setenv("MACSETUP_LOG_LEVEL", "DEBUG")
        assert resolve_level() == "DEBUG"
        monkeypatch.delenv("MACSETUP_LOG_LEVEL")
        assert resolve_level() == "WARNING"

    def test_repeat_setup_replaces_handlers(self):
        setup_logging(level="INFO")
        setup_logging(level="ERROR")
        assert len(logging.getLogger().handlers) == 1


class TestCLILogLevels:
    def _level_after(self, args, monkeypatch, env_level=None):
        if env_level:
            monkeypatch.setenv("MACSETUP_LOG_LEVEL", env_level)
        else:
            monkeypatch.delenv("MACSETUP_LOG_LEVEL", raising=False)
        monkeypatch.delenv("MACSETUP_LOG_FILE", raising=False)
        runner = CliRunner()
        result = runner.invoke(cli, [*args, "runs"])
        assert result.exit_code == 0, result.output
        return logging.getLogger().level

    def test_default_warning(self, monkeypatch, tmp_path):
        assert self._level_after(["--state-dir", str(tmp_path)], monkeypatch) == logging.WARNING

    def test_verbose(self, monkeypatch, tmp_path):
        assert self._level_after(["-v", "--state-dir", str(tmp_path)], monkeypatch) == logging.INFO

    def test_debug_beats_quiet(self, monkeypatch, tmp_path):
        level = self._level_after(["--debug", "-q", "--state-dir", str(tmp_path)], monkeypatch)
        assert level == logging.DEBUG

    def test_quiet(self, monkeypatch, tmp_path):
        assert self._level_after(["-q", "--state-dir", str(tmp_path)], monkeypatch) == logging.ERROR

    def test_env_level(self, monkeypatch, tmp_path):
        level = self._level_after(["--state-dir", str(tmp_path)], monkeypatch, env_level="INFO")
        assert level == logging.INFO
