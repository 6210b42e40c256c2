"""
Tests for app.console - Console entry point functionality
Tests the launcher arguments and single-file analysis.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from unittest.mock import patch

import pytest

from app.console import ColoredLevelFormatter, _resolve_base_dir, analyze_once, main, print_banner, setup_logging


@pytest.fixture
def base_env(tmp_path):
    """Point THREATLENS_BASE_DIR at an empty temp project"""
    (tmp_path / "data").mkdir()
    environ = {k: v for k, v in os.environ.items() if not k.startswith("THREATLENS_")}
    environ["THREATLENS_BASE_DIR"] = str(tmp_path)
    with patch.dict(os.environ, environ, clear=True):
        yield tmp_path


class TestResolveBaseDir:
    """Tests for _resolve_base_dir function"""

    def test_resolve_base_dir_normal(self):
        """Test _resolve_base_dir in normal mode"""
        with patch("sys.frozen", False, create=True):
            result = _resolve_base_dir()
            assert isinstance(result, Path)
            assert (result / "app").is_dir()

    def test_resolve_base_dir_frozen(self):
        """Test _resolve_base_dir in frozen mode"""
        with patch("sys.frozen", True, create=True):
            with patch("sys.executable", "/opt/threatlens/ThreatLens"):
                assert _resolve_base_dir() == Path("/opt/threatlens")


class TestLogging:
    """Tests for setup_logging and the colored formatter"""

    def test_setup_logging_sets_level(self):
        setup_logging("debug")
        logger = logging.getLogger("threatlens")
        assert logger.level == logging.DEBUG
        assert len(logger.handlers) == 1
        setup_logging("INFO")
        assert len(logger.handlers) == 1  # replaced, not stacked

    def test_formatter_prefixes_level(self):
        record = logging.LogRecord("threatlens.test", logging.WARNING, __file__, 1, "careful", None, None)
        text = ColoredLevelFormatter("%(message)s").format(record)
        assert "warning" in text
        assert text.endswith("careful")

    def test_print_banner(self, capsys):
        print_banner("http://127.0.0.1:8765")
        assert "http://127.0.0.1:8765" in capsys.readouterr().out


class TestAnalyzeOnce:
    """Tests for --analyze"""

    def test_analyze_file(self, base_env, capsys):
        target = base_env / "sample.dat"
        target.write_bytes(b"A" * 1000)
        assert analyze_once(str(target)) == 0
        out = capsys.readouterr().out
        assert "sample.dat" in out
        assert "Benign" in out
        assert not (base_env / "data" / "history.json").exists()

    def test_analyze_and_save(self, base_env):
        target = base_env / "tool.exe"
        target.write_bytes(b"MZ\x90\x00")
        assert main(["--analyze", str(target), "--save"]) == 0
        assert (base_env / "data" / "history.json").exists()

    def test_analyze_missing_file(self, base_env, capsys):
        assert main(["--analyze", str(base_env / "missing.exe")]) == 2
        assert "analysis failed" in capsys.readouterr().out

    def test_analyze_empty_file(self, base_env):
        target = base_env / "empty.bin"
        target.write_bytes(b"")
        assert analyze_once(str(target)) == 2

    def test_analyze_without_model(self, base_env):
        target = base_env / "tool.exe"
        target.write_bytes(b"MZ")
        with patch.dict(os.environ, {"THREATLENS_CLASSIFIER": "weighted"}):
            assert analyze_once(str(target)) == 3


class TestMain:
    """Tests for the dashboard launch path"""

    def test_main_runs_dashboard_without_browser(self, base_env):
        with patch("dashboard.app.run_dashboard") as run, patch("app.console.webbrowser.open") as opener:
            assert main(["--no-open"]) == 0
        run.assert_called_once()
        opener.assert_not_called()

    def test_main_opens_browser(self, base_env):
        with patch("dashboard.app.run_dashboard"), patch("app.console.threading.Timer") as timer:
            assert main([]) == 0
        timer.assert_called_once()
        timer.return_value.start.assert_called_once()
