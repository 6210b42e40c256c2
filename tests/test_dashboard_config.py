"""
Tests for dashboard.config - Configuration loading functionality
Tests config loading from JSON and environment variables.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from unittest.mock import patch

import pytest

from dashboard.config import Config, _get, _resolve_base_dir, load_config


def _clean_env() -> dict[str, str]:
    # environment without any THREATLENS_* overrides
    return {k: v for k, v in os.environ.items() if not k.startswith("THREATLENS_")}


class TestResolveBaseDir:
    """Tests for _resolve_base_dir function"""

    def test_resolve_base_dir_normal(self):
        """Test _resolve_base_dir in normal (non-frozen) mode"""
        with patch("sys.frozen", False, create=True):
            result = _resolve_base_dir()
            assert isinstance(result, Path)
            assert (result / "dashboard").is_dir()

    def test_resolve_base_dir_frozen(self):
        """Test _resolve_base_dir in frozen (PyInstaller) mode"""
        with patch("sys.frozen", True, create=True):
            with patch("sys.executable", "/opt/threatlens/ThreatLens"):
                result = _resolve_base_dir()
                assert result == Path("/opt/threatlens")


class TestGet:
    """Tests for _get helper function"""

    def test_get_from_env_int(self):
        """Test _get retrieves integer from environment"""
        with patch.dict(os.environ, {"THREATLENS_KEY": "200"}):
            assert _get({"key": 100}, "key", 50) == 200

    def test_get_from_env_float(self):
        """Test _get retrieves float from environment"""
        with patch.dict(os.environ, {"THREATLENS_KEY": "2.5"}):
            assert _get({"key": 1.5}, "key", 1.0) == 2.5

    def test_get_from_env_string(self):
        """Test _get retrieves string from environment"""
        with patch.dict(os.environ, {"THREATLENS_KEY": "override"}):
            assert _get({"key": "default"}, "key", "fallback") == "override"

    def test_get_from_json_when_env_missing(self):
        """Test _get falls back to JSON when env var missing"""
        with patch.dict(os.environ, {}, clear=True):
            assert _get({"key": "json_value"}, "key", "default") == "json_value"

    def test_get_from_default_when_both_missing(self):
        """Test _get uses default when both env and JSON missing"""
        with patch.dict(os.environ, {}, clear=True):
            assert _get({}, "key", "default") == "default"

    def test_get_invalid_env_int(self):
        """Test _get handles invalid integer in env var"""
        with patch.dict(os.environ, {"THREATLENS_KEY": "not_a_number"}):
            assert _get({"key": 100}, "key", 50) == 50  # Falls back to default

    def test_get_coerces_json_string_int(self):
        """Test that a numeric string in the JSON file becomes an int"""
        with patch.dict(os.environ, {}, clear=True):
            assert _get({"max_upload_mb": "64"}, "max_upload_mb", 256) == 64

    def test_get_invalid_json_int_falls_back(self):
        with patch.dict(os.environ, {}, clear=True):
            assert _get({"history_max": "lots"}, "history_max", 1000) == 1000
            assert _get({"history_max": None}, "history_max", 1000) == 1000

    def test_get_coerces_json_number_to_string(self):
        with patch.dict(os.environ, {}, clear=True):
            assert _get({"host": 0}, "host", "127.0.0.1") == "0"


class TestLoadConfig:
    """Tests for load_config function"""

    @pytest.fixture
    def tmp_base_dir(self, tmp_path):
        """Create temporary base directory with data folder"""
        (tmp_path / "data").mkdir()
        return tmp_path

    def _load(self, base: Path, **env: str) -> Config:
        environ = _clean_env()
        environ.update(env)
        with patch.dict(os.environ, environ, clear=True):
            with patch("dashboard.config._resolve_base_dir", return_value=base):
                return load_config()

    def test_load_config_defaults(self, tmp_base_dir):
        """Test that load_config creates config with defaults"""
        config = self._load(tmp_base_dir)
        assert isinstance(config, Config)
        assert config.base_dir == tmp_base_dir
        assert config.classifier == "heuristic"
        assert config.max_upload_mb == 256
        assert config.max_upload_bytes == 256 * 1024 * 1024
        assert config.history_max == 1000
        assert config.host == "127.0.0.1"
        assert config.port == 8765
        assert config.log_level == "INFO"

    def test_load_config_paths_relative_to_base(self, tmp_base_dir):
        config = self._load(tmp_base_dir)
        assert config.history_path == tmp_base_dir / "data" / "history.json"
        assert config.signatures_path == tmp_base_dir / "data" / "signatures.json"
        assert config.model_weights_path == tmp_base_dir / "data" / "model_weights.json"

    def test_load_config_loads_from_json(self, tmp_base_dir):
        """Test that load_config loads values from JSON file"""
        (tmp_base_dir / "data" / "config.json").write_text(
            json.dumps({"port": 9000, "host": "0.0.0.0", "classifier": "Weighted", "max_upload_mb": 10}),
            encoding="utf-8",
        )
        config = self._load(tmp_base_dir)
        assert config.port == 9000
        assert config.host == "0.0.0.0"
        assert config.classifier == "weighted"
        assert config.max_upload_mb == 10

    def test_load_config_env_overrides_json(self, tmp_base_dir):
        """Test that environment variables override JSON values"""
        (tmp_base_dir / "data" / "config.json").write_text(json.dumps({"port": 9000}), encoding="utf-8")
        config = self._load(tmp_base_dir, THREATLENS_PORT="8000", THREATLENS_LOG_LEVEL="debug")
        assert config.port == 8000  # Env overrides JSON
        assert config.log_level == "DEBUG"

    def test_load_config_coerces_string_numbers(self, tmp_base_dir):
        """Test that quoted numbers in config.json still give int limits"""
        (tmp_base_dir / "data" / "config.json").write_text(
            json.dumps({"max_upload_mb": "2", "history_max": "50", "port": "9001"}),
            encoding="utf-8",
        )
        config = self._load(tmp_base_dir)
        assert config.max_upload_mb == 2
        assert config.max_upload_bytes == 2 * 1024 * 1024
        assert config.history_max == 50
        assert config.port == 9001

    @pytest.mark.parametrize("content", ["{ invalid json }", "", "[1, 2, 3]"])
    def test_load_config_handles_bad_json(self, tmp_base_dir, content):
        """Test that broken, empty or non-object JSON falls back to defaults"""
        (tmp_base_dir / "data" / "config.json").write_text(content, encoding="utf-8")
        config = self._load(tmp_base_dir)
        assert config.port == 8765

    def test_load_config_env_base_dir(self, tmp_path):
        """Test that THREATLENS_BASE_DIR env var is respected"""
        custom_base = tmp_path / "custom"
        (custom_base / "data").mkdir(parents=True)
        config = self._load(tmp_path, THREATLENS_BASE_DIR=str(custom_base))
        assert config.base_dir == custom_base
        assert config.history_path == custom_base / "data" / "history.json"

    def test_config_is_frozen(self, tmp_base_dir):
        config = self._load(tmp_base_dir)
        with pytest.raises(AttributeError):
            config.port = 1  # type: ignore[misc]
