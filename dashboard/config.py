"""
goal: configuration loader for the dashboard. loads settings from a JSON file and environment
      variables, with sensible defaults. handles PyInstaller frozen executables by detecting
      the base directory correctly. returns a frozen Config dataclass with the paths, classifier
      choice, and limits the analysis pipeline and the dashboard need.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger("threatlens.dashboard")


# figure out where the app is running from (handles PyInstaller bundles)
def _resolve_base_dir() -> Path:
    import sys

    # if we are frozen (PyInstaller), use the executable's directory
    if getattr(sys, "frozen", False):
        return Path(sys.executable).parent
    # otherwise, go up one level from this file (dashboard/config.py -> project root)
    return Path(__file__).resolve().parents[1]


# frozen dataclass to hold all config values (immutable once created)
@dataclass(frozen=True)
class Config:
    base_dir: Path  # root directory of the project
    history_path: Path  # path to the analysis history JSON
    signatures_path: Path  # optional signature category overrides JSON
    model_weights_path: Path  # weights JSON for the weighted classifier
    classifier: str  # "heuristic" | "weighted"
    max_upload_mb: int  # uploads above this are rejected before analysis
    history_max: int  # oldest records beyond this are dropped on append
    host: str  # web server host address
    port: int  # web server port number
    log_level: str  # level for threatlens.* loggers

    @property
    def max_upload_bytes(self) -> int:
        return self.max_upload_mb * 1024 * 1024


# get a config value with priority: environment variable > JSON file > default
def _get(obj: dict, key: str, default):
    # check for environment variable first (THREATLENS_* prefix), then the JSON file
    env = os.getenv(f"THREATLENS_{key.upper()}")
    value = env if env is not None else obj.get(key, default)
    # coerce to the default's type, env strings and JSON strings like "256" alike
    if isinstance(default, int):
        try:
            return int(value)
        except (TypeError, ValueError):
            return default
    if isinstance(default, float):
        try:
            return float(value)
        except (TypeError, ValueError):
            return default
    if isinstance(default, str) and not isinstance(value, str):
        # a number or null where text was expected
        return default if value is None else str(value)
    return value


# load configuration from JSON file and environment variables
def load_config() -> Config:
    # base directory can be overridden by env var, otherwise auto-detect
    base = Path(os.getenv("THREATLENS_BASE_DIR") or _resolve_base_dir())
    # config file lives in data/config.json
    cfg_file = base / "data" / "config.json"
    obj = {}
    # try to load the JSON config file if it exists
    if cfg_file.exists():
        try:
            obj = json.loads(cfg_file.read_text(encoding="utf-8") or "{}")
        except (OSError, ValueError) as e:
            # if JSON is broken, just use empty dict (all defaults)
            logger.warning("ignoring unreadable config %s: %s", cfg_file, e)
            obj = {}
        if not isinstance(obj, dict):
            obj = {}

    # build the Config object, each value checks: env var > JSON file > default
    return Config(
        base_dir=base,
        history_path=base / _get(obj, "history_path", "data/history.json"),
        signatures_path=base / _get(obj, "signatures_path", "data/signatures.json"),
        model_weights_path=base / _get(obj, "model_weights_path", "data/model_weights.json"),
        classifier=str(_get(obj, "classifier", "heuristic")).lower(),
        max_upload_mb=_get(obj, "max_upload_mb", 256),
        history_max=_get(obj, "history_max", 1000),
        host=_get(obj, "host", "127.0.0.1"),
        port=_get(obj, "port", 8765),
        log_level=str(_get(obj, "log_level", "INFO")).upper(),
    )
