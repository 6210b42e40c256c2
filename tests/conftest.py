from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import pytest
import requests

from dashboard.config import Config


def _env_url() -> str:
    return os.getenv("THREATLENS_BASE_URL", "http://127.0.0.1:8765").rstrip("/")


@pytest.fixture(scope="session")
def base_url() -> str:
    return _env_url()


@pytest.fixture(scope="session")
def http():
    """Simple requests wrapper with a short timeout."""

    class _HTTP:
        def get(self, url: str, **kw):
            kw.setdefault("timeout", 5)
            return requests.get(url, **kw)

        def post(self, url: str, json: dict[str, Any] | None = None, **kw):
            kw.setdefault("timeout", 8)
            return requests.post(url, json=json, **kw)

    return _HTTP()


@pytest.fixture(scope="session")
def server_up(base_url: str, http):
    """Skip the test session if the API isn’t reachable."""
    try:
        r = http.get(f"{base_url}/api/ping")
        if r.status_code != 200:
            pytest.skip(f"Server reachable but non-200 from /api/ping: {r.status_code}")
    except requests.RequestException as exc:
        pytest.skip(f"Server not reachable at {base_url} ({exc})")


def make_config(base: Path, **overrides: Any) -> Config:
    """Config rooted in a temp dir, defaults matching load_config()."""
    values: dict[str, Any] = {
        "base_dir": base,
        "history_path": base / "data" / "history.json",
        "signatures_path": base / "data" / "signatures.json",
        "model_weights_path": base / "data" / "model_weights.json",
        "classifier": "heuristic",
        "max_upload_mb": 4,
        "history_max": 1000,
        "host": "127.0.0.1",
        "port": 8765,
        "log_level": "INFO",
    }
    values.update(overrides)
    return Config(**values)


@pytest.fixture()
def cfg(tmp_path: Path) -> Config:
    return make_config(tmp_path)


def assert_has_keys(obj: dict[str, Any], required: tuple[str, ...]) -> None:
    missing = [k for k in required if k not in obj]
    assert not missing, f"Missing keys: {missing} in {obj}"
