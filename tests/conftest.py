"""Pytest configuration and shared fixtures."""
from __future__ import annotations

import os
import sys
from datetime import datetime, timezone
from pathlib import Path
import pytest

# Ensure src/ is on the import path (for local imports without installing as package)
SRC_PATH = Path(__file__).resolve().parent.parent / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from chat_store.paths import FixedPathResolver  # noqa: E402
from chat_store.store import ConversationStore  # noqa: E402


@pytest.fixture(scope="session")
def project_root() -> Path:
    """Return the root directory of the project."""
    return Path(__file__).resolve().parent.parent


@pytest.fixture(scope="function")
def tmp_data_dir(tmp_path: Path) -> Path:
    """Temporary app-data root for a single test."""
    d = tmp_path / "appdata"
    d.mkdir(parents=True, exist_ok=True)
    return d


@pytest.fixture(scope="function")
def fixed_clock():
    """Deterministic clock pinned to 2024-03-05 12:00:00 UTC."""
    return lambda: datetime(2024, 3, 5, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture(scope="function")
def store(tmp_data_dir: Path) -> ConversationStore:
    return ConversationStore(FixedPathResolver(tmp_data_dir))


@pytest.fixture(scope="function")
def clean_env(monkeypatch: pytest.MonkeyPatch):
    """Ensure tests run with a clean environment (no leftover vars)."""
    for var in ["CHAT_STORE_CONFIG", "APPDATA", "XDG_CONFIG_HOME"]:
        monkeypatch.delenv(var, raising=False)
    for var in list(os.environ):
        if var.startswith("CHAT_STORE__"):
            monkeypatch.delenv(var, raising=False)
    yield
