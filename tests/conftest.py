"""Root conftest — shared pytest markers and global settings.

Markers
-------
unit        fast, no network, temp-dir I/O only
slow        expected to take > 5 seconds
"""

from __future__ import annotations

import pytest
import structlog

from forage.config import ForageSettings


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast, no network tests")
    config.addinivalue_line("markers", "slow: test is expected to take > 5 s")


# ── Environment isolation ─────────────────────────────────────────────────────

_EXTRA_ENV = ("CEREBRAS_API_KEY",)


@pytest.fixture(autouse=True)
def _clean_forage_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep developer keys and paths in the shell from leaking into tests."""
    for name in (*ForageSettings.model_fields, *_EXTRA_ENV):
        monkeypatch.delenv(name.upper(), raising=False)


@pytest.fixture(autouse=True)
def _reset_structlog():
    """CLI tests point structlog at CliRunner's stderr; restore defaults afterwards."""
    yield
    structlog.reset_defaults()
