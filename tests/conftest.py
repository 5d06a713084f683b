"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Iterator

import pytest

from agentdesk.orchestrator.settings import _get_settings_cached


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch: pytest.MonkeyPatch, tmp_path) -> Iterator[None]:
    """Run every test with a clean settings cache and no ambient ``.env``."""
    monkeypatch.chdir(tmp_path)
    _get_settings_cached.cache_clear()
    yield
    _get_settings_cached.cache_clear()
