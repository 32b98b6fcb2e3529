"""Pytest configuration for installer tests."""

from __future__ import annotations

from pathlib import Path

import pytest

from arcane_installer.application.config import InstallerConfig

from .util import make_panel


@pytest.fixture
def panel_root(tmp_path: Path) -> Path:
    return make_panel(tmp_path / "panel")


@pytest.fixture
def make_config(panel_root: Path):
    def _make(**overrides) -> InstallerConfig:
        values = dict(
            panel_path=panel_root,
            owner_id="OWNER12345",
            app_name="arcane",
            license_key="LICENSE-KEY",
            min_free_bytes=0,
            lock_timeout_seconds=1,
        )
        values.update(overrides)
        return InstallerConfig(**values)

    return _make
