from __future__ import annotations

from pathlib import Path

import pytest

from walletqr.config import Config


@pytest.fixture
def fake_home(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("USERPROFILE", str(home))
    monkeypatch.delenv("WALLETQR_DIRECTORY", raising=False)
    return home


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    root = tmp_path / "workspace"
    root.mkdir()
    return root


@pytest.fixture
def config(workspace: Path, fake_home: Path) -> Config:
    return Config.from_raw(
        {
            "directory": {"path": "qrimages"},
            "settings": {"state_path": str(workspace / ".state" / "status.toml")},
        },
        base_dir=workspace,
    )
