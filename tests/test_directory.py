from __future__ import annotations

import os
from pathlib import Path

import pytest

from walletqr.config import DirectoryConfig, FilenameConfig, RetentionPolicy
from walletqr.directory import DirectoryManager
from walletqr.errors import ErrorKind, WalletQRError

NOW = 10_000_000.0
DAY = 86_400


def _manager(path: Path, **retention: object) -> DirectoryManager:
    config = DirectoryConfig(base_path=path, retention=RetentionPolicy(**retention))
    return DirectoryManager(config, FilenameConfig())


def _artifact(directory: Path, name: str, size: int, mtime: float) -> Path:
    path = directory / name
    path.write_bytes(b"x" * size)
    os.utime(path, (mtime, mtime))
    return path


def test_ensure_directory_creates_when_missing(tmp_path: Path) -> None:
    manager = _manager(tmp_path / "qr" / "nested")

    info = manager.ensure_directory()

    assert info.exists and info.writable
    assert info.path == (tmp_path / "qr" / "nested").resolve()
    assert info.file_count == 0
    assert (tmp_path / "qr" / "nested").is_dir()


def test_ensure_directory_without_auto_create(tmp_path: Path) -> None:
    config = DirectoryConfig(base_path=tmp_path / "missing", auto_create=False)

    with pytest.raises(WalletQRError) as excinfo:
        DirectoryManager(config).ensure_directory()

    assert excinfo.value.kind is ErrorKind.DIRECTORY_ERROR


def test_ensure_directory_rejects_file(tmp_path: Path) -> None:
    target = tmp_path / "file"
    target.write_text("x")

    with pytest.raises(WalletQRError) as excinfo:
        _manager(target).ensure_directory()

    assert excinfo.value.kind is ErrorKind.DIRECTORY_ERROR


@pytest.mark.skipif(os.name != "posix" or os.geteuid() == 0, reason="requires non-root POSIX permissions")
def test_ensure_directory_not_writable(tmp_path: Path) -> None:
    locked = tmp_path / "locked"
    locked.mkdir()
    locked.chmod(0o500)
    try:
        with pytest.raises(WalletQRError) as excinfo:
            _manager(locked).ensure_directory()
        relaxed = DirectoryManager(DirectoryConfig(base_path=locked, validate_permissions=False)).ensure_directory()
    finally:
        locked.chmod(0o700)

    assert excinfo.value.kind is ErrorKind.PERMISSION_ERROR
    assert not relaxed.writable


def test_stats_and_listing_only_count_artifacts(tmp_path: Path) -> None:
    _artifact(tmp_path, "qr-aaaaaaaaaaaa-2.png", 20, NOW - 10)
    _artifact(tmp_path, "qr-bbbbbbbbbbbb-1.png", 10, NOW - 20)
    (tmp_path / "notes.txt").write_text("ignored")
    (tmp_path / f".qr-cccccccccccc-3.png.walletqr-tmp-abc").write_bytes(b"partial")

    manager = _manager(tmp_path)
    stats = manager.get_stats()

    assert [path.name for path in manager.list_artifacts()] == ["qr-bbbbbbbbbbbb-1.png", "qr-aaaaaaaaaaaa-2.png"]
    assert stats.file_count == 2
    assert stats.total_size == 30


def test_stats_for_missing_directory(tmp_path: Path) -> None:
    stats = _manager(tmp_path / "missing").get_stats()

    assert not stats.exists
    assert stats.file_count == 0


def test_cleanup_removes_old_files(tmp_path: Path) -> None:
    old = _artifact(tmp_path, "qr-aaaaaaaaaaaa-1.png", 100, NOW - 8 * DAY)
    fresh = _artifact(tmp_path, "qr-bbbbbbbbbbbb-2.png", 100, NOW - DAY)

    result = _manager(tmp_path, max_age_days=7).cleanup_old_files(now=NOW)

    assert result.removed_files == 1
    assert result.freed_bytes == 100
    assert not old.exists()
    assert fresh.exists()


def test_cleanup_enforces_size_limit_oldest_first(tmp_path: Path) -> None:
    oldest = _artifact(tmp_path, "qr-aaaaaaaaaaaa-1.png", 400_000, NOW - 300)
    middle = _artifact(tmp_path, "qr-bbbbbbbbbbbb-2.png", 400_000, NOW - 200)
    newest = _artifact(tmp_path, "qr-cccccccccccc-3.png", 400_000, NOW - 100)

    result = _manager(tmp_path, max_size_mb=1).cleanup_old_files(now=NOW)

    assert result.removed_files == 1
    assert not oldest.exists()
    assert middle.exists() and newest.exists()


def test_cleanup_never_removes_protected(tmp_path: Path) -> None:
    protected = _artifact(tmp_path, "qr-aaaaaaaaaaaa-1.png", 600_000, NOW - 30 * DAY)
    other = _artifact(tmp_path, "qr-bbbbbbbbbbbb-2.png", 600_000, NOW - 100)

    result = _manager(tmp_path, max_size_mb=1).cleanup_old_files(protect=[protected], now=NOW)

    assert protected.exists()
    assert not other.exists()
    assert result.removed_files == 1


def test_cleanup_disabled(tmp_path: Path) -> None:
    old = _artifact(tmp_path, "qr-aaaaaaaaaaaa-1.png", 10, NOW - 30 * DAY)

    result = _manager(tmp_path, enabled=False).cleanup_old_files(now=NOW)

    assert result.removed_files == 0
    assert old.exists()
