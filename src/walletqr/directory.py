"""Artifact directory preparation, statistics and retention cleanup."""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Iterable

from .config import DirectoryConfig, FilenameConfig
from .errors import ErrorKind, WalletQRError
from .filesystem import TEMP_MARKER, probe_writable, remove_file
from .models import CleanupResult, DirectoryInfo

logger = logging.getLogger(__name__)


class DirectoryManager:
    """Owns one artifact directory and applies its retention policy.

    Only files named like artifacts (``<prefix>-*.<extension>``) are counted or
    removed; anything else placed in the directory is left alone.
    """

    def __init__(self, config: DirectoryConfig, filenames: FilenameConfig | None = None) -> None:
        self.config = config
        self.filenames = filenames or FilenameConfig()

    @property
    def path(self) -> Path:
        return Path(self.config.base_path).expanduser().resolve(strict=False)

    def ensure_directory(self) -> DirectoryInfo:
        directory = self.path

        if directory.exists() and not directory.is_dir():
            raise WalletQRError(
                f"QR directory path '{directory}' exists but is not a directory",
                ErrorKind.DIRECTORY_ERROR,
                {"path": str(directory)},
            )

        if not directory.exists():
            if not self.config.auto_create:
                raise WalletQRError(
                    f"QR directory '{directory}' does not exist and auto-create is disabled",
                    ErrorKind.DIRECTORY_ERROR,
                    {"path": str(directory)},
                )
            try:
                directory.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                raise WalletQRError(
                    f"Failed to create QR directory '{directory}': {exc}",
                    ErrorKind.DIRECTORY_ERROR,
                    {"path": str(directory)},
                ) from exc
            logger.info("Created QR directory %s", directory)

        writable = probe_writable(directory)
        if not writable and self.config.validate_permissions:
            raise WalletQRError(
                f"QR directory '{directory}' is not writable",
                ErrorKind.PERMISSION_ERROR,
                {"path": str(directory)},
            )

        return self._info(directory, exists=True, writable=writable)

    def get_stats(self) -> DirectoryInfo:
        directory = self.path
        if not directory.is_dir():
            return DirectoryInfo(path=directory, exists=False, writable=False)
        return self._info(directory, exists=True, writable=probe_writable(directory))

    def list_artifacts(self) -> list[Path]:
        """Artifact files in the directory, oldest first."""

        directory = self.path
        if not directory.is_dir():
            return []

        entries: list[tuple[float, Path]] = []
        for candidate in directory.glob(f"{self.filenames.prefix}-*.{self.filenames.extension}"):
            if TEMP_MARKER in candidate.name or not candidate.is_file():
                continue
            try:
                entries.append((candidate.stat().st_mtime, candidate))
            except FileNotFoundError:
                continue
        entries.sort(key=lambda item: (item[0], item[1].name))
        return [path for _, path in entries]

    def cleanup_old_files(self, protect: Iterable[Path] = (), *, now: float | None = None) -> CleanupResult:
        retention = self.config.retention
        if not retention.enabled:
            return CleanupResult()

        current = time.time() if now is None else now
        protected = {Path(item).resolve(strict=False) for item in protect}
        max_age = retention.max_age.total_seconds()

        result = CleanupResult()
        survivors: list[tuple[Path, int]] = []

        for artifact in self.list_artifacts():
            if artifact.resolve(strict=False) in protected:
                survivors.append((artifact, self._size(artifact)))
                continue
            try:
                stat = artifact.stat()
            except FileNotFoundError:
                continue
            if current - stat.st_mtime > max_age:
                result += self._remove(artifact)
            else:
                survivors.append((artifact, stat.st_size))

        limit = retention.max_size_bytes
        if limit is not None:
            total = sum(size for _, size in survivors)
            for artifact, size in survivors:
                if total <= limit:
                    break
                if artifact.resolve(strict=False) in protected:
                    continue
                removed = self._remove(artifact)
                if removed.removed_files:
                    total -= size
                    result += removed

        if result.removed_files:
            logger.info(
                "Cleanup removed %d artifact(s) from %s, freeing %d bytes",
                result.removed_files,
                self.path,
                result.freed_bytes,
            )
        return result

    # ------------------------------------------------------------------
    # Internal helpers

    def _info(self, directory: Path, *, exists: bool, writable: bool) -> DirectoryInfo:
        artifacts = self.list_artifacts()
        return DirectoryInfo(
            path=directory,
            exists=exists,
            writable=writable,
            file_count=len(artifacts),
            total_size=sum(self._size(item) for item in artifacts),
        )

    @staticmethod
    def _size(path: Path) -> int:
        try:
            return path.stat().st_size
        except FileNotFoundError:
            return 0

    @staticmethod
    def _remove(path: Path) -> CleanupResult:
        try:
            freed = remove_file(path)
        except OSError as exc:
            logger.warning("Could not remove artifact '%s': %s", path, exc)
            return CleanupResult()
        return CleanupResult(removed_files=1, freed_bytes=freed)
