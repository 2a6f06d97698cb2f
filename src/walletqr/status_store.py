"""Persistence of the live ``ConfigurationStatus``."""

from __future__ import annotations

import logging
import tomllib
from datetime import datetime
from pathlib import Path

import tomli_w

from .filesystem import atomic_write_bytes
from .models import ConfigSource, ConfigurationStatus

logger = logging.getLogger(__name__)


class StatusStore:
    """Reads and writes the configuration status as a small TOML document."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def load(self) -> ConfigurationStatus | None:
        if not self.path.exists():
            return None

        try:
            with self.path.open("rb") as handle:
                data = tomllib.load(handle)
        except (OSError, tomllib.TOMLDecodeError) as exc:
            logger.warning("Ignoring unreadable status file '%s': %s", self.path, exc)
            return None

        status = data.get("status")
        if not status:
            return None

        try:
            return ConfigurationStatus(
                source=ConfigSource(status["source"]),
                directory=Path(status["directory"]),
                offered_directories=tuple(Path(item) for item in status.get("offered_directories", [])),
                is_valid=bool(status.get("is_valid", True)),
                last_updated=datetime.fromisoformat(status["last_updated"]),
            )
        except (KeyError, ValueError, TypeError) as exc:
            logger.warning("Ignoring malformed status file '%s': %s", self.path, exc)
            return None

    def save(self, status: ConfigurationStatus) -> None:
        payload = {"status": self._status_to_dict(status)}
        atomic_write_bytes(self.path, tomli_w.dumps(payload).encode())

    @staticmethod
    def _status_to_dict(status: ConfigurationStatus) -> dict[str, object]:
        return {
            "source": status.source.value,
            "directory": str(status.directory),
            "offered_directories": [str(item) for item in status.offered_directories],
            "is_valid": status.is_valid,
            "last_updated": status.last_updated.isoformat(),
        }
