"""Resolution of the active QR directory across configuration sources."""

from __future__ import annotations

import itertools
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Callable, Mapping

from .config import Config
from .models import PRECEDENCE_ORDER, ConfigSource, ConfigurationStatus
from .status_store import StatusStore

logger = logging.getLogger(__name__)

ConfigurationObserver = Callable[[ConfigurationStatus], None]


def _as_directory(raw: str | os.PathLike[str]) -> Path:
    return Path(raw).expanduser().resolve(strict=False)


class ConfigurationProvider:
    """Owns the single live ``ConfigurationStatus`` for the process.

    Precedence, highest first: externally negotiated roots, the environment
    variable, the command-line option, the built-in default. Environment and
    command-line values are read once at construction.
    """

    def __init__(
        self,
        default_directory: Path,
        *,
        environment: Mapping[str, str] | None = None,
        environment_variable: str = "WALLETQR_DIRECTORY",
        command_line_directory: str | os.PathLike[str] | None = None,
        store: StatusStore | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        env = os.environ if environment is None else environment
        raw_env = env.get(environment_variable)

        self._default_directory = _as_directory(default_directory)
        self._environment_directory = _as_directory(raw_env) if raw_env else None
        self._command_line_directory = _as_directory(command_line_directory) if command_line_directory else None
        self._external_directory: Path | None = None
        self._offered: tuple[Path, ...] = ()
        self._observers: dict[int, ConfigurationObserver] = {}
        self._tokens = itertools.count(1)
        self._store = store
        self._clock = clock

        persisted = store.load() if store is not None else None
        if persisted is not None:
            self._offered = persisted.offered_directories
            if persisted.source is ConfigSource.EXTERNAL_ROOTS:
                self._external_directory = persisted.directory

        self._status = self._derive_status()
        logger.debug("Initial QR directory %s (source=%s)", self._status.directory, self._status.source.value)

    @classmethod
    def from_config(
        cls,
        config: Config,
        *,
        command_line_directory: str | os.PathLike[str] | None = None,
        environment: Mapping[str, str] | None = None,
    ) -> "ConfigurationProvider":
        return cls(
            config.directory.base_path,
            environment=environment,
            environment_variable=config.settings.environment_variable,
            command_line_directory=command_line_directory,
            store=StatusStore(config.settings.state_path),
        )

    @property
    def status(self) -> ConfigurationStatus:
        return self._status

    @property
    def default_directory(self) -> Path:
        return self._default_directory

    @property
    def environment_directory(self) -> Path | None:
        return self._environment_directory

    @property
    def command_line_directory(self) -> Path | None:
        return self._command_line_directory

    def get_qr_directory(self) -> Path:
        return self._status.directory

    def get_configuration_source(self) -> ConfigSource:
        return self._status.source

    def update_qr_directory(self, path: str | os.PathLike[str]) -> ConfigurationStatus:
        """Activate an externally negotiated directory.

        The path is expected to have passed ``SecurityValidator`` already.
        """

        directory = _as_directory(path)
        if directory not in self._offered:
            self._offered = (*self._offered, directory)
        self._external_directory = directory

        previous = self._status
        self._status = self._derive_status()
        logger.info("QR directory changed from %s to %s", previous.directory, directory)
        self._publish()
        return self._status

    def reset_to_default(self) -> ConfigurationStatus:
        """Drop any external override and re-derive the precedence chain."""

        self._external_directory = None
        self._status = self._derive_status()
        logger.info(
            "QR directory reset to %s (source=%s)", self._status.directory, self._status.source.value
        )
        self._publish()
        return self._status

    def on_configuration_changed(self, callback: ConfigurationObserver) -> Callable[[], None]:
        """Register ``callback`` and return a function that unregisters it."""

        token = next(self._tokens)
        self._observers[token] = callback

        def unsubscribe() -> None:
            self._observers.pop(token, None)

        return unsubscribe

    @staticmethod
    def has_precedence(first: ConfigSource, second: ConfigSource) -> bool:
        return PRECEDENCE_ORDER.index(first) < PRECEDENCE_ORDER.index(second)

    # ------------------------------------------------------------------
    # Internal helpers

    def _derive_status(self) -> ConfigurationStatus:
        if self._external_directory is not None:
            source, directory = ConfigSource.EXTERNAL_ROOTS, self._external_directory
        elif self._environment_directory is not None:
            source, directory = ConfigSource.ENVIRONMENT, self._environment_directory
        elif self._command_line_directory is not None:
            source, directory = ConfigSource.COMMAND_LINE, self._command_line_directory
        else:
            source, directory = ConfigSource.DEFAULT, self._default_directory

        return ConfigurationStatus(
            source=source,
            directory=directory,
            offered_directories=self._offered,
            is_valid=True,
            last_updated=self._clock(),
        )

    def _publish(self) -> None:
        if self._store is not None:
            try:
                self._store.save(self._status)
            except OSError as exc:
                logger.warning("Could not persist configuration status to '%s': %s", self._store.path, exc)

        for callback in list(self._observers.values()):
            try:
                callback(self._status)
            except Exception:  # noqa: BLE001
                logger.exception("Configuration observer %r failed", callback)
