"""Handling of client "roots changed" notifications."""

from __future__ import annotations

import asyncio
import logging
import os
import time
from collections import deque
from pathlib import Path
from typing import Any, Callable

from .errors import NotificationError, WalletQRError
from .models import (
    ConfigurationStatus,
    RootsError,
    RootsNotification,
    RootsRejection,
    RootsState,
    RootsValidationResult,
)
from .provider import ConfigurationProvider
from .security import SecurityValidator

logger = logging.getLogger(__name__)


class RootsManager:
    """Drives ``SecurityValidator`` and ``ConfigurationProvider`` for directory negotiation.

    Only one notification is processed at a time: a call arriving while another is
    in flight is answered with ``BUSY`` instead of being queued, and a notification
    arriving within ``rate_limit_ms`` of the previous processed one is answered with
    ``RATE_LIMITED``. Malformed notifications are rejected before any filesystem
    access and do not count against the rate limit.
    """

    def __init__(
        self,
        validator: SecurityValidator,
        provider: ConfigurationProvider,
        *,
        rate_limit_ms: int = 1000,
        clock: Callable[[], float] = time.monotonic,
        history_limit: int = 100,
    ) -> None:
        self._validator = validator
        self._provider = provider
        self._rate_limit_ms = rate_limit_ms
        self._clock = clock
        self._state = RootsState.IDLE
        self._last_processed: float | None = None
        self._history: deque[RootsValidationResult] = deque(maxlen=history_limit)

    @property
    def state(self) -> RootsState:
        return self._state

    async def handle_roots_changed(self, raw: Any) -> RootsValidationResult:
        started = self._clock()
        try:
            notification = RootsNotification.parse(raw)
        except NotificationError as exc:
            return self._finish(
                started,
                None,
                f"Malformed roots notification: {exc}",
                [RootsError(RootsRejection.MALFORMED, str(exc))],
            )
        return await self._run(notification, started, enforce_rate_limit=True)

    async def set_directory(self, path: str | os.PathLike[str]) -> RootsValidationResult:
        """Explicitly select a directory; it goes through the same validation as roots."""

        started = self._clock()
        try:
            notification = RootsNotification.parse([os.fspath(path)])
        except NotificationError as exc:
            return self._finish(
                started,
                None,
                f"Invalid directory: {exc}",
                [RootsError(RootsRejection.MALFORMED, str(exc))],
            )
        return await self._run(notification, started, enforce_rate_limit=False)

    def reset_to_default(self) -> ConfigurationStatus:
        return self._provider.reset_to_default()

    def current_roots(self) -> list[Path]:
        return [self._provider.get_qr_directory()]

    def allowed_directories(self) -> list[Path]:
        return list(self._validator.allowed_roots)

    def recent_results(self, limit: int = 10) -> list[RootsValidationResult]:
        return list(self._history)[-limit:][::-1]

    # ------------------------------------------------------------------
    # Internal helpers

    async def _run(
        self, notification: RootsNotification, started: float, *, enforce_rate_limit: bool
    ) -> RootsValidationResult:
        if self._state is RootsState.PROCESSING:
            return self._finish(
                started,
                None,
                "Another directory change is being processed",
                [RootsError(RootsRejection.BUSY, "Reconfiguration already in progress")],
            )

        if enforce_rate_limit and self._last_processed is not None:
            elapsed_ms = (started - self._last_processed) * 1000
            if elapsed_ms < self._rate_limit_ms:
                wait_ms = self._rate_limit_ms - elapsed_ms
                return self._finish(
                    started,
                    None,
                    f"Directory changes are limited to one per {self._rate_limit_ms} ms",
                    [RootsError(RootsRejection.RATE_LIMITED, f"Retry in {wait_ms:.0f} ms")],
                )

        self._state = RootsState.PROCESSING
        self._last_processed = started
        try:
            return await self._process(notification, started)
        finally:
            self._state = RootsState.IDLE

    async def _process(self, notification: RootsNotification, started: float) -> RootsValidationResult:
        errors: list[RootsError] = []

        for candidate in notification.roots:
            result = await asyncio.to_thread(self._validator.validate, candidate)
            if not result.is_secure:
                errors.append(
                    RootsError(RootsRejection.SECURITY_VIOLATION, "; ".join(result.descriptions()), candidate)
                )
                continue

            try:
                status = self._provider.update_qr_directory(result.sanitized_path)
            except (OSError, WalletQRError) as exc:
                errors.append(RootsError(RootsRejection.UPDATE_FAILED, str(exc), candidate))
                return self._finish(started, None, f"Failed to activate directory '{candidate}'", errors)
            logger.info("Accepted root '%s' as QR directory %s", candidate, status.directory)
            return self._finish(started, status.directory, f"QR directory set to {status.directory}", errors)

        errors.append(
            RootsError(
                RootsRejection.NO_VALID_ROOT,
                f"None of the {len(notification.roots)} candidate directories passed validation",
            )
        )
        return self._finish(started, None, "No valid directory found in roots", errors)

    def _finish(
        self,
        started: float,
        directory: Path | None,
        message: str,
        errors: list[RootsError],
    ) -> RootsValidationResult:
        result = RootsValidationResult(
            directory=directory,
            is_valid=directory is not None,
            message=message,
            errors=tuple(errors),
            duration_ms=max(0.0, (self._clock() - started) * 1000),
        )
        if not result.is_valid:
            logger.warning("Roots notification rejected: %s", message)
        self._history.append(result)
        return result
