"""High level orchestration of artifact generation."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
from pathlib import Path
from typing import Iterable, Sequence

from PIL import Image

from .config import Config
from .directory import DirectoryManager
from .errors import ErrorKind, WalletQRError
from .filenames import FilenameGenerator
from .filesystem import has_png_signature, remove_file
from .generator import LocalArtifactGenerator
from .models import (
    ArtifactMetrics,
    ArtifactRequest,
    ArtifactResult,
    CleanupResult,
    ColorPair,
    ConfigSource,
    ConfigurationStatus,
    DirectoryInfo,
    ErrorCorrectionLevel,
    ExistingArtifact,
    GenerationMetadata,
    PNGResult,
    QRContext,
    QRHybridConfig,
    QualityHint,
)
from .provider import ConfigurationProvider
from .qr_config import QRHybridConfigManager
from .qr_validation import QRValidationEngine, is_deep_link
from .security import SecurityValidator

logger = logging.getLogger(__name__)

QUALITY_LEVELS: dict[QualityHint, ErrorCorrectionLevel | None] = {
    QualityHint.LOW: ErrorCorrectionLevel.L,
    QualityHint.MEDIUM: ErrorCorrectionLevel.M,
    QualityHint.HIGH: None,
    QualityHint.MAX: ErrorCorrectionLevel.H,
}


def validate_payload(payload: object, *, strict: bool = True) -> str:
    """Return the trimmed payload or raise ``GENERATION_ERROR``.

    With ``strict`` the payload must also use a supported wallet protocol.
    """

    errors = FilenameGenerator.validate_input(payload)
    if errors or not isinstance(payload, str):
        raise WalletQRError(
            f"Invalid deep link: {', '.join(errors)}",
            ErrorKind.GENERATION_ERROR,
            {"errors": errors},
        )
    payload = payload.strip()

    if strict and not is_deep_link(payload):
        raise WalletQRError(
            "Deep link must start with a supported wallet protocol",
            ErrorKind.GENERATION_ERROR,
            {"payload_prefix": payload[:32]},
        )
    return payload


def select_reusable_artifact(candidates: Iterable[ExistingArtifact], digest: str) -> ExistingArtifact | None:
    """Pick the newest intact artifact for ``digest``, or ``None`` if a new one is needed."""

    usable = [
        item
        for item in candidates
        if item.hash == digest and item.signature_valid and item.size > 0 and item.dimensions is not None
    ]
    if not usable:
        return None
    return max(usable, key=lambda item: (item.timestamp, item.path.name))


def find_existing_artifacts(directory: Path, filenames: FilenameGenerator, digest: str) -> list[ExistingArtifact]:
    """Scan ``directory`` for artifacts previously written for ``digest``."""

    found: list[ExistingArtifact] = []
    for candidate in directory.glob(filenames.hash_glob(digest)):
        parsed = filenames.parse_filename(candidate.name)
        if parsed is None:
            continue
        try:
            size = candidate.stat().st_size
            signature_valid = has_png_signature(candidate)
        except OSError:
            continue
        found.append(
            ExistingArtifact(
                path=candidate,
                hash=parsed.hash,
                timestamp=parsed.timestamp,
                size=size,
                signature_valid=signature_valid,
                dimensions=_decoded_dimensions(candidate) if signature_valid else None,
            )
        )
    return found


def _decoded_dimensions(path: Path) -> tuple[int, int] | None:
    try:
        with Image.open(path) as image:
            image.load()
            return image.size
    except (OSError, SyntaxError, ValueError) as exc:
        logger.warning("Artifact %s does not decode: %s", path.name, exc)
        return None


class _Timer:
    def __init__(self) -> None:
        self._mark = time.perf_counter()

    def lap(self) -> float:
        now = time.perf_counter()
        elapsed, self._mark = (now - self._mark) * 1000, now
        return elapsed


class LocalArtifactManager:
    """Coordinates validation, directory resolution, dedup, rendering and cleanup.

    The active directory follows ``ConfigurationProvider``: every configuration
    change replaces the ``DirectoryManager`` so the next request writes to the new
    location.
    """

    def __init__(
        self,
        config: Config,
        provider: ConfigurationProvider,
        validator: SecurityValidator,
        *,
        generator: LocalArtifactGenerator | None = None,
        config_manager: QRHybridConfigManager | None = None,
        validation_engine: QRValidationEngine | None = None,
        filename_generator: FilenameGenerator | None = None,
    ) -> None:
        self.config = config
        self.provider = provider
        self.validator = validator
        self.generator = generator or LocalArtifactGenerator()
        self.config_manager = config_manager or QRHybridConfigManager()
        self.validation_engine = validation_engine or QRValidationEngine()
        self.filenames = filename_generator or FilenameGenerator(config.filenames)

        self._directory_manager = self._manager_for(provider.get_qr_directory())
        self._unsubscribe = provider.on_configuration_changed(self._on_configuration_changed)
        self._pending: set[asyncio.Task[CleanupResult]] = set()
        self._last_artifact: Path | None = None
        self.last_metrics: ArtifactMetrics | None = None

    @property
    def directory(self) -> Path:
        return self._directory_manager.path

    async def generate(self, request: ArtifactRequest) -> ArtifactResult:
        metrics = ArtifactMetrics()
        self.last_metrics = metrics
        timer = _Timer()
        started = time.perf_counter()

        try:
            payload = validate_payload(request.payload, strict=self.config.render.strict_validation)
            size = request.size or self.config.render.size
            context = request.context or self.config.render.context
            preferred = QUALITY_LEVELS[request.quality] if request.quality else None
            metrics.validation_ms = timer.lap()

            directory_manager, source = await self._resolve_directory(request.output_dir)
            info = await asyncio.to_thread(directory_manager.ensure_directory)
            metrics.directory_ms = timer.lap()

            filename = self.filenames.generate_unique_filename(payload, info.path)
            metrics.filename_ms = timer.lap()

            existing = await asyncio.to_thread(find_existing_artifacts, info.path, self.filenames, filename.hash)
            reusable = select_reusable_artifact(existing, filename.hash)
            metrics.dedup_ms = timer.lap()

            optimization = self.config_manager.get_optimal_qr_config(payload, context, preferred)
            primary = self._colored(optimization.config)
            fallback = self._colored(optimization.fallback_config) if optimization.fallback_config else None

            if reusable is not None:
                logger.info("Reusing existing artifact %s for hash %s", reusable.path.name, filename.hash)
                metrics.reused = True
                result = self._build_result(
                    path=reusable.path,
                    file_size=reusable.size,
                    digest=filename.hash,
                    timestamp=reusable.timestamp,
                    dimensions=reusable.dimensions,
                    payload=payload,
                    config=primary,
                    context=context,
                    recommendation=optimization.recommendation,
                    directory=info.path,
                    source=source,
                    used_fallback=False,
                    reused=True,
                    metrics=metrics,
                )
            else:
                png, used_fallback = await asyncio.to_thread(self._render, payload, primary, fallback, size)
                metrics.generation_ms = timer.lap()

                file_size = await asyncio.to_thread(self.generator.write_atomic, filename.full_path, png.data)
                metrics.write_ms = timer.lap()

                check = await asyncio.to_thread(self.generator.validate_png_file, filename.full_path)
                if not check.is_valid:
                    await asyncio.to_thread(remove_file, filename.full_path)
                    raise WalletQRError(
                        f"Written artifact is not a valid PNG: {check.error}",
                        ErrorKind.FILE_ERROR,
                        {"path": str(filename.full_path)},
                    )
                metrics.verify_ms = timer.lap()

                logger.info("Wrote artifact %s (%d bytes)", filename.full_path, file_size)
                result = self._build_result(
                    path=filename.full_path,
                    file_size=file_size,
                    digest=filename.hash,
                    timestamp=filename.timestamp,
                    dimensions=png.dimensions,
                    payload=payload,
                    config=png.config,
                    context=context,
                    recommendation=optimization.recommendation,
                    directory=info.path,
                    source=source,
                    used_fallback=used_fallback,
                    reused=False,
                    metrics=metrics,
                )
        except WalletQRError as exc:
            metrics.errors.append(str(exc))
            metrics.total_ms = (time.perf_counter() - started) * 1000
            raise
        except OSError as exc:
            metrics.errors.append(str(exc))
            metrics.total_ms = (time.perf_counter() - started) * 1000
            raise WalletQRError(f"Artifact generation failed: {exc}", ErrorKind.FILE_ERROR) from exc

        metrics.success = True
        metrics.total_ms = (time.perf_counter() - started) * 1000
        self._last_artifact = result.file_path
        self._schedule_cleanup(directory_manager, protect=(result.file_path,))
        return result

    async def get_directory_stats(self) -> DirectoryInfo:
        return await asyncio.to_thread(self._directory_manager.get_stats)

    async def cleanup_files(self) -> CleanupResult:
        protect = (self._last_artifact,) if self._last_artifact else ()
        return await asyncio.to_thread(self._directory_manager.cleanup_old_files, protect)

    async def close(self) -> None:
        """Stop following configuration changes and wait for pending cleanup."""

        self._unsubscribe()
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        self._pending.clear()

    # ------------------------------------------------------------------
    # Internal helpers

    def _manager_for(self, directory: Path | str) -> DirectoryManager:
        return DirectoryManager(self.config.directory.with_base_path(directory), self.config.filenames)

    def _on_configuration_changed(self, status: ConfigurationStatus) -> None:
        self._directory_manager = self._manager_for(status.directory)
        logger.debug("Artifact directory now %s (source=%s)", status.directory, status.source.value)

    async def _resolve_directory(self, override: str | None) -> tuple[DirectoryManager, ConfigSource | None]:
        if override is None:
            return self._directory_manager, self.provider.get_configuration_source()

        result = await asyncio.to_thread(self.validator.validate, override)
        if not result.is_secure:
            raise WalletQRError(
                f"Output directory '{override}' was rejected: {'; '.join(result.descriptions())}",
                ErrorKind.SECURITY_ERROR,
                {"violations": [violation.type.value for violation in result.violations]},
            )
        return self._manager_for(result.sanitized_path), None

    def _colored(self, config: QRHybridConfig) -> QRHybridConfig:
        colors = ColorPair(dark=self.config.render.foreground, light=self.config.render.background)
        return dataclasses.replace(config, color=colors)

    def _render(
        self, payload: str, primary: QRHybridConfig, fallback: QRHybridConfig | None, size: int
    ) -> tuple[PNGResult, bool]:
        try:
            return self.generator.generate_png_buffer(payload, primary, size), False
        except WalletQRError as exc:
            if fallback is None or not exc.details.get("overflow"):
                raise
            logger.warning(
                "Level %s overflowed, retrying with fallback level %s",
                primary.error_correction.value,
                fallback.error_correction.value,
            )
        return self.generator.generate_png_buffer(payload, fallback, size), True

    def _build_result(
        self,
        *,
        path: Path,
        file_size: int,
        digest: str,
        timestamp: int,
        dimensions: tuple[int, int],
        payload: str,
        config: QRHybridConfig,
        context: QRContext,
        recommendation: str,
        directory: Path,
        source: ConfigSource | None,
        used_fallback: bool,
        reused: bool,
        metrics: ArtifactMetrics,
    ) -> ArtifactResult:
        validation = self.validation_engine.validate_qr(payload, config, context)
        for warning in validation.warnings:
            logger.debug("Quality warning for %s: %s", path.name, warning)

        return ArtifactResult(
            file_path=path.resolve(strict=False),
            filename=path.name,
            file_size=file_size,
            hash=digest,
            timestamp=timestamp,
            dimensions=dimensions,
            metadata=GenerationMetadata(
                payload_length=len(payload),
                error_correction=config.error_correction,
                margin=config.margin,
                context=context,
                score=validation.score,
                recommendation=recommendation,
                directory=directory,
                source=source,
                used_fallback=used_fallback,
            ),
            reused=reused,
            metrics=metrics,
        )

    def _schedule_cleanup(self, directory_manager: DirectoryManager, protect: Sequence[Path]) -> None:
        if not self.config.directory.retention.enabled:
            return
        task = asyncio.create_task(self._cleanup_in_background(directory_manager, protect))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    @staticmethod
    async def _cleanup_in_background(directory_manager: DirectoryManager, protect: Sequence[Path]) -> CleanupResult:
        try:
            return await asyncio.to_thread(directory_manager.cleanup_old_files, protect)
        except (OSError, WalletQRError) as exc:
            logger.warning("Background cleanup of %s failed: %s", directory_manager.path, exc)
            return CleanupResult()
