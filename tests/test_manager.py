from __future__ import annotations

import asyncio
import os
from pathlib import Path

import pytest
from PIL import Image

from walletqr.config import Config
from walletqr.errors import ErrorKind, WalletQRError
from walletqr.filesystem import TEMP_MARKER
from walletqr.manager import (
    LocalArtifactManager,
    find_existing_artifacts,
    select_reusable_artifact,
    validate_payload,
)
from walletqr.models import (
    ArtifactRequest,
    ConfigSource,
    ErrorCorrectionLevel,
    ExistingArtifact,
    QRContext,
    QRHybridConfig,
    QROptimizationResult,
    QualityHint,
)
from walletqr.provider import ConfigurationProvider
from walletqr.qr_config import QRHybridConfigManager
from walletqr.security import SecurityValidator

DEEP_LINK = "radixwallet://connect?sessionId=abc123&origin=https%3A%2F%2Fdapp.example"


def _manager(config: Config, **kwargs) -> tuple[LocalArtifactManager, ConfigurationProvider]:
    provider = ConfigurationProvider(config.directory.base_path, environment={})
    manager = LocalArtifactManager(config, provider, SecurityValidator(config.security), **kwargs)
    return manager, provider


class _OverflowingPrimary(QRHybridConfigManager):
    def get_optimal_qr_config(self, payload, context=QRContext.MOBILE_SCAN, preferred_level=None):
        return QROptimizationResult(
            config=QRHybridConfig(ErrorCorrectionLevel.H, 1, context=context),
            expected_capacity=1273,
            estimated_size=177,
            recommendation="forced",
            fallback_config=QRHybridConfig(ErrorCorrectionLevel.L, 1, context=context),
        )


@pytest.mark.asyncio
async def test_generate_writes_png(config: Config, workspace: Path) -> None:
    manager, _ = _manager(config)

    result = await manager.generate(ArtifactRequest(payload=DEEP_LINK, size=128))
    await manager.close()

    assert result.file_path.exists()
    assert result.file_path.parent == (workspace / "qrimages").resolve()
    assert result.filename.startswith(f"qr-{result.hash}-")
    assert result.file_size == result.file_path.stat().st_size
    assert result.dimensions == (128, 128)
    assert not result.reused
    assert result.metadata.source is ConfigSource.DEFAULT
    assert result.metadata.payload_length == len(DEEP_LINK)
    assert result.metadata.error_correction is ErrorCorrectionLevel.H
    assert result.metrics.success
    assert manager.last_metrics is result.metrics


@pytest.mark.asyncio
async def test_same_payload_reuses_artifact(config: Config) -> None:
    manager, _ = _manager(config)

    first = await manager.generate(ArtifactRequest(payload=DEEP_LINK, size=128))
    os.utime(first.file_path, (1_000, 1_000))
    second = await manager.generate(ArtifactRequest(payload=f"  {DEEP_LINK}  ", size=256))
    await manager.close()

    assert second.reused
    assert second.metrics.reused
    assert second.file_path == first.file_path
    assert second.dimensions == (128, 128)
    assert first.file_path.stat().st_mtime == 1_000
    assert len(list(first.file_path.parent.glob("qr-*.png"))) == 1


@pytest.mark.asyncio
async def test_corrupt_artifact_is_not_reused(config: Config) -> None:
    manager, _ = _manager(config)
    first = await manager.generate(ArtifactRequest(payload=DEEP_LINK))
    first.file_path.write_bytes(b"broken")

    second = await manager.generate(ArtifactRequest(payload=DEEP_LINK))
    await manager.close()

    assert not second.reused
    assert second.file_path.read_bytes().startswith(b"\x89PNG\r\n\x1a\n")


@pytest.mark.asyncio
async def test_quality_hint_selects_level(config: Config) -> None:
    manager, _ = _manager(config)

    result = await manager.generate(ArtifactRequest(payload=DEEP_LINK, quality=QualityHint.LOW))
    await manager.close()

    assert result.metadata.error_correction is ErrorCorrectionLevel.L


@pytest.mark.asyncio
async def test_strict_validation_rejects_foreign_links(config: Config) -> None:
    manager, _ = _manager(config)

    with pytest.raises(WalletQRError) as excinfo:
        await manager.generate(ArtifactRequest(payload="https://example.com/pay"))

    assert excinfo.value.kind is ErrorKind.GENERATION_ERROR
    assert not manager.last_metrics.success
    assert manager.last_metrics.errors


@pytest.mark.asyncio
async def test_lenient_validation_accepts_any_text(workspace: Path, fake_home: Path) -> None:
    config = Config.from_raw(
        {"render": {"strict_validation": False}, "settings": {"state_path": str(workspace / "state.toml")}},
        base_dir=workspace,
    )
    manager, _ = _manager(config)

    result = await manager.generate(ArtifactRequest(payload="hello from a plain string"))
    await manager.close()

    assert result.file_path.exists()


@pytest.mark.asyncio
async def test_empty_payload_is_rejected(config: Config) -> None:
    manager, _ = _manager(config)

    with pytest.raises(WalletQRError) as excinfo:
        await manager.generate(ArtifactRequest(payload="   "))

    assert excinfo.value.kind is ErrorKind.GENERATION_ERROR


@pytest.mark.asyncio
async def test_output_dir_outside_allowed_roots(config: Config, tmp_path: Path) -> None:
    manager, _ = _manager(config)
    outside = tmp_path / "outside"

    with pytest.raises(WalletQRError) as excinfo:
        await manager.generate(ArtifactRequest(payload=DEEP_LINK, output_dir=str(outside)))

    assert excinfo.value.kind is ErrorKind.SECURITY_ERROR
    assert not outside.exists()


@pytest.mark.asyncio
async def test_output_dir_override(config: Config, workspace: Path) -> None:
    manager, provider = _manager(config)

    result = await manager.generate(ArtifactRequest(payload=DEEP_LINK, output_dir="exports"))
    await manager.close()

    assert result.file_path.parent == (workspace / "exports").resolve()
    assert result.metadata.source is None
    assert provider.get_qr_directory() == (workspace / "qrimages").resolve()


@pytest.mark.asyncio
async def test_directory_follows_provider(config: Config, workspace: Path) -> None:
    manager, provider = _manager(config)
    negotiated = workspace / "negotiated"

    provider.update_qr_directory(negotiated)
    result = await manager.generate(ArtifactRequest(payload=DEEP_LINK))
    await manager.close()

    assert manager.directory == negotiated.resolve()
    assert result.file_path.parent == negotiated.resolve()
    assert result.metadata.source is ConfigSource.EXTERNAL_ROOTS


@pytest.mark.asyncio
async def test_overflow_retries_with_fallback(config: Config) -> None:
    manager, _ = _manager(config, config_manager=_OverflowingPrimary())
    payload = "radixwallet://" + "a" * 1500

    result = await manager.generate(ArtifactRequest(payload=payload))
    await manager.close()

    assert result.metadata.used_fallback
    assert result.metadata.error_correction is ErrorCorrectionLevel.L
    assert result.file_path.exists()


@pytest.mark.asyncio
async def test_stats_and_manual_cleanup(config: Config) -> None:
    manager, _ = _manager(config)
    result = await manager.generate(ArtifactRequest(payload=DEEP_LINK))
    await manager.close()
    stale = result.file_path.parent / "qr-aaaaaaaaaaaa-1.png"
    stale.write_bytes(b"\x89PNG\r\n\x1a\nold")
    os.utime(stale, (1_000, 1_000))

    before = await manager.get_directory_stats()
    cleanup = await manager.cleanup_files()
    after = await manager.get_directory_stats()

    assert before.file_count == 2
    assert cleanup.removed_files == 1
    assert after.file_count == 1
    assert result.file_path.exists()


def test_select_reusable_artifact(tmp_path: Path) -> None:
    digest = "a" * 12

    def item(timestamp: int, *, valid: bool = True, size: int = 10, hash_: str = digest) -> ExistingArtifact:
        return ExistingArtifact(tmp_path / f"qr-{hash_}-{timestamp}.png", hash_, timestamp, size, valid, (21, 21))

    undecodable = ExistingArtifact(tmp_path / f"qr-{digest}-6.png", digest, 6, 10, True, None)
    candidates = [item(1), item(3, valid=False), item(2), item(4, size=0), item(5, hash_="b" * 12), undecodable]

    chosen = select_reusable_artifact(candidates, digest)

    assert chosen is not None and chosen.timestamp == 2
    assert select_reusable_artifact([], digest) is None
    assert select_reusable_artifact([item(3, valid=False)], digest) is None


def test_find_existing_artifacts(config: Config, tmp_path: Path) -> None:
    manager, _ = _manager(config)
    digest = manager.filenames.compute_hash(DEEP_LINK)
    Image.new("1", (33, 33), 1).save(tmp_path / f"qr-{digest}-10.png", format="PNG")
    (tmp_path / f"qr-{digest}-11.png").write_bytes(b"junk")
    (tmp_path / f"qr-{digest}-12.png").write_bytes(b"\x89PNG\r\n\x1a\ndata")
    Image.new("1", (33, 33), 1).save(tmp_path / "qr-bbbbbbbbbbbb-13.png", format="PNG")

    found = sorted(find_existing_artifacts(tmp_path, manager.filenames, digest), key=lambda item: item.timestamp)

    assert [(item.timestamp, item.signature_valid, item.dimensions) for item in found] == [
        (10, True, (33, 33)),
        (11, False, None),
        (12, True, None),
    ]
    assert select_reusable_artifact(found, digest).timestamp == 10


@pytest.mark.asyncio
async def test_truncated_artifact_with_png_signature_is_rerendered(config: Config) -> None:
    manager, _ = _manager(config)
    first = await manager.generate(ArtifactRequest(payload=DEEP_LINK, size=128))
    first.file_path.write_bytes(b"\x89PNG\r\n\x1a\n" + b"garbage")

    second = await manager.generate(ArtifactRequest(payload=DEEP_LINK, size=128))
    third = await manager.generate(ArtifactRequest(payload=DEEP_LINK, size=128))
    await manager.close()

    assert not second.reused
    assert second.dimensions == (128, 128)
    assert manager.generator.validate_png_file(second.file_path).is_valid
    with Image.open(second.file_path) as image:
        image.load()
    assert third.reused
    assert third.file_path == second.file_path


@pytest.mark.asyncio
async def test_reuse_without_timestamp_in_filenames(workspace: Path, fake_home: Path) -> None:
    config = Config.from_raw(
        {
            "filenames": {"include_timestamp": False},
            "settings": {"state_path": str(workspace / "state.toml")},
        },
        base_dir=workspace,
    )
    manager, _ = _manager(config)

    first = await manager.generate(ArtifactRequest(payload=DEEP_LINK))
    second = await manager.generate(ArtifactRequest(payload=DEEP_LINK))
    await manager.close()

    assert first.filename == f"qr-{first.hash}.png"
    assert second.reused
    assert second.file_path == first.file_path
    assert second.timestamp == 0


@pytest.mark.asyncio
async def test_concurrent_identical_requests(config: Config) -> None:
    manager, _ = _manager(config)

    results = await asyncio.gather(*(manager.generate(ArtifactRequest(payload=DEEP_LINK)) for _ in range(8)))
    await manager.close()

    directory = results[0].file_path.parent
    assert len({result.hash for result in results}) == 1
    for result in results:
        assert result.file_path.exists()
        assert manager.generator.validate_png_file(result.file_path).is_valid
        with Image.open(result.file_path) as image:
            assert image.size == result.dimensions
    assert not [path for path in directory.iterdir() if TEMP_MARKER in path.name]


@pytest.mark.parametrize("payload", [None, 42, b"radixwallet://connect"])
def test_validate_payload_rejects_non_strings(payload: object) -> None:
    with pytest.raises(WalletQRError) as excinfo:
        validate_payload(payload)

    assert excinfo.value.kind is ErrorKind.GENERATION_ERROR
    assert excinfo.value.details["errors"] == ["payload must be a string"]


def test_validate_payload_trims_and_checks_protocol() -> None:
    assert validate_payload(f"  {DEEP_LINK}\n") == DEEP_LINK
    assert validate_payload("plain text", strict=False) == "plain text"
    with pytest.raises(WalletQRError):
        validate_payload("plain text")
