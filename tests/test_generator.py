from __future__ import annotations

import io
from pathlib import Path

import pytest
from PIL import Image

from walletqr.errors import ErrorKind, WalletQRError
from walletqr.filesystem import PNG_SIGNATURE, TEMP_MARKER
from walletqr.generator import LocalArtifactGenerator
from walletqr.models import ColorPair, ErrorCorrectionLevel, QRHybridConfig
from walletqr.qr_config import CAPACITY_CONFIG, QUALITY_CONFIG, TERMINAL_CONFIG

DEEP_LINK = "radixwallet://connect?sessionId=abc123&origin=https%3A%2F%2Fdapp.example"


@pytest.fixture
def generator() -> LocalArtifactGenerator:
    return LocalArtifactGenerator()


def test_png_buffer_has_requested_dimensions(generator: LocalArtifactGenerator) -> None:
    result = generator.generate_png_buffer(DEEP_LINK, QUALITY_CONFIG, 256)

    assert result.data.startswith(PNG_SIGNATURE)
    assert result.size == len(result.data)
    assert result.dimensions == (256, 256)
    assert result.config is QUALITY_CONFIG
    with Image.open(io.BytesIO(result.data)) as image:
        assert image.size == (256, 256)


def test_png_buffer_uses_colors(generator: LocalArtifactGenerator) -> None:
    config = QRHybridConfig(ErrorCorrectionLevel.M, 2, color=ColorPair(dark="#112233", light="#FFEEDD"))

    result = generator.generate_png_buffer(DEEP_LINK, config, 128)

    with Image.open(io.BytesIO(result.data)) as image:
        assert image.convert("RGB").getpixel((0, 0)) == (0xFF, 0xEE, 0xDD)


@pytest.mark.parametrize("size", [63, 4097])
def test_png_buffer_rejects_size(generator: LocalArtifactGenerator, size: int) -> None:
    with pytest.raises(WalletQRError) as excinfo:
        generator.generate_png_buffer(DEEP_LINK, CAPACITY_CONFIG, size)

    assert excinfo.value.kind is ErrorKind.GENERATION_ERROR


def test_overflow_is_reported(generator: LocalArtifactGenerator) -> None:
    payload = "radixwallet://" + "a" * 1500

    with pytest.raises(WalletQRError) as excinfo:
        generator.generate_png_buffer(payload, QUALITY_CONFIG, 512)

    assert excinfo.value.kind is ErrorKind.GENERATION_ERROR
    assert excinfo.value.details["overflow"] is True


def test_long_payload_fits_at_level_l(generator: LocalArtifactGenerator) -> None:
    payload = "radixwallet://" + "a" * 1500

    result = generator.generate_png_buffer(payload, CAPACITY_CONFIG, 512)

    assert result.data.startswith(PNG_SIGNATURE)


def test_write_atomic_and_validate(generator: LocalArtifactGenerator, tmp_path: Path) -> None:
    png = generator.generate_png_buffer(DEEP_LINK, CAPACITY_CONFIG, 64)
    target = tmp_path / "qr.png"

    written = generator.write_atomic(target, png.data)
    check = generator.validate_png_file(target)

    assert written == png.size
    assert check.is_valid
    assert check.file_size == png.size
    assert not any(TEMP_MARKER in item.name for item in tmp_path.iterdir())


def test_write_atomic_failure_is_file_error(generator: LocalArtifactGenerator, tmp_path: Path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory")

    with pytest.raises(WalletQRError) as excinfo:
        generator.write_atomic(blocker / "qr.png", b"data")

    assert excinfo.value.kind is ErrorKind.FILE_ERROR


def test_validate_png_file_failures(generator: LocalArtifactGenerator, tmp_path: Path) -> None:
    empty = tmp_path / "empty.png"
    empty.write_bytes(b"")
    wrong = tmp_path / "wrong.png"
    wrong.write_bytes(b"GIF89a....")

    assert generator.validate_png_file(tmp_path / "missing.png").error == "File does not exist"
    assert generator.validate_png_file(empty).error == "File is empty"
    wrong_check = generator.validate_png_file(wrong)
    assert not wrong_check.is_valid
    assert wrong_check.file_size == 10


def test_terminal_render_uses_two_columns_per_module(generator: LocalArtifactGenerator) -> None:
    render = generator.render_terminal(DEEP_LINK, TERMINAL_CONFIG)

    lines = render.text.split("\n")
    assert len(lines) == render.modules
    assert all(len(line) == 2 * render.modules for line in lines)
    assert render.width == 2 * render.modules
    assert lines[0] == "  " * render.modules
    assert "██" in render.text
    assert render.config is TERMINAL_CONFIG


def test_terminal_render_inverse_and_small(generator: LocalArtifactGenerator) -> None:
    inverse = generator.render_terminal(DEEP_LINK, TERMINAL_CONFIG, inverse=True)
    small = generator.render_terminal(DEEP_LINK, TERMINAL_CONFIG, small=True)

    assert inverse.text.split("\n")[0] == "██" * inverse.modules
    assert small.modules == inverse.modules
    assert small.width == small.modules
    assert len(small.text.split("\n")) == (small.modules + 1) // 2
    assert small.fits(80)
    assert not inverse.fits(inverse.width - 1)


def test_terminal_render_overflow(generator: LocalArtifactGenerator) -> None:
    with pytest.raises(WalletQRError) as excinfo:
        generator.render_terminal("radixwallet://" + "a" * 1500, QUALITY_CONFIG)

    assert excinfo.value.details["overflow"] is True


def test_svg_uses_configured_colors(generator: LocalArtifactGenerator) -> None:
    config = QRHybridConfig(ErrorCorrectionLevel.M, 2, color=ColorPair(dark="#112233", light="#FFEEDD"))

    result = generator.generate_svg(DEEP_LINK, config)

    assert result.text.startswith("<svg")
    assert 'fill="#112233"' in result.text
    assert 'fill="#FFEEDD"' in result.text
    assert result.modules == generator.render_terminal(DEEP_LINK, config).modules
