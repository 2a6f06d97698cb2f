"""PNG, SVG and terminal rendering of QR artifacts."""

from __future__ import annotations

import io
import logging
from pathlib import Path

import qrcode
from PIL import Image
from qrcode.exceptions import DataOverflowError
from qrcode.image.pil import PilImage
from qrcode.image.svg import SvgPathImage

from .errors import ErrorKind, WalletQRError
from .filesystem import atomic_write_bytes, has_png_signature
from .models import ErrorCorrectionLevel, PNGFileCheck, PNGResult, QRHybridConfig, SVGResult, TerminalRender

logger = logging.getLogger(__name__)

MIN_SIZE = 64
MAX_SIZE = 4096
SVG_BOX_SIZE = 10

_ERROR_CORRECTION = {
    ErrorCorrectionLevel.L: qrcode.constants.ERROR_CORRECT_L,
    ErrorCorrectionLevel.M: qrcode.constants.ERROR_CORRECT_M,
    ErrorCorrectionLevel.Q: qrcode.constants.ERROR_CORRECT_Q,
    ErrorCorrectionLevel.H: qrcode.constants.ERROR_CORRECT_H,
}


class _ColoredSvgImage(SvgPathImage):
    """``SvgPathImage`` honouring ``fill_color`` and ``back_color``."""

    def new_image(self, **kwargs):
        self._fill = kwargs.pop("fill_color", "#000000")
        self.background = kwargs.pop("back_color", None)
        return super().new_image(**kwargs)

    def process(self) -> None:
        super().process()
        self.path.set("fill", self._fill)


class LocalArtifactGenerator:
    """Renders payloads with ``qrcode`` and Pillow and writes them to disk."""

    def generate_png_buffer(self, payload: str, config: QRHybridConfig, size: int) -> PNGResult:
        if not MIN_SIZE <= size <= MAX_SIZE:
            raise WalletQRError(
                f"Image size must be between {MIN_SIZE} and {MAX_SIZE} pixels, got {size}",
                ErrorKind.GENERATION_ERROR,
                {"size": size},
            )

        qr = self._symbol(payload, config)
        try:
            rendered = qr.make_image(fill_color=config.color.dark, back_color=config.color.light)
            image = rendered.get_image().convert("RGB").resize((size, size), Image.Resampling.NEAREST)
            buffer = io.BytesIO()
            image.save(buffer, format="PNG")
        except (OSError, ValueError) as exc:
            raise WalletQRError(f"Failed to render PNG: {exc}", ErrorKind.GENERATION_ERROR) from exc

        data = buffer.getvalue()
        logger.debug(
            "Rendered version %s symbol at level %s into %d bytes",
            qr.version,
            config.error_correction.value,
            len(data),
        )
        return PNGResult(data=data, size=len(data), dimensions=(size, size), config=config)

    def generate_svg(self, payload: str, config: QRHybridConfig) -> SVGResult:
        """Render a standalone SVG document, one ``SVG_BOX_SIZE`` unit per module."""

        qr = self._symbol(payload, config, box_size=SVG_BOX_SIZE)
        image = qr.make_image(
            image_factory=_ColoredSvgImage, fill_color=config.color.dark, back_color=config.color.light
        )
        text = image.to_string(encoding="unicode")
        return SVGResult(text=text, modules=qr.modules_count + 2 * config.margin, config=config)

    def render_terminal(
        self, payload: str, config: QRHybridConfig, *, small: bool = False, inverse: bool = False
    ) -> TerminalRender:
        """Render the symbol as text.

        The default draws every module two characters wide so the code stays
        square in a terminal. ``small`` packs two rows into one line with half
        blocks. ``inverse`` swaps dark and light for dark-on-light terminals.
        """

        qr = self._symbol(payload, config)
        if small:
            buffer = io.StringIO()
            qr.print_ascii(out=buffer, invert=inverse)
            lines = buffer.getvalue().rstrip("\n").split("\n")
        else:
            dark, light = ("  ", "██") if inverse else ("██", "  ")
            lines = ["".join(dark if cell else light for cell in row) for row in qr.get_matrix()]

        return TerminalRender(
            text="\n".join(lines),
            width=max(len(line) for line in lines),
            modules=qr.modules_count + 2 * config.margin,
            config=config,
        )

    def write_atomic(self, path: Path, data: bytes) -> int:
        try:
            atomic_write_bytes(path, data)
        except OSError as exc:
            raise WalletQRError(
                f"Failed to write artifact '{path}': {exc}",
                ErrorKind.FILE_ERROR,
                {"path": str(path)},
            ) from exc
        return len(data)

    def validate_png_file(self, path: Path) -> PNGFileCheck:
        try:
            stat = path.stat()
        except FileNotFoundError:
            return PNGFileCheck(is_valid=False, error="File does not exist")
        except OSError as exc:
            return PNGFileCheck(is_valid=False, error=str(exc))

        if stat.st_size == 0:
            return PNGFileCheck(is_valid=False, file_size=0, error="File is empty")

        try:
            signature_ok = has_png_signature(path)
        except OSError as exc:
            return PNGFileCheck(is_valid=False, file_size=stat.st_size, error=str(exc))
        if not signature_ok:
            return PNGFileCheck(is_valid=False, file_size=stat.st_size, error="Missing PNG signature")

        return PNGFileCheck(is_valid=True, file_size=stat.st_size)

    @staticmethod
    def _symbol(payload: str, config: QRHybridConfig, *, box_size: int = 1) -> qrcode.QRCode:
        qr = qrcode.QRCode(
            version=None,
            error_correction=_ERROR_CORRECTION[config.error_correction],
            box_size=box_size,
            border=config.margin,
            image_factory=PilImage,
        )
        qr.add_data(payload)
        try:
            qr.make(fit=True)
        except DataOverflowError as exc:
            raise WalletQRError(
                f"Payload of {len(payload)} characters does not fit at level {config.error_correction.value}",
                ErrorKind.GENERATION_ERROR,
                {"overflow": True, "error_correction": config.error_correction.value},
            ) from exc
        return qr
