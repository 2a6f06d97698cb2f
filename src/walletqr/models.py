"""Shared models and enums for walletqr."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Mapping, Sequence

from .errors import NotificationError


class ConfigSource(str, Enum):
    """Where the active QR directory came from, highest precedence first."""

    EXTERNAL_ROOTS = "EXTERNAL_ROOTS"
    ENVIRONMENT = "ENVIRONMENT"
    COMMAND_LINE = "COMMAND_LINE"
    DEFAULT = "DEFAULT"


PRECEDENCE_ORDER: tuple[ConfigSource, ...] = (
    ConfigSource.EXTERNAL_ROOTS,
    ConfigSource.ENVIRONMENT,
    ConfigSource.COMMAND_LINE,
    ConfigSource.DEFAULT,
)


class ViolationType(str, Enum):
    INVALID_PATH = "INVALID_PATH"
    INVALID_CHARACTERS = "INVALID_CHARACTERS"
    PATH_TRAVERSAL = "PATH_TRAVERSAL"
    WHITELIST_VIOLATION = "WHITELIST_VIOLATION"
    FORBIDDEN_LOCATION = "FORBIDDEN_LOCATION"
    PERMISSION_DENIED = "PERMISSION_DENIED"


class Severity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


@dataclass(frozen=True, slots=True)
class SecurityViolation:
    """A single reason a candidate path was rejected."""

    type: ViolationType
    path: str
    description: str
    severity: Severity = Severity.MEDIUM


@dataclass(frozen=True, slots=True)
class SecurityValidationResult:
    """Outcome of ``SecurityValidator.validate``."""

    is_secure: bool
    original_path: str
    sanitized_path: str
    violations: tuple[SecurityViolation, ...] = ()

    def descriptions(self) -> list[str]:
        return [violation.description for violation in self.violations]


@dataclass(frozen=True, slots=True)
class ConfigurationStatus:
    """The live directory configuration owned by ``ConfigurationProvider``."""

    source: ConfigSource
    directory: Path
    offered_directories: tuple[Path, ...] = ()
    is_valid: bool = True
    last_updated: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True, slots=True)
class RootsNotification:
    """An ordered list of candidate directories offered by the client."""

    roots: tuple[str, ...]
    timestamp: float | None = None

    @classmethod
    def parse(cls, raw: Any) -> "RootsNotification":
        """Build a notification from a bare list or a ``{"roots": [...]}`` mapping.

        Raises ``NotificationError`` for anything that is not a non-empty list of
        non-empty strings.
        """

        timestamp: float | None = None
        if isinstance(raw, RootsNotification):
            return raw
        if isinstance(raw, Mapping):
            if "roots" not in raw:
                raise NotificationError("Notification is missing the 'roots' field")
            raw_timestamp = raw.get("timestamp")
            if raw_timestamp is not None:
                if isinstance(raw_timestamp, bool) or not isinstance(raw_timestamp, (int, float)):
                    raise NotificationError("Notification timestamp must be a number")
                timestamp = float(raw_timestamp)
            raw = raw["roots"]

        if isinstance(raw, (str, bytes)) or not isinstance(raw, Sequence):
            raise NotificationError("Roots must be a list of directory strings")
        if not raw:
            raise NotificationError("Roots list is empty")

        roots: list[str] = []
        for index, item in enumerate(raw):
            if not isinstance(item, str):
                raise NotificationError(f"Root at position {index} is not a string")
            if not item.strip():
                raise NotificationError(f"Root at position {index} is empty")
            roots.append(item)

        return cls(roots=tuple(roots), timestamp=timestamp)


class RootsState(str, Enum):
    """Whether ``RootsManager`` is busy with a notification.

    Only the in-flight state lives here. The accepted or rejected outcome of a
    notification is carried by ``RootsValidationResult.is_valid`` and its
    ``errors``.
    """

    IDLE = "idle"
    PROCESSING = "processing"


class RootsRejection(str, Enum):
    """Structured reasons attached to a rejected roots notification."""

    MALFORMED = "malformed"
    BUSY = "busy"
    RATE_LIMITED = "rate_limited"
    SECURITY_VIOLATION = "security_violation"
    NO_VALID_ROOT = "no_valid_root"
    UPDATE_FAILED = "update_failed"


@dataclass(frozen=True, slots=True)
class RootsError:
    code: RootsRejection
    detail: str
    path: str | None = None


@dataclass(frozen=True, slots=True)
class RootsValidationResult:
    """Synchronous answer to a roots notification."""

    directory: Path | None
    is_valid: bool
    message: str
    errors: tuple[RootsError, ...] = ()
    duration_ms: float = 0.0

    def has_error(self, code: RootsRejection) -> bool:
        return any(error.code is code for error in self.errors)


@dataclass(frozen=True, slots=True)
class DirectoryInfo:
    """Snapshot of the artifact directory, recomputed on every call."""

    path: Path
    exists: bool
    writable: bool
    file_count: int = 0
    total_size: int = 0


@dataclass(frozen=True, slots=True)
class CleanupResult:
    removed_files: int = 0
    freed_bytes: int = 0

    def __add__(self, other: "CleanupResult") -> "CleanupResult":
        return CleanupResult(
            removed_files=self.removed_files + other.removed_files,
            freed_bytes=self.freed_bytes + other.freed_bytes,
        )


@dataclass(frozen=True, slots=True)
class FilenameResult:
    filename: str
    hash: str
    timestamp: int
    full_path: Path


@dataclass(frozen=True, slots=True)
class ParsedFilename:
    prefix: str
    hash: str
    timestamp: int
    extension: str


@dataclass(frozen=True, slots=True)
class ExistingArtifact:
    """An artifact file found on disk.

    ``dimensions`` is ``None`` when the file could not be decoded as an image.
    """

    path: Path
    hash: str
    timestamp: int
    size: int
    signature_valid: bool
    dimensions: tuple[int, int] | None = None


class ErrorCorrectionLevel(str, Enum):
    """QR error-correction levels, from most capacity to most robustness."""

    L = "L"
    M = "M"
    Q = "Q"
    H = "H"

    @property
    def robustness(self) -> int:
        return _LEVEL_ORDER.index(self)

    def lower(self) -> "ErrorCorrectionLevel | None":
        """Return the next level with more capacity, or ``None`` at ``L``."""

        index = self.robustness
        return _LEVEL_ORDER[index - 1] if index > 0 else None


_LEVEL_ORDER: tuple[ErrorCorrectionLevel, ...] = (
    ErrorCorrectionLevel.L,
    ErrorCorrectionLevel.M,
    ErrorCorrectionLevel.Q,
    ErrorCorrectionLevel.H,
)


class QRContext(str, Enum):
    """Where the code is expected to be viewed."""

    MOBILE_SCAN = "mobile_scan"
    DESKTOP_DISPLAY = "desktop_display"
    TERMINAL_RENDER = "terminal_render"
    WEB_EMBED = "web_embed"
    HIGH_QUALITY = "high_quality"


class FallbackStrategy(str, Enum):
    INCREASE_CAPACITY = "increase_capacity"
    REDUCE_SIZE = "reduce_size"
    MAINTAIN_QUALITY = "maintain_quality"


class LengthCategory(str, Enum):
    VERY_SHORT = "very_short"
    SHORT = "short"
    MEDIUM = "medium"
    LONG = "long"
    VERY_LONG = "very_long"


class QualityHint(str, Enum):
    """Optional caller hint mapped onto a preferred error-correction level."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    MAX = "max"


@dataclass(frozen=True, slots=True)
class ColorPair:
    dark: str = "#000000"
    light: str = "#FFFFFF"


@dataclass(frozen=True, slots=True)
class QRHybridConfig:
    """Encoder parameters chosen for one payload."""

    error_correction: ErrorCorrectionLevel
    margin: int
    color: ColorPair = ColorPair()
    context: QRContext = QRContext.MOBILE_SCAN
    adaptive: bool = True
    fallback_strategy: FallbackStrategy = FallbackStrategy.INCREASE_CAPACITY


@dataclass(frozen=True, slots=True)
class QROptimizationResult:
    config: QRHybridConfig
    expected_capacity: int
    estimated_size: int
    recommendation: str
    fallback_config: QRHybridConfig | None = None


@dataclass(frozen=True, slots=True)
class LengthFit:
    is_valid: bool
    estimated_fit: int
    recommendation: str


@dataclass(frozen=True, slots=True)
class ContentMetrics:
    is_wallet_deep_link: bool
    protocol_supported: bool
    length_score: float
    content_integrity: float


@dataclass(frozen=True, slots=True)
class GenerationMetrics:
    estimated_scan_success: float
    capacity_utilization: float
    error_recovery: float
    density_score: float


@dataclass(frozen=True, slots=True)
class ContextMetrics:
    mobile_compatibility: float
    terminal_compatibility: float
    web_compatibility: float
    print_compatibility: float


@dataclass(frozen=True, slots=True)
class QRQualityMetrics:
    content: ContentMetrics
    generation: GenerationMetrics
    context: ContextMetrics


@dataclass(frozen=True, slots=True)
class QRValidationResult:
    is_valid: bool
    score: float
    warnings: tuple[str, ...]
    errors: tuple[str, ...]
    recommendations: tuple[str, ...]
    metrics: QRQualityMetrics


@dataclass(frozen=True, slots=True)
class MethodCandidate:
    name: str
    config: QRHybridConfig
    context: QRContext | None = None


@dataclass(frozen=True, slots=True)
class MethodEvaluation:
    name: str
    config: QRHybridConfig
    validation: QRValidationResult
    estimated_performance: float


@dataclass(frozen=True, slots=True)
class ComparisonRecommendation:
    best_method: str
    reasoning: str
    alternatives: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class ComparisonSummary:
    total_methods: int
    average_score: float
    best_score: float
    worst_score: float


@dataclass(frozen=True, slots=True)
class QRComparisonResult:
    methods: tuple[MethodEvaluation, ...]
    recommendation: ComparisonRecommendation
    summary: ComparisonSummary


@dataclass(frozen=True, slots=True)
class PNGResult:
    data: bytes
    size: int
    dimensions: tuple[int, int]
    config: QRHybridConfig


@dataclass(frozen=True, slots=True)
class SVGResult:
    text: str
    modules: int
    config: QRHybridConfig


@dataclass(frozen=True, slots=True)
class TerminalRender:
    """Text rendering of a symbol; ``width`` is the longest line in characters."""

    text: str
    width: int
    modules: int
    config: QRHybridConfig

    def fits(self, columns: int) -> bool:
        return self.width <= columns


class OutputFormat(str, Enum):
    TERMINAL = "terminal"
    SVG = "svg"
    PNG_BASE64 = "png-base64"


@dataclass(frozen=True, slots=True)
class PNGFileCheck:
    is_valid: bool
    file_size: int | None = None
    error: str | None = None


@dataclass(frozen=True, slots=True)
class ArtifactRequest:
    """Caller input for ``LocalArtifactManager.generate``."""

    payload: str
    size: int | None = None
    quality: QualityHint | None = None
    context: QRContext | None = None
    output_dir: str | None = None


@dataclass(slots=True)
class ArtifactMetrics:
    """Per-phase timings in milliseconds, filled in as a request progresses."""

    validation_ms: float = 0.0
    directory_ms: float = 0.0
    filename_ms: float = 0.0
    dedup_ms: float = 0.0
    generation_ms: float = 0.0
    write_ms: float = 0.0
    verify_ms: float = 0.0
    total_ms: float = 0.0
    success: bool = False
    reused: bool = False
    errors: list[str] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class GenerationMetadata:
    payload_length: int
    error_correction: ErrorCorrectionLevel
    margin: int
    context: QRContext
    score: float
    recommendation: str
    directory: Path
    source: ConfigSource | None
    used_fallback: bool = False


@dataclass(frozen=True, slots=True)
class ArtifactResult:
    file_path: Path
    filename: str
    file_size: int
    hash: str
    timestamp: int
    dimensions: tuple[int, int]
    metadata: GenerationMetadata
    reused: bool
    metrics: ArtifactMetrics
