"""Core package for the walletqr project."""

from .cli import app, run
from .config import Config, ConfigError, load_config
from .directory import DirectoryManager
from .errors import ErrorKind, NotificationError, WalletQRError
from .filenames import FilenameGenerator
from .generator import LocalArtifactGenerator
from .ledger import BalanceCache, BalanceChecker, FileBalanceFetcher, RetryPolicy, parse_amount, retry_async
from .manager import LocalArtifactManager
from .models import (
    ArtifactRequest,
    ArtifactResult,
    ConfigSource,
    ConfigurationStatus,
    ErrorCorrectionLevel,
    QRContext,
    QRHybridConfig,
    RootsNotification,
    RootsValidationResult,
)
from .provider import ConfigurationProvider
from .qr_config import QRHybridConfigManager
from .qr_validation import QRValidationEngine
from .roots import RootsManager
from .security import SecurityValidator

__all__ = [
    "Config",
    "ConfigError",
    "load_config",
    "DirectoryManager",
    "ErrorKind",
    "NotificationError",
    "WalletQRError",
    "FilenameGenerator",
    "LocalArtifactGenerator",
    "BalanceCache",
    "BalanceChecker",
    "FileBalanceFetcher",
    "RetryPolicy",
    "parse_amount",
    "retry_async",
    "LocalArtifactManager",
    "ArtifactRequest",
    "ArtifactResult",
    "ConfigSource",
    "ConfigurationStatus",
    "ErrorCorrectionLevel",
    "QRContext",
    "QRHybridConfig",
    "RootsNotification",
    "RootsValidationResult",
    "ConfigurationProvider",
    "QRHybridConfigManager",
    "QRValidationEngine",
    "RootsManager",
    "SecurityValidator",
    "app",
    "run",
]
