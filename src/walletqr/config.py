"""TOML configuration loading for walletqr."""

from __future__ import annotations

import os
import tomllib
from datetime import timedelta
from pathlib import Path
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .models import QRContext

DEFAULT_CONFIG_FILENAME = "walletqr.toml"
DEFAULT_DIRECTORY_NAME = "qrimages"
DEFAULT_STATE_PATH = Path("~/.walletqr/status.toml")

FORBIDDEN_LOCATIONS: tuple[str, ...] = (
    "/etc",
    "/usr",
    "/bin",
    "/sbin",
    "/sys",
    "/proc",
    "/dev",
    "/boot",
    "/root/.ssh",
    "C:\\Windows",
    "C:\\System32",
    "C:\\Program Files",
)


class ConfigError(RuntimeError):
    """Raised when a configuration file cannot be parsed or validated."""


def _expand_path(raw: str | os.PathLike[str] | Path, *, base_dir: Path) -> Path:
    """Return an absolute ``Path`` by expanding env vars and user segments."""

    text = str(raw)
    expanded = Path(os.path.expandvars(text)).expanduser()
    if expanded.is_absolute():
        return expanded.resolve(strict=False)
    return (base_dir / expanded).resolve(strict=False)


class RetentionPolicy(BaseModel):
    """Age and size limits applied by directory cleanup."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    max_age_days: float = Field(default=7.0, gt=0)
    max_size_mb: float | None = Field(default=100.0, gt=0)

    @property
    def max_age(self) -> timedelta:
        return timedelta(days=self.max_age_days)

    @property
    def max_size_bytes(self) -> int | None:
        if self.max_size_mb is None:
            return None
        return int(self.max_size_mb * 1024 * 1024)


class FilenameConfig(BaseModel):
    """How artifact filenames are composed."""

    model_config = ConfigDict(frozen=True)

    prefix: str = "qr"
    hash_length: int = Field(default=12, ge=4, le=32)
    include_timestamp: bool = True
    extension: str = "png"

    @field_validator("prefix")
    @classmethod
    def _check_prefix(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("prefix must not be empty")
        if "/" in value or "\\" in value:
            raise ValueError("prefix must not contain path separators")
        return value

    @field_validator("extension")
    @classmethod
    def _check_extension(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("extension must not be empty")
        if "." in value:
            raise ValueError("extension must not include the dot")
        return value


class DirectoryConfig(BaseModel):
    """Target directory and its retention policy."""

    model_config = ConfigDict(frozen=True)

    base_path: Path = Field(default_factory=lambda: Path.cwd() / DEFAULT_DIRECTORY_NAME)
    auto_create: bool = True
    validate_permissions: bool = True
    retention: RetentionPolicy = Field(default_factory=RetentionPolicy)

    def with_base_path(self, path: Path | str) -> "DirectoryConfig":
        """Return a copy pointed at ``path``; instances are never mutated."""

        return self.model_copy(update={"base_path": Path(path)})


class RenderConfig(BaseModel):
    """Defaults for artifact rendering."""

    model_config = ConfigDict(frozen=True)

    size: int = Field(default=512, ge=64, le=4096)
    foreground: str = Field(default="#000000", pattern=r"^#[0-9A-Fa-f]{6}$")
    background: str = Field(default="#FFFFFF", pattern=r"^#[0-9A-Fa-f]{6}$")
    context: QRContext = QRContext.MOBILE_SCAN
    strict_validation: bool = True


class SecurityPolicy(BaseModel):
    """Allow-list and limits applied to externally supplied directories."""

    model_config = ConfigDict(frozen=True)

    allowed_roots: tuple[Path, ...] = Field(default_factory=lambda: (Path.cwd(),))
    base_dir: Path = Field(default_factory=Path.cwd)
    max_path_length: int = Field(default=260, gt=0)
    require_write_permission: bool = True
    forbidden_locations: tuple[str, ...] = FORBIDDEN_LOCATIONS
    history_limit: int = Field(default=100, gt=0)


class RootsSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    rate_limit_ms: int = Field(default=1000, ge=0)


class Settings(BaseModel):
    """Global options."""

    model_config = ConfigDict(frozen=True)

    state_path: Path = Field(default_factory=lambda: DEFAULT_STATE_PATH.expanduser())
    environment_variable: str = "WALLETQR_DIRECTORY"


class Config(BaseModel):
    """Fully parsed configuration."""

    model_config = ConfigDict(frozen=True)

    config_path: Path | None = None
    directory: DirectoryConfig = Field(default_factory=DirectoryConfig)
    filenames: FilenameConfig = Field(default_factory=FilenameConfig)
    render: RenderConfig = Field(default_factory=RenderConfig)
    security: SecurityPolicy = Field(default_factory=SecurityPolicy)
    roots: RootsSettings = Field(default_factory=RootsSettings)
    settings: Settings = Field(default_factory=Settings)

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any], *, base_dir: Path, config_path: Path | None = None) -> "Config":
        directory_raw = dict(raw.get("directory") or {})
        retention_raw = dict(raw.get("retention") or {})
        security_raw = dict(raw.get("security") or {})
        settings_raw = dict(raw.get("settings") or {})

        base_path = _expand_path(directory_raw.pop("path", DEFAULT_DIRECTORY_NAME), base_dir=base_dir)
        allowed = security_raw.pop("allowed_roots", None)
        allowed_roots = (
            tuple(_expand_path(item, base_dir=base_dir) for item in allowed) if allowed else (base_dir,)
        )
        state_raw = settings_raw.pop("state_path", None)
        if state_raw is not None:
            settings_raw["state_path"] = _expand_path(state_raw, base_dir=base_dir)

        try:
            return cls(
                config_path=config_path,
                directory=DirectoryConfig(
                    base_path=base_path,
                    retention=RetentionPolicy(**retention_raw),
                    **directory_raw,
                ),
                filenames=FilenameConfig(**dict(raw.get("filenames") or {})),
                render=RenderConfig(**dict(raw.get("render") or {})),
                security=SecurityPolicy(allowed_roots=allowed_roots, base_dir=base_dir, **security_raw),
                roots=RootsSettings(**dict(raw.get("roots") or {})),
                settings=Settings(**settings_raw),
            )
        except (ValidationError, TypeError) as exc:
            location = config_path or base_dir
            raise ConfigError(f"Invalid configuration in '{location}': {exc}") from exc


def load_config(path: Path | None = None) -> Config:
    """Load and validate a configuration file.

    Args:
        path: Optional path to the TOML file or its directory. When omitted,
            ``walletqr.toml`` in the current working directory is used if present,
            otherwise built-in defaults apply.
    """

    config_path = _resolve_config_path(path)
    if config_path is None:
        return Config.from_raw({}, base_dir=Path.cwd())

    try:
        with config_path.open("rb") as handle:
            data = tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Configuration file '{config_path}' is not valid TOML: {exc}") from exc

    return Config.from_raw(data, base_dir=config_path.parent, config_path=config_path)


def _resolve_config_path(path: Path | None) -> Path | None:
    if path is None:
        candidate = Path.cwd() / DEFAULT_CONFIG_FILENAME
        return candidate.resolve(strict=False) if candidate.exists() else None

    path = Path(path)
    if not path.exists():
        raise ConfigError(f"Configuration file '{path}' does not exist")
    if path.is_dir():
        candidate = path / DEFAULT_CONFIG_FILENAME
        if not candidate.exists():
            raise ConfigError(f"Expected to find '{DEFAULT_CONFIG_FILENAME}' inside '{path}', but none was located")
        path = candidate

    return path.resolve(strict=False)
