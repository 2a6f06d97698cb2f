"""Error taxonomy shared by walletqr components."""

from __future__ import annotations

from enum import Enum
from typing import Any, Mapping


class ErrorKind(str, Enum):
    """Machine-readable error kinds surfaced to callers."""

    DIRECTORY_ERROR = "DIRECTORY_ERROR"
    PERMISSION_ERROR = "PERMISSION_ERROR"
    FILE_ERROR = "FILE_ERROR"
    GENERATION_ERROR = "GENERATION_ERROR"
    SECURITY_ERROR = "SECURITY_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    TIMEOUT = "TIMEOUT"
    RATE_LIMIT = "RATE_LIMIT"
    GATEWAY_ERROR = "GATEWAY_ERROR"
    INVALID_ADDRESS = "INVALID_ADDRESS"
    ENTITY_NOT_FOUND = "ENTITY_NOT_FOUND"
    INVALID_AMOUNT = "INVALID_AMOUNT"
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"
    UNKNOWN = "UNKNOWN"

    @property
    def retryable(self) -> bool:
        return self in TRANSIENT_KINDS


TRANSIENT_KINDS = frozenset(
    {
        ErrorKind.NETWORK_ERROR,
        ErrorKind.TIMEOUT,
        ErrorKind.RATE_LIMIT,
        ErrorKind.GATEWAY_ERROR,
    }
)


class WalletQRError(RuntimeError):
    """Raised when an operation fails with a structured, user-facing reason."""

    def __init__(self, message: str, kind: ErrorKind, details: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.details: dict[str, Any] = dict(details or {})

    @property
    def retryable(self) -> bool:
        return self.kind.retryable

    def __str__(self) -> str:
        return f"[{self.kind.value}] {self.message}"


class NotificationError(ValueError):
    """Raised when a directory change notification is malformed."""
