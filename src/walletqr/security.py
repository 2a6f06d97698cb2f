"""Path validation for externally supplied directories."""

from __future__ import annotations

import logging
import os
from collections import deque
from pathlib import Path
from typing import Any

from .config import SecurityPolicy
from .models import SecurityValidationResult, SecurityViolation, Severity, ViolationType

logger = logging.getLogger(__name__)

INVALID_CHARACTERS = frozenset('<>"|?*')
ENCODED_TRAVERSAL = ("%2e%2e", "..%2f", "..%5c")


class SecurityValidator:
    """Classifies candidate directories as safe or unsafe.

    ``validate`` never raises and never touches the filesystem beyond ``stat``
    and ``os.access`` calls: rejections are reported as violations so callers
    can decide whether to abort or try the next candidate.
    """

    def __init__(self, policy: SecurityPolicy | None = None) -> None:
        self._policy = policy or SecurityPolicy()
        self._history: deque[SecurityViolation] = deque(maxlen=self._policy.history_limit)

    @property
    def policy(self) -> SecurityPolicy:
        return self._policy

    @property
    def allowed_roots(self) -> tuple[Path, ...]:
        return tuple(root.expanduser().resolve(strict=False) for root in self._policy.allowed_roots)

    def update_policy(self, **changes: Any) -> SecurityPolicy:
        self._policy = self._policy.model_copy(update=changes)
        return self._policy

    def validate(self, path: str | os.PathLike[str] | None) -> SecurityValidationResult:
        original = "" if path is None else os.fspath(path)
        text = original.strip()

        violations = self._check_shape(text)
        if violations:
            return self._reject(original, text, violations)

        violations = self._detect_traversal(text)
        try:
            canonical = self._canonicalize(text)
        except (OSError, RuntimeError, ValueError) as exc:
            violations.append(
                SecurityViolation(ViolationType.INVALID_PATH, text, f"Path cannot be resolved: {exc}", Severity.HIGH)
            )
            return self._reject(original, text, violations)

        if not self._is_allow_listed(canonical):
            violations.append(
                SecurityViolation(
                    ViolationType.WHITELIST_VIOLATION,
                    str(canonical),
                    "Path is not inside an allowed directory",
                    Severity.HIGH,
                )
            )
        if violations:
            return self._reject(original, str(canonical), violations)

        violations = self._check_location(text, canonical)
        if violations:
            return self._reject(original, str(canonical), violations)

        return SecurityValidationResult(is_secure=True, original_path=original, sanitized_path=str(canonical))

    def is_path_allowed(self, path: str | os.PathLike[str]) -> bool:
        return self.validate(path).is_secure

    def recent_violations(self, limit: int = 10) -> list[SecurityViolation]:
        return list(self._history)[-limit:][::-1]

    # ------------------------------------------------------------------
    # Internal helpers

    def _check_shape(self, text: str) -> list[SecurityViolation]:
        if not text:
            return [SecurityViolation(ViolationType.INVALID_PATH, text, "Path must be a non-empty string")]

        violations: list[SecurityViolation] = []
        if len(text) > self._policy.max_path_length:
            violations.append(
                SecurityViolation(
                    ViolationType.INVALID_PATH,
                    text,
                    f"Path exceeds maximum length of {self._policy.max_path_length} characters",
                )
            )
        if "\x00" in text:
            violations.append(
                SecurityViolation(ViolationType.INVALID_CHARACTERS, text, "Path contains a NUL byte", Severity.CRITICAL)
            )
        found = sorted(INVALID_CHARACTERS.intersection(text))
        if found:
            violations.append(
                SecurityViolation(
                    ViolationType.INVALID_CHARACTERS,
                    text,
                    f"Path contains disallowed characters: {' '.join(found)}",
                    Severity.HIGH,
                )
            )
        return violations

    def _detect_traversal(self, text: str) -> list[SecurityViolation]:
        violations: list[SecurityViolation] = []
        parts = text.replace("\\", "/").split("/")
        if ".." in parts:
            violations.append(
                SecurityViolation(
                    ViolationType.PATH_TRAVERSAL, text, "Detected parent directory traversal", Severity.HIGH
                )
            )
        lowered = text.lower()
        for pattern in ENCODED_TRAVERSAL:
            if pattern in lowered:
                violations.append(
                    SecurityViolation(
                        ViolationType.PATH_TRAVERSAL,
                        text,
                        f"Detected encoded path traversal: {pattern}",
                        Severity.CRITICAL,
                    )
                )
                break
        return violations

    def _canonicalize(self, text: str) -> Path:
        candidate = Path(text).expanduser()
        if not candidate.is_absolute():
            candidate = self._policy.base_dir / candidate
        return candidate.resolve(strict=False)

    def _is_allow_listed(self, canonical: Path) -> bool:
        return any(canonical == root or canonical.is_relative_to(root) for root in self.allowed_roots)

    def _check_location(self, text: str, canonical: Path) -> list[SecurityViolation]:
        violations: list[SecurityViolation] = []
        for location in self._policy.forbidden_locations:
            if _is_under(text, location) or _is_under(canonical.as_posix(), location):
                violations.append(
                    SecurityViolation(
                        ViolationType.FORBIDDEN_LOCATION,
                        str(canonical),
                        f"Path points into protected system location '{location}'",
                        Severity.CRITICAL,
                    )
                )
                return violations

        ancestor = _nearest_existing_ancestor(canonical)
        if not ancestor.is_dir():
            violations.append(
                SecurityViolation(
                    ViolationType.INVALID_PATH, str(canonical), f"'{ancestor}' exists but is not a directory"
                )
            )
        elif not os.access(ancestor, os.X_OK):
            violations.append(
                SecurityViolation(
                    ViolationType.PERMISSION_DENIED, str(canonical), f"Directory '{ancestor}' is not accessible"
                )
            )
        elif self._policy.require_write_permission and not os.access(ancestor, os.W_OK | os.X_OK):
            violations.append(
                SecurityViolation(
                    ViolationType.PERMISSION_DENIED, str(canonical), f"No write permission on '{ancestor}'"
                )
            )
        return violations

    def _reject(
        self, original: str, sanitized: str, violations: list[SecurityViolation]
    ) -> SecurityValidationResult:
        for violation in violations:
            self._history.append(violation)
            logger.warning(
                "[security] %s %s: %s (path=%r)",
                violation.severity.value,
                violation.type.value,
                violation.description,
                violation.path,
            )
        return SecurityValidationResult(
            is_secure=False,
            original_path=original,
            sanitized_path=sanitized,
            violations=tuple(violations),
        )


def _is_under(path_text: str, location: str) -> bool:
    candidate = path_text.replace("\\", "/").rstrip("/").lower()
    prefix = location.replace("\\", "/").rstrip("/").lower()
    return candidate == prefix or candidate.startswith(prefix + "/")


def _nearest_existing_ancestor(path: Path) -> Path:
    current = path
    while not current.exists() and current != current.parent:
        current = current.parent
    return current
