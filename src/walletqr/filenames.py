"""Content-addressed artifact filenames."""

from __future__ import annotations

import re
import time
from collections import defaultdict
from dataclasses import dataclass
from hashlib import sha256
from pathlib import Path
from typing import Callable, Iterable

from .config import FilenameConfig
from .errors import ErrorKind, WalletQRError
from .models import FilenameResult, ParsedFilename

MAX_PAYLOAD_LENGTH = 2048


@dataclass(frozen=True, slots=True)
class HashDistribution:
    total_hashes: int
    unique_hashes: int
    collision_rate: float
    collisions: dict[str, list[str]]


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


class FilenameGenerator:
    """Derives ``<prefix>-<hash>-<timestamp>.<ext>`` names from payloads.

    The hash covers the trimmed payload only, so identical payloads always share
    a hash regardless of when they were generated. With ``include_timestamp``
    off the name is ``<prefix>-<hash>.<ext>`` and parses with a timestamp of 0.
    """

    def __init__(self, config: FilenameConfig | None = None, *, clock: Callable[[], int] = _now_ms) -> None:
        self.config = config or FilenameConfig()
        self._clock = clock
        self._pattern = re.compile(
            rf"^({re.escape(self.config.prefix)})-([0-9a-f]{{{self.config.hash_length}}})(?:-(\d+))?\.(\w+)$"
        )

    def generate_unique_filename(self, payload: str, output_dir: Path | None = None) -> FilenameResult:
        errors = self.validate_input(payload)
        if errors:
            raise WalletQRError(
                f"Invalid payload for filename generation: {', '.join(errors)}",
                ErrorKind.GENERATION_ERROR,
                {"errors": errors},
            )

        digest = self.compute_hash(payload)
        timestamp = self._clock()
        filename = self.build_filename(digest, timestamp)
        full_path = output_dir / filename if output_dir is not None else Path(filename)
        return FilenameResult(filename=filename, hash=digest, timestamp=timestamp, full_path=full_path)

    def compute_hash(self, payload: str) -> str:
        return sha256(payload.strip().encode("utf-8")).hexdigest()[: self.config.hash_length]

    def build_filename(self, digest: str, timestamp: int) -> str:
        parts = [self.config.prefix, digest]
        if self.config.include_timestamp:
            parts.append(str(timestamp))
        return f"{'-'.join(parts)}.{self.config.extension}"

    def hash_glob(self, digest: str) -> str:
        """Glob matching every artifact generated for ``digest``."""

        return f"{self.config.prefix}-{digest}*.{self.config.extension}"

    def parse_filename(self, filename: str) -> ParsedFilename | None:
        match = self._pattern.match(filename)
        if match is None or match.group(4) != self.config.extension:
            return None
        prefix, digest, timestamp, extension = match.groups()
        return ParsedFilename(prefix=prefix, hash=digest, timestamp=int(timestamp or 0), extension=extension)

    def would_generate_same_hash(self, payload: str, existing_filename: str) -> bool:
        parsed = self.parse_filename(existing_filename)
        if parsed is None or not payload.strip():
            return False
        return parsed.hash == self.compute_hash(payload)

    def generate_alternative_filenames(
        self, payload: str, base_timestamp: int | None = None, count: int = 3
    ) -> list[FilenameResult]:
        digest = self.compute_hash(payload)
        start = self._clock() if base_timestamp is None else base_timestamp
        results = []
        for offset in range(count):
            filename = self.build_filename(digest, start + offset)
            results.append(FilenameResult(filename=filename, hash=digest, timestamp=start + offset, full_path=Path(filename)))
        return results

    def analyze_hash_distribution(self, payloads: Iterable[str]) -> HashDistribution:
        buckets: dict[str, list[str]] = defaultdict(list)
        total = 0
        for payload in payloads:
            total += 1
            if self.validate_input(payload):
                continue
            buckets[self.compute_hash(payload)].append(payload)

        unique = len(buckets)
        return HashDistribution(
            total_hashes=total,
            unique_hashes=unique,
            collision_rate=(total - unique) / total if total else 0.0,
            collisions={digest: items for digest, items in buckets.items() if len(items) > 1},
        )

    @staticmethod
    def validate_input(payload: object) -> list[str]:
        if not isinstance(payload, str):
            return ["payload must be a string"]
        errors = []
        if not payload.strip():
            errors.append("payload must not be empty")
        if len(payload) > MAX_PAYLOAD_LENGTH:
            errors.append(f"payload is too long (maximum {MAX_PAYLOAD_LENGTH} characters)")
        return errors
