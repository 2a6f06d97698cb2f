"""Cached, retried balance lookups against an injected ledger fetcher."""

from __future__ import annotations

import asyncio
import logging
import time
import tomllib
from collections import OrderedDict
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Awaitable, Callable, Generic, Protocol, TypeVar

from .addresses import AddressValidator
from .errors import ErrorKind, WalletQRError

logger = logging.getLogger(__name__)

T = TypeVar("T")

FEE_BUFFER = Decimal("0.01")
MAX_AMOUNT = Decimal("1e12")


@dataclass(frozen=True, slots=True)
class CacheEntry(Generic[T]):
    value: T
    timestamp: float
    state_version: int
    last_validated: float


@dataclass(frozen=True, slots=True)
class BalanceSnapshot:
    """What a fetcher returns: the balance and the ledger state it was read at."""

    amount: Decimal
    state_version: int


class BalanceFetcher(Protocol):
    async def fetch_balance(self, address: str) -> BalanceSnapshot: ...


class FileBalanceFetcher:
    """Reads balances from a TOML snapshot of the ledger.

    The file holds a top-level ``state_version`` and a ``[balances]`` table
    mapping account addresses to decimal strings. It is re-read on every fetch.
    """

    def __init__(self, path: Path) -> None:
        self.path = path

    async def fetch_balance(self, address: str) -> BalanceSnapshot:
        data = await asyncio.to_thread(self._load)
        balances = data.get("balances", {})
        if address not in balances:
            raise WalletQRError(
                f"Account {address} not found in {self.path}",
                ErrorKind.ENTITY_NOT_FOUND,
                {"address": address},
            )
        try:
            amount = Decimal(str(balances[address]))
        except InvalidOperation as exc:
            raise WalletQRError(
                f"Balance for {address} is not a number: {balances[address]!r}",
                ErrorKind.INVALID_AMOUNT,
                {"address": address},
            ) from exc
        return BalanceSnapshot(amount=amount, state_version=int(data.get("state_version", 0)))

    def _load(self) -> dict:
        try:
            with self.path.open("rb") as handle:
                return tomllib.load(handle)
        except FileNotFoundError as exc:
            raise WalletQRError(f"Balance file {self.path} does not exist", ErrorKind.FILE_ERROR) from exc
        except OSError as exc:
            raise WalletQRError(f"Could not read balance file {self.path}: {exc}", ErrorKind.NETWORK_ERROR) from exc
        except tomllib.TOMLDecodeError as exc:
            raise WalletQRError(f"Malformed balance file {self.path}: {exc}", ErrorKind.FILE_ERROR) from exc


class BalanceCache:
    """Per-address cache invalidated by age or by a newer ledger state version."""

    def __init__(
        self,
        *,
        ttl: float = 15.0,
        max_entries: int = 100,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl = ttl
        self.max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry[Decimal]] = OrderedDict()
        self._latest_state_version = 0

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def latest_state_version(self) -> int:
        return self._latest_state_version

    def get(self, address: str) -> Decimal | None:
        entry = self._entries.get(address)
        if entry is None:
            return None
        if self._is_stale(entry, self._clock()):
            del self._entries[address]
            return None
        return entry.value

    def put(self, address: str, value: Decimal, state_version: int) -> None:
        now = self._clock()
        self._latest_state_version = max(self._latest_state_version, state_version)
        self._entries.pop(address, None)
        self._entries[address] = CacheEntry(value=value, timestamp=now, state_version=state_version, last_validated=now)
        while len(self._entries) > self.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug("Evicted cached balance for %s", evicted)

    def observe_state_version(self, state_version: int) -> int:
        """Record a newer ledger state; entries read at older states are dropped."""

        if state_version <= self._latest_state_version:
            return 0
        self._latest_state_version = state_version
        stale = [key for key, entry in self._entries.items() if entry.state_version < state_version]
        for key in stale:
            del self._entries[key]
        return len(stale)

    def invalidate(self, address: str | None = None) -> None:
        if address is None:
            self._entries.clear()
        else:
            self._entries.pop(address, None)

    def sweep(self) -> int:
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if self._is_stale(entry, now)]
        for key in expired:
            del self._entries[key]
        return len(expired)

    async def run_sweeper(self, interval: float, stop: asyncio.Event) -> None:
        while not stop.is_set():
            try:
                await asyncio.wait_for(stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                removed = self.sweep()
                if removed:
                    logger.debug("Swept %d expired balance(s)", removed)

    def _is_stale(self, entry: CacheEntry[Decimal], now: float) -> bool:
        return now - entry.timestamp > self.ttl or entry.state_version < self._latest_state_version


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 8.0

    def delay_for(self, attempt: int) -> float:
        """Delay after the ``attempt``-th failure (1-based)."""

        return min(self.base_delay * 2 ** (attempt - 1), self.max_delay)


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy = RetryPolicy(),
    *,
    sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
) -> T:
    """Run ``operation`` until it succeeds, retrying only transient ``WalletQRError`` kinds."""

    attempt = 0
    while True:
        attempt += 1
        try:
            return await operation()
        except WalletQRError as exc:
            if not exc.retryable or attempt >= policy.max_attempts:
                raise
            delay = policy.delay_for(attempt)
            logger.warning("Attempt %d/%d failed (%s), retrying in %.1fs", attempt, policy.max_attempts, exc, delay)
            await sleep(delay)


@dataclass(frozen=True, slots=True)
class BalanceCheckResult:
    address: str
    required_amount: str
    has_enough_balance: bool
    current_balance: Decimal | None = None
    total_required: Decimal | None = None
    shortfall: Decimal | None = None
    error_kind: ErrorKind | None = None
    message: str | None = None

    @property
    def is_valid(self) -> bool:
        return self.error_kind is None and self.has_enough_balance


def parse_amount(raw: str) -> Decimal:
    """Parse a positive amount no larger than ``MAX_AMOUNT``."""

    try:
        amount = Decimal(str(raw).strip())
    except InvalidOperation as exc:
        raise WalletQRError(f"'{raw}' is not a number", ErrorKind.INVALID_AMOUNT) from exc
    if not amount.is_finite() or amount <= 0:
        raise WalletQRError("Amount must be a positive number", ErrorKind.INVALID_AMOUNT)
    if amount > MAX_AMOUNT:
        raise WalletQRError(f"Amount must not exceed {MAX_AMOUNT:f}", ErrorKind.INVALID_AMOUNT)
    return amount


class BalanceChecker:
    """Answers "does this account hold enough?" using cached, retried lookups."""

    def __init__(
        self,
        fetcher: BalanceFetcher,
        *,
        validator: AddressValidator | None = None,
        cache: BalanceCache | None = None,
        retry: RetryPolicy = RetryPolicy(),
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
        fee_buffer: Decimal = FEE_BUFFER,
    ) -> None:
        self.fetcher = fetcher
        self.validator = validator or AddressValidator()
        self.cache = cache or BalanceCache()
        self.retry = retry
        self.fee_buffer = fee_buffer
        self._sleep = sleep

    async def get_balance(self, address: str, *, use_cache: bool = True) -> Decimal:
        validation = self.validator.validate_account(address)
        if not validation.is_valid:
            raise WalletQRError(validation.message or "Invalid address", ErrorKind.INVALID_ADDRESS)

        if use_cache:
            cached = self.cache.get(address)
            if cached is not None:
                return cached

        snapshot = await retry_async(lambda: self.fetcher.fetch_balance(address), self.retry, sleep=self._sleep)
        self.cache.observe_state_version(snapshot.state_version)
        self.cache.put(address, snapshot.amount, snapshot.state_version)
        return snapshot.amount

    async def check_balance(
        self,
        address: str,
        required: str,
        *,
        include_fee_buffer: bool = True,
        use_cache: bool = True,
    ) -> BalanceCheckResult:
        validation = self.validator.validate_account(address)
        if not validation.is_valid:
            return BalanceCheckResult(
                address=address,
                required_amount=str(required),
                has_enough_balance=False,
                error_kind=ErrorKind.INVALID_ADDRESS,
                message=f"Invalid address: {validation.message}",
            )

        try:
            amount = parse_amount(required)
        except WalletQRError as exc:
            return BalanceCheckResult(
                address=address,
                required_amount=str(required),
                has_enough_balance=False,
                error_kind=exc.kind,
                message=exc.message,
            )

        try:
            balance = await self.get_balance(address, use_cache=use_cache)
        except WalletQRError as exc:
            return BalanceCheckResult(
                address=address,
                required_amount=str(required),
                has_enough_balance=False,
                error_kind=exc.kind,
                message=exc.message,
            )

        total = amount + self.fee_buffer if include_fee_buffer else amount
        if balance >= total:
            return BalanceCheckResult(
                address=address,
                required_amount=str(required),
                has_enough_balance=True,
                current_balance=balance,
                total_required=total,
            )

        shortfall = total - balance
        message = f"Insufficient balance: have {balance}, need {total}"
        if include_fee_buffer:
            message += f" (including {self.fee_buffer} fee buffer)"
        return BalanceCheckResult(
            address=address,
            required_amount=str(required),
            has_enough_balance=False,
            current_balance=balance,
            total_required=total,
            shortfall=shortfall,
            error_kind=ErrorKind.INSUFFICIENT_BALANCE,
            message=f"{message}; short by {shortfall}",
        )
