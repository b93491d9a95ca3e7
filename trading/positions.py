"""In-memory portfolio: open positions keyed by token plus realized PnL."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class RiskTier(str, Enum):
    GOOD = "GOOD"
    WARNING = "WARNING"
    DANGER = "DANGER"

    @classmethod
    def parse(cls, value: Any) -> "RiskTier":
        """Unknown or missing tiers fall back to the most conservative one."""
        if isinstance(value, RiskTier):
            return value
        key = str(value or "").strip().upper()
        try:
            return cls(key)
        except ValueError:
            return cls.DANGER


class TradingError(Exception):
    """Base class for portfolio and execution errors."""


class PositionNotFound(TradingError, KeyError):
    pass


class AdmissionRejected(TradingError):
    """A buy candidate was skipped; never retried."""

    code = "REJECTED"


class AlreadyHeld(AdmissionRejected):
    code = "ALREADY_HELD"


class CapacityExceeded(AdmissionRejected):
    code = "CAPACITY_EXCEEDED"


class InsufficientBalance(AdmissionRejected):
    code = "INSUFFICIENT_BALANCE"


class TradingHalted(AdmissionRejected):
    code = "TRADING_HALTED"


class GlobalStopLoss(TradingError):
    """Cumulative realized PnL breached the portfolio floor. Fatal."""


def normalize_token_id(value: str | None) -> str:
    """Normalize token keys for internal maps/dedup."""
    return str(value or "").strip().lower()


@dataclass(frozen=True)
class VettingVerdict:
    tier: RiskTier
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class Position:
    token_id: str
    purchase_price: float
    trade_amount: float
    held_amount: float
    risk_tier: RiskTier
    opened_at: datetime
    open_tx_ref: str
    initial_amount: float = 0.0
    high_water_price: float = 0.0
    profit_tiers_taken: set[int] = field(default_factory=set)
    symbol: str = ""

    def __post_init__(self) -> None:
        self.token_id = normalize_token_id(self.token_id)
        self.risk_tier = RiskTier.parse(self.risk_tier)
        if self.initial_amount <= 0:
            self.initial_amount = float(self.held_amount)
        self.high_water_price = max(float(self.high_water_price), float(self.purchase_price))
        if self.opened_at.tzinfo is None:
            self.opened_at = self.opened_at.replace(tzinfo=timezone.utc)

    @property
    def label(self) -> str:
        return self.symbol or self.token_id

    def pnl_percent(self, price: float) -> float:
        if self.purchase_price <= 0:
            return 0.0
        return (price - self.purchase_price) / self.purchase_price * 100.0

    def drop_from_peak_percent(self, price: float) -> float:
        if self.high_water_price <= 0:
            return 0.0
        return (self.high_water_price - price) / self.high_water_price * 100.0

    def minutes_held(self, now: datetime | None = None) -> float:
        now = now or datetime.now(timezone.utc)
        return (now - self.opened_at).total_seconds() / 60.0

    def observe_price(self, price: float) -> bool:
        """Raise the high-water mark; never lowers it."""
        if price > self.high_water_price:
            self.high_water_price = float(price)
            return True
        return False

    def mark_tier_taken(self, tier: int) -> None:
        if tier in self.profit_tiers_taken:
            logger.warning("PORTFOLIO tier_already_taken token=%s tier=%s", self.label, tier)
            return
        self.profit_tiers_taken.add(int(tier))


class PositionStore:
    """Authoritative table of open positions.

    No locking here: all access happens on the owning event loop, and
    same-token I/O is serialized by `TokenLocks`.
    """

    def __init__(self) -> None:
        self._positions: dict[str, Position] = {}
        self.realized_pnl = 0.0

    def add(self, position: Position) -> None:
        if position.token_id in self._positions:
            raise AlreadyHeld(f"position already held token={position.token_id}")
        self._positions[position.token_id] = position

    def get(self, token_id: str) -> Position:
        key = normalize_token_id(token_id)
        position = self._positions.get(key)
        if position is None:
            raise PositionNotFound(key)
        return position

    def find(self, token_id: str) -> Position | None:
        return self._positions.get(normalize_token_id(token_id))

    def contains(self, token_id: str) -> bool:
        return normalize_token_id(token_id) in self._positions

    def remove(self, token_id: str) -> Position | None:
        return self._positions.pop(normalize_token_id(token_id), None)

    def all(self) -> list[Position]:
        return list(self._positions.values())

    def size(self) -> int:
        return len(self._positions)

    def record_realized(self, delta: float) -> float:
        self.realized_pnl += float(delta)
        return self.realized_pnl


class TokenLocks:
    """One asyncio.Lock per token so buys/sells never race on the same position."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    def get(self, token_id: str) -> asyncio.Lock:
        key = normalize_token_id(token_id)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def discard(self, token_id: str) -> None:
        key = normalize_token_id(token_id)
        lock = self._locks.get(key)
        if lock is not None and not lock.locked():
            self._locks.pop(key, None)
