"""Contracts for the services the trading core talks to."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

from trading.positions import TradingError

logger = logging.getLogger(__name__)

BUY = "BUY"
SELL = "SELL"

STATUS_OPEN = "OPEN"
STATUS_SOLD = "SOLD"
STATUS_SELL_FAILED = "SELL_FAILED"


class SwapFailed(TradingError):
    """Swap was rejected, reverted or never confirmed. Usually transient."""


@dataclass
class SwapResult:
    confirmed: bool
    filled_amount: float
    fee: float = 0.0
    tx_ref: str = ""


@dataclass
class OpenTradeRecord:
    token_id: str
    purchase_price: float
    trade_amount: float
    token_amount: float
    risk_tier: str
    opened_at: datetime
    tx_ref: str
    symbol: str = ""
    held_amount: float | None = None
    profit_tiers_taken: frozenset[int] = frozenset()


class ExchangeClient(Protocol):
    """Amounts: quote currency for BUY input / SELL output, token units otherwise."""

    async def get_current_price(self, token_id: str) -> float | None: ...

    async def get_held_balance(self, token_id: str) -> float: ...

    async def get_quote_balance(self) -> float: ...

    async def swap(self, token_id: str, direction: str, amount: float, slippage_bps: int) -> SwapResult: ...

    async def close_token_account(self, token_id: str) -> None: ...


class TradeLog(Protocol):
    def record_trade(
        self,
        side: str,
        token_id: str,
        amount: float,
        price: float,
        fee: float,
        tx_ref: str,
        running_pnl: float,
        *,
        risk_tier: str = "",
        token_amount: float = 0.0,
        symbol: str = "",
    ) -> None: ...

    def update_status(self, tx_ref: str, status: str) -> None: ...

    def update_position(self, tx_ref: str, held_amount: float, profit_tiers_taken: set[int]) -> None: ...

    def load_open_trades(self) -> list[OpenTradeRecord]: ...

    def add_purchased_token(self, token_id: str) -> None: ...

    def has_been_purchased(self, token_id: str) -> bool: ...

    def realized_pnl(self) -> float: ...


class Notifier(Protocol):
    async def notify(self, message: str) -> None: ...


class NullNotifier:
    async def notify(self, message: str) -> None:
        logger.debug("NOTIFY skipped message=%s", message)


async def notify_quietly(notifier: Notifier | None, message: str) -> None:
    if notifier is None:
        return
    try:
        await notifier.notify(message)
    except Exception as exc:
        logger.warning("NOTIFY failed err=%s", exc)


def log_quietly(action: str, fn: Any, *args: Any, **kwargs: Any) -> Any:
    """Call a trade-log method; a storage hiccup must not derail trading."""
    try:
        return fn(*args, **kwargs)
    except Exception as exc:
        logger.error("TRADE_LOG %s_failed args=%s err=%s", action, args, exc)
        return None
