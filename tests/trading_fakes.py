from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import config
from trading.collaborators import BUY, SELL, OpenTradeRecord, SwapFailed, SwapResult
from trading.positions import Position, RiskTier, normalize_token_id
from trading.retry import RetryPolicy, fixed_delay

TOKEN_A = "0x1111111111111111111111111111111111111111"
TOKEN_B = "0x2222222222222222222222222222222222222222"
TOKEN_C = "0x3333333333333333333333333333333333333333"


class ConfigPatchMixin:
    def setUp(self) -> None:
        super().setUp()
        self._cfg_old: dict[str, object] = {}

    def patch_cfg(self, **kwargs: object) -> None:
        for key, value in kwargs.items():
            if key not in self._cfg_old:
                self._cfg_old[key] = getattr(config, key, None)
            setattr(config, key, value)

    def tearDown(self) -> None:
        for key, value in self._cfg_old.items():
            setattr(config, key, value)
        super().tearDown()


def mk_position(
    token_id: str = TOKEN_A,
    *,
    purchase_price: float = 1.0,
    trade_amount: float = 1.0,
    held_amount: float = 100.0,
    risk_tier: RiskTier = RiskTier.GOOD,
    minutes_ago: float = 0.0,
    tx_ref: str = "buy-tx",
) -> Position:
    return Position(
        token_id=token_id,
        purchase_price=purchase_price,
        trade_amount=trade_amount,
        held_amount=held_amount,
        risk_tier=risk_tier,
        opened_at=datetime.now(timezone.utc) - timedelta(minutes=minutes_ago),
        open_tx_ref=tx_ref,
    )


class FakeExchange:
    """Scripted exchange. `swap_script` entries are consumed per swap call:
    an Exception instance is raised, a SwapResult is returned, None means a
    default confirmed fill."""

    def __init__(self) -> None:
        self.prices: dict[str, float | None] = {}
        self.balances: dict[str, float] = {}
        self.quote_balance = 1.0
        self.swap_script: list[Any] = []
        self.swaps: list[tuple[str, str, float]] = []
        self.cleaned: list[str] = []
        self.price_errors: set[str] = set()
        self.cleanup_error: Exception | None = None
        self.sell_price = 1.0

    async def get_current_price(self, token_id: str) -> float | None:
        key = normalize_token_id(token_id)
        if key in self.price_errors:
            raise RuntimeError("price source down")
        return self.prices.get(key)

    async def get_held_balance(self, token_id: str) -> float:
        return self.balances.get(normalize_token_id(token_id), 0.0)

    async def get_quote_balance(self) -> float:
        return self.quote_balance

    async def swap(self, token_id: str, direction: str, amount: float, slippage_bps: int) -> SwapResult:
        key = normalize_token_id(token_id)
        self.swaps.append((key, direction, amount))
        step = self.swap_script.pop(0) if self.swap_script else None
        if isinstance(step, Exception):
            raise step
        if isinstance(step, SwapResult):
            result = step
        elif direction == BUY:
            result = SwapResult(confirmed=True, filled_amount=amount * 100.0, fee=0.0, tx_ref=f"buy-{len(self.swaps)}")
        else:
            result = SwapResult(confirmed=True, filled_amount=amount * self.sell_price, fee=0.0, tx_ref=f"sell-{len(self.swaps)}")
        if result.confirmed:
            if direction == BUY:
                self.balances[key] = self.balances.get(key, 0.0) + result.filled_amount
            elif direction == SELL:
                self.balances[key] = max(0.0, self.balances.get(key, 0.0) - amount)
        return result

    async def close_token_account(self, token_id: str) -> None:
        if self.cleanup_error is not None:
            raise self.cleanup_error
        self.cleaned.append(normalize_token_id(token_id))

    def sells(self) -> list[tuple[str, str, float]]:
        return [s for s in self.swaps if s[1] == SELL]


class FakeTradeLog:
    def __init__(self) -> None:
        self.trades: list[dict[str, Any]] = []
        self.statuses: list[tuple[str, str]] = []
        self.position_updates: list[tuple[str, float, set[int]]] = []
        self.purchased: set[str] = set()
        self.open_records: list[OpenTradeRecord] = []
        self.fail_writes = False

    def record_trade(self, side, token_id, amount, price, fee, tx_ref, running_pnl, **kwargs) -> None:
        if self.fail_writes:
            raise RuntimeError("database is locked")
        self.trades.append(
            {
                "side": side,
                "token_id": token_id,
                "amount": amount,
                "price": price,
                "fee": fee,
                "tx_ref": tx_ref,
                "running_pnl": running_pnl,
                **kwargs,
            }
        )

    def update_status(self, tx_ref: str, status: str) -> None:
        if self.fail_writes:
            raise RuntimeError("database is locked")
        self.statuses.append((tx_ref, status))

    def update_position(self, tx_ref: str, held_amount: float, profit_tiers_taken: set[int]) -> None:
        if self.fail_writes:
            raise RuntimeError("database is locked")
        self.position_updates.append((tx_ref, held_amount, set(profit_tiers_taken)))

    def realized_pnl(self) -> float:
        return 0.0

    def load_open_trades(self) -> list[OpenTradeRecord]:
        return list(self.open_records)

    def add_purchased_token(self, token_id: str) -> None:
        self.purchased.add(normalize_token_id(token_id))

    def has_been_purchased(self, token_id: str) -> bool:
        return normalize_token_id(token_id) in self.purchased


class FakeNotifier:
    def __init__(self, fail: bool = False) -> None:
        self.messages: list[str] = []
        self.fail = fail

    async def notify(self, message: str) -> None:
        if self.fail:
            raise RuntimeError("telegram down")
        self.messages.append(message)


class SleepRecorder:
    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def instant_retry(attempts: int = 3, delay: float = 5.0, sleep: SleepRecorder | None = None) -> RetryPolicy:
    return RetryPolicy(max_attempts=attempts, backoff=fixed_delay(delay), sleep=sleep or SleepRecorder())


def swap_failed(msg: str = "blockhash expired") -> SwapFailed:
    return SwapFailed(msg)


def mk_record(
    token_id: str,
    price: float = 0.01,
    tier: str = "GOOD",
    tx_ref: str = "tx",
) -> OpenTradeRecord:
    return OpenTradeRecord(
        token_id=token_id,
        purchase_price=price,
        trade_amount=0.004,
        token_amount=0.4,
        risk_tier=tier,
        opened_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
        tx_ref=tx_ref,
    )
