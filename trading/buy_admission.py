"""Pre-trade checks and position opening."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

import config
from trading.collaborators import (
    BUY,
    ExchangeClient,
    Notifier,
    SwapFailed,
    TradeLog,
    log_quietly,
    notify_quietly,
)
from trading.kill_switch import KillSwitch
from trading.positions import (
    AlreadyHeld,
    CapacityExceeded,
    InsufficientBalance,
    Position,
    PositionStore,
    RiskTier,
    TokenLocks,
    TradingHalted,
    normalize_token_id,
)

logger = logging.getLogger(__name__)


def trade_size_for(tier: RiskTier | str) -> float:
    amounts = config.TRADE_AMOUNTS
    parsed = RiskTier.parse(tier)
    size = amounts.get(parsed.value)
    if size is None:
        size = amounts.get(RiskTier.DANGER.value, 0.0)
    return float(size)


class BuyAdmission:
    def __init__(
        self,
        store: PositionStore,
        exchange: ExchangeClient,
        trade_log: TradeLog,
        kill_switch: KillSwitch,
        locks: TokenLocks | None = None,
        notifier: Notifier | None = None,
    ) -> None:
        self.store = store
        self.exchange = exchange
        self.trade_log = trade_log
        self.kill_switch = kill_switch
        self.locks = locks or TokenLocks()
        self.notifier = notifier
        self._in_flight: set[str] = set()

    def _check_capacity(self, token_id: str) -> None:
        if self.kill_switch.tripped:
            raise TradingHalted(f"trading halted reason={self.kill_switch.reason}")
        max_size = int(config.MAX_PORTFOLIO_SIZE)
        if self.store.size() + len(self._in_flight) >= max_size:
            raise CapacityExceeded(f"portfolio full size={self.store.size()} in_flight={len(self._in_flight)} max={max_size}")
        if self.store.contains(token_id) or token_id in self._in_flight:
            raise AlreadyHeld(f"already held token={token_id}")

    async def try_open(
        self,
        token_id: str,
        risk_tier: RiskTier | str,
        sizing_hint: float | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Position | None:
        """Open a position or raise an `AdmissionRejected` subclass.

        Returns None when the exchange fails the buy; nothing is left behind.
        """
        token_id = normalize_token_id(token_id)
        tier = RiskTier.parse(risk_tier)
        metadata = metadata or {}
        symbol = str(metadata.get("symbol") or "")

        self._check_capacity(token_id)
        trade_size = trade_size_for(tier)
        if sizing_hint is not None and float(sizing_hint) > 0:
            trade_size = min(trade_size, float(sizing_hint))

        self._in_flight.add(token_id)
        try:
            async with self.locks.get(token_id):
                quote_balance = float(await self.exchange.get_quote_balance() or 0.0)
                required = trade_size + float(config.MIN_QUOTE_BALANCE)
                if quote_balance < required:
                    raise InsufficientBalance(f"balance={quote_balance:.8f} required={required:.8f}")
                if self.kill_switch.tripped:
                    raise TradingHalted(f"trading halted reason={self.kill_switch.reason}")

                logger.info("AUTO_BUY attempt token=%s tier=%s size=%.8f", symbol or token_id, tier.value, trade_size)
                try:
                    result = await self.exchange.swap(token_id, BUY, trade_size, int(config.SLIPPAGE_BPS))
                    if not result.confirmed or result.filled_amount <= 0:
                        raise SwapFailed(f"buy not confirmed tx={result.tx_ref}")
                except Exception as exc:
                    logger.error("AUTO_BUY failed token=%s tier=%s err=%s", symbol or token_id, tier.value, exc)
                    return None

                # Fill is confirmed: an unreadable balance falls back to the filled amount.
                try:
                    held = float(await self.exchange.get_held_balance(token_id) or 0.0)
                except Exception as exc:
                    logger.warning("AUTO_BUY balance_read_failed token=%s err=%s fallback=filled", symbol or token_id, exc)
                    held = 0.0
                if held <= 0:
                    held = float(result.filled_amount)
                position = Position(
                    token_id=token_id,
                    purchase_price=trade_size / float(result.filled_amount),
                    trade_amount=trade_size,
                    held_amount=held,
                    risk_tier=tier,
                    opened_at=datetime.now(timezone.utc),
                    open_tx_ref=result.tx_ref,
                    symbol=symbol,
                )
                self.store.add(position)
        finally:
            self._in_flight.discard(token_id)

        log_quietly(
            "record_trade",
            self.trade_log.record_trade,
            BUY,
            token_id,
            trade_size,
            position.purchase_price,
            float(result.fee or 0.0),
            result.tx_ref,
            self.store.realized_pnl,
            risk_tier=tier.value,
            token_amount=held,
            symbol=symbol,
        )
        log_quietly("add_purchased_token", self.trade_log.add_purchased_token, token_id)
        logger.info(
            "AUTO_BUY opened token=%s tier=%s size=%.8f price=%.12f held=%.6f tx=%s",
            position.label,
            tier.value,
            trade_size,
            position.purchase_price,
            held,
            result.tx_ref,
        )
        await notify_quietly(
            self.notifier,
            f"BUY {position.label} tier={tier.value} size={trade_size:.6f} price={position.purchase_price:.10f}",
        )
        return position
