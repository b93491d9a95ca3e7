"""Drive exit actions through the exchange with bounded retries."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

import config
from trading.collaborators import (
    SELL,
    STATUS_SELL_FAILED,
    STATUS_SOLD,
    ExchangeClient,
    Notifier,
    SwapFailed,
    TradeLog,
    log_quietly,
    notify_quietly,
)
from trading.exit_policy import FULL_EXIT_PERCENT
from trading.positions import Position, PositionStore
from trading.retry import RetryExhausted, RetryPolicy

logger = logging.getLogger(__name__)

SOLD = "SOLD"
PARTIAL = "PARTIAL"
RECONCILED = "RECONCILED"
NOOP = "NOOP"
FAILED = "FAILED"
MISSING = "MISSING"


@dataclass
class SellOutcome:
    status: str
    token_id: str
    reason: str
    sold_amount: float = 0.0
    received: float = 0.0
    pnl: float = 0.0
    tx_ref: str = ""
    error: str = ""

    @property
    def ok(self) -> bool:
        return self.status in (SOLD, PARTIAL, RECONCILED, NOOP)

    @property
    def position_closed(self) -> bool:
        return self.status in (SOLD, RECONCILED, MISSING)


class SellExecutor:
    def __init__(
        self,
        store: PositionStore,
        exchange: ExchangeClient,
        trade_log: TradeLog,
        notifier: Notifier | None = None,
        retry_policy: RetryPolicy | None = None,
        cleanup_delay_seconds: float | None = None,
    ) -> None:
        self.store = store
        self.exchange = exchange
        self.trade_log = trade_log
        self.notifier = notifier
        self.retry_policy = retry_policy or RetryPolicy.for_sells()
        if cleanup_delay_seconds is None:
            cleanup_delay_seconds = float(config.POST_SELL_CLEANUP_DELAY_SECONDS)
        self.cleanup_delay_seconds = max(0.0, float(cleanup_delay_seconds))
        self._cleanup_tasks: set[asyncio.Task[None]] = set()

    async def execute(
        self,
        token_id: str,
        sell_percent: float,
        reason: str,
        tier: int | None = None,
    ) -> SellOutcome:
        position = self.store.find(token_id)
        if position is None:
            return SellOutcome(MISSING, token_id, reason)
        pct = max(0.0, min(FULL_EXIT_PERCENT, float(sell_percent)))

        async def _attempt(attempt: int) -> SellOutcome:
            return await self._sell_once(position, pct, reason, tier, attempt)

        try:
            return await self.retry_policy.run(_attempt, label=f"sell:{position.label}")
        except RetryExhausted as exc:
            logger.error(
                "AUTO_SELL failed token=%s reason=%s pct=%.1f attempts=%s err=%s",
                position.label,
                reason,
                pct,
                exc.attempts,
                exc.last_error,
            )
            log_quietly("update_status", self.trade_log.update_status, position.open_tx_ref, STATUS_SELL_FAILED)
            await notify_quietly(
                self.notifier,
                f"Sell failed for {position.label} ({reason}) after {exc.attempts} attempts; will retry next pass.",
            )
            return SellOutcome(FAILED, position.token_id, reason, error=str(exc.last_error))

    async def _sell_once(
        self,
        position: Position,
        pct: float,
        reason: str,
        tier: int | None,
        attempt: int,
    ) -> SellOutcome:
        balance = float(await self.exchange.get_held_balance(position.token_id) or 0.0)
        if balance <= 0:
            self.store.remove(position.token_id)
            log_quietly("update_status", self.trade_log.update_status, position.open_tx_ref, STATUS_SOLD)
            logger.warning(
                "AUTO_SELL reconciled token=%s reason=%s detail=zero_balance",
                position.label,
                reason,
            )
            return SellOutcome(RECONCILED, position.token_id, reason)

        full_exit = pct >= FULL_EXIT_PERCENT
        amount = balance if full_exit else balance * pct / 100.0
        if amount <= 0:
            logger.info("AUTO_SELL noop token=%s reason=%s pct=%.1f", position.label, reason, pct)
            return SellOutcome(NOOP, position.token_id, reason)

        result = await self.exchange.swap(position.token_id, SELL, amount, int(config.SLIPPAGE_BPS))
        if not result.confirmed:
            raise SwapFailed(f"sell not confirmed token={position.token_id} tx={result.tx_ref}")

        received = float(result.filled_amount)
        fee = float(result.fee or 0.0)
        cost_basis = position.trade_amount * min(1.0, amount / position.initial_amount) if position.initial_amount > 0 else 0.0
        pnl = received - cost_basis - fee
        running = self.store.record_realized(pnl)
        sell_price = received / amount if amount > 0 else 0.0
        log_quietly(
            "record_trade",
            self.trade_log.record_trade,
            SELL,
            position.token_id,
            received,
            sell_price,
            fee,
            result.tx_ref,
            running,
            risk_tier=position.risk_tier.value,
            token_amount=amount,
            symbol=position.symbol,
        )

        if full_exit:
            self.store.remove(position.token_id)
            log_quietly("update_status", self.trade_log.update_status, position.open_tx_ref, STATUS_SOLD)
            self._schedule_cleanup(position.token_id)
            status = SOLD
        else:
            position.held_amount = max(0.0, balance - amount)
            if tier is not None:
                position.mark_tier_taken(tier)
            log_quietly(
                "update_position",
                self.trade_log.update_position,
                position.open_tx_ref,
                position.held_amount,
                set(position.profit_tiers_taken),
            )
            status = PARTIAL

        logger.info(
            "AUTO_SELL %s token=%s reason=%s pct=%.1f amount=%.6f recv=%.8f pnl=%.8f realized=%.8f attempt=%s tx=%s",
            status,
            position.label,
            reason,
            pct,
            amount,
            received,
            pnl,
            running,
            attempt,
            result.tx_ref,
        )
        await notify_quietly(
            self.notifier,
            f"SELL {pct:.0f}% {position.label} ({reason}) recv={received:.6f} pnl={pnl:+.6f} total={running:+.6f}",
        )
        return SellOutcome(status, position.token_id, reason, amount, received, pnl, result.tx_ref)

    def _schedule_cleanup(self, token_id: str) -> None:
        task = asyncio.create_task(self._deferred_cleanup(token_id))
        self._cleanup_tasks.add(task)
        task.add_done_callback(self._cleanup_tasks.discard)

    async def _deferred_cleanup(self, token_id: str) -> None:
        if self.cleanup_delay_seconds > 0:
            await asyncio.sleep(self.cleanup_delay_seconds)
        try:
            await self.exchange.close_token_account(token_id)
            logger.info("AUTO_SELL cleanup_done token=%s", token_id)
        except Exception as exc:
            logger.warning("AUTO_SELL cleanup_failed token=%s err=%s", token_id, exc)

    async def wait_cleanups(self) -> None:
        if self._cleanup_tasks:
            await asyncio.gather(*list(self._cleanup_tasks), return_exceptions=True)

    async def aclose(self) -> None:
        for task in list(self._cleanup_tasks):
            task.cancel()
        await self.wait_cleanups()
