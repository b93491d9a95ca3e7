"""Periodic walk over open positions: price, evaluate, exit, global stop."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone

import config
from trading.collaborators import ExchangeClient, Notifier, notify_quietly
from trading.exit_policy import ExitPolicy
from trading.kill_switch import KillSwitch
from trading.positions import GlobalStopLoss, Position, PositionStore, TokenLocks
from trading.sell_executor import SellExecutor

logger = logging.getLogger(__name__)

GLOBAL_STOP_REASON = "GLOBAL_STOP_LOSS"


class PortfolioMonitor:
    def __init__(
        self,
        store: PositionStore,
        exchange: ExchangeClient,
        policy: ExitPolicy,
        sell_executor: SellExecutor,
        kill_switch: KillSwitch,
        locks: TokenLocks | None = None,
        notifier: Notifier | None = None,
        interval_seconds: float | None = None,
    ) -> None:
        self.store = store
        self.exchange = exchange
        self.policy = policy
        self.sell_executor = sell_executor
        self.kill_switch = kill_switch
        self.locks = locks or TokenLocks()
        self.notifier = notifier
        if interval_seconds is None:
            interval_seconds = float(config.PORTFOLIO_CHECK_INTERVAL_SECONDS)
        self.interval_seconds = max(0.0, float(interval_seconds))
        self.passes = 0

    async def _fetch_price(self, position: Position) -> float | None:
        try:
            price = await self.exchange.get_current_price(position.token_id)
        except Exception as exc:
            # Unreachable quote counts as no price; the exit policy decides what that means.
            logger.warning("PORTFOLIO_CHECK price_failed token=%s err=%s", position.label, exc)
            return None
        if price is None or price <= 0:
            return None
        return float(price)

    async def _process_position(self, position: Position, price: float | None, now: datetime) -> int:
        executed = 0
        async with self.locks.get(position.token_id):
            if self.store.find(position.token_id) is not position:
                return 0
            actions = self.policy.evaluate(position, price, now)
            for action in actions:
                if self.kill_switch.tripped:
                    break
                outcome = await self.sell_executor.execute(
                    position.token_id,
                    action.sell_percent,
                    action.reason,
                    action.tier,
                )
                executed += 1
                if not outcome.ok or outcome.position_closed:
                    break
        return executed

    async def run_pass(self) -> int:
        """Evaluate every open position once. Returns the number of sell attempts."""
        if self.kill_switch.tripped:
            return 0
        positions = self.store.all()
        if not positions:
            return 0
        self.passes += 1
        now = datetime.now(timezone.utc)
        prices = await asyncio.gather(*[self._fetch_price(p) for p in positions])

        executed = 0
        failed = 0
        for position, price in zip(positions, prices):
            if self.kill_switch.tripped:
                break
            try:
                executed += await self._process_position(position, price, now)
            except Exception:
                failed += 1
                logger.exception("PORTFOLIO_CHECK position_error token=%s", position.label)

        logger.info(
            "PORTFOLIO_CHECK pass=%s open=%s actions=%s errors=%s realized=%.8f",
            self.passes,
            self.store.size(),
            executed,
            failed,
            self.store.realized_pnl,
        )
        return executed

    async def check_global_stop(self) -> None:
        floor = float(config.GLOBAL_STOP_LOSS)
        realized = self.store.realized_pnl
        if realized > floor:
            return
        detail = f"realized={realized:.8f} floor={floor:.8f}"
        self.kill_switch.trip(GLOBAL_STOP_REASON, detail)
        await notify_quietly(self.notifier, f"GLOBAL STOP-LOSS TRIGGERED ({detail}). Trading halted.")
        raise GlobalStopLoss(detail)

    async def run_forever(self) -> None:
        """Run passes until the global stop fires; that error propagates."""
        if self.kill_switch.tripped:
            raise GlobalStopLoss(f"kill switch already tripped reason={self.kill_switch.reason}")
        while True:
            try:
                await self.run_pass()
            except Exception:
                logger.exception("Portfolio monitor pass error")
            await self.check_global_stop()
            await asyncio.sleep(self.interval_seconds)
