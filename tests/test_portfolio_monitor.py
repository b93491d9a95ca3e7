from __future__ import annotations

import unittest

from trading.collaborators import SELL
from trading.exit_policy import ExitPolicy, ExitThresholds, ProfitTier
from trading.kill_switch import KillSwitch
from trading.portfolio_monitor import GLOBAL_STOP_REASON, PortfolioMonitor
from trading.positions import GlobalStopLoss, PositionStore, RiskTier
from trading.sell_executor import SellExecutor
from trading_fakes import (
    TOKEN_A,
    TOKEN_B,
    ConfigPatchMixin,
    FakeExchange,
    FakeNotifier,
    FakeTradeLog,
    instant_retry,
    mk_position,
)


def default_thresholds() -> ExitThresholds:
    return ExitThresholds(
        trailing_stop_percent=20.0,
        stale_danger_minutes=30.0,
        deep_loss_percent=-15.0,
        take_profit_warning_percent=35.0,
        take_profit_danger_percent=20.0,
        good_tiers=(
            ProfitTier(1, 10.0, 30.0),
            ProfitTier(2, 25.0, 30.0),
            ProfitTier(3, 50.0, 100.0),
        ),
    )


class ExplodingPolicy(ExitPolicy):
    def __init__(self, bad_token: str) -> None:
        super().__init__(default_thresholds())
        self.bad_token = bad_token

    def evaluate(self, position, current_price, now=None):
        if position.token_id == self.bad_token:
            raise RuntimeError("boom")
        return super().evaluate(position, current_price, now)


class PortfolioMonitorTests(ConfigPatchMixin, unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.patch_cfg(GLOBAL_STOP_LOSS=-0.05, SLIPPAGE_BPS=300)
        self.store = PositionStore()
        self.exchange = FakeExchange()
        self.trade_log = FakeTradeLog()
        self.notifier = FakeNotifier()
        self.kill_switch = KillSwitch(path="")
        self.executor = SellExecutor(
            self.store,
            self.exchange,
            self.trade_log,
            self.notifier,
            retry_policy=instant_retry(),
            cleanup_delay_seconds=0,
        )
        self.monitor = self._monitor(ExitPolicy(default_thresholds()))

    async def asyncTearDown(self) -> None:
        await self.executor.aclose()

    def _monitor(self, policy: ExitPolicy) -> PortfolioMonitor:
        return PortfolioMonitor(
            self.store,
            self.exchange,
            policy,
            self.executor,
            self.kill_switch,
            notifier=self.notifier,
            interval_seconds=0,
        )

    def _open(self, token_id: str, price: float, **kwargs):
        pos = mk_position(token_id, **kwargs)
        self.store.add(pos)
        self.exchange.balances[token_id] = pos.held_amount
        self.exchange.prices[token_id] = price
        return pos

    async def test_empty_portfolio_is_noop(self) -> None:
        self.assertEqual(await self.monitor.run_pass(), 0)
        self.assertEqual(self.monitor.passes, 0)

    async def test_price_failure_exits_position(self) -> None:
        self._open(TOKEN_A, 1.0)
        self.exchange.price_errors.add(TOKEN_A)
        self.assertEqual(await self.monitor.run_pass(), 1)
        self.assertFalse(self.store.contains(TOKEN_A))
        self.assertEqual(self.exchange.sells(), [(TOKEN_A, SELL, 100.0)])

    async def test_missing_price_exits_position(self) -> None:
        self._open(TOKEN_A, 1.0)
        self.exchange.prices[TOKEN_A] = None
        await self.monitor.run_pass()
        self.assertFalse(self.store.contains(TOKEN_A))

    async def test_holding_position_without_trigger(self) -> None:
        pos = self._open(TOKEN_A, 1.05)
        self.assertEqual(await self.monitor.run_pass(), 0)
        self.assertIs(self.store.get(TOKEN_A), pos)
        self.assertEqual(pos.high_water_price, 1.05)

    async def test_partial_take_profit_fires_once(self) -> None:
        pos = self._open(TOKEN_A, 1.12, risk_tier=RiskTier.GOOD)
        self.assertEqual(await self.monitor.run_pass(), 1)
        self.assertEqual(await self.monitor.run_pass(), 0)
        self.assertEqual(pos.profit_tiers_taken, {1})
        self.assertEqual(len(self.exchange.sells()), 1)
        self.assertAlmostEqual(pos.held_amount, 70.0)

    async def test_error_on_one_position_does_not_block_others(self) -> None:
        self._open(TOKEN_A, 1.0)
        self._open(TOKEN_B, 0.5)
        monitor = self._monitor(ExplodingPolicy(TOKEN_A))
        self.assertEqual(await monitor.run_pass(), 1)
        self.assertTrue(self.store.contains(TOKEN_A))
        self.assertFalse(self.store.contains(TOKEN_B))

    async def test_halted_monitor_does_nothing(self) -> None:
        self._open(TOKEN_A, 0.5)
        self.kill_switch.trip("TEST")
        self.assertEqual(await self.monitor.run_pass(), 0)
        self.assertEqual(self.exchange.swaps, [])

    async def test_global_stop_trips_kill_switch(self) -> None:
        self.store.realized_pnl = -0.05
        with self.assertRaises(GlobalStopLoss):
            await self.monitor.check_global_stop()
        self.assertTrue(self.kill_switch.tripped)
        self.assertEqual(self.kill_switch.reason, GLOBAL_STOP_REASON)
        self.assertTrue(any("GLOBAL STOP-LOSS" in m for m in self.notifier.messages))

    async def test_global_stop_not_tripped_above_floor(self) -> None:
        self.store.realized_pnl = -0.049
        await self.monitor.check_global_stop()
        self.assertFalse(self.kill_switch.tripped)

    async def test_run_forever_stops_on_realized_loss(self) -> None:
        self._open(TOKEN_A, 0.5, trade_amount=1.0)
        self.exchange.sell_price = 0.005
        with self.assertRaises(GlobalStopLoss):
            await self.monitor.run_forever()
        self.assertAlmostEqual(self.store.realized_pnl, -0.5)
        self.assertEqual(self.monitor.passes, 1)

    async def test_run_forever_refuses_when_already_halted(self) -> None:
        self.kill_switch.trip("KILL_SWITCH_FILE")
        with self.assertRaises(GlobalStopLoss):
            await self.monitor.run_forever()
        self.assertEqual(self.monitor.passes, 0)


if __name__ == "__main__":
    unittest.main()
