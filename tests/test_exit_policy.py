from __future__ import annotations

import unittest

from trading.exit_policy import (
    DEEP_LOSS,
    HARD_STOP,
    PRICE_LOST,
    STALE_DANGER,
    TAKE_PROFIT,
    TAKE_PROFIT_TP1,
    TAKE_PROFIT_TP2,
    TAKE_PROFIT_TP3,
    TRAILING_STOP,
    ExitAction,
    ExitPolicy,
    ExitThresholds,
    ProfitTier,
)
from trading.positions import RiskTier
from trading_fakes import ConfigPatchMixin, mk_position


def thresholds(**overrides) -> ExitThresholds:
    base = dict(
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
        hard_stop_percent=-10.0,
    )
    base.update(overrides)
    return ExitThresholds(**base)


class ExitPolicyTests(ConfigPatchMixin, unittest.TestCase):
    def setUp(self) -> None:
        super().setUp()
        self.policy = ExitPolicy(thresholds())

    def test_price_unavailable_forces_full_exit(self) -> None:
        pos = mk_position()
        self.assertEqual(self.policy.evaluate(pos, None), [ExitAction(100.0, PRICE_LOST)])
        self.assertEqual(self.policy.evaluate(pos, 0.0), [ExitAction(100.0, PRICE_LOST)])

    def test_trailing_stop_scenario(self) -> None:
        pos = mk_position(purchase_price=1.0)
        self.assertEqual(self.policy.evaluate(pos, 1.5), [])
        self.assertEqual(pos.high_water_price, 1.5)
        actions = self.policy.evaluate(pos, 1.2)
        self.assertEqual(actions, [ExitAction(100.0, TRAILING_STOP)])

    def test_trailing_stop_needs_profit(self) -> None:
        pos = mk_position(purchase_price=1.0, risk_tier=RiskTier.WARNING)
        pos.observe_price(1.25)
        # 24% off the peak but still below purchase: trailing stop must not fire.
        actions = self.policy.evaluate(pos, 0.95)
        self.assertEqual(actions, [])

    def test_hard_stop_fires_at_minus_ten(self) -> None:
        pos = mk_position(purchase_price=1.0, risk_tier=RiskTier.WARNING)
        self.assertEqual(self.policy.evaluate(pos, 0.91), [])
        self.assertEqual(self.policy.evaluate(pos, 0.90), [ExitAction(100.0, HARD_STOP)])

    def test_hard_stop_is_independent_of_trailing_setting(self) -> None:
        policy = ExitPolicy(thresholds(trailing_stop_percent=90.0))
        pos = mk_position(purchase_price=1.0, risk_tier=RiskTier.GOOD)
        self.assertEqual(policy.evaluate(pos, 0.5), [ExitAction(100.0, HARD_STOP)])

    def test_deep_loss_scenario_for_danger(self) -> None:
        # Hard stop set below the deep-loss threshold so the DANGER rule is reachable.
        policy = ExitPolicy(thresholds(hard_stop_percent=-50.0, deep_loss_percent=-15.0))
        pos = mk_position(purchase_price=1.0, risk_tier=RiskTier.DANGER)
        self.assertEqual(policy.evaluate(pos, 0.80), [ExitAction(100.0, DEEP_LOSS)])

    def test_deep_loss_with_default_hard_stop_reports_hard_stop(self) -> None:
        pos = mk_position(purchase_price=1.0, risk_tier=RiskTier.DANGER)
        self.assertEqual(self.policy.evaluate(pos, 0.80), [ExitAction(100.0, HARD_STOP)])

    def test_deep_loss_ignored_for_other_tiers(self) -> None:
        policy = ExitPolicy(thresholds(hard_stop_percent=-50.0))
        pos = mk_position(purchase_price=1.0, risk_tier=RiskTier.WARNING)
        self.assertEqual(policy.evaluate(pos, 0.80), [])

    def test_stale_danger_exit_only_when_profitable(self) -> None:
        pos = mk_position(purchase_price=1.0, risk_tier=RiskTier.DANGER, minutes_ago=31)
        self.assertEqual(self.policy.evaluate(pos, 1.01), [ExitAction(100.0, STALE_DANGER)])
        losing = mk_position(purchase_price=1.0, risk_tier=RiskTier.DANGER, minutes_ago=31)
        self.assertEqual(self.policy.evaluate(losing, 0.99), [])
        fresh = mk_position(purchase_price=1.0, risk_tier=RiskTier.DANGER, minutes_ago=5)
        self.assertEqual(self.policy.evaluate(fresh, 1.01), [])

    def test_good_tp2_skips_tp1_in_same_pass(self) -> None:
        pos = mk_position(purchase_price=1.0, risk_tier=RiskTier.GOOD)
        actions = self.policy.evaluate(pos, 1.26)
        self.assertEqual(actions, [ExitAction(30.0, TAKE_PROFIT_TP2, 2)])

    def test_good_tp1_fires_after_tp2_taken(self) -> None:
        pos = mk_position(purchase_price=1.0, risk_tier=RiskTier.GOOD)
        pos.mark_tier_taken(2)
        actions = self.policy.evaluate(pos, 1.26)
        self.assertEqual(actions, [ExitAction(30.0, TAKE_PROFIT_TP1, 1)])
        pos.mark_tier_taken(1)
        self.assertEqual(self.policy.evaluate(pos, 1.26), [])

    def test_good_tp3_is_full_exit(self) -> None:
        pos = mk_position(purchase_price=1.0, risk_tier=RiskTier.GOOD)
        actions = self.policy.evaluate(pos, 1.5)
        self.assertEqual(actions, [ExitAction(100.0, TAKE_PROFIT_TP3, 3)])
        self.assertTrue(actions[0].is_full_exit)

    def test_flat_take_profit_for_warning_and_danger(self) -> None:
        warning = mk_position(purchase_price=1.0, risk_tier=RiskTier.WARNING)
        self.assertEqual(self.policy.evaluate(warning, 1.34), [])
        self.assertEqual(self.policy.evaluate(warning, 1.35), [ExitAction(100.0, TAKE_PROFIT)])
        danger = mk_position(purchase_price=1.0, risk_tier=RiskTier.DANGER)
        self.assertEqual(self.policy.evaluate(danger, 1.2), [ExitAction(100.0, TAKE_PROFIT)])

    def test_evaluate_is_idempotent(self) -> None:
        pos = mk_position(purchase_price=1.0, risk_tier=RiskTier.GOOD)
        first = self.policy.evaluate(pos, 1.12)
        second = self.policy.evaluate(pos, 1.12)
        self.assertEqual(first, second)
        self.assertEqual(first, [ExitAction(30.0, TAKE_PROFIT_TP1, 1)])
        self.assertEqual(pos.profit_tiers_taken, set())

    def test_thresholds_from_config(self) -> None:
        self.patch_cfg(
            TRAILING_STOP_LOSS_PERCENT=12.5,
            GOOD_TP_1_PERCENT=5.0,
            GOOD_TP_1_SELL_PERCENT=40.0,
            GOOD_TP_3_PERCENT=80.0,
            DEEP_LOSS_PERCENT_DANGER=-25.0,
        )
        t = ExitThresholds.from_config()
        self.assertEqual(t.trailing_stop_percent, 12.5)
        self.assertEqual(t.good_tiers[0], ProfitTier(1, 5.0, 40.0))
        self.assertEqual(t.good_tiers[2], ProfitTier(3, 80.0, 100.0))
        self.assertEqual(t.deep_loss_percent, -25.0)
        self.assertEqual(t.hard_stop_percent, -10.0)


if __name__ == "__main__":
    unittest.main()
