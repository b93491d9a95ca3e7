"""Exit decision rules for open positions.

The evaluator walks the rules in a fixed order and returns the sell actions to
apply, in order. Full exits are terminal and short-circuit everything after
them. The only side effect is raising the position's high-water price; profit
tiers are recorded by the sell executor once a sell is confirmed, so evaluating
the same position twice at the same price yields the same actions.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

import config
from trading.positions import Position, RiskTier

logger = logging.getLogger(__name__)

FULL_EXIT_PERCENT = 100.0
PERCENT_PRECISION = 9

PRICE_LOST = "PRICE_LOST"
TRAILING_STOP = "TRAILING_STOP"
HARD_STOP = "HARD_STOP"
STALE_DANGER = "STALE_DANGER"
DEEP_LOSS = "DEEP_LOSS"
TAKE_PROFIT = "TAKE_PROFIT"
TAKE_PROFIT_TP1 = "TAKE_PROFIT_TP1"
TAKE_PROFIT_TP2 = "TAKE_PROFIT_TP2"
TAKE_PROFIT_TP3 = "TAKE_PROFIT_TP3"

_TIER_REASONS = {1: TAKE_PROFIT_TP1, 2: TAKE_PROFIT_TP2, 3: TAKE_PROFIT_TP3}


@dataclass(frozen=True)
class ProfitTier:
    tier: int
    profit_percent: float
    sell_percent: float


@dataclass(frozen=True)
class ExitThresholds:
    trailing_stop_percent: float
    stale_danger_minutes: float
    deep_loss_percent: float
    take_profit_warning_percent: float
    take_profit_danger_percent: float
    good_tiers: tuple[ProfitTier, ProfitTier, ProfitTier]
    hard_stop_percent: float = -10.0

    @classmethod
    def from_config(cls) -> "ExitThresholds":
        return cls(
            trailing_stop_percent=float(config.TRAILING_STOP_LOSS_PERCENT),
            stale_danger_minutes=float(config.STALE_DANGER_COIN_MINUTES),
            deep_loss_percent=float(config.DEEP_LOSS_PERCENT_DANGER),
            take_profit_warning_percent=float(config.TAKE_PROFIT_PERCENT_WARNING),
            take_profit_danger_percent=float(config.TAKE_PROFIT_PERCENT_DANGER),
            good_tiers=(
                ProfitTier(1, float(config.GOOD_TP_1_PERCENT), float(config.GOOD_TP_1_SELL_PERCENT)),
                ProfitTier(2, float(config.GOOD_TP_2_PERCENT), float(config.GOOD_TP_2_SELL_PERCENT)),
                ProfitTier(3, float(config.GOOD_TP_3_PERCENT), FULL_EXIT_PERCENT),
            ),
            hard_stop_percent=float(config.HARD_STOP_LOSS_PERCENT),
        )


@dataclass(frozen=True)
class ExitAction:
    sell_percent: float
    reason: str
    tier: int | None = None

    @property
    def is_full_exit(self) -> bool:
        return self.sell_percent >= FULL_EXIT_PERCENT


def _full(reason: str, tier: int | None = None) -> list[ExitAction]:
    return [ExitAction(FULL_EXIT_PERCENT, reason, tier)]


class ExitPolicy:
    def __init__(self, thresholds: ExitThresholds | None = None) -> None:
        self.thresholds = thresholds or ExitThresholds.from_config()

    def evaluate(
        self,
        position: Position,
        current_price: float | None,
        now: datetime | None = None,
    ) -> list[ExitAction]:
        t = self.thresholds
        if current_price is None or current_price <= 0:
            return _full(PRICE_LOST)

        price = float(current_price)
        position.observe_price(price)
        # Rounded so a price exactly on a threshold compares as on it.
        pnl = round(position.pnl_percent(price), PERCENT_PRECISION)
        drop = round(position.drop_from_peak_percent(price), PERCENT_PRECISION)

        if pnl > 0 and drop >= t.trailing_stop_percent:
            return _full(TRAILING_STOP)

        if pnl <= t.hard_stop_percent:
            return _full(HARD_STOP)

        tier = position.risk_tier
        if tier is RiskTier.DANGER:
            if pnl > 0 and position.minutes_held(now or datetime.now(timezone.utc)) > t.stale_danger_minutes:
                return _full(STALE_DANGER)
            if pnl <= t.deep_loss_percent:
                return _full(DEEP_LOSS)

        if tier is RiskTier.GOOD:
            return self._tiered_take_profit(position, pnl)
        if tier is RiskTier.WARNING and pnl >= t.take_profit_warning_percent:
            return _full(TAKE_PROFIT)
        if tier is RiskTier.DANGER and pnl >= t.take_profit_danger_percent:
            return _full(TAKE_PROFIT)
        return []

    def _tiered_take_profit(self, position: Position, pnl: float) -> list[ExitAction]:
        # Highest untaken tier wins; lower tiers are not emitted in the same pass.
        for profit_tier in sorted(self.thresholds.good_tiers, key=lambda x: x.profit_percent, reverse=True):
            if profit_tier.tier in position.profit_tiers_taken:
                continue
            if pnl < profit_tier.profit_percent:
                continue
            reason = _TIER_REASONS.get(profit_tier.tier, TAKE_PROFIT)
            if profit_tier.tier == 3 or profit_tier.sell_percent >= FULL_EXIT_PERCENT:
                return _full(reason, profit_tier.tier)
            if profit_tier.sell_percent <= 0:
                return []
            return [ExitAction(profit_tier.sell_percent, reason, profit_tier.tier)]
        return []
