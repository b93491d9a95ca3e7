"""Startup rehydration of the position store from the trade log."""

from __future__ import annotations

import logging
from typing import Iterable

from trading.collaborators import OpenTradeRecord
from trading.positions import AlreadyHeld, Position, PositionStore, RiskTier

logger = logging.getLogger(__name__)


def position_from_record(record: OpenTradeRecord) -> Position | None:
    if float(record.purchase_price or 0.0) <= 0:
        return None
    initial = max(0.0, float(record.token_amount or 0.0))
    # Partial sells leave the remaining amount and the taken tiers on the BUY row.
    held = initial if record.held_amount is None else max(0.0, float(record.held_amount))
    return Position(
        token_id=record.token_id,
        purchase_price=float(record.purchase_price),
        trade_amount=float(record.trade_amount or 0.0),
        held_amount=held,
        risk_tier=RiskTier.parse(record.risk_tier),
        opened_at=record.opened_at,
        open_tx_ref=str(record.tx_ref or ""),
        initial_amount=initial,
        profit_tiers_taken=set(record.profit_tiers_taken or ()),
        symbol=str(record.symbol or ""),
    )


def rehydrate_positions(store: PositionStore, records: Iterable[OpenTradeRecord]) -> int:
    loaded = 0
    for record in records:
        position = position_from_record(record)
        if position is None:
            logger.warning("REHYDRATE skipped token=%s reason=invalid_price", record.token_id)
            continue
        try:
            store.add(position)
        except AlreadyHeld:
            logger.warning("REHYDRATE skipped token=%s reason=duplicate tx=%s", record.token_id, record.tx_ref)
            continue
        loaded += 1
    logger.info("REHYDRATE loaded=%s open=%s", loaded, store.size())
    return loaded
