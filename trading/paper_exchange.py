"""Simulated exchange client: real prices, fake fills."""

from __future__ import annotations

import logging
import uuid
from typing import Awaitable, Callable

import config
from trading.collaborators import BUY, SELL, SwapFailed, SwapResult
from trading.positions import normalize_token_id

logger = logging.getLogger(__name__)

PriceSource = Callable[[str], Awaitable[float | None]]


class PaperExchange:
    """Fills at the current price worsened by the full slippage budget."""

    def __init__(
        self,
        price_source: PriceSource,
        quote_balance: float | None = None,
        fee: float | None = None,
    ) -> None:
        self._price_source = price_source
        self.quote_balance = float(config.PAPER_QUOTE_BALANCE if quote_balance is None else quote_balance)
        self.fee = float(config.PAPER_FEE_QUOTE if fee is None else fee)
        self.balances: dict[str, float] = {}

    async def get_current_price(self, token_id: str) -> float | None:
        return await self._price_source(normalize_token_id(token_id))

    async def get_held_balance(self, token_id: str) -> float:
        return self.balances.get(normalize_token_id(token_id), 0.0)

    async def get_quote_balance(self) -> float:
        return self.quote_balance

    async def swap(self, token_id: str, direction: str, amount: float, slippage_bps: int) -> SwapResult:
        token_id = normalize_token_id(token_id)
        price = await self._price_source(token_id)
        if price is None or price <= 0:
            raise SwapFailed(f"no_quote token={token_id}")
        slip = max(0, int(slippage_bps)) / 10_000
        amount = float(amount)
        tx_ref = f"paper-{uuid.uuid4().hex[:16]}"

        if direction == BUY:
            if amount + self.fee > self.quote_balance:
                raise SwapFailed(f"insufficient_quote have={self.quote_balance:.8f} want={amount + self.fee:.8f}")
            filled = amount / (price * (1 + slip))
            self.quote_balance -= amount + self.fee
            self.balances[token_id] = self.balances.get(token_id, 0.0) + filled
        elif direction == SELL:
            held = self.balances.get(token_id, 0.0)
            if amount > held:
                raise SwapFailed(f"insufficient_tokens have={held:.6f} want={amount:.6f}")
            filled = amount * price * (1 - slip)
            self.balances[token_id] = held - amount
            self.quote_balance += filled - self.fee
        else:
            raise ValueError(f"unknown swap direction: {direction}")

        logger.info(
            "PAPER_SWAP %s token=%s amount=%.8f filled=%.8f price=%.12f tx=%s",
            direction,
            token_id,
            amount,
            filled,
            price,
            tx_ref,
        )
        return SwapResult(confirmed=True, filled_amount=filled, fee=self.fee, tx_ref=tx_ref)

    async def close_token_account(self, token_id: str) -> None:
        token_id = normalize_token_id(token_id)
        if self.balances.get(token_id, 0.0) <= 0:
            self.balances.pop(token_id, None)
