"""Token price lookups against the DexScreener API."""

from __future__ import annotations

import logging
from typing import Any

import config
from trading.positions import normalize_token_id
from utils.http_client import ResilientHttpClient

logger = logging.getLogger(__name__)


def best_native_price(pairs: list[dict[str, Any]], chain_id: str) -> float | None:
    """priceNative of the deepest-liquidity pair on `chain_id`."""
    best_liq = -1.0
    best_price = 0.0
    for pair in pairs or []:
        if str(pair.get("chainId", "")).lower() != str(chain_id).lower():
            continue
        try:
            liq = float((pair.get("liquidity") or {}).get("usd") or 0)
            price = float(pair.get("priceNative") or 0)
        except (TypeError, ValueError):
            continue
        if price <= 0:
            continue
        if liq > best_liq:
            best_liq = liq
            best_price = price
    if best_price <= 0:
        return None
    return best_price


class DexScreenerPriceFeed:
    """Quote-currency price per token unit, or None when no usable pair exists."""

    def __init__(self, http: ResilientHttpClient | None = None) -> None:
        self._http = http or ResilientHttpClient(
            timeout_seconds=float(config.DEX_TIMEOUT),
            source_limits={"dex_price": 6},
        )

    async def close(self) -> None:
        await self._http.close()

    async def get_price(self, token_id: str) -> float | None:
        token_id = normalize_token_id(token_id)
        if not token_id:
            return None
        result = await self._http.get_json(f"{config.DEXSCREENER_API}/tokens/{token_id}", source="dex_price")
        if not result.ok or not isinstance(result.data, dict):
            logger.debug("PRICE unavailable token=%s err=%s", token_id, result.error)
            return None
        return best_native_price(result.data.get("pairs", []) or [], config.CHAIN_ID)
