"""On-chain live swap executor for EVM chains (UniswapV2-compatible router)."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

from eth_account import Account
from web3 import HTTPProvider, Web3
from web3.contract import Contract

import config
from monitor.dexscreener import DexScreenerPriceFeed
from trading.collaborators import BUY, SELL, SwapFailed, SwapResult

logger = logging.getLogger(__name__)


ERC20_ABI: list[dict[str, Any]] = [
    {
        "name": "decimals",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint8"}],
    },
    {
        "name": "balanceOf",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "owner", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "name": "allowance",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "owner", "type": "address"}, {"name": "spender", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "name": "approve",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [{"name": "spender", "type": "address"}, {"name": "value", "type": "uint256"}],
        "outputs": [{"name": "", "type": "bool"}],
    },
]


ROUTER_ABI: list[dict[str, Any]] = [
    {
        "name": "WETH",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "address"}],
    },
    {
        "name": "getAmountsOut",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "amountIn", "type": "uint256"}, {"name": "path", "type": "address[]"}],
        "outputs": [{"name": "amounts", "type": "uint256[]"}],
    },
    {
        "name": "swapExactETHForTokensSupportingFeeOnTransferTokens",
        "type": "function",
        "stateMutability": "payable",
        "inputs": [
            {"name": "amountOutMin", "type": "uint256"},
            {"name": "path", "type": "address[]"},
            {"name": "to", "type": "address"},
            {"name": "deadline", "type": "uint256"},
        ],
        "outputs": [],
    },
    {
        "name": "swapExactTokensForETHSupportingFeeOnTransferTokens",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "amountIn", "type": "uint256"},
            {"name": "amountOutMin", "type": "uint256"},
            {"name": "path", "type": "address[]"},
            {"name": "to", "type": "address"},
            {"name": "deadline", "type": "uint256"},
        ],
        "outputs": [],
    },
]


class LiveExecutor:
    """Exchange client backed by a wallet and a router contract.

    Quote currency is the chain's native coin. Token amounts cross this
    boundary as decimal-adjusted floats; raw integer units stay inside.
    """

    def __init__(self, price_feed: DexScreenerPriceFeed | None = None) -> None:
        if not config.LIVE_PRIVATE_KEY:
            raise ValueError("LIVE_PRIVATE_KEY is empty")
        if not config.LIVE_WALLET_ADDRESS:
            raise ValueError("LIVE_WALLET_ADDRESS is empty")
        if not config.LIVE_ROUTER_ADDRESS:
            raise ValueError("LIVE_ROUTER_ADDRESS is empty")

        rpc = (config.RPC_PRIMARY or "").strip() or (config.RPC_SECONDARY or "").strip()
        if not rpc:
            raise ValueError("RPC_PRIMARY/RPC_SECONDARY is empty")

        self.w3 = Web3(HTTPProvider(rpc, request_kwargs={"timeout": config.RPC_TIMEOUT_SECONDS}))
        if not self.w3.is_connected():
            raise ValueError("Web3 not connected")

        self.account = Account.from_key(config.LIVE_PRIVATE_KEY)
        self.wallet = self.w3.to_checksum_address(config.LIVE_WALLET_ADDRESS)
        if self.account.address.lower() != self.wallet.lower():
            raise ValueError("LIVE_WALLET_ADDRESS does not match LIVE_PRIVATE_KEY")

        self.router_address = self.w3.to_checksum_address(config.LIVE_ROUTER_ADDRESS)
        self.router: Contract = self.w3.eth.contract(address=self.router_address, abi=ROUTER_ABI)
        self.weth = self.w3.to_checksum_address(config.WETH_ADDRESS or self.router.functions.WETH().call())
        self.price_feed = price_feed or DexScreenerPriceFeed()
        self._decimals: dict[str, int] = {}

    # Exchange client contract

    async def get_current_price(self, token_id: str) -> float | None:
        return await self.price_feed.get_price(token_id)

    async def get_held_balance(self, token_id: str) -> float:
        return await asyncio.to_thread(self._token_balance, token_id)

    async def get_quote_balance(self) -> float:
        return await asyncio.to_thread(self._native_balance)

    async def swap(self, token_id: str, direction: str, amount: float, slippage_bps: int) -> SwapResult:
        try:
            if direction == BUY:
                return await asyncio.to_thread(self._buy, token_id, float(amount), int(slippage_bps))
            if direction == SELL:
                return await asyncio.to_thread(self._sell, token_id, float(amount), int(slippage_bps))
        except SwapFailed:
            raise
        except Exception as exc:
            raise SwapFailed(f"{direction.lower()}_failed:{exc}") from exc
        raise ValueError(f"unknown swap direction: {direction}")

    async def close_token_account(self, token_id: str) -> None:
        """EVM has no token account to close; revoke the router allowance instead."""
        await asyncio.to_thread(self._revoke_allowance, token_id)

    async def close(self) -> None:
        await self.price_feed.close()

    # Blocking chain calls

    def _native_balance(self) -> float:
        wei = self.w3.eth.get_balance(self.wallet)
        return float(self.w3.from_wei(wei, "ether"))

    def _token_contract(self, token_id: str) -> Contract:
        token = self.w3.to_checksum_address(token_id)
        return self.w3.eth.contract(address=token, abi=ERC20_ABI)

    def token_decimals(self, token_id: str) -> int:
        key = token_id.lower()
        cached = self._decimals.get(key)
        if cached is not None:
            return cached
        try:
            dec = int(self._token_contract(token_id).functions.decimals().call())
        except Exception as exc:
            logger.warning("LIVE decimals_failed token=%s err=%s fallback=18", token_id, exc)
            dec = 18
        dec = int(max(0, min(36, dec)))
        self._decimals[key] = dec
        return dec

    def _to_raw(self, token_id: str, amount: float) -> int:
        return int(float(amount) * (10 ** self.token_decimals(token_id)))

    def _from_raw(self, token_id: str, raw: int) -> float:
        return float(raw) / float(10 ** self.token_decimals(token_id))

    def _token_balance_raw(self, token_id: str) -> int:
        return int(self._token_contract(token_id).functions.balanceOf(self.wallet).call())

    def _token_balance(self, token_id: str) -> float:
        return self._from_raw(token_id, self._token_balance_raw(token_id))

    def _buy(self, token_id: str, spend: float, slippage_bps: int) -> SwapResult:
        token = self.w3.to_checksum_address(token_id)
        amount_in = int(self.w3.to_wei(spend, "ether"))
        if amount_in <= 0:
            raise SwapFailed("amount_in is zero")

        path = [self.weth, token]
        amount_out_min = self._estimate_amount_out_min(amount_in, path, slippage_bps)
        balance_before = self._token_balance_raw(token_id)

        tx = self.router.functions.swapExactETHForTokensSupportingFeeOnTransferTokens(
            amount_out_min,
            path,
            self.wallet,
            self._deadline(),
        ).build_transaction(self._tx_params(value_wei=amount_in))
        tx_hash, fee = self._send_and_wait(tx)

        bought_raw = max(0, self._token_balance_raw(token_id) - balance_before)
        return SwapResult(confirmed=bought_raw > 0, filled_amount=self._from_raw(token_id, bought_raw), fee=fee, tx_ref=tx_hash)

    def _sell(self, token_id: str, amount: float, slippage_bps: int) -> SwapResult:
        token = self.w3.to_checksum_address(token_id)
        amount_raw = min(self._to_raw(token_id, amount), self._token_balance_raw(token_id))
        if amount_raw <= 0:
            raise SwapFailed("token_amount_raw is zero")

        self._ensure_allowance(self._token_contract(token_id), amount_raw)

        path = [token, self.weth]
        amount_out_min = self._estimate_amount_out_min(amount_raw, path, slippage_bps)
        eth_before = int(self.w3.eth.get_balance(self.wallet))

        tx = self.router.functions.swapExactTokensForETHSupportingFeeOnTransferTokens(
            int(amount_raw),
            amount_out_min,
            path,
            self.wallet,
            self._deadline(),
        ).build_transaction(self._tx_params())
        tx_hash, fee = self._send_and_wait(tx)

        eth_after = int(self.w3.eth.get_balance(self.wallet))
        # Balance delta is net of gas; add it back so fee is reported once.
        received_wei = max(0, eth_after - eth_before + int(self.w3.to_wei(fee, "ether")))
        return SwapResult(
            confirmed=True,
            filled_amount=float(self.w3.from_wei(received_wei, "ether")),
            fee=fee,
            tx_ref=tx_hash,
        )

    def _ensure_allowance(self, token_contract: Contract, required_amount: int) -> None:
        allowance = int(token_contract.functions.allowance(self.wallet, self.router_address).call())
        if allowance >= required_amount:
            return
        approve_tx = token_contract.functions.approve(self.router_address, (2**256) - 1).build_transaction(
            self._tx_params()
        )
        self._send_and_wait(approve_tx)

    def _revoke_allowance(self, token_id: str) -> None:
        token_contract = self._token_contract(token_id)
        allowance = int(token_contract.functions.allowance(self.wallet, self.router_address).call())
        if allowance <= 0:
            return
        revoke_tx = token_contract.functions.approve(self.router_address, 0).build_transaction(self._tx_params())
        self._send_and_wait(revoke_tx)

    def _estimate_amount_out_min(self, amount_in: int, path: list[str], slippage_bps: int) -> int:
        try:
            amounts = self.router.functions.getAmountsOut(int(amount_in), path).call()
        except Exception as exc:
            raise SwapFailed(f"quote_failed:{exc}") from exc
        if not isinstance(amounts, (list, tuple)) or len(amounts) < 2 or int(amounts[-1]) <= 0:
            raise SwapFailed("quote_empty")
        slip = max(1, int(slippage_bps))
        return max(1, int(int(amounts[-1]) * (10_000 - slip) / 10_000))

    def _deadline(self) -> int:
        return int(time.time()) + int(config.LIVE_SWAP_DEADLINE_SECONDS)

    def _tx_params(self, value_wei: int = 0) -> dict[str, Any]:
        pending_nonce = self.w3.eth.get_transaction_count(self.wallet, "pending")
        latest = self.w3.eth.get_block("latest")
        base_fee = int(latest.get("baseFeePerGas") or 0)
        priority = int(self.w3.to_wei(max(0.0, float(config.LIVE_PRIORITY_FEE_GWEI)), "gwei"))
        cap = int(self.w3.to_wei(max(0.0, float(config.LIVE_MAX_GAS_GWEI)), "gwei"))
        if cap <= 0:
            # Never send a live tx with an unbounded fee cap.
            cap = int(self.w3.to_wei(1, "gwei"))

        observed_gas_price = int(self.w3.eth.gas_price or 0)
        if observed_gas_price > cap:
            obs_gwei = float(self.w3.from_wei(observed_gas_price, "gwei"))
            cap_gwei = float(self.w3.from_wei(cap, "gwei"))
            raise SwapFailed(f"gas_price_too_high observed_gwei={obs_gwei:.3f} cap_gwei={cap_gwei:.3f}")

        max_fee = min(cap, max(observed_gas_price, (base_fee * 2) + priority))
        if max_fee <= 0:
            max_fee = min(cap, int(self.w3.to_wei(1, "gwei")))

        return {
            "from": self.wallet,
            "chainId": int(config.LIVE_CHAIN_ID),
            "nonce": pending_nonce,
            "value": int(value_wei),
            "maxFeePerGas": max_fee,
            "maxPriorityFeePerGas": min(priority, max_fee),
            "type": 2,
        }

    def _send_and_wait(self, tx: dict[str, Any]) -> tuple[str, float]:
        gas = self.w3.eth.estimate_gas(tx)
        gas_cap = int(config.LIVE_MAX_SWAP_GAS or 0)
        gas_limit = int(gas * 1.15)
        if gas_cap > 0 and gas_limit > gas_cap:
            raise SwapFailed(f"gas_estimate_too_high gas={gas_limit} cap={gas_cap}")
        tx["gas"] = gas_limit

        # Worst case maxFeePerGas * gas + value, with a buffer for the L1 data fee.
        bal = int(self.w3.eth.get_balance(self.wallet))
        worst_cost = (gas_limit * int(tx.get("maxFeePerGas") or 0)) + int(tx.get("value") or 0)
        if int(worst_cost * 1.20) > bal:
            have_eth = float(self.w3.from_wei(bal, "ether"))
            want_eth = float(self.w3.from_wei(int(worst_cost * 1.20), "ether"))
            raise SwapFailed(f"insufficient_balance_for_tx have_eth={have_eth:.8f} want_eth={want_eth:.8f}")

        signed = self.account.sign_transaction(tx)
        raw_tx = getattr(signed, "raw_transaction", None)
        if raw_tx is None:
            raw_tx = getattr(signed, "rawTransaction", None)
        if raw_tx is None:
            raise SwapFailed("signed_tx_missing_raw_bytes")
        tx_hash = self.w3.eth.send_raw_transaction(raw_tx)
        receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=int(config.LIVE_TX_TIMEOUT_SECONDS))
        if int(receipt.status) != 1:
            raise SwapFailed(f"tx_failed hash={tx_hash.hex()}")
        gas_used = int(receipt.get("gasUsed") or 0)
        gas_price = int(receipt.get("effectiveGasPrice") or 0)
        fee = float(self.w3.from_wei(gas_used * gas_price, "ether"))
        return tx_hash.hex(), fee
