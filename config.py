"""Application configuration."""

import os
from pathlib import Path
from typing import Dict

from dotenv import load_dotenv


def _load_dotenv_safe(dotenv_path: str | None = None, *, override: bool = False) -> None:
    """Load dotenv using UTF-8-SIG so BOM-prefixed files don't break first key parsing."""
    try:
        load_dotenv(dotenv_path=dotenv_path, override=override, encoding="utf-8-sig")
    except TypeError:
        # Older python-dotenv versions may not expose the `encoding` argument.
        load_dotenv(dotenv_path=dotenv_path, override=override)


# Load base environment first, then optional per-instance override env file.
_load_dotenv_safe()
_BOT_ENV_FILE = os.getenv("BOT_ENV_FILE", "").strip()
if _BOT_ENV_FILE:
    _bot_env_path = Path(_BOT_ENV_FILE).expanduser()
    if not _bot_env_path.is_absolute():
        _bot_env_path = (Path.cwd() / _bot_env_path).resolve()
    if not _bot_env_path.exists():
        raise FileNotFoundError(f"BOT_ENV_FILE does not exist: {_bot_env_path}")
    if not _bot_env_path.is_file():
        raise IsADirectoryError(f"BOT_ENV_FILE is not a file: {_bot_env_path}")
    try:
        _load_dotenv_safe(str(_bot_env_path), override=True)
    except (OSError, UnicodeError, ValueError) as exc:
        raise RuntimeError(f"Failed to load BOT_ENV_FILE '{_bot_env_path}': {exc}") from exc


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def _parse_tier_amounts(raw: str, fallback: Dict[str, float]) -> Dict[str, float]:
    """Parse `GOOD:0.01,WARNING:0.005` style overrides on top of the per-tier defaults."""
    out = dict(fallback)
    for chunk in str(raw or "").split(","):
        item = chunk.strip()
        if not item or ":" not in item:
            continue
        tier_part, value_part = item.split(":", 1)
        tier = tier_part.strip().upper()
        if not tier:
            continue
        try:
            out[tier] = max(0.0, float(value_part.strip()))
        except ValueError:
            continue
    return out


TELEGRAM_BOT_TOKEN = os.getenv("TELEGRAM_BOT_TOKEN", "")
TELEGRAM_CHAT_ID = os.getenv("TELEGRAM_CHAT_ID", "").strip()
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///trades.db")
BOT_INSTANCE_ID = os.getenv("BOT_INSTANCE_ID", "").strip()

CHAIN_NAME = os.getenv("CHAIN_NAME", "base")
CHAIN_ID = os.getenv("CHAIN_ID", "base")
QUOTE_SYMBOL = os.getenv("QUOTE_SYMBOL", "ETH")

# Portfolio strategy
MAX_PORTFOLIO_SIZE = max(1, int(os.getenv("MAX_PORTFOLIO_SIZE", "5")))
PORTFOLIO_CHECK_INTERVAL_SECONDS = max(1, int(os.getenv("PORTFOLIO_CHECK_INTERVAL_SECONDS", "30")))
CANDIDATE_QUEUE_MAX = max(1, int(os.getenv("CANDIDATE_QUEUE_MAX", "100")))

# Trade sizing per risk tier, in quote currency.
TRADE_AMOUNTS = _parse_tier_amounts(
    os.getenv("TRADE_AMOUNTS", ""),
    {
        "GOOD": max(0.0, float(os.getenv("TRADE_AMOUNT_GOOD", "0.004"))),
        "WARNING": max(0.0, float(os.getenv("TRADE_AMOUNT_WARNING", "0.003"))),
        "DANGER": max(0.0, float(os.getenv("TRADE_AMOUNT_DANGER", "0.002"))),
    },
)
# Kept unspent for gas and rent.
MIN_QUOTE_BALANCE = max(0.0, float(os.getenv("MIN_QUOTE_BALANCE", "0.002")))
SLIPPAGE_BPS = max(1, int(os.getenv("SLIPPAGE_BPS", "300")))

# Risk management
TRAILING_STOP_LOSS_PERCENT = max(0.0, float(os.getenv("TRAILING_STOP_LOSS_PERCENT", "20")))
HARD_STOP_LOSS_PERCENT = -10.0
STALE_DANGER_COIN_MINUTES = max(0, int(os.getenv("STALE_DANGER_COIN_MINUTES", "30")))
DEEP_LOSS_PERCENT_DANGER = -abs(float(os.getenv("DEEP_LOSS_PERCENT_DANGER", "-15")))
GLOBAL_STOP_LOSS = float(os.getenv("GLOBAL_STOP_LOSS", "-0.05"))
KILL_SWITCH_FILE = os.getenv("KILL_SWITCH_FILE", os.path.join("data", "KILL_SWITCH"))

# Take-profit strategy
TAKE_PROFIT_PERCENT_DANGER = float(os.getenv("TAKE_PROFIT_PERCENT_DANGER", "20"))
TAKE_PROFIT_PERCENT_WARNING = float(os.getenv("TAKE_PROFIT_PERCENT_WARNING", "35"))
GOOD_TP_1_PERCENT = float(os.getenv("GOOD_TP_1_PERCENT", "10"))
GOOD_TP_1_SELL_PERCENT = max(0.0, min(100.0, float(os.getenv("GOOD_TP_1_SELL_PERCENT", "30"))))
GOOD_TP_2_PERCENT = float(os.getenv("GOOD_TP_2_PERCENT", "25"))
GOOD_TP_2_SELL_PERCENT = max(0.0, min(100.0, float(os.getenv("GOOD_TP_2_SELL_PERCENT", "30"))))
GOOD_TP_3_PERCENT = float(os.getenv("GOOD_TP_3_PERCENT", "50"))

# Sell execution
SELL_RETRY_ATTEMPTS = max(1, int(os.getenv("SELL_RETRY_ATTEMPTS", "3")))
SELL_RETRY_DELAY_SECONDS = max(0.0, float(os.getenv("SELL_RETRY_DELAY_SECONDS", "5")))
POST_SELL_CLEANUP_DELAY_SECONDS = max(0.0, float(os.getenv("POST_SELL_CLEANUP_DELAY_SECONDS", "30")))

# Paper mode (default) simulates fills against live prices.
AUTO_TRADE_PAPER = _env_bool("AUTO_TRADE_PAPER", "true")
PAPER_QUOTE_BALANCE = max(0.0, float(os.getenv("PAPER_QUOTE_BALANCE", "0.05")))
PAPER_FEE_QUOTE = max(0.0, float(os.getenv("PAPER_FEE_QUOTE", "0.00002")))

# Live execution (EVM, UniswapV2-compatible router)
LIVE_PRIVATE_KEY = os.getenv("LIVE_PRIVATE_KEY", "").strip()
LIVE_WALLET_ADDRESS = os.getenv("LIVE_WALLET_ADDRESS", "").strip()
LIVE_ROUTER_ADDRESS = os.getenv("LIVE_ROUTER_ADDRESS", "0x4752ba5DBc23f44D87826276BF6Fd6b1C372aD24").strip()
LIVE_CHAIN_ID = int(os.getenv("LIVE_CHAIN_ID", "8453"))
WETH_ADDRESS = os.getenv("WETH_ADDRESS", "0x4200000000000000000000000000000000000006").strip()
RPC_PRIMARY = os.getenv("RPC_PRIMARY", "https://mainnet.base.org")
RPC_SECONDARY = os.getenv("RPC_SECONDARY", "")
RPC_TIMEOUT_SECONDS = max(1, int(os.getenv("RPC_TIMEOUT_SECONDS", "20")))
LIVE_SWAP_DEADLINE_SECONDS = max(30, int(os.getenv("LIVE_SWAP_DEADLINE_SECONDS", "120")))
LIVE_TX_TIMEOUT_SECONDS = max(10, int(os.getenv("LIVE_TX_TIMEOUT_SECONDS", "180")))
LIVE_PRIORITY_FEE_GWEI = max(0.0, float(os.getenv("LIVE_PRIORITY_FEE_GWEI", "0.02")))
LIVE_MAX_GAS_GWEI = max(0.0, float(os.getenv("LIVE_MAX_GAS_GWEI", "2.0")))
LIVE_MAX_SWAP_GAS = max(0, int(os.getenv("LIVE_MAX_SWAP_GAS", "600000")))

# Price source
DEXSCREENER_API = os.getenv("DEXSCREENER_API", "https://api.dexscreener.com/latest/dex")
DEX_TIMEOUT = int(os.getenv("DEX_TIMEOUT", "15"))
HTTP_CONNECTOR_LIMIT = max(1, int(os.getenv("HTTP_CONNECTOR_LIMIT", "30")))
HTTP_DEFAULT_CONCURRENCY = max(1, int(os.getenv("HTTP_DEFAULT_CONCURRENCY", "8")))
HTTP_RETRY_ATTEMPTS = max(1, int(os.getenv("HTTP_RETRY_ATTEMPTS", "3")))
HTTP_BACKOFF_BASE_SECONDS = max(0.05, float(os.getenv("HTTP_BACKOFF_BASE_SECONDS", "0.50")))
HTTP_BACKOFF_MAX_SECONDS = max(0.10, float(os.getenv("HTTP_BACKOFF_MAX_SECONDS", "8.00")))
HTTP_JITTER_SECONDS = max(0.0, float(os.getenv("HTTP_JITTER_SECONDS", "0.25")))

# Liveness endpoint
HEALTH_HOST = os.getenv("HEALTH_HOST", "0.0.0.0")
HEALTH_PORT = int(os.getenv("HEALTH_PORT", os.getenv("PORT", "3000")))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_DIR = os.getenv("LOG_DIR", "logs")
APP_LOG_FILE = os.getenv("APP_LOG_FILE", os.path.join(LOG_DIR, "app.log"))
