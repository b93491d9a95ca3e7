"""Entry point for the DEX position manager."""

from __future__ import annotations

import asyncio
import logging
import os
import sys
from logging.handlers import RotatingFileHandler

import config
from config import APP_LOG_FILE, LOG_DIR, LOG_LEVEL
from database.db import SqlTradeLog
from monitor.alerter import build_notifier
from monitor.dexscreener import DexScreenerPriceFeed
from monitor.health_server import HealthServer
from trading.buy_admission import BuyAdmission
from trading.collaborators import ExchangeClient, Notifier, TradeLog
from trading.exit_policy import ExitPolicy
from trading.kill_switch import KillSwitch
from trading.live_executor import LiveExecutor
from trading.paper_exchange import PaperExchange
from trading.portfolio_monitor import PortfolioMonitor
from trading.portfolio_state import rehydrate_positions
from trading.positions import AdmissionRejected, GlobalStopLoss, PositionStore, TokenLocks, VettingVerdict
from trading.sell_executor import SellExecutor


def configure_logging() -> None:
    os.makedirs(LOG_DIR, exist_ok=True)
    formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    file_handler = RotatingFileHandler(APP_LOG_FILE, maxBytes=1_000_000, backupCount=5, encoding="utf-8")
    file_handler.setFormatter(formatter)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)

    root = logging.getLogger()
    root.setLevel(getattr(logging, LOG_LEVEL.upper(), logging.INFO))
    root.handlers.clear()
    root.addHandler(file_handler)
    root.addHandler(console_handler)

    # Avoid leaking bot token and RPC urls in verbose transport logs.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("telegram").setLevel(logging.INFO)
    logging.getLogger("web3").setLevel(logging.WARNING)


logger = logging.getLogger(__name__)


class TradingEngine:
    """Owns the portfolio and both mutation paths: candidate buys and the monitor loop."""

    def __init__(
        self,
        exchange: ExchangeClient,
        trade_log: TradeLog,
        notifier: Notifier | None = None,
        kill_switch: KillSwitch | None = None,
    ) -> None:
        self.store = PositionStore()
        self.locks = TokenLocks()
        self.exchange = exchange
        self.trade_log = trade_log
        self.notifier = notifier
        self.kill_switch = kill_switch or KillSwitch()
        self.sell_executor = SellExecutor(self.store, exchange, trade_log, notifier)
        self.admission = BuyAdmission(self.store, exchange, trade_log, self.kill_switch, self.locks, notifier)
        self.monitor = PortfolioMonitor(
            self.store,
            exchange,
            ExitPolicy(),
            self.sell_executor,
            self.kill_switch,
            self.locks,
            notifier,
        )
        self.candidates: asyncio.Queue[tuple[str, VettingVerdict]] = asyncio.Queue(maxsize=int(config.CANDIDATE_QUEUE_MAX))

    def rehydrate(self) -> int:
        loaded = rehydrate_positions(self.store, self.trade_log.load_open_trades())
        self.store.realized_pnl = float(self.trade_log.realized_pnl() or 0.0)
        return loaded

    def submit(self, token_id: str, verdict: VettingVerdict) -> bool:
        """Hand a vetted new-pool token to the buy path. False when the queue is full."""
        try:
            self.candidates.put_nowait((token_id, verdict))
            return True
        except asyncio.QueueFull:
            logger.warning("AUTO_BUY candidate_dropped token=%s reason=queue_full", token_id)
            return False

    async def candidate_worker(self) -> None:
        while True:
            token_id, verdict = await self.candidates.get()
            try:
                if self.trade_log.has_been_purchased(token_id):
                    logger.info("AUTO_BUY skip token=%s reason=already_purchased", token_id)
                    continue
                await self.admission.try_open(token_id, verdict.tier, metadata=verdict.metadata)
            except AdmissionRejected as exc:
                logger.info("AUTO_BUY skip token=%s reason=%s detail=%s", token_id, exc.code, exc)
            except Exception:
                logger.exception("AUTO_BUY candidate_error token=%s", token_id)
            finally:
                self.candidates.task_done()

    async def run(self) -> None:
        worker = asyncio.create_task(self.candidate_worker())
        try:
            await self.monitor.run_forever()
        finally:
            worker.cancel()
            try:
                await worker
            except asyncio.CancelledError:
                pass
            await self.sell_executor.aclose()


def build_exchange(price_feed: DexScreenerPriceFeed) -> ExchangeClient:
    if config.AUTO_TRADE_PAPER:
        logger.info("Paper exchange ready balance=%.6f %s", config.PAPER_QUOTE_BALANCE, config.QUOTE_SYMBOL)
        return PaperExchange(price_feed.get_price)
    executor = LiveExecutor(price_feed)
    logger.info("Live executor ready wallet=%s", config.LIVE_WALLET_ADDRESS)
    return executor


async def run() -> int:
    trade_log = SqlTradeLog()
    trade_log.init_db()
    notifier = build_notifier()
    price_feed = DexScreenerPriceFeed()
    exchange = build_exchange(price_feed)
    engine = TradingEngine(exchange, trade_log, notifier)
    loaded = engine.rehydrate()
    logger.info(
        "ENGINE_START mode=%s open=%s realized=%.8f max_portfolio=%s",
        "paper" if config.AUTO_TRADE_PAPER else "live",
        loaded,
        engine.store.realized_pnl,
        config.MAX_PORTFOLIO_SIZE,
    )

    health = HealthServer(engine.kill_switch)
    await health.start()
    try:
        await engine.run()
    except GlobalStopLoss as exc:
        logger.critical("GLOBAL STOP-LOSS TRIGGERED, exiting: %s", exc)
        return 1
    finally:
        await health.stop()
        await price_feed.close()
    return 0


def main() -> None:
    configure_logging()
    try:
        code = asyncio.run(run())
    except KeyboardInterrupt:
        logger.info("Shutdown requested")
        code = 0
    sys.exit(code)


if __name__ == "__main__":
    main()
