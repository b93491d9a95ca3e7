"""Trade log persistence."""

from datetime import timezone
from typing import Optional

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import Session, sessionmaker

import config
from database.models import Base, PurchasedToken, Trade
from trading.collaborators import BUY, SELL, STATUS_OPEN, STATUS_SELL_FAILED, OpenTradeRecord
from trading.positions import normalize_token_id


def _parse_tiers(raw: Optional[str]) -> frozenset[int]:
    tiers = set()
    for chunk in str(raw or "").split(","):
        chunk = chunk.strip()
        if chunk.isdigit():
            tiers.add(int(chunk))
    return frozenset(tiers)


class SqlTradeLog:
    def __init__(self, database_url: Optional[str] = None) -> None:
        self.engine = create_engine(database_url or config.DATABASE_URL, future=True)
        self.SessionLocal = sessionmaker(bind=self.engine, autoflush=False, autocommit=False, future=True)

    def init_db(self) -> None:
        Base.metadata.create_all(bind=self.engine)
        self._apply_runtime_migrations()

    def _apply_runtime_migrations(self) -> None:
        inspector = inspect(self.engine)
        if "trades" not in set(inspector.get_table_names()):
            return

        trade_columns = {col["name"] for col in inspector.get_columns("trades")}
        with self.engine.begin() as conn:
            if "held_amount" not in trade_columns:
                conn.execute(text("ALTER TABLE trades ADD COLUMN held_amount FLOAT"))
            if "profit_tiers" not in trade_columns:
                conn.execute(text("ALTER TABLE trades ADD COLUMN profit_tiers VARCHAR"))

    def get_db(self) -> Session:
        return self.SessionLocal()

    def record_trade(
        self,
        side: str,
        token_id: str,
        amount: float,
        price: float,
        fee: float,
        tx_ref: str,
        running_pnl: float,
        *,
        risk_tier: str = "",
        token_amount: float = 0.0,
        symbol: str = "",
    ) -> None:
        db = self.get_db()
        try:
            trade = Trade(
                side=side,
                token_id=normalize_token_id(token_id),
                symbol=symbol or None,
                amount=float(amount),
                token_amount=float(token_amount),
                price=float(price),
                fee=float(fee),
                tx_ref=tx_ref,
                running_pnl=float(running_pnl),
                risk_tier=risk_tier or None,
                status=STATUS_OPEN if side == BUY else "FILLED",
            )
            db.add(trade)
            db.commit()
        finally:
            db.close()

    def update_status(self, tx_ref: str, status: str) -> None:
        if not tx_ref:
            return
        db = self.get_db()
        try:
            trade = db.query(Trade).filter(Trade.tx_ref == tx_ref, Trade.side == BUY).first()
            if not trade:
                return
            trade.status = status
            db.commit()
        finally:
            db.close()

    def update_position(self, tx_ref: str, held_amount: float, profit_tiers_taken: set[int]) -> None:
        """Persist partial-sell progress on the opening BUY row."""
        if not tx_ref:
            return
        db = self.get_db()
        try:
            trade = db.query(Trade).filter(Trade.tx_ref == tx_ref, Trade.side == BUY).first()
            if not trade:
                return
            trade.held_amount = float(held_amount)
            trade.profit_tiers = ",".join(str(t) for t in sorted(profit_tiers_taken)) or None
            db.commit()
        finally:
            db.close()

    def load_open_trades(self) -> list[OpenTradeRecord]:
        db = self.get_db()
        try:
            rows = (
                db.query(Trade)
                .filter(Trade.side == BUY, Trade.status.in_([STATUS_OPEN, STATUS_SELL_FAILED]))
                .order_by(Trade.created_at.asc(), Trade.id.asc())
                .all()
            )
            return [
                OpenTradeRecord(
                    token_id=row.token_id,
                    purchase_price=float(row.price),
                    trade_amount=float(row.amount),
                    token_amount=float(row.token_amount or 0.0),
                    risk_tier=str(row.risk_tier or ""),
                    opened_at=row.created_at.replace(tzinfo=timezone.utc),
                    tx_ref=str(row.tx_ref or ""),
                    symbol=str(row.symbol or ""),
                    held_amount=None if row.held_amount is None else float(row.held_amount),
                    profit_tiers_taken=_parse_tiers(row.profit_tiers),
                )
                for row in rows
            ]
        finally:
            db.close()

    def add_purchased_token(self, token_id: str) -> None:
        key = normalize_token_id(token_id)
        db = self.get_db()
        try:
            existing = db.query(PurchasedToken).filter(PurchasedToken.token_id == key).first()
            if existing:
                return
            db.add(PurchasedToken(token_id=key))
            db.commit()
        finally:
            db.close()

    def has_been_purchased(self, token_id: str) -> bool:
        db = self.get_db()
        try:
            key = normalize_token_id(token_id)
            return db.query(PurchasedToken).filter(PurchasedToken.token_id == key).first() is not None
        finally:
            db.close()

    def realized_pnl(self) -> float:
        """Running PnL of the most recent SELL, used to seed the accumulator on restart."""
        db = self.get_db()
        try:
            row = db.query(Trade).filter(Trade.side == SELL).order_by(Trade.id.desc()).first()
            return float(row.running_pnl) if row else 0.0
        finally:
            db.close()
