"""SQLAlchemy models."""

from datetime import datetime

from sqlalchemy import Column, DateTime, Float, Integer, String
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class Trade(Base):
    __tablename__ = "trades"

    id = Column(Integer, primary_key=True)
    side = Column(String, nullable=False)  # BUY/SELL
    token_id = Column(String, nullable=False, index=True)
    symbol = Column(String, nullable=True)
    amount = Column(Float, nullable=False)  # quote spent (BUY) or received (SELL)
    token_amount = Column(Float, default=0.0, nullable=False)
    held_amount = Column(Float, nullable=True)  # remaining tokens after partial sells (BUY rows)
    profit_tiers = Column(String, nullable=True)  # comma-separated take-profit tiers already sold
    price = Column(Float, nullable=False)
    fee = Column(Float, default=0.0, nullable=False)
    tx_ref = Column(String, nullable=True, index=True)
    running_pnl = Column(Float, default=0.0, nullable=False)
    risk_tier = Column(String, nullable=True)
    status = Column(String, default="OPEN", nullable=False)  # OPEN/SOLD/SELL_FAILED for BUY rows
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class PurchasedToken(Base):
    __tablename__ = "purchased_tokens"

    id = Column(Integer, primary_key=True)
    token_id = Column(String, unique=True, nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
