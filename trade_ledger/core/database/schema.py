"""
Database Schema - SQLAlchemy ORM Models

CRITICAL DESIGN DECISIONS:
1. Only trades and risk targets are persisted; lots, matches and positions
   are recomputed from trades on every query
2. Every trade mutation bumps LedgerVersionORM.version for the portfolio in
   the same transaction - the version keys the analysis cache
3. sequence records insertion order and breaks trade_date ties for FIFO
"""

from sqlalchemy import (
    Column, String, Integer, Numeric, DateTime, Boolean,
    UniqueConstraint, Index, CheckConstraint,
)
from sqlalchemy.orm import declarative_base
from datetime import datetime

Base = declarative_base()


class TradeORM(Base):
    """Executed BUY/SELL trades"""
    __tablename__ = 'trades'

    __table_args__ = (
        Index('idx_trade_portfolio_date', 'portfolio_id', 'trade_date', 'sequence'),
        Index('idx_trade_asset', 'asset_id'),
        CheckConstraint("side IN ('BUY', 'SELL')", name='ck_trade_side'),
        CheckConstraint('quantity > 0', name='ck_trade_quantity_positive'),
        CheckConstraint('price > 0', name='ck_trade_price_positive'),
    )

    id = Column(String(36), primary_key=True)
    portfolio_id = Column(String(36), nullable=False)
    asset_id = Column(String(50), nullable=False)

    side = Column(String(4), nullable=False)
    quantity = Column(Numeric(24, 8), nullable=False)
    price = Column(Numeric(24, 8), nullable=False)
    fee = Column(Numeric(18, 4), nullable=False, default=0)
    tax = Column(Numeric(18, 4), nullable=False, default=0)

    trade_date = Column(DateTime, nullable=False)
    exchange = Column(String(50))
    funding_source = Column(String(100))

    sequence = Column(Integer, nullable=False, default=0)

    # Audit
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class RiskTargetORM(Base):
    """Stop-loss / take-profit per asset per portfolio"""
    __tablename__ = 'risk_targets'

    __table_args__ = (
        UniqueConstraint('portfolio_id', 'asset_id', name='uix_risk_target_asset'),
        Index('idx_risk_target_portfolio', 'portfolio_id'),
    )

    id = Column(String(36), primary_key=True)
    portfolio_id = Column(String(36), nullable=False)
    asset_id = Column(String(50), nullable=False)

    stop_loss = Column(Numeric(24, 8))
    take_profit = Column(Numeric(24, 8))
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class LedgerVersionORM(Base):
    """Monotonic per-portfolio counter bumped on each trade mutation"""
    __tablename__ = 'ledger_versions'

    portfolio_id = Column(String(36), primary_key=True)
    version = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
