"""
Test Fixtures - Shared across all unit tests.

Provides:
- In-memory SQLite database (fresh per test)
- Trade factory with known dates and prices
- In-memory TradeStore / RiskTargetStore for service tests
- Default analytics config (no YAML lookup)
"""

import pytest
from decimal import Decimal
from datetime import datetime, timedelta
from typing import List, Optional
import uuid

from trade_ledger.config.analytics_config_loader import AnalyticsConfig
from trade_ledger.core.database.session import create_test_database
from trade_ledger.repositories.trade import TradeStore
from trade_ledger.repositories.risk_target import RiskTargetStore
import trade_ledger.core.models.domain as dm


# =============================================================================
# Known constants for deterministic tests
# =============================================================================

KNOWN_PORTFOLIO_ID = 'pf-test'
KNOWN_START = datetime(2024, 1, 2, 10, 0, 0)
KNOWN_AS_OF = datetime(2024, 6, 28, 16, 0, 0)


# =============================================================================
# Database fixtures
# =============================================================================

@pytest.fixture
def db_manager():
    """Create a fresh in-memory SQLite database for each test."""
    return create_test_database()


@pytest.fixture
def session(db_manager):
    """Yield a session from the in-memory database, auto-commits on success."""
    with db_manager.session_scope() as s:
        yield s


# =============================================================================
# Domain object fixtures
# =============================================================================

@pytest.fixture
def portfolio_id():
    return KNOWN_PORTFOLIO_ID


@pytest.fixture
def as_of():
    return KNOWN_AS_OF


@pytest.fixture
def make_trade():
    """
    Factory for trades. `day` is an offset from 2024-01-02 10:00.

    Usage:
        buy = make_trade('BUY', 10, 100)
        sell = make_trade('SELL', 10, 120, day=5, fee='1.50')
    """
    def _make(side, quantity, price, day: int = 0, asset_id: str = 'AAPL',
              fee='0', tax='0', trade_id: Optional[str] = None,
              portfolio_id: str = KNOWN_PORTFOLIO_ID) -> dm.Trade:
        return dm.Trade(
            id=trade_id or str(uuid.uuid4()),
            portfolio_id=portfolio_id,
            asset_id=asset_id,
            side=dm.TradeSide(side),
            quantity=Decimal(str(quantity)),
            price=Decimal(str(price)),
            fee=Decimal(str(fee)),
            tax=Decimal(str(tax)),
            trade_date=KNOWN_START + timedelta(days=day),
        )
    return _make


@pytest.fixture
def analytics_config():
    """Shipped defaults without touching the filesystem."""
    return AnalyticsConfig()


# =============================================================================
# In-memory stores
# =============================================================================

class InMemoryTradeStore(TradeStore):
    """TradeStore over a plain list; every add bumps the version."""

    def __init__(self, trades: Optional[List[dm.Trade]] = None):
        self.trades: List[dm.Trade] = list(trades or [])
        self.version = len(self.trades)
        self.list_calls = 0

    def add(self, trade: dm.Trade) -> None:
        self.trades.append(trade)
        self.version += 1

    def list(self, portfolio_id, filters=None):
        self.list_calls += 1
        rows = [t for t in self.trades if t.portfolio_id == portfolio_id]
        if filters and filters.end_date:
            rows = [t for t in rows if t.trade_date <= filters.end_date]
        return sorted(rows, key=lambda t: t.trade_date)

    def get_version(self, portfolio_id):
        return self.version


class InMemoryRiskTargetStore(RiskTargetStore):
    def __init__(self, targets: Optional[List[dm.RiskTarget]] = None):
        self.targets = list(targets or [])

    def list(self, portfolio_id):
        return [t for t in self.targets if t.portfolio_id == portfolio_id]


@pytest.fixture
def trade_store():
    return InMemoryTradeStore()


@pytest.fixture
def risk_target_store():
    return InMemoryRiskTargetStore()
