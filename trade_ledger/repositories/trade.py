"""
Trade Repository - Data access for trades

The engine only needs the TradeStore contract:
    list(portfolio_id, filters) -> point-in-time list ordered by trade date
    get_version(portfolio_id)   -> counter bumped on every mutation

TradeRepository implements it on SQLAlchemy. Each list() call is one
materialized query, so callers always see a consistent snapshot.
"""

from abc import ABC, abstractmethod
from typing import List, Optional
from sqlalchemy.orm import Session
from datetime import datetime
from decimal import Decimal
import logging

from trade_ledger.repositories.base import BaseRepository, DuplicateEntityError, EntityNotFoundError
from trade_ledger.core.database.schema import TradeORM, LedgerVersionORM
from trade_ledger.core.validation import TradeValidator
import trade_ledger.core.models.domain as dm

logger = logging.getLogger(__name__)


class TradeStore(ABC):
    """Read contract consumed by the analysis engine"""

    @abstractmethod
    def list(self, portfolio_id: str, filters: Optional[dm.TradeFilters] = None) -> List[dm.Trade]:
        """Trades ordered by trade_date, ties by insertion order"""

    @abstractmethod
    def get_version(self, portfolio_id: str) -> int:
        """Ledger version for cache keys"""


class TradeRepository(BaseRepository[dm.Trade, TradeORM], TradeStore):
    """Repository for Trade entities"""

    def __init__(self, session: Session):
        super().__init__(session, TradeORM)

    # =========================================================================
    # Reads
    # =========================================================================

    def list(self, portfolio_id: str, filters: Optional[dm.TradeFilters] = None) -> List[dm.Trade]:
        """
        Point-in-time list of trades for a portfolio

        Args:
            portfolio_id: Portfolio ID
            filters: Optional asset / side / date filters

        Returns:
            Domain trades ordered by (trade_date, sequence)
        """
        query = self.session.query(TradeORM).filter(TradeORM.portfolio_id == portfolio_id)

        if filters:
            if filters.asset_id:
                query = query.filter(TradeORM.asset_id == filters.asset_id)
            if filters.side:
                query = query.filter(TradeORM.side == filters.side.value)
            if filters.start_date:
                query = query.filter(TradeORM.trade_date >= filters.start_date)
            if filters.end_date:
                query = query.filter(TradeORM.trade_date <= filters.end_date)

        rows = query.order_by(TradeORM.trade_date.asc(), TradeORM.sequence.asc()).all()
        return [self.to_domain(r) for r in rows]

    def get_trade(self, trade_id: str) -> Optional[dm.Trade]:
        trade_orm = self.get_by_id(trade_id)
        return self.to_domain(trade_orm) if trade_orm else None

    def get_version(self, portfolio_id: str) -> int:
        row = self.session.query(LedgerVersionORM).filter_by(portfolio_id=portfolio_id).first()
        return row.version if row else 0

    # =========================================================================
    # Mutations (each bumps the ledger version)
    # =========================================================================

    def create_from_domain(self, trade: dm.Trade) -> dm.Trade:
        """
        Validate and persist a new trade

        Raises:
            ValidationError: malformed trade
            DuplicateEntityError: a trade with this id is already stored

        Returns:
            Stored trade with its insertion sequence assigned
        """
        TradeValidator.ensure_valid(trade)
        if self.get_by_id(trade.id) is not None:
            raise DuplicateEntityError(f"Trade {trade.id} already exists")

        version = self._bump_version(trade.portfolio_id)
        trade_orm = self.add(TradeORM(
            id=trade.id,
            portfolio_id=trade.portfolio_id,
            asset_id=trade.asset_id,
            side=trade.side.value,
            quantity=trade.quantity,
            price=trade.price,
            fee=trade.fee,
            tax=trade.tax,
            trade_date=trade.trade_date,
            exchange=trade.exchange,
            funding_source=trade.funding_source,
            sequence=version,
        ))

        logger.info(
            f"Booked {trade.side.value} {trade.quantity} {trade.asset_id} @ {trade.price} "
            f"(portfolio {trade.portfolio_id}, version {version})"
        )
        return self.to_domain(trade_orm)

    def update_from_domain(self, trade: dm.Trade) -> dm.Trade:
        """
        Replace an existing trade's fields. Insertion order is kept.

        Raises:
            ValidationError: malformed trade
            EntityNotFoundError: unknown trade id
        """
        TradeValidator.ensure_valid(trade)

        trade_orm = self.get_by_id(trade.id)
        if trade_orm is None:
            raise EntityNotFoundError(f"Trade {trade.id} not found")

        old_portfolio = trade_orm.portfolio_id

        trade_orm.portfolio_id = trade.portfolio_id
        trade_orm.asset_id = trade.asset_id
        trade_orm.side = trade.side.value
        trade_orm.quantity = trade.quantity
        trade_orm.price = trade.price
        trade_orm.fee = trade.fee
        trade_orm.tax = trade.tax
        trade_orm.trade_date = trade.trade_date
        trade_orm.exchange = trade.exchange
        trade_orm.funding_source = trade.funding_source
        trade_orm.updated_at = datetime.utcnow()

        self._bump_version(trade.portfolio_id)
        if old_portfolio != trade.portfolio_id:
            self._bump_version(old_portfolio)

        self.flush()
        return self.to_domain(trade_orm)

    def delete_trade(self, trade_id: str) -> bool:
        """Delete a trade; returns False if it did not exist"""
        trade_orm = self.get_by_id(trade_id)
        if trade_orm is None:
            return False

        portfolio_id = trade_orm.portfolio_id
        self.delete(trade_orm)
        self._bump_version(portfolio_id)
        logger.info(f"Deleted trade {trade_id} (portfolio {portfolio_id})")
        return True

    def _bump_version(self, portfolio_id: str) -> int:
        row = self.session.query(LedgerVersionORM).filter_by(portfolio_id=portfolio_id).first()
        if row is None:
            row = LedgerVersionORM(portfolio_id=portfolio_id, version=0)
            self.session.add(row)
        row.version = (row.version or 0) + 1
        self.session.flush()
        return row.version

    # =========================================================================
    # Mapping
    # =========================================================================

    def to_domain(self, trade_orm: TradeORM) -> dm.Trade:
        """Convert ORM to domain model"""
        return dm.Trade(
            id=trade_orm.id,
            portfolio_id=trade_orm.portfolio_id,
            asset_id=trade_orm.asset_id,
            side=dm.TradeSide(trade_orm.side),
            quantity=_to_decimal(trade_orm.quantity),
            price=_to_decimal(trade_orm.price),
            fee=_to_decimal(trade_orm.fee),
            tax=_to_decimal(trade_orm.tax),
            trade_date=trade_orm.trade_date,
            exchange=trade_orm.exchange,
            funding_source=trade_orm.funding_source,
            sequence=trade_orm.sequence or 0,
        )


def _to_decimal(value) -> Decimal:
    if value is None:
        return Decimal('0')
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))
