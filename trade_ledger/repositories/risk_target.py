"""
Risk Target Repository - stop-loss / take-profit levels per asset
"""

from abc import ABC, abstractmethod
from typing import List, Optional
from sqlalchemy.orm import Session
from datetime import datetime
from decimal import Decimal
import uuid
import logging

from trade_ledger.repositories.base import BaseRepository, EntityNotFoundError
from trade_ledger.core.database.schema import RiskTargetORM
from trade_ledger.core.validation import RiskTargetValidator
import trade_ledger.core.models.domain as dm

logger = logging.getLogger(__name__)


class RiskTargetStore(ABC):
    """Read contract consumed by the analysis engine"""

    @abstractmethod
    def list(self, portfolio_id: str) -> List[dm.RiskTarget]:
        """All targets (active and inactive) for a portfolio"""


class RiskTargetRepository(BaseRepository[dm.RiskTarget, RiskTargetORM], RiskTargetStore):
    """Repository for RiskTarget entities"""

    def __init__(self, session: Session):
        super().__init__(session, RiskTargetORM)

    def list(self, portfolio_id: str) -> List[dm.RiskTarget]:
        rows = (
            self.session.query(RiskTargetORM)
            .filter(RiskTargetORM.portfolio_id == portfolio_id)
            .order_by(RiskTargetORM.asset_id.asc())
            .all()
        )
        return [self.to_domain(r) for r in rows]

    def list_active(self, portfolio_id: str) -> List[dm.RiskTarget]:
        return [t for t in self.list(portfolio_id) if t.is_active]

    def get_for_asset(self, portfolio_id: str, asset_id: str) -> Optional[dm.RiskTarget]:
        row = self._get_orm(portfolio_id, asset_id)
        return self.to_domain(row) if row else None

    def set_targets(
        self,
        portfolio_id: str,
        asset_id: str,
        stop_loss: Optional[Decimal] = None,
        take_profit: Optional[Decimal] = None,
        current_price: Optional[Decimal] = None,
    ) -> dm.RiskTarget:
        """
        Create or replace the targets for an asset and (re)activate them.

        Args:
            current_price: When given, stop must sit below and take-profit
                above it.

        Raises:
            RiskTargetValidationError: inconsistent levels
        """
        RiskTargetValidator.ensure_valid(asset_id, stop_loss, take_profit, current_price)

        row = self._get_orm(portfolio_id, asset_id)
        if row is None:
            row = RiskTargetORM(
                id=str(uuid.uuid4()),
                portfolio_id=portfolio_id,
                asset_id=asset_id,
            )
            self.session.add(row)

        row.stop_loss = stop_loss
        row.take_profit = take_profit
        row.is_active = True
        row.updated_at = datetime.utcnow()
        self.flush()

        logger.info(f"Risk targets set for {asset_id}: stop={stop_loss} take={take_profit}")
        return self.to_domain(row)

    def update_targets(
        self,
        portfolio_id: str,
        asset_id: str,
        stop_loss: Optional[Decimal] = None,
        take_profit: Optional[Decimal] = None,
        current_price: Optional[Decimal] = None,
    ) -> dm.RiskTarget:
        """Partial update - unspecified levels keep their stored value"""
        row = self._get_orm(portfolio_id, asset_id)
        if row is None:
            raise EntityNotFoundError(f"Risk targets for asset {asset_id} not found")

        new_stop = stop_loss if stop_loss is not None else row.stop_loss
        new_take = take_profit if take_profit is not None else row.take_profit
        RiskTargetValidator.ensure_valid(asset_id, new_stop, new_take, current_price)

        row.stop_loss = new_stop
        row.take_profit = new_take
        row.updated_at = datetime.utcnow()
        self.flush()
        return self.to_domain(row)

    def deactivate(self, portfolio_id: str, asset_id: str) -> dm.RiskTarget:
        """Stop monitoring an asset; the levels stay on record"""
        row = self._get_orm(portfolio_id, asset_id)
        if row is None:
            raise EntityNotFoundError(f"Risk targets for asset {asset_id} not found")

        row.is_active = False
        row.updated_at = datetime.utcnow()
        self.flush()
        return self.to_domain(row)

    def _get_orm(self, portfolio_id: str, asset_id: str) -> Optional[RiskTargetORM]:
        return (
            self.session.query(RiskTargetORM)
            .filter_by(portfolio_id=portfolio_id, asset_id=asset_id)
            .first()
        )

    def to_domain(self, row: RiskTargetORM) -> dm.RiskTarget:
        """Convert ORM to domain model"""
        return dm.RiskTarget(
            id=row.id,
            portfolio_id=row.portfolio_id,
            asset_id=row.asset_id,
            stop_loss=Decimal(str(row.stop_loss)) if row.stop_loss is not None else None,
            take_profit=Decimal(str(row.take_profit)) if row.take_profit is not None else None,
            is_active=bool(row.is_active),
            created_at=row.created_at,
            updated_at=row.updated_at,
        )
