"""
Data Validation - Ensure data integrity

Validates trades before they reach the matcher and risk targets before
they are stored.
"""

import logging
from typing import Iterable, List, Optional, Tuple
from decimal import Decimal

import trade_ledger.core.models.domain as dm
from trade_ledger.core.errors import ValidationError, RiskTargetValidationError

logger = logging.getLogger(__name__)


class TradeValidator:
    """Validate trade data"""

    @staticmethod
    def validate_trade(trade: dm.Trade) -> Tuple[bool, List[str]]:
        """
        Validate a single trade

        Returns:
            (is_valid, list_of_errors)
        """
        errors = []

        if not trade.id:
            errors.append("Missing trade id")
        if not trade.portfolio_id:
            errors.append("Missing portfolio id")
        if not trade.asset_id:
            errors.append("Missing asset id")
        if trade.trade_date is None:
            errors.append("Missing trade date")

        if not isinstance(trade.side, dm.TradeSide):
            errors.append(f"Unknown trade side {trade.side!r}")

        # Quantity / price must be strictly positive, charges non-negative
        for name in ('quantity', 'price'):
            value = getattr(trade, name)
            if not isinstance(value, Decimal):
                errors.append(f"{name} must be Decimal, got {type(value).__name__}")
            elif not value.is_finite() or value <= 0:
                errors.append(f"{name} must be positive, got {value}")

        for name in ('fee', 'tax'):
            value = getattr(trade, name)
            if not isinstance(value, Decimal):
                errors.append(f"{name} must be Decimal, got {type(value).__name__}")
            elif not value.is_finite() or value < 0:
                errors.append(f"{name} must not be negative, got {value}")

        return (len(errors) == 0, errors)

    @classmethod
    def ensure_valid(cls, trade: dm.Trade) -> dm.Trade:
        """Raise ValidationError if the trade is malformed."""
        is_valid, errors = cls.validate_trade(trade)
        if not is_valid:
            logger.warning(f"Rejected trade {trade.id}: {errors}")
            raise ValidationError("; ".join(errors), trade_id=trade.id, field=_first_field(errors))
        return trade

    @classmethod
    def ensure_all_valid(cls, trades: Iterable[dm.Trade]) -> List[dm.Trade]:
        return [cls.ensure_valid(t) for t in trades]


def _first_field(errors: List[str]) -> Optional[str]:
    for name in ('quantity', 'price', 'fee', 'tax'):
        if any(e.startswith(name) for e in errors):
            return name
    return None


class RiskTargetValidator:
    """Validate stop-loss / take-profit levels against the current price"""

    @staticmethod
    def validate_targets(
        stop_loss: Optional[Decimal],
        take_profit: Optional[Decimal],
        current_price: Optional[Decimal] = None,
    ) -> Tuple[bool, List[str]]:
        errors = []

        if stop_loss is None and take_profit is None:
            errors.append("At least one of stop loss or take profit must be set")

        if stop_loss is not None and stop_loss <= 0:
            errors.append("Stop loss must be positive")
        if take_profit is not None and take_profit <= 0:
            errors.append("Take profit must be positive")

        if stop_loss is not None and take_profit is not None and stop_loss >= take_profit:
            errors.append("Stop loss must be below take profit")

        if current_price is not None:
            if stop_loss is not None and stop_loss >= current_price:
                errors.append("Stop loss must be below the current price")
            if take_profit is not None and take_profit <= current_price:
                errors.append("Take profit must be above the current price")

        return (len(errors) == 0, errors)

    @classmethod
    def ensure_valid(
        cls,
        asset_id: str,
        stop_loss: Optional[Decimal],
        take_profit: Optional[Decimal],
        current_price: Optional[Decimal] = None,
    ) -> None:
        is_valid, errors = cls.validate_targets(stop_loss, take_profit, current_price)
        if not is_valid:
            raise RiskTargetValidationError(asset_id, errors)
