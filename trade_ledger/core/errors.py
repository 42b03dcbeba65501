"""
Ledger exceptions.

Structural errors (ValidationError, InsufficientLotsError) carry the
offending identifiers and are surfaced to callers as-is. They indicate a
data-integrity problem and are never retried.
"""

from decimal import Decimal
from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from trade_ledger.core.models.domain import MatchResult


class LedgerError(Exception):
    """Base class for trade ledger errors"""
    pass


class ValidationError(LedgerError):
    """Malformed trade - rejected before it reaches the matcher"""

    def __init__(self, message: str, trade_id: Optional[str] = None, field: Optional[str] = None):
        super().__init__(message)
        self.trade_id = trade_id
        self.field = field


class InsufficientLotsError(LedgerError):
    """
    SELL quantity exceeds the open lot quantity for the asset.

    prior_result holds the lots/matches produced by the trades processed
    before the offending SELL; those stay valid.
    """

    def __init__(
        self,
        asset_id: str,
        requested: Decimal,
        available: Decimal,
        trade_id: Optional[str] = None,
        prior_result: Optional['MatchResult'] = None,
    ):
        super().__init__(
            f"Insufficient lots for {asset_id}: requested {requested}, "
            f"available {available} (trade {trade_id})"
        )
        self.asset_id = asset_id
        self.requested = requested
        self.available = available
        self.trade_id = trade_id
        self.prior_result = prior_result


class RiskTargetValidationError(LedgerError):
    """Stop-loss / take-profit levels inconsistent with the current price"""

    def __init__(self, asset_id: str, errors):
        super().__init__(f"Invalid risk targets for {asset_id}: {', '.join(errors)}")
        self.asset_id = asset_id
        self.errors = list(errors)


class PriceProviderError(LedgerError):
    """Market price lookup failed (timeout, upstream error)"""
    pass
