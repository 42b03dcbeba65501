"""
Validation module for data integrity checks.
"""

from trade_ledger.core.validation.validators import (
    TradeValidator,
    RiskTargetValidator,
)

__all__ = [
    "TradeValidator",
    "RiskTargetValidator",
]
