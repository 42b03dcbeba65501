"""
Position Calculator - open positions from lots + market prices

A position is never stored. It is recomputed from the open lots each time:

    quantity  = sum(remaining)
    avg_cost  = sum(remaining * cost) / sum(remaining)
    market    = quantity * price            (None when price unknown)
    unrealized = market - total_cost

Usage:
    calc = PositionCalculator()
    positions = calc.compute_positions(result.lots, {'AAPL': Decimal('190')}, result.matches)
"""

from decimal import Decimal
from typing import Dict, Iterable, List, Mapping, Optional
import logging

import trade_ledger.core.models.domain as dm

logger = logging.getLogger(__name__)


class PositionCalculator:
    """Derive Position snapshots; a missing price never raises."""

    def compute_positions(
        self,
        lots: Iterable[dm.Lot],
        market_prices: Mapping[str, Decimal],
        matches: Iterable[dm.Match] = (),
    ) -> List[dm.Position]:
        """
        One position per asset with open quantity, sorted by asset_id.

        Args:
            lots: Lots from a MatchResult (closed lots are ignored)
            market_prices: asset_id -> price; absent assets get price_missing
            matches: Optional matches used to fill realized_pl per asset
        """
        by_asset: Dict[str, List[dm.Lot]] = {}
        for lot in lots:
            if lot.remaining_quantity > 0:
                by_asset.setdefault(lot.asset_id, []).append(lot)

        realized = _realized_by_asset(matches)

        positions = []
        for asset_id in sorted(by_asset):
            positions.append(self._build(
                asset_id,
                by_asset[asset_id],
                market_prices.get(asset_id),
                realized.get(asset_id, dm.ZERO),
            ))

        missing = [p.asset_id for p in positions if p.price_missing]
        if missing:
            logger.warning(f"No market price for {len(missing)} open assets: {', '.join(missing)}")

        return positions

    def compute_position(
        self,
        lots: Iterable[dm.Lot],
        asset_id: str,
        market_price: Optional[Decimal] = None,
        matches: Iterable[dm.Match] = (),
    ) -> dm.Position:
        """Single asset; zero-quantity position when nothing is open."""
        open_lots = [l for l in lots if l.asset_id == asset_id and l.remaining_quantity > 0]
        realized = _realized_by_asset(m for m in matches if m.asset_id == asset_id)
        return self._build(asset_id, open_lots, market_price, realized.get(asset_id, dm.ZERO))

    def _build(
        self,
        asset_id: str,
        open_lots: List[dm.Lot],
        market_price: Optional[Decimal],
        realized_pl: Decimal,
    ) -> dm.Position:
        quantity = sum((l.remaining_quantity for l in open_lots), dm.ZERO)
        total_cost = sum((l.remaining_cost for l in open_lots), dm.ZERO)

        if quantity == 0:
            return dm.Position(
                asset_id=asset_id,
                market_price=market_price,
                realized_pl=realized_pl,
            )

        avg_cost = total_cost / quantity

        if market_price is None:
            return dm.Position(
                asset_id=asset_id,
                quantity=quantity,
                avg_cost=avg_cost,
                total_cost=total_cost,
                realized_pl=realized_pl,
                price_missing=True,
            )

        market_value = quantity * market_price
        unrealized = market_value - total_cost
        unrealized_pct = float(unrealized / total_cost * 100) if total_cost else 0.0

        return dm.Position(
            asset_id=asset_id,
            quantity=quantity,
            avg_cost=avg_cost,
            total_cost=total_cost,
            market_price=market_price,
            market_value=market_value,
            unrealized_pl=unrealized,
            unrealized_pl_pct=unrealized_pct,
            realized_pl=realized_pl,
        )


def _realized_by_asset(matches: Iterable[dm.Match]) -> Dict[str, Decimal]:
    totals: Dict[str, Decimal] = {}
    for m in matches:
        totals[m.asset_id] = totals.get(m.asset_id, dm.ZERO) + m.realized_pl
    return totals
