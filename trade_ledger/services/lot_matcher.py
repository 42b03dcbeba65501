"""
Lot Matcher - FIFO / LIFO cost-basis matching

Turns a chronological trade sequence into open/closed lots and the matches
that realized P&L:

    BUY  -> push a new lot on the back of the asset's queue
    SELL -> consume lots from the front (FIFO) or the back (LIFO) of the
            queue until the sell quantity is fully allocated

Usage:
    from trade_ledger.services.lot_matcher import LotMatcher

    result = LotMatcher().match(trades)
    result = LotMatcher(matching_method=dm.MatchingMethod.LIFO).match(trades)
    result.lots       # open lots
    result.matches    # realized slices
"""

from collections import deque
from decimal import Decimal
from typing import Deque, Dict, List, Iterable
import logging

import trade_ledger.core.models.domain as dm
from trade_ledger.core.errors import InsufficientLotsError

logger = logging.getLogger(__name__)

# Prorated fee/tax slices are rounded to this step before subtraction
CHARGE_QUANTUM = Decimal('0.00000001')


class LotMatcher:
    """
    FIFO / LIFO lot matcher.

    Pure: the same trade list always yields the same lots and matches.
    Trades are ordered by trade_date with a stable sort, so same-day trades
    keep the order they were passed in (insertion order from the store).
    """

    def __init__(
        self,
        fee_in_cost_basis: bool = False,
        matching_method: dm.MatchingMethod = dm.MatchingMethod.FIFO,
    ):
        """
        Args:
            fee_in_cost_basis: Fold BUY fee and tax into the lot's cost
                price instead of using the bare trade price.
            matching_method: FIFO consumes the oldest open lot first,
                LIFO the newest.
        """
        self.fee_in_cost_basis = fee_in_cost_basis
        self.matching_method = matching_method
        self._lifo = matching_method == dm.MatchingMethod.LIFO

    def match(self, trades: Iterable[dm.Trade]) -> dm.MatchResult:
        """
        Run lot matching over a trade list.

        Raises:
            InsufficientLotsError: a SELL exceeds the open quantity of its
                asset at that point in time. Nothing of that SELL is
                matched; prior_result holds everything before it.
        """
        ordered = sorted(trades, key=lambda t: t.trade_date)

        queues: Dict[str, Deque[dm.Lot]] = {}
        open_qty: Dict[str, Decimal] = {}
        closed: List[dm.Lot] = []
        matches: List[dm.Match] = []

        for trade in ordered:
            if trade.side == dm.TradeSide.BUY:
                lot = self._open_lot(trade)
                queues.setdefault(trade.asset_id, deque()).append(lot)
                open_qty[trade.asset_id] = open_qty.get(trade.asset_id, dm.ZERO) + lot.open_quantity
            elif trade.side == dm.TradeSide.SELL:
                available = open_qty.get(trade.asset_id, dm.ZERO)
                if trade.quantity > available:
                    logger.warning(
                        f"Oversell of {trade.asset_id} by trade {trade.id}: "
                        f"requested {trade.quantity}, available {available}"
                    )
                    raise InsufficientLotsError(
                        asset_id=trade.asset_id,
                        requested=trade.quantity,
                        available=available,
                        trade_id=trade.id,
                        prior_result=_snapshot(queues, closed, matches),
                    )
                queue = queues[trade.asset_id]
                matches.extend(self._consume(trade, queue, closed))
                open_qty[trade.asset_id] = available - trade.quantity
            else:
                raise ValueError(f"Unhandled trade side {trade.side!r}")

        result = _snapshot(queues, closed, matches)
        logger.debug(
            f"Matched {len(ordered)} trades ({self.matching_method.value}): "
            f"{len(result.lots)} open lots, {len(result.closed_lots)} closed lots, "
            f"{len(result.matches)} matches"
        )
        return result

    def _open_lot(self, trade: dm.Trade) -> dm.Lot:
        cost = trade.price
        if self.fee_in_cost_basis and trade.charges:
            cost = trade.total_cost / trade.quantity
        return dm.Lot(
            lot_id=trade.id,
            origin_trade_id=trade.id,
            asset_id=trade.asset_id,
            open_quantity=trade.quantity,
            remaining_quantity=trade.quantity,
            cost_price_per_unit=cost,
            opened_at=trade.trade_date,
        )

    def _consume(
        self,
        sell: dm.Trade,
        queue: Deque[dm.Lot],
        closed: List[dm.Lot],
    ) -> List[dm.Match]:
        """Allocate a SELL across the queue. Caller checked availability."""
        produced: List[dm.Match] = []
        to_allocate = sell.quantity
        charges = sell.charges
        charges_allocated = dm.ZERO

        while to_allocate > 0:
            lot = queue[-1] if self._lifo else queue[0]
            qty = min(to_allocate, lot.remaining_quantity)
            to_allocate -= qty

            # Last slice absorbs the rounding remainder of the proration
            if to_allocate == 0:
                slice_charges = charges - charges_allocated
            else:
                slice_charges = (charges * qty / sell.quantity).quantize(CHARGE_QUANTUM)
            charges_allocated += slice_charges

            cost_basis = qty * lot.cost_price_per_unit
            proceeds = qty * sell.price - slice_charges

            produced.append(dm.Match(
                sell_trade_id=sell.id,
                lot_id=lot.lot_id,
                asset_id=sell.asset_id,
                matched_quantity=qty,
                cost_price_per_unit=lot.cost_price_per_unit,
                sell_price=sell.price,
                cost_basis=cost_basis,
                proceeds=proceeds,
                realized_pl=proceeds - cost_basis,
                trade_date=sell.trade_date,
                opened_at=lot.opened_at,
            ))

            lot.consume(qty)
            if lot.is_closed:
                closed.append(queue.pop() if self._lifo else queue.popleft())

        return produced


def _snapshot(
    queues: Dict[str, Deque[dm.Lot]],
    closed: List[dm.Lot],
    matches: List[dm.Match],
) -> dm.MatchResult:
    """Copy working state into a MatchResult (lots copied, not shared)."""
    open_lots = [
        _copy_lot(lot)
        for asset_id in sorted(queues)
        for lot in queues[asset_id]
    ]
    return dm.MatchResult(
        lots=open_lots,
        closed_lots=[_copy_lot(l) for l in closed],
        matches=list(matches),
    )


def _copy_lot(lot: dm.Lot) -> dm.Lot:
    return dm.Lot(
        lot_id=lot.lot_id,
        origin_trade_id=lot.origin_trade_id,
        asset_id=lot.asset_id,
        open_quantity=lot.open_quantity,
        remaining_quantity=lot.remaining_quantity,
        cost_price_per_unit=lot.cost_price_per_unit,
        opened_at=lot.opened_at,
    )
