"""
P&L Aggregator - summaries, period buckets, per-asset breakdown, rankings

Consumes the output of the LotMatcher and PositionCalculator and produces
everything an analysis report shows except the risk statistics:

    - P&L summary (realized / unrealized / win rate)
    - Trade statistics (volume, fees, avg win/loss, profit factor)
    - Period performance (daily / weekly / monthly buckets)
    - Asset performance
    - Top / worst matches
    - P&L series for the RiskMetricsEngine

Matching always runs over the full history, so callers pass ALL matches,
lots and trades. The window only decides which of them are reported.

Usage:
    aggregator = PnLAggregator(top_trades_count=5)
    agg = aggregator.aggregate(
        result.matches, positions, dm.Granularity.MONTHLY, window,
        trades=trades, lots=result.all_lots,
    )
    print(agg.pnl_summary.total_pnl)
"""

from bisect import bisect_right
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence, Tuple
import logging

import trade_ledger.core.models.domain as dm

logger = logging.getLogger(__name__)

_TICK = timedelta(microseconds=1)


class PnLAggregator:
    """Stateless aggregation over matches, positions, trades and lots."""

    def __init__(self, top_trades_count: int = 5):
        self.top_trades_count = top_trades_count

    def aggregate(
        self,
        matches: Sequence[dm.Match],
        positions: Sequence[dm.Position],
        granularity: dm.Granularity,
        window: dm.TimeWindow,
        trades: Sequence[dm.Trade] = (),
        lots: Sequence[dm.Lot] = (),
    ) -> dm.PnLAggregation:
        """
        Build the full aggregation. Empty inputs give a zero-valued result.

        Args:
            matches: All matches (full history)
            positions: Current open positions
            granularity: Bucket size for period performance
            window: Reporting window; matches count by SELL date
            trades: All trades (statistics, volume, historical prices)
            lots: All lots, open and closed (historical unrealized P&L)
        """
        in_window = [m for m in matches if window.contains(m.trade_date)]
        window_trades = [t for t in trades if window.contains(t.trade_date)]

        agg = dm.PnLAggregation()
        agg.pnl_summary = self._summary(in_window, positions)
        agg.statistics = self._statistics(in_window, window_trades)
        agg.asset_performance = self._asset_performance(in_window, positions, window_trades)
        agg.top_trades, agg.worst_trades = self._rank(in_window)

        timeline = _Timeline(matches, trades, lots)
        agg.monthly_performance, agg.pnl_series = self._periods(
            in_window, positions, granularity, window, timeline,
        )
        return agg

    # =========================================================================
    # Summary & statistics
    # =========================================================================

    def _summary(self, matches: List[dm.Match], positions: Sequence[dm.Position]) -> dm.PnLSummary:
        s = dm.PnLSummary()
        s.total_realized_pnl = sum((m.realized_pl for m in matches), dm.ZERO)
        s.total_unrealized_pnl = sum((p.unrealized_pl or dm.ZERO for p in positions), dm.ZERO)
        s.total_pnl = s.total_realized_pnl + s.total_unrealized_pnl

        s.total_matches = len(matches)
        s.winning_matches = sum(1 for m in matches if m.realized_pl > 0)
        s.losing_matches = sum(1 for m in matches if m.realized_pl < 0)
        if s.total_matches:
            s.win_rate = s.winning_matches / s.total_matches * 100

        s.total_cost_basis = sum((p.total_cost for p in positions), dm.ZERO)
        s.total_market_value = sum(
            (p.market_value for p in positions if p.market_value is not None), dm.ZERO
        )
        return s

    def _statistics(self, matches: List[dm.Match], trades: List[dm.Trade]) -> dm.TradeStatistics:
        st = dm.TradeStatistics()
        st.total_trades = len(trades)
        st.buy_trades = sum(1 for t in trades if t.is_buy)
        st.sell_trades = sum(1 for t in trades if t.is_sell)
        st.total_volume = sum((t.gross_value for t in trades), dm.ZERO)
        st.total_fees = sum((t.fee for t in trades), dm.ZERO)
        st.total_taxes = sum((t.tax for t in trades), dm.ZERO)

        if not matches:
            return st

        pnl_values = [m.realized_pl for m in matches]
        wins = [p for p in pnl_values if p > 0]
        losses = [p for p in pnl_values if p < 0]

        total_wins = sum(wins, dm.ZERO)
        total_losses = sum(losses, dm.ZERO)

        st.avg_win = total_wins / len(wins) if wins else dm.ZERO
        st.avg_loss = total_losses / len(losses) if losses else dm.ZERO
        st.biggest_win = max(wins) if wins else dm.ZERO
        st.biggest_loss = min(losses) if losses else dm.ZERO

        if total_losses != 0:
            st.profit_factor = float(abs(total_wins / total_losses))

        st.expectancy = sum(pnl_values, dm.ZERO) / len(pnl_values)
        return st

    # =========================================================================
    # Per-asset & rankings
    # =========================================================================

    def _asset_performance(
        self,
        matches: List[dm.Match],
        positions: Sequence[dm.Position],
        trades: List[dm.Trade],
    ) -> List[dm.AssetPerformance]:
        by_position = {p.asset_id: p for p in positions}
        matches_by_asset: Dict[str, List[dm.Match]] = {}
        for m in matches:
            matches_by_asset.setdefault(m.asset_id, []).append(m)

        volume: Dict[str, Decimal] = {}
        for t in trades:
            volume[t.asset_id] = volume.get(t.asset_id, dm.ZERO) + t.gross_value

        rows = []
        for asset_id in sorted(set(matches_by_asset) | set(by_position)):
            asset_matches = matches_by_asset.get(asset_id, [])
            position = by_position.get(asset_id)

            realized = sum((m.realized_pl for m in asset_matches), dm.ZERO)
            unrealized = (position.unrealized_pl or dm.ZERO) if position else dm.ZERO
            winners = sum(1 for m in asset_matches if m.realized_pl > 0)

            rows.append(dm.AssetPerformance(
                asset_id=asset_id,
                total_pl=realized + unrealized,
                realized_pl=realized,
                unrealized_pl=unrealized,
                trades_count=len(asset_matches),
                win_rate=winners / len(asset_matches) * 100 if asset_matches else 0.0,
                total_volume=volume.get(asset_id, dm.ZERO),
                quantity=position.quantity if position else dm.ZERO,
                avg_cost=position.avg_cost if position else dm.ZERO,
                market_value=position.market_value if position else None,
            ))

        # Best performers first; asset_id keeps equal totals deterministic
        rows.sort(key=lambda a: a.total_pl, reverse=True)
        return rows

    def _rank(self, matches: List[dm.Match]) -> Tuple[List[dm.Match], List[dm.Match]]:
        """Top/worst by realized P&L; equal P&L -> most recent SELL first."""
        recent_first = sorted(matches, key=lambda m: m.trade_date, reverse=True)
        n = self.top_trades_count
        top = sorted(recent_first, key=lambda m: m.realized_pl, reverse=True)[:n]
        worst = sorted(recent_first, key=lambda m: m.realized_pl)[:n]
        return top, worst

    # =========================================================================
    # Period buckets
    # =========================================================================

    def _periods(
        self,
        matches: List[dm.Match],
        positions: Sequence[dm.Position],
        granularity: dm.Granularity,
        window: dm.TimeWindow,
        timeline: '_Timeline',
    ) -> Tuple[List[dm.PeriodPerformance], List[dm.PnLPoint]]:
        if timeline.first_event is None:
            return [], []

        first = window.start or timeline.first_event
        last = window.end or timeline.last_event
        if last < first:
            return [], []

        current_unrealized = sum((p.unrealized_pl or dm.ZERO for p in positions), dm.ZERO)

        periods: List[dm.PeriodPerformance] = []
        series: List[dm.PnLPoint] = []
        cumulative_realized = dm.ZERO
        cumulative_pnl = dm.ZERO
        prev_unrealized = timeline.unrealized_at(first - _TICK)

        start = bucket_start(first, granularity)
        while start <= last:
            next_start = next_bucket(start, granularity)
            is_last = next_start > last
            end = last if is_last else next_start - _TICK

            bucket = [m for m in matches if start <= m.trade_date < next_start]
            realized = sum((m.realized_pl for m in bucket), dm.ZERO)
            cumulative_realized += realized

            unrealized = current_unrealized if is_last else timeline.unrealized_at(end)

            period = dm.PeriodPerformance(
                period_start=start,
                period_end=end,
                label=bucket_label(start, granularity),
                realized_pnl=realized,
                unrealized_pnl=unrealized,
                cumulative_realized_pnl=cumulative_realized,
                capital_base=timeline.cost_basis_at(start - _TICK),
                trades_count=len(bucket),
                winning_trades=sum(1 for m in bucket if m.realized_pl > 0),
                volume=sum((m.gross_proceeds for m in bucket), dm.ZERO),
            )
            periods.append(period)

            period_pnl = realized + unrealized - prev_unrealized
            cumulative_pnl += period_pnl
            series.append(dm.PnLPoint(
                date=start,
                pnl=period_pnl,
                cumulative_pnl=cumulative_pnl,
                capital_base=period.capital_base,
            ))

            prev_unrealized = unrealized
            start = next_start

        logger.debug(f"Built {len(periods)} {granularity.value} periods from {first} to {last}")
        return periods, series


# =============================================================================
# Bucket helpers
# =============================================================================

def bucket_start(when: datetime, granularity: dm.Granularity) -> datetime:
    """Start of the bucket containing `when` (weeks start on Monday)."""
    day = when.replace(hour=0, minute=0, second=0, microsecond=0)
    if granularity == dm.Granularity.DAILY:
        return day
    if granularity == dm.Granularity.WEEKLY:
        return day - timedelta(days=day.weekday())
    return day.replace(day=1)


def next_bucket(start: datetime, granularity: dm.Granularity) -> datetime:
    if granularity == dm.Granularity.DAILY:
        return start + timedelta(days=1)
    if granularity == dm.Granularity.WEEKLY:
        return start + timedelta(days=7)
    if start.month == 12:
        return start.replace(year=start.year + 1, month=1)
    return start.replace(month=start.month + 1)


def bucket_label(start: datetime, granularity: dm.Granularity) -> str:
    if granularity == dm.Granularity.DAILY:
        return start.strftime('%Y-%m-%d')
    if granularity == dm.Granularity.WEEKLY:
        year, week, _ = start.isocalendar()
        return f"{year}-W{week:02d}"
    return start.strftime('%Y-%m')


# =============================================================================
# Point-in-time ledger state
# =============================================================================

class _Timeline:
    """
    Replays lots and matches to answer "what was open at instant T".

    Historical marks use the last traded price of the asset on or before T
    (BUY and SELL prices alike).
    """

    def __init__(
        self,
        matches: Sequence[dm.Match],
        trades: Sequence[dm.Trade],
        lots: Sequence[dm.Lot],
    ):
        self.lots = list(lots)

        self._consumed: Dict[str, List[Tuple[datetime, Decimal]]] = {}
        for m in matches:
            self._consumed.setdefault(m.lot_id, []).append((m.trade_date, m.matched_quantity))

        events: Dict[str, List[Tuple[datetime, Decimal]]] = {}
        if trades:
            for t in sorted(trades, key=lambda t: t.trade_date):
                events.setdefault(t.asset_id, []).append((t.trade_date, t.price))
        else:
            raw = [(l.asset_id, l.opened_at, l.cost_price_per_unit) for l in self.lots]
            raw += [(m.asset_id, m.trade_date, m.sell_price) for m in matches]
            for asset_id, when, price in sorted(raw, key=lambda e: e[1]):
                events.setdefault(asset_id, []).append((when, price))

        self._price_dates = {a: [d for d, _ in ev] for a, ev in events.items()}
        self._prices = {a: [p for _, p in ev] for a, ev in events.items()}

        dates = [d for ds in self._price_dates.values() for d in ds]
        dates += [l.opened_at for l in self.lots]
        self.first_event: Optional[datetime] = min(dates) if dates else None
        self.last_event: Optional[datetime] = max(dates) if dates else None

    def price_at(self, asset_id: str, when: datetime) -> Optional[Decimal]:
        dates = self._price_dates.get(asset_id)
        if not dates:
            return None
        idx = bisect_right(dates, when)
        return self._prices[asset_id][idx - 1] if idx else None

    def open_at(self, when: datetime) -> Iterable[Tuple[dm.Lot, Decimal]]:
        """(lot, remaining quantity) for every lot open at `when`."""
        for lot in self.lots:
            if lot.opened_at > when:
                continue
            consumed = sum(
                (q for d, q in self._consumed.get(lot.lot_id, ()) if d <= when), dm.ZERO
            )
            remaining = lot.open_quantity - consumed
            if remaining > 0:
                yield lot, remaining

    def cost_basis_at(self, when: datetime) -> Decimal:
        return sum((qty * lot.cost_price_per_unit for lot, qty in self.open_at(when)), dm.ZERO)

    def unrealized_at(self, when: datetime) -> Decimal:
        total = dm.ZERO
        for lot, qty in self.open_at(when):
            price = self.price_at(lot.asset_id, when)
            if price is not None:
                total += qty * (price - lot.cost_price_per_unit)
        return total
