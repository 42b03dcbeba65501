"""
Analysis Service - request-shaped public API of the ledger engine

Every call is stateless: read one point-in-time trade list, re-run FIFO or
LIFO matching over the full history, then derive positions, P&L, risk and alerts.
Only the optional AnalysisCache survives between calls, and it is keyed by
the portfolio's ledger version.

Usage:
    from trade_ledger.core.database.session import session_scope
    from trade_ledger.repositories.trade import TradeRepository
    from trade_ledger.repositories.risk_target import RiskTargetRepository
    from trade_ledger.services.analysis_service import AnalysisService

    with session_scope() as session:
        svc = AnalysisService(
            TradeRepository(session),
            price_provider=StaticPriceProvider({'AAPL': '190'}),
            risk_target_store=RiskTargetRepository(session),
        )
        report = svc.get_analysis(portfolio_id, '3M', 'weekly')
        alerts = svc.monitor_risk_targets(portfolio_id)
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Type, Union
import logging

from trade_ledger.config.analytics_config_loader import AnalyticsConfig, get_analytics_config
from trade_ledger.core.errors import PriceProviderError, ValidationError
from trade_ledger.core.validation import TradeValidator
from trade_ledger.repositories.trade import TradeStore
from trade_ledger.repositories.risk_target import RiskTargetStore
from trade_ledger.services.analysis_cache import AnalysisCache
from trade_ledger.services.lot_matcher import LotMatcher
from trade_ledger.services.market_data import MarketPriceProvider, normalize_prices
from trade_ledger.services.pnl_aggregator import PnLAggregator
from trade_ledger.services.position_calculator import PositionCalculator
from trade_ledger.services.risk_metrics_engine import RiskMetricsEngine
from trade_ledger.services.risk_target_monitor import RiskTargetMonitor
import trade_ledger.core.models.domain as dm

logger = logging.getLogger(__name__)

PriceMap = Optional[Mapping[str, object]]


class AnalysisService:
    """
    Facade over matcher, calculators and monitors.

    Args:
        trade_store: TradeStore read contract (list + get_version)
        price_provider: Optional MarketPriceProvider for live prices
        risk_target_store: Optional RiskTargetStore; without it there are
            no alerts and the risk summary is empty
        config: AnalyticsConfig (global YAML config when omitted)
        cache: Optional AnalysisCache for get_analysis()
    """

    def __init__(
        self,
        trade_store: TradeStore,
        price_provider: Optional[MarketPriceProvider] = None,
        risk_target_store: Optional[RiskTargetStore] = None,
        config: Optional[AnalyticsConfig] = None,
        cache: Optional[AnalysisCache] = None,
    ):
        self.trade_store = trade_store
        self.price_provider = price_provider
        self.risk_target_store = risk_target_store
        self.config = config or get_analytics_config()
        self.cache = cache

        self.matcher = LotMatcher(
            fee_in_cost_basis=self.config.ledger.fee_in_cost_basis,
            matching_method=self.config.ledger.matching_method,
        )
        self.position_calculator = PositionCalculator()
        self.aggregator = PnLAggregator(top_trades_count=self.config.ranking.top_trades_count)
        self.risk_engine = RiskMetricsEngine(self.config.risk)
        self.target_monitor = RiskTargetMonitor(self.config.risk_targets)

    # =========================================================================
    # Analysis
    # =========================================================================

    def get_analysis(
        self,
        portfolio_id: str,
        timeframe: Union[dm.Timeframe, str] = dm.Timeframe.ALL,
        granularity: Union[dm.Granularity, str] = dm.Granularity.MONTHLY,
        as_of: Optional[datetime] = None,
        market_prices: PriceMap = None,
    ) -> dm.AnalysisReport:
        """
        Full analysis report for a portfolio.

        Matching runs over every trade up to as_of; the timeframe only
        filters what is reported.

        Raises:
            ValidationError: unknown timeframe / granularity
            InsufficientLotsError: the stored history oversells an asset
        """
        tf = _coerce(dm.Timeframe, timeframe, 'timeframe')
        gran = _coerce(dm.Granularity, granularity, 'granularity')
        # Reports for "now" share a cache entry for the rest of the day
        key_as_of = as_of or _start_of_day(datetime.utcnow())
        version = self.trade_store.get_version(portfolio_id)

        key = None
        if self.cache is not None and self.price_provider is None:
            # Prices are fully caller-supplied, so the key is known before any work
            key = AnalysisCache.make_key(
                portfolio_id, tf, gran, key_as_of, _supplied_prices(market_prices), version,
            )
            cached = self._cached(key)
            if cached is not None:
                return cached

        as_of = as_of or datetime.utcnow()
        window = tf.window(as_of)
        trades = self._load_trades(portfolio_id, as_of)
        prices = self._resolve_prices(sorted({t.asset_id for t in trades}), market_prices)

        if self.cache is not None and key is None:
            key = AnalysisCache.make_key(portfolio_id, tf, gran, key_as_of, prices, version)
            cached = self._cached(key)
            if cached is not None:
                return cached

        result = self.matcher.match(trades)
        positions = self.position_calculator.compute_positions(result.lots, prices, result.matches)
        agg = self.aggregator.aggregate(
            result.matches, positions, gran, window,
            trades=trades, lots=result.all_lots,
        )
        risk = self.risk_engine.compute_risk(agg.pnl_series, gran, _portfolio_value(positions))

        report = dm.AnalysisReport(
            portfolio_id=portfolio_id,
            timeframe=tf,
            granularity=gran,
            window=window,
            pnl_summary=agg.pnl_summary,
            statistics=agg.statistics,
            risk_metrics=risk,
            monthly_performance=agg.monthly_performance,
            asset_performance=agg.asset_performance,
            top_trades=agg.top_trades,
            worst_trades=agg.worst_trades,
            positions=positions,
            missing_price_assets=[p.asset_id for p in positions if p.price_missing],
            ledger_version=version,
        )

        logger.info(
            f"Analysis for portfolio {portfolio_id} ({tf.value}/{gran.value}): "
            f"{len(trades)} trades, realized ${report.pnl_summary.total_realized_pnl:,.2f}, "
            f"unrealized ${report.pnl_summary.total_unrealized_pnl:,.2f}"
        )

        if key is not None:
            self.cache.put(key, report)
        return report

    # =========================================================================
    # Positions
    # =========================================================================

    def get_positions(self, portfolio_id: str, market_prices: PriceMap = None) -> List[dm.Position]:
        """Open positions sorted by asset_id."""
        result = self.matcher.match(self.trade_store.list(portfolio_id))
        prices = self._resolve_prices(_open_assets(result.lots), market_prices)
        return self.position_calculator.compute_positions(result.lots, prices, result.matches)

    def get_position_by_asset(
        self,
        portfolio_id: str,
        asset_id: str,
        market_price=None,
    ) -> dm.Position:
        """Single position; zero quantity when the asset has no open lots."""
        result = self.matcher.match(self.trade_store.list(portfolio_id))
        supplied = {asset_id: market_price} if market_price is not None else None
        prices = self._resolve_prices([asset_id], supplied)
        return self.position_calculator.compute_position(
            result.lots, asset_id, prices.get(asset_id), result.matches,
        )

    # =========================================================================
    # Risk targets
    # =========================================================================

    def monitor_risk_targets(self, portfolio_id: str, market_prices: PriceMap = None) -> List[dm.Alert]:
        """Triggered and near-trigger alerts, triggered first."""
        targets = self._load_targets(portfolio_id)
        if not targets:
            return []
        positions = self.get_positions(portfolio_id, market_prices)
        return self.target_monitor.evaluate(positions, targets)

    def get_risk_summary(self, portfolio_id: str, market_prices: PriceMap = None) -> dm.RiskSummary:
        targets = self._load_targets(portfolio_id)
        if not targets:
            return dm.RiskSummary()
        positions = self.get_positions(portfolio_id, market_prices)
        alerts = self.target_monitor.evaluate(positions, targets)
        assessments = self.target_monitor.assess(positions, targets)
        return self.target_monitor.summarize(targets, alerts, assessments)

    # =========================================================================
    # Mutations
    # =========================================================================

    def process_trade(self, trade: dm.Trade) -> dm.MatchResult:
        """
        Re-run matching for the trade's portfolio with `trade` applied.

        The trade replaces a stored trade with the same id (keeping its
        position in insertion order) or is appended as the newest trade.
        Persisting is up to the caller; the portfolio's cached reports are
        dropped either way.

        Raises:
            ValidationError: malformed trade
            InsufficientLotsError: the trade (or a later SELL) oversells
        """
        TradeValidator.ensure_valid(trade)

        trades = self.trade_store.list(trade.portfolio_id)
        replaced = False
        for i, existing in enumerate(trades):
            if existing.id == trade.id:
                trades[i] = trade
                replaced = True
                break
        if not replaced:
            trades.append(trade)

        if self.cache is not None:
            self.cache.invalidate(trade.portfolio_id)

        result = self.matcher.match(trades)
        logger.info(
            f"{'Replaced' if replaced else 'Applied'} trade {trade.id} "
            f"({trade.side.value} {trade.quantity} {trade.asset_id}): "
            f"{len(result.matches_for(trade.id))} matches, {len(result.lots)} open lots"
        )
        return result

    # =========================================================================
    # Helpers
    # =========================================================================

    def _load_trades(self, portfolio_id: str, as_of: datetime) -> List[dm.Trade]:
        return self.trade_store.list(portfolio_id, dm.TradeFilters(end_date=as_of))

    def _cached(self, key) -> Optional[dm.AnalysisReport]:
        report = self.cache.get(key)
        if report is not None:
            logger.debug(f"Analysis cache hit for portfolio {key.portfolio_id} (version {key.version})")
        return report

    def _load_targets(self, portfolio_id: str) -> List[dm.RiskTarget]:
        if self.risk_target_store is None:
            return []
        return self.risk_target_store.list(portfolio_id)

    def _resolve_prices(self, asset_ids: Iterable[str], supplied: PriceMap) -> Dict[str, Decimal]:
        """
        Caller-supplied prices win; the provider fills the gaps.

        A failing provider is logged and treated as "no prices".
        """
        prices = _supplied_prices(supplied)
        wanted = [a for a in asset_ids if a not in prices]
        if not wanted or self.price_provider is None:
            return prices

        try:
            fetched = normalize_prices(self.price_provider.get(wanted))
        except PriceProviderError as e:
            logger.warning(f"Price lookup failed for {len(wanted)} assets, continuing without: {e}")
            return prices

        for asset_id in wanted:
            if asset_id in fetched:
                prices[asset_id] = fetched[asset_id]
        return prices


def _open_assets(lots: Iterable[dm.Lot]) -> List[str]:
    return sorted({l.asset_id for l in lots if l.remaining_quantity > 0})


def _supplied_prices(market_prices: PriceMap) -> Dict[str, Decimal]:
    return normalize_prices(market_prices) if market_prices else {}


def _start_of_day(when: datetime) -> datetime:
    return when.replace(hour=0, minute=0, second=0, microsecond=0)


def _portfolio_value(positions: Iterable[dm.Position]) -> Decimal:
    """Market value, falling back to cost basis where the price is missing."""
    return sum(
        (p.market_value if p.market_value is not None else p.total_cost for p in positions),
        dm.ZERO,
    )


def _coerce(enum_cls: Type[Enum], value, field_name: str):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ', '.join(e.value for e in enum_cls)
        raise ValidationError(f"Unknown {field_name} {value!r} (expected one of {allowed})", field=field_name)
