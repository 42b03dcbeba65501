"""
Ledger Domain Models - Trades, Lots, Matches and derived views

DESIGN PRINCIPLES:
1. Decimal everywhere money or quantity is involved - no float drift
2. Trades are immutable; lots are the only mutable working state
3. Positions, alerts and reports are derived per request, never persisted
4. Side handling is exhaustive via the TradeSide enum

USAGE:
    trade = Trade(
        portfolio_id=portfolio_id,
        asset_id='AAPL',
        side=TradeSide.BUY,
        quantity=Decimal('10'),
        price=Decimal('100'),
        trade_date=datetime(2024, 1, 2),
    )

    result = LotMatcher().match([trade, ...])
    for match in result.matches:
        print(f"{match.asset_id}: realized ${match.realized_pl}")
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import List, Optional, Dict
from decimal import Decimal
import uuid


ZERO = Decimal('0')


# ============================================================================
# Enumerations
# ============================================================================

class TradeSide(Enum):
    BUY = "BUY"
    SELL = "SELL"


class Granularity(Enum):
    """Bucket size for period performance"""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class Timeframe(Enum):
    """Look-back window for an analysis request"""
    ALL = "ALL"
    ONE_MONTH = "1M"
    THREE_MONTHS = "3M"
    SIX_MONTHS = "6M"
    ONE_YEAR = "1Y"

    @property
    def days(self) -> Optional[int]:
        """Window length in calendar days (None = full history)"""
        return _TIMEFRAME_DAYS[self]

    def window(self, as_of: datetime) -> 'TimeWindow':
        """Resolve to a concrete window ending at as_of."""
        if self.days is None:
            return TimeWindow(start=None, end=as_of)
        return TimeWindow(start=as_of - timedelta(days=self.days), end=as_of)


_TIMEFRAME_DAYS = {
    Timeframe.ALL: None,
    Timeframe.ONE_MONTH: 30,
    Timeframe.THREE_MONTHS: 90,
    Timeframe.SIX_MONTHS: 180,
    Timeframe.ONE_YEAR: 365,
}


class AlertType(Enum):
    STOP_LOSS = "stop_loss"
    TAKE_PROFIT = "take_profit"


class AlertStatus(Enum):
    TRIGGERED = "triggered"
    NEAR_TRIGGER = "near_trigger"


class RiskLevel(Enum):
    """Risk classification from the reward/risk ratio"""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class VaRMethod(Enum):
    """VaR calculation methods"""
    HISTORICAL = "historical"          # Empirical quantile of realized returns
    PARAMETRIC = "parametric"          # Assumes normally distributed returns


class MatchingMethod(Enum):
    """Which open lot a SELL consumes first"""
    FIFO = "fifo"                      # Oldest lot first
    LIFO = "lifo"                      # Newest lot first


# ============================================================================
# Value Objects
# ============================================================================

@dataclass(frozen=True)
class TimeWindow:
    """Inclusive [start, end] window. start=None means unbounded."""
    start: Optional[datetime] = None
    end: Optional[datetime] = None

    def contains(self, when: datetime) -> bool:
        if self.start is not None and when < self.start:
            return False
        if self.end is not None and when > self.end:
            return False
        return True


@dataclass(frozen=True)
class TradeFilters:
    """Optional filters accepted by TradeStore.list()"""
    asset_id: Optional[str] = None
    side: Optional[TradeSide] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


# ============================================================================
# Core Entities
# ============================================================================

@dataclass(frozen=True)
class Trade:
    """
    A single executed BUY or SELL.

    Immutable once created. Edits go through the TradeStore, which replaces
    the stored row and bumps the portfolio version.
    """
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    portfolio_id: str = ""
    asset_id: str = ""
    side: TradeSide = TradeSide.BUY
    quantity: Decimal = ZERO
    price: Decimal = ZERO
    fee: Decimal = ZERO
    tax: Decimal = ZERO
    trade_date: datetime = field(default_factory=datetime.utcnow)
    exchange: Optional[str] = None
    funding_source: Optional[str] = None

    # Insertion order within the portfolio (assigned by the store)
    sequence: int = 0

    @property
    def is_buy(self) -> bool:
        return self.side == TradeSide.BUY

    @property
    def is_sell(self) -> bool:
        return self.side == TradeSide.SELL

    @property
    def gross_value(self) -> Decimal:
        return self.quantity * self.price

    @property
    def total_cost(self) -> Decimal:
        """Cash paid for a BUY including fee and tax"""
        return self.gross_value + self.fee + self.tax

    @property
    def charges(self) -> Decimal:
        return self.fee + self.tax


@dataclass
class Lot:
    """
    Unconsumed slice of a BUY trade.

    remaining_quantity is decremented by matches. The lot is closed
    when it reaches zero.
    """
    lot_id: str
    origin_trade_id: str
    asset_id: str
    open_quantity: Decimal
    remaining_quantity: Decimal
    cost_price_per_unit: Decimal
    opened_at: datetime

    @property
    def is_closed(self) -> bool:
        return self.remaining_quantity == 0

    @property
    def remaining_cost(self) -> Decimal:
        return self.remaining_quantity * self.cost_price_per_unit

    def consume(self, quantity: Decimal) -> None:
        if quantity > self.remaining_quantity:
            raise ValueError(
                f"Cannot consume {quantity} from lot {self.lot_id} "
                f"with {self.remaining_quantity} remaining"
            )
        self.remaining_quantity -= quantity


@dataclass(frozen=True)
class Match:
    """Part of a SELL matched against one lot."""
    sell_trade_id: str
    lot_id: str
    asset_id: str
    matched_quantity: Decimal
    cost_price_per_unit: Decimal
    sell_price: Decimal
    cost_basis: Decimal
    proceeds: Decimal
    realized_pl: Decimal
    trade_date: datetime                  # SELL date
    opened_at: Optional[datetime] = None  # lot open date

    @property
    def is_winner(self) -> bool:
        return self.realized_pl > 0

    @property
    def gross_proceeds(self) -> Decimal:
        return self.matched_quantity * self.sell_price

    @property
    def return_pct(self) -> Optional[float]:
        if self.cost_basis == 0:
            return None
        return float(self.realized_pl / self.cost_basis * 100)

    def to_dict(self) -> Dict:
        return {
            'sell_trade_id': self.sell_trade_id,
            'lot_id': self.lot_id,
            'asset_id': self.asset_id,
            'matched_quantity': float(self.matched_quantity),
            'cost_price_per_unit': float(self.cost_price_per_unit),
            'sell_price': float(self.sell_price),
            'cost_basis': float(self.cost_basis),
            'proceeds': float(self.proceeds),
            'realized_pl': float(self.realized_pl),
            'trade_date': self.trade_date.isoformat(),
            'opened_at': self.opened_at.isoformat() if self.opened_at else None,
        }


@dataclass
class MatchResult:
    """Output of a matching run: open lots, closed lots, and matches."""
    lots: List[Lot] = field(default_factory=list)
    closed_lots: List[Lot] = field(default_factory=list)
    matches: List[Match] = field(default_factory=list)

    @property
    def all_lots(self) -> List[Lot]:
        return sorted(self.lots + self.closed_lots, key=lambda l: l.opened_at)

    def open_quantity(self, asset_id: str) -> Decimal:
        return sum(
            (l.remaining_quantity for l in self.lots if l.asset_id == asset_id),
            ZERO,
        )

    def matches_for(self, sell_trade_id: str) -> List[Match]:
        return [m for m in self.matches if m.sell_trade_id == sell_trade_id]


@dataclass(frozen=True)
class Position:
    """
    Open position derived from lots and a market price.

    Never stored. market_value / unrealized_pl are None when the price is
    unknown, with price_missing set.
    """
    asset_id: str
    quantity: Decimal = ZERO
    avg_cost: Decimal = ZERO
    total_cost: Decimal = ZERO
    market_price: Optional[Decimal] = None
    market_value: Optional[Decimal] = None
    unrealized_pl: Optional[Decimal] = None
    unrealized_pl_pct: Optional[float] = None
    realized_pl: Decimal = ZERO
    price_missing: bool = False

    @property
    def is_open(self) -> bool:
        return self.quantity > 0

    @property
    def total_pl(self) -> Decimal:
        return self.realized_pl + (self.unrealized_pl or ZERO)

    def to_dict(self) -> Dict:
        return {
            'asset_id': self.asset_id,
            'quantity': float(self.quantity),
            'avg_cost': float(self.avg_cost),
            'total_cost': float(self.total_cost),
            'market_price': float(self.market_price) if self.market_price is not None else None,
            'market_value': float(self.market_value) if self.market_value is not None else None,
            'unrealized_pl': float(self.unrealized_pl) if self.unrealized_pl is not None else None,
            'unrealized_pl_pct': self.unrealized_pl_pct,
            'realized_pl': float(self.realized_pl),
            'price_missing': self.price_missing,
        }


@dataclass
class RiskTarget:
    """Stop-loss / take-profit thresholds for one asset in a portfolio"""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    portfolio_id: str = ""
    asset_id: str = ""
    stop_loss: Optional[Decimal] = None
    take_profit: Optional[Decimal] = None
    is_active: bool = True
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)

    def stop_loss_distance(self, market_price: Decimal) -> Optional[Decimal]:
        """(market - stop) / market; negative once the stop is breached"""
        if self.stop_loss is None or not market_price:
            return None
        return (market_price - self.stop_loss) / market_price

    def take_profit_distance(self, market_price: Decimal) -> Optional[Decimal]:
        """(take - market) / market; negative once the target is exceeded"""
        if self.take_profit is None or not market_price:
            return None
        return (self.take_profit - market_price) / market_price


@dataclass(frozen=True)
class Alert:
    """A triggered or nearly triggered risk target"""
    asset_id: str
    alert_type: AlertType
    status: AlertStatus
    market_price: Decimal
    target_price: Decimal
    distance: Decimal
    message: str = ""

    @property
    def is_triggered(self) -> bool:
        return self.status == AlertStatus.TRIGGERED


@dataclass(frozen=True)
class RiskTargetAssessment:
    """Risk/reward snapshot for one monitored position"""
    asset_id: str
    market_price: Decimal
    quantity: Decimal
    position_value: Decimal
    stop_loss: Optional[Decimal] = None
    take_profit: Optional[Decimal] = None
    stop_loss_distance: Optional[Decimal] = None
    take_profit_distance: Optional[Decimal] = None
    max_loss: Decimal = ZERO
    max_gain: Decimal = ZERO
    risk_reward_ratio: Optional[float] = None
    risk_level: RiskLevel = RiskLevel.LOW


@dataclass
class RiskSummary:
    """Portfolio-level roll-up of risk targets"""
    total_targets: int = 0
    active_targets: int = 0
    triggered_alerts: int = 0
    near_trigger_alerts: int = 0
    stop_loss_only: int = 0
    take_profit_only: int = 0
    both_targets: int = 0
    average_stop_loss: Decimal = ZERO
    average_take_profit: Decimal = ZERO
    total_max_loss: Decimal = ZERO
    total_max_gain: Decimal = ZERO
    average_risk_reward_ratio: float = 0.0
    assessments: List[RiskTargetAssessment] = field(default_factory=list)


# ============================================================================
# Report Objects
# ============================================================================

@dataclass
class PnLSummary:
    total_realized_pnl: Decimal = ZERO
    total_unrealized_pnl: Decimal = ZERO
    total_pnl: Decimal = ZERO
    win_rate: float = 0.0               # percentage, 0-100
    total_matches: int = 0
    winning_matches: int = 0
    losing_matches: int = 0
    total_cost_basis: Decimal = ZERO    # open lots
    total_market_value: Decimal = ZERO  # priced positions only


@dataclass
class TradeStatistics:
    total_trades: int = 0
    buy_trades: int = 0
    sell_trades: int = 0
    total_volume: Decimal = ZERO
    total_fees: Decimal = ZERO
    total_taxes: Decimal = ZERO
    avg_win: Decimal = ZERO
    avg_loss: Decimal = ZERO
    biggest_win: Decimal = ZERO
    biggest_loss: Decimal = ZERO
    profit_factor: float = 0.0          # total_wins / abs(total_losses)
    expectancy: Decimal = ZERO          # avg realized P&L per match


@dataclass
class PeriodPerformance:
    """One bucket of the performance timeline"""
    period_start: datetime
    period_end: datetime
    label: str = ""
    realized_pnl: Decimal = ZERO
    unrealized_pnl: Decimal = ZERO      # snapshot at period_end
    cumulative_realized_pnl: Decimal = ZERO
    capital_base: Decimal = ZERO        # open cost basis at period_start
    trades_count: int = 0
    winning_trades: int = 0
    volume: Decimal = ZERO

    @property
    def total_pnl(self) -> Decimal:
        return self.realized_pnl + self.unrealized_pnl


@dataclass
class AssetPerformance:
    asset_id: str
    total_pl: Decimal = ZERO
    realized_pl: Decimal = ZERO
    unrealized_pl: Decimal = ZERO
    trades_count: int = 0
    win_rate: float = 0.0
    total_volume: Decimal = ZERO
    quantity: Decimal = ZERO
    avg_cost: Decimal = ZERO
    market_value: Optional[Decimal] = None


@dataclass(frozen=True)
class PnLPoint:
    """Input row for the risk engine"""
    date: datetime
    pnl: Decimal                        # P&L earned during the period
    cumulative_pnl: Decimal = ZERO
    capital_base: Decimal = ZERO


@dataclass
class RiskMetricsResult:
    volatility: float = 0.0             # annualized, fraction (0.2 = 20%)
    sharpe_ratio: Optional[float] = None
    max_drawdown: Decimal = ZERO        # currency, peak-to-trough of cumulative P&L
    max_drawdown_pct: float = 0.0       # relative to peak equity (capital + cumulative)
    var95: Decimal = ZERO
    cvar95: Decimal = ZERO
    annualized_return: float = 0.0
    confidence_level: float = 0.95
    method: VaRMethod = VaRMethod.HISTORICAL
    observations: int = 0


@dataclass
class PnLAggregation:
    pnl_summary: PnLSummary = field(default_factory=PnLSummary)
    statistics: TradeStatistics = field(default_factory=TradeStatistics)
    monthly_performance: List[PeriodPerformance] = field(default_factory=list)
    asset_performance: List[AssetPerformance] = field(default_factory=list)
    top_trades: List[Match] = field(default_factory=list)
    worst_trades: List[Match] = field(default_factory=list)
    pnl_series: List[PnLPoint] = field(default_factory=list)


@dataclass
class AnalysisReport:
    """
    Time-bounded view combining P&L, statistics, risk and rankings.

    Entirely derived; lives only as long as the request that built it.
    """
    portfolio_id: str
    timeframe: Timeframe
    granularity: Granularity
    window: TimeWindow
    pnl_summary: PnLSummary = field(default_factory=PnLSummary)
    statistics: TradeStatistics = field(default_factory=TradeStatistics)
    risk_metrics: RiskMetricsResult = field(default_factory=RiskMetricsResult)
    monthly_performance: List[PeriodPerformance] = field(default_factory=list)
    asset_performance: List[AssetPerformance] = field(default_factory=list)
    top_trades: List[Match] = field(default_factory=list)
    worst_trades: List[Match] = field(default_factory=list)
    positions: List[Position] = field(default_factory=list)
    missing_price_assets: List[str] = field(default_factory=list)
    ledger_version: int = 0
    generated_at: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict:
        s = self.pnl_summary
        st = self.statistics
        r = self.risk_metrics
        return {
            'portfolio_id': self.portfolio_id,
            'timeframe': self.timeframe.value,
            'granularity': self.granularity.value,
            'window': {
                'start': self.window.start.isoformat() if self.window.start else None,
                'end': self.window.end.isoformat() if self.window.end else None,
            },
            'generated_at': self.generated_at.isoformat(),
            'ledger_version': self.ledger_version,
            'pnl_summary': {
                'total_realized_pnl': float(s.total_realized_pnl),
                'total_unrealized_pnl': float(s.total_unrealized_pnl),
                'total_pnl': float(s.total_pnl),
                'win_rate': s.win_rate,
                'total_matches': s.total_matches,
                'winning_matches': s.winning_matches,
                'losing_matches': s.losing_matches,
                'total_cost_basis': float(s.total_cost_basis),
                'total_market_value': float(s.total_market_value),
            },
            'statistics': {
                'total_trades': st.total_trades,
                'buy_trades': st.buy_trades,
                'sell_trades': st.sell_trades,
                'total_volume': float(st.total_volume),
                'total_fees': float(st.total_fees),
                'total_taxes': float(st.total_taxes),
                'avg_win': float(st.avg_win),
                'avg_loss': float(st.avg_loss),
                'biggest_win': float(st.biggest_win),
                'biggest_loss': float(st.biggest_loss),
                'profit_factor': st.profit_factor,
                'expectancy': float(st.expectancy),
            },
            'risk_metrics': {
                'volatility': r.volatility,
                'sharpe_ratio': r.sharpe_ratio,
                'max_drawdown': float(r.max_drawdown),
                'max_drawdown_pct': r.max_drawdown_pct,
                'var95': float(r.var95),
                'cvar95': float(r.cvar95),
                'annualized_return': r.annualized_return,
                'confidence_level': r.confidence_level,
                'method': r.method.value,
                'observations': r.observations,
            },
            'monthly_performance': [
                {
                    'label': p.label,
                    'period_start': p.period_start.isoformat(),
                    'period_end': p.period_end.isoformat(),
                    'realized_pnl': float(p.realized_pnl),
                    'unrealized_pnl': float(p.unrealized_pnl),
                    'total_pnl': float(p.total_pnl),
                    'cumulative_realized_pnl': float(p.cumulative_realized_pnl),
                    'capital_base': float(p.capital_base),
                    'trades_count': p.trades_count,
                    'winning_trades': p.winning_trades,
                    'volume': float(p.volume),
                }
                for p in self.monthly_performance
            ],
            'asset_performance': [
                {
                    'asset_id': a.asset_id,
                    'total_pl': float(a.total_pl),
                    'realized_pl': float(a.realized_pl),
                    'unrealized_pl': float(a.unrealized_pl),
                    'trades_count': a.trades_count,
                    'win_rate': a.win_rate,
                    'total_volume': float(a.total_volume),
                    'quantity': float(a.quantity),
                    'avg_cost': float(a.avg_cost),
                    'market_value': float(a.market_value) if a.market_value is not None else None,
                }
                for a in self.asset_performance
            ],
            'top_trades': [m.to_dict() for m in self.top_trades],
            'worst_trades': [m.to_dict() for m in self.worst_trades],
            'positions': [p.to_dict() for p in self.positions],
            'missing_price_assets': list(self.missing_price_assets),
        }
