"""
Risk Metrics Engine - volatility, Sharpe, drawdown, VaR / CVaR

Works on the per-period P&L series built by the PnLAggregator:

    return_t = pnl_t / capital_base_t        (periods without capital skipped)
    volatility = std(returns, ddof=1) * sqrt(periods_per_year)
    sharpe     = (mean(returns) * periods_per_year - risk_free) / volatility
    VaR        = loss at the (1 - confidence) quantile * portfolio value

VaR answers: "What's the maximum loss at X% confidence over one period?"
Degenerate inputs (fewer than two returns, zero volatility) give 0 / None,
never NaN.

Usage:
    engine = RiskMetricsEngine(config.risk)
    metrics = engine.compute_risk(agg.pnl_series, dm.Granularity.DAILY, Decimal('25000'))
    print(metrics.var95, metrics.sharpe_ratio)
"""

from decimal import Decimal
from typing import List, Optional, Sequence
import math
import logging

import numpy as np
from scipy.stats import norm

from trade_ledger.config.analytics_config_loader import RiskMethodologyConfig
import trade_ledger.core.models.domain as dm

logger = logging.getLogger(__name__)

_CENTS = Decimal('0.01')


class RiskMetricsEngine:
    """
    Portfolio risk statistics from a P&L series.

    The methodology (VaR method, confidence level, risk-free rate and
    annualization factors) comes from RiskMethodologyConfig.
    """

    def __init__(self, config: Optional[RiskMethodologyConfig] = None):
        self.config = config or RiskMethodologyConfig()

    def compute_risk(
        self,
        pnl_series: Sequence[dm.PnLPoint],
        granularity: dm.Granularity,
        portfolio_value: Decimal,
    ) -> dm.RiskMetricsResult:
        """
        Compute risk statistics.

        Args:
            pnl_series: One point per period, oldest first
            granularity: Period size, selects the annualization factor
            portfolio_value: Current exposure VaR is scaled to

        Returns:
            RiskMetricsResult; all zeros for an empty series
        """
        result = dm.RiskMetricsResult(
            confidence_level=self.config.confidence_level,
            method=self.config.var_method,
        )

        result.max_drawdown, result.max_drawdown_pct = self._max_drawdown(pnl_series)

        returns = _returns(pnl_series)
        result.observations = len(returns)
        if not returns:
            return result

        periods = self.config.annualization_factor(granularity)
        r = np.array(returns, dtype=np.float64)
        result.annualized_return = _finite(float(np.mean(r)) * periods)

        if len(r) < 2:
            return result

        period_std = float(np.std(r, ddof=1))
        result.volatility = _finite(period_std * math.sqrt(periods))

        if result.volatility > 0:
            sharpe = (result.annualized_return - self.config.risk_free_rate) / result.volatility
            result.sharpe_ratio = _finite(sharpe)

        if self.config.var_method == dm.VaRMethod.PARAMETRIC:
            var_loss, cvar_loss = self._parametric_var(r, period_std)
        else:
            var_loss, cvar_loss = self._historical_var(r)

        value = portfolio_value if portfolio_value > 0 else dm.ZERO
        result.var95 = _money(var_loss, value)
        result.cvar95 = _money(cvar_loss, value)

        logger.debug(
            f"Risk over {len(r)} {granularity.value} returns: vol={result.volatility:.4f} "
            f"VaR={result.var95} CVaR={result.cvar95}"
        )
        return result

    def _historical_var(self, returns: np.ndarray):
        """Empirical lower-tail quantile; CVaR averages the tail at or below it."""
        ordered = np.sort(returns)
        index = int(math.floor((1 - self.config.confidence_level) * len(ordered)))
        index = min(index, len(ordered) - 1)

        var_return = float(ordered[index])
        tail_mean = float(np.mean(ordered[:index + 1]))
        return max(-var_return, 0.0), max(-tail_mean, 0.0)

    def _parametric_var(self, returns: np.ndarray, period_std: float):
        """Normal approximation of the return distribution."""
        alpha = 1 - self.config.confidence_level
        mean = float(np.mean(returns))
        z = float(norm.ppf(alpha))

        var_return = mean + z * period_std
        # Expected shortfall of a normal distribution
        es_return = mean - period_std * float(norm.pdf(z)) / alpha
        return max(-var_return, 0.0), max(-es_return, 0.0)

    def _max_drawdown(self, pnl_series: Sequence[dm.PnLPoint]):
        """
        Largest peak-to-trough fall of cumulative P&L, starting from 0.

        The percentage is measured against peak equity, taken as the largest
        capital base in the series plus the cumulative P&L peak.
        """
        peak = dm.ZERO
        max_dd = dm.ZERO
        peak_at_max = dm.ZERO
        for point in pnl_series:
            if point.cumulative_pnl > peak:
                peak = point.cumulative_pnl
            drawdown = peak - point.cumulative_pnl
            if drawdown > max_dd:
                max_dd = drawdown
                peak_at_max = peak

        capital = max((p.capital_base for p in pnl_series), default=dm.ZERO)
        equity_peak = capital + peak_at_max
        pct = float(max_dd / equity_peak * 100) if max_dd > 0 and equity_peak > 0 else 0.0
        return max_dd, pct


def _returns(pnl_series: Sequence[dm.PnLPoint]) -> List[float]:
    return [
        float(p.pnl / p.capital_base)
        for p in pnl_series
        if p.capital_base > 0
    ]


def _finite(value: float) -> float:
    return value if math.isfinite(value) else 0.0


def _money(loss_fraction: float, portfolio_value: Decimal) -> Decimal:
    if not math.isfinite(loss_fraction) or loss_fraction <= 0:
        return dm.ZERO
    return (Decimal(str(loss_fraction)) * portfolio_value).quantize(_CENTS)
