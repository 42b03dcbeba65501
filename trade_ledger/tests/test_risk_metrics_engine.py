"""
Tests for RiskMetricsEngine: volatility, Sharpe, drawdown, VaR / CVaR.
"""

import math
import statistics

import pytest
from decimal import Decimal
from datetime import datetime, timedelta

import trade_ledger.core.models.domain as dm
from trade_ledger.config.analytics_config_loader import RiskMethodologyConfig
from trade_ledger.services.risk_metrics_engine import RiskMetricsEngine


def _series(pnls, capital='1000'):
    """One monthly point per P&L value with a constant capital base."""
    points = []
    cumulative = Decimal('0')
    for i, pnl in enumerate(pnls):
        pnl = Decimal(str(pnl))
        cumulative += pnl
        points.append(dm.PnLPoint(
            date=datetime(2024, 1, 1) + timedelta(days=31 * i),
            pnl=pnl,
            cumulative_pnl=cumulative,
            capital_base=Decimal(capital),
        ))
    return points


class TestDegenerateSeries:

    def test_empty_series(self):
        r = RiskMetricsEngine().compute_risk([], dm.Granularity.MONTHLY, Decimal('10000'))

        assert r.volatility == 0.0
        assert r.sharpe_ratio is None
        assert r.max_drawdown == Decimal('0')
        assert r.var95 == Decimal('0')
        assert r.cvar95 == Decimal('0')
        assert r.observations == 0

    def test_single_return(self):
        r = RiskMetricsEngine().compute_risk(_series([25]), dm.Granularity.MONTHLY, Decimal('10000'))

        assert r.observations == 1
        assert r.volatility == 0.0
        assert r.sharpe_ratio is None
        assert r.var95 == Decimal('0')

    def test_constant_returns_have_no_sharpe(self):
        r = RiskMetricsEngine().compute_risk(_series([10, 10, 10]), dm.Granularity.MONTHLY, Decimal('1000'))

        assert r.volatility == 0.0
        assert r.sharpe_ratio is None
        assert not math.isnan(r.annualized_return)

    def test_zero_capital_periods_skipped(self):
        series = _series([10, -5], capital='0') + _series([20, -10, 5])
        r = RiskMetricsEngine().compute_risk(series, dm.Granularity.MONTHLY, Decimal('1000'))
        assert r.observations == 3


class TestStatistics:

    def test_volatility_and_sharpe(self):
        returns = [0.01, -0.02, 0.03, -0.01]
        r = RiskMetricsEngine().compute_risk(
            _series([10, -20, 30, -10]), dm.Granularity.MONTHLY, Decimal('10000'),
        )

        expected_vol = statistics.stdev(returns) * math.sqrt(12)
        assert r.volatility == pytest.approx(expected_vol)
        assert r.annualized_return == pytest.approx(statistics.mean(returns) * 12)
        assert r.sharpe_ratio == pytest.approx(statistics.mean(returns) * 12 / expected_vol)

    def test_risk_free_rate_lowers_sharpe(self):
        series = _series([10, -20, 30, -10])
        base = RiskMetricsEngine().compute_risk(series, dm.Granularity.MONTHLY, Decimal('1'))
        with_rf = RiskMetricsEngine(RiskMethodologyConfig(risk_free_rate=0.02)).compute_risk(
            series, dm.Granularity.MONTHLY, Decimal('1'),
        )
        assert with_rf.sharpe_ratio < base.sharpe_ratio

    def test_annualization_follows_granularity(self):
        series = _series([10, -20, 30, -10])
        daily = RiskMetricsEngine().compute_risk(series, dm.Granularity.DAILY, Decimal('1'))
        weekly = RiskMetricsEngine().compute_risk(series, dm.Granularity.WEEKLY, Decimal('1'))
        assert daily.volatility / weekly.volatility == pytest.approx(math.sqrt(252 / 52))

    def test_max_drawdown_from_peak(self):
        # cumulative: 100, 300, 150, 200, 50
        r = RiskMetricsEngine().compute_risk(
            _series([100, 200, -150, 50, -150]), dm.Granularity.MONTHLY, Decimal('1000'),
        )
        assert r.max_drawdown == Decimal('250')
        assert r.max_drawdown_pct == pytest.approx(250 / 1300 * 100)

    def test_drawdown_measured_from_zero(self):
        r = RiskMetricsEngine().compute_risk(_series([-50, -50]), dm.Granularity.MONTHLY, Decimal('1000'))
        assert r.max_drawdown == Decimal('100')


class TestValueAtRisk:

    def test_historical_var_and_cvar(self):
        # returns sorted: -0.02, -0.01, 0.01, 0.03 ; floor(0.05 * 4) = 0
        r = RiskMetricsEngine().compute_risk(
            _series([10, -20, 30, -10]), dm.Granularity.MONTHLY, Decimal('10000'),
        )
        assert r.method == dm.VaRMethod.HISTORICAL
        assert r.var95 == Decimal('200.00')
        assert r.cvar95 == Decimal('200.00')

    def test_historical_cvar_averages_tail(self):
        pnls = [-30, -10] + [5] * 18   # 20 returns, index floor(0.05 * 20) = 1
        r = RiskMetricsEngine().compute_risk(_series(pnls), dm.Granularity.DAILY, Decimal('1000'))

        assert r.var95 == Decimal('10.00')
        assert r.cvar95 == Decimal('20.00')

    def test_var_never_negative(self):
        r = RiskMetricsEngine().compute_risk(
            _series([10, 20, 30]), dm.Granularity.MONTHLY, Decimal('10000'),
        )
        assert r.var95 == Decimal('0')
        assert r.cvar95 == Decimal('0')
        assert r.volatility >= 0

    def test_parametric_method(self):
        config = RiskMethodologyConfig(var_method=dm.VaRMethod.PARAMETRIC)
        r = RiskMetricsEngine(config).compute_risk(
            _series([10, -20, 30, -10]), dm.Granularity.MONTHLY, Decimal('10000'),
        )

        returns = [0.01, -0.02, 0.03, -0.01]
        expected = -(statistics.mean(returns) - 1.6448536269514722 * statistics.stdev(returns))
        assert r.method == dm.VaRMethod.PARAMETRIC
        assert float(r.var95) == pytest.approx(expected * 10000, abs=0.01)
        assert r.cvar95 >= r.var95

    def test_zero_portfolio_value(self):
        r = RiskMetricsEngine().compute_risk(
            _series([10, -20, 30, -10]), dm.Granularity.MONTHLY, Decimal('0'),
        )
        assert r.var95 == Decimal('0')
