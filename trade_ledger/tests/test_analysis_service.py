"""
Tests for AnalysisService - the request-level API over stores and engines.

Uses the in-memory stores from conftest; no database.
"""

import json
import pytest
from decimal import Decimal

import trade_ledger.core.models.domain as dm
from trade_ledger.core.errors import InsufficientLotsError, PriceProviderError, ValidationError
from trade_ledger.services.analysis_cache import AnalysisCache
from trade_ledger.services.analysis_service import AnalysisService
from trade_ledger.services.market_data import MarketPriceProvider, StaticPriceProvider


class FailingPriceProvider(MarketPriceProvider):
    def __init__(self):
        self.calls = 0

    def get(self, asset_ids):
        self.calls += 1
        raise PriceProviderError("quote service unavailable")


@pytest.fixture
def service(trade_store, risk_target_store, analytics_config):
    return AnalysisService(
        trade_store,
        risk_target_store=risk_target_store,
        config=analytics_config,
    )


@pytest.fixture
def scenario_b(trade_store, make_trade):
    """BUY 10 @ 100, BUY 10 @ 110, SELL 15 @ 130."""
    for trade in (
        make_trade('BUY', 10, 100, day=0),
        make_trade('BUY', 10, 110, day=1),
        make_trade('SELL', 15, 130, day=2),
    ):
        trade_store.add(trade)
    return trade_store


# =============================================================================
# get_analysis
# =============================================================================

class TestGetAnalysis:

    def test_empty_portfolio_gives_zero_report(self, service, portfolio_id, as_of):
        report = service.get_analysis(portfolio_id, as_of=as_of)

        assert report.pnl_summary == dm.PnLSummary()
        assert report.statistics == dm.TradeStatistics()
        assert report.monthly_performance == []
        assert report.asset_performance == []
        assert report.top_trades == []
        assert report.worst_trades == []
        assert report.positions == []
        assert report.risk_metrics.volatility == 0.0
        assert report.risk_metrics.sharpe_ratio is None
        assert report.risk_metrics.var95 == Decimal('0')

    def test_scenario_b_totals(self, service, scenario_b, portfolio_id, as_of):
        report = service.get_analysis(portfolio_id, as_of=as_of, market_prices={'AAPL': '120'})

        assert report.pnl_summary.total_realized_pnl == Decimal('400')
        assert report.pnl_summary.total_unrealized_pnl == Decimal('50')
        assert report.pnl_summary.total_pnl == Decimal('450')
        assert report.pnl_summary.total_matches == 2
        assert report.pnl_summary.win_rate == pytest.approx(100.0)
        assert report.statistics.total_trades == 3
        assert report.ledger_version == 3
        assert report.missing_price_assets == []

        [position] = report.positions
        assert position.quantity == Decimal('5')
        assert position.avg_cost == Decimal('110')

    def test_string_timeframe_and_granularity(self, service, scenario_b, portfolio_id, as_of):
        report = service.get_analysis(portfolio_id, '1Y', 'weekly', as_of=as_of)
        assert report.timeframe == dm.Timeframe.ONE_YEAR
        assert report.granularity == dm.Granularity.WEEKLY

    @pytest.mark.parametrize("timeframe,granularity,field", [
        ('2W', 'monthly', 'timeframe'),
        ('ALL', 'hourly', 'granularity'),
    ])
    def test_unknown_filters_rejected(self, service, portfolio_id, timeframe, granularity, field):
        with pytest.raises(ValidationError) as exc_info:
            service.get_analysis(portfolio_id, timeframe, granularity)
        assert exc_info.value.field == field

    def test_missing_price_listed(self, service, scenario_b, portfolio_id, as_of):
        report = service.get_analysis(portfolio_id, as_of=as_of)

        assert report.missing_price_assets == ['AAPL']
        assert report.positions[0].price_missing
        assert report.pnl_summary.total_unrealized_pnl == Decimal('0')

    def test_trades_after_as_of_are_ignored(self, service, scenario_b, make_trade, portfolio_id, as_of):
        scenario_b.add(make_trade('SELL', 5, 140, day=400))

        report = service.get_analysis(portfolio_id, as_of=as_of, market_prices={'AAPL': '120'})

        assert report.positions[0].quantity == Decimal('5')
        assert report.statistics.total_trades == 3

    def test_scenario_b_under_lifo(self, trade_store, scenario_b, analytics_config, portfolio_id, as_of):
        analytics_config.ledger.matching_method = dm.MatchingMethod.LIFO
        svc = AnalysisService(trade_store, config=analytics_config)

        report = svc.get_analysis(portfolio_id, as_of=as_of, market_prices={'AAPL': '120'})

        assert report.pnl_summary.total_realized_pnl == Decimal('350')
        assert report.pnl_summary.total_unrealized_pnl == Decimal('100')
        [position] = report.positions
        assert position.quantity == Decimal('5')
        assert position.avg_cost == Decimal('100')

    def test_report_serializes_every_section(self, service, scenario_b, portfolio_id, as_of):
        report = service.get_analysis(portfolio_id, as_of=as_of, market_prices={'AAPL': '120'})

        data = report.to_dict()
        json.dumps(data)

        assert data['statistics']['total_trades'] == 3
        assert data['statistics']['buy_trades'] == 2
        assert data['statistics']['sell_trades'] == 1
        assert set(data['statistics']) >= {'total_volume', 'total_fees', 'profit_factor', 'expectancy'}
        assert data['risk_metrics']['cvar95'] == float(report.risk_metrics.cvar95)
        assert data['risk_metrics']['method'] == report.risk_metrics.method.value
        [aapl] = data['asset_performance']
        assert aapl['quantity'] == 5.0
        assert aapl['avg_cost'] == 110.0
        assert aapl['market_value'] == 600.0
        assert aapl['total_volume'] == float(report.asset_performance[0].total_volume)
        assert data['pnl_summary']['total_pnl'] == 450.0
        assert data['ledger_version'] == 3


class TestAnalysisCaching:

    def test_repeat_request_served_from_cache(self, trade_store, scenario_b, analytics_config,
                                              portfolio_id, as_of):
        cache = AnalysisCache()
        svc = AnalysisService(trade_store, config=analytics_config, cache=cache)

        first = svc.get_analysis(portfolio_id, as_of=as_of, market_prices={'AAPL': '120'})
        second = svc.get_analysis(portfolio_id, as_of=as_of, market_prices={'AAPL': '120'})

        assert second is first
        assert cache.hits == 1

    def test_new_version_recomputes(self, trade_store, scenario_b, make_trade, analytics_config,
                                    portfolio_id, as_of):
        cache = AnalysisCache()
        svc = AnalysisService(trade_store, config=analytics_config, cache=cache)
        first = svc.get_analysis(portfolio_id, as_of=as_of, market_prices={'AAPL': '120'})

        trade_store.add(make_trade('SELL', 5, 125, day=10))
        second = svc.get_analysis(portfolio_id, as_of=as_of, market_prices={'AAPL': '120'})

        assert second is not first
        assert second.positions == []
        assert len(cache) == 1

    def test_different_prices_miss(self, trade_store, scenario_b, analytics_config, portfolio_id, as_of):
        svc = AnalysisService(trade_store, config=analytics_config, cache=AnalysisCache())

        a = svc.get_analysis(portfolio_id, as_of=as_of, market_prices={'AAPL': '120'})
        b = svc.get_analysis(portfolio_id, as_of=as_of, market_prices={'AAPL': '121'})

        assert a is not b
        assert b.pnl_summary.total_unrealized_pnl == Decimal('55')

    def test_repeat_request_without_as_of_hits(self, trade_store, scenario_b, analytics_config, portfolio_id):
        cache = AnalysisCache()
        svc = AnalysisService(trade_store, config=analytics_config, cache=cache)

        first = svc.get_analysis(portfolio_id, market_prices={'AAPL': '120'})
        second = svc.get_analysis(portfolio_id, market_prices={'AAPL': '120'})

        assert second is first
        assert cache.hits == 1
        assert len(cache) == 1

    def test_hit_skips_loading_trades(self, trade_store, scenario_b, analytics_config, portfolio_id, as_of):
        svc = AnalysisService(trade_store, config=analytics_config, cache=AnalysisCache())

        svc.get_analysis(portfolio_id, as_of=as_of, market_prices={'AAPL': '120'})
        loads = trade_store.list_calls
        svc.get_analysis(portfolio_id, as_of=as_of, market_prices={'AAPL': '120'})

        assert trade_store.list_calls == loads

    def test_hit_with_provider_skips_matching(self, trade_store, scenario_b, analytics_config,
                                              portfolio_id, monkeypatch):
        svc = AnalysisService(trade_store, config=analytics_config, cache=AnalysisCache(),
                              price_provider=StaticPriceProvider({'AAPL': '120'}))
        calls = []
        match = svc.matcher.match
        monkeypatch.setattr(svc.matcher, 'match', lambda trades: calls.append(1) or match(trades))

        first = svc.get_analysis(portfolio_id)
        second = svc.get_analysis(portfolio_id)

        assert second is first
        assert len(calls) == 1


# =============================================================================
# Positions and prices
# =============================================================================

class TestPositions:

    def test_positions_sorted_by_asset(self, service, trade_store, make_trade, portfolio_id):
        trade_store.add(make_trade('BUY', 1, 300, asset_id='MSFT'))
        trade_store.add(make_trade('BUY', 2, 100, asset_id='AAPL'))

        positions = service.get_positions(portfolio_id, {'AAPL': 110, 'MSFT': 310})

        assert [p.asset_id for p in positions] == ['AAPL', 'MSFT']
        assert positions[0].unrealized_pl == Decimal('20')

    def test_flat_asset_returns_zero_position(self, service, trade_store, make_trade, portfolio_id):
        trade_store.add(make_trade('BUY', 10, 100))
        trade_store.add(make_trade('SELL', 10, 120, day=1))

        position = service.get_position_by_asset(portfolio_id, 'AAPL', Decimal('125'))

        assert position.quantity == Decimal('0')
        assert position.realized_pl == Decimal('200')
        assert not position.is_open

    def test_caller_prices_win_over_provider(self, trade_store, make_trade, analytics_config, portfolio_id):
        trade_store.add(make_trade('BUY', 1, 100, asset_id='AAPL'))
        trade_store.add(make_trade('BUY', 1, 300, asset_id='MSFT'))
        provider = StaticPriceProvider({'AAPL': '50', 'MSFT': '320'})
        svc = AnalysisService(trade_store, price_provider=provider, config=analytics_config)

        aapl, msft = svc.get_positions(portfolio_id, {'AAPL': '120'})

        assert aapl.market_price == Decimal('120')
        assert msft.market_price == Decimal('320')

    def test_provider_failure_degrades_to_missing_price(self, trade_store, make_trade,
                                                        analytics_config, portfolio_id, as_of):
        trade_store.add(make_trade('BUY', 10, 100))
        provider = FailingPriceProvider()
        svc = AnalysisService(trade_store, price_provider=provider, config=analytics_config)

        report = svc.get_analysis(portfolio_id, as_of=as_of)

        assert provider.calls == 1
        assert report.missing_price_assets == ['AAPL']
        assert report.pnl_summary.total_cost_basis == Decimal('1000')


# =============================================================================
# Risk targets
# =============================================================================

class TestRiskTargets:

    def test_no_targets_no_alerts(self, service, scenario_b, portfolio_id):
        assert service.monitor_risk_targets(portfolio_id, {'AAPL': '80'}) == []
        assert service.get_risk_summary(portfolio_id, {'AAPL': '80'}) == dm.RiskSummary()

    def test_stop_loss_triggered(self, service, trade_store, risk_target_store, make_trade, portfolio_id):
        trade_store.add(make_trade('BUY', 10, 100))
        risk_target_store.targets.append(
            dm.RiskTarget(portfolio_id=portfolio_id, asset_id='AAPL', stop_loss=Decimal('90'))
        )

        [alert] = service.monitor_risk_targets(portfolio_id, {'AAPL': '80'})

        assert alert.is_triggered
        assert alert.alert_type == dm.AlertType.STOP_LOSS
        assert alert.distance == Decimal('-0.125')

    def test_risk_summary(self, service, trade_store, risk_target_store, make_trade, portfolio_id):
        trade_store.add(make_trade('BUY', 10, 100))
        risk_target_store.targets.append(dm.RiskTarget(
            portfolio_id=portfolio_id, asset_id='AAPL',
            stop_loss=Decimal('90'), take_profit=Decimal('130'),
        ))

        summary = service.get_risk_summary(portfolio_id, {'AAPL': '100'})

        assert summary.total_targets == 1
        assert summary.both_targets == 1
        assert summary.total_max_loss == Decimal('100')
        assert summary.total_max_gain == Decimal('300')
        assert summary.assessments[0].risk_level == dm.RiskLevel.LOW


# =============================================================================
# process_trade
# =============================================================================

class TestProcessTrade:

    def test_new_sell_is_matched(self, service, scenario_b, make_trade):
        sell = make_trade('SELL', 5, 150, day=3)

        result = service.process_trade(sell)

        [match] = result.matches_for(sell.id)
        assert match.matched_quantity == Decimal('5')
        assert match.realized_pl == Decimal('200')
        assert result.open_quantity('AAPL') == Decimal('0')

    def test_oversell_rejected(self, service, scenario_b, make_trade):
        with pytest.raises(InsufficientLotsError) as exc_info:
            service.process_trade(make_trade('SELL', 6, 150, day=3))

        assert exc_info.value.requested == Decimal('6')
        assert exc_info.value.available == Decimal('5')

    def test_replacing_trade_keeps_its_slot(self, service, trade_store, make_trade):
        buy = make_trade('BUY', 10, 100, trade_id='buy-1')
        trade_store.add(buy)
        trade_store.add(make_trade('SELL', 10, 120, day=1))

        result = service.process_trade(make_trade('BUY', 12, 100, trade_id='buy-1'))

        assert result.open_quantity('AAPL') == Decimal('2')
        assert len(trade_store.trades) == 2

    def test_invalid_trade_rejected(self, service, make_trade):
        with pytest.raises(ValidationError):
            service.process_trade(make_trade('BUY', 0, 100))

    def test_cache_invalidated(self, trade_store, scenario_b, make_trade, analytics_config,
                               portfolio_id, as_of):
        cache = AnalysisCache()
        svc = AnalysisService(trade_store, config=analytics_config, cache=cache)
        svc.get_analysis(portfolio_id, as_of=as_of)
        assert len(cache) == 1

        svc.process_trade(make_trade('SELL', 1, 150, day=3))

        assert len(cache) == 0
