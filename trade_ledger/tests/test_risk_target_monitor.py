"""
Tests for RiskTargetMonitor: alerts, risk/reward assessments, summary.
"""

import pytest
from decimal import Decimal

import trade_ledger.core.models.domain as dm
from trade_ledger.config.analytics_config_loader import RiskTargetConfig
from trade_ledger.services.risk_target_monitor import RiskTargetMonitor


def _position(asset_id='AAPL', price='100', quantity='10', avg_cost='100'):
    quantity = Decimal(quantity)
    if price is None:
        return dm.Position(
            asset_id=asset_id, quantity=quantity, avg_cost=Decimal(avg_cost),
            total_cost=quantity * Decimal(avg_cost), price_missing=True,
        )
    price = Decimal(price)
    return dm.Position(
        asset_id=asset_id,
        quantity=quantity,
        avg_cost=Decimal(avg_cost),
        total_cost=quantity * Decimal(avg_cost),
        market_price=price,
        market_value=quantity * price,
        unrealized_pl=quantity * (price - Decimal(avg_cost)),
    )


def _target(asset_id='AAPL', stop=None, take=None, active=True):
    return dm.RiskTarget(
        portfolio_id='pf-test',
        asset_id=asset_id,
        stop_loss=Decimal(stop) if stop else None,
        take_profit=Decimal(take) if take else None,
        is_active=active,
    )


class TestEvaluate:

    def test_stop_loss_triggered_below_stop(self):
        """stop 90, price 80 -> triggered with distance (80 - 90) / 80."""
        alerts = RiskTargetMonitor().evaluate([_position(price='80')], [_target(stop='90')])

        assert len(alerts) == 1
        alert = alerts[0]
        assert alert.alert_type == dm.AlertType.STOP_LOSS
        assert alert.status == dm.AlertStatus.TRIGGERED
        assert alert.is_triggered
        assert alert.distance == Decimal('-0.125')
        assert alert.target_price == Decimal('90')

    def test_stop_loss_triggered_at_stop(self):
        alerts = RiskTargetMonitor().evaluate([_position(price='90')], [_target(stop='90')])
        assert alerts[0].is_triggered
        assert alerts[0].distance == Decimal('0')

    def test_take_profit_triggered(self):
        alerts = RiskTargetMonitor().evaluate([_position(price='130')], [_target(take='125')])

        assert alerts[0].alert_type == dm.AlertType.TAKE_PROFIT
        assert alerts[0].is_triggered

    def test_near_trigger_within_threshold(self):
        alerts = RiskTargetMonitor().evaluate(
            [_position(price='100')], [_target(stop='96', take='104')],
        )

        assert [(a.alert_type, a.status) for a in alerts] == [
            (dm.AlertType.STOP_LOSS, dm.AlertStatus.NEAR_TRIGGER),
            (dm.AlertType.TAKE_PROFIT, dm.AlertStatus.NEAR_TRIGGER),
        ]
        assert alerts[0].distance == Decimal('0.04')

    def test_far_targets_produce_no_alert(self):
        alerts = RiskTargetMonitor().evaluate(
            [_position(price='100')], [_target(stop='90', take='120')],
        )
        assert alerts == []

    def test_threshold_is_configurable(self):
        monitor = RiskTargetMonitor(RiskTargetConfig(near_trigger_threshold=0.15))
        alerts = monitor.evaluate([_position(price='100')], [_target(stop='90')])
        assert alerts[0].status == dm.AlertStatus.NEAR_TRIGGER

    def test_skips_inactive_missing_price_and_flat(self):
        positions = [
            _position('AAPL', price='80'),
            _position('MSFT', price=None),
            _position('TSLA', price='80', quantity='0'),
        ]
        targets = [
            _target('AAPL', stop='90', active=False),
            _target('MSFT', stop='90'),
            _target('TSLA', stop='90'),
            _target('NVDA', stop='90'),
        ]
        assert RiskTargetMonitor().evaluate(positions, targets) == []

    def test_triggered_sorted_first(self):
        positions = [_position('AAPL', price='100'), _position('MSFT', price='80')]
        targets = [_target('AAPL', stop='97'), _target('MSFT', stop='90')]

        alerts = RiskTargetMonitor().evaluate(positions, targets)

        assert [(a.asset_id, a.status) for a in alerts] == [
            ('MSFT', dm.AlertStatus.TRIGGERED),
            ('AAPL', dm.AlertStatus.NEAR_TRIGGER),
        ]


class TestAssess:

    @pytest.mark.parametrize("stop,take,ratio,level", [
        ('90', '130', 3.0, dm.RiskLevel.LOW),
        ('90', '115', 1.5, dm.RiskLevel.MEDIUM),
        ('90', '105', 0.5, dm.RiskLevel.HIGH),
    ])
    def test_risk_levels(self, stop, take, ratio, level):
        [a] = RiskTargetMonitor().assess([_position(price='100')], [_target(stop=stop, take=take)])

        assert a.risk_reward_ratio == pytest.approx(ratio)
        assert a.risk_level == level

    def test_max_loss_and_gain(self):
        [a] = RiskTargetMonitor().assess([_position(price='100')], [_target(stop='90', take='130')])

        assert a.max_loss == Decimal('100')
        assert a.max_gain == Decimal('300')
        assert a.position_value == Decimal('1000')
        assert a.stop_loss_distance == Decimal('0.1')
        assert a.take_profit_distance == Decimal('0.3')

    def test_single_sided_target_is_high_risk(self):
        [a] = RiskTargetMonitor().assess([_position(price='100')], [_target(stop='90')])

        assert a.risk_reward_ratio is None
        assert a.max_gain == Decimal('0')
        assert a.risk_level == dm.RiskLevel.HIGH


class TestSummarize:

    def test_summary_counts_and_totals(self):
        positions = [_position('AAPL', price='100'), _position('MSFT', price='80')]
        targets = [
            _target('AAPL', stop='90', take='130'),
            _target('MSFT', stop='90'),
            _target('TSLA', take='300'),
            _target('NVDA', stop='10', take='20', active=False),
        ]
        monitor = RiskTargetMonitor()
        alerts = monitor.evaluate(positions, targets)
        assessments = monitor.assess(positions, targets)

        s = monitor.summarize(targets, alerts, assessments)

        assert s.total_targets == 4
        assert s.active_targets == 3
        assert s.triggered_alerts == 1
        assert s.near_trigger_alerts == 0
        assert s.both_targets == 1
        assert s.stop_loss_only == 1
        assert s.take_profit_only == 1
        assert s.average_stop_loss == Decimal('90')
        assert s.average_take_profit == Decimal('215')
        assert s.total_max_loss == Decimal('0')       # 100 + (80 - 90) * 10
        assert s.total_max_gain == Decimal('300')
        assert s.average_risk_reward_ratio == pytest.approx(3.0)
        assert len(s.assessments) == 2
