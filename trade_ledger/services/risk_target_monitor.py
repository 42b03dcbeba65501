"""
Risk Target Monitor - stop-loss / take-profit alerts and risk/reward

Checks each active target against the position's market price:

    stop distance = (price - stop) / price     <= 0 -> TRIGGERED
    take distance = (take - price) / price     <= 0 -> TRIGGERED
    0 < distance <= threshold                       -> NEAR_TRIGGER

Targets without an open, priced position are skipped.

Usage:
    monitor = RiskTargetMonitor(config.risk_targets)
    alerts = monitor.evaluate(positions, targets)
    summary = monitor.summarize(targets, alerts, monitor.assess(positions, targets))
"""

from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence, Tuple
import logging

from trade_ledger.config.analytics_config_loader import RiskTargetConfig
import trade_ledger.core.models.domain as dm

logger = logging.getLogger(__name__)


class RiskTargetMonitor:
    """Evaluate risk targets against current positions."""

    def __init__(self, config: Optional[RiskTargetConfig] = None):
        self.config = config or RiskTargetConfig()
        self.near_threshold = Decimal(str(self.config.near_trigger_threshold))

    # =========================================================================
    # Alerts
    # =========================================================================

    def evaluate(
        self,
        positions: Iterable[dm.Position],
        targets: Iterable[dm.RiskTarget],
    ) -> List[dm.Alert]:
        """
        Alerts for every triggered or nearly triggered target.

        Returns:
            Triggered alerts first, then by asset_id; stop-loss before
            take-profit for the same asset.
        """
        alerts: List[dm.Alert] = []
        for target, position in self._monitored(positions, targets):
            price = position.market_price

            if target.stop_loss is not None:
                distance = target.stop_loss_distance(price)
                if price <= target.stop_loss:
                    alerts.append(self._alert(
                        target.asset_id, dm.AlertType.STOP_LOSS, dm.AlertStatus.TRIGGERED,
                        price, target.stop_loss, distance,
                        f"Stop loss triggered for {target.asset_id}: "
                        f"price {price} <= stop {target.stop_loss}",
                    ))
                elif distance <= self.near_threshold:
                    alerts.append(self._alert(
                        target.asset_id, dm.AlertType.STOP_LOSS, dm.AlertStatus.NEAR_TRIGGER,
                        price, target.stop_loss, distance,
                        f"{target.asset_id} within {float(distance) * 100:.2f}% of stop loss "
                        f"{target.stop_loss}",
                    ))

            if target.take_profit is not None:
                distance = target.take_profit_distance(price)
                if price >= target.take_profit:
                    alerts.append(self._alert(
                        target.asset_id, dm.AlertType.TAKE_PROFIT, dm.AlertStatus.TRIGGERED,
                        price, target.take_profit, distance,
                        f"Take profit triggered for {target.asset_id}: "
                        f"price {price} >= target {target.take_profit}",
                    ))
                elif distance <= self.near_threshold:
                    alerts.append(self._alert(
                        target.asset_id, dm.AlertType.TAKE_PROFIT, dm.AlertStatus.NEAR_TRIGGER,
                        price, target.take_profit, distance,
                        f"{target.asset_id} within {float(distance) * 100:.2f}% of take profit "
                        f"{target.take_profit}",
                    ))

        alerts.sort(key=lambda a: (
            0 if a.is_triggered else 1,
            a.asset_id,
            0 if a.alert_type == dm.AlertType.STOP_LOSS else 1,
        ))

        triggered = sum(1 for a in alerts if a.is_triggered)
        if triggered:
            logger.warning(f"{triggered} risk target(s) triggered")
        return alerts

    def _alert(self, asset_id, alert_type, status, price, target_price, distance, message) -> dm.Alert:
        return dm.Alert(
            asset_id=asset_id,
            alert_type=alert_type,
            status=status,
            market_price=price,
            target_price=target_price,
            distance=distance,
            message=message,
        )

    # =========================================================================
    # Risk / reward
    # =========================================================================

    def assess(
        self,
        positions: Iterable[dm.Position],
        targets: Iterable[dm.RiskTarget],
    ) -> List[dm.RiskTargetAssessment]:
        """
        Risk/reward per monitored position.

        max_loss = (price - stop) * qty, max_gain = (take - price) * qty.
        The ratio needs both levels and a positive max_loss; without it the
        position is rated HIGH.
        """
        assessments = []
        for target, position in self._monitored(positions, targets):
            price = position.market_price
            qty = position.quantity

            max_loss = (price - target.stop_loss) * qty if target.stop_loss is not None else dm.ZERO
            max_gain = (target.take_profit - price) * qty if target.take_profit is not None else dm.ZERO

            ratio = None
            if target.stop_loss is not None and target.take_profit is not None and max_loss > 0:
                ratio = float(max_gain / max_loss)

            assessments.append(dm.RiskTargetAssessment(
                asset_id=target.asset_id,
                market_price=price,
                quantity=qty,
                position_value=price * qty,
                stop_loss=target.stop_loss,
                take_profit=target.take_profit,
                stop_loss_distance=target.stop_loss_distance(price),
                take_profit_distance=target.take_profit_distance(price),
                max_loss=max_loss,
                max_gain=max_gain,
                risk_reward_ratio=ratio,
                risk_level=self.risk_level(ratio),
            ))
        return assessments

    def risk_level(self, ratio: Optional[float]) -> dm.RiskLevel:
        if ratio is None or ratio < self.config.high_risk_reward_below:
            return dm.RiskLevel.HIGH
        if ratio < self.config.medium_risk_reward_below:
            return dm.RiskLevel.MEDIUM
        return dm.RiskLevel.LOW

    def summarize(
        self,
        targets: Sequence[dm.RiskTarget],
        alerts: Sequence[dm.Alert],
        assessments: Sequence[dm.RiskTargetAssessment],
    ) -> dm.RiskSummary:
        """Portfolio roll-up of targets, alerts and assessments."""
        active = [t for t in targets if t.is_active]
        summary = dm.RiskSummary(
            total_targets=len(targets),
            active_targets=len(active),
            triggered_alerts=sum(1 for a in alerts if a.is_triggered),
            near_trigger_alerts=sum(1 for a in alerts if not a.is_triggered),
            assessments=list(assessments),
        )

        stops = [t.stop_loss for t in active if t.stop_loss is not None]
        takes = [t.take_profit for t in active if t.take_profit is not None]
        summary.both_targets = sum(
            1 for t in active if t.stop_loss is not None and t.take_profit is not None
        )
        summary.stop_loss_only = len(stops) - summary.both_targets
        summary.take_profit_only = len(takes) - summary.both_targets
        if stops:
            summary.average_stop_loss = sum(stops, dm.ZERO) / len(stops)
        if takes:
            summary.average_take_profit = sum(takes, dm.ZERO) / len(takes)

        summary.total_max_loss = sum((a.max_loss for a in assessments), dm.ZERO)
        summary.total_max_gain = sum((a.max_gain for a in assessments), dm.ZERO)

        ratios = [a.risk_reward_ratio for a in assessments if a.risk_reward_ratio is not None]
        if ratios:
            summary.average_risk_reward_ratio = sum(ratios) / len(ratios)

        return summary

    def _monitored(
        self,
        positions: Iterable[dm.Position],
        targets: Iterable[dm.RiskTarget],
    ) -> List[Tuple[dm.RiskTarget, dm.Position]]:
        """Active targets paired with their open, priced position."""
        by_asset: Dict[str, dm.Position] = {p.asset_id: p for p in positions}
        pairs = []
        for target in targets:
            if not target.is_active:
                continue
            position = by_asset.get(target.asset_id)
            if position is None or not position.is_open:
                continue
            if position.market_price is None or position.price_missing:
                logger.warning(f"Skipping risk target for {target.asset_id}: no market price")
                continue
            pairs.append((target, position))
        return pairs
