"""
CLI: Portfolio analysis - P&L, periods, risk metrics, positions, alerts

Usage:
    python -m trade_ledger.cli.analyze_portfolio --portfolio main --price AAPL=190 --price MSFT=410
    python -m trade_ledger.cli.analyze_portfolio --portfolio main --timeframe 3M --granularity weekly
    python -m trade_ledger.cli.analyze_portfolio --portfolio main --prices prices.yaml --positions-only
    python -m trade_ledger.cli.analyze_portfolio --portfolio main --prices prices.json --json

Prices come from --price/--prices only; assets without a price are reported
as "price missing" and valued at cost for VaR.
"""

import argparse
import json
import sys

from trade_ledger.cli.common import (
    MATCH_HEADERS, format_currency, format_percent, format_quantity,
    load_analytics_config, match_rows, parse_date, parse_prices, rich_table,
)
from trade_ledger.core.errors import InsufficientLotsError, LedgerError
import trade_ledger.core.models.domain as dm


def print_report(report: dm.AnalysisReport) -> None:
    s = report.pnl_summary
    st = report.statistics
    r = report.risk_metrics

    print(f"\n{'=' * 70}")
    print(f"  Portfolio {report.portfolio_id} - {report.timeframe.value} / {report.granularity.value}")
    if report.window.start:
        print(f"  Window: {report.window.start:%Y-%m-%d} .. {report.window.end:%Y-%m-%d}")
    print(f"{'=' * 70}")

    summary = [
        ["Realized P&L", format_currency(s.total_realized_pnl)],
        ["Unrealized P&L", format_currency(s.total_unrealized_pnl)],
        ["Total P&L", format_currency(s.total_pnl)],
        ["Win Rate", format_percent(s.win_rate)],
        ["Matches (W/L)", f"{s.total_matches} ({s.winning_matches}/{s.losing_matches})"],
        ["Trades (B/S)", f"{st.total_trades} ({st.buy_trades}/{st.sell_trades})"],
        ["Volume", format_currency(st.total_volume)],
        ["Fees + Taxes", format_currency(st.total_fees + st.total_taxes)],
        ["Profit Factor", f"{st.profit_factor:.2f}" if st.profit_factor else "-"],
        ["Expectancy", format_currency(st.expectancy)],
    ]
    print(rich_table(summary, headers=["Metric", "Value"], title="P&L Summary"))

    risk = [
        ["Volatility (ann.)", format_percent(r.volatility * 100)],
        ["Sharpe", f"{r.sharpe_ratio:.2f}" if r.sharpe_ratio is not None else "-"],
        ["Max Drawdown", f"{format_currency(r.max_drawdown)} ({r.max_drawdown_pct:.1f}%)"],
        [f"VaR {r.confidence_level:.0%} ({r.method.value})", format_currency(r.var95)],
        ["CVaR", format_currency(r.cvar95)],
        ["Observations", r.observations],
    ]
    print(rich_table(risk, headers=["Metric", "Value"], title="Risk Metrics"))

    if report.monthly_performance:
        rows = [
            [
                p.label,
                format_currency(p.realized_pnl),
                format_currency(p.unrealized_pnl),
                format_currency(p.cumulative_realized_pnl),
                p.trades_count,
                p.winning_trades,
            ]
            for p in report.monthly_performance
        ]
        print(rich_table(
            rows,
            headers=["Period", "Realized", "Unrealized", "Cum. Realized", "Matches", "Wins"],
            title="Period Performance",
        ))

    if report.asset_performance:
        rows = [
            [
                a.asset_id,
                format_currency(a.total_pl),
                format_currency(a.realized_pl),
                format_currency(a.unrealized_pl),
                a.trades_count,
                format_percent(a.win_rate),
            ]
            for a in report.asset_performance
        ]
        print(rich_table(
            rows,
            headers=["Asset", "Total", "Realized", "Unrealized", "Matches", "Win %"],
            title="Asset Performance",
        ))

    if report.top_trades:
        print(rich_table(match_rows(report.top_trades), headers=MATCH_HEADERS, title="Top Trades"))
    if report.worst_trades:
        print(rich_table(match_rows(report.worst_trades), headers=MATCH_HEADERS, title="Worst Trades"))

    print_positions(report.positions)

    if report.missing_price_assets:
        print(f"\n  WARNING: no price for {', '.join(report.missing_price_assets)}")


def print_positions(positions) -> None:
    if not positions:
        print("\n  No open positions.")
        return
    rows = [
        [
            p.asset_id,
            format_quantity(p.quantity),
            format_currency(p.avg_cost),
            format_currency(p.market_price),
            format_currency(p.market_value),
            format_currency(p.unrealized_pl),
            format_percent(p.unrealized_pl_pct),
        ]
        for p in positions
    ]
    print(rich_table(
        rows,
        headers=["Asset", "Qty", "Avg Cost", "Price", "Value", "Unrealized", "%"],
        title="Open Positions",
    ))


def print_alerts(alerts, summary: dm.RiskSummary) -> None:
    if alerts:
        rows = [
            [
                a.asset_id,
                a.alert_type.value,
                a.status.value.upper(),
                format_currency(a.market_price),
                format_currency(a.target_price),
                f"{float(a.distance) * 100:+.2f}%",
            ]
            for a in alerts
        ]
        print(rich_table(
            rows,
            headers=["Asset", "Target", "Status", "Price", "Level", "Distance"],
            title="Risk Target Alerts",
        ))
    elif summary.active_targets:
        print("\n  No risk target alerts.")

    if summary.assessments:
        rows = [
            [
                a.asset_id,
                format_currency(a.max_loss),
                format_currency(a.max_gain),
                f"{a.risk_reward_ratio:.2f}" if a.risk_reward_ratio is not None else "-",
                a.risk_level.value,
            ]
            for a in summary.assessments
        ]
        print(rich_table(
            rows,
            headers=["Asset", "Max Loss", "Max Gain", "Reward/Risk", "Level"],
            title=f"Risk Targets ({summary.active_targets}/{summary.total_targets} active)",
        ))


def main():
    parser = argparse.ArgumentParser(
        description="Analyze a portfolio: P&L, period performance, risk metrics, alerts",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m trade_ledger.cli.analyze_portfolio --portfolio main --price AAPL=190
  python -m trade_ledger.cli.analyze_portfolio --portfolio main --timeframe 1Y --granularity weekly
        """
    )
    parser.add_argument('--portfolio', required=True, help='Portfolio ID')
    parser.add_argument('--timeframe', choices=[t.value for t in dm.Timeframe])
    parser.add_argument('--granularity', choices=[g.value for g in dm.Granularity])
    parser.add_argument('--as-of', help='Report date YYYY-MM-DD (default: now)')
    parser.add_argument('--price', action='append', metavar='ASSET=PRICE',
                        help='Market price (repeatable)')
    parser.add_argument('--prices', help='JSON/YAML file mapping asset -> price')
    parser.add_argument('--positions-only', action='store_true', help='Only show open positions')
    parser.add_argument('--json', action='store_true', help='Print the report as JSON')
    args = parser.parse_args()

    from trade_ledger.config.settings import get_settings, setup_logging
    from trade_ledger.core.database.session import init_database, session_scope
    from trade_ledger.repositories.risk_target import RiskTargetRepository
    from trade_ledger.repositories.trade import TradeRepository
    from trade_ledger.services.analysis_cache import build_analysis_cache
    from trade_ledger.services.analysis_service import AnalysisService
    from trade_ledger.services.market_data import StaticPriceProvider

    settings = get_settings()
    setup_logging(settings)
    init_database()

    prices = parse_prices(args.price, args.prices) or {}

    with session_scope() as session:
        service = AnalysisService(
            TradeRepository(session),
            price_provider=StaticPriceProvider(prices),
            risk_target_store=RiskTargetRepository(session),
            config=load_analytics_config(settings),
            cache=build_analysis_cache(settings),
        )

        try:
            if args.positions_only:
                print_positions(service.get_positions(args.portfolio))
                return 0

            report = service.get_analysis(
                args.portfolio,
                timeframe=args.timeframe or settings.default_timeframe,
                granularity=args.granularity or settings.default_granularity,
                as_of=parse_date(args.as_of),
            )
            alerts = service.monitor_risk_targets(args.portfolio)
            summary = service.get_risk_summary(args.portfolio)
        except InsufficientLotsError as e:
            print(f"ERROR: stored trades are inconsistent: {e}")
            return 1
        except LedgerError as e:
            print(f"ERROR: {e}")
            return 1

    if args.json:
        print(json.dumps(report.to_dict(), indent=2, default=str))
        return 0

    print_report(report)
    print_alerts(alerts, summary)
    return 0


if __name__ == "__main__":
    sys.exit(main())
