"""
CLI: Book BUY/SELL trades into the ledger
=========================================

Usage:
    python -m trade_ledger.cli.book_trade --portfolio main --asset AAPL --side BUY --quantity 10 --price 100
    python -m trade_ledger.cli.book_trade --portfolio main --asset AAPL --side SELL --quantity 5 --price 120 --fee 1.50
    python -m trade_ledger.cli.book_trade --file trades.yaml
    python -m trade_ledger.cli.book_trade --file trades.json --dry-run

File format (JSON or YAML), a single trade or a list:
    - portfolio_id: main
      asset_id: AAPL
      side: BUY
      quantity: 10
      price: 100
      fee: 0
      tax: 0
      trade_date: 2024-01-02

Every trade is validated and re-matched against the stored history plus the
trades before it in the same run. A SELL that exceeds the open lots rejects
the whole run; nothing is saved. --dry-run reports the matches and saves nothing.
"""

import argparse
import sys
import uuid
from typing import Any, Dict, List

from trade_ledger.cli.common import (
    MATCH_HEADERS, format_currency, format_quantity, load_analytics_config,
    load_data_file, match_rows, parse_date, parse_decimal, rich_table,
)
from trade_ledger.core.errors import InsufficientLotsError, ValidationError
import trade_ledger.core.models.domain as dm


def trade_from_dict(data: Dict[str, Any]) -> dm.Trade:
    """Build a Trade from file/argument values. Validation happens later."""
    for field in ('portfolio_id', 'asset_id', 'side', 'quantity', 'price'):
        if data.get(field) in (None, ''):
            print(f"ERROR: Missing required field: {field}")
            sys.exit(1)

    side = str(data['side']).upper()
    if side not in ('BUY', 'SELL'):
        print(f"ERROR: side must be BUY or SELL, got {data['side']!r}")
        sys.exit(1)

    trade_date = parse_date(str(data['trade_date'])) if data.get('trade_date') else None

    kwargs = dict(
        id=str(data.get('id') or uuid.uuid4()),
        portfolio_id=str(data['portfolio_id']),
        asset_id=str(data['asset_id']),
        side=dm.TradeSide(side),
        quantity=parse_decimal(data['quantity'], 'quantity'),
        price=parse_decimal(data['price'], 'price'),
        fee=parse_decimal(data.get('fee', 0), 'fee'),
        tax=parse_decimal(data.get('tax', 0), 'tax'),
        exchange=data.get('exchange'),
        funding_source=data.get('funding_source'),
    )
    if trade_date:
        kwargs['trade_date'] = trade_date
    return dm.Trade(**kwargs)


def load_trades(args) -> List[dm.Trade]:
    if args.file:
        data = load_data_file(args.file)
        items = data if isinstance(data, list) else [data]
        return [trade_from_dict(item) for item in items]

    return [trade_from_dict({
        'portfolio_id': args.portfolio,
        'asset_id': args.asset,
        'side': args.side,
        'quantity': args.quantity,
        'price': args.price,
        'fee': args.fee,
        'tax': args.tax,
        'trade_date': args.date,
        'exchange': args.exchange,
    })]


def book_trades(trades: List[dm.Trade], dry_run: bool = False, db=None) -> int:
    """
    Validate, match and persist each trade in order, in one transaction.

    Each trade is matched against the stored history plus the trades booked
    before it in the same run. A rejected trade rolls the whole run back, so
    a file import lands completely or not at all. A dry run books the same
    way and rolls back at the end.

    Args:
        trades: Trades in booking order
        dry_run: Match and report only, leave the ledger untouched
        db: DatabaseManager to book into (global database when omitted)

    Returns:
        Process exit code: 0 when every trade was booked, 1 otherwise
    """
    from trade_ledger.config.settings import get_settings
    from trade_ledger.core.database.session import init_database
    from trade_ledger.repositories.base import RepositoryError
    from trade_ledger.repositories.trade import TradeRepository
    from trade_ledger.services.analysis_cache import build_analysis_cache
    from trade_ledger.services.analysis_service import AnalysisService

    settings = get_settings()
    config = load_analytics_config(settings)
    db = db or init_database()

    with db.session_scope() as session:
        repo = TradeRepository(session)
        service = AnalysisService(repo, config=config, cache=build_analysis_cache(settings))

        for trade in trades:
            try:
                result = service.process_trade(trade)
                if repo.get_trade(trade.id) is None:
                    repo.create_from_domain(trade)
                else:
                    repo.update_from_domain(trade)
            except (ValidationError, InsufficientLotsError) as e:
                session.rollback()
                print(f"\nREJECTED {trade.id[:8]}: {e}")
                print(f"  Nothing saved, all {len(trades)} trades rolled back")
                return 1
            except RepositoryError as e:
                session.rollback()
                print(f"\nFAILED: could not save trade {trade.id}: {e}")
                return 1

            display_result(trade, result, dry_run)

        if dry_run:
            session.rollback()

    return 0


def display_result(trade: dm.Trade, result: dm.MatchResult, dry_run: bool) -> None:
    mode = "[DRY RUN] " if dry_run else ""
    summary = [
        ["Trade ID", trade.id[:12] + "..."],
        ["Portfolio", trade.portfolio_id],
        ["Asset", trade.asset_id],
        ["Side", trade.side.value],
        ["Quantity", format_quantity(trade.quantity)],
        ["Price", format_currency(trade.price)],
        ["Fee + Tax", format_currency(trade.charges)],
        ["Open after", format_quantity(result.open_quantity(trade.asset_id))],
    ]
    print(rich_table(summary, headers=["Field", "Value"], title=f"{mode}Trade Booked"))

    matches = result.matches_for(trade.id)
    if matches:
        print(rich_table(match_rows(matches), headers=MATCH_HEADERS, title="Lot Matches"))
        realized = sum((m.realized_pl for m in matches), dm.ZERO)
        print(f"  Realized P&L: {format_currency(realized)}")


def main():
    parser = argparse.ArgumentParser(
        description="Book BUY/SELL trades into the ledger (FIFO/LIFO matched)",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m trade_ledger.cli.book_trade --portfolio main --asset AAPL --side BUY --quantity 10 --price 100
  python -m trade_ledger.cli.book_trade --file trades.yaml --dry-run
        """
    )

    parser.add_argument('--file', '-f', help='JSON/YAML file with one trade or a list of trades')
    parser.add_argument('--portfolio', help='Portfolio ID')
    parser.add_argument('--asset', help='Asset ID / symbol')
    parser.add_argument('--side', choices=['BUY', 'SELL', 'buy', 'sell'])
    parser.add_argument('--quantity', help='Units traded (> 0)')
    parser.add_argument('--price', help='Price per unit (> 0)')
    parser.add_argument('--fee', default='0')
    parser.add_argument('--tax', default='0')
    parser.add_argument('--date', help='Trade date YYYY-MM-DD (default: now)')
    parser.add_argument('--exchange')
    parser.add_argument('--dry-run', action='store_true', help='Validate and match only, do not save')

    args = parser.parse_args()

    if not args.file and not (args.portfolio and args.asset and args.side):
        parser.error("either --file or --portfolio/--asset/--side/--quantity/--price is required")

    from trade_ledger.config.settings import setup_logging
    setup_logging()

    trades = load_trades(args)

    print("=" * 60)
    print("  TRADE BOOKING")
    print("=" * 60)
    print(f"  Trades: {len(trades)}")
    print()

    return book_trades(trades, dry_run=args.dry_run)


if __name__ == "__main__":
    sys.exit(main())
