"""
CLI: Set, update or deactivate stop-loss / take-profit targets

Usage:
    python -m trade_ledger.cli.set_risk_target --portfolio main --asset AAPL --stop 90 --take 130
    python -m trade_ledger.cli.set_risk_target --portfolio main --asset AAPL --take 140 --update
    python -m trade_ledger.cli.set_risk_target --portfolio main --asset AAPL --stop 95 --current-price 110
    python -m trade_ledger.cli.set_risk_target --portfolio main --asset AAPL --deactivate
"""

import argparse
import sys

from trade_ledger.cli.common import format_currency, parse_decimal, rich_table
from trade_ledger.core.errors import RiskTargetValidationError
from trade_ledger.repositories.base import EntityNotFoundError


def main():
    parser = argparse.ArgumentParser(description="Manage risk targets for an asset")
    parser.add_argument('--portfolio', required=True, help='Portfolio ID')
    parser.add_argument('--asset', required=True, help='Asset ID / symbol')
    parser.add_argument('--stop', help='Stop-loss price')
    parser.add_argument('--take', help='Take-profit price')
    parser.add_argument('--current-price', help='Check levels against this price')
    parser.add_argument('--update', action='store_true', help='Keep levels that are not given')
    parser.add_argument('--deactivate', action='store_true', help='Stop monitoring this asset')
    args = parser.parse_args()

    from trade_ledger.config.settings import setup_logging
    from trade_ledger.core.database.session import init_database, session_scope
    from trade_ledger.repositories.risk_target import RiskTargetRepository

    setup_logging()
    init_database()

    stop = parse_decimal(args.stop, 'stop') if args.stop else None
    take = parse_decimal(args.take, 'take') if args.take else None
    current = parse_decimal(args.current_price, 'current price') if args.current_price else None

    with session_scope() as session:
        repo = RiskTargetRepository(session)
        try:
            if args.deactivate:
                target = repo.deactivate(args.portfolio, args.asset)
            elif args.update:
                target = repo.update_targets(args.portfolio, args.asset, stop, take, current)
            else:
                target = repo.set_targets(args.portfolio, args.asset, stop, take, current)
        except RiskTargetValidationError as e:
            print("ERROR: invalid risk targets")
            for err in e.errors:
                print(f"  - {err}")
            return 1
        except EntityNotFoundError as e:
            print(f"ERROR: {e}")
            return 1

        rows = [
            ["Asset", target.asset_id],
            ["Stop Loss", format_currency(target.stop_loss)],
            ["Take Profit", format_currency(target.take_profit)],
            ["Active", "yes" if target.is_active else "no"],
        ]
        print(rich_table(rows, headers=["Field", "Value"], title=f"Risk Targets - {args.portfolio}"))

    return 0


if __name__ == "__main__":
    sys.exit(main())
