"""
Shared CLI helpers: table rendering, value formatting, price/trade file parsing.
"""

import json
import sys
from datetime import datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from tabulate import tabulate

from trade_ledger.config.analytics_config_loader import (
    AnalyticsConfig, AnalyticsConfigLoader, get_analytics_config,
)
from trade_ledger.config.settings import Settings
import trade_ledger.core.models.domain as dm


# =============================================================================
# Formatting
# =============================================================================

def format_currency(value: Optional[Decimal]) -> str:
    if value is None:
        return "-"
    return f"${float(value):,.2f}"


def format_percent(value: Optional[float]) -> str:
    if value is None:
        return "-"
    return f"{value:.1f}%"


def format_quantity(value: Decimal) -> str:
    return f"{value.normalize():f}" if value else "0"


def rich_table(data: List[List[Any]], headers: List[str], title: str = None,
               tablefmt: str = "rounded_grid") -> str:
    """Create a formatted table with optional title."""
    table = tabulate(data, headers=headers, tablefmt=tablefmt,
                     numalign="right", stralign="left")
    if title:
        return f"\n{title}\n{table}"
    return table


def match_rows(matches: List[dm.Match]) -> List[List[Any]]:
    return [
        [
            m.trade_date.strftime('%Y-%m-%d'),
            m.asset_id,
            format_quantity(m.matched_quantity),
            format_currency(m.cost_price_per_unit),
            format_currency(m.sell_price),
            format_currency(m.realized_pl),
        ]
        for m in matches
    ]


MATCH_HEADERS = ["Sold", "Asset", "Qty", "Cost", "Sell", "Realized"]


# =============================================================================
# Input parsing
# =============================================================================

def load_data_file(filepath: str) -> Any:
    """Load a JSON or YAML file (auto-detects by extension)."""
    path = Path(filepath)
    if not path.exists():
        print(f"ERROR: File not found: {filepath}")
        sys.exit(1)

    with open(path, 'r') as f:
        if path.suffix.lower() in ('.yaml', '.yml'):
            return yaml.safe_load(f)
        return json.load(f)


def parse_prices(pairs: Optional[List[str]], prices_file: Optional[str] = None) -> Optional[Dict[str, str]]:
    """Merge ASSET=PRICE pairs over an optional price file. None when neither given."""
    if not pairs and not prices_file:
        return None

    prices: Dict[str, str] = {}
    if prices_file:
        data = load_data_file(prices_file) or {}
        prices.update({str(k): str(v) for k, v in data.items()})

    for pair in pairs or []:
        if '=' not in pair:
            print(f"ERROR: Price must look like ASSET=PRICE, got {pair!r}")
            sys.exit(1)
        asset_id, price = pair.split('=', 1)
        prices[asset_id.strip()] = price.strip()
    return prices


def parse_decimal(value: Any, name: str) -> Decimal:
    try:
        return Decimal(str(value))
    except InvalidOperation:
        print(f"ERROR: {name} is not a number: {value!r}")
        sys.exit(1)


def parse_date(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    for fmt in ('%Y-%m-%d', '%Y-%m-%dT%H:%M:%S', '%Y-%m-%d %H:%M:%S'):
        try:
            return datetime.strptime(str(value), fmt)
        except ValueError:
            continue
    print(f"ERROR: Unrecognized date {value!r} (use YYYY-MM-DD)")
    sys.exit(1)


def load_analytics_config(settings: Settings) -> AnalyticsConfig:
    """Analytics YAML from ANALYTICS_CONFIG_PATH, else the default search."""
    if settings.analytics_config_path:
        return AnalyticsConfigLoader().load(str(settings.analytics_config_path))
    return get_analytics_config()
