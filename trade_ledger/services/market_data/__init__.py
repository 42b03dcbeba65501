"""
Market Data Module
==================

Price lookup contract used by the analysis service.

Usage:
    from trade_ledger.services.market_data import StaticPriceProvider

    provider = StaticPriceProvider({'AAPL': '190.50'})
    prices = provider.get(['AAPL'])
"""

from .price_provider import (
    MarketPriceProvider,
    StaticPriceProvider,
    normalize_prices,
    to_price,
)
