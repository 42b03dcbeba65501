"""
Market price lookup contract.

The engine treats price lookup as a synchronous external call. Providers
raise PriceProviderError on failure; the analysis service then degrades to
"price missing" for the affected assets instead of failing the request.
"""

from abc import ABC, abstractmethod
from decimal import Decimal, InvalidOperation
from typing import Dict, Iterable, Mapping, Optional
import logging

from trade_ledger.core.errors import PriceProviderError

logger = logging.getLogger(__name__)


class MarketPriceProvider(ABC):
    """get(asset_ids) -> {asset_id: price}; unknown assets are simply absent"""

    @abstractmethod
    def get(self, asset_ids: Iterable[str]) -> Dict[str, Decimal]:
        ...


class StaticPriceProvider(MarketPriceProvider):
    """
    In-memory price table.

    Usage:
        provider = StaticPriceProvider({'AAPL': Decimal('190.5')})
        provider.set_price('MSFT', Decimal('410'))
        prices = provider.get(['AAPL', 'MSFT', 'TSLA'])  # TSLA absent
    """

    def __init__(self, prices: Optional[Mapping[str, object]] = None):
        self._prices: Dict[str, Decimal] = normalize_prices(prices or {})

    def set_price(self, asset_id: str, price) -> None:
        self._prices[asset_id] = to_price(price)

    def get(self, asset_ids: Iterable[str]) -> Dict[str, Decimal]:
        return {a: self._prices[a] for a in asset_ids if a in self._prices}


def to_price(value) -> Decimal:
    """Coerce int/str/float/Decimal to a positive Decimal price."""
    try:
        price = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise PriceProviderError(f"Invalid price {value!r}") from e
    if not price.is_finite() or price <= 0:
        raise PriceProviderError(f"Price must be positive, got {value!r}")
    return price


def normalize_prices(prices: Mapping[str, object]) -> Dict[str, Decimal]:
    return {asset_id: to_price(p) for asset_id, p in prices.items()}
