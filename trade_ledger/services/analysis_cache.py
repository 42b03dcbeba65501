"""
Analysis Cache - memoized AnalysisReports keyed by ledger version

Keys include the portfolio's ledger version, so a trade mutation makes old
entries unreachable. Storing a report for a newer version also drops every
older-version entry of that portfolio ("bump and replace"), and
process_trade() invalidates the portfolio explicitly.

Usage:
    cache = AnalysisCache(max_entries=256)
    key = AnalysisCache.make_key(pid, timeframe, granularity, as_of, prices, version)
    report = cache.get(key)
    if report is None:
        report = build()
        cache.put(key, report)
"""

from collections import OrderedDict
from datetime import datetime
from decimal import Decimal
from typing import Mapping, NamedTuple, Optional, Tuple
import threading
import logging

import trade_ledger.core.models.domain as dm

logger = logging.getLogger(__name__)


class CacheKey(NamedTuple):
    portfolio_id: str
    timeframe: dm.Timeframe
    granularity: dm.Granularity
    as_of: datetime
    prices: Tuple[Tuple[str, Decimal], ...]
    version: int


class AnalysisCache:
    """Bounded LRU of analysis reports, safe to share between threads."""

    def __init__(self, max_entries: int = 256, enabled: bool = True):
        self.max_entries = max_entries
        self.enabled = enabled
        self._entries: 'OrderedDict[CacheKey, dm.AnalysisReport]' = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    @staticmethod
    def make_key(
        portfolio_id: str,
        timeframe: dm.Timeframe,
        granularity: dm.Granularity,
        as_of: datetime,
        prices: Mapping[str, Decimal],
        version: int,
    ) -> CacheKey:
        """Build a key; the price map is frozen into a sorted tuple."""
        return CacheKey(
            portfolio_id=portfolio_id,
            timeframe=timeframe,
            granularity=granularity,
            as_of=as_of,
            prices=tuple(sorted(prices.items())),
            version=version,
        )

    def get(self, key: CacheKey) -> Optional[dm.AnalysisReport]:
        if not self.enabled:
            return None
        with self._lock:
            report = self._entries.get(key)
            if report is None:
                self.misses += 1
                return None
            self._entries.move_to_end(key)
            self.hits += 1
            return report

    def put(self, key: CacheKey, report: dm.AnalysisReport) -> None:
        if not self.enabled:
            return
        with self._lock:
            stale = [
                k for k in self._entries
                if k.portfolio_id == key.portfolio_id and k.version < key.version
            ]
            for k in stale:
                del self._entries[k]

            self._entries[key] = report
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def invalidate(self, portfolio_id: str) -> int:
        """Drop every entry of a portfolio. Returns the number removed."""
        with self._lock:
            keys = [k for k in self._entries if k.portfolio_id == portfolio_id]
            for k in keys:
                del self._entries[k]
        if keys:
            logger.debug(f"Invalidated {len(keys)} cached report(s) for portfolio {portfolio_id}")
        return len(keys)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


def build_analysis_cache(settings=None) -> AnalysisCache:
    """Cache sized and enabled from Settings (ANALYSIS_CACHE_* env vars)."""
    if settings is None:
        from trade_ledger.config.settings import get_settings
        settings = get_settings()
    return AnalysisCache(
        max_entries=settings.analysis_cache_max_entries,
        enabled=settings.analysis_cache_enabled,
    )
