"""
Analytics Configuration Loader

Loads risk methodology, ranking and risk-target parameters from YAML.
Every section is optional; missing values fall back to dataclass defaults.
"""

from dataclasses import dataclass, field
from typing import Dict, Optional, Any
from pathlib import Path
import yaml
import logging

import trade_ledger.core.models.domain as dm

logger = logging.getLogger(__name__)


# =============================================================================
# Configuration Data Classes
# =============================================================================

@dataclass
class RiskMethodologyConfig:
    """How volatility, Sharpe and VaR are computed"""
    var_method: dm.VaRMethod = dm.VaRMethod.HISTORICAL
    confidence_level: float = 0.95
    risk_free_rate: float = 0.0            # annual
    periods_per_year: Dict[dm.Granularity, int] = field(default_factory=lambda: {
        dm.Granularity.DAILY: 252,
        dm.Granularity.WEEKLY: 52,
        dm.Granularity.MONTHLY: 12,
    })

    def annualization_factor(self, granularity: dm.Granularity) -> int:
        return self.periods_per_year[granularity]


@dataclass
class RankingConfig:
    """Top/worst trade list sizes"""
    top_trades_count: int = 5


@dataclass
class RiskTargetConfig:
    """Alerting thresholds"""
    near_trigger_threshold: float = 0.05   # 5% away from the target
    high_risk_reward_below: float = 1.0
    medium_risk_reward_below: float = 2.0


@dataclass
class LedgerConfig:
    """Lot construction and matching"""
    fee_in_cost_basis: bool = False
    matching_method: dm.MatchingMethod = dm.MatchingMethod.FIFO


@dataclass
class AnalyticsConfig:
    """Complete analytics configuration"""
    risk: RiskMethodologyConfig = field(default_factory=RiskMethodologyConfig)
    ranking: RankingConfig = field(default_factory=RankingConfig)
    risk_targets: RiskTargetConfig = field(default_factory=RiskTargetConfig)
    ledger: LedgerConfig = field(default_factory=LedgerConfig)


# =============================================================================
# Config Loader
# =============================================================================

class AnalyticsConfigLoader:
    """
    Load analytics configuration from YAML file.

    Usage:
        loader = AnalyticsConfigLoader()
        config = loader.load()  # Loads from default location

        # Or specify path
        config = loader.load('/path/to/analytics_config.yaml')

        print(config.risk.var_method)
        print(config.risk.annualization_factor(dm.Granularity.DAILY))
    """

    DEFAULT_PATHS = [
        Path('config/analytics_config.yaml'),
        Path(__file__).parent / 'analytics_config.yaml',
    ]

    def __init__(self):
        self._config: Optional[AnalyticsConfig] = None
        self._config_path: Optional[Path] = None

    def load(self, config_path: str = None) -> AnalyticsConfig:
        """
        Load configuration from YAML file.

        Args:
            config_path: Path to config file (optional, will search defaults)

        Returns:
            AnalyticsConfig object. Defaults are used when no file exists
            at any default location.
        """
        if config_path:
            path = Path(config_path)
            if not path.exists():
                raise FileNotFoundError(f"Config file not found: {config_path}")
        else:
            path = self._find_config_file()

        if path is None:
            logger.info("No analytics config file found, using defaults")
            self._config = AnalyticsConfig()
            return self._config

        self._config_path = path
        logger.info(f"Loading analytics config from: {path}")

        with open(path, 'r') as f:
            raw_config = yaml.safe_load(f) or {}

        self._config = self.parse(raw_config)
        logger.info(
            f"✓ Loaded analytics configuration "
            f"(var={self._config.risk.var_method.value}, "
            f"confidence={self._config.risk.confidence_level})"
        )
        return self._config

    def get_config(self) -> AnalyticsConfig:
        """Get loaded config (load if not already loaded)."""
        if self._config is None:
            return self.load()
        return self._config

    def reload(self) -> AnalyticsConfig:
        """Reload configuration from file."""
        if self._config_path:
            return self.load(str(self._config_path))
        return self.load()

    def _find_config_file(self) -> Optional[Path]:
        """Find config file in default locations."""
        for path in self.DEFAULT_PATHS:
            if path.exists():
                return path
        return None

    @staticmethod
    def parse(raw: Dict[str, Any]) -> AnalyticsConfig:
        """Parse raw YAML into typed config."""
        config = AnalyticsConfig()

        if 'risk_methodology' in raw:
            rm = raw['risk_methodology'] or {}
            risk = RiskMethodologyConfig()
            if 'var_method' in rm:
                risk.var_method = dm.VaRMethod(rm['var_method'])
            if 'confidence_level' in rm:
                risk.confidence_level = float(rm['confidence_level'])
                if not 0 < risk.confidence_level < 1:
                    raise ValueError(
                        f"confidence_level must be in (0, 1), got {risk.confidence_level}"
                    )
            if 'risk_free_rate' in rm:
                risk.risk_free_rate = float(rm['risk_free_rate'])
            for key, periods in (rm.get('periods_per_year') or {}).items():
                risk.periods_per_year[dm.Granularity(key)] = int(periods)
            config.risk = risk

        if 'ranking' in raw:
            config.ranking = RankingConfig(**(raw['ranking'] or {}))

        if 'risk_targets' in raw:
            config.risk_targets = RiskTargetConfig(**(raw['risk_targets'] or {}))

        if 'ledger' in raw:
            ledger = dict(raw['ledger'] or {})
            if 'matching_method' in ledger:
                ledger['matching_method'] = dm.MatchingMethod(str(ledger['matching_method']).lower())
            config.ledger = LedgerConfig(**ledger)

        return config


# =============================================================================
# Global Config Instance
# =============================================================================

_analytics_config_loader: Optional[AnalyticsConfigLoader] = None


def get_analytics_config() -> AnalyticsConfig:
    """
    Get global analytics configuration (singleton).

    Usage:
        from trade_ledger.config.analytics_config_loader import get_analytics_config

        config = get_analytics_config()
        confidence = config.risk.confidence_level
    """
    global _analytics_config_loader
    if _analytics_config_loader is None:
        _analytics_config_loader = AnalyticsConfigLoader()
    return _analytics_config_loader.get_config()


def reload_analytics_config() -> AnalyticsConfig:
    """Reload analytics configuration from file."""
    global _analytics_config_loader
    if _analytics_config_loader is None:
        _analytics_config_loader = AnalyticsConfigLoader()
    return _analytics_config_loader.reload()
