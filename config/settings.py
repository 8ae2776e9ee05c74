"""
Configuration module for the Venue Quote Monitor.
Handles baseline, liquidity, arbitrage and alert materiality thresholds.
"""

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings
from typing import Dict, Tuple
from pathlib import Path


class BaselineConfig(BaseSettings):
    """Baseline capture and spread deviation parameters."""

    # Spread multipliers relative to baseline
    warn_multiplier: float = Field(
        default=1.5,
        gt=1.0,
        description="Spread ratio vs baseline that flags a drift"
    )
    crit_multiplier: float = Field(
        default=3.0,
        gt=1.0,
        description="Spread ratio vs baseline that flags a blow-out"
    )

    max_age_hours: float = Field(
        default=12.0,
        gt=0,
        description="Baseline older than this is discarded and recaptured"
    )
    default_spread_threshold: float = Field(
        default=50.0,
        description="Spread % threshold for buckets without a baseline sample"
    )
    tenor_cuts: Tuple[float, ...] = Field(
        default=(1, 3, 7, 30, 90),
        description="Days-to-expiry cut points for tenor buckets"
    )
    health_tolerance: float = Field(
        default=2.0,
        description="Multiple of bucket p95 spread still counted as healthy"
    )
    path: Path = Field(
        default=Path("data/baseline.json"),
        description="Where the rolling baseline is persisted"
    )

    @field_validator("tenor_cuts")
    @classmethod
    def _cuts_ascending(cls, v):
        if list(v) != sorted(v) or len(set(v)) != len(v):
            raise ValueError("tenor_cuts must be strictly ascending")
        return tuple(v)

    class Config:
        env_prefix = "BASELINE_"
        frozen = True


class LiquidityConfig(BaseSettings):
    """Reference venue liquidity filters."""

    min_ref_volume: float = Field(
        default=50000.0,
        description="Minimum 24h notional volume for a reference quote"
    )
    min_ref_open_interest: float = Field(
        default=5.0,
        description="Minimum open interest (contracts) for a reference quote"
    )

    class Config:
        env_prefix = "LIQ_"
        frozen = True


class ArbitrageConfig(BaseSettings):
    """Cross-venue arbitrage detection parameters."""

    # Materiality thresholds
    price_diff_pct: float = Field(
        default=20.0,
        description="Primary vs reference mid difference (%) to flag"
    )
    iv_diff_vol_pts: float = Field(
        default=8.0,
        description="Implied vol difference in vol points to flag"
    )
    perp_basis_bps: float = Field(
        default=5.0,
        description="Perp basis difference in bps to flag"
    )
    funding_bps: float = Field(
        default=6.0,
        description="Funding rate difference in bps to flag"
    )
    funding_profitable_bps: float = Field(
        default=3.0,
        description="Funding difference in bps considered actionable"
    )

    # Transaction costs
    slippage_pct: float = Field(
        default=0.005,
        description="Per-leg slippage allowance as a fraction of price"
    )
    fees: Dict[str, Dict[str, float]] = Field(
        default={
            "PT": {"maker": 0.0003, "taker": 0.0005},
            "Deribit": {"maker": 0.0002, "taker": 0.0003},
            "OKX": {"maker": 0.0002, "taker": 0.0003},
            "Bybit": {"maker": 0.0002, "taker": 0.0004},
            "CoinCall": {"maker": 0.0003, "taker": 0.0004},
        },
        description="Maker/taker fee fractions by venue"
    )
    default_taker_fee: float = Field(
        default=0.0005,
        description="Taker fee for venues missing from the fee table"
    )
    min_net_edge: float = Field(
        default=0.0,
        ge=0.0,
        description="Minimum net edge in currency units to mark profitable"
    )

    # Primary instrument filters
    min_primary_mid: float = Field(
        default=1.0,
        description="Ignore primary options with a mid below this"
    )
    min_days_to_expiry: float = Field(
        default=2.0,
        description="Ignore options expiring sooner than this (days)"
    )

    class Config:
        env_prefix = "ARB_"
        frozen = True

    def taker_fee(self, venue: str) -> float:
        """Taker fee fraction for a venue, falling back to the default."""
        return self.fees.get(venue, {}).get("taker", self.default_taker_fee)


class MaterialityConfig(BaseSettings):
    """Alert materiality and dispatch filters."""

    min_open_interest: float = Field(
        default=0.0,
        ge=0.0,
        description="Pulled quotes need OI above this unless near the money"
    )
    near_money_pct: float = Field(
        default=0.10,
        description="Moneyness below which a pulled quote is always material"
    )
    expiry_window_hours: float = Field(
        default=4.0,
        description="Lookahead window for near-expiry alerts"
    )
    min_confidence: int = Field(
        default=50,
        ge=0,
        le=100,
        description="Alerts below this confidence are suppressed"
    )
    only_critical: bool = Field(
        default=False,
        description="Dispatch critical alerts only"
    )

    class Config:
        env_prefix = "ALERT_"
        frozen = True


class AppConfig(BaseSettings):
    """Main application configuration."""

    baseline: BaselineConfig = Field(default_factory=BaselineConfig)
    liquidity: LiquidityConfig = Field(default_factory=LiquidityConfig)
    arbitrage: ArbitrageConfig = Field(default_factory=ArbitrageConfig)
    materiality: MaterialityConfig = Field(default_factory=MaterialityConfig)

    # Application settings
    primary_venue: str = Field(default="PT")
    dry_run: bool = Field(default=False)
    log_level: str = Field(default="INFO")
    data_dir: Path = Field(
        default=Path("data"),
        description="Directory for exports"
    )

    class Config:
        env_file = ".env"
        env_nested_delimiter = "__"
        frozen = True


def get_config() -> AppConfig:
    """Build the configuration for one run."""
    return AppConfig()
