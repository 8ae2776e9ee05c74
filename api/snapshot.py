"""
Normalized market snapshot types.
Venue-agnostic option and perpetual quotes for one monitoring run.
"""

from datetime import datetime
from typing import Optional, Dict, List, Tuple
from dataclasses import dataclass, field
from enum import Enum

import pandas as pd

from utils.helpers import expiry_label, years_to_expiry, hours_between


class OptionType(Enum):
    CALL = "C"
    PUT = "P"


@dataclass(frozen=True)
class Quote:
    """A single option quote on one venue."""
    venue: str
    asset: str
    strike: float
    expiry: datetime
    option_type: OptionType
    bid: Optional[float]
    ask: Optional[float]
    mid: float
    spot: float
    raw_id: str
    as_of: datetime
    last: Optional[float] = None
    volume_24h: float = 0.0
    open_interest: float = 0.0
    mark_iv: Optional[float] = None  # venue-reported, as a fraction

    @property
    def has_bid(self) -> bool:
        return self.bid is not None and self.bid > 0

    @property
    def has_ask(self) -> bool:
        return self.ask is not None and self.ask > 0

    @property
    def spread_pct(self) -> Optional[float]:
        if self.has_bid and self.has_ask and self.mid > 0:
            return (self.ask - self.bid) / self.mid * 100
        return None

    @property
    def T(self) -> float:
        """Year fraction to expiry as of the snapshot time."""
        return years_to_expiry(self.expiry, self.as_of)

    @property
    def days_to_expiry(self) -> float:
        return self.T * 365

    @property
    def hours_to_expiry(self) -> float:
        return hours_between(self.expiry, self.as_of)

    @property
    def expiry_label(self) -> str:
        return expiry_label(self.expiry)

    @property
    def moneyness(self) -> Optional[float]:
        """Absolute strike distance from spot as a fraction of spot."""
        if self.spot > 0:
            return abs(self.strike - self.spot) / self.spot
        return None

    @property
    def match_key(self) -> Tuple[str, float, str, OptionType]:
        return (self.asset, self.strike, self.expiry_label, self.option_type)


@dataclass(frozen=True)
class PerpetualQuote:
    """Perpetual (or dated) future quote on one venue."""
    venue: str
    asset: str
    instrument: str
    mark: float
    spot: float
    funding_rate: Optional[float] = None
    basis: Optional[float] = None  # % deviation of mark from index, None when no index
    is_perpetual: bool = True


@dataclass(frozen=True)
class VenueSnapshot:
    """Everything fetched from one venue in this run."""
    venue: str
    ok: bool = True
    options: Tuple[Quote, ...] = ()
    perpetuals: Tuple[PerpetualQuote, ...] = ()
    error: Optional[str] = None


@dataclass(frozen=True)
class MarketSnapshot:
    """One run's worth of normalized market data across venues."""
    as_of: datetime
    primary_venue: str
    venues: Dict[str, VenueSnapshot] = field(default_factory=dict)
    spots: Dict[str, float] = field(default_factory=dict)

    @property
    def primary(self) -> Optional[VenueSnapshot]:
        return self.venues.get(self.primary_venue)

    def reference_venues(self) -> List[VenueSnapshot]:
        return [v for name, v in self.venues.items() if name != self.primary_venue]

    def reference_options(self) -> List[Quote]:
        return [q for v in self.reference_venues() if v.ok for q in v.options]

    def reference_perpetuals(self) -> List[PerpetualQuote]:
        return [p for v in self.reference_venues() if v.ok for p in v.perpetuals]

    def to_dataframe(self) -> pd.DataFrame:
        records = []
        for venue in self.venues.values():
            for q in venue.options:
                records.append({
                    "venue": q.venue, "asset": q.asset, "raw_id": q.raw_id,
                    "expiry": q.expiry_label, "strike": q.strike,
                    "type": q.option_type.value, "bid": q.bid, "ask": q.ask,
                    "mid": q.mid, "spot": q.spot, "spread_pct": q.spread_pct,
                    "volume_24h": q.volume_24h, "open_interest": q.open_interest,
                    "mark_iv": q.mark_iv, "dte": q.days_to_expiry,
                })
        return pd.DataFrame(records)
