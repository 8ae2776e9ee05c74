"""
Baseline Store.
Bucketed spread statistics describing normal quoting on the primary venue,
persisted between runs and discarded once stale.
"""

import json
import os
import tempfile
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple
from dataclasses import dataclass, field

import numpy as np
from loguru import logger

from utils.helpers import to_epoch_ms, from_epoch_ms, hours_between, ensure_utc

DEFAULT_TENOR_CUTS = (1, 3, 7, 30, 90)


def moneyness_band(strike: float, spot: float) -> str:
    """ATM (<5% from spot), NEAR (<15%) or DEEP."""
    if spot <= 0:
        return "DEEP"
    mono = abs(strike - spot) / spot
    if mono < 0.05:
        return "ATM"
    if mono < 0.15:
        return "NEAR"
    return "DEEP"


def tenor_band(days: float, cuts: Sequence[float] = DEFAULT_TENOR_CUTS) -> str:
    """Label the days-to-expiry range, e.g. 0D, 1-3D, 90D+."""
    lower = 0
    for cut in cuts:
        if days < cut:
            return "0D" if lower == 0 else f"{lower:g}-{cut:g}D"
        lower = cut
    return f"{lower:g}D+"


def bucket_key(
    asset: str,
    strike: float,
    spot: float,
    T: float,
    tenor_cuts: Sequence[float] = DEFAULT_TENOR_CUTS
) -> str:
    """Deterministic baseline bucket for an instrument."""
    return f"{asset}-{moneyness_band(strike, spot)}-{tenor_band(T * 365, tenor_cuts)}"


def nearest_rank(sample: Sequence[float], q: float) -> Optional[float]:
    """Nearest-rank quantile of an already sorted sample."""
    if len(sample) == 0:
        return None
    idx = min(int(np.floor(len(sample) * q)), len(sample) - 1)
    return float(sample[idx])


@dataclass(frozen=True)
class BucketStats:
    """Spread statistics for one moneyness/tenor bucket."""
    spreads: Tuple[float, ...]
    quoted_count: int
    total_count: int
    p95_spread: Optional[float] = None
    median_spread: Optional[float] = None

    def to_dict(self) -> Dict:
        return {
            "p95Spread": self.p95_spread,
            "medianSpread": self.median_spread,
            "quotedCount": self.quoted_count,
            "totalCount": self.total_count,
            "spreads": list(self.spreads),
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "BucketStats":
        spreads = tuple(sorted(float(s) for s in data.get("spreads", [])))
        p95 = data.get("p95Spread")
        median = data.get("medianSpread")
        return cls(
            spreads=spreads,
            quoted_count=int(data["quotedCount"]),
            total_count=int(data["totalCount"]),
            p95_spread=float(p95) if p95 is not None else None,
            median_spread=float(median) if median is not None else None,
        )


@dataclass(frozen=True)
class InstrumentRecord:
    """Last-known quoting state of one instrument."""
    status: str
    spread: Optional[float]
    mid: Optional[float]

    @property
    def was_quoted(self) -> bool:
        return self.status in ("QUOTED", "WIDE")

    def to_dict(self) -> Dict:
        return {"status": self.status, "spread": self.spread, "mid": self.mid}

    @classmethod
    def from_dict(cls, data: Dict) -> "InstrumentRecord":
        spread = data.get("spread")
        mid = data.get("mid")
        return cls(
            status=str(data["status"]),
            spread=float(spread) if spread is not None else None,
            mid=float(mid) if mid is not None else None,
        )


@dataclass(frozen=True)
class Baseline:
    """Timestamped snapshot of normal primary-venue quoting."""
    timestamp: datetime
    buckets: Dict[str, BucketStats] = field(default_factory=dict)
    options: Dict[str, InstrumentRecord] = field(default_factory=dict)
    quoted_count: int = 0
    total_count: int = 0
    tenor_cuts: Tuple[float, ...] = DEFAULT_TENOR_CUTS

    def age_hours(self, now: datetime) -> float:
        return hours_between(now, self.timestamp)

    def is_expired(self, now: datetime, max_age_hours: float) -> bool:
        """Strictly older than the max age; the boundary itself is valid."""
        return ensure_utc(now) - ensure_utc(self.timestamp) > timedelta(hours=max_age_hours)

    def bucket_for(self, asset: str, strike: float, spot: float, T: float) -> Optional[BucketStats]:
        return self.buckets.get(bucket_key(asset, strike, spot, T, self.tenor_cuts))

    def record(self, raw_id: str) -> Optional[InstrumentRecord]:
        return self.options.get(raw_id)

    def to_dict(self) -> Dict:
        return {
            "timestamp": to_epoch_ms(self.timestamp),
            "buckets": {k: b.to_dict() for k, b in self.buckets.items()},
            "options": {k: o.to_dict() for k, o in self.options.items()},
            "quotedCount": self.quoted_count,
            "totalCount": self.total_count,
            "tenorCuts": list(self.tenor_cuts),
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "Baseline":
        cuts = data.get("tenorCuts")
        return cls(
            timestamp=from_epoch_ms(data["timestamp"]),
            buckets={k: BucketStats.from_dict(v) for k, v in data["buckets"].items()},
            options={k: InstrumentRecord.from_dict(v) for k, v in data["options"].items()},
            quoted_count=int(data.get("quotedCount", 0)),
            total_count=int(data.get("totalCount", 0)),
            tenor_cuts=tuple(cuts) if cuts else DEFAULT_TENOR_CUTS,
        )


def build_baseline(
    items: Iterable,
    now: datetime,
    tenor_cuts: Sequence[float] = DEFAULT_TENOR_CUTS
) -> Baseline:
    """
    Capture a baseline from classified primary-venue quotes.

    Args:
        items: ClassifiedQuote values (quote + status)
        now: Capture timestamp
        tenor_cuts: Tenor bucket cut points

    Returns:
        Baseline with per-bucket spread statistics and per-instrument records
    """
    tenor_cuts = tuple(tenor_cuts)
    grouped: Dict[str, Dict] = {}
    options: Dict[str, InstrumentRecord] = {}
    quoted_count = 0
    total_count = 0

    for item in items:
        q = item.quote
        key = bucket_key(q.asset, q.strike, q.spot, q.T, tenor_cuts)
        g = grouped.setdefault(key, {"spreads": [], "quoted": 0, "total": 0})
        g["total"] += 1
        total_count += 1
        if item.status.value == "QUOTED" and q.spread_pct is not None:
            g["quoted"] += 1
            g["spreads"].append(q.spread_pct)

        options[q.raw_id] = InstrumentRecord(
            status=item.status.value,
            spread=q.spread_pct,
            mid=q.mid,
        )
        if item.status.value in ("QUOTED", "WIDE"):
            quoted_count += 1

    buckets = {}
    for key, g in grouped.items():
        sample = np.sort(np.asarray(g["spreads"], dtype=float))
        buckets[key] = BucketStats(
            spreads=tuple(float(s) for s in sample),
            quoted_count=g["quoted"],
            total_count=g["total"],
            p95_spread=nearest_rank(sample, 0.95),
            median_spread=nearest_rank(sample, 0.5),
        )

    return Baseline(
        timestamp=now,
        buckets=buckets,
        options=options,
        quoted_count=quoted_count,
        total_count=total_count,
        tenor_cuts=tenor_cuts,
    )


class BaselineStore:
    """
    JSON file persistence for the rolling baseline.

    A missing, unreadable, malformed or expired file loads as None so the
    caller recaptures. Writes replace the file atomically; two concurrent
    runs are last-writer-wins.
    """

    def __init__(self, path: Path, max_age_hours: Optional[float] = 12.0):
        self.path = Path(path)
        self.max_age_hours = max_age_hours

    def load(self, now: datetime) -> Optional[Baseline]:
        if not self.path.exists():
            logger.info(f"No baseline at {self.path}")
            return None

        try:
            with open(self.path) as f:
                baseline = Baseline.from_dict(json.load(f))
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            logger.warning(f"Discarding unreadable baseline {self.path}: {e}")
            return None

        age = baseline.age_hours(now)
        if self.max_age_hours is not None and baseline.is_expired(now, self.max_age_hours):
            logger.info(f"Baseline {age:.1f}h old exceeds {self.max_age_hours:g}h, will recapture")
            return None

        logger.info(f"Loaded baseline: {baseline.quoted_count} quoted options, {age:.1f}h old")
        return baseline

    def save(self, baseline: Baseline) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=".baseline-", suffix=".json")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(baseline.to_dict(), f)
            os.replace(tmp, self.path)
        except OSError:
            if os.path.exists(tmp):
                os.remove(tmp)
            raise
        logger.info(
            f"Baseline saved: {baseline.quoted_count} quoted / {baseline.total_count} total "
            f"across {len(baseline.buckets)} buckets"
        )

    def bucket_summary(self, baseline: Baseline) -> List[Dict]:
        """Flat rows per bucket for reporting."""
        return [
            {"bucket": key, "quoted": b.quoted_count, "total": b.total_count,
             "p95_spread": b.p95_spread, "median_spread": b.median_spread}
            for key, b in sorted(baseline.buckets.items())
        ]
