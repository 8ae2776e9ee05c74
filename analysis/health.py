"""
Orderbook Health Classifier.
Labels each primary-venue option by quoting status against a dynamic
spread threshold.
"""

from typing import List, Optional, Sequence
from dataclasses import dataclass
from enum import Enum

from loguru import logger

from api.snapshot import Quote
from analysis.baseline import Baseline
from analysis.vol_solver import VolatilitySolver


class QuoteStatus(Enum):
    QUOTED = "QUOTED"
    WIDE = "WIDE"
    ONE_SIDED = "ONE_SIDED"
    EMPTY = "EMPTY"

    @property
    def is_quoted(self) -> bool:
        return self in (QuoteStatus.QUOTED, QuoteStatus.WIDE)


@dataclass(frozen=True)
class ClassifiedQuote:
    """A primary-venue quote with its health label."""
    quote: Quote
    status: QuoteStatus
    threshold: float
    iv: Optional[float] = None

    @property
    def raw_id(self) -> str:
        return self.quote.raw_id

    @property
    def spread_pct(self) -> Optional[float]:
        return self.quote.spread_pct


def fallback_threshold(quote: Quote) -> float:
    """
    Static spread threshold (%) used before any baseline exists.

    Near-term and far out-of-the-money options tolerate wider spreads.
    """
    mono = quote.moneyness
    if mono is None:
        mono = 0.2
    dte = quote.days_to_expiry

    if dte < 1:
        return 60.0
    if dte < 3:
        return 45.0
    if dte < 7:
        return 10.0 if mono < 0.05 else 18.0 if mono < 0.15 else 38.0
    return 12.0 if mono < 0.05 else 20.0 if mono < 0.15 else 35.0


class HealthClassifier:
    """
    Quoting-status classifier for primary-venue options.

    Thresholds:
    - With a baseline: bucket p95 spread x warn multiplier
    - Bucket without a sample: fixed default threshold
    - Without a baseline: static moneyness/tenor table
    """

    def __init__(
        self,
        warn_multiplier: float = 1.5,
        default_threshold: float = 50.0,
        solver: Optional[VolatilitySolver] = None
    ):
        self.warn_multiplier = warn_multiplier
        self.default_threshold = default_threshold
        self.solver = solver or VolatilitySolver()

    def threshold(self, quote: Quote, baseline: Optional[Baseline]) -> float:
        if baseline is None:
            return fallback_threshold(quote)
        bucket = baseline.bucket_for(quote.asset, quote.strike, quote.spot, quote.T)
        if bucket is None or not bucket.p95_spread:
            return self.default_threshold
        return bucket.p95_spread * self.warn_multiplier

    def status(self, quote: Quote, threshold: float) -> QuoteStatus:
        if quote.has_bid and quote.has_ask:
            spread = quote.spread_pct
            if spread is not None and spread >= threshold:
                return QuoteStatus.WIDE
            return QuoteStatus.QUOTED
        if quote.has_bid or quote.has_ask:
            return QuoteStatus.ONE_SIDED
        return QuoteStatus.EMPTY

    def implied_vol(self, quote: Quote) -> Optional[float]:
        if quote.mid > 0 and quote.spot > 0 and quote.T > VolatilitySolver.MIN_T:
            return self.solver.implied_volatility(
                quote.mid, quote.spot, quote.strike, quote.T, quote.option_type
            )
        return None

    def classify(self, quotes: Sequence[Quote], baseline: Optional[Baseline]) -> List[ClassifiedQuote]:
        """
        Classify every quote.

        Args:
            quotes: Primary-venue option quotes
            baseline: Valid baseline, or None for fallback thresholds

        Returns:
            ClassifiedQuote per input quote, same order
        """
        items = []
        for q in quotes:
            th = self.threshold(q, baseline)
            items.append(ClassifiedQuote(
                quote=q,
                status=self.status(q, th),
                threshold=th,
                iv=self.implied_vol(q),
            ))

        counts = {s: 0 for s in QuoteStatus}
        for item in items:
            counts[item.status] += 1
        mode = "baseline" if baseline is not None else "fallback"
        logger.debug(
            f"Classified {len(items)} options ({mode} thresholds): "
            + ", ".join(f"{s.value}={n}" for s, n in counts.items())
        )
        return items
