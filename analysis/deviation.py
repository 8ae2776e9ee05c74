"""
Baseline Deviation Detector.
Flags quote withdrawal and spread blow-outs relative to the baseline,
plus instruments approaching settlement with open interest.
"""

from typing import List, Optional, Sequence
from dataclasses import dataclass
from enum import Enum

from analysis.baseline import Baseline, InstrumentRecord
from analysis.health import ClassifiedQuote, QuoteStatus


class Deviation(Enum):
    PULLED = "PULLED"      # quoted at baseline, now empty or one-sided
    BLOWN = "BLOWN"        # spread ratio beyond the critical multiplier
    DRIFTED = "DRIFTED"    # spread ratio beyond the warn multiplier


@dataclass(frozen=True)
class DeviationSignal:
    item: ClassifiedQuote
    deviation: Deviation
    baseline_record: InstrumentRecord
    ratio: Optional[float] = None


@dataclass(frozen=True)
class ExpirySignal:
    item: ClassifiedQuote
    hours_left: float


class DeviationDetector:
    """Compares current quoting against each instrument's baseline record."""

    def __init__(self, warn_multiplier: float = 1.5, crit_multiplier: float = 3.0):
        self.warn_multiplier = warn_multiplier
        self.crit_multiplier = crit_multiplier

    def classify(self, item: ClassifiedQuote, record: Optional[InstrumentRecord]) -> Optional[DeviationSignal]:
        # Never quoted at baseline: nothing meaningful to compare against
        if record is None or not record.was_quoted:
            return None

        if item.status in (QuoteStatus.EMPTY, QuoteStatus.ONE_SIDED):
            return DeviationSignal(item, Deviation.PULLED, record)

        current = item.spread_pct
        if current is None or record.spread is None or record.spread <= 0:
            return None

        ratio = current / record.spread
        if ratio > self.crit_multiplier:
            return DeviationSignal(item, Deviation.BLOWN, record, ratio)
        if ratio > self.warn_multiplier:
            return DeviationSignal(item, Deviation.DRIFTED, record, ratio)
        return None

    def detect(self, items: Sequence[ClassifiedQuote], baseline: Optional[Baseline]) -> List[DeviationSignal]:
        if baseline is None:
            return []
        signals = []
        for item in items:
            signal = self.classify(item, baseline.record(item.raw_id))
            if signal is not None:
                signals.append(signal)
        return signals


def detect_expiring(items: Sequence[ClassifiedQuote], window_hours: float = 4.0) -> List[ExpirySignal]:
    """Instruments settling within the window that still carry open interest."""
    signals = []
    for item in items:
        hours = item.quote.hours_to_expiry
        if 0 < hours <= window_hours and item.quote.open_interest > 0:
            signals.append(ExpirySignal(item, hours))
    return signals
