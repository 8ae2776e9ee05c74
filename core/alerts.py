"""
Alert value types shared by the detectors and the reducer.
"""

from typing import Dict, Optional
from dataclasses import dataclass
from enum import Enum


class AlertCategory(Enum):
    PT_STALE = "PT_STALE"      # quote pulled or expiring with open interest
    PT_WIDE = "PT_WIDE"        # spread blown or drifted vs baseline
    MKT_IV = "MKT_IV"          # implied vol dislocation vs reference venue
    PT_CHEAP = "PT_CHEAP"      # primary mid below reference
    PT_RICH = "PT_RICH"        # primary mid above reference
    PERP_ARB = "PERP_ARB"      # perp basis divergence
    FUND_ARB = "FUND_ARB"      # funding rate divergence


class Severity(Enum):
    CRITICAL = "critical"
    WARNING = "warning"

    @property
    def rank(self) -> int:
        return 0 if self is Severity.CRITICAL else 1


# Default confidence per signal kind
CONFIDENCE = {
    "pulled": 85,
    "blown": 75,
    "drifted": 50,
    "expiring": 90,
    "iv": 60,
    "price": 65,
    "perp": 70,
    "funding": 60,
}


@dataclass(frozen=True)
class Alert:
    """An immutable alert produced by one run."""
    category: AlertCategory
    severity: Severity
    asset: str
    title: str
    message: str
    confidence: int
    net_profit: Optional[float] = None
    profitable: bool = False

    @property
    def is_critical(self) -> bool:
        return self.severity is Severity.CRITICAL

    def to_dict(self) -> Dict:
        return {
            "category": self.category.value,
            "severity": self.severity.value,
            "asset": self.asset,
            "title": self.title,
            "message": self.message,
            "confidence": self.confidence,
            "net_profit": self.net_profit,
            "profitable": self.profitable,
        }


def severity_for(value: float, threshold: float, inclusive: bool = True) -> Severity:
    """Critical once a magnitude reaches twice its alert threshold."""
    escalate = 2 * threshold
    hit = value >= escalate if inclusive else value > escalate
    return Severity.CRITICAL if hit else Severity.WARNING
