"""
Alert Reducer.
Turns raw detector signals into a materiality-filtered, grouped and ranked
alert list with run statistics.
"""

from typing import Dict, List, Optional, Sequence, Tuple
from dataclasses import dataclass

from loguru import logger

from analysis.baseline import Baseline
from analysis.deviation import Deviation, DeviationSignal, ExpirySignal
from analysis.health import ClassifiedQuote
from config.settings import MaterialityConfig
from core.alerts import Alert, AlertCategory, Severity, CONFIDENCE
from utils.helpers import format_range, format_strike


@dataclass(frozen=True)
class RunStats:
    """Aggregate statistics for one run."""
    health_pct: Optional[float]
    coverage_pct: float
    suppressed_count: int
    quoted_count: int
    total_count: int
    critical_count: int = 0
    warning_count: int = 0
    actionable_count: int = 0
    baseline_age_hours: Optional[float] = None
    baseline_captured: bool = False

    def to_dict(self) -> Dict:
        return dict(self.__dict__)


@dataclass(frozen=True)
class ReducedAlerts:
    alerts: Tuple[Alert, ...]
    stats: RunStats


def sort_alerts(alerts: Sequence[Alert]) -> List[Alert]:
    """Critical first, then descending confidence."""
    return sorted(alerts, key=lambda a: (a.severity.rank, -a.confidence))


def quoter_health(
    items: Sequence[ClassifiedQuote],
    baseline: Optional[Baseline],
    tolerance: float = 2.0
) -> Optional[float]:
    """
    Percent of baseline-quoted instruments still quoted within tolerance.

    An instrument is healthy when it is currently quoted (QUOTED or WIDE)
    and its spread is at most tolerance x its bucket's baseline p95.

    Returns:
        Health percentage, or None when nothing was quoted at baseline
    """
    if baseline is None:
        return None

    eligible = 0
    healthy = 0
    for item in items:
        record = baseline.record(item.raw_id)
        if record is None or not record.was_quoted:
            continue
        eligible += 1
        if not item.status.is_quoted:
            continue
        q = item.quote
        bucket = baseline.bucket_for(q.asset, q.strike, q.spot, q.T)
        if bucket is None or not bucket.p95_spread:
            healthy += 1
        elif q.spread_pct is not None and q.spread_pct <= tolerance * bucket.p95_spread:
            healthy += 1

    if eligible == 0:
        return None
    return healthy / eligible * 100


def coverage(items: Sequence[ClassifiedQuote]) -> float:
    """Percent of primary instruments currently quoted."""
    if not items:
        return 0.0
    return sum(1 for i in items if i.status.is_quoted) / len(items) * 100


class AlertReducer:
    """
    Reduces raw signals into the final alert set.

    Steps:
    1. Materiality filter for pulled quotes
    2. Grouping of deviation and expiry signals per asset
    3. Minimum-confidence cutoff
    4. Ordering: critical first, then confidence
    """

    def __init__(self, materiality: Optional[MaterialityConfig] = None, health_tolerance: float = 2.0):
        self.materiality = materiality or MaterialityConfig()
        self.health_tolerance = health_tolerance

    def is_material_pull(self, item: ClassifiedQuote) -> bool:
        q = item.quote
        if q.open_interest > self.materiality.min_open_interest:
            return True
        mono = q.moneyness
        return mono is not None and mono < self.materiality.near_money_pct

    def _group(self, items: Sequence[ClassifiedQuote]) -> Dict[str, List[ClassifiedQuote]]:
        groups: Dict[str, List[ClassifiedQuote]] = {}
        for item in items:
            groups.setdefault(item.quote.asset, []).append(item)
        return groups

    @staticmethod
    def _describe(items: Sequence[ClassifiedQuote]) -> str:
        total_oi = sum(i.quote.open_interest for i in items)
        strikes = format_range([i.quote.strike for i in items], "{:g}")
        expiries = [i.quote.expiry_label for i in sorted(items, key=lambda i: i.quote.expiry)]
        return f"OI {total_oi:g} | strikes {strikes} | expiries {format_range(expiries)}"

    def _title(self, asset: str, items: Sequence[ClassifiedQuote]) -> str:
        if len(items) == 1:
            return items[0].raw_id
        return f"{asset} x{len(items)}"

    def pull_alerts(self, signals: Sequence[DeviationSignal]) -> Tuple[List[Alert], int]:
        pulled = [s.item for s in signals if s.deviation is Deviation.PULLED]
        material = [i for i in pulled if self.is_material_pull(i)]
        suppressed = len(pulled) - len(material)

        alerts = []
        for asset, items in self._group(material).items():
            if len(items) == 1:
                q = items[0].quote
                head = (f"QUOTE PULLED - {format_strike(q.strike)}{q.option_type.value} "
                        f"{q.expiry_label} was live at baseline, now {items[0].status.value}")
            else:
                head = f"{len(items)} quotes pulled since baseline"
            alerts.append(Alert(
                category=AlertCategory.PT_STALE,
                severity=Severity.CRITICAL,
                asset=asset,
                title=self._title(asset, items),
                message=f"{head} | {self._describe(items)}",
                confidence=CONFIDENCE["pulled"],
            ))
        return alerts, suppressed

    def spread_alerts(self, signals: Sequence[DeviationSignal]) -> List[Alert]:
        alerts = []
        for deviation, severity, conf in (
            (Deviation.BLOWN, Severity.CRITICAL, CONFIDENCE["blown"]),
            (Deviation.DRIFTED, Severity.WARNING, CONFIDENCE["drifted"]),
        ):
            subset = [s for s in signals if s.deviation is deviation]
            by_asset: Dict[str, List[DeviationSignal]] = {}
            for s in subset:
                by_asset.setdefault(s.item.quote.asset, []).append(s)

            word = "BLOWN" if deviation is Deviation.BLOWN else "drifted"
            for asset, group in by_asset.items():
                items = [s.item for s in group]
                if len(group) == 1:
                    s = group[0]
                    head = (f"Spread {word} {s.item.spread_pct:.1f}% "
                            f"(baseline {s.baseline_record.spread:.1f}%, {s.ratio:.1f}x)")
                else:
                    worst = max(s.ratio for s in group)
                    head = f"{len(group)} spreads {word} (worst {worst:.1f}x baseline)"
                alerts.append(Alert(
                    category=AlertCategory.PT_WIDE,
                    severity=severity,
                    asset=asset,
                    title=self._title(asset, items),
                    message=f"{head} | {self._describe(items)}",
                    confidence=conf,
                ))
        return alerts

    def expiry_alerts(self, signals: Sequence[ExpirySignal]) -> List[Alert]:
        by_asset: Dict[str, List[ExpirySignal]] = {}
        for s in signals:
            by_asset.setdefault(s.item.quote.asset, []).append(s)

        alerts = []
        for asset, group in by_asset.items():
            items = [s.item for s in group]
            soonest = min(s.hours_left for s in group)
            if len(group) == 1:
                head = f"EXPIRING IN {soonest:.1f}h"
            else:
                head = f"{len(group)} instruments expiring (soonest {soonest:.1f}h)"
            alerts.append(Alert(
                category=AlertCategory.PT_STALE,
                severity=Severity.CRITICAL,
                asset=asset,
                title=self._title(asset, items),
                message=f"{head} | {self._describe(items)}",
                confidence=CONFIDENCE["expiring"],
            ))
        return alerts

    def reduce(
        self,
        items: Sequence[ClassifiedQuote],
        deviations: Sequence[DeviationSignal],
        expiring: Sequence[ExpirySignal],
        arbitrage: Sequence[Alert],
        baseline: Optional[Baseline] = None,
        baseline_age_hours: Optional[float] = None,
        baseline_captured: bool = False
    ) -> ReducedAlerts:
        """
        Build the final alert list and run statistics.

        Args:
            items: Classified primary-venue options
            deviations: Baseline deviation signals
            expiring: Near-expiry signals
            arbitrage: Cross-venue alerts
            baseline: Baseline applied this run
            baseline_age_hours: Age of that baseline
            baseline_captured: Whether it was captured this run

        Returns:
            ReducedAlerts with sorted alerts and RunStats
        """
        pulls, suppressed = self.pull_alerts(deviations)
        window = self.materiality.expiry_window_hours
        expiring = [s for s in expiring if 0 < s.hours_left <= window and s.item.quote.open_interest > 0]

        candidates = pulls + self.spread_alerts(deviations) + self.expiry_alerts(expiring) + list(arbitrage)

        min_conf = self.materiality.min_confidence
        kept = [a for a in candidates if a.confidence >= min_conf]
        suppressed += len(candidates) - len(kept)

        alerts = sort_alerts(kept)
        stats = RunStats(
            health_pct=quoter_health(items, baseline, self.health_tolerance),
            coverage_pct=coverage(items),
            suppressed_count=suppressed,
            quoted_count=sum(1 for i in items if i.status.is_quoted),
            total_count=len(items),
            critical_count=sum(1 for a in alerts if a.is_critical),
            warning_count=sum(1 for a in alerts if not a.is_critical),
            actionable_count=sum(1 for a in alerts if a.profitable),
            baseline_age_hours=baseline_age_hours,
            baseline_captured=baseline_captured,
        )

        logger.info(
            f"Alerts: {stats.critical_count} critical, {stats.warning_count} warning, "
            f"{stats.actionable_count} actionable, {stats.suppressed_count} suppressed"
        )
        return ReducedAlerts(alerts=tuple(alerts), stats=stats)
