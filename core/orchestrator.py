"""
Core Orchestrator for the Venue Quote Monitor.
Runs one monitoring pass: classify, baseline, detect, reduce.
"""

from datetime import datetime
from typing import List, Optional, Tuple
from dataclasses import dataclass

import pandas as pd
from loguru import logger

from api.snapshot import MarketSnapshot
from analysis.baseline import Baseline, BaselineStore, build_baseline
from analysis.deviation import DeviationDetector, detect_expiring
from analysis.health import ClassifiedQuote, HealthClassifier
from config.settings import AppConfig
from core.alert_reducer import AlertReducer, RunStats
from core.alerts import Alert
from strategies.arbitrage_scanner import ArbitrageScanner


class PrimaryVenueUnavailable(Exception):
    """The primary venue snapshot is missing; nothing can be classified."""


@dataclass(frozen=True)
class RunResult:
    """Outcome of one monitoring run."""
    alerts: Tuple[Alert, ...]
    stats: RunStats
    items: Tuple[ClassifiedQuote, ...]
    baseline: Baseline
    as_of: datetime

    @property
    def critical(self) -> List[Alert]:
        return [a for a in self.alerts if a.is_critical]

    def dispatchable(self, only_critical: bool = False) -> List[Alert]:
        return self.critical if only_critical else list(self.alerts)

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame([a.to_dict() for a in self.alerts])


class QuoteMonitor:
    """
    Main orchestrator for one monitoring run.

    Pipeline:
    - Load the persisted baseline (absent if missing, corrupt or stale)
    - Phase 1: classify with the available thresholds
    - Capture + persist a fresh baseline when none was loaded, then
      Phase 2: reclassify against it
    - Detect deviations, near-expiry and cross-venue signals
    - Reduce into the final alert list
    """

    def __init__(
        self,
        config: Optional[AppConfig] = None,
        store: Optional[BaselineStore] = None,
        classifier: Optional[HealthClassifier] = None,
        detector: Optional[DeviationDetector] = None,
        scanner: Optional[ArbitrageScanner] = None,
        reducer: Optional[AlertReducer] = None
    ):
        self.config = config or AppConfig()
        bl = self.config.baseline

        self.store = store or BaselineStore(bl.path, bl.max_age_hours)
        self.classifier = classifier or HealthClassifier(
            warn_multiplier=bl.warn_multiplier,
            default_threshold=bl.default_spread_threshold,
        )
        self.detector = detector or DeviationDetector(bl.warn_multiplier, bl.crit_multiplier)
        self.scanner = scanner or ArbitrageScanner(
            arbitrage=self.config.arbitrage,
            liquidity=self.config.liquidity,
            primary_venue=self.config.primary_venue,
        )
        self.reducer = reducer or AlertReducer(
            materiality=self.config.materiality,
            health_tolerance=bl.health_tolerance,
        )

    def prepare_baseline(
        self,
        snapshot: MarketSnapshot,
        baseline: Optional[Baseline]
    ) -> Tuple[List[ClassifiedQuote], Baseline, bool]:
        """
        Two-phase classification.

        Returns:
            (classified items, baseline in force, captured this run)
        """
        quotes = snapshot.primary.options
        items = self.classifier.classify(quotes, baseline)
        if baseline is not None:
            return items, baseline, False

        logger.info("Capturing new baseline from fallback classification")
        baseline = build_baseline(items, snapshot.as_of, self.config.baseline.tenor_cuts)
        if self.config.dry_run:
            logger.info("Dry run: baseline not persisted")
        else:
            self.store.save(baseline)

        items = self.classifier.classify(quotes, baseline)
        return items, baseline, True

    def run(self, snapshot: MarketSnapshot) -> RunResult:
        """
        Execute one monitoring pass over a snapshot.

        Raises:
            PrimaryVenueUnavailable: primary venue missing or failed
        """
        primary = snapshot.primary
        if primary is None or not primary.ok:
            reason = primary.error if primary is not None and primary.error else "no data"
            logger.error(f"{snapshot.primary_venue} snapshot unavailable ({reason}), aborting")
            raise PrimaryVenueUnavailable(f"{snapshot.primary_venue}: {reason}")

        for venue in snapshot.reference_venues():
            if not venue.ok:
                logger.info(f"{venue.venue} unavailable, excluded from comparison")

        loaded = self.store.load(snapshot.as_of)
        items, baseline, captured = self.prepare_baseline(snapshot, loaded)

        deviations = self.detector.detect(items, baseline)
        expiring = detect_expiring(items, self.config.materiality.expiry_window_hours)
        arbitrage = self.scanner.scan(
            items,
            snapshot.reference_options(),
            primary.perpetuals,
            snapshot.reference_perpetuals(),
        )

        reduced = self.reducer.reduce(
            items,
            deviations,
            expiring,
            arbitrage,
            baseline=baseline,
            baseline_age_hours=baseline.age_hours(snapshot.as_of),
            baseline_captured=captured,
        )

        logger.info(
            f"Run complete: {len(primary.options)} {snapshot.primary_venue} options, "
            f"{len(reduced.alerts)} alerts"
        )
        return RunResult(
            alerts=reduced.alerts,
            stats=reduced.stats,
            items=tuple(items),
            baseline=baseline,
            as_of=snapshot.as_of,
        )


def create_monitor(config: Optional[AppConfig] = None) -> QuoteMonitor:
    """Factory function to create a configured monitor."""
    return QuoteMonitor(config=config or AppConfig())
