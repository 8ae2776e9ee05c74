"""Tests for alert reduction, grouping, ordering and run statistics."""

from datetime import timedelta

import pytest

from analysis.baseline import Baseline, BucketStats, InstrumentRecord
from analysis.deviation import Deviation, DeviationSignal, ExpirySignal
from analysis.health import ClassifiedQuote, QuoteStatus
from config.settings import MaterialityConfig
from core.alert_reducer import AlertReducer, coverage, quoter_health, sort_alerts
from core.alerts import Alert, AlertCategory, Severity

from conftest import NOW, EXPIRY, build_quote, quote_with_spread

RECORD = InstrumentRecord(status="QUOTED", spread=4.0, mid=1000.0)


def _item(quote, status=QuoteStatus.QUOTED):
    return ClassifiedQuote(quote=quote, status=status, threshold=10.0)


def _pulled(raw_id="BTC-1", asset="BTC", strike=65000.0, open_interest=10.0, **kwargs):
    q = build_quote(raw_id=raw_id, asset=asset, strike=strike, ask=None,
                    open_interest=open_interest, **kwargs)
    return DeviationSignal(_item(q, QuoteStatus.ONE_SIDED), Deviation.PULLED, RECORD)


def _spread(spread, deviation, raw_id="BTC-1", asset="BTC", **kwargs):
    q = quote_with_spread(spread, raw_id=raw_id, asset=asset, **kwargs)
    return DeviationSignal(_item(q, QuoteStatus.WIDE), deviation, RECORD, spread / RECORD.spread)


def _alert(severity, confidence, category=AlertCategory.MKT_IV, profitable=False):
    return Alert(category=category, severity=severity, asset="BTC", title="t",
                 message="m", confidence=confidence, profitable=profitable)


class TestMateriality:
    def test_open_interest_makes_material(self):
        reducer = AlertReducer(MaterialityConfig(min_open_interest=5))
        assert reducer.is_material_pull(_pulled(strike=90000.0, open_interest=6).item)

    def test_near_money_always_material(self):
        reducer = AlertReducer(MaterialityConfig(min_open_interest=5))
        assert reducer.is_material_pull(_pulled(strike=66000.0, open_interest=0).item)

    def test_far_and_no_interest_suppressed(self):
        reducer = AlertReducer(MaterialityConfig(min_open_interest=5))
        assert not reducer.is_material_pull(_pulled(strike=90000.0, open_interest=5).item)

    def test_suppressed_count(self):
        reducer = AlertReducer(MaterialityConfig(min_open_interest=5))
        signals = [
            _pulled("a", strike=90000.0, open_interest=1),
            _pulled("b", strike=90000.0, open_interest=50),
        ]
        alerts, suppressed = reducer.pull_alerts(signals)
        assert suppressed == 1
        assert len(alerts) == 1
        assert alerts[0].title == "b"

    def test_raising_threshold_never_adds_alerts(self):
        """Pulled-quote alerts are monotone non-increasing in the OI threshold."""
        signals = [
            _pulled(f"p{i}", strike=strike, open_interest=oi)
            for i, (strike, oi) in enumerate([
                (90000.0, 0), (90000.0, 3), (80000.0, 8), (66000.0, 0),
                (100000.0, 20), (70000.0, 1), (50000.0, 12),
            ])
        ]
        counts = []
        for threshold in [0, 1, 2, 5, 10, 15, 25, 100]:
            reducer = AlertReducer(MaterialityConfig(min_open_interest=threshold))
            alerts, suppressed = reducer.pull_alerts(signals)
            material = len(signals) - suppressed
            counts.append(material)
        assert counts == sorted(counts, reverse=True)
        # Near-the-money pulls survive any threshold
        assert counts[-1] >= 1


class TestGrouping:
    def test_pulls_grouped_per_asset(self):
        signals = [
            _pulled("BTC-a", strike=65000.0),
            _pulled("BTC-b", strike=70000.0),
            _pulled("ETH-a", asset="ETH", strike=3000.0, spot=3000.0),
        ]
        alerts, _ = AlertReducer().pull_alerts(signals)
        by_asset = {a.asset: a for a in alerts}

        assert set(by_asset) == {"BTC", "ETH"}
        assert all(a.category == AlertCategory.PT_STALE for a in alerts)
        assert all(a.severity == Severity.CRITICAL for a in alerts)
        assert by_asset["BTC"].title == "BTC x2"
        assert "strikes 65000-70000" in by_asset["BTC"].message
        assert "OI 20" in by_asset["BTC"].message
        assert by_asset["ETH"].title == "ETH-a"
        assert "QUOTE PULLED" in by_asset["ETH"].message

    def test_spread_alerts_by_severity(self):
        signals = [
            _spread(20.0, Deviation.BLOWN, "a"),
            _spread(16.0, Deviation.BLOWN, "b"),
            _spread(9.0, Deviation.DRIFTED, "c"),
        ]
        alerts = AlertReducer().spread_alerts(signals)
        assert len(alerts) == 2

        blown = next(a for a in alerts if a.severity == Severity.CRITICAL)
        drifted = next(a for a in alerts if a.severity == Severity.WARNING)
        assert blown.category == drifted.category == AlertCategory.PT_WIDE
        assert blown.title == "BTC x2"
        assert "worst 5.0x" in blown.message
        assert blown.confidence == 75
        assert drifted.title == "c"
        assert drifted.confidence == 50

    def test_expiry_range_in_message(self):
        later = EXPIRY + timedelta(days=7)
        signals = [
            ExpirySignal(_item(build_quote(raw_id="a")), 2.0),
            ExpirySignal(_item(build_quote(raw_id="b", expiry=later)), 3.0),
        ]
        alert = AlertReducer().expiry_alerts(signals)[0]
        assert alert.title == "BTC x2"
        assert "soonest 2.0h" in alert.message
        assert "expiries 2NOV26-9NOV26" in alert.message
        assert alert.confidence == 90


class TestOrdering:
    def test_critical_first_then_confidence(self):
        alerts = [
            _alert(Severity.WARNING, 70),
            _alert(Severity.CRITICAL, 60),
            _alert(Severity.WARNING, 90),
            _alert(Severity.CRITICAL, 85),
        ]
        ordered = sort_alerts(alerts)
        assert [(a.severity, a.confidence) for a in ordered] == [
            (Severity.CRITICAL, 85),
            (Severity.CRITICAL, 60),
            (Severity.WARNING, 90),
            (Severity.WARNING, 70),
        ]


class TestHealth:
    def _baseline(self, p95=4.0):
        return Baseline(
            timestamp=NOW,
            buckets={"BTC-ATM-7-30D": BucketStats((p95,), 1, 1, p95, p95)},
            options={
                "a": RECORD,
                "b": RECORD,
                "c": RECORD,
                "d": InstrumentRecord(status="EMPTY", spread=None, mid=None),
            },
        )

    def test_health_percentage(self):
        items = [
            _item(quote_with_spread(5.0, raw_id="a")),
            _item(quote_with_spread(12.0, raw_id="b"), QuoteStatus.WIDE),
            _item(build_quote(raw_id="c", ask=None), QuoteStatus.ONE_SIDED),
            _item(quote_with_spread(5.0, raw_id="d")),
        ]
        # a within 2x p95, b beyond it, c not quoted, d never quoted at baseline
        assert quoter_health(items, self._baseline(), tolerance=2.0) == pytest.approx(100 / 3)

    def test_no_baseline(self):
        assert quoter_health([_item(quote_with_spread(5.0, raw_id="a"))], None) is None

    def test_nothing_eligible(self):
        items = [_item(quote_with_spread(5.0, raw_id="d"))]
        assert quoter_health(items, self._baseline()) is None

    def test_zero_p95_counts_quoted_as_healthy(self):
        items = [_item(quote_with_spread(30.0, raw_id="a"), QuoteStatus.WIDE)]
        assert quoter_health(items, self._baseline(p95=0.0)) == pytest.approx(100.0)

    def test_coverage(self):
        items = [
            _item(quote_with_spread(5.0)),
            _item(quote_with_spread(50.0), QuoteStatus.WIDE),
            _item(build_quote(ask=None), QuoteStatus.ONE_SIDED),
            _item(build_quote(bid=None, ask=None, mid=0.0), QuoteStatus.EMPTY),
        ]
        assert coverage(items) == pytest.approx(50.0)
        assert coverage([]) == 0.0


class TestReduce:
    def test_confidence_cutoff_suppresses(self):
        reducer = AlertReducer(MaterialityConfig(min_confidence=60))
        result = reducer.reduce(
            items=[],
            deviations=[_spread(9.0, Deviation.DRIFTED)],
            expiring=[],
            arbitrage=[_alert(Severity.WARNING, 65)],
        )
        assert [a.confidence for a in result.alerts] == [65]
        assert result.stats.suppressed_count == 1

    def test_stats_and_order(self):
        items = [
            _item(quote_with_spread(5.0, raw_id="x")),
            _item(build_quote(raw_id="y", ask=None), QuoteStatus.ONE_SIDED),
        ]
        expiring = [ExpirySignal(_item(build_quote(raw_id="z")), 1.5)]
        result = AlertReducer().reduce(
            items=items,
            deviations=[_pulled("y"), _spread(9.0, Deviation.DRIFTED, "x")],
            expiring=expiring,
            arbitrage=[_alert(Severity.WARNING, 65, AlertCategory.PT_CHEAP, profitable=True)],
            baseline_age_hours=1.5,
        )

        assert [a.category for a in result.alerts] == [
            AlertCategory.PT_STALE,   # expiring, 90
            AlertCategory.PT_STALE,   # pulled, 85
            AlertCategory.PT_CHEAP,   # 65
            AlertCategory.PT_WIDE,    # drifted, 50
        ]
        stats = result.stats
        assert stats.critical_count == 2
        assert stats.warning_count == 2
        assert stats.actionable_count == 1
        assert stats.quoted_count == 1
        assert stats.total_count == 2
        assert stats.coverage_pct == pytest.approx(50.0)
        assert stats.health_pct is None
        assert stats.baseline_age_hours == 1.5
        assert stats.to_dict()["suppressed_count"] == 0

    def test_expiring_outside_window_dropped(self):
        reducer = AlertReducer(MaterialityConfig(expiry_window_hours=2))
        expiring = [ExpirySignal(_item(build_quote()), 3.0)]
        result = reducer.reduce(items=[], deviations=[], expiring=expiring, arbitrage=[])
        assert result.alerts == ()
