"""Tests for cross-venue price, IV, basis and funding signals."""

from datetime import timedelta

import pytest

from analysis.health import ClassifiedQuote, QuoteStatus
from api.snapshot import PerpetualQuote
from config.settings import ArbitrageConfig, LiquidityConfig
from core.alerts import AlertCategory, Severity
from strategies.arbitrage_scanner import ArbitrageScanner, executable_edge

from conftest import NOW, build_perp, build_quote


def _item(quote, iv=None):
    return ClassifiedQuote(quote=quote, status=QuoteStatus.QUOTED, threshold=50.0, iv=iv)


def _ref(venue="Deribit", bid=130.0, ask=140.0, **kwargs):
    return build_quote(venue=venue, raw_id=f"{venue}-BTC", bid=bid, ask=ask, **kwargs)


@pytest.fixture
def scanner():
    return ArbitrageScanner(ArbitrageConfig(), LiquidityConfig(), primary_venue="PT")


class TestExecutableEdge:
    def test_synthetic_cheap_case(self):
        edge = executable_edge("PT", 100.0, 0.0005, "Deribit", 130.0, 0.0005, 0.005)
        assert edge.gross == pytest.approx(28.85)
        assert edge.fees == pytest.approx(0.115)
        assert edge.net == pytest.approx(28.735)

    def test_negative_edge(self):
        edge = executable_edge("PT", 100.0, 0.0005, "Deribit", 100.0, 0.0005, 0.005)
        assert edge.net < 0


class TestPriceDislocation:
    def test_cheap_is_profitable(self, scanner):
        # Unlisted reference venue pays the default 5 bps taker fee
        pt = build_quote(bid=90.0, ask=100.0)
        alerts = scanner.scan_options([_item(pt)], [_ref(venue="Lyra")])

        assert len(alerts) == 1
        alert = alerts[0]
        assert alert.category == AlertCategory.PT_CHEAP
        assert alert.net_profit == pytest.approx(28.735)
        assert alert.profitable
        assert alert.confidence == 65
        assert alert.severity == Severity.WARNING

    def test_cheap_sells_at_best_bid(self, scanner):
        pt = build_quote(bid=90.0, ask=100.0)
        refs = [_ref("OKX", bid=125.0, ask=135.0), _ref("Deribit", bid=132.0, ask=142.0)]
        alert = scanner.scan_options([_item(pt)], refs)[0]
        assert "SELL Deribit @132.00" in alert.message

    def test_rich_buys_at_best_ask(self, scanner):
        pt = build_quote(bid=160.0, ask=170.0)
        refs = [_ref("OKX", bid=120.0, ask=130.0), _ref("Deribit", bid=118.0, ask=128.0)]
        alerts = scanner.scan_options([_item(pt)], refs)

        assert len(alerts) == 1
        alert = alerts[0]
        assert alert.category == AlertCategory.PT_RICH
        assert "BUY Deribit @128.00" in alert.message
        expected = executable_edge("Deribit", 128.0, 0.0003, "PT", 160.0, 0.0005, 0.005).net
        assert alert.net_profit == pytest.approx(expected)
        assert alert.profitable

    def test_dislocation_without_edge_is_not_profitable(self, scanner):
        pt = build_quote(bid=50.0, ask=100.0)
        alerts = scanner.scan_options([_item(pt)], [_ref(bid=100.0, ask=110.0)])
        assert len(alerts) == 1
        assert alerts[0].category == AlertCategory.PT_CHEAP
        assert alerts[0].net_profit < 0
        assert not alerts[0].profitable

    def test_large_dislocation_is_critical(self, scanner):
        pt = build_quote(bid=40.0, ask=50.0)
        alert = scanner.scan_options([_item(pt)], [_ref()])[0]
        assert alert.severity == Severity.CRITICAL

    def test_small_difference_ignored(self, scanner):
        pt = build_quote(bid=125.0, ask=135.0)
        assert scanner.scan_options([_item(pt)], [_ref()]) == []

    def test_cheap_without_primary_ask_skipped(self, scanner):
        pt = build_quote(bid=90.0, ask=None, mid=90.0)
        assert scanner.scan_options([_item(pt)], [_ref()]) == []


class TestFilters:
    """Illiquid references and unsuitable primary instruments are skipped."""

    @pytest.mark.parametrize("kwargs", [
        dict(volume_24h=1000.0),
        dict(open_interest=1.0),
        dict(ask=None, mid=130.0),
        dict(bid=None, mid=140.0),
    ])
    def test_illiquid_reference(self, scanner, kwargs):
        pt = build_quote(bid=90.0, ask=100.0)
        assert scanner.scan_options([_item(pt)], [_ref(**kwargs)]) == []

    def test_unmatched_instrument(self, scanner):
        pt = build_quote(bid=90.0, ask=100.0)
        assert scanner.scan_options([_item(pt)], [_ref(strike=70000.0)]) == []

    def test_short_dated_skipped(self, scanner):
        expiry = NOW + timedelta(days=1)
        pt = build_quote(bid=90.0, ask=100.0, expiry=expiry)
        assert scanner.scan_options([_item(pt)], [_ref(expiry=expiry)]) == []

    def test_tiny_primary_mid_skipped(self, scanner):
        pt = build_quote(bid=0.4, ask=0.6)
        assert scanner.scan_options([_item(pt)], [_ref(bid=1.0, ask=1.2)]) == []


class TestImpliedVol:
    def test_iv_dislocation(self, scanner):
        pt = build_quote(bid=130.0, ask=140.0)
        alerts = scanner.scan_options([_item(pt, iv=0.60)], [_ref(mark_iv=0.50)])
        assert len(alerts) == 1
        assert alerts[0].category == AlertCategory.MKT_IV
        assert alerts[0].severity == Severity.WARNING
        assert alerts[0].confidence == 60

    def test_iv_dislocation_critical(self, scanner):
        pt = build_quote(bid=130.0, ask=140.0)
        alerts = scanner.scan_options([_item(pt, iv=0.80)], [_ref(mark_iv=0.50)])
        assert alerts[0].severity == Severity.CRITICAL

    def test_small_iv_difference_ignored(self, scanner):
        pt = build_quote(bid=130.0, ask=140.0)
        assert scanner.scan_options([_item(pt, iv=0.55)], [_ref(mark_iv=0.50)]) == []

    def test_unsolved_iv_ignored(self, scanner):
        pt = build_quote(bid=130.0, ask=140.0)
        assert scanner.scan_options([_item(pt, iv=None)], [_ref(mark_iv=0.20)]) == []

    def test_one_alert_per_reference_venue(self, scanner):
        pt = build_quote(bid=130.0, ask=140.0)
        refs = [_ref("Deribit", mark_iv=0.40), _ref("OKX", mark_iv=0.45)]
        alerts = scanner.scan_options([_item(pt, iv=0.60)], refs)
        assert [a.category for a in alerts] == [AlertCategory.MKT_IV] * 2


class TestPerpetuals:
    def test_basis_divergence(self, scanner):
        pt = build_perp("PT", mark=65100.0)
        ref = build_perp("Deribit", mark=65000.0)
        alerts = scanner.scan_perpetuals([pt], [ref])

        assert len(alerts) == 1
        alert = alerts[0]
        assert alert.category == AlertCategory.PERP_ARB
        assert alert.severity == Severity.CRITICAL
        assert "SHORT PT / LONG Deribit" in alert.message
        fees = (65100.0 + 65000.0) / 2 * (0.0005 + 0.0003)
        assert alert.net_profit == pytest.approx(100.0 - fees)
        assert alert.profitable

    def test_basis_warning(self, scanner):
        alerts = scanner.scan_perpetuals(
            [build_perp("PT", basis=0.08)], [build_perp("Deribit", basis=0.0)]
        )
        assert alerts[0].severity == Severity.WARNING

    def test_basis_below_threshold(self, scanner):
        alerts = scanner.scan_perpetuals(
            [build_perp("PT", basis=0.03)], [build_perp("Deribit", basis=0.0)]
        )
        assert alerts == []

    def test_funding_divergence(self, scanner):
        pt = build_perp("PT", funding_rate=0.0001)
        ref = build_perp("Deribit", funding_rate=0.0008)
        alerts = scanner.scan_perpetuals([pt], [ref])

        assert len(alerts) == 1
        assert alerts[0].category == AlertCategory.FUND_ARB
        assert alerts[0].severity == Severity.WARNING
        assert alerts[0].profitable

    def test_funding_below_threshold(self, scanner):
        pt = build_perp("PT", funding_rate=0.0001)
        ref = build_perp("Deribit", funding_rate=0.0004)
        assert scanner.scan_perpetuals([pt], [ref]) == []

    def test_missing_funding_skipped(self, scanner):
        pt = build_perp("PT", funding_rate=None)
        ref = build_perp("Deribit", funding_rate=0.01)
        assert scanner.scan_perpetuals([pt], [ref]) == []

    def test_unknown_basis_skips_basis_but_not_funding(self, scanner):
        pt = PerpetualQuote(venue="PT", asset="BTC", instrument="BTC-PERP", mark=65000.0,
                            spot=0.0, funding_rate=0.0001, basis=None)
        ref = build_perp("Deribit", mark=66000.0, spot=65000.0, funding_rate=0.0008)
        alerts = scanner.scan_perpetuals([pt], [ref])
        assert [a.category for a in alerts] == [AlertCategory.FUND_ARB]

    def test_latest_reference_per_venue_wins(self, scanner):
        pt = build_perp("PT", mark=65000.0)
        stale = build_perp("Deribit", mark=64000.0)
        fresh = build_perp("Deribit", mark=65000.0)
        assert scanner.scan_perpetuals([pt], [stale, fresh]) == []

    def test_other_asset_ignored(self, scanner):
        pt = build_perp("PT", asset="BTC", mark=65100.0)
        ref = build_perp("Deribit", asset="ETH", mark=3000.0, spot=3100.0)
        assert scanner.scan_perpetuals([pt], [ref]) == []


class TestScan:
    def test_combines_options_and_perps(self, scanner):
        pt = build_quote(bid=90.0, ask=100.0)
        alerts = scanner.scan(
            [_item(pt)],
            [_ref()],
            [build_perp("PT", mark=65100.0)],
            [build_perp("Deribit", mark=65000.0)],
        )
        assert {a.category for a in alerts} == {AlertCategory.PT_CHEAP, AlertCategory.PERP_ARB}
