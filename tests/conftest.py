"""Shared fixtures for the quote monitor tests."""

from datetime import datetime, timedelta

import pytest
import pytz

from api.snapshot import Quote, PerpetualQuote, OptionType, VenueSnapshot, MarketSnapshot
from utils.helpers import normalize_expiry

NOW = datetime(2026, 10, 19, 0, 0, 0, tzinfo=pytz.utc)
EXPIRY = normalize_expiry(NOW + timedelta(days=14))


def build_quote(
    raw_id="BTC-20261102-65000C",
    venue="PT",
    asset="BTC",
    strike=65000.0,
    spot=65000.0,
    bid=1000.0,
    ask=1040.0,
    mid=None,
    expiry=EXPIRY,
    option_type=OptionType.CALL,
    volume_24h=100000.0,
    open_interest=10.0,
    mark_iv=None,
    as_of=NOW,
):
    if mid is None:
        if bid and ask:
            mid = (bid + ask) / 2
        else:
            mid = bid or ask or 0.0
    return Quote(
        venue=venue,
        asset=asset,
        strike=strike,
        expiry=expiry,
        option_type=option_type,
        bid=bid,
        ask=ask,
        mid=mid,
        spot=spot,
        raw_id=raw_id,
        as_of=as_of,
        volume_24h=volume_24h,
        open_interest=open_interest,
        mark_iv=mark_iv,
    )


def quote_with_spread(spread_pct, mid=1000.0, **kwargs):
    """Two-sided quote whose spread is exactly spread_pct of mid."""
    half = mid * spread_pct / 100 / 2
    return build_quote(bid=mid - half, ask=mid + half, mid=mid, **kwargs)


def build_perp(venue="PT", asset="BTC", mark=65000.0, spot=65000.0, funding_rate=None, basis=None):
    if basis is None:
        basis = (mark - spot) / spot * 100
    return PerpetualQuote(
        venue=venue,
        asset=asset,
        instrument=f"{asset}-PERP",
        mark=mark,
        spot=spot,
        funding_rate=funding_rate,
        basis=basis,
    )


def build_snapshot(primary_options=(), primary_perps=(), reference=None, primary_ok=True, as_of=NOW):
    venues = {
        "PT": VenueSnapshot(
            venue="PT",
            ok=primary_ok,
            options=tuple(primary_options),
            perpetuals=tuple(primary_perps),
        )
    }
    for name, (opts, perps) in (reference or {}).items():
        venues[name] = VenueSnapshot(venue=name, options=tuple(opts), perpetuals=tuple(perps))
    return MarketSnapshot(as_of=as_of, primary_venue="PT", venues=venues, spots={"BTC": 65000.0})


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def make_quote():
    return build_quote


@pytest.fixture
def make_spread_quote():
    return quote_with_spread


@pytest.fixture
def make_perp():
    return build_perp


@pytest.fixture
def make_snapshot():
    return build_snapshot
