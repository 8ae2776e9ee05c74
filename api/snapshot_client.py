"""
Snapshot client for normalized market data.
Loads one run's snapshot from disk or HTTP and validates it at the boundary.
"""

import json
from datetime import datetime
from pathlib import Path
from typing import Optional, Dict, List, Any, Union

import httpx
from loguru import logger
from pydantic import BaseModel, Field, ValidationError, field_validator
from tenacity import retry, stop_after_attempt, wait_exponential

from api.snapshot import (
    MarketSnapshot, VenueSnapshot, Quote, PerpetualQuote, OptionType,
)
from utils.helpers import normalize_expiry, ensure_utc, utc_now


class SnapshotError(Exception):
    """Snapshot source could not be read or is structurally invalid."""


class OptionRecord(BaseModel):
    """Wire schema for one normalized option quote."""
    asset: str = Field(min_length=1)
    strike: float = Field(gt=0)
    expiry: datetime
    option_type: OptionType
    raw_id: str = Field(min_length=1)
    bid: Optional[float] = Field(default=None, ge=0)
    ask: Optional[float] = Field(default=None, ge=0)
    mid: Optional[float] = Field(default=None, ge=0)
    mark: Optional[float] = Field(default=None, ge=0)
    last: Optional[float] = Field(default=None, ge=0)
    spot: float = Field(default=0.0, ge=0)
    volume_24h: float = Field(default=0.0, ge=0)
    open_interest: float = Field(default=0.0, ge=0)
    mark_iv: Optional[float] = None

    @field_validator("option_type", mode="before")
    @classmethod
    def _parse_type(cls, v):
        if isinstance(v, str):
            v = v.strip().upper()
            return {"CALL": "C", "PUT": "P"}.get(v, v)
        return v

    @field_validator("mark_iv")
    @classmethod
    def _drop_unset_iv(cls, v):
        # Venues report 0 when no mark IV is available
        if v is not None and v <= 0:
            return None
        return v

    def resolve_mid(self) -> float:
        """Two-sided mid, else the venue's mark or last price."""
        if self.bid and self.ask:
            return (self.bid + self.ask) / 2
        if self.mid is not None:
            return self.mid
        return self.mark or self.bid or self.ask or self.last or 0.0


class PerpetualRecord(BaseModel):
    """Wire schema for one perpetual future quote."""
    asset: str = Field(min_length=1)
    instrument: str = Field(min_length=1)
    mark: float = Field(gt=0)
    spot: float = Field(default=0.0, ge=0)
    funding_rate: Optional[float] = None
    basis: Optional[float] = None
    is_perpetual: bool = True

    def resolve_basis(self, spot: float) -> Optional[float]:
        """Reported basis, else derived from the index; None without either."""
        if self.basis is not None:
            return self.basis
        if spot > 0:
            return (self.mark - spot) / spot * 100
        return None


class VenueRecord(BaseModel):
    ok: bool = True
    error: Optional[str] = None
    options: List[Dict[str, Any]] = Field(default_factory=list)
    perpetuals: List[Dict[str, Any]] = Field(default_factory=list)


class SnapshotRecord(BaseModel):
    as_of: Optional[datetime] = None
    primary_venue: Optional[str] = None
    spots: Dict[str, float] = Field(default_factory=dict)
    venues: Dict[str, VenueRecord]


class SnapshotClient:
    """
    Reads normalized snapshots produced by the venue fetch layer.

    Sources:
    - Local JSON file path
    - http(s) URL returning the same JSON document
    """

    def __init__(self, primary_venue: str = "PT", timeout: float = 15.0):
        self.primary_venue = primary_venue
        self.timeout = timeout

    def load(self, source: Union[str, Path]) -> MarketSnapshot:
        """
        Load and validate a snapshot.

        Args:
            source: File path or http(s) URL

        Returns:
            MarketSnapshot with malformed records dropped
        """
        source = str(source)
        if source.startswith(("http://", "https://")):
            payload = self._fetch_url(source)
        else:
            payload = self._read_file(Path(source))
        return self.parse(payload)

    def _read_file(self, path: Path) -> Dict[str, Any]:
        try:
            with open(path) as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise SnapshotError(f"Cannot read snapshot {path}: {e}") from e

    def _fetch_url(self, url: str) -> Dict[str, Any]:
        try:
            return self._get_json(url)
        except (httpx.HTTPError, json.JSONDecodeError) as e:
            raise SnapshotError(f"Cannot fetch snapshot {url}: {e}") from e

    @retry(reraise=True, stop=stop_after_attempt(3), wait=wait_exponential(multiplier=1, min=1, max=10))
    def _get_json(self, url: str) -> Dict[str, Any]:
        resp = httpx.get(url, timeout=self.timeout)
        resp.raise_for_status()
        return resp.json()

    def parse(self, payload: Dict[str, Any]) -> MarketSnapshot:
        """Convert a raw snapshot document into validated value types."""
        try:
            record = SnapshotRecord.model_validate(payload)
        except ValidationError as e:
            raise SnapshotError(f"Invalid snapshot document: {e}") from e

        as_of = ensure_utc(record.as_of) if record.as_of else utc_now()
        primary = record.primary_venue or self.primary_venue

        spots = {k.upper(): v for k, v in record.spots.items() if v > 0}
        venues = {}
        for name, venue in record.venues.items():
            options = self._parse_options(name, venue.options, as_of, spots)
            perps = self._parse_perpetuals(name, venue.perpetuals, spots)
            venues[name] = VenueSnapshot(
                venue=name,
                ok=venue.ok,
                options=tuple(options),
                perpetuals=tuple(perps),
                error=venue.error,
            )
            if venue.ok:
                logger.info(f"{name}: {len(options)} options, {len(perps)} perps")
            else:
                logger.info(f"{name} unavailable: {venue.error or 'no data'}")

        return MarketSnapshot(as_of=as_of, primary_venue=primary, venues=venues, spots=spots)

    def _parse_options(
        self, venue: str, rows: List[Dict[str, Any]], as_of: datetime, spots: Dict[str, float]
    ) -> List[Quote]:
        quotes = []
        dropped = 0
        for row in rows:
            try:
                rec = OptionRecord.model_validate(row)
            except ValidationError:
                dropped += 1
                continue
            asset = rec.asset.upper()
            quotes.append(Quote(
                venue=venue,
                asset=asset,
                strike=rec.strike,
                expiry=normalize_expiry(rec.expiry),
                option_type=rec.option_type,
                bid=rec.bid,
                ask=rec.ask,
                mid=rec.resolve_mid(),
                spot=rec.spot or spots.get(asset, 0.0),
                raw_id=rec.raw_id,
                as_of=as_of,
                last=rec.last,
                volume_24h=rec.volume_24h,
                open_interest=rec.open_interest,
                mark_iv=rec.mark_iv,
            ))
        if dropped:
            logger.warning(f"{venue}: dropped {dropped} malformed option records")
        return quotes

    def _parse_perpetuals(
        self, venue: str, rows: List[Dict[str, Any]], spots: Dict[str, float]
    ) -> List[PerpetualQuote]:
        perps = []
        dropped = 0
        for row in rows:
            try:
                rec = PerpetualRecord.model_validate(row)
            except ValidationError:
                dropped += 1
                continue
            asset = rec.asset.upper()
            spot = rec.spot or spots.get(asset, 0.0)
            perps.append(PerpetualQuote(
                venue=venue,
                asset=asset,
                instrument=rec.instrument,
                mark=rec.mark,
                spot=spot,
                funding_rate=rec.funding_rate,
                basis=rec.resolve_basis(spot),
                is_perpetual=rec.is_perpetual,
            ))
        if dropped:
            logger.warning(f"{venue}: dropped {dropped} malformed perpetual records")
        return perps
