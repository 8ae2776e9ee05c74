"""
Cross-Venue Arbitrage Scanner.
Matches primary-venue instruments against reference venues and detects
executable, fee-adjusted dislocations.
"""

from typing import Dict, List, Optional, Sequence, Tuple
from dataclasses import dataclass
from loguru import logger

import numpy as np

from api.snapshot import Quote, PerpetualQuote
from analysis.health import ClassifiedQuote
from config.settings import ArbitrageConfig, LiquidityConfig
from core.alerts import Alert, AlertCategory, CONFIDENCE, severity_for
from utils.helpers import pct_diff


@dataclass(frozen=True)
class ExecutableEdge:
    """Two-leg trade economics after slippage and taker fees."""
    buy_venue: str
    buy_price: float
    sell_venue: str
    sell_price: float
    gross: float
    fees: float

    @property
    def net(self) -> float:
        return self.gross - self.fees


def executable_edge(
    buy_venue: str,
    buy_price: float,
    buy_fee: float,
    sell_venue: str,
    sell_price: float,
    sell_fee: float,
    slippage: float
) -> ExecutableEdge:
    """
    Edge of buying at one venue's ask and selling at another's bid.

    Each leg pays the slippage allowance and its venue's taker fee.
    """
    gross = sell_price * (1 - slippage) - buy_price * (1 + slippage)
    fees = buy_price * buy_fee + sell_price * sell_fee
    return ExecutableEdge(
        buy_venue=buy_venue,
        buy_price=buy_price,
        sell_venue=sell_venue,
        sell_price=sell_price,
        gross=gross,
        fees=fees,
    )


class ArbitrageScanner:
    """
    Scans the primary venue against reference venues.

    Signals:
    1. Price dislocation (PT_CHEAP / PT_RICH) with executable net edge
    2. Implied volatility dislocation (MKT_IV)
    3. Perpetual basis divergence (PERP_ARB)
    4. Funding rate divergence (FUND_ARB)
    """

    def __init__(
        self,
        arbitrage: Optional[ArbitrageConfig] = None,
        liquidity: Optional[LiquidityConfig] = None,
        primary_venue: str = "PT"
    ):
        self.arbitrage = arbitrage or ArbitrageConfig()
        self.liquidity = liquidity or LiquidityConfig()
        self.primary_venue = primary_venue

    @property
    def min_T(self) -> float:
        return self.arbitrage.min_days_to_expiry / 365

    def _check_liquidity(self, quote: Quote) -> bool:
        """Reference quote must be two-sided with enough volume and OI."""
        if not (quote.has_bid and quote.has_ask):
            return False
        if quote.volume_24h < self.liquidity.min_ref_volume:
            return False
        if quote.open_interest < self.liquidity.min_ref_open_interest:
            return False
        return True

    def _is_profitable(self, net: float) -> bool:
        return net > 0 and net >= self.arbitrage.min_net_edge

    def index_reference(self, quotes: Sequence[Quote]) -> Dict[Tuple, List[Quote]]:
        """Group usable reference quotes by exact (asset, strike, expiry, type)."""
        index: Dict[Tuple, List[Quote]] = {}
        for q in quotes:
            if q.T < self.min_T or q.mid <= 0:
                continue
            index.setdefault(q.match_key, []).append(q)
        return index

    def scan_options(
        self,
        items: Sequence[ClassifiedQuote],
        reference: Sequence[Quote]
    ) -> List[Alert]:
        """
        Compare each primary option against liquid reference quotes.

        Args:
            items: Classified primary-venue options
            reference: Option quotes from all reference venues

        Returns:
            Price and IV dislocation alerts
        """
        alerts = []
        index = self.index_reference(reference)

        for item in items:
            pt = item.quote
            if pt.mid <= 0 or pt.mid < self.arbitrage.min_primary_mid or pt.T < self.min_T:
                continue

            matches = index.get(pt.match_key)
            if not matches:
                continue
            liquid = [m for m in matches if self._check_liquidity(m)]
            if not liquid:
                continue

            alerts.extend(self._scan_iv(item, liquid))

            price_alert = self._scan_price(pt, liquid)
            if price_alert is not None:
                alerts.append(price_alert)

        return alerts

    def _scan_iv(self, item: ClassifiedQuote, liquid: Sequence[Quote]) -> List[Alert]:
        if item.iv is None:
            return []
        alerts = []
        threshold = self.arbitrage.iv_diff_vol_pts
        pt = item.quote
        for m in liquid:
            if m.mark_iv is None:
                continue
            diff = (item.iv - m.mark_iv) * 100
            if abs(diff) < threshold:
                continue
            alerts.append(Alert(
                category=AlertCategory.MKT_IV,
                severity=severity_for(abs(diff), threshold),
                asset=pt.asset,
                title=pt.raw_id,
                message=(
                    f"{self.primary_venue} IV {item.iv * 100:.1f}% vs {m.venue} IV "
                    f"{m.mark_iv * 100:.1f}% ({diff:+.1f} vol pts)"
                ),
                confidence=CONFIDENCE["iv"],
            ))
        return alerts

    def _scan_price(self, pt: Quote, liquid: Sequence[Quote]) -> Optional[Alert]:
        threshold = self.arbitrage.price_diff_pct
        ref_mid = float(np.mean([m.mid for m in liquid]))
        diff = pct_diff(pt.mid, ref_mid)
        if abs(diff) < threshold:
            return None

        slip = self.arbitrage.slippage_pct
        pt_fee = self.arbitrage.taker_fee(self.primary_venue)

        if diff < 0:
            if not pt.has_ask:
                return None
            best = max(liquid, key=lambda m: m.bid)
            edge = executable_edge(
                self.primary_venue, pt.ask, pt_fee,
                best.venue, best.bid, self.arbitrage.taker_fee(best.venue),
                slip,
            )
            category = AlertCategory.PT_CHEAP
            action = f"BUY @{pt.ask:.2f} SELL {best.venue} @{best.bid:.2f}"
        else:
            if not pt.has_bid:
                return None
            best = min(liquid, key=lambda m: m.ask)
            edge = executable_edge(
                best.venue, best.ask, self.arbitrage.taker_fee(best.venue),
                self.primary_venue, pt.bid, pt_fee,
                slip,
            )
            category = AlertCategory.PT_RICH
            action = f"SELL @{pt.bid:.2f} BUY {best.venue} @{best.ask:.2f}"

        net = edge.net
        return Alert(
            category=category,
            severity=severity_for(abs(diff), threshold),
            asset=pt.asset,
            title=pt.raw_id,
            message=(
                f"{self.primary_venue} ${pt.mid:.2f} vs mkt ${ref_mid:.2f} ({diff:+.1f}%) "
                f"- {action} [net ${net:.2f}]"
            ),
            confidence=CONFIDENCE["price"],
            net_profit=net,
            profitable=self._is_profitable(net),
        )

    def scan_perpetuals(
        self,
        primary: Sequence[PerpetualQuote],
        reference: Sequence[PerpetualQuote]
    ) -> List[Alert]:
        """Basis and funding divergence between the primary perp and each reference perp."""
        alerts = []
        primary_by_asset = {p.asset: p for p in primary if p.is_perpetual}
        ref_by_asset: Dict[str, Dict[str, PerpetualQuote]] = {}
        for p in reference:
            if p.is_perpetual:
                ref_by_asset.setdefault(p.asset, {})[p.venue] = p

        basis_th = self.arbitrage.perp_basis_bps
        funding_th = self.arbitrage.funding_bps
        pt_fee = self.arbitrage.taker_fee(self.primary_venue)

        for asset, pt in primary_by_asset.items():
            for venue, mp in ref_by_asset.get(asset, {}).items():
                # Unknown index on either side: basis not comparable
                basis_bps = None
                if pt.basis is not None and mp.basis is not None:
                    basis_bps = abs(pt.basis - mp.basis) * 100
                if basis_bps is not None and basis_bps >= basis_th:
                    fees = (pt.mark + mp.mark) / 2 * (pt_fee + self.arbitrage.taker_fee(venue))
                    net = abs(pt.mark - mp.mark) - fees
                    direction = f"LONG {self.primary_venue} / SHORT {venue}" if pt.mark < mp.mark \
                        else f"SHORT {self.primary_venue} / LONG {venue}"
                    alerts.append(Alert(
                        category=AlertCategory.PERP_ARB,
                        severity=severity_for(basis_bps, basis_th, inclusive=False),
                        asset=asset,
                        title=f"{asset} PERP {self.primary_venue}<->{venue}",
                        message=(
                            f"Basis diff {basis_bps:.1f}bps | {self.primary_venue} ${pt.mark:.2f} "
                            f"vs {venue} ${mp.mark:.2f} - {direction} [net ${net:.2f}]"
                        ),
                        confidence=CONFIDENCE["perp"],
                        net_profit=net,
                        profitable=self._is_profitable(net),
                    ))

                if pt.funding_rate is not None and mp.funding_rate is not None:
                    funding_bps = abs(pt.funding_rate - mp.funding_rate) * 10000
                    if funding_bps >= funding_th:
                        alerts.append(Alert(
                            category=AlertCategory.FUND_ARB,
                            severity=severity_for(funding_bps, funding_th, inclusive=False),
                            asset=asset,
                            title=f"{asset} FUNDING {self.primary_venue}<->{venue}",
                            message=(
                                f"Funding diff {funding_bps:.2f}bps | {self.primary_venue} "
                                f"{pt.funding_rate * 10000:.2f}bps vs {venue} "
                                f"{mp.funding_rate * 10000:.2f}bps"
                            ),
                            confidence=CONFIDENCE["funding"],
                            profitable=funding_bps > self.arbitrage.funding_profitable_bps,
                        ))

        return alerts

    def scan(
        self,
        items: Sequence[ClassifiedQuote],
        reference_options: Sequence[Quote],
        primary_perps: Sequence[PerpetualQuote],
        reference_perps: Sequence[PerpetualQuote]
    ) -> List[Alert]:
        """Run every cross-venue check."""
        alerts = self.scan_options(items, reference_options)
        alerts.extend(self.scan_perpetuals(primary_perps, reference_perps))

        actionable = sum(1 for a in alerts if a.profitable)
        logger.info(f"Cross-venue scan: {len(alerts)} signals, {actionable} actionable")
        return alerts
