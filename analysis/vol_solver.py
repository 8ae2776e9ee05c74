"""
Implied Volatility Solver.
Black-Scholes pricing and Newton-Raphson implied volatility for
cross-venue volatility comparison.
"""

import math
from typing import Optional, Union

from api.snapshot import OptionType

SQRT_2PI = math.sqrt(2 * math.pi)

# Abramowitz & Stegun 7.1.26, |error| < 1.5e-7
_A1, _A2, _A3, _A4, _A5 = 0.254829592, -0.284496736, 1.421413741, -1.453152027, 1.061405429
_P = 0.3275911


def norm_cdf(x: float) -> float:
    """Standard normal CDF via a fast error-function approximation."""
    sign = -1.0 if x < 0 else 1.0
    ax = abs(x) / math.sqrt(2)
    t = 1.0 / (1.0 + _P * ax)
    y = 1.0 - ((((_A5 * t + _A4) * t + _A3) * t + _A2) * t + _A1) * t * math.exp(-ax * ax)
    return 0.5 * (1.0 + sign * y)


def norm_pdf(x: float) -> float:
    return math.exp(-0.5 * x * x) / SQRT_2PI


class VolatilitySolver:
    """
    Newton-Raphson implied volatility solver.

    Guards:
    - Degenerate vega aborts
    - Estimate clamped to [min_vol, max_vol] after every step
    - Divergence (step more than doubling) aborts after a warm-up
    - Only results strictly inside the accept band are returned
    """

    MIN_T = 1e-6

    def __init__(
        self,
        risk_free_rate: float = 0.0,
        initial_vol: float = 0.5,
        max_iterations: int = 60,
        tolerance: float = 1e-8,
        min_vega: float = 1e-10,
        min_vol: float = 0.001,
        max_vol: float = 10.0,
        accept_band: tuple = (0.005, 9.9),
        divergence_warmup: int = 5,
    ):
        self.risk_free_rate = risk_free_rate
        self.initial_vol = initial_vol
        self.max_iterations = max_iterations
        self.tolerance = tolerance
        self.min_vega = min_vega
        self.min_vol = min_vol
        self.max_vol = max_vol
        self.accept_band = accept_band
        self.divergence_warmup = divergence_warmup

    @staticmethod
    def _coerce_type(option_type: Union[str, OptionType]) -> OptionType:
        if isinstance(option_type, OptionType):
            return option_type
        return OptionType(option_type.upper()[0])

    def _d1(self, S: float, K: float, T: float, sigma: float) -> float:
        r = self.risk_free_rate
        return (math.log(S / K) + (r + 0.5 * sigma ** 2) * T) / (sigma * math.sqrt(T))

    def black_scholes_price(
        self,
        S: float,
        K: float,
        T: float,
        sigma: float,
        option_type: Union[str, OptionType] = OptionType.CALL
    ) -> float:
        """
        Black-Scholes price of a European option.

        Args:
            S: Spot price
            K: Strike price
            T: Time to expiration (years)
            sigma: Volatility (annualized)
            option_type: CALL/PUT or 'C'/'P'

        Returns:
            Theoretical option price (intrinsic value at expiry)
        """
        option_type = self._coerce_type(option_type)
        if T <= self.MIN_T or sigma <= self.MIN_T:
            if option_type == OptionType.CALL:
                return max(0.0, S - K)
            return max(0.0, K - S)

        r = self.risk_free_rate
        d1 = self._d1(S, K, T, sigma)
        d2 = d1 - sigma * math.sqrt(T)
        discount = math.exp(-r * T)

        if option_type == OptionType.CALL:
            return S * norm_cdf(d1) - K * discount * norm_cdf(d2)
        return K * discount * norm_cdf(-d2) - S * norm_cdf(-d1)

    def vega(self, S: float, K: float, T: float, sigma: float) -> float:
        """Vega per unit of volatility (not per 1%)."""
        if T <= self.MIN_T or sigma <= 0:
            return 0.0
        d1 = self._d1(S, K, T, sigma)
        return S * math.sqrt(T) * norm_pdf(d1)

    def implied_volatility(
        self,
        price: float,
        S: float,
        K: float,
        T: float,
        option_type: Union[str, OptionType] = OptionType.CALL
    ) -> Optional[float]:
        """
        Solve for the volatility that reproduces an option price.

        Returns:
            Implied volatility, or None when unsolvable
        """
        if T < self.MIN_T or price <= 0 or S <= 0 or K <= 0:
            return None

        option_type = self._coerce_type(option_type)
        sigma = self.initial_vol
        prev_step = math.inf
        converged = False

        for i in range(self.max_iterations):
            model_price = self.black_scholes_price(S, K, T, sigma, option_type)
            residual = model_price - price
            if abs(residual) < self.tolerance:
                converged = True
                break

            vg = self.vega(S, K, T, sigma)
            if vg < self.min_vega:
                return None

            step = residual / vg
            if i > self.divergence_warmup and abs(step) > 2 * abs(prev_step):
                return None
            prev_step = step

            sigma = min(self.max_vol, max(self.min_vol, sigma - step))
            if abs(step) < self.tolerance:
                converged = True
                break

        if not converged:
            return None

        lo, hi = self.accept_band
        if lo < sigma < hi:
            return sigma
        return None


def solve_iv(
    price: float,
    S: float,
    K: float,
    T: float,
    option_type: Union[str, OptionType] = OptionType.CALL,
    risk_free_rate: float = 0.0
) -> Optional[float]:
    """Convenience wrapper around VolatilitySolver.implied_volatility."""
    return VolatilitySolver(risk_free_rate=risk_free_rate).implied_volatility(
        price, S, K, T, option_type
    )
