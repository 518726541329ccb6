# Requires Python 3.12+
# Uses native type hints: list[x], tuple[x, y], X | None (PEP 585, PEP 604)
from __future__ import annotations

import logging
import math

import numpy as np
from scipy.optimize import bisect

__version__ = "0.3.1"

logger = logging.getLogger(__name__)

IRR_MIN_MONTHLY_RATE = 0.0
IRR_MAX_MONTHLY_RATE = 1.0
IRR_MAX_ITERATIONS = 100
IRR_PRECISION = 1e-6
IRR_FLOOR_PCT = -5.0


def npv_at_rate(rate: float, cash_flows: np.ndarray, principal: float) -> float:
    """
    NPV of -principal at month 0 plus cash_flows[k] at month k+1.

    Formula:
        NPV(r) = -P + Σ CF_t / (1 + r)^t,   t = 1..N
    """
    t = np.arange(1, cash_flows.size + 1)
    return float(-principal + np.sum(cash_flows / np.power(1.0 + rate, t)))


def calculate_irr(cash_flows, principal: float) -> float:
    """
    Annualized internal rate of return by bracketed bisection.

    The monthly rate is searched on [0, 1] (0-1200% annualized) with
    scipy.optimize.bisect, at most 100 iterations. A root is accepted when
    bisection converges or the NPV residual is below 1e-6.

    Args:
        cash_flows: Inflows for months 1..N (cash_flows[0] is month 1)
        principal: Month-0 outflow (positive number)

    Returns:
        IRR as annual percentage (monthly rate × 12 × 100), or NaN when the
        flows have no root in the bracket, the solver fails, or the result is
        below -5%.

    Example:
        >>> round(calculate_irr([1010.0], 1000.0), 6)
        12.0
    """
    flows = np.asarray(cash_flows, dtype=float).ravel()
    principal = float(principal)
    if flows.size == 0 or not np.all(np.isfinite(flows)) or not math.isfinite(principal) or principal <= 0:
        return float("nan")

    try:
        rate, info = bisect(
            npv_at_rate,
            IRR_MIN_MONTHLY_RATE, IRR_MAX_MONTHLY_RATE,
            args=(flows, principal),
            maxiter=IRR_MAX_ITERATIONS,
            full_output=True,
            disp=False,
        )
    except ValueError:
        # bisect raises ValueError when f(a) and f(b) have the same sign
        logger.debug("IRR has no root in monthly rate bracket [0, 1]")
        return float("nan")

    if not info.converged and abs(npv_at_rate(rate, flows, principal)) >= IRR_PRECISION:
        logger.debug("IRR bisection did not converge (%s)", info.flag)
        return float("nan")

    annual = rate * 12.0 * 100.0
    if not math.isfinite(annual) or annual < IRR_FLOOR_PCT:
        return float("nan")
    return annual
