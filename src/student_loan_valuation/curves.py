# Requires Python 3.12+
# Uses native type hints: list[x], tuple[x, y], X | None (PEP 585, PEP 604)
from __future__ import annotations

import numpy as np

from .models import RiskCurve

__version__ = "0.3.1"

# Annual rates are capped just below 100% so monthly rates stay below 1.
_MAX_ANNUAL_PCT = 99.9999


# =============================================================================
# Annual <-> monthly rate conversion
# =============================================================================

def cpr_to_smm(cpr: float) -> float:
    """
    Convert CPR (Conditional Prepayment Rate) to SMM (Single Monthly Mortality).

    Formula:
        (1 - SMM)^12 = 1 - CPR/100

    Rearranged:
        SMM = 1 - (1 - CPR/100)^(1/12)

    Args:
        cpr: Annual CPR as percentage (0-100)

    Returns:
        SMM as decimal (0-1)
    """
    return 1.0 - (1.0 - cpr / 100.0) ** (1.0 / 12.0)


def smm_to_cpr(smm: float) -> float:
    """
    Convert SMM to CPR.

    Formula:
        CPR = 100 * (1 - (1 - SMM)^12)
    """
    return 100.0 * (1.0 - (1.0 - smm) ** 12.0)


def cpr_to_smm_vector(cpr_vector: np.ndarray) -> np.ndarray:
    """
    Vectorized CPR to SMM conversion. See cpr_to_smm for details.

    Args:
        cpr_vector: Annual CPR as percentage (0-100), any shape.

    Returns:
        SMM as decimal (0-1), same shape as input.
        NaN/inf inputs will produce NaN/inf outputs (natural numpy propagation).
    """
    if not isinstance(cpr_vector, np.ndarray):
        cpr_vector = np.array(cpr_vector, dtype=float)
    return 1.0 - np.power(1.0 - cpr_vector / 100.0, 1.0 / 12.0)


def cdr_to_mdr_vector(cdr_vector: np.ndarray) -> np.ndarray:
    """Vectorized annual default rate (%) to monthly default rate; same formula as CPR to SMM."""
    return cpr_to_smm_vector(cdr_vector)


# =============================================================================
# Curve interpolation (annual curve -> monthly vector)
# =============================================================================

def _clean_annual(values) -> np.ndarray:
    arr = np.asarray(values, dtype=float).ravel()
    arr = np.nan_to_num(arr, nan=0.0, posinf=_MAX_ANNUAL_PCT, neginf=0.0)
    return np.clip(arr, 0.0, _MAX_ANNUAL_PCT)


def _expand_to_months(monthly_by_year: np.ndarray, months: int) -> np.ndarray:
    """Repeat each yearly monthly-rate 12 times, then pad with the last value to `months`."""
    if months <= 0:
        return np.zeros(0)
    if monthly_by_year.size == 0:
        return np.zeros(months)
    vec = np.repeat(monthly_by_year, 12)[:months]
    if vec.size < months:
        vec = np.pad(vec, (0, months - vec.size), mode='edge')
    return vec


def cumulative_default_to_monthly_pd(cumulative_pct, months: int) -> np.ndarray:
    """
    Monthly probability-of-default vector from a cumulative annual default curve.

    Algorithm:
        1. De-cumulate: marginal[y] = cum[y] - cum[y-1]   (marginal[0] = cum[0])
        2. Monthly hazard per curve year: 1 - (1 - marginal/100)^(1/12)
        3. Repeat each year's monthly rate for 12 months
        4. Past the end of the curve, repeat the last monthly rate

    Marginals that come out negative (curve not monotone) are treated as 0.

    Args:
        cumulative_pct: Cumulative default %, one entry per loan year
        months: Length of the output vector

    Returns:
        np.ndarray of length max(months, 0), values in [0, 1)

    Example:
        >>> pd = cumulative_default_to_monthly_pd([2.0, 5.0], 30)
        >>> len(pd), bool(pd[12] > pd[0]), bool(pd[29] == pd[23])
        (30, True, True)
    """
    cum = np.asarray(cumulative_pct, dtype=float).ravel()
    cum = np.nan_to_num(cum, nan=0.0)
    marginal = np.diff(cum, prepend=0.0) if cum.size else cum
    return _expand_to_months(cdr_to_mdr_vector(_clean_annual(marginal)), months)


def annual_cpr_to_monthly_smm(cpr_pct, months: int) -> np.ndarray:
    """
    Monthly SMM vector from an annual CPR curve (one entry per loan year).

    Same expansion rules as cumulative_default_to_monthly_pd, without the
    de-cumulation step.
    """
    return _expand_to_months(cpr_to_smm_vector(_clean_annual(cpr_pct)), months)


def monthly_curve_vectors(curve: RiskCurve, months: int) -> tuple[np.ndarray, np.ndarray]:
    """
    Monthly PD and SMM vectors for a projection of `months` months.

    Element k of each vector applies to projection month k + 1, counted from
    the valuation month; curve year 1 covers projection months 1-12.

    Returns:
        (pd_vector, smm_vector), each of length max(months, 0)
    """
    months = max(0, int(months))
    pd = cumulative_default_to_monthly_pd(curve.cumulative_default_pct, months)
    smm = annual_cpr_to_monthly_smm(curve.prepayment_cpr_pct, months)
    return pd, smm
