# Requires Python 3.12+
# Uses native type hints: list[x], tuple[x, y], X | None (PEP 585, PEP 604)
from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum

from .config import DEFAULT_SCHOOL_ADJUSTMENTS_BPS, Assumptions
from .models import Borrower, RiskCurve, SchoolRecord, as_float

__version__ = "0.3.1"

logger = logging.getLogger(__name__)

# Upper bound on the total risk premium added to the risk-free rate.
MAX_RISK_PREMIUM_BPS = 500.0

# Borrower weight in the blended FICO score.
BORROWER_FICO_WEIGHT = 0.7

# Fallbacks for school records with missing outcomes.
DEFAULT_MEDIAN_EARNINGS = 50000.0
DEFAULT_GRAD_RATE = 0.0


class RiskTier(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    VERY_HIGH = "VERY_HIGH"
    UNKNOWN = "UNKNOWN"


class SchoolTier(str, Enum):
    TIER_1 = "Tier 1"
    TIER_2 = "Tier 2"
    TIER_3 = "Tier 3"
    UNKNOWN = "Unknown"


# =============================================================================
# Borrower credit
# =============================================================================

def blended_fico(borrower_fico: float | None, cosigner_fico: float | None) -> float:
    """
    Effective FICO: max(borrower, 0.7 × borrower + 0.3 × cosigner).

    A cosigner can lift the score but never lowers it below the borrower's own.
    Missing scores count as 0.
    """
    b = as_float(borrower_fico)
    c = as_float(cosigner_fico)
    return max(b, BORROWER_FICO_WEIGHT * b + (1.0 - BORROWER_FICO_WEIGHT) * c)


def derive_fico_band(fico: float | None) -> str:
    """Letter band: A >= 760, B >= 720, C >= 680, D >= 640, else E; None -> UNKNOWN."""
    if fico is None:
        return "UNKNOWN"
    if fico >= 760:
        return "A"
    if fico >= 720:
        return "B"
    if fico >= 680:
        return "C"
    if fico >= 640:
        return "D"
    return "E"


_YEAR_CODES = {"A": 6, "B": 7, "C": 8, "D": 9, "Z": 1}


def normalize_year_in_school(year: int | str | None) -> int:
    """
    Numeric year in school.

    Grade-level letter codes map A=6, B=7, C=8, D=9, Z=1 (unknown).
    Integers and numeric strings pass through; anything else is year 1.
    """
    if year is None or isinstance(year, bool):
        return 1
    text = str(year).strip().upper()
    if text in _YEAR_CODES:
        return _YEAR_CODES[text]
    try:
        value = int(float(text))
    except ValueError:
        return 1
    return value if value >= 1 else 1


def year_in_school_key(year: int | str | None) -> str:
    """
    Key into year_in_school_adjustments_bps: "1".."4", "5+", or a letter code.

    Letter codes (A, B, C, D, Z) keep their own keys, so a table can price
    them apart from the numeric years they stand for in tiering.
    """
    if isinstance(year, str) and year.strip().upper() in _YEAR_CODES:
        return year.strip().upper()
    value = normalize_year_in_school(year)
    return "5+" if value >= 5 else str(value)


def derive_risk_tier(borrower: Borrower | None, assumptions: Assumptions | None = None) -> RiskTier:
    """
    Risk tier from blended FICO and year in school.

    Base mapping by FICO band:
        A with year >= 3 -> LOW
        A or B           -> MEDIUM
        C or D           -> HIGH
        otherwise        -> VERY_HIGH

    Overrides on the blended score:
        >= 780 forces LOW
        >= 720 lifts HIGH to MEDIUM

    The tier thresholds are fixed; assumptions is accepted so callers can
    pass the same record they use for the rest of the valuation.
    """
    borrower = borrower or Borrower()
    fico = blended_fico(borrower.borrower_fico, borrower.cosigner_fico)
    band = derive_fico_band(fico)
    year = normalize_year_in_school(borrower.year_in_school)

    if band == "A" and year >= 3:
        tier = RiskTier.LOW
    elif band in ("A", "B"):
        tier = RiskTier.MEDIUM
    elif band in ("C", "D"):
        tier = RiskTier.HIGH
    else:
        tier = RiskTier.VERY_HIGH

    if fico >= 780:
        tier = RiskTier.LOW
    elif fico >= 720 and tier is RiskTier.HIGH:
        tier = RiskTier.MEDIUM
    return tier


# =============================================================================
# School tier
# =============================================================================

def compute_school_tier(record: SchoolRecord, assumptions: Assumptions) -> SchoolTier:
    """
    Tier 1: graduation rate and median earnings both meet their thresholds.
    Tier 2: either one reaches 80% of its threshold.
    Tier 3: otherwise.

    Missing earnings count as 50,000 and a missing graduation rate as 0.
    """
    grad = record.grad_rate if record.grad_rate is not None else DEFAULT_GRAD_RATE
    earnings = (
        record.median_earnings_10yr if record.median_earnings_10yr is not None else DEFAULT_MEDIAN_EARNINGS
    )
    grad_threshold = assumptions.graduation_rate_threshold
    earnings_threshold = assumptions.earnings_threshold
    if grad >= grad_threshold and earnings >= earnings_threshold:
        return SchoolTier.TIER_1
    if grad >= grad_threshold * 0.8 or earnings >= earnings_threshold * 0.8:
        return SchoolTier.TIER_2
    return SchoolTier.TIER_3


def get_school_tier(
        school: str | None,
        opeid: str | None,
        schools: Mapping[str, SchoolRecord] | None,
        assumptions: Assumptions,
) -> SchoolTier:
    """
    Look up a school by identifier (OPEID) and tier it.

    - Table missing or empty: Tier 3.
    - Identifier given and found: tier of that record.
    - Identifier given but not found: Tier 3 (logged).
    - No identifier: tier of the table's DEFAULT record, Tier 3 without one.
    """
    if not schools:
        logger.debug("School table not loaded, using Tier 3 for %r", school)
        return SchoolTier.TIER_3
    key = str(opeid).strip() if opeid is not None else ""
    if key:
        record = schools.get(key)
        if record is None:
            logger.warning("OPEID %s not found in school table, using Tier 3", key)
            return SchoolTier.TIER_3
    else:
        record = schools.get("DEFAULT")
        if record is None:
            logger.debug("No OPEID for school %r and no DEFAULT record, using Tier 3", school)
            return SchoolTier.TIER_3
    return compute_school_tier(record, assumptions)


def get_school_name(school: str | None, opeid: str | None, schools: Mapping[str, SchoolRecord] | None) -> str:
    """Display name: explicit school name, else the table's name for the OPEID, else "Unknown"."""
    if school and school.strip():
        return school.strip()
    if opeid and schools:
        record = schools.get(opeid.strip())
        if record is not None:
            return record.name or "Unknown"
        logger.warning("OPEID %s not found in school table for name lookup", opeid.strip())
    return "Unknown"


def school_adjustment_bps(tier: SchoolTier, assumptions: Assumptions) -> float:
    key = tier.value
    if key in assumptions.school_adjustments_bps:
        return assumptions.school_adjustments_bps[key]
    return DEFAULT_SCHOOL_ADJUSTMENTS_BPS.get(key, DEFAULT_SCHOOL_ADJUSTMENTS_BPS["Unknown"])


# =============================================================================
# Degree
# =============================================================================

_DEGREE_TYPES = {
    "STEM": "STEM",
    "Business": "BUSINESS",
    "Liberal Arts": "LIBERAL_ARTS",
    "Professional (e.g. Nursing, Law)": "PROFESSIONAL",
    "Other": "OTHER",
}


def normalize_degree_type(degree: str | None) -> str:
    """Supplier degree label -> adjustment key; unrecognized labels are UNKNOWN."""
    if degree is None:
        return "UNKNOWN"
    return _DEGREE_TYPES.get(degree.strip(), "UNKNOWN")


# =============================================================================
# Risk premium attribution
# =============================================================================

@dataclass(frozen=True)
class RiskBreakdown:
    """Components of the risk premium (bps) and the tiers they came from."""
    risk_tier: RiskTier
    school_tier: SchoolTier
    base_bps: float
    fico_bps: float
    degree_bps: float
    school_bps: float
    year_bps: float
    graduate_bps: float

    @property
    def total_bps(self) -> float:
        return (
            self.base_bps + self.fico_bps + self.degree_bps
            + self.school_bps + self.year_bps + self.graduate_bps
        )

    @property
    def capped_bps(self) -> float:
        return min(self.total_bps, MAX_RISK_PREMIUM_BPS)


def build_risk_breakdown(
        borrower: Borrower,
        risk_tier: RiskTier,
        curve: RiskCurve,
        assumptions: Assumptions,
        schools: Mapping[str, SchoolRecord] | None = None,
) -> RiskBreakdown:
    """
    Attribute the risk premium to its components.

    base:     assumptions.risk_premium_bps[tier], else the curve's premium
    fico:     flat bump for each of borrower / cosigner FICO present
    degree:   assumptions.degree_adjustments_bps[normalized degree]
    school:   assumptions.school_adjustments_bps[school tier] with defaults
    year:     assumptions.year_in_school_adjustments_bps["1".."4" | "5+" | letter code]
    graduate: assumptions.graduate_adjustment_bps for graduate students
    """
    base = assumptions.risk_premium_bps.get(risk_tier.value, curve.risk_premium_bps)
    fico = 0.0
    if borrower.borrower_fico:
        fico += assumptions.fico_borrower_adjustment
    if borrower.cosigner_fico:
        fico += assumptions.fico_cosigner_adjustment
    degree = assumptions.degree_adjustments_bps.get(normalize_degree_type(borrower.degree_type), 0.0)
    school_tier = get_school_tier(borrower.school, borrower.opeid, schools, assumptions)
    year = assumptions.year_in_school_adjustments_bps.get(year_in_school_key(borrower.year_in_school), 0.0)
    graduate = assumptions.graduate_adjustment_bps if borrower.is_graduate_student else 0.0
    return RiskBreakdown(
        risk_tier=risk_tier,
        school_tier=school_tier,
        base_bps=float(base),
        fico_bps=fico,
        degree_bps=float(degree),
        school_bps=float(school_adjustment_bps(school_tier, assumptions)),
        year_bps=float(year),
        graduate_bps=float(graduate),
    )
