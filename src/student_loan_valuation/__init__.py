# Requires Python 3.12+
"""
Student Loan Valuation: amortization ledgers, risk-adjusted cash flows,
NPV/IRR and portfolio KPIs for fixed-rate student loan positions.
"""

from __future__ import annotations

import logging

__version__ = "0.3.1"

logging.getLogger(__name__).addHandler(logging.NullHandler())

# Errors
from student_loan_valuation.errors import (
    LoanValuationError,
    ValidationError,
    DataUnavailable,
)

# Dates
from student_loan_valuation.dates import (
    normalize_date,
    month_start,
    add_months,
    month_key,
    months_between,
    us_to_iso,
)

# Records
from student_loan_valuation.models import (
    PrepaymentEvent,
    DeferralEvent,
    DefaultEvent,
    event_from_dict,
    OwnershipLot,
    Loan,
    Borrower,
    RiskCurve,
    SchoolRecord,
    PlatformUser,
)

# Configuration and reference data
from student_loan_valuation.config import (
    Assumptions,
    resolve_assumptions,
    ValuationProfile,
    ReferenceData,
    ReferenceStore,
)

# Fees
from student_loan_valuation.fees import (
    FeeConfig,
    FeeWaiver,
    resolve_fee_waiver,
)

# Amortization ledger
from student_loan_valuation.schedule import (
    AmortRow,
    level_payment,
    build_amort_schedule,
    current_amort_row,
    current_schedule_index,
)

# Curves
from student_loan_valuation.curves import (
    cpr_to_smm,
    smm_to_cpr,
    cumulative_default_to_monthly_pd,
    annual_cpr_to_monthly_smm,
    monthly_curve_vectors,
)

# Risk
from student_loan_valuation.risk import (
    RiskTier,
    SchoolTier,
    RiskBreakdown,
    derive_fico_band,
    derive_risk_tier,
    get_school_tier,
    build_risk_breakdown,
)

# IRR and valuation
from student_loan_valuation.irr import calculate_irr
from student_loan_valuation.valuation import (
    ValuationStatus,
    CashflowRow,
    ValuationResult,
    value_loan,
)

# Ownership and earnings
from student_loan_valuation.ownership import (
    MARKET_USER,
    get_user_ownership_pct,
    get_market_ownership_pct,
    is_owned_by_user,
    ownership_pct_by_month,
)
from student_loan_valuation.earnings import (
    EarningsRow,
    RoiPoint,
    EarningsKpis,
    build_earnings_schedule,
    build_roi_series,
    compute_earnings_kpis,
)

# Portfolio
from student_loan_valuation.portfolio import (
    OwnershipMode,
    LoanPosition,
    PortfolioValuation,
    compute_portfolio_valuation,
)

__all__ = [
    "__version__",
    # Errors
    "LoanValuationError",
    "ValidationError",
    "DataUnavailable",
    # Dates
    "normalize_date",
    "month_start",
    "add_months",
    "month_key",
    "months_between",
    "us_to_iso",
    # Records
    "PrepaymentEvent",
    "DeferralEvent",
    "DefaultEvent",
    "event_from_dict",
    "OwnershipLot",
    "Loan",
    "Borrower",
    "RiskCurve",
    "SchoolRecord",
    "PlatformUser",
    # Configuration
    "Assumptions",
    "resolve_assumptions",
    "ValuationProfile",
    "ReferenceData",
    "ReferenceStore",
    # Fees
    "FeeConfig",
    "FeeWaiver",
    "resolve_fee_waiver",
    # Amortization ledger
    "AmortRow",
    "level_payment",
    "build_amort_schedule",
    "current_amort_row",
    "current_schedule_index",
    # Curves
    "cpr_to_smm",
    "smm_to_cpr",
    "cumulative_default_to_monthly_pd",
    "annual_cpr_to_monthly_smm",
    "monthly_curve_vectors",
    # Risk
    "RiskTier",
    "SchoolTier",
    "RiskBreakdown",
    "derive_fico_band",
    "derive_risk_tier",
    "get_school_tier",
    "build_risk_breakdown",
    # IRR and valuation
    "calculate_irr",
    "ValuationStatus",
    "CashflowRow",
    "ValuationResult",
    "value_loan",
    # Ownership and earnings
    "MARKET_USER",
    "get_user_ownership_pct",
    "get_market_ownership_pct",
    "is_owned_by_user",
    "ownership_pct_by_month",
    "EarningsRow",
    "RoiPoint",
    "EarningsKpis",
    "build_earnings_schedule",
    "build_roi_series",
    "compute_earnings_kpis",
    # Portfolio
    "OwnershipMode",
    "LoanPosition",
    "PortfolioValuation",
    "compute_portfolio_valuation",
]
