# Requires Python 3.12+
# Uses native type hints: list[x], tuple[x, y], X | None (PEP 585, PEP 604)
from __future__ import annotations

import logging
import math
import datetime as dt
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum

import numpy as np

from .config import Assumptions, ReferenceData, ValuationProfile
from .curves import monthly_curve_vectors
from .dates import add_months, month_start, normalize_date
from .irr import calculate_irr
from .models import Borrower, Loan, as_float
from .risk import RiskBreakdown, RiskTier, SchoolTier, build_risk_breakdown, derive_risk_tier
from .schedule import PAID_OFF_THRESHOLD, AmortRow, build_amort_schedule, current_amort_row, level_payment

__version__ = "0.3.1"

logger = logging.getLogger(__name__)

# Share of the prepayment multiplier applied before the loan is seasoned.
UNSEASONED_PREPAY_FACTOR = 0.1

# Recovery % used when neither assumptions nor the curve supply one.
FALLBACK_RECOVERY_PCT = 20.0


# =============================================================================
# Result containers
# =============================================================================

class ValuationStatus(str, Enum):
    VALUED = "valued"
    CLOSED = "closed"
    UNVALUED = "unvalued"


@dataclass(frozen=True)
class CashflowRow:
    """One projected month. `month` counts from the valuation date (1 = next month)."""
    month: int
    loan_age: int
    date: dt.date
    beginning_balance: float
    interest: float
    scheduled_principal: float
    prepayment: float
    default_amount: float
    recovery: float
    ending_balance: float
    cash_flow: float
    discount_factor: float
    discounted_cash_flow: float
    cumulative_loss: float
    is_grace: bool


@dataclass(frozen=True)
class ValuationResult:
    """
    Risk-adjusted DCF valuation of the remaining cash flows of one loan.

    npv, expected_loss_amount:  dollars
    npv_ratio:                  npv / current_balance - 1
    expected_loss:              (defaults - recoveries) / current_balance, floored at 0
    wal:                        years
    irr:                        annual % (0 when the solver finds no root)
    discount_rate:              annual decimal (None when unvalued)

    status is VALUED for a full projection, CLOSED for a loan with nothing
    left to collect, UNVALUED when loan basics are invalid (npv is NaN).
    """
    loan_id: str
    status: ValuationStatus
    risk_tier: RiskTier
    discount_rate: float | None
    npv: float
    npv_ratio: float | None
    expected_loss: float
    expected_loss_amount: float
    wal: float
    irr: float
    current_balance: float
    remaining_months: int
    total_defaults: float = 0.0
    total_recoveries: float = 0.0
    school_tier: SchoolTier | None = None
    risk_breakdown: RiskBreakdown | None = None
    cashflows: tuple[CashflowRow, ...] = ()
    assumptions: Assumptions | None = None

    @property
    def is_valued(self) -> bool:
        return self.status is ValuationStatus.VALUED


def _finite_or(value: float, fallback: float = 0.0) -> float:
    value = float(value)
    return value if math.isfinite(value) else fallback


def _unvalued(loan: Loan) -> ValuationResult:
    return ValuationResult(
        loan_id=loan.loan_id,
        status=ValuationStatus.UNVALUED,
        risk_tier=RiskTier.UNKNOWN,
        discount_rate=None,
        npv=float("nan"),
        npv_ratio=None,
        expected_loss=float("nan"),
        expected_loss_amount=0.0,
        wal=float("nan"),
        irr=float("nan"),
        current_balance=0.0,
        remaining_months=0,
    )


def _closed(
        loan: Loan,
        borrower: Borrower,
        assumptions: Assumptions,
        risk_free_rate: float,
        current: AmortRow | None,
        balance: float,
) -> ValuationResult:
    expected_loss = 0.0
    loss_amount = 0.0
    if current is not None and current.defaulted:
        loss_amount = current.charge_off
        expected_loss = _finite_or(current.charge_off / as_float(loan.principal))
    return ValuationResult(
        loan_id=loan.loan_id,
        status=ValuationStatus.CLOSED,
        risk_tier=derive_risk_tier(borrower, assumptions),
        discount_rate=risk_free_rate,
        npv=0.0,
        npv_ratio=0.0,
        expected_loss=expected_loss,
        expected_loss_amount=loss_amount,
        wal=0.0,
        irr=0.0,
        current_balance=balance,
        remaining_months=0,
        assumptions=assumptions,
    )


# =============================================================================
# Valuation
# =============================================================================

def value_loan(
        loan: Loan,
        borrower: Borrower | None,
        reference: ReferenceData,
        profile: ValuationProfile | None = None,
        risk_free_rate: float | None = None,
        today: object = None,
        schedule: Sequence[AmortRow] | None = None,
) -> ValuationResult:
    """
    Value the remaining cash flows of a loan from its position on `today`.

    Steps:
        1. Invalid basics (principal, rate or term not positive) give an
           UNVALUED result.
        2. The current balance and remaining months come from the latest
           ledger row dated on or before today.
        3. No balance or no remaining months gives a CLOSED result. A loan
           that defaulted reports its charge-off as expected loss.
        4. Risk tier, curve and risk premium (capped at 500 bps) set the
           discount rate: risk-free + premium, compounded monthly at rate/12.
        5. A month-by-month projection applies interest, remaining grace
           (interest only), the level payment re-derived for the current
           balance, seasoned prepayments, defaults and lagged recoveries.
        6. NPV, NPV ratio, expected loss, WAL and IRR are derived from it.

    Curves and prepayment seasoning run on projection months counted from
    the valuation month. For the first prepay_seasoning_years of the
    projection the SMM is scaled by 10% of the prepayment multiplier, after
    that by the full multiplier. Recoveries that would arrive after the projection
    horizon are still counted, discounted at their recovery month.

    Args:
        loan: Loan to value
        borrower: Borrower attributes (None: no credit information)
        reference: Reference snapshot; must have curves loaded
        profile: Valuation profile (default: system defaults)
        risk_free_rate: Annual decimal; overrides profile base_risk_free_rate
        today: Valuation date (default: date.today())
        schedule: Ledger from build_amort_schedule, built here when omitted

    Returns:
        ValuationResult

    Raises:
        ValidationError: If the loan's start date is missing or malformed
        DataUnavailable: If risk curves are not loaded or lack the tier
    """
    profile = profile or ValuationProfile()
    assumptions = profile.assumptions
    borrower = borrower or Borrower()

    principal = as_float(loan.principal)
    rate = as_float(loan.nominal_rate)
    term_months = loan.term_months
    if principal <= 0 or rate <= 0 or term_months <= 0:
        logger.warning(
            "Invalid loan basics for %s: principal=%s, rate=%s, term_months=%s",
            loan.label, loan.principal, loan.nominal_rate, term_months,
        )
        return _unvalued(loan)

    as_of = normalize_date(today) if today is not None else dt.date.today()
    if risk_free_rate is None:
        risk_free_rate = assumptions.base_risk_free_rate / 100.0

    if schedule is None:
        schedule = build_amort_schedule(loan, fees=reference.fees, users=reference.users)
    current = current_amort_row(schedule, as_of)

    if current is None:
        balance = principal
        elapsed = 0
        remaining = term_months
        anchor = add_months(month_start(loan.start_date), -1)
    else:
        balance = max(0.0, _finite_or(current.balance))
        elapsed = current.month_index
        remaining = len(schedule) - current.month_index
        anchor = current.loan_date

    if balance <= 0 or remaining <= 0:
        if balance > 0:
            logger.warning(
                "Ledger for %s ends with balance %.2f outstanding; reporting as closed",
                loan.label, balance,
            )
        return _closed(loan, borrower, assumptions, risk_free_rate, current, balance)

    # Risk and discount rate
    risk_tier = derive_risk_tier(borrower, assumptions)
    curve = reference.curve_for(risk_tier)
    breakdown = build_risk_breakdown(
        borrower, risk_tier, curve, assumptions,
        reference.schools if reference.schools_loaded else None,
    )
    discount_rate = risk_free_rate + breakdown.capped_bps / 10000.0
    monthly_discount = discount_rate / 12.0

    recovery_pct = assumptions.recovery_rate.get(risk_tier.value)
    if recovery_pct is None:
        recovery_pct = curve.gross_recovery_pct if curve.gross_recovery_pct is not None else FALLBACK_RECOVERY_PCT
    recovery_pct /= 100.0
    recovery_lag = curve.recovery_lag_months
    multiplier = assumptions.prepayment_multiplier
    seasoning_months = assumptions.prepay_seasoning_years * 12.0

    pd_vec, smm_vec = monthly_curve_vectors(curve, remaining)

    # Payment re-derived for the current balance over the months left after grace
    remaining_grace = min(remaining, max(0, loan.grace_months - elapsed))
    payment = level_payment(balance, rate, max(remaining - remaining_grace, 1))
    monthly_rate = rate / 12.0

    months = np.arange(1, remaining + 1)
    cash = np.zeros(remaining)
    recovery_queue = np.zeros(remaining + 1)
    late_recoveries: dict[int, float] = {}
    components = []

    total_defaults = 0.0
    total_recoveries = 0.0
    cumulative_loss = 0.0
    current_balance = balance

    for m in range(1, remaining + 1):
        recovery = recovery_queue[m]
        beginning = balance
        if balance > 0:
            interest = balance * monthly_rate
            in_grace = m <= remaining_grace
            due = interest if in_grace else min(payment, balance + interest)
            scheduled = max(0.0, due - interest)
            after_scheduled = balance - scheduled

            effective_multiplier = multiplier if m >= seasoning_months else multiplier * UNSEASONED_PREPAY_FACTOR
            prepay = after_scheduled * smm_vec[m - 1] * effective_multiplier
            remaining_balance = after_scheduled - prepay

            default_amount = remaining_balance * pd_vec[m - 1]
            remaining_balance -= default_amount
            if remaining_balance <= PAID_OFF_THRESHOLD:
                remaining_balance = 0.0

            recovered = default_amount * recovery_pct
            recovery_month = m + recovery_lag
            if recovery_month <= remaining:
                recovery_queue[recovery_month] += recovered
                if recovery_month == m:
                    recovery = recovery_queue[m]
            else:
                late_recoveries[recovery_month] = late_recoveries.get(recovery_month, 0.0) + recovered
            balance = remaining_balance
        else:
            interest = scheduled = prepay = default_amount = 0.0
            in_grace = False

        cash[m - 1] = interest + scheduled + prepay + recovery
        total_defaults += default_amount
        total_recoveries += recovery
        cumulative_loss += default_amount - recovery
        components.append((beginning, interest, scheduled, prepay, default_amount, recovery,
                           balance, cumulative_loss, in_grace))

    # Discounting
    discount = np.power(1.0 + monthly_discount, -months.astype(float))
    discounted = cash * discount
    npv = float(np.sum(discounted))
    for recovery_month, amount in late_recoveries.items():
        npv += amount / (1.0 + monthly_discount) ** recovery_month
        total_recoveries += amount

    total_discounted = float(np.sum(discounted))
    wal = float(np.sum(discounted * months)) / total_discounted / 12.0 if total_discounted > 0 else 0.0
    npv_ratio = npv / current_balance - 1.0
    expected_loss = max(0.0, (total_defaults - total_recoveries) / current_balance)

    irr_flows = cash
    if late_recoveries:
        irr_flows = np.zeros(max(late_recoveries))
        irr_flows[:remaining] = cash
        for recovery_month, amount in late_recoveries.items():
            irr_flows[recovery_month - 1] += amount
    irr = calculate_irr(irr_flows, current_balance)

    rows = tuple(
        CashflowRow(
            month=m,
            loan_age=elapsed + m,
            date=add_months(anchor, m),
            beginning_balance=c[0],
            interest=c[1],
            scheduled_principal=c[2],
            prepayment=c[3],
            default_amount=c[4],
            recovery=c[5],
            ending_balance=c[6],
            cash_flow=float(cash[m - 1]),
            discount_factor=float(discount[m - 1]),
            discounted_cash_flow=float(discounted[m - 1]),
            cumulative_loss=c[7],
            is_grace=c[8],
        )
        for m, c in enumerate(components, start=1)
    )

    return ValuationResult(
        loan_id=loan.loan_id,
        status=ValuationStatus.VALUED,
        risk_tier=risk_tier,
        discount_rate=discount_rate,
        npv=_finite_or(npv),
        npv_ratio=_finite_or(npv_ratio),
        expected_loss=_finite_or(expected_loss),
        expected_loss_amount=_finite_or(max(0.0, total_defaults - total_recoveries)),
        wal=_finite_or(wal),
        irr=_finite_or(irr),
        current_balance=current_balance,
        remaining_months=remaining,
        total_defaults=_finite_or(total_defaults),
        total_recoveries=_finite_or(total_recoveries),
        school_tier=breakdown.school_tier,
        risk_breakdown=breakdown,
        cashflows=rows,
        assumptions=assumptions,
    )
