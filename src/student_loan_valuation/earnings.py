# Requires Python 3.12+
# Uses native type hints: list[x], tuple[x, y], X | None (PEP 585, PEP 604)
from __future__ import annotations

import datetime as dt
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from .dates import normalize_date
from .fees import FeeConfig, lookup_user, resolve_fee_waiver, setup_fee_applies
from .models import Loan, PlatformUser, as_float
from .ownership import user_lots, lot_month, ownership_pct_by_month, user_invested_capital
from .schedule import AmortRow

__version__ = "0.3.1"

# Mark applied to the outstanding balance when valuing an unrealized position.
UNREALIZED_MARK = 0.95


# =============================================================================
# Earnings schedule
# =============================================================================

@dataclass(frozen=True)
class EarningsRow:
    """
    One owned month of a user's earnings on a loan.

    Amounts are already scaled by ownership_pct. principal and interest are
    cash actually received, so capitalized interest earns nothing.
    """
    month_index: int
    loan_date: dt.date
    ownership_pct: float
    is_deferred: bool
    balance: float
    principal: float
    interest: float
    setup_fee: float
    servicing_fee: float
    cum_principal: float
    cum_interest: float
    cum_fees: float

    @property
    def fees(self) -> float:
        return self.setup_fee + self.servicing_fee

    @property
    def monthly_net(self) -> float:
        return self.principal + self.interest - self.fees

    @property
    def net_earnings(self) -> float:
        return self.cum_principal + self.cum_interest - self.cum_fees


def build_earnings_schedule(
        schedule: Sequence[AmortRow],
        loan: Loan,
        user: str,
        fees: FeeConfig | None = None,
        users: Mapping[str, PlatformUser] | None = None,
) -> list[EarningsRow]:
    """
    Allocate a loan's ledger to one user month by month.

    Ownership is time-varying: each lot counts from its purchase month on.
    The setup fee is charged per lot in that lot's purchase month, scaled by
    the lot's pct. The servicing fee (bps of beginning balance, scaled by
    ownership) is only charged in months with a payment. Rows where the user
    owns nothing are dropped.

    Args:
        schedule: Ledger from build_amort_schedule
        loan: The loan the ledger belongs to
        user: User whose share is computed
        fees: Platform fee schedule (default FeeConfig())
        users: Platform users, for role and waiver lookup

    Returns:
        Owned EarningsRow list in calendar order
    """
    if not schedule:
        return []
    fees = fees or FeeConfig()
    platform_user = lookup_user(user, users)
    waiver = resolve_fee_waiver(loan.fee_waiver, platform_user.fee_waiver)
    charge_setup = setup_fee_applies(platform_user, waiver, fees)

    pcts = ownership_pct_by_month(loan, user, [row.loan_date for row in schedule])
    lot_starts = [(lot_month(lot, loan), as_float(lot.pct)) for lot in user_lots(loan, user)]

    rows = []
    cum_principal = cum_interest = cum_fees = 0.0
    for row, pct in zip(schedule, pcts):
        pct = float(pct)
        if pct <= 0:
            continue

        setup = 0.0
        if charge_setup:
            setup = sum(fees.setup_fee * lot_pct for start, lot_pct in lot_starts if start == row.loan_date)

        servicing = 0.0
        if row.payment > 0 and row.beginning_balance > 0 and not waiver.waives_servicing:
            servicing = row.beginning_balance * fees.monthly_servicing_rate * pct

        principal = row.principal_paid * pct
        interest = row.interest_paid * pct if row.payment > 0 else 0.0

        cum_principal += principal
        cum_interest += interest
        cum_fees += setup + servicing
        rows.append(EarningsRow(
            month_index=row.month_index,
            loan_date=row.loan_date,
            ownership_pct=pct,
            is_deferred=row.is_deferred,
            balance=row.balance,
            principal=principal,
            interest=interest,
            setup_fee=setup,
            servicing_fee=servicing,
            cum_principal=cum_principal,
            cum_interest=cum_interest,
            cum_fees=cum_fees,
        ))
    return rows


def current_earnings_row(rows: Sequence[EarningsRow], today: object) -> EarningsRow | None:
    """Row for today's calendar month, else the last row before it, else the last row."""
    if not rows:
        return None
    as_of = normalize_date(today)
    before = None
    for row in rows:
        if row.loan_date.year == as_of.year and row.loan_date.month == as_of.month:
            return row
        if row.loan_date <= as_of:
            before = row
    return before if before is not None else rows[-1]


# =============================================================================
# ROI
# =============================================================================

@dataclass(frozen=True)
class RoiPoint:
    loan_date: dt.date
    invested: float
    realized: float
    unrealized: float

    @property
    def value(self) -> float:
        return self.realized + self.unrealized

    @property
    def roi(self) -> float:
        if self.invested <= 0:
            return 0.0
        return (self.value - self.invested) / self.invested


def build_roi_series(
        earnings: Sequence[EarningsRow],
        loan: Loan,
        user: str,
        unrealized_mark: float = UNREALIZED_MARK,
) -> list[RoiPoint]:
    """
    Month-by-month return on invested capital for one user.

    realized   = cumulative principal + interest - fees received
    unrealized = outstanding balance × mark × ownership
    roi        = (realized + unrealized - invested) / invested

    invested only counts lots purchased by that month.
    """
    return [
        RoiPoint(
            loan_date=row.loan_date,
            invested=user_invested_capital(loan, user, as_of=row.loan_date),
            realized=row.net_earnings,
            unrealized=row.balance * unrealized_mark * row.ownership_pct,
        )
        for row in earnings
    ]


@dataclass(frozen=True)
class EarningsKpis:
    invested: float
    net_to_date: float
    net_projected: float
    fees_to_date: float
    fees_projected: float
    capital_recovered: float

    @property
    def capital_recovery_pct(self) -> float:
        return self.capital_recovered / self.invested if self.invested > 0 else 0.0


def compute_earnings_kpis(
        earnings: Sequence[EarningsRow],
        loan: Loan,
        user: str,
        today: object,
) -> EarningsKpis:
    """
    Earnings KPIs for one user's position.

    "To date" sums cover rows dated on or before today; "projected" totals
    cover the whole ledger. Capital recovered is principal + interest - fees
    received to date.
    """
    as_of = normalize_date(today)
    to_date = [row for row in earnings if row.loan_date <= as_of]
    net_to_date = sum(row.monthly_net for row in to_date)
    last = earnings[-1] if earnings else None
    return EarningsKpis(
        invested=user_invested_capital(loan, user),
        net_to_date=net_to_date,
        net_projected=last.net_earnings if last else 0.0,
        fees_to_date=sum(row.fees for row in to_date),
        fees_projected=last.cum_fees if last else 0.0,
        capital_recovered=net_to_date,
    )


def combine_earnings_kpis(kpis: Sequence[EarningsKpis]) -> EarningsKpis:
    """Portfolio totals of several positions."""
    return EarningsKpis(
        invested=sum(k.invested for k in kpis),
        net_to_date=sum(k.net_to_date for k in kpis),
        net_projected=sum(k.net_projected for k in kpis),
        fees_to_date=sum(k.fees_to_date for k in kpis),
        fees_projected=sum(k.fees_projected for k in kpis),
        capital_recovered=sum(k.capital_recovered for k in kpis),
    )
