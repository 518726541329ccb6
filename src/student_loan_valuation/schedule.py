# Requires Python 3.12+
# Uses native type hints: list[x], tuple[x, y], X | None (PEP 585, PEP 604)
from __future__ import annotations

import logging
import warnings
import datetime as dt
import dataclasses
from collections import defaultdict
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from .dates import add_months, is_missing_date, month_key, month_start, months_between, normalize_date
from .errors import ValidationError
from .fees import FeeConfig, lookup_user, resolve_fee_waiver, resolve_loan_user, setup_fee_applies
from .models import DefaultEvent, DeferralEvent, Loan, PlatformUser, PrepaymentEvent, as_float

__version__ = "0.3.1"

logger = logging.getLogger(__name__)

# Ending balances at or below this are treated as paid off.
PAID_OFF_THRESHOLD = 0.01


# =============================================================================
# Ledger row
# =============================================================================

@dataclass(frozen=True)
class AmortRow:
    """
    One calendar month of the canonical loan ledger.

    Amounts are unrounded dollars. `interest` is the interest accrued in a
    repayment or grace month; `accrued_interest` is the part of it (or, in a
    deferral month, the whole month's interest) added to the balance instead
    of being paid. Cumulative columns only advance on owned rows and count
    paid interest, not capitalized interest.
    """
    month_index: int
    loan_date: dt.date
    beginning_balance: float
    payment: float
    interest: float
    accrued_interest: float
    scheduled_principal: float
    prepayment_principal: float
    principal_paid: float
    balance: float
    fee_this_month: float
    is_owned: bool
    is_grace: bool = False
    is_deferred: bool = False
    deferral_index: int | None = None
    deferral_remaining: int | None = None
    defaulted: bool = False
    recovery: float = 0.0
    charge_off: float = 0.0
    is_terminal: bool = False
    is_paid_off: bool = False
    cum_principal: float = 0.0
    cum_interest: float = 0.0
    cum_payment: float = 0.0

    @property
    def interest_paid(self) -> float:
        return self.interest - self.accrued_interest if not self.is_deferred else 0.0


# =============================================================================
# Payment math
# =============================================================================

def level_payment(principal: float, annual_rate: float, months: int) -> float:
    """
    Level monthly payment that fully amortizes principal over months.

    Formula:
        PMT = P × r / (1 - (1 + r)^-n),   r = annual_rate / 12

    Args:
        principal: Amount to amortize ($)
        annual_rate: Annual rate as decimal (e.g., 0.08 for 8%)
        months: Number of level payments

    Returns:
        Monthly payment ($); 0.0 when months <= 0

    Raises:
        Warning: If annual_rate is zero (straight-line amortization returned)
    """
    if months <= 0:
        return 0.0
    r = annual_rate / 12.0
    if r == 0.0:
        warnings.warn("annual_rate is zero, returning straight-line amortization")
        return principal / months
    return principal * r / (1.0 - (1.0 + r) ** -months)


# =============================================================================
# Event indexing
# =============================================================================

def _event_month(value: object, what: str, loan: Loan) -> str | None:
    if is_missing_date(value):
        return None
    try:
        return month_key(value)
    except ValidationError:
        logger.warning("Ignoring %s event with bad date %r on loan %s", what, value, loan.label)
        return None


def _index_events(loan: Loan) -> tuple[dict[str, list[float]], dict[str, int], DefaultEvent | None, str | None]:
    prepayments: dict[str, list[float]] = defaultdict(list)
    deferrals: dict[str, int] = defaultdict(int)
    default_event = None
    default_key = None
    for event in loan.events:
        if isinstance(event, PrepaymentEvent):
            key = _event_month(event.date, "prepayment", loan)
            if key is not None:
                prepayments[key].append(as_float(event.amount))
        elif isinstance(event, DeferralEvent):
            months = int(as_float(event.months))
            key = _event_month(event.start_date, "deferral", loan)
            if key is not None and months > 0:
                deferrals[key] += months
        elif isinstance(event, DefaultEvent) and default_event is None:
            key = _event_month(event.date, "default", loan)
            if key is not None:
                default_event, default_key = event, key
    return prepayments, deferrals, default_event, default_key


def _apply_prepayments(balance: float, amounts: Sequence[float]) -> tuple[float, float]:
    applied_total = 0.0
    for amount in amounts:
        if amount > 0:
            applied = min(balance, amount)
            applied_total += applied
            balance -= applied
    return balance, applied_total


# =============================================================================
# Purchase month resolution
# =============================================================================

def resolve_purchase_month(loan: Loan, start: dt.date) -> dt.date:
    """
    First owned calendar month of a loan.

    Priority: loan.purchase_date, then the earliest ownership-lot purchase
    date, then the loan start month. A missing date falls through silently;
    a present-but-unparseable one is logged and then falls through.
    """
    if not is_missing_date(loan.purchase_date):
        try:
            return month_start(loan.purchase_date)
        except ValidationError:
            logger.warning(
                "Invalid purchase_date %r for loan %s, falling back to lots/start date",
                loan.purchase_date, loan.label,
            )
    lot_months = []
    for lot in loan.ownership_lots:
        if is_missing_date(lot.purchase_date):
            continue
        try:
            lot_months.append(month_start(lot.purchase_date))
        except ValidationError:
            logger.warning("Invalid lot purchase_date %r on loan %s", lot.purchase_date, loan.label)
    if lot_months:
        return min(lot_months)
    return month_start(start)


# =============================================================================
# Schedule builder
# =============================================================================

def build_amort_schedule(
        loan: Loan,
        fees: FeeConfig | None = None,
        users: Mapping[str, PlatformUser] | None = None,
) -> list[AmortRow]:
    """
    Build the canonical month-by-month ledger of a loan.

    The ledger runs from the loan's start month for at most grace + term
    months. The level payment is computed once from the contractual terms;
    events change the balance but never re-amortize it.

    Month processing order:
        1. Default month: the recovery (capped at balance) is collected, the
           rest is charged off, the balance goes to zero and the ledger ends.
        2. A deferral starting this month adds its length to the remaining
           deferral counter.
        3. Deferral month: interest is capitalized, prepayments are applied,
           no payment is due.
        4. Otherwise grace months capitalize interest and repayment months
           pay the level payment (principal capped at the balance, residual
           balances under one cent cleared).
        5. Prepayments for the month reduce the balance, never below zero.
        6. The ledger ends the month the balance reaches zero.

    Fees accrue only on owned rows (loan_date on or after the purchase
    month): the setup fee in the first owned month when the loan's user
    pays it, and the servicing fee (bps of beginning balance) every owned
    month unless waived.

    Args:
        loan: Loan terms, events and ownership lots
        fees: Platform fee schedule (default FeeConfig())
        users: Platform users keyed by id, for role and waiver lookup

    Returns:
        Ordered list of AmortRow, terminal-closed

    Raises:
        ValidationError: If loan.start_date is missing or malformed
    """
    try:
        start = month_start(loan.start_date)
    except ValidationError as e:
        raise ValidationError(f"Invalid start_date for loan {loan.label!r}: {e}") from e

    fees = fees or FeeConfig()
    purchase_month = resolve_purchase_month(loan, start)
    user = lookup_user(resolve_loan_user(loan), users)
    waiver = resolve_fee_waiver(loan.fee_waiver, user.fee_waiver)
    charge_setup = setup_fee_applies(user, waiver, fees)
    servicing_rate = 0.0 if waiver.waives_servicing else fees.monthly_servicing_rate

    principal = as_float(loan.principal)
    monthly_rate = as_float(loan.nominal_rate) / 12.0
    grace_months = loan.grace_months
    total_months = loan.term_months
    payment = level_payment(principal, as_float(loan.nominal_rate), loan.repayment_months)

    prepayments, deferrals, default_event, default_key = _index_events(loan)

    rows: list[AmortRow] = []
    balance = principal
    deferral_remaining = 0
    deferral_total = 0
    loan_date = start

    for i in range(total_months):
        key = month_key(loan_date)
        is_owned = loan_date >= purchase_month
        is_grace = months_between(start, loan_date) < grace_months
        beginning = balance

        fee = 0.0
        if is_owned:
            if charge_setup and loan_date == purchase_month:
                fee += fees.setup_fee
            fee += beginning * servicing_rate

        # Default (terminal)
        if key == default_key:
            recovery = min(balance, max(0.0, as_float(default_event.recovery_amount)))
            rows.append(AmortRow(
                month_index=i + 1,
                loan_date=loan_date,
                beginning_balance=beginning,
                payment=recovery,
                interest=0.0,
                accrued_interest=0.0,
                scheduled_principal=0.0,
                prepayment_principal=0.0,
                principal_paid=recovery,
                balance=0.0,
                fee_this_month=fee,
                is_owned=is_owned,
                is_grace=is_grace,
                defaulted=True,
                recovery=recovery,
                charge_off=balance - recovery,
                is_terminal=True,
            ))
            break

        if deferrals.get(key):
            if deferral_remaining == 0:
                deferral_total = 0
            deferral_remaining += deferrals[key]
            deferral_total += deferrals[key]

        # Deferral month
        if deferral_remaining > 0:
            accrued = balance * monthly_rate
            balance += accrued
            balance, prepaid = _apply_prepayments(balance, prepayments.get(key, ()))
            closed = balance <= 0.0
            rows.append(AmortRow(
                month_index=i + 1,
                loan_date=loan_date,
                beginning_balance=beginning,
                payment=0.0,
                interest=0.0,
                accrued_interest=accrued,
                scheduled_principal=0.0,
                prepayment_principal=prepaid,
                principal_paid=prepaid,
                balance=max(0.0, balance),
                fee_this_month=fee,
                is_owned=is_owned,
                is_grace=is_grace,
                is_deferred=True,
                deferral_index=deferral_total - deferral_remaining,
                deferral_remaining=deferral_remaining,
                is_terminal=closed,
                is_paid_off=closed,
            ))
            deferral_remaining -= 1
            loan_date = add_months(loan_date, 1)
            if closed:
                break
            continue

        # Normal month
        interest = balance * monthly_rate
        if is_grace:
            accrued = interest
            scheduled = 0.0
            paid = 0.0
            balance += interest
        else:
            accrued = 0.0
            scheduled = max(0.0, min(payment - interest, balance))
            paid = scheduled + interest
            balance = max(0.0, balance - scheduled)
            if balance <= PAID_OFF_THRESHOLD:
                balance = 0.0

        balance, prepaid = _apply_prepayments(balance, prepayments.get(key, ()))
        closed = balance <= 0.0
        rows.append(AmortRow(
            month_index=i + 1,
            loan_date=loan_date,
            beginning_balance=beginning,
            payment=paid,
            interest=interest,
            accrued_interest=accrued,
            scheduled_principal=scheduled,
            prepayment_principal=prepaid,
            principal_paid=scheduled + prepaid,
            balance=balance,
            fee_this_month=fee,
            is_owned=is_owned,
            is_grace=is_grace,
            is_terminal=closed,
            is_paid_off=closed,
        ))
        loan_date = add_months(loan_date, 1)
        if closed:
            break

    return _accumulate(rows)


def _accumulate(rows: list[AmortRow]) -> list[AmortRow]:
    cum_principal = cum_interest = cum_payment = 0.0
    out = []
    for row in rows:
        if row.is_owned:
            cum_principal += row.principal_paid
            cum_interest += row.interest_paid
            cum_payment += row.payment
        out.append(dataclasses.replace(
            row,
            cum_principal=cum_principal,
            cum_interest=cum_interest,
            cum_payment=cum_payment,
        ))
    return out


# =============================================================================
# Ledger queries
# =============================================================================

def current_amort_row(schedule: Sequence[AmortRow], today: object) -> AmortRow | None:
    """Most recent ledger row dated on or before today (None if the loan has not started)."""
    as_of = normalize_date(today)
    current = None
    for row in schedule:
        if row.loan_date > as_of:
            break
        current = row
    return current


def current_schedule_index(loan: Loan, schedule: Sequence[AmortRow], as_of: object) -> int:
    """
    1-based count of owned months up to as_of, clamped to [1, len(schedule)].

    Returns 1 for an empty schedule.
    """
    if not schedule:
        return 1
    purchase_month = resolve_purchase_month(loan, schedule[0].loan_date)
    months = months_between(purchase_month, as_of) + 1
    return min(max(1, months), len(schedule))
