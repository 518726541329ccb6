# Requires Python 3.12+
# Uses native type hints: list[x], tuple[x, y], X | None (PEP 585, PEP 604)
from __future__ import annotations

import logging
import math
import dataclasses
from collections.abc import Mapping
from dataclasses import dataclass

from .dates import DateLike, us_to_iso

__version__ = "0.3.1"

logger = logging.getLogger(__name__)


# =============================================================================
# Coercion helpers (loader boundary)
# =============================================================================

def as_float(value: object, default: float = 0.0) -> float:
    """Coerce loosely typed numeric input; None, blanks and NaN give default."""
    if value is None or isinstance(value, bool):
        return default
    try:
        out = float(value)
    except (TypeError, ValueError):
        return default
    return out if math.isfinite(out) else default


def _first(data: Mapping, *keys: str, default: object = None) -> object:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


# =============================================================================
# Loan events (tagged variants)
# =============================================================================

@dataclass(frozen=True)
class PrepaymentEvent:
    """Additional principal paid in the calendar month of `date`."""
    date: DateLike
    amount: float


@dataclass(frozen=True)
class DeferralEvent:
    """Payments suspended for `months` months starting in the month of `start_date`."""
    start_date: DateLike
    months: int


@dataclass(frozen=True)
class DefaultEvent:
    """Terminal default in the month of `date`; `recovery_amount` is collected then."""
    date: DateLike
    recovery_amount: float = 0.0


LoanEvent = PrepaymentEvent | DeferralEvent | DefaultEvent


def event_from_dict(data: Mapping) -> LoanEvent | None:
    """
    Build a LoanEvent from a supplier record.

    Records look like {"type": "prepayment", "date": ..., "amount": ...},
    {"type": "deferral", "startDate": ..., "months": ...} or
    {"type": "default", "date": ..., "recoveryAmount": ...}.
    Unknown types are logged and skipped (returns None).
    """
    kind = str(data.get("type", "")).strip().lower()
    if kind == "prepayment":
        return PrepaymentEvent(
            date=us_to_iso(data.get("date")),
            amount=as_float(data.get("amount")),
        )
    if kind == "deferral":
        return DeferralEvent(
            start_date=us_to_iso(_first(data, "startDate", "start_date", "date")),
            months=max(0, int(as_float(data.get("months")))),
        )
    if kind == "default":
        return DefaultEvent(
            date=us_to_iso(data.get("date")),
            recovery_amount=as_float(_first(data, "recoveryAmount", "recovery_amount")),
        )
    logger.warning("Skipping loan event with unknown type %r", data.get("type"))
    return None


# =============================================================================
# Ownership lots
# =============================================================================

@dataclass(frozen=True)
class OwnershipLot:
    """
    One priced tranche of a loan held by `user`.

    pct is a fraction (0.25 = 25%). A lot is active from the calendar month
    of purchase_date onward; lots never expire.
    """
    user: str
    pct: float
    price_paid: float | None = None
    purchase_date: DateLike | None = None

    @classmethod
    def from_dict(cls, data: Mapping) -> OwnershipLot:
        pct = _first(data, "pct", "percentage")
        if pct is None and "percent" in data:
            pct = as_float(data["percent"]) / 100.0
        price = _first(data, "pricePaid", "price_paid")
        return cls(
            user=str(data.get("user") or "").strip(),
            pct=as_float(pct),
            price_paid=None if price is None else as_float(price),
            purchase_date=us_to_iso(_first(data, "purchaseDate", "purchase_date")),
        )


# =============================================================================
# Loan
# =============================================================================

@dataclass(frozen=True)
class Loan:
    """
    Static loan terms plus event history and ownership lots.

    Rates are decimals (0.08 for 8%). Date fields hold the value as supplied;
    parsing happens in the engine so that malformed input can be reported
    where it matters. Construction never rejects non-positive principal or
    term: valuation reports such loans as unvalued instead.
    """
    loan_id: str
    principal: float
    nominal_rate: float
    term_years: float
    grace_years: float = 0.0
    start_date: DateLike | None = None
    purchase_date: DateLike | None = None
    events: tuple[LoanEvent, ...] = ()
    ownership_lots: tuple[OwnershipLot, ...] = ()
    fee_waiver: str = "none"
    owner: str | None = None
    user: str | None = None
    borrower_id: str | None = None
    loan_name: str = ""
    school: str = ""
    purchase_price: float | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "events", tuple(self.events))
        object.__setattr__(self, "ownership_lots", tuple(self.ownership_lots))

    @property
    def label(self) -> str:
        return self.loan_name or self.loan_id

    @property
    def grace_months(self) -> int:
        return max(0, int(round(as_float(self.grace_years) * 12)))

    @property
    def repayment_months(self) -> int:
        return max(0, int(round(as_float(self.term_years) * 12)))

    @property
    def term_months(self) -> int:
        """Contractual months including grace."""
        return self.grace_months + self.repayment_months

    @classmethod
    def from_dict(cls, data: Mapping) -> Loan:
        """
        Build a Loan from a supplier record.

        Accepts the supplier's field names (loanId, nominalRate or rate,
        loanStartDate, termYears or termMonths, ownershipLots, ...). US-style
        dates (MM/DD/YYYY) are converted to ISO here.
        """
        loan_id = str(_first(data, "loanId", "loan_id", "id", default="unknown"))
        term_years = _first(data, "termYears", "term_years")
        if term_years is None and _first(data, "termMonths") is not None:
            term_years = math.ceil(as_float(data["termMonths"]) / 12)
        events = []
        for raw in data.get("events") or ():
            event = event_from_dict(raw)
            if event is not None:
                events.append(event)
        lots = tuple(OwnershipLot.from_dict(raw) for raw in data.get("ownershipLots") or ())
        price = _first(data, "purchasePrice", "purchase_price")
        return cls(
            loan_id=loan_id,
            principal=as_float(_first(data, "principal", "origPrincipalBal")),
            nominal_rate=as_float(_first(data, "nominalRate", "nominal_rate", "rate")),
            term_years=as_float(term_years),
            grace_years=as_float(_first(data, "graceYears", "grace_years")),
            start_date=us_to_iso(_first(data, "loanStartDate", "startDate", "start_date", "dateOnSystem")),
            purchase_date=us_to_iso(_first(data, "purchaseDate", "purchase_date")),
            events=tuple(events),
            ownership_lots=lots,
            fee_waiver=str(_first(data, "feeWaiver", "fee_waiver", default="none")),
            owner=_first(data, "owner"),
            user=_first(data, "user"),
            borrower_id=_first(data, "borrowerId", "borrower_id", default=f"BRW-{loan_id}"),
            loan_name=str(_first(data, "loanName", "loan_name", default="")),
            school=str(_first(data, "school", "originalSchoolName", default="")),
            purchase_price=None if price is None else as_float(price),
        )


# =============================================================================
# Borrower
# =============================================================================

_BORROWER_ALIASES = {
    "borrowerId": "borrower_id",
    "borrowerFico": "borrower_fico",
    "cosignerFico": "cosigner_fico",
    "yearInSchool": "year_in_school",
    "isGraduateStudent": "is_graduate_student",
    "degreeType": "degree_type",
}


@dataclass(frozen=True)
class Borrower:
    """Borrower attributes consumed by the risk classifier."""
    borrower_id: str | None = None
    borrower_fico: float | None = None
    cosigner_fico: float | None = None
    year_in_school: int | str | None = None
    is_graduate_student: bool = False
    school: str = ""
    opeid: str | None = None
    degree_type: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping) -> Borrower:
        return cls().with_overrides(data)

    def with_overrides(self, overrides: Mapping | None) -> Borrower:
        """
        Return a copy with per-loan overrides applied.

        Keys may use either the supplier's camelCase names or field names;
        unknown keys are ignored.
        """
        if not overrides:
            return self
        names = {f.name for f in dataclasses.fields(self)}
        changes = {}
        for key, value in overrides.items():
            name = _BORROWER_ALIASES.get(key, key)
            if name in names:
                changes[name] = value
        for key in ("borrower_fico", "cosigner_fico"):
            if key in changes and changes[key] is not None:
                changes[key] = as_float(changes[key]) or None
        if "is_graduate_student" in changes:
            changes["is_graduate_student"] = bool(changes["is_graduate_student"])
        return dataclasses.replace(self, **changes)


# =============================================================================
# Reference records
# =============================================================================

@dataclass(frozen=True)
class RiskCurve:
    """
    Default/prepayment assumptions for one risk tier.

    cumulative_default_pct: cumulative default %, one entry per loan year
    prepayment_cpr_pct:     annual CPR %, one entry per loan year
    gross_recovery_pct:     recovery % of defaulted balance (None: not set)
    recovery_lag_months:    months between default and recovery
    risk_premium_bps:       base premium over the risk-free rate
    """
    risk_premium_bps: float
    cumulative_default_pct: tuple[float, ...] = ()
    prepayment_cpr_pct: tuple[float, ...] = ()
    gross_recovery_pct: float | None = None
    recovery_lag_months: int = 0

    @classmethod
    def from_dict(cls, data: Mapping) -> RiskCurve:
        default_curve = data.get("defaultCurve") or {}
        prepay_curve = data.get("prepaymentCurve") or {}
        recovery = data.get("recovery") or {}
        gross = recovery.get("grossRecoveryPct")
        return cls(
            risk_premium_bps=as_float(data.get("riskPremiumBps")),
            cumulative_default_pct=tuple(as_float(v) for v in default_curve.get("cumulativeDefaultPct") or ()),
            prepayment_cpr_pct=tuple(as_float(v) for v in prepay_curve.get("valuesPct") or ()),
            gross_recovery_pct=None if gross is None else as_float(gross),
            recovery_lag_months=max(0, int(as_float(recovery.get("recoveryLagMonths")))),
        )


@dataclass(frozen=True)
class SchoolRecord:
    """Institution outcomes used for school tiering; None means not reported."""
    name: str = "Unknown"
    grad_rate: float | None = None
    median_earnings_10yr: float | None = None

    @classmethod
    def from_dict(cls, data: Mapping) -> SchoolRecord:
        grad = data.get("grad_rate")
        earnings = data.get("median_earnings_10yr")
        return cls(
            name=str(data.get("name") or "Unknown"),
            grad_rate=None if grad is None else as_float(grad),
            median_earnings_10yr=None if earnings is None else as_float(earnings),
        )


@dataclass(frozen=True)
class PlatformUser:
    """Platform participant; role gates the setup fee, fee_waiver is a waiver token."""
    user_id: str
    name: str = ""
    role: str = "investor"
    fee_waiver: str = "none"
    active: bool = True

    @classmethod
    def from_dict(cls, data: Mapping) -> PlatformUser:
        user_id = str(data.get("id") or data.get("user_id") or "").strip()
        return cls(
            user_id=user_id,
            name=str(data.get("name") or user_id),
            role=str(data.get("role") or "unknown"),
            fee_waiver=str(data.get("feeWaiver") or data.get("fee_waiver") or "none"),
            active=data.get("active") is not False,
        )

