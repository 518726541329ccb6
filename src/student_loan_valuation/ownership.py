# Requires Python 3.12+
# Uses native type hints: list[x], tuple[x, y], X | None (PEP 585, PEP 604)
from __future__ import annotations

import logging
import datetime as dt
from collections.abc import Sequence

import numpy as np

from .dates import is_missing_date, month_start
from .errors import ValidationError
from .models import Loan, OwnershipLot, as_float
from .schedule import resolve_purchase_month

__version__ = "0.3.1"

logger = logging.getLogger(__name__)

MARKET_USER = "Market"


def normalize_user(user: object) -> str:
    return str(user or "").strip().lower()


def is_market_user(user: object) -> bool:
    return normalize_user(user) == normalize_user(MARKET_USER)


def lot_month(lot: OwnershipLot, loan: Loan | None = None) -> dt.date | None:
    """
    Activation month of a lot; None when its purchase date is malformed.

    An undated lot takes the loan's first owned month (resolve_purchase_month)
    when `loan` is given, and None otherwise.
    """
    if is_missing_date(lot.purchase_date):
        if loan is None:
            return None
        try:
            return resolve_purchase_month(loan, loan.start_date)
        except ValidationError:
            return None
    try:
        return month_start(lot.purchase_date)
    except ValidationError:
        logger.warning("Ignoring bad purchase_date %r on lot of %s", lot.purchase_date, lot.user)
        return None


def user_lots(loan: Loan, user: object) -> list[OwnershipLot]:
    key = normalize_user(user)
    return [lot for lot in loan.ownership_lots if normalize_user(lot.user) == key]


def _active(lot: OwnershipLot, as_of_month: dt.date | None, loan: Loan) -> bool:
    if as_of_month is None:
        return True
    start = lot_month(lot, loan)
    return start is not None and start <= as_of_month


# =============================================================================
# Ownership queries
# =============================================================================

def get_user_ownership_pct(loan: Loan, user: object, as_of: object = None) -> float:
    """
    Fraction of a loan held by `user`.

    Without as_of this is the current state: the sum of all the user's lots.
    With as_of only lots whose purchase month is on or before as_of's month
    count, which gives the time-varying ownership used for earnings.
    User names match case- and whitespace-insensitively.
    """
    as_of_month = month_start(as_of) if as_of is not None else None
    return sum(as_float(lot.pct) for lot in user_lots(loan, user) if _active(lot, as_of_month, loan))


def get_market_ownership_pct(loan: Loan, as_of: object = None) -> float:
    """
    Fraction held by the Market party.

    Explicit Market lots are used when present; otherwise Market holds
    whatever the other parties' lots leave, max(0, 1 - sum).
    """
    as_of_month = month_start(as_of) if as_of is not None else None
    explicit = [lot for lot in loan.ownership_lots if is_market_user(lot.user)]
    if explicit:
        return sum(as_float(lot.pct) for lot in explicit if _active(lot, as_of_month, loan))
    held = sum(
        as_float(lot.pct) for lot in loan.ownership_lots
        if not is_market_user(lot.user) and _active(lot, as_of_month, loan)
    )
    return max(0.0, 1.0 - held)


def get_party_ownership_pct(loan: Loan, user: object, as_of: object = None) -> float:
    """get_user_ownership_pct, with the Market party's implicit remainder."""
    if is_market_user(user):
        return get_market_ownership_pct(loan, as_of)
    return get_user_ownership_pct(loan, user, as_of)


def is_owned_by_user(loan: Loan, user: object) -> bool:
    return get_user_ownership_pct(loan, user) > 0


def ownership_pct_by_month(loan: Loan, user: object, months: Sequence[object]) -> np.ndarray:
    """
    Time-varying ownership of `user` for each month in `months`.

    Equivalent to [get_user_ownership_pct(loan, user, m) for m in months],
    computed as one comparison matrix (months × lots).
    """
    month_ords = np.array([month_start(m).toordinal() for m in months], dtype=np.int64)
    lots = [(lot_month(lot, loan), as_float(lot.pct)) for lot in user_lots(loan, user)]
    lots = [(start.toordinal(), pct) for start, pct in lots if start is not None]
    if not lots or month_ords.size == 0:
        return np.zeros(month_ords.size)
    starts = np.array([s for s, _ in lots], dtype=np.int64)
    pcts = np.array([p for _, p in lots], dtype=float)
    active = month_ords[:, None] >= starts[None, :]
    return active.astype(float) @ pcts


def user_invested_capital(loan: Loan, user: object, as_of: object = None) -> float:
    """
    Capital the user paid for their lots.

    Lots without a recorded price are valued at the loan's purchase price
    (or principal) times the lot percentage.
    """
    as_of_month = month_start(as_of) if as_of is not None else None
    fallback = as_float(loan.purchase_price) if loan.purchase_price is not None else as_float(loan.principal)
    total = 0.0
    for lot in user_lots(loan, user):
        if not _active(lot, as_of_month, loan):
            continue
        if lot.price_paid is not None:
            total += as_float(lot.price_paid)
        else:
            total += fallback * as_float(lot.pct)
    return total
