# Requires Python 3.12+
# Uses native type hints: list[x], tuple[x, y], X | None (PEP 585, PEP 604)
from __future__ import annotations

import logging
import math
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum

from .config import ReferenceData, ReferenceStore, ValuationProfile
from .errors import ValidationError
from .models import Loan, as_float
from .ownership import get_market_ownership_pct, get_user_ownership_pct
from .valuation import ValuationResult, value_loan

__version__ = "0.3.1"

logger = logging.getLogger(__name__)


class OwnershipMode(str, Enum):
    PORTFOLIO = "portfolio"
    MARKET = "market"
    ALL = "all"


@dataclass(frozen=True)
class LoanPosition:
    """
    One loan's contribution to a portfolio.

    principal, npv and expected_loss_amount are prorated by ownership_pct.
    valuation is None when valuing the loan raised; error holds the message.
    """
    loan_id: str
    ownership_pct: float
    user_pct: float
    market_pct: float
    principal: float
    npv: float
    expected_loss_amount: float
    valuation: ValuationResult | None
    error: str | None = None

    @property
    def counts_in_averages(self) -> bool:
        return (
            self.valuation is not None
            and math.isfinite(self.valuation.npv)
            and self.principal > 0
        )


@dataclass(frozen=True)
class PortfolioValuation:
    """
    Portfolio totals for one user and ownership mode.

    total_principal and the averages (expected loss, WAL, IRR) cover loans
    that produced a finite valuation; averages are weighted by prorated
    principal.
    """
    user: str
    mode: OwnershipMode
    positions: tuple[LoanPosition, ...]
    total_principal: float
    total_npv: float
    total_expected_loss_amount: float
    weighted_expected_loss: float
    weighted_wal: float
    weighted_irr: float

    @property
    def failed(self) -> tuple[LoanPosition, ...]:
        return tuple(p for p in self.positions if p.error is not None)


def _mode(mode: OwnershipMode | str) -> OwnershipMode:
    try:
        return OwnershipMode(mode)
    except ValueError:
        raise ValidationError(f"unknown ownership mode {mode!r}") from None


def _ownership(loan: Loan, user: str, mode: OwnershipMode) -> tuple[float, float, float]:
    user_pct = get_user_ownership_pct(loan, user)
    market_pct = get_market_ownership_pct(loan)
    if mode is OwnershipMode.PORTFOLIO:
        pct = user_pct
    elif mode is OwnershipMode.MARKET:
        pct = market_pct
    else:
        pct = user_pct if user_pct > 0 else market_pct
    return pct, user_pct, market_pct


def compute_portfolio_valuation(
        loans: Iterable[Loan],
        user: str,
        mode: OwnershipMode | str,
        reference: ReferenceData | ReferenceStore,
        profile: ValuationProfile | None = None,
        risk_free_rate: float | None = None,
        today: object = None,
        max_workers: int | None = None,
) -> PortfolioValuation:
    """
    Value every loan held in `mode` and reduce to portfolio KPIs.

    Modes:
        portfolio  loans where `user` holds a share
        market     loans where the Market party holds a share
        all        either; the user's share is used when they hold one

    Each loan is valued with value_loan against one reference snapshot
    (a ReferenceStore is read once up front). A loan whose valuation raises
    is logged and kept as a zero-valued position with its error; unvalued
    loans also contribute zero.

    Args:
        loans: Loans to consider
        user: User whose holdings are aggregated
        mode: OwnershipMode or its string value
        reference: ReferenceData snapshot or a ReferenceStore
        profile: Valuation profile shared by all loans
        risk_free_rate: Annual decimal, passed to value_loan
        today: Valuation date, passed to value_loan
        max_workers: Value loans on a thread pool of this size (None: serial)

    Returns:
        PortfolioValuation

    Raises:
        ValidationError: If mode is not a known ownership mode
    """
    mode = _mode(mode)
    if isinstance(reference, ReferenceStore):
        reference = reference.snapshot()

    selected = []
    for loan in loans:
        pct, user_pct, market_pct = _ownership(loan, user, mode)
        if pct > 0:
            selected.append((loan, pct, user_pct, market_pct))

    def _value(item: tuple[Loan, float, float, float]) -> LoanPosition:
        loan, pct, user_pct, market_pct = item
        try:
            result = value_loan(
                loan,
                reference.borrower_for(loan),
                reference,
                profile=profile,
                risk_free_rate=risk_free_rate,
                today=today,
            )
        except Exception as e:
            logger.exception("Valuation failed for loan %s", loan.label)
            return LoanPosition(
                loan_id=loan.loan_id, ownership_pct=pct, user_pct=user_pct, market_pct=market_pct,
                principal=as_float(loan.principal) * pct, npv=0.0, expected_loss_amount=0.0,
                valuation=None, error=f"{type(e).__name__}: {e}",
            )
        npv = result.npv if math.isfinite(result.npv) else 0.0
        return LoanPosition(
            loan_id=loan.loan_id, ownership_pct=pct, user_pct=user_pct, market_pct=market_pct,
            principal=as_float(loan.principal) * pct, npv=npv * pct,
            expected_loss_amount=result.expected_loss_amount * pct,
            valuation=result,
        )

    if max_workers and max_workers > 1 and len(selected) > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            positions = tuple(pool.map(_value, selected))
    else:
        positions = tuple(_value(item) for item in selected)

    weight = loss_w = wal_w = irr_w = 0.0
    for p in positions:
        if not p.counts_in_averages:
            continue
        weight += p.principal
        loss_w += p.valuation.expected_loss * p.principal
        wal_w += p.valuation.wal * p.principal
        irr_w += p.valuation.irr * p.principal

    return PortfolioValuation(
        user=user,
        mode=mode,
        positions=positions,
        total_principal=weight,
        total_npv=sum(p.npv for p in positions),
        total_expected_loss_amount=sum(p.expected_loss_amount for p in positions),
        weighted_expected_loss=loss_w / weight if weight > 0 else 0.0,
        weighted_wal=wal_w / weight if weight > 0 else 0.0,
        weighted_irr=irr_w / weight if weight > 0 else 0.0,
    )
