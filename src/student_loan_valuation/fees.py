# Requires Python 3.12+
# Uses native type hints: list[x], tuple[x, y], X | None (PEP 585, PEP 604)
from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum

from .models import Loan, PlatformUser, as_float

__version__ = "0.3.1"

logger = logging.getLogger(__name__)


# =============================================================================
# Fee configuration
# =============================================================================

@dataclass(frozen=True)
class FeeConfig:
    """
    Platform fee schedule.

    setup_fee:             one-time fee ($) charged in the first owned month
    monthly_servicing_bps: servicing fee, bps of balance per owned month
    setup_fee_roles:       user roles that pay the setup fee
    """
    setup_fee: float = 150.0
    monthly_servicing_bps: float = 25.0
    setup_fee_roles: tuple[str, ...] = ("lender",)

    @property
    def monthly_servicing_rate(self) -> float:
        return self.monthly_servicing_bps / 10000.0

    @classmethod
    def from_dict(cls, data: Mapping | None) -> FeeConfig:
        if not data:
            return cls()
        roles = data.get("setupFeeRoles") or data.get("setup_fee_roles")
        return cls(
            setup_fee=as_float(data.get("setupFee", data.get("setup_fee")), 150.0),
            monthly_servicing_bps=as_float(
                data.get("monthlyServicingBps", data.get("monthly_servicing_bps")), 25.0
            ),
            setup_fee_roles=tuple(str(r).lower() for r in roles) if roles else ("lender",),
        )


# =============================================================================
# Fee waivers
# =============================================================================
#
# Waiver tokens come from loan records and user records. Tokens are split on
# "_", "+", "-" and whitespace, so "setup_grace" and "setup+grace" mean the
# same thing. "grace", "servicing" and "monthly" all waive the monthly
# servicing fee only; "setup" waives the one-time fee; "all" waives both.
# =============================================================================

_TOKEN_SPLIT = re.compile(r"[_+\-\s]+")
_SERVICING_TOKENS = frozenset({"grace", "servicing", "monthly"})


class FeeWaiver(Enum):
    NONE = "none"
    SETUP = "setup"
    SERVICING = "servicing"
    ALL = "all"

    @property
    def waives_setup(self) -> bool:
        return self in (FeeWaiver.SETUP, FeeWaiver.ALL)

    @property
    def waives_servicing(self) -> bool:
        return self in (FeeWaiver.SERVICING, FeeWaiver.ALL)

    @classmethod
    def parse(cls, token: str | FeeWaiver | None) -> FeeWaiver:
        """Parse a waiver token; unrecognized tokens are logged and waive nothing."""
        if isinstance(token, FeeWaiver):
            return token
        text = str(token or "").strip().lower()
        if not text or text == "none":
            return cls.NONE
        parts = {p for p in _TOKEN_SPLIT.split(text) if p}
        if "all" in parts:
            return cls.ALL
        setup = "setup" in parts
        servicing = bool(parts & _SERVICING_TOKENS)
        if setup and servicing:
            return cls.ALL
        if setup:
            return cls.SETUP
        if servicing:
            return cls.SERVICING
        logger.warning("Unrecognized fee waiver token %r, no fees waived", token)
        return cls.NONE


def resolve_fee_waiver(loan_waiver: str | None, user_waiver: str | None) -> FeeWaiver:
    """Loan-level waiver wins over the user-level one whenever it waives anything."""
    waiver = FeeWaiver.parse(loan_waiver)
    if waiver is not FeeWaiver.NONE:
        return waiver
    return FeeWaiver.parse(user_waiver)


# =============================================================================
# Users
# =============================================================================

FALLBACK_USERS: dict[str, PlatformUser] = {
    "market": PlatformUser("market", "Market", "market", "none"),
}

ANONYMOUS_USER = PlatformUser("", "Unknown User", "investor", "none")


def resolve_loan_user(loan: Loan) -> str | None:
    """Fee-paying user of a loan: explicit owner, else the only lot's user, else loan.user."""
    if loan.owner:
        return loan.owner
    if len(loan.ownership_lots) == 1:
        return loan.ownership_lots[0].user
    return loan.user or None


def lookup_user(user_id: str | None, users: Mapping[str, PlatformUser] | None) -> PlatformUser:
    """Case-insensitive user lookup; unknown or inactive users are anonymous investors."""
    if not user_id or not users:
        return ANONYMOUS_USER
    key = str(user_id).strip().lower()
    for candidate_id, user in users.items():
        if str(candidate_id).strip().lower() == key and user.active:
            return user
    return ANONYMOUS_USER


def setup_fee_applies(user: PlatformUser, waiver: FeeWaiver, fees: FeeConfig) -> bool:
    return user.role.lower() in fees.setup_fee_roles and not waiver.waives_setup
