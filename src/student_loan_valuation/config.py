# Requires Python 3.12+
# Uses native type hints: list[x], tuple[x, y], X | None (PEP 585, PEP 604)
from __future__ import annotations

import json
import logging
import threading
import dataclasses
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType

from .errors import DataUnavailable
from .fees import FALLBACK_USERS, FeeConfig
from .models import Borrower, Loan, PlatformUser, RiskCurve, SchoolRecord, as_float

__version__ = "0.3.1"

logger = logging.getLogger(__name__)


def _frozen(mapping: Mapping | None) -> Mapping:
    return MappingProxyType(dict(mapping or {}))


# =============================================================================
# Valuation assumptions (layered: defaults -> system -> user)
# =============================================================================

DEFAULT_SCHOOL_ADJUSTMENTS_BPS = {
    "Tier 1": -75.0,
    "Tier 2": 0.0,
    "Tier 3": 125.0,
    "Unknown": 100.0,
}


@dataclass(frozen=True)
class Assumptions:
    """
    Effective valuation assumptions.

    Instances are immutable. Build them with resolve_assumptions(), which
    merges layers of overrides on top of these defaults. Mapping-valued
    fields are merged key by key, so a user layer that only overrides
    {"HIGH": 600} in risk_premium_bps keeps the other tiers.

    Units:
        recovery_rate               % of defaulted balance, per risk tier
        risk_premium_bps            bps, per risk tier
        base_risk_free_rate         % (4.25 means 4.25%)
        prepay_seasoning_years      projection years before full prepayment
        *_adjustment(s)_bps         bps

    servicing_cost_bps and school_tier_multiplier are carried for
    consumers that report them; the discount rate does not use them.
    """
    recovery_rate: Mapping[str, float] = field(default_factory=lambda: _frozen(
        {"LOW": 30.0, "MEDIUM": 22.0, "HIGH": 15.0, "VERY_HIGH": 10.0}
    ))
    servicing_cost_bps: float = 50.0
    prepayment_multiplier: float = 1.0
    risk_premium_bps: Mapping[str, float] = field(default_factory=lambda: _frozen(
        {"LOW": 250.0, "MEDIUM": 350.0, "HIGH": 550.0, "VERY_HIGH": 750.0}
    ))
    graduation_rate_threshold: float = 75.0
    earnings_threshold: float = 70000.0
    fico_borrower_adjustment: float = 50.0
    fico_cosigner_adjustment: float = 25.0
    base_risk_free_rate: float = 4.25
    prepay_seasoning_years: float = 2.5
    school_tier_multiplier: Mapping[str, float] = field(default_factory=lambda: _frozen(
        {"A": 0.8, "B": 1.0, "C": 1.3, "D": 1.5}
    ))
    degree_adjustments_bps: Mapping[str, float] = field(default_factory=lambda: _frozen({}))
    school_adjustments_bps: Mapping[str, float] = field(
        default_factory=lambda: _frozen(DEFAULT_SCHOOL_ADJUSTMENTS_BPS)
    )
    year_in_school_adjustments_bps: Mapping[str, float] = field(default_factory=lambda: _frozen({}))
    graduate_adjustment_bps: float = 0.0

    @classmethod
    def from_dict(cls, data: Mapping | None) -> Assumptions:
        return resolve_assumptions(data)

    def merged(self, overrides: Mapping | Assumptions | None) -> Assumptions:
        return resolve_assumptions(overrides, base=self)


_MAPPING_FIELDS = frozenset({
    "recovery_rate",
    "risk_premium_bps",
    "school_tier_multiplier",
    "degree_adjustments_bps",
    "school_adjustments_bps",
    "year_in_school_adjustments_bps",
})

_ASSUMPTION_ALIASES = {
    "recoveryRate": "recovery_rate",
    "servicingCostBps": "servicing_cost_bps",
    "prepaymentMultiplier": "prepayment_multiplier",
    "riskPremiumBps": "risk_premium_bps",
    "graduationRateThreshold": "graduation_rate_threshold",
    "earningsThreshold": "earnings_threshold",
    "ficoBorrowerAdjustment": "fico_borrower_adjustment",
    "ficoCosignerAdjustment": "fico_cosigner_adjustment",
    "baseRiskFreeRate": "base_risk_free_rate",
    "prepaySeasoningYears": "prepay_seasoning_years",
    "prepaySeasoning": "prepay_seasoning_years",
    "schoolTierMultiplier": "school_tier_multiplier",
    "degreeAdjustmentsBps": "degree_adjustments_bps",
    "schoolAdjustmentsBps": "school_adjustments_bps",
    "yearInSchoolAdjustmentsBps": "year_in_school_adjustments_bps",
    "graduateAdjustmentBps": "graduate_adjustment_bps",
}

_ASSUMPTION_FIELDS = frozenset(f.name for f in dataclasses.fields(Assumptions))


def _layer_items(layer: Mapping | Assumptions) -> dict:
    if isinstance(layer, Assumptions):
        return {f: getattr(layer, f) for f in _ASSUMPTION_FIELDS}
    items = {}
    for key, value in layer.items():
        name = _ASSUMPTION_ALIASES.get(key, key)
        if name not in _ASSUMPTION_FIELDS:
            logger.debug("Ignoring unknown assumption key %r", key)
            continue
        if value is None:
            continue
        items[name] = value
    return items


def resolve_assumptions(
        *layers: Mapping | Assumptions | None,
        base: Assumptions | None = None,
) -> Assumptions:
    """
    Merge override layers, lowest priority first, into one Assumptions record.

    Args:
        *layers: Mappings (field names or camelCase keys) or Assumptions.
                 None layers are skipped.
        base: Starting point (default: Assumptions())

    Returns:
        New immutable Assumptions

    Example:
        >>> a = resolve_assumptions({"riskPremiumBps": {"HIGH": 600}}, {"baseRiskFreeRate": 4.0})
        >>> a.risk_premium_bps["HIGH"], a.risk_premium_bps["LOW"], a.base_risk_free_rate
        (600.0, 250.0, 4.0)
    """
    current = _layer_items(base or Assumptions())
    for layer in layers:
        if layer is None:
            continue
        for name, value in _layer_items(layer).items():
            if name in _MAPPING_FIELDS:
                if not isinstance(value, Mapping):
                    logger.warning("Assumption %s expects a mapping, got %r; ignored", name, value)
                    continue
                merged = dict(current[name])
                merged.update({str(k): as_float(v) for k, v in value.items()})
                current[name] = _frozen(merged)
            else:
                current[name] = as_float(value, current[name])
    return Assumptions(**current)


@dataclass(frozen=True)
class ValuationProfile:
    """Named, already-resolved assumption set ("system", "user", ...)."""
    name: str = "system"
    assumptions: Assumptions = field(default_factory=Assumptions)

    @classmethod
    def layered(
            cls,
            system: Mapping | Assumptions | None = None,
            user: Mapping | Assumptions | None = None,
    ) -> ValuationProfile:
        """Resolve defaults -> system -> user once into an immutable profile."""
        return cls(
            name="user" if user else "system",
            assumptions=resolve_assumptions(system, user),
        )


# =============================================================================
# Reference data (immutable snapshot) and store (atomic swap)
# =============================================================================

class _NotLoaded:
    """Sentinel for reference tables that have not been loaded."""

    def __repr__(self) -> str:
        return "NOT_LOADED"

    def __bool__(self) -> bool:
        return False


NOT_LOADED = _NotLoaded()


@dataclass(frozen=True)
class ReferenceData:
    """
    Read-only reference tables shared by every valuation in a pass.

    curves:             risk tier -> RiskCurve (required for valuation)
    schools:            institution identifier -> SchoolRecord (optional)
    users:              user id -> PlatformUser
    fees:               platform fee schedule
    borrowers:          borrower id -> Borrower
    borrower_overrides: loan id -> partial borrower attributes
    """
    curves: Mapping[str, RiskCurve] | _NotLoaded = NOT_LOADED
    schools: Mapping[str, SchoolRecord] | _NotLoaded = NOT_LOADED
    users: Mapping[str, PlatformUser] = field(default_factory=lambda: _frozen({}))
    fees: FeeConfig = field(default_factory=FeeConfig)
    borrowers: Mapping[str, Borrower] = field(default_factory=lambda: _frozen({}))
    borrower_overrides: Mapping[str, Mapping] = field(default_factory=lambda: _frozen({}))

    @property
    def curves_loaded(self) -> bool:
        return self.curves is not NOT_LOADED

    @property
    def schools_loaded(self) -> bool:
        return self.schools is not NOT_LOADED and len(self.schools) > 0

    def require_curves(self) -> Mapping[str, RiskCurve]:
        if self.curves is NOT_LOADED:
            raise DataUnavailable("risk curves have not been loaded")
        return self.curves

    def curve_for(self, tier: str) -> RiskCurve:
        curves = self.require_curves()
        key = getattr(tier, "value", tier)
        try:
            return curves[key]
        except KeyError:
            raise DataUnavailable(f"no risk curve for tier {key!r}") from None

    def borrower_for(self, loan: Loan) -> Borrower:
        """Supplier borrower record merged with any per-loan override."""
        borrower = self.borrowers.get(loan.borrower_id) if loan.borrower_id else None
        if borrower is None:
            borrower = Borrower(borrower_id=loan.borrower_id, school=loan.school)
        return borrower.with_overrides(self.borrower_overrides.get(loan.loan_id))

    @classmethod
    def from_mappings(
            cls,
            curves: Mapping | None = None,
            schools: Mapping | None = None,
            platform: Mapping | None = None,
            borrowers: Mapping | list | None = None,
            overrides: Mapping | None = None,
    ) -> ReferenceData:
        """
        Build reference data from decoded supplier JSON.

        curves may be the full document ({"riskTiers": {...}}) or the tier
        mapping itself. platform is {"fees": {...}, "users": [...]}; when it
        is None only the Market party is known and every other user is
        anonymous. borrowers may be a list of records or a mapping keyed by
        borrower id.
        """
        curve_table: Mapping | _NotLoaded = NOT_LOADED
        if curves is not None:
            tiers = curves.get("riskTiers", curves)
            curve_table = _frozen({str(k): RiskCurve.from_dict(v) for k, v in tiers.items()})

        school_table: Mapping | _NotLoaded = NOT_LOADED
        if schools is not None:
            school_table = _frozen({str(k).strip(): SchoolRecord.from_dict(v) for k, v in schools.items()})

        if platform is None:
            logger.debug("No platform config supplied, using the Market user and default fees")
            users = dict(FALLBACK_USERS)
            fees = FeeConfig()
        else:
            raw_users = platform.get("users") or []
            if isinstance(raw_users, Mapping):
                raw_users = [{"id": k, **v} for k, v in raw_users.items()]
            users = {}
            for raw in raw_users:
                user = PlatformUser.from_dict(raw)
                if user.user_id and user.active:
                    users[user.user_id] = user
            fees = FeeConfig.from_dict(platform.get("fees"))

        borrower_table = {}
        records = borrowers.values() if isinstance(borrowers, Mapping) else (borrowers or [])
        for raw in records:
            borrower = Borrower.from_dict(raw)
            if borrower.borrower_id:
                borrower_table[borrower.borrower_id] = borrower

        return cls(
            curves=curve_table,
            schools=school_table,
            users=_frozen(users),
            fees=fees,
            borrowers=_frozen(borrower_table),
            borrower_overrides=_frozen({str(k): _frozen(v) for k, v in (overrides or {}).items()}),
        )

    @classmethod
    def from_json_files(
            cls,
            curves_path: str | Path | None = None,
            schools_path: str | Path | None = None,
            platform_path: str | Path | None = None,
            borrowers_path: str | Path | None = None,
            overrides_path: str | Path | None = None,
    ) -> ReferenceData:
        """Load reference tables from JSON files; omitted paths stay unloaded."""
        def _read(path: str | Path | None):
            if path is None:
                return None
            with open(path, encoding="utf-8") as fh:
                return json.load(fh)

        return cls.from_mappings(
            curves=_read(curves_path),
            schools=_read(schools_path),
            platform=_read(platform_path),
            borrowers=_read(borrowers_path),
            overrides=_read(overrides_path),
        )


class ReferenceStore:
    """
    Holder for the current ReferenceData snapshot.

    Readers call snapshot() once per valuation pass and keep using that
    object. Reloads build a new ReferenceData and swap() it in with a single
    reference assignment, so in-flight passes never observe a partial update.
    """

    def __init__(self, initial: ReferenceData | None = None) -> None:
        self._lock = threading.Lock()
        self._snapshot = initial if initial is not None else ReferenceData()

    def snapshot(self) -> ReferenceData:
        return self._snapshot

    def swap(self, new: ReferenceData) -> ReferenceData:
        """Install a new snapshot and return the previous one."""
        with self._lock:
            old = self._snapshot
            self._snapshot = new
        logger.debug("Reference data swapped (curves loaded: %s)", new.curves_loaded)
        return old

    def update(self, **changes) -> ReferenceData:
        """Swap in a copy of the current snapshot with some tables replaced."""
        with self._lock:
            new = dataclasses.replace(self._snapshot, **changes)
            self._snapshot = new
        return new
