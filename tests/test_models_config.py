"""
Unit tests for loan records, fees, layered assumptions and reference data.

Version: 0.3.1
Last Updated: 2026-10-18
Status: Active

================================================================================
FUNCTIONS UNDER TEST:
================================================================================
- Loan.from_dict, OwnershipLot.from_dict, event_from_dict: supplier records
- Borrower.with_overrides: per-loan borrower overrides
- FeeWaiver.parse, resolve_fee_waiver, lookup_user: fee rules
- resolve_assumptions, ValuationProfile.layered: defaults -> system -> user
- ReferenceData.from_json_files, curve_for, borrower_for
- ReferenceStore: snapshot / swap

================================================================================
TEST DATA SOURCES:
================================================================================
- fixtures/loans.json, borrowers.json, borrower_overrides.json
- fixtures/risk_curves.json, schools.json, platform.json

================================================================================
"""

import json
import unittest

from student_loan_valuation.config import (
    Assumptions,
    NOT_LOADED,
    ReferenceData,
    ReferenceStore,
    ValuationProfile,
    resolve_assumptions,
)
from student_loan_valuation.errors import DataUnavailable
from student_loan_valuation.fees import FeeConfig, FeeWaiver, lookup_user, resolve_fee_waiver
from student_loan_valuation.models import (
    Borrower,
    DeferralEvent,
    Loan,
    PrepaymentEvent,
    as_float,
    event_from_dict,
)
from tests.utilities import FIXTURE_DIR

# Module-level test data (populated by setUpModule)
LOAN_RECORDS: list[dict] = []


def setUpModule():
    """Load supplier loan records."""
    global LOAN_RECORDS
    with open(FIXTURE_DIR / 'loans.json', encoding='utf-8') as fh:
        LOAN_RECORDS = json.load(fh)


def load_reference(*skip: str) -> ReferenceData:
    paths = dict(
        curves_path=FIXTURE_DIR / 'risk_curves.json',
        schools_path=FIXTURE_DIR / 'schools.json',
        platform_path=FIXTURE_DIR / 'platform.json',
        borrowers_path=FIXTURE_DIR / 'borrowers.json',
        overrides_path=FIXTURE_DIR / 'borrower_overrides.json',
    )
    for key in skip:
        paths[key] = None
    return ReferenceData.from_json_files(**paths)


# =============================================================================
# Records
# =============================================================================

class TestLoanRecords(unittest.TestCase):

    def test_loan_from_dict_aliases(self):
        loan = Loan.from_dict(LOAN_RECORDS[0])
        self.assertEqual(loan.loan_id, "LN-1")
        self.assertEqual(loan.label, "Alice 2020")
        self.assertEqual(loan.start_date, "2020-01-01")
        self.assertEqual(loan.term_months, 120)
        self.assertEqual(loan.events, (PrepaymentEvent(date="2021-06-15", amount=2000.0),))
        self.assertEqual(len(loan.ownership_lots), 2)
        self.assertAlmostEqual(loan.ownership_lots[1].pct, 0.4)
        self.assertIsNone(loan.ownership_lots[1].price_paid)

    def test_term_months_rounds_up_to_years(self):
        loan = Loan.from_dict(LOAN_RECORDS[1])
        self.assertEqual(loan.term_years, 8)
        self.assertEqual(loan.grace_months, 6)
        self.assertEqual(loan.term_months, 6 + 96)
        self.assertEqual(loan.borrower_id, "BRW-2")
        self.assertAlmostEqual(loan.nominal_rate, 0.065)

    def test_unknown_event_types_are_skipped(self):
        loan = Loan.from_dict(LOAN_RECORDS[1])
        self.assertEqual(loan.events, (DeferralEvent(start_date="2022-03-01", months=3),))
        with self.assertLogs('student_loan_valuation.models', level='WARNING'):
            self.assertIsNone(event_from_dict({"type": "forbearance"}))

    def test_default_borrower_id(self):
        loan = Loan.from_dict({"loanId": "X9", "principal": "1000"})
        self.assertEqual(loan.borrower_id, "BRW-X9")
        self.assertEqual(loan.principal, 1000.0)

    def test_as_float(self):
        self.assertEqual(as_float("12.5"), 12.5)
        self.assertEqual(as_float(None, 3.0), 3.0)
        self.assertEqual(as_float(float("nan")), 0.0)
        self.assertEqual(as_float("abc", 1.0), 1.0)
        self.assertEqual(as_float(True, 2.0), 2.0)

    def test_borrower_overrides(self):
        base = Borrower(borrower_id="B", borrower_fico=650, school="X")
        out = base.with_overrides({"borrowerFico": "805", "isGraduateStudent": 1, "unknown": 5})
        self.assertEqual(out.borrower_fico, 805.0)
        self.assertTrue(out.is_graduate_student)
        self.assertEqual(out.school, "X")
        self.assertIs(base.with_overrides(None), base)


# =============================================================================
# Fees
# =============================================================================

class TestFeeWaivers(unittest.TestCase):

    def test_parse_tokens(self):
        cases = {
            None: FeeWaiver.NONE,
            "none": FeeWaiver.NONE,
            "setup": FeeWaiver.SETUP,
            "grace": FeeWaiver.SERVICING,
            "Monthly": FeeWaiver.SERVICING,
            "setup_grace": FeeWaiver.ALL,
            "setup+servicing": FeeWaiver.ALL,
            "all": FeeWaiver.ALL,
        }
        for token, expected in cases.items():
            with self.subTest(token=token):
                self.assertIs(FeeWaiver.parse(token), expected)

    def test_unknown_token_waives_nothing(self):
        with self.assertLogs('student_loan_valuation.fees', level='WARNING'):
            self.assertIs(FeeWaiver.parse("holiday"), FeeWaiver.NONE)

    def test_loan_waiver_wins(self):
        self.assertIs(resolve_fee_waiver("setup", "all"), FeeWaiver.SETUP)
        self.assertIs(resolve_fee_waiver("none", "grace"), FeeWaiver.SERVICING)

    def test_lookup_user(self):
        reference = load_reference()
        self.assertEqual(lookup_user("NICK", reference.users).role, "lender")
        self.assertEqual(lookup_user("old", reference.users).role, "investor")
        self.assertEqual(lookup_user(None, reference.users).user_id, "")


# =============================================================================
# Assumptions
# =============================================================================

class TestAssumptions(unittest.TestCase):

    def test_defaults(self):
        a = Assumptions()
        self.assertEqual(a.risk_premium_bps["MEDIUM"], 350.0)
        self.assertEqual(a.recovery_rate["HIGH"], 15.0)
        self.assertEqual(a.base_risk_free_rate, 4.25)
        self.assertEqual(a.prepay_seasoning_years, 2.5)

    def test_layers_merge_mapping_fields(self):
        profile = ValuationProfile.layered(
            system={"riskPremiumBps": {"HIGH": 600}, "baseRiskFreeRate": 4.0},
            user={"risk_premium_bps": {"LOW": 200}, "prepaySeasoning": 1.0},
        )
        a = profile.assumptions
        self.assertEqual(profile.name, "user")
        self.assertEqual(a.risk_premium_bps["HIGH"], 600.0)
        self.assertEqual(a.risk_premium_bps["LOW"], 200.0)
        self.assertEqual(a.risk_premium_bps["MEDIUM"], 350.0)
        self.assertEqual(a.base_risk_free_rate, 4.0)
        self.assertEqual(a.prepay_seasoning_years, 1.0)

    def test_resolved_assumptions_are_immutable(self):
        a = resolve_assumptions({"recoveryRate": {"LOW": 40}})
        with self.assertRaises(TypeError):
            a.recovery_rate["LOW"] = 1.0
        self.assertEqual(Assumptions().recovery_rate["LOW"], 30.0)

    def test_bad_layer_values(self):
        with self.assertLogs('student_loan_valuation.config', level='WARNING'):
            a = resolve_assumptions({"riskPremiumBps": 400, "servicingCostBps": None})
        self.assertEqual(a.risk_premium_bps["LOW"], 250.0)
        self.assertEqual(a.servicing_cost_bps, 50.0)

    def test_merged(self):
        base = resolve_assumptions({"graduateAdjustmentBps": 25})
        out = base.merged({"earningsThreshold": 60000})
        self.assertEqual(out.graduate_adjustment_bps, 25.0)
        self.assertEqual(out.earnings_threshold, 60000.0)


# =============================================================================
# Reference data
# =============================================================================

class TestReferenceData(unittest.TestCase):

    def test_from_json_files(self):
        reference = load_reference()
        self.assertTrue(reference.curves_loaded)
        self.assertTrue(reference.schools_loaded)
        self.assertEqual(reference.curve_for("HIGH").recovery_lag_months, 12)
        self.assertEqual(reference.curve_for("MEDIUM").cumulative_default_pct[-1], 5.5)
        self.assertIsNone(reference.schools["00999900"].median_earnings_10yr)
        self.assertNotIn("old", reference.users)
        self.assertEqual(reference.fees, FeeConfig())

    def test_curves_not_loaded(self):
        reference = load_reference("curves_path")
        self.assertIs(reference.curves, NOT_LOADED)
        with self.assertRaises(DataUnavailable):
            reference.require_curves()
        with self.assertRaises(LookupError):
            reference.curve_for("LOW")

    def test_missing_tier(self):
        reference = ReferenceData.from_mappings(curves={"LOW": {"riskPremiumBps": 250}})
        with self.assertRaises(DataUnavailable):
            reference.curve_for("HIGH")

    def test_fallback_platform(self):
        reference = ReferenceData.from_mappings()
        self.assertEqual(set(reference.users), {"market"})
        self.assertEqual(lookup_user("jeff", reference.users).role, "investor")
        self.assertEqual(reference.fees, FeeConfig())
        self.assertFalse(reference.schools_loaded)

    def test_borrower_for_applies_overrides(self):
        reference = load_reference()
        loan = Loan.from_dict(LOAN_RECORDS[1])
        borrower = reference.borrower_for(loan)
        self.assertEqual(borrower.borrower_fico, 805.0)
        self.assertEqual(borrower.cosigner_fico, 790.0)
        self.assertEqual(borrower.degree_type, "Liberal Arts")

    def test_borrower_for_unknown_borrower(self):
        reference = load_reference()
        loan = Loan.from_dict({"loanId": "Z", "school": "Nowhere"})
        borrower = reference.borrower_for(loan)
        self.assertEqual(borrower.borrower_id, "BRW-Z")
        self.assertEqual(borrower.school, "Nowhere")
        self.assertIsNone(borrower.borrower_fico)


class TestReferenceStore(unittest.TestCase):

    def test_swap_keeps_old_snapshot_intact(self):
        store = ReferenceStore()
        before = store.snapshot()
        self.assertFalse(before.curves_loaded)
        old = store.swap(load_reference())
        self.assertIs(old, before)
        self.assertTrue(store.snapshot().curves_loaded)
        self.assertFalse(before.curves_loaded)

    def test_update(self):
        store = ReferenceStore(load_reference())
        store.update(fees=FeeConfig(setup_fee=0.0))
        self.assertEqual(store.snapshot().fees.setup_fee, 0.0)
        self.assertTrue(store.snapshot().curves_loaded)


if __name__ == '__main__':
    unittest.main()
