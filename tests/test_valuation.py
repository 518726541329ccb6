"""
Unit tests for risk-adjusted loan valuation.

Tests value_loan against closed-form cases (zero-loss curves discounted at
the note rate price at par), loss behavior under default curves, closed and
unvalued loans, and determinism.

Version: 0.3.1
Last Updated: 2026-10-18
Status: Active

================================================================================
FUNCTIONS UNDER TEST:
================================================================================
- value_loan: NPV, NPV ratio, expected loss, WAL, IRR, cash-flow projection
- ValuationResult / CashflowRow containers

================================================================================
"""

import datetime as dt
import math
import unittest

from student_loan_valuation.config import ReferenceData
from student_loan_valuation.errors import DataUnavailable, ValidationError
from student_loan_valuation.models import DefaultEvent, PrepaymentEvent
from student_loan_valuation.risk import RiskTier
from student_loan_valuation.schedule import build_amort_schedule
from student_loan_valuation.valuation import ValuationStatus, value_loan
from tests.utilities import (
    LOW_BORROWER,
    MEDIUM_BORROWER,
    LoanTerms,
    flat_curve,
    make_loan,
    make_reference,
    par_profile,
    zero_curves,
)

# =============================================================================
# Test Parameters
# =============================================================================

NPV_TOLERANCE: float = 0.01
RISK_FREE_RATE: float = 0.04
BEFORE_START = "2019-06-01"


def lossy_reference(lag: int = 0) -> ReferenceData:
    curves = zero_curves()
    curves["MEDIUM"] = flat_curve(
        cumulative_default_pct=(2.0, 4.0, 6.0, 8.0),
        prepayment_cpr_pct=(3.0, 5.0),
        recovery_lag_months=lag,
    )
    return make_reference(curves)


class TestParValuation(unittest.TestCase):
    """Zero defaults and prepayments discounted at the note rate give NPV = principal."""

    def setUp(self):
        self.loan = make_loan()
        self.result = value_loan(
            self.loan, MEDIUM_BORROWER, make_reference(), profile=par_profile(),
            risk_free_rate=RISK_FREE_RATE, today=BEFORE_START,
        )

    def test_npv_at_par(self):
        r = self.result
        self.assertIs(r.status, ValuationStatus.VALUED)
        self.assertIs(r.risk_tier, RiskTier.MEDIUM)
        self.assertAlmostEqual(r.discount_rate, 0.08, places=12)
        self.assertAlmostEqual(r.npv, 30000.0, delta=NPV_TOLERANCE)
        self.assertAlmostEqual(r.npv_ratio, 0.0, places=6)

    def test_no_losses(self):
        self.assertEqual(self.result.expected_loss, 0.0)
        self.assertEqual(self.result.expected_loss_amount, 0.0)
        self.assertEqual(self.result.total_defaults, 0.0)

    def test_irr_equals_note_rate(self):
        self.assertAlmostEqual(self.result.irr, 8.0, places=4)

    def test_projection_shape(self):
        rows = self.result.cashflows
        self.assertEqual(self.result.remaining_months, 120)
        self.assertEqual(len(rows), 120)
        self.assertEqual(rows[0].date, dt.date(2020, 1, 1))
        self.assertEqual(rows[-1].date, dt.date(2029, 12, 1))
        self.assertAlmostEqual(rows[-1].ending_balance, 0.0, places=6)
        self.assertAlmostEqual(sum(r.discounted_cash_flow for r in rows), self.result.npv, places=6)

    def test_wal(self):
        # level-payment 10-year loan at 8%: WAL (PV-weighted) about 4.4 years
        self.assertGreater(self.result.wal, 3.5)
        self.assertLess(self.result.wal, 5.5)

    def test_breakdown_recorded(self):
        breakdown = self.result.risk_breakdown
        self.assertEqual(breakdown.base_bps, 400.0)
        self.assertEqual(breakdown.capped_bps, 400.0)


class TestMidLifeValuation(unittest.TestCase):

    def test_remaining_months_from_current_row(self):
        loan = make_loan()
        result = value_loan(
            loan, MEDIUM_BORROWER, make_reference(), profile=par_profile(),
            risk_free_rate=RISK_FREE_RATE, today="2022-01-15",
        )
        schedule = build_amort_schedule(loan)
        self.assertEqual(result.remaining_months, 120 - 25)
        self.assertAlmostEqual(result.current_balance, schedule[24].balance)
        self.assertAlmostEqual(result.npv, result.current_balance, delta=NPV_TOLERANCE)
        self.assertEqual(result.cashflows[0].loan_age, 26)
        self.assertEqual(result.cashflows[0].date, dt.date(2022, 2, 1))

    def test_prepayment_event_lowers_balance(self):
        loan = make_loan(events=[PrepaymentEvent(date="2020-06-01", amount=10000)])
        result = value_loan(
            loan, MEDIUM_BORROWER, make_reference(), profile=par_profile(),
            risk_free_rate=RISK_FREE_RATE, today="2021-01-01",
        )
        plain = value_loan(
            make_loan(), MEDIUM_BORROWER, make_reference(), profile=par_profile(),
            risk_free_rate=RISK_FREE_RATE, today="2021-01-01",
        )
        self.assertLess(result.current_balance, plain.current_balance - 9000)
        self.assertLess(result.remaining_months, plain.remaining_months)

    def test_grace_projection_is_interest_only(self):
        loan = make_loan(terms=LoanTerms(grace_years=1))
        result = value_loan(
            loan, MEDIUM_BORROWER, make_reference(), profile=par_profile(),
            risk_free_rate=RISK_FREE_RATE, today=BEFORE_START,
        )
        rows = result.cashflows
        self.assertTrue(all(r.is_grace for r in rows[:12]))
        self.assertFalse(rows[12].is_grace)
        self.assertAlmostEqual(rows[0].cash_flow, 200.0, places=6)
        self.assertEqual(rows[0].scheduled_principal, 0.0)
        self.assertAlmostEqual(result.npv, 30000.0, delta=NPV_TOLERANCE)


class TestLosses(unittest.TestCase):

    def test_default_curve_reduces_npv(self):
        result = value_loan(
            make_loan(), MEDIUM_BORROWER, lossy_reference(), profile=par_profile(),
            risk_free_rate=RISK_FREE_RATE, today=BEFORE_START,
        )
        self.assertLess(result.npv, 30000.0)
        self.assertLess(result.npv_ratio, 0.0)
        self.assertGreater(result.expected_loss, 0.0)
        self.assertGreater(result.total_defaults, 0.0)
        self.assertAlmostEqual(result.total_recoveries, result.total_defaults * 0.22, places=6)
        self.assertAlmostEqual(
            result.expected_loss_amount, result.total_defaults - result.total_recoveries, places=6
        )
        self.assertTrue(math.isfinite(result.irr))
        self.assertLess(result.irr, 8.0)

    def test_recovery_lag_beyond_horizon_still_counted(self):
        short = make_loan(terms=LoanTerms(term_years=1))
        result = value_loan(
            short, MEDIUM_BORROWER, lossy_reference(lag=24), profile=par_profile(),
            risk_free_rate=RISK_FREE_RATE, today=BEFORE_START,
        )
        self.assertEqual(sum(r.recovery for r in result.cashflows), 0.0)
        self.assertAlmostEqual(result.total_recoveries, result.total_defaults * 0.22, places=6)

    def test_seasoning_damps_early_prepayment(self):
        curves = zero_curves()
        curves["MEDIUM"] = flat_curve(prepayment_cpr_pct=(12.0,))
        result = value_loan(
            make_loan(), MEDIUM_BORROWER, make_reference(curves), profile=par_profile(),
            risk_free_rate=RISK_FREE_RATE, today=BEFORE_START,
        )
        rows = result.cashflows
        early = rows[0].prepayment / (rows[0].beginning_balance - rows[0].scheduled_principal)
        late = rows[40].prepayment / (rows[40].beginning_balance - rows[40].scheduled_principal)
        self.assertAlmostEqual(late / early, 10.0, places=6)

    def test_seasoning_counts_from_valuation_month(self):
        curves = zero_curves()
        curves["MEDIUM"] = flat_curve(prepayment_cpr_pct=(12.0,))
        result = value_loan(
            make_loan(), MEDIUM_BORROWER, make_reference(curves), profile=par_profile(),
            risk_free_rate=RISK_FREE_RATE, today="2022-01-15",
        )
        rows = result.cashflows
        self.assertEqual(rows[0].loan_age, 26)
        early = rows[0].prepayment / (rows[0].beginning_balance - rows[0].scheduled_principal)
        late = rows[40].prepayment / (rows[40].beginning_balance - rows[40].scheduled_principal)
        self.assertAlmostEqual(late / early, 10.0, places=6)

    def test_default_curve_starts_at_valuation_month(self):
        curves = zero_curves()
        curves["MEDIUM"] = flat_curve(cumulative_default_pct=(0.0, 0.0, 30.0))
        result = value_loan(
            make_loan(), MEDIUM_BORROWER, make_reference(curves), profile=par_profile(),
            risk_free_rate=RISK_FREE_RATE, today="2022-01-15",
        )
        rows = result.cashflows
        self.assertTrue(all(r.default_amount == 0.0 for r in rows[:24]))
        self.assertGreater(rows[24].default_amount, 0.0)

    def test_defaulted_loan_reports_charge_off(self):
        loan = make_loan(events=[DefaultEvent(date="2020-12-01", recovery_amount=0.0)])
        result = value_loan(
            loan, MEDIUM_BORROWER, make_reference(), profile=par_profile(),
            risk_free_rate=RISK_FREE_RATE, today="2021-06-01",
        )
        schedule = build_amort_schedule(loan)
        self.assertIs(result.status, ValuationStatus.CLOSED)
        self.assertEqual(result.npv, 0.0)
        self.assertGreater(result.expected_loss, 0.0)
        self.assertAlmostEqual(result.expected_loss_amount, schedule[-1].charge_off)


class TestEdgeCases(unittest.TestCase):

    def test_invalid_basics_are_unvalued(self):
        for overrides in ({"principal": 0}, {"nominal_rate": -0.01}, {"term_years": 0}):
            with self.subTest(overrides=overrides):
                with self.assertLogs('student_loan_valuation.valuation', level='WARNING'):
                    result = value_loan(make_loan(**overrides), MEDIUM_BORROWER, make_reference())
                self.assertIs(result.status, ValuationStatus.UNVALUED)
                self.assertTrue(math.isnan(result.npv))
                self.assertIsNone(result.discount_rate)

    def test_paid_off_loan_is_closed(self):
        loan = make_loan(events=[PrepaymentEvent(date="2020-03-01", amount=1e9)])
        result = value_loan(loan, MEDIUM_BORROWER, make_reference(), today="2021-01-01")
        self.assertIs(result.status, ValuationStatus.CLOSED)
        self.assertEqual(result.expected_loss, 0.0)
        self.assertEqual(result.current_balance, 0.0)

    def test_curves_required(self):
        with self.assertRaises(DataUnavailable):
            value_loan(make_loan(), MEDIUM_BORROWER, ReferenceData(), today=BEFORE_START)

    def test_bad_start_date(self):
        with self.assertRaises(ValidationError):
            value_loan(make_loan(start_date="bogus"), MEDIUM_BORROWER, make_reference(), today=BEFORE_START)

    def test_default_risk_free_rate_from_profile(self):
        result = value_loan(make_loan(), LOW_BORROWER, make_reference(), today=BEFORE_START)
        # 4.25% base rate + LOW 250 + borrower FICO 50 + Tier 3 school 125
        self.assertAlmostEqual(result.discount_rate, 0.0425 + 0.0425, places=12)
        self.assertLess(result.npv, 30000.0)

    def test_deterministic(self):
        kwargs = dict(profile=par_profile(), risk_free_rate=RISK_FREE_RATE, today="2021-03-01")
        a = value_loan(make_loan(), MEDIUM_BORROWER, lossy_reference(lag=6), **kwargs)
        b = value_loan(make_loan(), MEDIUM_BORROWER, lossy_reference(lag=6), **kwargs)
        self.assertEqual(a.npv, b.npv)
        self.assertEqual(a.irr, b.irr)
        self.assertEqual(a.wal, b.wal)
        self.assertEqual(a.cashflows, b.cashflows)


if __name__ == '__main__':
    unittest.main()
