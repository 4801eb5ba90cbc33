"""Unit tests for the eligibility gate"""

from datetime import timedelta

import pytest

from airtime_advance.domain.models import Loan, LoanStatus
from airtime_advance.domain.scoring import ScoringModel
from airtime_advance.services.eligibility import EligibilityGate, RejectionReason
from airtime_advance.services.features import FeatureAggregator

MSISDN = "254700000001"


@pytest.fixture
def gate(repository, settings):
    return EligibilityGate(repository, FeatureAggregator(repository), ScoringModel(), settings)


def save_loan(repository, status, disbursed_at=None):
    repository.save_loan(
        Loan(
            loan_id="l1",
            offer_id="o1",
            msisdn=MSISDN,
            amount_cents=500,
            outstanding_cents=500,
            status=status,
            disbursed_at=disbursed_at,
        )
    )


def test_high_trust_subscriber_gets_ten_dollars(gate, repository, scheduler, make_profile):
    repository.save_profile(make_profile(MSISDN))

    result = gate.evaluate(MSISDN, scheduler.now())

    assert result.eligible
    assert result.rejection is None
    assert result.approved_amount_cents == 1000
    assert result.benefit_estimate.voice_minutes == 100
    assert result.benefit_estimate.data_days == 20
    assert result.reasons[0] == "Excellent repayment history"
    assert repository.get_decision(result.decision.decision_id) == result.decision


def test_steady_subscriber_gets_five_dollars(gate, repository, scheduler, make_profile):
    repository.save_profile(make_profile(MSISDN, avg_topup_amount_cents=1000))

    assert gate.evaluate(MSISDN, scheduler.now()).approved_amount_cents == 500


def test_unknown_subscriber(gate, scheduler):
    result = gate.evaluate("000", scheduler.now())

    assert result.rejection == RejectionReason.UNKNOWN_SUBSCRIBER
    assert result.decision is None


def test_opted_out_short_circuits_before_scoring(gate, repository, scheduler, make_profile):
    repository.save_profile(make_profile(MSISDN, opt_out=True))

    result = gate.evaluate(MSISDN, scheduler.now())

    assert result.rejection == RejectionReason.OPTED_OUT
    assert result.decision is None
    assert result.approved_amount_cents is None


def test_short_tenure(gate, repository, scheduler, make_profile):
    repository.save_profile(make_profile(MSISDN, tenure_days=29))

    assert gate.evaluate(MSISDN, scheduler.now()).rejection == RejectionReason.TENURE_BELOW_MINIMUM


def test_pending_loan_blocks(gate, repository, scheduler, make_profile):
    repository.save_profile(make_profile(MSISDN))
    save_loan(repository, LoanStatus.PENDING)

    assert gate.evaluate(MSISDN, scheduler.now()).rejection == RejectionReason.ACTIVE_LOAN_COOLDOWN


def test_recent_disbursed_loan_blocks_until_cooldown_passes(gate, repository, scheduler, make_profile):
    repository.save_profile(make_profile(MSISDN))
    save_loan(repository, LoanStatus.DISBURSED, disbursed_at=scheduler.now() - timedelta(hours=23))

    assert gate.evaluate(MSISDN, scheduler.now()).rejection == RejectionReason.ACTIVE_LOAN_COOLDOWN
    assert gate.evaluate(MSISDN, scheduler.now() + timedelta(hours=2)).rejection != RejectionReason.ACTIVE_LOAN_COOLDOWN


def test_low_repayment_probability(gate, repository, scheduler, make_profile):
    repository.save_profile(
        make_profile(
            MSISDN,
            on_time_repay_rate=0.3,
            recent_call_drops=4,
            last_topup_date=scheduler.now() - timedelta(days=20),
            topup_frequency_30d=1,
            avg_topup_amount_cents=500,
            total_topups_90d=2,
        )
    )

    result = gate.evaluate(MSISDN, scheduler.now())

    assert result.rejection == RejectionReason.REPAYMENT_PROBABILITY_TOO_LOW
    assert result.decision is not None
    assert repository.get_decision(result.decision.decision_id) is not None


def test_low_confidence(gate, repository, scheduler, make_profile):
    """Tenure under 90 days and sparse top-ups leave confidence at the floor"""
    repository.save_profile(make_profile(MSISDN, tenure_days=60, topup_frequency_30d=2, total_topups_90d=4))

    result = gate.evaluate(MSISDN, scheduler.now())

    assert result.decision.outputs.p_repay >= 0.5
    assert result.rejection == RejectionReason.CONFIDENCE_TOO_LOW


def test_policy_constraints(gate, repository, scheduler, make_profile):
    """$1 average top-up cannot carry even the smallest advance"""
    repository.save_profile(make_profile(MSISDN, avg_topup_amount_cents=100))

    result = gate.evaluate(MSISDN, scheduler.now())

    assert result.rejection == RejectionReason.POLICY_CONSTRAINTS_NOT_MET
    assert result.decision.outputs.recommended_limit_cents == 100
