"""Unit tests for the low-balance trigger gate"""

from datetime import timedelta

import pytest

from airtime_advance.domain.models import (
    BalanceSample,
    CallSession,
    Loan,
    LoanStatus,
    Offer,
    OfferStatus,
)
from airtime_advance.services.trigger import TriggerGate

MSISDN = "254700000001"


@pytest.fixture
def gate(repository, settings, scheduler):
    repository.save_session(CallSession(session_id="s1", msisdn=MSISDN, start_time=scheduler.now()))
    return TriggerGate(repository, settings)


@pytest.fixture
def fired(gate):
    captured = []
    gate.on_trigger(captured.append)
    return captured


def sample(scheduler, balance_cents, offset_seconds=0.0, session_id="s1"):
    return BalanceSample(
        msisdn=MSISDN,
        balance_cents=balance_cents,
        timestamp=scheduler.now() + timedelta(seconds=offset_seconds),
        session_id=session_id,
    )


def make_offer(scheduler, created_offset_seconds, status=OfferStatus.SMS_SENT):
    created_at = scheduler.now() + timedelta(seconds=created_offset_seconds)
    return Offer(
        offer_id="o1",
        msisdn=MSISDN,
        session_id="s1",
        amount_cents=500,
        status=status,
        created_at=created_at,
        expires_at=created_at + timedelta(minutes=10),
        consent_token="t1",
        model_decision_id="d1",
    )


def test_fires_at_threshold(gate, fired, scheduler):
    trigger = gate.check(sample(scheduler, 50))

    assert trigger is not None
    assert trigger.threshold_cents == 50
    assert trigger.session_id == "s1"
    assert fired == [trigger]
    assert gate.last_trigger_at(MSISDN) == trigger.timestamp


def test_ignores_balance_above_threshold(gate, fired, scheduler):
    assert gate.check(sample(scheduler, 51)) is None
    assert fired == []


def test_ignores_samples_outside_a_live_call(gate, repository, scheduler):
    assert gate.check(sample(scheduler, 10, session_id=None)) is None
    assert gate.check(sample(scheduler, 10, session_id="unknown")) is None

    session = repository.get_session("s1")
    session.end_time = scheduler.now()
    assert gate.check(sample(scheduler, 10)) is None


def test_debounce_window(gate, fired, scheduler):
    """Samples closer together than the debounce window give one trigger"""
    gate.check(sample(scheduler, 50))
    assert gate.check(sample(scheduler, 40, 1.2)) is None
    assert gate.check(sample(scheduler, 30, 2.9)) is None
    assert gate.check(sample(scheduler, 20, 3.0)) is not None
    assert len(fired) == 2


def test_cooldown_after_recent_offer(gate, repository, scheduler):
    repository.save_offer(make_offer(scheduler, 0))

    assert gate.check(sample(scheduler, 40, 30)) is None
    assert gate.check(sample(scheduler, 40, 61)) is not None


def test_inactive_offer_does_not_cool_down(gate, repository, scheduler):
    repository.save_offer(make_offer(scheduler, 0, status=OfferStatus.DECLINED))

    assert gate.check(sample(scheduler, 40, 5)) is not None


def test_disbursed_loan_blocks_trigger(gate, repository, scheduler):
    loan = Loan(
        loan_id="l1",
        offer_id="o1",
        msisdn=MSISDN,
        amount_cents=500,
        outstanding_cents=500,
        status=LoanStatus.DISBURSED,
        disbursed_at=scheduler.now(),
    )
    repository.save_loan(loan)
    assert gate.check(sample(scheduler, 10)) is None

    loan.status = LoanStatus.REPAID
    assert gate.check(sample(scheduler, 10)) is not None
