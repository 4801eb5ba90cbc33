"""Unit tests for the usage-signal source"""

import pytest

from airtime_advance.domain.exceptions import InvalidTopUpError, SubscriberNotFoundError
from airtime_advance.domain.models import SignalKind, TopUpChannel
from airtime_advance.infrastructure.scheduler import TimerKey
from airtime_advance.services.signals import UsageSignalSource


@pytest.fixture
def source(repository, scheduler, settings, make_profile):
    repository.save_profile(make_profile())
    return UsageSignalSource(repository, scheduler, settings)


@pytest.fixture
def signals(source):
    captured = []
    source.subscribe(captured.append)
    return captured


def test_start_call_emits_session_and_default_balance(source, signals, repository):
    session = source.start_call("254700000001")

    assert [s.kind for s in signals] == [SignalKind.CALL_START, SignalKind.BALANCE_UPDATE]
    assert signals[0].entity.session_id == session.session_id
    assert signals[1].entity.balance_cents == 200
    assert signals[1].entity.session_id == session.session_id
    assert repository.active_session_for("254700000001") == session


def test_starting_balance_clamped(source, signals, repository, scheduler):
    source.simulate_topup("254700000001", 5000)
    signals.clear()

    source.start_call("254700000001")

    assert signals[1].entity.balance_cents == 400


def test_depletion_ticks_until_floor(source, repository, scheduler):
    session = source.start_call("254700000001")

    scheduler.advance(1.2 * 3)
    assert repository.current_balance_cents("254700000001") == 170

    scheduler.advance(1.2 * 30)
    assert repository.current_balance_cents("254700000001") == 0
    assert TimerKey("254700000001", session.session_id, "depletion") in scheduler.pending_keys()


def test_end_call_cancels_ticks_before_returning(source, signals, repository, scheduler):
    session = source.start_call("254700000001")
    scheduler.advance(2.5)
    ended_at = scheduler.now()

    ended = source.end_call(session.session_id)
    balance = repository.current_balance_cents("254700000001")
    count = len(signals)
    scheduler.advance(60)

    assert ended.end_time == ended_at
    assert not ended.active
    assert signals[-1].kind == SignalKind.CALL_END
    assert len(signals) == count
    assert repository.current_balance_cents("254700000001") == balance
    assert scheduler.pending_keys() == []


def test_end_call_unknown_or_repeated_is_noop(source):
    session = source.start_call("254700000001")

    assert source.end_call("missing") is None
    assert source.end_call(session.session_id) is not None
    assert source.end_call(session.session_id) is None


def test_second_call_ends_the_first(source, signals, repository):
    first = source.start_call("254700000001")
    second = source.start_call("254700000001")

    kinds = [s.kind for s in signals]
    assert kinds.count(SignalKind.CALL_END) == 1
    assert not repository.get_session(first.session_id).active
    assert repository.active_session_for("254700000001").session_id == second.session_id


def test_start_call_unknown_subscriber(source):
    with pytest.raises(SubscriberNotFoundError):
        source.start_call("000")


def test_topup_credits_before_emitting_topup(source, signals, repository, scheduler):
    topup = source.simulate_topup("254700000001", 2000, TopUpChannel.USSD)

    assert [s.kind for s in signals] == [SignalKind.BALANCE_UPDATE, SignalKind.TOPUP]
    assert signals[0].entity.balance_cents == 2000
    assert signals[0].entity.session_id is None
    assert signals[1].entity == topup
    assert topup.channel == TopUpChannel.USSD

    profile = repository.get_profile("254700000001")
    assert profile.last_topup_date == scheduler.now()
    assert profile.total_topups_90d == 13


@pytest.mark.parametrize("amount", [0, -100])
def test_topup_rejects_non_positive_amount(source, amount):
    with pytest.raises(InvalidTopUpError):
        source.simulate_topup("254700000001", amount)


def test_topup_unknown_subscriber(source):
    with pytest.raises(SubscriberNotFoundError):
        source.simulate_topup("000", 100)


def test_stop_all_cancels_depletion_only(source, scheduler):
    source.start_call("254700000001")
    scheduler.call_later(5, TimerKey("254700000001", "offer-1", "sms_delivery"), lambda: None)

    source.stop_all()

    assert [key.purpose for key in scheduler.pending_keys()] == ["sms_delivery"]
