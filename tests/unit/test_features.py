"""Unit tests for feature aggregation"""

from datetime import timedelta

from airtime_advance.domain.models import CallSession, Loan, LoanStatus, Offer, OfferStatus
from airtime_advance.services.features import (
    DEFAULT_CALL_DURATION_MINUTES,
    NEVER_TOPPED_UP_DAYS,
    FeatureAggregator,
)

MSISDN = "254700000001"


def test_unknown_subscriber_has_no_features(repository, scheduler):
    assert FeatureAggregator(repository).build("000", scheduler.now()) is None


def test_profile_fields_projected(repository, scheduler, make_profile):
    repository.save_profile(make_profile(MSISDN, last_topup_date=scheduler.now() - timedelta(days=3, hours=20)))

    features = FeatureAggregator(repository).build(MSISDN, scheduler.now())

    assert features.tenure_days == 240
    assert features.avg_topup_amount_cents == 2000
    assert features.last_topup_days_ago == 3
    assert features.total_loans == 0
    assert features.repayment_ratio == 1.0
    assert features.avg_call_duration_minutes == DEFAULT_CALL_DURATION_MINUTES
    assert features.region == "Nairobi"
    assert features.timestamp == scheduler.now()


def test_never_topped_up(repository, scheduler, make_profile):
    repository.save_profile(make_profile(MSISDN, last_topup_date=None))

    assert FeatureAggregator(repository).build(MSISDN, scheduler.now()).last_topup_days_ago == NEVER_TOPPED_UP_DAYS


def test_loan_history_and_recent_offers(repository, scheduler, make_profile):
    now = scheduler.now()
    repository.save_profile(make_profile(MSISDN))
    for index, status in enumerate([LoanStatus.REPAID, LoanStatus.REPAID, LoanStatus.DISBURSED]):
        repository.save_loan(
            Loan(loan_id=f"l{index}", offer_id=f"o{index}", msisdn=MSISDN, amount_cents=100, outstanding_cents=0, status=status)
        )
    for index, age_days in enumerate([1, 10, 45]):
        created = now - timedelta(days=age_days)
        repository.save_offer(
            Offer(
                offer_id=f"o{index}",
                msisdn=MSISDN,
                session_id="s",
                amount_cents=100,
                status=OfferStatus.DISBURSED,
                created_at=created,
                expires_at=created + timedelta(minutes=10),
                consent_token=f"t{index}",
                model_decision_id=f"d{index}",
            )
        )

    features = FeatureAggregator(repository).build(MSISDN, now)

    assert features.total_loans == 3
    assert features.total_repaid == 2
    assert round(features.repayment_ratio, 3) == 0.667
    assert features.recent_low_balance_events == 2


def test_average_call_duration_from_ended_sessions(repository, scheduler, make_profile):
    now = scheduler.now()
    repository.save_profile(make_profile(MSISDN))
    repository.save_session(CallSession("s1", MSISDN, now - timedelta(minutes=10), end_time=now - timedelta(minutes=6)))
    repository.save_session(CallSession("s2", MSISDN, now - timedelta(minutes=5), end_time=now - timedelta(minutes=3)))
    repository.save_session(CallSession("s3", MSISDN, now - timedelta(minutes=1)))

    assert FeatureAggregator(repository).build(MSISDN, now).avg_call_duration_minutes == 3.0


def test_build_does_not_mutate_state(repository, scheduler, make_profile):
    profile = make_profile(MSISDN)
    repository.save_profile(profile)
    before = (profile.total_topups_90d, profile.last_topup_date)

    FeatureAggregator(repository).build(MSISDN, scheduler.now())

    assert (profile.total_topups_90d, profile.last_topup_date) == before
    assert repository.offers_for(MSISDN) == []
