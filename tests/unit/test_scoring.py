"""Unit tests for the risk scoring model"""

from dataclasses import FrozenInstanceError, replace
from datetime import datetime, timezone

import pytest

from airtime_advance.domain.models import DeviceType, FeatureVector
from airtime_advance.domain.policy import apply_policy_caps
from airtime_advance.domain.scoring import (
    FALLBACK_REASON,
    MODEL_NAME,
    ScoringModel,
    calculate_confidence,
    calculate_contributions,
    calculate_recommended_limit,
    calculate_repay_probability,
    format_dollars,
    generate_user_reasons,
    identity_offset,
)

START = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def make_features(**overrides) -> FeatureVector:
    """High-trust vector: long tenure, perfect repayment, regular $20 recharges"""
    fields = dict(
        msisdn="254700000001",
        timestamp=START,
        topup_frequency_30d=4,
        avg_topup_amount_cents=2000,
        last_topup_days_ago=2,
        total_topups_90d=12,
        tenure_days=240,
        on_time_repay_rate=1.0,
        total_loans=0,
        total_repaid=0,
        repayment_ratio=1.0,
        recent_call_drops=0,
        avg_call_duration_minutes=5.0,
        recent_low_balance_events=0,
        device_type=DeviceType.SMARTPHONE,
        network_quality_score=0.9,
    )
    fields.update(overrides)
    return FeatureVector(**fields)


def test_contributions_ranked_by_importance():
    """Strongest contribution first; ties keep rule order"""
    contributions = calculate_contributions(make_features())

    assert [c.feature_name for c in contributions] == [
        "on_time_repay_rate",
        "tenure_days",
        "topup_frequency_30d",
        "avg_topup_amount",
        "total_topups_90d",
        "network_quality_score",
        "device_type",
    ]
    assert all(c.importance == abs(c.contribution) for c in contributions)
    assert sum(c.contribution for c in contributions) == pytest.approx(0.75)


def test_risk_signals_contribute_negatively():
    features = make_features(
        recent_call_drops=3,
        on_time_repay_rate=0.5,
        last_topup_days_ago=10,
        recent_low_balance_events=5,
    )

    by_name = {}
    for c in calculate_contributions(features):
        by_name.setdefault(c.feature_name, []).append(c.contribution)

    assert by_name["recent_call_drops"] == [-0.15]
    assert by_name["on_time_repay_rate"] == [-0.15]
    assert by_name["last_topup_days_ago"] == [-0.12]
    assert by_name["recent_low_balance_events"] == [-0.1]


def test_mid_tier_contributions():
    contributions = {
        c.feature_name: c.contribution
        for c in calculate_contributions(
            make_features(tenure_days=60, on_time_repay_rate=0.75, topup_frequency_30d=2, recent_call_drops=1)
        )
    }

    assert contributions["tenure_days"] == 0.08
    assert contributions["on_time_repay_rate"] == 0.1
    assert contributions["topup_frequency_30d"] == 0.06
    assert contributions["recent_call_drops"] == -0.08


def test_identity_offset_is_reproducible_and_bounded():
    for msisdn in ("254700000001", "254700000002", "15551234567"):
        offset = identity_offset(msisdn)
        assert -0.05 <= offset <= 0.05
        assert identity_offset(msisdn) == offset

    assert identity_offset("254700000001") != identity_offset("254700000002")


def test_repay_probability_clamped():
    strong = make_features()
    assert calculate_repay_probability(strong, calculate_contributions(strong)) == 1.0

    weak = make_features(
        tenure_days=5,
        on_time_repay_rate=0.2,
        topup_frequency_30d=0,
        avg_topup_amount_cents=100,
        total_topups_90d=0,
        network_quality_score=0.3,
        device_type=DeviceType.FEATURE_PHONE,
        recent_call_drops=5,
        last_topup_days_ago=30,
        recent_low_balance_events=8,
    )
    p_repay = calculate_repay_probability(weak, calculate_contributions(weak))
    assert 0.0 <= p_repay < 0.2


def test_confidence_bonuses_and_bounds():
    assert calculate_confidence(make_features()) == 0.85
    assert calculate_confidence(make_features(total_loans=2)) == 0.95
    assert calculate_confidence(make_features(tenure_days=40, topup_frequency_30d=1, total_topups_90d=1)) == 0.5


@pytest.mark.parametrize(
    "avg_topup, p_repay, confidence, expected",
    [
        (2000, 1.0, 0.85, 1000),  # $17 -> $10
        (1000, 1.0, 0.85, 500),  # $8.50 -> $5
        (300, 0.9, 0.7, 100),  # $1.89 -> $1
        (100, 0.5, 0.5, 100),  # $0.25 collapses to the $1 floor
    ],
)
def test_recommended_limit_buckets(avg_topup, p_repay, confidence, expected):
    features = make_features(avg_topup_amount_cents=avg_topup)
    assert calculate_recommended_limit(features, p_repay, confidence) == expected


@pytest.mark.parametrize("avg_topup", [300, 1200, 2500, 6000])
def test_approved_amount_never_drops_when_scores_improve(avg_topup):
    """Higher p_repay or confidence never yields a smaller bucket under identical caps"""
    features = make_features(avg_topup_amount_cents=avg_topup)
    grid = [round(0.5 + 0.05 * i, 2) for i in range(10)]

    def approved(p_repay, confidence):
        recommended = calculate_recommended_limit(features, p_repay, confidence)
        return apply_policy_caps(recommended, avg_topup) or 0

    for low, high in zip(grid, grid[1:]):
        for fixed in grid:
            assert approved(high, fixed) >= approved(low, fixed)
            assert approved(fixed, high) >= approved(fixed, low)


def test_predict_is_deterministic():
    model = ScoringModel()
    features = make_features()

    first = model.predict(features)
    second = model.predict(features)

    assert first.model_name == MODEL_NAME
    assert first.outputs == second.outputs
    assert first.contributions == second.contributions
    assert first.outputs.p_repay == 1.0
    assert first.outputs.confidence == 0.85
    assert first.outputs.recommended_limit_cents == 1000
    assert first.timestamp == START


def test_user_reasons_from_top_positive_contributions():
    decision = ScoringModel().predict(make_features())

    assert generate_user_reasons(decision) == [
        "Excellent repayment history",
        "You've been with us for 8 months",
        "You recharge 4 times per month",
        "Your average recharge is $20",
        "Active user with 12 recharges in the last 3 months",
    ]


def test_user_reasons_fallback():
    decision = ScoringModel().predict(
        make_features(
            tenure_days=10,
            on_time_repay_rate=0.5,
            topup_frequency_30d=0,
            avg_topup_amount_cents=100,
            total_topups_90d=0,
            network_quality_score=0.5,
            device_type=DeviceType.FEATURE_PHONE,
        )
    )

    assert generate_user_reasons(decision) == [FALLBACK_REASON]


def test_format_dollars():
    assert format_dollars(500) == "$5"
    assert format_dollars(1250) == "$12.50"


def test_features_frozen():
    features = make_features()
    with pytest.raises(FrozenInstanceError):
        features.tenure_days = 1
    assert replace(features, tenure_days=1).tenure_days == 1
