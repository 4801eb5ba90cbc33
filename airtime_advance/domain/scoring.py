"""Risk scoring engine - deterministic, explainable stand-in for a trained model"""

import hashlib
import random
import uuid
from datetime import datetime
from typing import Callable, List, Optional, Sequence, Tuple

from airtime_advance.domain.models import (
    Contribution,
    DeviceType,
    FeatureVector,
    ModelDecision,
    ModelOutputs,
)
from airtime_advance.domain.policy import DEFAULT_BUCKETS_CENTS, bucket_down

MODEL_NAME = "airtime_risk_v1"
MODEL_VERSION = "1.0.0"

BASE_P_REPAY = 0.5
IDENTITY_OFFSET_SPAN = 0.05
MAX_USER_REASONS = 5
FALLBACK_REASON = "Based on your usage patterns"

Rule = Tuple[str, Callable[[FeatureVector], Optional[float]]]


def _tiered(value: float, tiers: Sequence[Tuple[float, float]]) -> Optional[float]:
    """First contribution whose threshold value meets; tiers ordered high to low"""
    for threshold, contribution in tiers:
        if value >= threshold:
            return contribution
    return None


# Evaluated in this order; a rule returning None does not contribute.
# Positive weights raise p_repay, negative weights are risk signals.
RULES: List[Rule] = [
    ("tenure_days", lambda f: 0.15 if f.tenure_days > 90 else (0.08 if f.tenure_days > 30 else None)),
    ("on_time_repay_rate", lambda f: _tiered(f.on_time_repay_rate, [(0.9, 0.2), (0.7, 0.1)])),
    ("topup_frequency_30d", lambda f: _tiered(f.topup_frequency_30d, [(4, 0.12), (2, 0.06)])),
    ("avg_topup_amount", lambda f: 0.1 if f.avg_topup_amount_cents >= 1500 else None),
    ("total_topups_90d", lambda f: 0.08 if f.total_topups_90d >= 10 else None),
    ("network_quality_score", lambda f: 0.05 if f.network_quality_score >= 0.8 else None),
    ("device_type", lambda f: 0.05 if f.device_type == DeviceType.SMARTPHONE else None),
    ("recent_call_drops", lambda f: _tiered(f.recent_call_drops, [(3, -0.15), (1, -0.08)])),
    ("recent_low_balance_events", lambda f: -0.1 if f.recent_low_balance_events >= 5 else None),
    ("last_topup_days_ago", lambda f: -0.12 if f.last_topup_days_ago > 7 else None),
    ("on_time_repay_rate", lambda f: -0.15 if f.on_time_repay_rate < 0.7 else None),
]


def calculate_contributions(features: FeatureVector) -> List[Contribution]:
    """
    Apply the rule table and rank by absolute impact.

    Ties keep rule-table order, so the ranking is stable across calls.
    """
    contributions = []
    for feature_name, rule in RULES:
        value = rule(features)
        if value is not None:
            contributions.append(Contribution(feature_name=feature_name, contribution=value, importance=abs(value)))

    return sorted(contributions, key=lambda c: c.importance, reverse=True)


def identity_offset(msisdn: str) -> float:
    """
    Small per-subscriber offset in [-0.05, 0.05].

    Seeded from the SHA-256 of the MSISDN so the same subscriber always gets
    the same value. Reproducible on purpose; not a source of randomness.
    """
    seed = int.from_bytes(hashlib.sha256(msisdn.encode("utf-8")).digest()[:8], "big")
    return random.Random(seed).uniform(-IDENTITY_OFFSET_SPAN, IDENTITY_OFFSET_SPAN)


def calculate_repay_probability(features: FeatureVector, contributions: List[Contribution]) -> float:
    """p_repay = clamp(0.5 + sum(contributions) + identity offset, 0, 1)"""
    total = sum(c.contribution for c in contributions)
    p_repay = BASE_P_REPAY + total + identity_offset(features.msisdn)
    return round(max(0.0, min(1.0, p_repay)), 3)


def calculate_confidence(features: FeatureVector) -> float:
    """
    Confidence grows with the amount of evidence we hold on the subscriber.

    Bonuses: tenure > 90 days (+0.20), any prior loan (+0.15), 3+ top-ups a
    month (+0.10), 5+ top-ups in 90 days (+0.05). Clamped to [0.5, 0.95].
    """
    confidence = 0.5
    if features.tenure_days > 90:
        confidence += 0.2
    if features.total_loans > 0:
        confidence += 0.15
    if features.topup_frequency_30d >= 3:
        confidence += 0.1
    if features.total_topups_90d >= 5:
        confidence += 0.05

    return round(max(0.5, min(0.95, confidence)), 3)


def calculate_recommended_limit(
    features: FeatureVector,
    p_repay: float,
    confidence: float,
    buckets: Sequence[int] = DEFAULT_BUCKETS_CENTS,
) -> int:
    """
    Risk-adjusted limit snapped down to an amount bucket.

    Below the smallest bucket the recommendation collapses to that floor; the
    eligibility gate decides whether an offer is made at all.
    """
    risk_adjusted = features.avg_topup_amount_cents * p_repay * confidence
    bucket = bucket_down(risk_adjusted, buckets)
    return bucket if bucket is not None else min(buckets)


def format_dollars(cents: int) -> str:
    return f"${cents // 100}" if cents % 100 == 0 else f"${cents / 100:.2f}"


def generate_user_reasons(decision: ModelDecision) -> List[str]:
    """Plain-language reasons from the strongest positive contributions (max 5)"""
    features = decision.features
    reasons: List[str] = []

    for contribution in [c for c in decision.contributions if c.contribution > 0][:MAX_USER_REASONS]:
        name = contribution.feature_name
        if name == "tenure_days":
            reasons.append(f"You've been with us for {features.tenure_days // 30} months")
        elif name == "on_time_repay_rate" and features.on_time_repay_rate >= 0.9:
            reasons.append("Excellent repayment history")
        elif name == "topup_frequency_30d":
            reasons.append(f"You recharge {features.topup_frequency_30d} times per month")
        elif name == "avg_topup_amount":
            reasons.append(f"Your average recharge is {format_dollars(features.avg_topup_amount_cents)}")
        elif name == "total_topups_90d":
            reasons.append(f"Active user with {features.total_topups_90d} recharges in the last 3 months")
        elif name == "network_quality_score":
            reasons.append("Good network connection history")
        elif name == "device_type":
            reasons.append("Smartphone user")

    if not reasons:
        reasons.append(FALLBACK_REASON)

    return reasons[:MAX_USER_REASONS]


class ScoringModel:
    """Maps a feature vector to a ModelDecision; identical input gives identical output"""

    def __init__(self, buckets: Sequence[int] = DEFAULT_BUCKETS_CENTS):
        self.buckets = tuple(sorted(buckets))

    def predict(self, features: FeatureVector, decided_at: Optional[datetime] = None) -> ModelDecision:
        contributions = calculate_contributions(features)
        p_repay = calculate_repay_probability(features, contributions)
        confidence = calculate_confidence(features)
        recommended_limit = calculate_recommended_limit(features, p_repay, confidence, self.buckets)

        return ModelDecision(
            decision_id=str(uuid.uuid4()),
            model_name=MODEL_NAME,
            model_version=MODEL_VERSION,
            timestamp=decided_at or features.timestamp,
            msisdn=features.msisdn,
            features=features,
            outputs=ModelOutputs(
                p_repay=p_repay,
                confidence=confidence,
                recommended_limit_cents=recommended_limit,
            ),
            contributions=contributions,
        )
