"""Advance amount policy: bucketing, exposure caps and benefit estimates"""

from typing import Optional, Sequence

from airtime_advance.domain.models import BenefitEstimate

DEFAULT_BUCKETS_CENTS = (100, 500, 1000)  # $1, $5, $10


def bucket_down(amount_cents: float, buckets: Sequence[int] = DEFAULT_BUCKETS_CENTS) -> Optional[int]:
    """Largest bucket <= amount, or None when the amount is below the smallest bucket"""
    eligible = [b for b in sorted(buckets) if b <= amount_cents]
    return eligible[-1] if eligible else None


def apply_policy_caps(
    recommended_limit_cents: int,
    avg_topup_amount_cents: int,
    max_exposure_ratio: float = 0.5,
    buckets: Sequence[int] = DEFAULT_BUCKETS_CENTS,
) -> Optional[int]:
    """
    Constrain the model's recommendation to what policy allows.

    - Cap at max exposure (default 50% of average top-up)
    - Cap again at the average top-up itself
    - Snap down to a bucket; below the smallest bucket there is no offer

    Example:
        avg top-up $20, recommendation $10 -> min($10, $10, $20) = $10 -> bucket $10
        avg top-up $5,  recommendation $1  -> min($1, $2.50, $5) = $1  -> bucket $1
        avg top-up $1,  recommendation $1  -> min($1, $0.50, $1) = $0.50 -> None
    """
    limit = min(recommended_limit_cents, avg_topup_amount_cents * max_exposure_ratio)
    limit = min(limit, avg_topup_amount_cents)
    return bucket_down(limit, buckets)


def estimate_benefit(
    amount_cents: int,
    voice_rate_cents_per_minute: int = 10,
    data_rate_cents_per_day: int = 50,
) -> BenefitEstimate:
    """Translate an advance into voice minutes or days of typical data usage"""
    return BenefitEstimate(
        voice_minutes=amount_cents // voice_rate_cents_per_minute,
        data_days=amount_cents // data_rate_cents_per_day,
    )
