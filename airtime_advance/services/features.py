"""Feature aggregation - projects stored subscriber state into a scoring snapshot"""

from datetime import datetime, timedelta
from typing import Optional

from airtime_advance.domain.models import FeatureVector, LoanStatus
from airtime_advance.infrastructure.store import SubscriberRepository
from airtime_advance.utils.date_utils import seconds_between, whole_days_between

RECENT_OFFER_WINDOW = timedelta(days=30)
NEVER_TOPPED_UP_DAYS = 999
DEFAULT_CALL_DURATION_MINUTES = 5.0


class FeatureAggregator:
    """Read-only projection; building a vector never mutates stored entities"""

    def __init__(self, repository: SubscriberRepository):
        self.repository = repository

    def build(self, msisdn: str, as_of: datetime) -> Optional[FeatureVector]:
        """
        Build the feature vector for a subscriber at a point in time.

        Returns None for unknown subscribers.
        """
        profile = self.repository.get_profile(msisdn)
        if profile is None:
            return None

        loans = self.repository.loans_for(msisdn)
        recent_offers = [
            o for o in self.repository.offers_for(msisdn) if o.created_at > as_of - RECENT_OFFER_WINDOW
        ]

        last_topup_days_ago = (
            whole_days_between(profile.last_topup_date, as_of)
            if profile.last_topup_date
            else NEVER_TOPPED_UP_DAYS
        )

        total_loans = len(loans)
        repaid_loans = sum(1 for loan in loans if loan.status == LoanStatus.REPAID)
        repayment_ratio = repaid_loans / total_loans if total_loans > 0 else 1.0

        return FeatureVector(
            msisdn=msisdn,
            timestamp=as_of,
            topup_frequency_30d=profile.topup_frequency_30d,
            avg_topup_amount_cents=profile.avg_topup_amount_cents,
            last_topup_days_ago=last_topup_days_ago,
            total_topups_90d=profile.total_topups_90d,
            tenure_days=profile.tenure_days,
            on_time_repay_rate=profile.on_time_repay_rate,
            total_loans=total_loans,
            total_repaid=repaid_loans,
            repayment_ratio=repayment_ratio,
            recent_call_drops=profile.recent_call_drops,
            avg_call_duration_minutes=self._avg_call_duration_minutes(msisdn),
            # Each offer stands in for a low-balance episode
            recent_low_balance_events=len(recent_offers),
            device_type=profile.device_type,
            network_quality_score=profile.network_quality_score,
            region=profile.region,
        )

    def _avg_call_duration_minutes(self, msisdn: str) -> float:
        durations = [
            seconds_between(s.start_time, s.end_time) / 60
            for s in self.repository.sessions_for(msisdn)
            if s.end_time is not None
        ]
        if not durations:
            return DEFAULT_CALL_DURATION_MINUTES
        return round(sum(durations) / len(durations), 2)
