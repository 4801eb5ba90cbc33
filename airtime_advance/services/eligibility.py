"""Eligibility gate - hard policy checks, model thresholds and amount bucketing"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional

from airtime_advance.config import Settings
from airtime_advance.domain.models import BenefitEstimate, LoanStatus, ModelDecision
from airtime_advance.domain.policy import apply_policy_caps, estimate_benefit
from airtime_advance.domain.scoring import ScoringModel, generate_user_reasons
from airtime_advance.infrastructure.observability.logging import log_eligibility
from airtime_advance.infrastructure.observability.metrics import record_eligibility
from airtime_advance.infrastructure.store import SubscriberRepository
from airtime_advance.services.features import FeatureAggregator
from airtime_advance.utils.date_utils import seconds_between


class RejectionReason(str, Enum):
    """Expected, non-fatal reasons for not making an offer"""

    UNKNOWN_SUBSCRIBER = "unknown_subscriber"
    OPTED_OUT = "opted_out"
    TENURE_BELOW_MINIMUM = "tenure_below_minimum"
    ACTIVE_LOAN_COOLDOWN = "active_loan_cooldown"
    FEATURES_UNAVAILABLE = "features_unavailable"
    REPAYMENT_PROBABILITY_TOO_LOW = "repayment_probability_too_low"
    CONFIDENCE_TOO_LOW = "confidence_too_low"
    POLICY_CONSTRAINTS_NOT_MET = "policy_constraints_not_met"


@dataclass
class EligibilityResult:
    eligible: bool
    rejection: Optional[RejectionReason] = None
    decision: Optional[ModelDecision] = None
    approved_amount_cents: Optional[int] = None
    reasons: List[str] = field(default_factory=list)
    benefit_estimate: Optional[BenefitEstimate] = None

    @classmethod
    def rejected(cls, reason: RejectionReason, decision: Optional[ModelDecision] = None) -> "EligibilityResult":
        return cls(eligible=False, rejection=reason, decision=decision)


class EligibilityGate:
    """
    Sequential gate evaluated per trigger.

    Short-circuits at the first failing check:
    1. Subscriber exists
    2. Not opted out
    3. Tenure >= minimum
    4. No pending loan, and no disbursed loan younger than the loan cooldown
    5. Feature vector can be built
    6. p_repay >= minimum
    7. confidence >= minimum
    8. Policy caps leave at least the smallest bucket
    """

    def __init__(
        self,
        repository: SubscriberRepository,
        features: FeatureAggregator,
        model: ScoringModel,
        settings: Settings,
    ):
        self.repository = repository
        self.features = features
        self.model = model
        self.settings = settings

    def evaluate(self, msisdn: str, as_of: datetime) -> EligibilityResult:
        result = self._evaluate(msisdn, as_of)

        record_eligibility(
            result.eligible,
            result.rejection.value if result.rejection else None,
            result.approved_amount_cents,
        )
        log_eligibility(
            msisdn,
            result.eligible,
            result.rejection.value if result.rejection else None,
            result.approved_amount_cents,
            result.decision.decision_id if result.decision else None,
        )
        return result

    def _evaluate(self, msisdn: str, as_of: datetime) -> EligibilityResult:
        profile = self.repository.get_profile(msisdn)
        if profile is None:
            return EligibilityResult.rejected(RejectionReason.UNKNOWN_SUBSCRIBER)

        if profile.opt_out:
            return EligibilityResult.rejected(RejectionReason.OPTED_OUT)

        if profile.tenure_days < self.settings.min_tenure_days:
            return EligibilityResult.rejected(RejectionReason.TENURE_BELOW_MINIMUM)

        if self._loan_cooling_down(msisdn, as_of):
            return EligibilityResult.rejected(RejectionReason.ACTIVE_LOAN_COOLDOWN)

        features = self.features.build(msisdn, as_of)
        if features is None:
            return EligibilityResult.rejected(RejectionReason.FEATURES_UNAVAILABLE)

        decision = self.model.predict(features, decided_at=as_of)
        self.repository.save_decision(decision)

        if decision.outputs.p_repay < self.settings.min_p_repay:
            return EligibilityResult.rejected(RejectionReason.REPAYMENT_PROBABILITY_TOO_LOW, decision)

        if decision.outputs.confidence < self.settings.min_confidence:
            return EligibilityResult.rejected(RejectionReason.CONFIDENCE_TOO_LOW, decision)

        approved_amount = apply_policy_caps(
            decision.outputs.recommended_limit_cents,
            features.avg_topup_amount_cents,
            self.settings.max_exposure_ratio,
            self.settings.amount_buckets_cents,
        )
        if approved_amount is None:
            return EligibilityResult.rejected(RejectionReason.POLICY_CONSTRAINTS_NOT_MET, decision)

        return EligibilityResult(
            eligible=True,
            decision=decision,
            approved_amount_cents=approved_amount,
            reasons=generate_user_reasons(decision),
            benefit_estimate=estimate_benefit(
                approved_amount,
                self.settings.voice_rate_cents_per_minute,
                self.settings.data_rate_cents_per_day,
            ),
        )

    def _loan_cooling_down(self, msisdn: str, as_of: datetime) -> bool:
        loan = self.repository.active_loan_for(msisdn)
        if loan is None:
            return False
        if loan.status == LoanStatus.PENDING or loan.disbursed_at is None:
            return True
        return seconds_between(loan.disbursed_at, as_of) < self.settings.active_loan_cooldown_seconds
