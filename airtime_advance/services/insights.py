"""Read-side insights - offer context reasons, customer summaries and KPIs"""

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, List, Optional, Tuple

from airtime_advance.domain.models import (
    ACTIVE_LOAN_STATUSES,
    BalanceSample,
    CallSession,
    Loan,
    LoanStatus,
    Offer,
    OfferStatus,
    UserProfile,
)
from airtime_advance.domain.scoring import format_dollars
from airtime_advance.infrastructure.store import SubscriberRepository
from airtime_advance.utils.date_utils import SECONDS_PER_DAY, seconds_between

MAX_CONTEXT_REASONS = 4
SUMMARY_BALANCE_WINDOW = 25


def build_offer_context_reasons(repository: SubscriberRepository, msisdn: str, now: datetime) -> List[str]:
    """
    Operator-facing context for why an offer makes sense today.

    Drawn from loan history, recharge habits, the last top-up and current
    exposure. De-duplicated, at most four entries.
    """
    profile = repository.get_profile(msisdn)
    loans = repository.loans_for(msisdn)
    topups = repository.topups_for(msisdn)
    reasons: List[str] = []

    repaid = sum(1 for loan in loans if loan.status == LoanStatus.REPAID)
    if loans:
        if repaid == len(loans):
            reasons.append(f"Repaid {repaid}/{len(loans)} previous advances on time.")
        else:
            reasons.append(f"Closed {repaid} of {len(loans)} previous advances without issues.")
    else:
        reasons.append("Pilot advance to build credit history with this subscriber.")

    if profile is not None:
        reasons.append(
            f"Average recharge {format_dollars(profile.avg_topup_amount_cents)} "
            f"about {profile.topup_frequency_30d}x every 30 days."
        )

    if topups:
        last = topups[-1]
        days_ago = max(0, round(seconds_between(last.timestamp, now) / SECONDS_PER_DAY))
        reasons.append(
            f"Last top-up {format_dollars(last.amount_cents)} about {days_ago}d ago ({last.channel.value})."
        )

    if profile is not None and profile.on_time_repay_rate >= 0.9:
        reasons.append("No late repayments recorded in recent history.")

    if repository.active_loan_for(msisdn) is None:
        reasons.append("No outstanding exposure today, so this amount fits within policy.")

    return list(dict.fromkeys(reasons))[:MAX_CONTEXT_REASONS]


class CustomerState(str, Enum):
    ON_CALL = "on_call"
    OFFER_PENDING = "offer_pending"
    LOAN_ACTIVE = "loan_active"
    REPAID = "repaid"
    IDLE = "idle"


class RiskTier(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass
class CustomerStats:
    total_loans: int
    active_loans: int
    total_offers: int
    offers_today: int
    acceptance_rate: float
    repayment_rate: float
    total_exposure_cents: int
    avg_loan_amount_cents: float


@dataclass
class CustomerSummary:
    msisdn: str
    profile: UserProfile
    stats: CustomerStats
    risk_tier: RiskTier
    state: CustomerState
    state_hint: str
    balance_cents: int
    previous_balance_cents: Optional[int]
    balance_change_cents: int
    balance_updated_at: Optional[datetime]
    last_offer_at: Optional[datetime] = None
    last_topup_at: Optional[datetime] = None
    last_loan_at: Optional[datetime] = None
    active_call: Optional[CallSession] = None
    active_offer: Optional[Offer] = None
    active_loan: Optional[Loan] = None


@dataclass
class Kpis:
    """Portfolio-level counters across every subscriber"""

    customers: int
    customers_on_call: int
    offers_total: int
    offers_by_status: Dict[str, int] = field(default_factory=dict)
    acceptance_rate: float = 0.0
    loans_total: int = 0
    loans_active: int = 0
    loans_repaid: int = 0
    repayment_rate: float = 0.0
    disbursed_cents: int = 0
    outstanding_cents: int = 0
    sms_total: int = 0
    sms_delivered: int = 0
    sms_failed: int = 0


def risk_tier(profile: UserProfile) -> RiskTier:
    if profile.on_time_repay_rate >= 0.9:
        return RiskTier.LOW
    if profile.on_time_repay_rate >= 0.7:
        return RiskTier.MEDIUM
    return RiskTier.HIGH


def _latest(dates: List[Optional[datetime]]) -> Optional[datetime]:
    present = [d for d in dates if d is not None]
    return max(present) if present else None


def _rate(part: int, whole: int) -> float:
    return round(part / whole, 3) if whole else 0.0


class InsightService:
    """Aggregations over the repository for operator dashboards"""

    def __init__(self, repository: SubscriberRepository):
        self.repository = repository

    def customer_summary(self, msisdn: str, now: datetime) -> Optional[CustomerSummary]:
        profile = self.repository.get_profile(msisdn)
        if profile is None:
            return None

        offers = self.repository.offers_for(msisdn)
        loans = self.repository.loans_for(msisdn)
        topups = self.repository.topups_for(msisdn)
        history = self.repository.balance_history(msisdn, SUMMARY_BALANCE_WINDOW)

        active_call = self.repository.active_session_for(msisdn)
        active_offer = self.repository.active_offer_for(msisdn, now)
        active_loan = self.repository.active_loan_for(msisdn)

        accepted = [o for o in offers if o.status in (OfferStatus.ACCEPTED, OfferStatus.DISBURSED)]
        repaid = [loan for loan in loans if loan.status == LoanStatus.REPAID]
        active_loans = [loan for loan in loans if loan.status in ACTIVE_LOAN_STATUSES]
        day_ago = now - timedelta(days=1)

        stats = CustomerStats(
            total_loans=len(loans),
            active_loans=len(active_loans),
            total_offers=len(offers),
            offers_today=sum(1 for o in offers if o.created_at > day_ago),
            acceptance_rate=_rate(len(accepted), len(offers)),
            repayment_rate=_rate(len(repaid), len(loans)),
            total_exposure_cents=sum(loan.outstanding_cents for loan in active_loans),
            avg_loan_amount_cents=round(sum(loan.amount_cents for loan in loans) / len(loans), 2) if loans else 0.0,
        )

        latest: Optional[BalanceSample] = history[-1] if history else None
        previous: Optional[BalanceSample] = history[-2] if len(history) >= 2 else None
        state, hint = self._derive_state(active_call, active_offer, active_loan, bool(repaid))

        return CustomerSummary(
            msisdn=msisdn,
            profile=profile,
            stats=stats,
            risk_tier=risk_tier(profile),
            state=state,
            state_hint=hint,
            balance_cents=latest.balance_cents if latest else 0,
            previous_balance_cents=previous.balance_cents if previous else None,
            balance_change_cents=latest.balance_cents - previous.balance_cents if latest and previous else 0,
            balance_updated_at=latest.timestamp if latest else None,
            last_offer_at=_latest([o.created_at for o in offers]),
            last_topup_at=_latest([t.timestamp for t in topups]),
            last_loan_at=_latest([loan.disbursed_at or loan.repaid_at for loan in loans]),
            active_call=active_call,
            active_offer=active_offer,
            active_loan=active_loan,
        )

    def customer_summaries(self, now: datetime) -> List[CustomerSummary]:
        summaries = [self.customer_summary(p.msisdn, now) for p in self.repository.all_profiles()]
        return [s for s in summaries if s is not None]

    def kpis(self) -> Kpis:
        profiles = self.repository.all_profiles()
        offers = self.repository.all_offers()
        loans = self.repository.all_loans()
        messages = self.repository.sms_for()

        by_status = Counter(o.status.value for o in offers)
        accepted = by_status[OfferStatus.ACCEPTED.value] + by_status[OfferStatus.DISBURSED.value]
        disbursed = [loan for loan in loans if loan.disbursed_at is not None]
        active = [loan for loan in loans if loan.status in ACTIVE_LOAN_STATUSES]
        repaid = [loan for loan in loans if loan.status == LoanStatus.REPAID]

        return Kpis(
            customers=len(profiles),
            customers_on_call=sum(1 for p in profiles if self.repository.active_session_for(p.msisdn)),
            offers_total=len(offers),
            offers_by_status=dict(by_status),
            acceptance_rate=_rate(accepted, len(offers)),
            loans_total=len(loans),
            loans_active=len(active),
            loans_repaid=len(repaid),
            repayment_rate=_rate(len(repaid), len(disbursed)),
            disbursed_cents=sum(loan.amount_cents for loan in disbursed),
            outstanding_cents=sum(loan.outstanding_cents for loan in active),
            sms_total=len(messages),
            sms_delivered=sum(1 for m in messages if m.delivered),
            sms_failed=sum(1 for m in messages if m.delivery_failed),
        )

    @staticmethod
    def _derive_state(
        active_call: Optional[CallSession],
        active_offer: Optional[Offer],
        active_loan: Optional[Loan],
        has_repaid: bool,
    ) -> Tuple[CustomerState, str]:
        if active_call is not None:
            return CustomerState.ON_CALL, "Live session in progress"
        if active_offer is not None:
            return CustomerState.OFFER_PENDING, f"Awaiting consent for {format_dollars(active_offer.amount_cents)}"
        if active_loan is not None:
            return CustomerState.LOAN_ACTIVE, f"Outstanding {format_dollars(active_loan.outstanding_cents)}"
        if has_repaid:
            return CustomerState.REPAID, "Last loan closed"
        return CustomerState.IDLE, "No active engagement"
