"""Domain models - pure Python dataclasses representing business entities"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class DeviceType(str, Enum):
    SMARTPHONE = "smartphone"
    FEATURE_PHONE = "feature_phone"
    UNKNOWN = "unknown"


class TopUpChannel(str, Enum):
    ONLINE = "online"
    RETAIL = "retail"
    USSD = "ussd"
    APP = "app"


class SignalKind(str, Enum):
    """Raw usage signals produced by the network simulator"""

    CALL_START = "call_start"
    CALL_END = "call_end"
    BALANCE_UPDATE = "balance_update"
    TOPUP = "topup"


class OfferStatus(str, Enum):
    CREATED = "created"
    SMS_SENT = "sms_sent"
    LINK_OPENED = "link_opened"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    EXPIRED = "expired"
    DISBURSED = "disbursed"


ACTIVE_OFFER_STATUSES = frozenset({OfferStatus.CREATED, OfferStatus.SMS_SENT, OfferStatus.LINK_OPENED})


class LoanStatus(str, Enum):
    PENDING = "pending"
    DISBURSED = "disbursed"
    REPAID = "repaid"
    OVERDUE = "overdue"


ACTIVE_LOAN_STATUSES = frozenset({LoanStatus.PENDING, LoanStatus.DISBURSED})


class LedgerEventType(str, Enum):
    """Closed set of audit entries"""

    OFFER_CREATED = "offer_created"
    OFFER_REJECTED = "offer_rejected"
    SMS_SENT = "sms_sent"
    LINK_OPENED = "link_opened"
    OFFER_ACCEPTED = "offer_accepted"
    OFFER_DECLINED = "offer_declined"
    OFFER_EXPIRED = "offer_expired"
    DISBURSAL_INITIATED = "disbursal_initiated"
    DISBURSAL_COMPLETED = "disbursal_completed"
    TOPUP_DETECTED = "topup_detected"
    REPAYMENT_INITIATED = "repayment_initiated"
    REPAYMENT_PARTIAL = "repayment_partial"
    REPAYMENT_COMPLETED = "repayment_completed"


class EntityType(str, Enum):
    OFFER = "offer"
    LOAN = "loan"
    USER = "user"


class JourneyEventType(str, Enum):
    CALL_START = "call_start"
    CALL_END = "call_end"
    BALANCE_LOW = "balance_low"
    OFFER_CREATED = "offer_created"
    SMS_SENT = "sms_sent"
    LINK_OPENED = "link_opened"
    OFFER_ACCEPTED = "offer_accepted"
    OFFER_DECLINED = "offer_declined"
    LOAN_DISBURSED = "loan_disbursed"
    TOPUP = "topup"
    REPAYMENT_COMPLETED = "repayment_completed"


class BroadcastType(str, Enum):
    """Envelope types published to external listeners"""

    MNO_EVENT = "mno_event"
    LOW_BALANCE_TRIGGER = "low_balance_trigger"
    OFFER_CREATED = "offer_created"
    OFFER_NOT_CREATED = "offer_not_created"
    SMS_SENT = "sms_sent"
    LINK_OPENED = "link_opened"
    OFFER_ACCEPTED = "offer_accepted"
    OFFER_DECLINED = "offer_declined"
    LOAN_DISBURSED = "loan_disbursed"
    TOPUP_PROCESSED = "topup_processed"
    REPAYMENT_COMPLETED = "repayment_completed"


@dataclass
class UserProfile:
    """Subscriber profile keyed by MSISDN"""

    msisdn: str
    tenure_days: int
    avg_topup_amount_cents: int
    topup_frequency_30d: int
    opt_out: bool = False
    last_topup_date: Optional[datetime] = None
    total_topups_90d: int = 0
    on_time_repay_rate: float = 1.0  # 0-1, 1 = perfect
    recent_call_drops: int = 0
    device_type: DeviceType = DeviceType.SMARTPHONE
    region: Optional[str] = None
    network_quality_score: float = 0.8  # 0-1


@dataclass
class CallSession:
    """Voice session; active while end_time is unset"""

    session_id: str
    msisdn: str
    start_time: datetime
    end_time: Optional[datetime] = None
    cell_id: Optional[str] = None
    region: Optional[str] = None

    @property
    def active(self) -> bool:
        return self.end_time is None


@dataclass(frozen=True)
class BalanceSample:
    """Point-in-time airtime balance"""

    msisdn: str
    balance_cents: int
    timestamp: datetime
    session_id: Optional[str] = None  # Set when sampled during a live call
    consumption_rate_cents_per_min: int = 0


@dataclass(frozen=True)
class TopUpEvent:
    msisdn: str
    amount_cents: int
    channel: TopUpChannel
    timestamp: datetime
    transaction_id: str


@dataclass(frozen=True)
class UsageSignal:
    """Envelope for everything the usage-signal source emits"""

    kind: SignalKind
    msisdn: str
    entity: Any  # CallSession | BalanceSample | TopUpEvent


@dataclass(frozen=True)
class LowBalanceTrigger:
    msisdn: str
    session_id: str
    balance_cents: int
    threshold_cents: int
    timestamp: datetime


@dataclass(frozen=True)
class FeatureVector:
    """Snapshot of what the scoring model sees"""

    msisdn: str
    timestamp: datetime
    # Top-up behaviour
    topup_frequency_30d: int
    avg_topup_amount_cents: int
    last_topup_days_ago: int
    total_topups_90d: int
    # Tenure & loyalty
    tenure_days: int
    # Repayment history
    on_time_repay_rate: float
    total_loans: int
    total_repaid: int
    repayment_ratio: float
    # Usage patterns
    recent_call_drops: int
    avg_call_duration_minutes: float
    recent_low_balance_events: int
    # Device / network proxies
    device_type: DeviceType
    network_quality_score: float
    region: Optional[str] = None


@dataclass(frozen=True)
class Contribution:
    feature_name: str
    contribution: float  # Signed
    importance: float  # abs(contribution)


@dataclass(frozen=True)
class ModelOutputs:
    p_repay: float
    confidence: float
    recommended_limit_cents: int


@dataclass(frozen=True)
class ModelDecision:
    """Output of the risk model, referenced by exactly one offer"""

    decision_id: str
    model_name: str
    model_version: str
    timestamp: datetime
    msisdn: str
    features: FeatureVector
    outputs: ModelOutputs
    contributions: List[Contribution]


@dataclass(frozen=True)
class BenefitEstimate:
    voice_minutes: int
    data_days: int


@dataclass
class Offer:
    offer_id: str
    msisdn: str
    session_id: str
    amount_cents: int  # Bucketed, final
    status: OfferStatus
    created_at: datetime
    expires_at: datetime
    consent_token: str
    model_decision_id: str
    reasons: List[str] = field(default_factory=list)
    context_reasons: List[str] = field(default_factory=list)
    benefit_estimate: Optional[BenefitEstimate] = None

    def is_active(self, now: datetime) -> bool:
        return self.status in ACTIVE_OFFER_STATUSES and self.expires_at > now


@dataclass
class Loan:
    loan_id: str
    offer_id: str
    msisdn: str
    amount_cents: int
    outstanding_cents: int
    status: LoanStatus = LoanStatus.PENDING
    disbursed_at: Optional[datetime] = None
    repaid_at: Optional[datetime] = None
    repayment_method: str = "next_topup"


@dataclass(frozen=True)
class LedgerEvent:
    """Immutable audit entry"""

    event_id: str
    type: LedgerEventType
    entity_id: str
    entity_type: EntityType
    msisdn: Optional[str]
    timestamp: datetime
    payload: Dict[str, Any]


@dataclass(frozen=True)
class JourneyEvent:
    event_id: str
    msisdn: str
    type: JourneyEventType
    label: str
    timestamp: datetime
    metadata: Dict[str, Any]


@dataclass
class SmsMessage:
    message_id: str
    msisdn: str
    message: str
    offer_id: Optional[str] = None
    sent_at: Optional[datetime] = None
    delivered: bool = False
    delivery_failed: bool = False


@dataclass(frozen=True)
class BroadcastEvent:
    """Envelope relayed verbatim to external listeners as {type, data}"""

    type: BroadcastType
    msisdn: str
    data: Dict[str, Any]

    def envelope(self) -> Dict[str, Any]:
        return {"type": self.type.value, "data": self.data}
