"""Pydantic schemas for API request/response validation"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from airtime_advance.domain.models import (
    DeviceType,
    EntityType,
    JourneyEventType,
    LedgerEventType,
    LoanStatus,
    OfferStatus,
    TopUpChannel,
)
from airtime_advance.services.insights import CustomerState, RiskTier
from airtime_advance.services.orchestrator import ConsentAction


class SubscriberRequest(BaseModel):
    """Request body for POST /v1/subscribers"""

    msisdn: str = Field(..., min_length=3, description="Subscriber phone number")
    tenure_days: int = Field(..., ge=0)
    avg_topup_amount_cents: int = Field(..., ge=0)
    topup_frequency_30d: int = Field(..., ge=0)
    opt_out: bool = False
    last_topup_date: Optional[datetime] = None
    total_topups_90d: int = Field(0, ge=0)
    on_time_repay_rate: float = Field(1.0, ge=0, le=1)
    recent_call_drops: int = Field(0, ge=0)
    device_type: DeviceType = DeviceType.SMARTPHONE
    region: Optional[str] = None
    network_quality_score: float = Field(0.8, ge=0, le=1)


class StartCallRequest(BaseModel):
    msisdn: str = Field(..., min_length=1)


class TopUpRequest(BaseModel):
    """Request body for POST /v1/topups"""

    msisdn: str = Field(..., min_length=1)
    amount_cents: int = Field(..., gt=0, description="Top-up amount in cents")
    channel: TopUpChannel = TopUpChannel.ONLINE


class ConsentRequest(BaseModel):
    """Request body for POST /v1/consent"""

    token: str = Field(..., min_length=1)
    action: ConsentAction


class CommandResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    success: bool
    message: str
    session_id: Optional[str] = None
    loan_id: Optional[str] = None
    offer_id: Optional[str] = None


class BenefitSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    voice_minutes: int
    data_days: int


class ConsentOfferResponse(BaseModel):
    """What the consent page shows; never carries rejection or risk detail"""

    offer_id: str
    amount_cents: int
    status: str
    expires_at: datetime
    reasons: List[str]
    benefit_estimate: Optional[BenefitSchema] = None


class DomainSchema(BaseModel):
    """Response schema read straight off a domain dataclass"""

    model_config = ConfigDict(from_attributes=True)


class ProfileSchema(DomainSchema):
    msisdn: str
    tenure_days: int
    avg_topup_amount_cents: int
    topup_frequency_30d: int
    opt_out: bool
    last_topup_date: Optional[datetime] = None
    total_topups_90d: int
    on_time_repay_rate: float
    recent_call_drops: int
    device_type: DeviceType
    region: Optional[str] = None
    network_quality_score: float


class CallSessionSchema(DomainSchema):
    session_id: str
    msisdn: str
    start_time: datetime
    end_time: Optional[datetime] = None
    cell_id: Optional[str] = None
    region: Optional[str] = None


class BalanceSampleSchema(DomainSchema):
    msisdn: str
    balance_cents: int
    timestamp: datetime
    session_id: Optional[str] = None
    consumption_rate_cents_per_min: int


class TopUpSchema(DomainSchema):
    msisdn: str
    amount_cents: int
    channel: TopUpChannel
    timestamp: datetime
    transaction_id: str


class OfferSchema(DomainSchema):
    offer_id: str
    msisdn: str
    session_id: str
    amount_cents: int
    status: OfferStatus
    created_at: datetime
    expires_at: datetime
    consent_token: str
    model_decision_id: str
    reasons: List[str]
    context_reasons: List[str]
    benefit_estimate: Optional[BenefitSchema] = None


class LoanSchema(DomainSchema):
    loan_id: str
    offer_id: str
    msisdn: str
    amount_cents: int
    outstanding_cents: int
    status: LoanStatus
    disbursed_at: Optional[datetime] = None
    repaid_at: Optional[datetime] = None
    repayment_method: str


class JourneyEventSchema(DomainSchema):
    event_id: str
    msisdn: str
    type: JourneyEventType
    label: str
    timestamp: datetime
    metadata: Dict[str, Any]


class TimelineResponse(BaseModel):
    msisdn: str
    events: List[JourneyEventSchema]


class SubscriberSnapshotResponse(DomainSchema):
    """Everything known about one subscriber"""

    profile: ProfileSchema
    balance_cents: int
    balance_history: List[BalanceSampleSchema]
    active_call: Optional[CallSessionSchema] = None
    active_offer: Optional[OfferSchema] = None
    active_loan: Optional[LoanSchema] = None
    offers: List[OfferSchema]
    loans: List[LoanSchema]
    topups: List[TopUpSchema]
    timeline: List[JourneyEventSchema]


class SmsSchema(DomainSchema):
    message_id: str
    msisdn: str
    message: str
    offer_id: Optional[str] = None
    sent_at: Optional[datetime] = None
    delivered: bool
    delivery_failed: bool


class LedgerEventSchema(DomainSchema):
    event_id: str
    type: LedgerEventType
    entity_id: str
    entity_type: EntityType
    msisdn: Optional[str] = None
    timestamp: datetime
    payload: Dict[str, Any]


class LedgerResponse(BaseModel):
    """Response body for GET /v1/ledger"""

    count: int
    events: List[LedgerEventSchema]


class ContributionSchema(DomainSchema):
    feature_name: str
    contribution: float
    importance: float


class ModelOutputsSchema(DomainSchema):
    p_repay: float
    confidence: float
    recommended_limit_cents: int


class FeatureVectorSchema(DomainSchema):
    msisdn: str
    timestamp: datetime
    topup_frequency_30d: int
    avg_topup_amount_cents: int
    last_topup_days_ago: int
    total_topups_90d: int
    tenure_days: int
    on_time_repay_rate: float
    total_loans: int
    total_repaid: int
    repayment_ratio: float
    recent_call_drops: int
    avg_call_duration_minutes: float
    recent_low_balance_events: int
    device_type: DeviceType
    network_quality_score: float
    region: Optional[str] = None


class ModelDecisionResponse(DomainSchema):
    decision_id: str
    model_name: str
    model_version: str
    timestamp: datetime
    msisdn: str
    features: FeatureVectorSchema
    outputs: ModelOutputsSchema
    contributions: List[ContributionSchema]


class ExplanationResponse(BaseModel):
    """Response body for GET /v1/offers/{offer_id}/explain"""

    offer_id: str
    model_decision_id: str
    model_name: str
    model_version: str
    outputs: ModelOutputsSchema
    contributions: List[ContributionSchema]
    user_reasons: List[str]
    context_reasons: List[str]


class CustomerStatsSchema(DomainSchema):
    total_loans: int
    active_loans: int
    total_offers: int
    offers_today: int
    acceptance_rate: float
    repayment_rate: float
    total_exposure_cents: int
    avg_loan_amount_cents: float


class CustomerSummarySchema(DomainSchema):
    msisdn: str
    profile: ProfileSchema
    stats: CustomerStatsSchema
    risk_tier: RiskTier
    state: CustomerState
    state_hint: str
    balance_cents: int
    previous_balance_cents: Optional[int] = None
    balance_change_cents: int
    balance_updated_at: Optional[datetime] = None
    last_offer_at: Optional[datetime] = None
    last_topup_at: Optional[datetime] = None
    last_loan_at: Optional[datetime] = None
    active_call: Optional[CallSessionSchema] = None
    active_offer: Optional[OfferSchema] = None
    active_loan: Optional[LoanSchema] = None


class CustomerDetailResponse(BaseModel):
    """Response body for GET /v1/customers/{msisdn}"""

    summary: CustomerSummarySchema
    detail: SubscriberSnapshotResponse


class KpiResponse(DomainSchema):
    customers: int
    customers_on_call: int
    offers_total: int
    offers_by_status: Dict[str, int]
    acceptance_rate: float
    loans_total: int
    loans_active: int
    loans_repaid: int
    repayment_rate: float
    disbursed_cents: int
    outstanding_cents: int
    sms_total: int
    sms_delivered: int
    sms_failed: int
