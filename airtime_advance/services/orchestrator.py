"""Orchestrator - the single component wired to every other, owning the broadcast stream"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from airtime_advance.config import Settings
from airtime_advance.domain.exceptions import (
    InvalidTopUpError,
    InvariantViolationError,
    SubscriberNotFoundError,
)
from airtime_advance.domain.models import (
    BalanceSample,
    BroadcastEvent,
    BroadcastType,
    CallSession,
    Contribution,
    EntityType,
    JourneyEvent,
    LedgerEvent,
    Loan,
    LowBalanceTrigger,
    ModelDecision,
    Offer,
    OfferStatus,
    SignalKind,
    SmsMessage,
    TopUpChannel,
    TopUpEvent,
    UsageSignal,
    UserProfile,
)
from airtime_advance.domain.scoring import generate_user_reasons
from airtime_advance.infrastructure.events import EventChannel
from airtime_advance.infrastructure.scheduler import Scheduler, TimerKey
from airtime_advance.infrastructure.store import SubscriberRepository
from airtime_advance.services.insights import CustomerSummary, InsightService, Kpis
from airtime_advance.services.journey import JourneyProjection
from airtime_advance.services.ledger import Ledger
from airtime_advance.services.offers import OfferLifecycle
from airtime_advance.services.settlement import SettlementEngine
from airtime_advance.services.signals import UsageSignalSource
from airtime_advance.services.sms import SmsGateway
from airtime_advance.services.trigger import TriggerGate
from airtime_advance.utils.serialization import to_jsonable

logger = logging.getLogger(__name__)

OFFER_NOT_AVAILABLE = "Offer not available"
AUTO_SOURCE = "auto"


class ConsentAction(str, Enum):
    ACCEPT = "accept"
    DECLINE = "decline"


@dataclass
class CommandResult:
    success: bool
    message: str
    session_id: Optional[str] = None
    loan_id: Optional[str] = None
    offer_id: Optional[str] = None


@dataclass
class SubscriberSnapshot:
    profile: UserProfile
    balance_cents: int
    balance_history: List[BalanceSample]
    active_call: Optional[CallSession]
    active_offer: Optional[Offer]
    active_loan: Optional[Loan]
    offers: List[Offer] = field(default_factory=list)
    loans: List[Loan] = field(default_factory=list)
    topups: List[TopUpEvent] = field(default_factory=list)
    timeline: List[JourneyEvent] = field(default_factory=list)


@dataclass
class OfferExplanation:
    offer: Offer
    decision: ModelDecision
    contributions: List[Contribution]
    user_reasons: List[str]
    context_reasons: List[str]


class Orchestrator:
    """
    Routes usage signals through the trigger, offer and settlement pipeline.

    Every state change is republished as a BroadcastEvent on one channel. The
    journey projection is the first subscriber, so timelines see events in
    exactly the order external listeners do. Commands and timer callbacks
    for a subscriber run under that subscriber's lock.
    """

    def __init__(
        self,
        repository: SubscriberRepository,
        scheduler: Scheduler,
        ledger: Ledger,
        source: UsageSignalSource,
        trigger: TriggerGate,
        offers: OfferLifecycle,
        settlement: SettlementEngine,
        sms: SmsGateway,
        journey: JourneyProjection,
        insights: InsightService,
        settings: Settings,
    ):
        self.repository = repository
        self.scheduler = scheduler
        self.ledger = ledger
        self.source = source
        self.trigger = trigger
        self.offers = offers
        self.settlement = settlement
        self.sms = sms
        self.journey = journey
        self.insights = insights
        self.settings = settings

        self._broadcasts: EventChannel[BroadcastEvent] = EventChannel("broadcast")
        self._broadcasts.subscribe(self.journey.ingest)
        self.source.subscribe(self._on_signal)
        self.trigger.on_trigger(self._on_trigger)

    def subscribe(self, handler: Callable[[BroadcastEvent], None]) -> Callable[[], None]:
        """Register an external listener; returns its unsubscribe function"""
        return self._broadcasts.subscribe(handler)

    def _broadcast(self, event_type: BroadcastType, msisdn: str, data: Dict[str, Any]) -> None:
        self._broadcasts.publish(BroadcastEvent(type=event_type, msisdn=msisdn, data=to_jsonable(data)))

    # Commands

    def register_subscriber(self, profile: UserProfile) -> CommandResult:
        """Add or replace a profile; a new subscriber starts with the default balance"""
        with self.repository.subscriber_lock(profile.msisdn):
            self.repository.save_profile(profile)
            if self.repository.latest_balance(profile.msisdn) is None:
                self.repository.add_balance_sample(
                    BalanceSample(
                        msisdn=profile.msisdn,
                        balance_cents=self.settings.default_balance_cents,
                        timestamp=self.scheduler.now(),
                    )
                )
        logger.info("Subscriber registered", extra={"msisdn": profile.msisdn})
        return CommandResult(success=True, message="Subscriber registered")

    def start_call(self, msisdn: str) -> CommandResult:
        try:
            session = self.source.start_call(msisdn)
        except SubscriberNotFoundError:
            return CommandResult(success=False, message="Subscriber not found")
        return CommandResult(success=True, message="Call started", session_id=session.session_id)

    def end_call(self, session_id: str) -> CommandResult:
        session = self.source.end_call(session_id)
        if session is None:
            return CommandResult(success=False, message="Session not found or already ended", session_id=session_id)
        return CommandResult(success=True, message="Call ended", session_id=session_id)

    def simulate_topup(
        self,
        msisdn: str,
        amount_cents: int,
        channel: TopUpChannel = TopUpChannel.ONLINE,
    ) -> CommandResult:
        try:
            self.source.simulate_topup(msisdn, amount_cents, channel)
        except InvalidTopUpError as e:
            return CommandResult(success=False, message=str(e))
        except SubscriberNotFoundError:
            return CommandResult(success=False, message="Subscriber not found")
        return CommandResult(success=True, message="Top-up processed")

    def handle_consent(self, token: str, action: ConsentAction, source: str = "user") -> CommandResult:
        """
        Accept (and disburse) or decline the offer behind a consent token.

        Every offer failure reads "Offer not available"; the precise reason goes to
        the logs only.
        """
        try:
            action = ConsentAction(action)
        except ValueError:
            logger.info("Unknown consent action", extra={"action": str(action)})
            return CommandResult(success=False, message="Unknown consent action")
        located = self.repository.offer_by_token(token)
        if located is None:
            return CommandResult(success=False, message=OFFER_NOT_AVAILABLE)

        with self.repository.subscriber_lock(located.msisdn):
            offer = self.offers.get_offer_by_token(token)
            if offer is None:
                return CommandResult(success=False, message=OFFER_NOT_AVAILABLE)

            if action == ConsentAction.DECLINE:
                result = self.offers.decline(offer.offer_id)
                if not result.success:
                    logger.info("Decline refused", extra={"offer_id": offer.offer_id, "failure": result.failure})
                    return CommandResult(success=False, message=OFFER_NOT_AVAILABLE, offer_id=offer.offer_id)
                self._cancel_auto_advance(offer)
                self._broadcast(BroadcastType.OFFER_DECLINED, offer.msisdn, {**to_jsonable(offer), "source": source})
                return CommandResult(success=True, message="Offer declined", offer_id=offer.offer_id)

            result = self.offers.accept(offer.offer_id)
            if not result.success:
                logger.info("Accept refused", extra={"offer_id": offer.offer_id, "failure": result.failure})
                return CommandResult(success=False, message=OFFER_NOT_AVAILABLE, offer_id=offer.offer_id)
            self._cancel_auto_advance(offer)
            self._broadcast(BroadcastType.OFFER_ACCEPTED, offer.msisdn, {**to_jsonable(offer), "source": source})

            disbursal = self.settlement.disburse(offer)
            if not disbursal.success:
                logger.warning("Disbursal failed", extra={"offer_id": offer.offer_id, "failure": disbursal.failure})
                return CommandResult(success=False, message=OFFER_NOT_AVAILABLE, offer_id=offer.offer_id)

            loan = disbursal.loan
            self._broadcast(BroadcastType.LOAN_DISBURSED, loan.msisdn, {**to_jsonable(loan), "source": "system"})
            return CommandResult(
                success=True,
                message="Advance disbursed",
                loan_id=loan.loan_id,
                offer_id=offer.offer_id,
            )

    def mark_link_opened(self, token: str, source: str = "user") -> CommandResult:
        located = self.repository.offer_by_token(token)
        if located is None:
            return CommandResult(success=False, message=OFFER_NOT_AVAILABLE)

        with self.repository.subscriber_lock(located.msisdn):
            offer = self.offers.get_offer_by_token(token)
            if offer is None:
                return CommandResult(success=False, message=OFFER_NOT_AVAILABLE)

            already_open = offer.status == OfferStatus.LINK_OPENED
            result = self.offers.mark_link_opened(offer.offer_id)
            if not result.success:
                return CommandResult(success=False, message=OFFER_NOT_AVAILABLE, offer_id=offer.offer_id)
            if not already_open:
                self._broadcast(BroadcastType.LINK_OPENED, offer.msisdn, {**to_jsonable(offer), "source": source})
            return CommandResult(success=True, message="Link opened", offer_id=offer.offer_id)

    def shutdown(self) -> None:
        """Cancel every pending timer and stop the scheduler"""
        self.source.stop_all()
        self.scheduler.shutdown()

    # Pipeline

    def _on_signal(self, signal: UsageSignal) -> None:
        self._broadcast(
            BroadcastType.MNO_EVENT,
            signal.msisdn,
            {"event_type": signal.kind.value, **to_jsonable(signal.entity)},
        )

        if signal.kind == SignalKind.BALANCE_UPDATE:
            self.trigger.check(signal.entity)
        elif signal.kind == SignalKind.TOPUP:
            self._on_topup(signal.entity)

    def _on_topup(self, topup: TopUpEvent) -> None:
        outcome = self.settlement.process_topup(topup)
        self._broadcast(
            BroadcastType.TOPUP_PROCESSED,
            topup.msisdn,
            {
                **to_jsonable(topup),
                "loan_id": outcome.loan.loan_id if outcome else None,
                "applied_cents": outcome.applied_cents if outcome else 0,
                "balance_cents": outcome.balance_cents if outcome else self.repository.current_balance_cents(topup.msisdn),
            },
        )
        if outcome is not None and outcome.completed:
            self._broadcast(
                BroadcastType.REPAYMENT_COMPLETED,
                topup.msisdn,
                {**to_jsonable(outcome.loan), "applied_cents": outcome.applied_cents},
            )

    def _on_trigger(self, trigger: LowBalanceTrigger) -> None:
        self._broadcast(BroadcastType.LOW_BALANCE_TRIGGER, trigger.msisdn, to_jsonable(trigger))

        creation = self.offers.create_offer(trigger.msisdn, trigger.session_id)
        if creation.existing:
            return
        if not creation.created:
            self._broadcast(
                BroadcastType.OFFER_NOT_CREATED,
                trigger.msisdn,
                {
                    "msisdn": trigger.msisdn,
                    "session_id": trigger.session_id,
                    "reason": creation.eligibility.rejection if creation.eligibility else None,
                },
            )
            return

        offer = creation.offer
        self._broadcast(BroadcastType.OFFER_CREATED, offer.msisdn, to_jsonable(offer))

        message = self.sms.send_offer_sms(offer)
        sent = self.offers.mark_sms_sent(offer.offer_id, message.message_id)
        if not sent.success:
            raise InvariantViolationError(f"Fresh offer {offer.offer_id} rejected sms_sent: {sent.failure}")
        self._broadcast(BroadcastType.SMS_SENT, offer.msisdn, to_jsonable(message))

        if self.settings.auto_advance_consent:
            self.scheduler.call_later(
                self.settings.auto_link_open_delay_seconds,
                TimerKey(offer.msisdn, offer.offer_id, "auto_link_open"),
                lambda: self._auto_open(offer.consent_token),
            )

    def _auto_open(self, token: str) -> None:
        opened = self.mark_link_opened(token, source=AUTO_SOURCE)
        if not opened.success:
            return
        offer = self.repository.offer_by_token(token)
        self.scheduler.call_later(
            self.settings.auto_accept_delay_seconds,
            TimerKey(offer.msisdn, offer.offer_id, "auto_accept"),
            lambda: self.handle_consent(token, ConsentAction.ACCEPT, source=AUTO_SOURCE),
        )

    def _cancel_auto_advance(self, offer: Offer) -> None:
        for purpose in ("auto_link_open", "auto_accept"):
            self.scheduler.cancel(TimerKey(offer.msisdn, offer.offer_id, purpose))

    # Queries

    def get_offer_by_token(self, token: str) -> Optional[Offer]:
        return self.offers.get_offer_by_token(token)

    def get_subscriber_snapshot(self, msisdn: str) -> Optional[SubscriberSnapshot]:
        profile = self.repository.get_profile(msisdn)
        if profile is None:
            return None
        now = self.scheduler.now()
        return SubscriberSnapshot(
            profile=profile,
            balance_cents=self.repository.current_balance_cents(msisdn),
            balance_history=self.repository.balance_history(msisdn),
            active_call=self.repository.active_session_for(msisdn),
            active_offer=self.repository.active_offer_for(msisdn, now),
            active_loan=self.repository.active_loan_for(msisdn),
            offers=sorted(self.repository.offers_for(msisdn), key=lambda o: o.created_at, reverse=True),
            loans=self.repository.loans_for(msisdn),
            topups=self.repository.topups_for(msisdn),
            timeline=self.journey.timeline(msisdn),
        )

    def get_all_offers(self) -> List[Offer]:
        return sorted(self.repository.all_offers(), key=lambda o: o.created_at, reverse=True)

    def get_all_loans(self) -> List[Loan]:
        return self.repository.all_loans()

    def get_ledger(
        self,
        entity_id: Optional[str] = None,
        entity_type: Optional[EntityType] = None,
        msisdn: Optional[str] = None,
        limit: int = 100,
    ) -> List[LedgerEvent]:
        return self.ledger.query(entity_id=entity_id, entity_type=entity_type, msisdn=msisdn, limit=limit)

    def get_model_decision(self, decision_id: str) -> Optional[ModelDecision]:
        return self.repository.get_decision(decision_id)

    def get_offer_explainability(self, offer_id: str) -> Optional[OfferExplanation]:
        """
        Decision outputs, ranked contributions and reasons behind an offer.

        Raises:
            InvariantViolationError: The offer's model decision is missing
        """
        offer = self.repository.get_offer(offer_id)
        if offer is None:
            return None
        decision = self.repository.get_decision(offer.model_decision_id)
        if decision is None:
            logger.error(
                "Offer references a missing model decision",
                extra={"offer_id": offer_id, "decision_id": offer.model_decision_id},
            )
            raise InvariantViolationError(f"Model decision {offer.model_decision_id} missing for offer {offer_id}")
        return OfferExplanation(
            offer=offer,
            decision=decision,
            contributions=decision.contributions,
            user_reasons=generate_user_reasons(decision),
            context_reasons=offer.context_reasons,
        )

    def get_sms_messages(self, msisdn: Optional[str] = None) -> List[SmsMessage]:
        return self.sms.messages(msisdn)

    def get_timeline(self, msisdn: str, limit: int = 50) -> List[JourneyEvent]:
        return self.journey.timeline(msisdn, limit)

    def get_customer_summary(self, msisdn: str) -> Optional[CustomerSummary]:
        return self.insights.customer_summary(msisdn, self.scheduler.now())

    def get_customer_summaries(self) -> List[CustomerSummary]:
        return self.insights.customer_summaries(self.scheduler.now())

    def get_kpis(self) -> Kpis:
        return self.insights.kpis()
