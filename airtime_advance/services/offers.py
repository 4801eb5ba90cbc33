"""Offer lifecycle - creation, consent tokens and the consent state machine"""

import logging
import secrets
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from airtime_advance.config import Settings
from airtime_advance.domain.models import (
    EntityType,
    LedgerEventType,
    Offer,
    OfferStatus,
)
from airtime_advance.infrastructure.observability.metrics import offer_transition_counter
from airtime_advance.infrastructure.scheduler import Clock
from airtime_advance.infrastructure.store import SubscriberRepository
from airtime_advance.services.eligibility import EligibilityGate, EligibilityResult
from airtime_advance.services.insights import build_offer_context_reasons
from airtime_advance.services.ledger import Ledger
from airtime_advance.utils.date_utils import add_seconds

logger = logging.getLogger(__name__)

# created -> sms_sent -> link_opened -> {accepted, declined, expired}; accepted -> disbursed
ALLOWED_TRANSITIONS = {
    OfferStatus.CREATED: {OfferStatus.SMS_SENT, OfferStatus.DECLINED, OfferStatus.EXPIRED},
    OfferStatus.SMS_SENT: {OfferStatus.LINK_OPENED, OfferStatus.ACCEPTED, OfferStatus.DECLINED, OfferStatus.EXPIRED},
    OfferStatus.LINK_OPENED: {OfferStatus.ACCEPTED, OfferStatus.DECLINED, OfferStatus.EXPIRED},
    OfferStatus.ACCEPTED: {OfferStatus.DISBURSED},
}

LEDGER_TYPES = {
    OfferStatus.SMS_SENT: LedgerEventType.SMS_SENT,
    OfferStatus.LINK_OPENED: LedgerEventType.LINK_OPENED,
    OfferStatus.ACCEPTED: LedgerEventType.OFFER_ACCEPTED,
    OfferStatus.DECLINED: LedgerEventType.OFFER_DECLINED,
    OfferStatus.EXPIRED: LedgerEventType.OFFER_EXPIRED,
}


class TransitionFailure(str, Enum):
    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    ILLEGAL_TRANSITION = "illegal_transition"


@dataclass
class TransitionResult:
    success: bool
    offer: Optional[Offer] = None
    failure: Optional[TransitionFailure] = None


@dataclass
class OfferCreation:
    """Outcome of create_offer: a new offer, the existing active one, or a rejection"""

    offer: Optional[Offer]
    eligibility: Optional[EligibilityResult] = None
    existing: bool = False

    @property
    def created(self) -> bool:
        return self.offer is not None and not self.existing


class OfferLifecycle:
    """
    Owns every offer status change.

    The consent token is the only external handle on an offer. Expiry is
    detected lazily: reading or acting on an offer past expires_at moves it to
    expired. Every transition appends one ledger entry; failed transitions
    leave the offer untouched.
    """

    def __init__(
        self,
        repository: SubscriberRepository,
        eligibility: EligibilityGate,
        ledger: Ledger,
        clock: Clock,
        settings: Settings,
    ):
        self.repository = repository
        self.eligibility = eligibility
        self.ledger = ledger
        self.clock = clock
        self.expiry_seconds = settings.offer_expiry_seconds

    def create_offer(self, msisdn: str, session_id: str) -> OfferCreation:
        """Create an offer if the subscriber is eligible and has no active offer"""
        now = self.clock.now()

        existing = self.repository.active_offer_for(msisdn, now)
        if existing is not None:
            logger.info("Active offer already exists", extra={"msisdn": msisdn, "offer_id": existing.offer_id})
            return OfferCreation(offer=existing, existing=True)

        eligibility = self.eligibility.evaluate(msisdn, now)
        if not eligibility.eligible:
            self.ledger.append(
                LedgerEventType.OFFER_REJECTED,
                entity_id=msisdn,
                entity_type=EntityType.USER,
                msisdn=msisdn,
                payload={
                    "session_id": session_id,
                    "reason": eligibility.rejection,
                    "model_decision_id": eligibility.decision.decision_id if eligibility.decision else None,
                },
            )
            return OfferCreation(offer=None, eligibility=eligibility)

        offer = Offer(
            offer_id=str(uuid.uuid4()),
            msisdn=msisdn,
            session_id=session_id,
            amount_cents=eligibility.approved_amount_cents,
            status=OfferStatus.CREATED,
            created_at=now,
            expires_at=add_seconds(now, self.expiry_seconds),
            consent_token=secrets.token_urlsafe(24),
            model_decision_id=eligibility.decision.decision_id,
            reasons=list(eligibility.reasons),
            context_reasons=build_offer_context_reasons(self.repository, msisdn, now),
            benefit_estimate=eligibility.benefit_estimate,
        )
        self.repository.save_offer(offer)
        offer_transition_counter.labels(status=OfferStatus.CREATED.value).inc()

        self.ledger.append(
            LedgerEventType.OFFER_CREATED,
            entity_id=offer.offer_id,
            entity_type=EntityType.OFFER,
            msisdn=msisdn,
            payload={
                "amount_cents": offer.amount_cents,
                "session_id": session_id,
                "model_decision_id": offer.model_decision_id,
                "reasons": offer.reasons,
            },
        )
        return OfferCreation(offer=offer, eligibility=eligibility)

    def get_offer_by_token(self, token: str) -> Optional[Offer]:
        """Offer for a consent token; None when unknown or expired (expiring it on the way)"""
        offer = self.repository.offer_by_token(token)
        if offer is None:
            return None
        if self._expire_if_due(offer):
            return None
        return offer

    def mark_sms_sent(self, offer_id: str, message_id: str) -> TransitionResult:
        return self._transition(offer_id, OfferStatus.SMS_SENT, {"message_id": message_id})

    def mark_link_opened(self, offer_id: str) -> TransitionResult:
        """Repeat opens of the same link succeed without another ledger entry"""
        offer = self.repository.get_offer(offer_id)
        if offer is not None and offer.status == OfferStatus.LINK_OPENED and not self._expire_if_due(offer):
            return TransitionResult(success=True, offer=offer)
        return self._transition(offer_id, OfferStatus.LINK_OPENED)

    def accept(self, offer_id: str) -> TransitionResult:
        """Legal only from sms_sent or link_opened, before expiry"""
        return self._transition(offer_id, OfferStatus.ACCEPTED)

    def decline(self, offer_id: str) -> TransitionResult:
        """Legal from any non-terminal state, before expiry"""
        return self._transition(offer_id, OfferStatus.DECLINED)

    def mark_disbursed(self, offer_id: str, loan_id: str) -> TransitionResult:
        offer = self.repository.get_offer(offer_id)
        if offer is None:
            return TransitionResult(success=False, failure=TransitionFailure.NOT_FOUND)
        if offer.status != OfferStatus.ACCEPTED:
            return TransitionResult(success=False, offer=offer, failure=TransitionFailure.ILLEGAL_TRANSITION)
        # The disbursal_completed entry is written by settlement against the loan
        self._apply(offer, OfferStatus.DISBURSED, ledger=False, payload={"loan_id": loan_id})
        return TransitionResult(success=True, offer=offer)

    def _transition(
        self,
        offer_id: str,
        target: OfferStatus,
        payload: Optional[Dict[str, Any]] = None,
    ) -> TransitionResult:
        offer = self.repository.get_offer(offer_id)
        if offer is None:
            return TransitionResult(success=False, failure=TransitionFailure.NOT_FOUND)

        if self._expire_if_due(offer):
            return TransitionResult(success=False, offer=offer, failure=TransitionFailure.EXPIRED)

        if target not in ALLOWED_TRANSITIONS.get(offer.status, set()):
            logger.warning(
                "Illegal offer transition",
                extra={"offer_id": offer_id, "from_status": offer.status.value, "to_status": target.value},
            )
            return TransitionResult(success=False, offer=offer, failure=TransitionFailure.ILLEGAL_TRANSITION)

        self._apply(offer, target, ledger=True, payload=payload)
        return TransitionResult(success=True, offer=offer)

    def _expire_if_due(self, offer: Offer) -> bool:
        """Move a live offer past its deadline to expired; True if the offer is expired"""
        if offer.status == OfferStatus.EXPIRED:
            return True
        if offer.expires_at > self.clock.now():
            return False
        if OfferStatus.EXPIRED not in ALLOWED_TRANSITIONS.get(offer.status, set()):
            # Accepted, declined and disbursed offers keep their final status
            return False
        self._apply(offer, OfferStatus.EXPIRED, ledger=True)
        return True

    def _apply(self, offer: Offer, target: OfferStatus, ledger: bool, payload: Optional[Dict[str, Any]] = None) -> None:
        previous = offer.status
        offer.status = target
        self.repository.save_offer(offer)
        offer_transition_counter.labels(status=target.value).inc()

        if ledger:
            self.ledger.append(
                LEDGER_TYPES[target],
                entity_id=offer.offer_id,
                entity_type=EntityType.OFFER,
                msisdn=offer.msisdn,
                payload={"previous_status": previous, "amount_cents": offer.amount_cents, **(payload or {})},
            )
