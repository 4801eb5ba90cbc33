"""SMS gateway mock - offer messages with simulated delivery"""

import logging
import random
import uuid
from typing import List, Optional

from airtime_advance.config import Settings
from airtime_advance.domain.models import Offer, SmsMessage
from airtime_advance.domain.scoring import format_dollars
from airtime_advance.infrastructure.observability.metrics import sms_counter
from airtime_advance.infrastructure.scheduler import Scheduler, TimerKey
from airtime_advance.infrastructure.store import SubscriberRepository

logger = logging.getLogger(__name__)

SMS_DELIVERY = "sms_delivery"


def benefit_text(offer: Offer) -> str:
    if offer.benefit_estimate is None:
        return ""
    parts = []
    if offer.benefit_estimate.voice_minutes:
        parts.append(f"~{offer.benefit_estimate.voice_minutes} min")
    if offer.benefit_estimate.data_days:
        parts.append(f"~{offer.benefit_estimate.data_days} days data")
    return f"({' or '.join(parts)})" if parts else ""


class SmsGateway:
    """
    Stands in for the operator's SMS center.

    Messages are stored as sent immediately; delivery (or failure, at the
    configured rate) is settled by a scheduler timer after a short delay.
    """

    def __init__(self, repository: SubscriberRepository, scheduler: Scheduler, settings: Settings):
        self.repository = repository
        self.scheduler = scheduler
        self.consent_base_url = settings.consent_base_url.rstrip("/")
        self.delivery_delay_seconds = settings.sms_delivery_delay_seconds
        self.failure_rate = max(0.0, min(1.0, settings.sms_delivery_failure_rate))
        self._rng = random.Random(settings.sms_failure_seed)

    def consent_url(self, offer: Offer) -> str:
        return f"{self.consent_base_url}/consent?token={offer.consent_token}"

    def send_offer_sms(self, offer: Offer) -> SmsMessage:
        text = (
            f"You're running low on balance. Want a free {format_dollars(offer.amount_cents)} airtime advance "
            f"to keep your call/data running? {benefit_text(offer)} Repays automatically on next top-up. "
            f"Tap to review: {self.consent_url(offer)}"
        )
        message = SmsMessage(
            message_id=str(uuid.uuid4()),
            msisdn=offer.msisdn,
            message=" ".join(text.split()),
            offer_id=offer.offer_id,
            sent_at=self.scheduler.now(),
        )
        self.repository.save_sms(message)
        sms_counter.labels(state="sent").inc()

        self.scheduler.call_later(
            self.delivery_delay_seconds,
            TimerKey(offer.msisdn, message.message_id, SMS_DELIVERY),
            lambda: self._settle_delivery(message.message_id),
        )
        return message

    def messages(self, msisdn: Optional[str] = None) -> List[SmsMessage]:
        """Newest first; every subscriber's messages when msisdn is None"""
        return self.repository.sms_for(msisdn)

    def _settle_delivery(self, message_id: str) -> None:
        message = self.repository.get_sms(message_id)
        if message is None:
            return

        with self.repository.subscriber_lock(message.msisdn):
            if self._rng.random() < self.failure_rate:
                message.delivered = False
                message.delivery_failed = True
                sms_counter.labels(state="failed").inc()
                logger.warning("SMS delivery failed", extra={"msisdn": message.msisdn, "message_id": message_id})
            else:
                message.delivered = True
                message.delivery_failed = False
                sms_counter.labels(state="delivered").inc()
            self.repository.save_sms(message)
