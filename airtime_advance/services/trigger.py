"""Trigger gate - debounced, cooled-down low-balance detection during live calls"""

import logging
import threading
from datetime import datetime
from typing import Callable, Dict, Optional

from airtime_advance.config import Settings
from airtime_advance.domain.models import BalanceSample, LoanStatus, LowBalanceTrigger
from airtime_advance.infrastructure.events import EventChannel
from airtime_advance.infrastructure.observability.metrics import trigger_counter
from airtime_advance.infrastructure.store import SubscriberRepository
from airtime_advance.utils.date_utils import seconds_between

logger = logging.getLogger(__name__)


class TriggerGate:
    """
    Fires a LowBalanceTrigger when every condition holds:

    - the sample belongs to a call session that is still active
    - balance is at or below the threshold
    - the debounce window has passed since this subscriber's last trigger
    - no active offer was created within the cooldown window
    - the subscriber has no disbursed loan outstanding

    Debounce absorbs closely spaced ticks; cooldown stops re-offering shortly
    after an offer regardless of call boundaries.
    """

    def __init__(self, repository: SubscriberRepository, settings: Settings):
        self.repository = repository
        self.threshold_cents = settings.low_balance_threshold_cents
        self.debounce_seconds = settings.trigger_debounce_seconds
        self.cooldown_seconds = settings.offer_cooldown_seconds
        self._last_trigger_at: Dict[str, datetime] = {}
        self._lock = threading.Lock()
        self._triggers: EventChannel[LowBalanceTrigger] = EventChannel("low_balance_trigger")

    def on_trigger(self, handler: Callable[[LowBalanceTrigger], None]) -> Callable[[], None]:
        return self._triggers.subscribe(handler)

    def last_trigger_at(self, msisdn: str) -> Optional[datetime]:
        with self._lock:
            return self._last_trigger_at.get(msisdn)

    def check(self, sample: BalanceSample) -> Optional[LowBalanceTrigger]:
        """Evaluate one balance sample; publishes and returns the trigger when it fires"""
        if not sample.session_id:
            return None
        session = self.repository.get_session(sample.session_id)
        if session is None or not session.active:
            return None

        if sample.balance_cents > self.threshold_cents:
            return None

        with self._lock:
            last_trigger = self._last_trigger_at.get(sample.msisdn)
            if last_trigger and seconds_between(last_trigger, sample.timestamp) < self.debounce_seconds:
                return None

            recent_offer = self.repository.active_offer_for(sample.msisdn, sample.timestamp)
            if recent_offer and seconds_between(recent_offer.created_at, sample.timestamp) < self.cooldown_seconds:
                return None

            if any(loan.status == LoanStatus.DISBURSED for loan in self.repository.loans_for(sample.msisdn)):
                return None

            self._last_trigger_at[sample.msisdn] = sample.timestamp

        trigger = LowBalanceTrigger(
            msisdn=sample.msisdn,
            session_id=sample.session_id,
            balance_cents=sample.balance_cents,
            threshold_cents=self.threshold_cents,
            timestamp=sample.timestamp,
        )
        trigger_counter.inc()
        logger.info(
            "Low balance trigger fired",
            extra={"msisdn": trigger.msisdn, "session_id": trigger.session_id, "balance_cents": trigger.balance_cents},
        )
        self._triggers.publish(trigger)
        return trigger
