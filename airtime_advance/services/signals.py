"""Usage-signal source - simulated call sessions, balance depletion and top-ups"""

import logging
import uuid
from dataclasses import replace
from typing import Callable, Optional

from airtime_advance.config import Settings
from airtime_advance.domain.exceptions import InvalidTopUpError, SubscriberNotFoundError
from airtime_advance.domain.models import (
    BalanceSample,
    CallSession,
    SignalKind,
    TopUpChannel,
    TopUpEvent,
    UsageSignal,
)
from airtime_advance.infrastructure.events import EventChannel
from airtime_advance.infrastructure.scheduler import Scheduler, TimerKey
from airtime_advance.infrastructure.store import SubscriberRepository

logger = logging.getLogger(__name__)

DEPLETION = "depletion"


class UsageSignalSource:
    """
    Produces call, balance and top-up signals on the scheduler's clock.

    Every emission goes through one channel; the orchestrator is its
    subscriber. Depletion timers are keyed by (msisdn, session_id) and are
    cancelled before end_call returns, so no tick fires for an ended session.
    """

    def __init__(self, repository: SubscriberRepository, scheduler: Scheduler, settings: Settings):
        self.repository = repository
        self.scheduler = scheduler
        self.settings = settings
        self._signals: EventChannel[UsageSignal] = EventChannel("usage_signals")

    def subscribe(self, handler: Callable[[UsageSignal], None]) -> Callable[[], None]:
        return self._signals.subscribe(handler)

    def _publish(self, kind: SignalKind, msisdn: str, entity) -> None:
        self._signals.publish(UsageSignal(kind=kind, msisdn=msisdn, entity=entity))

    def start_call(self, msisdn: str) -> CallSession:
        """
        Open a call session and start depleting the balance.

        A subscriber has at most one live session: an active one is ended first.

        Raises:
            SubscriberNotFoundError: No profile for msisdn
        """
        with self.repository.subscriber_lock(msisdn):
            profile = self.repository.get_profile(msisdn)
            if profile is None:
                raise SubscriberNotFoundError(msisdn)

            previous = self.repository.active_session_for(msisdn)
            if previous is not None:
                logger.info("Ending previous session before new call", extra={"msisdn": msisdn, "session_id": previous.session_id})
                self.end_call(previous.session_id)

            session_uuid = uuid.uuid4()
            session = CallSession(
                session_id=str(session_uuid),
                msisdn=msisdn,
                start_time=self.scheduler.now(),
                cell_id=f"cell_{session_uuid.int % 1000}",
                region=profile.region,
            )
            self.repository.save_session(session)
            self._publish(SignalKind.CALL_START, msisdn, session)

            # Keep journeys short while still showing a gradual drop
            latest = self.repository.latest_balance(msisdn)
            starting = latest.balance_cents if latest else self.settings.default_balance_cents
            starting = min(
                max(self.settings.call_start_min_balance_cents, starting),
                self.settings.call_start_max_balance_cents,
            )
            self._emit_balance(msisdn, starting, session.session_id)

            self.scheduler.call_every(
                self.settings.depletion_interval_seconds,
                TimerKey(msisdn, session.session_id, DEPLETION),
                lambda: self._tick(msisdn, session.session_id),
            )
            return session

    def end_call(self, session_id: str) -> Optional[CallSession]:
        """End a live session; unknown or already-ended sessions are a no-op returning None"""
        session = self.repository.get_session(session_id)
        if session is None:
            return None

        with self.repository.subscriber_lock(session.msisdn):
            session = self.repository.get_session(session_id)
            if session is None or not session.active:
                return None

            self.scheduler.cancel(TimerKey(session.msisdn, session_id, DEPLETION))

            ended = replace(session, end_time=self.scheduler.now())
            self.repository.save_session(ended)
            self._publish(SignalKind.CALL_END, ended.msisdn, ended)
            return ended

    def simulate_topup(
        self,
        msisdn: str,
        amount_cents: int,
        channel: TopUpChannel = TopUpChannel.ONLINE,
    ) -> TopUpEvent:
        """
        Record a top-up and credit the balance.

        The credit sample is stored and emitted before the top-up itself, so
        repayment sees a balance that already includes the top-up.

        Raises:
            InvalidTopUpError: amount_cents <= 0
            SubscriberNotFoundError: No profile for msisdn
        """
        if amount_cents <= 0:
            raise InvalidTopUpError(f"Top-up amount must be positive, got {amount_cents}")

        with self.repository.subscriber_lock(msisdn):
            profile = self.repository.get_profile(msisdn)
            if profile is None:
                raise SubscriberNotFoundError(msisdn)

            now = self.scheduler.now()
            topup = TopUpEvent(
                msisdn=msisdn,
                amount_cents=amount_cents,
                channel=TopUpChannel(channel),
                timestamp=now,
                transaction_id=str(uuid.uuid4()),
            )
            self.repository.add_topup(topup)

            profile.last_topup_date = now
            profile.total_topups_90d += 1
            self.repository.save_profile(profile)

            self._emit_balance(msisdn, self.repository.current_balance_cents(msisdn) + amount_cents, None)
            self._publish(SignalKind.TOPUP, msisdn, topup)
            return topup

    def stop_all(self) -> None:
        """Cancel every pending depletion tick"""
        for key in self.scheduler.pending_keys():
            if key.purpose == DEPLETION:
                self.scheduler.cancel(key)

    def _tick(self, msisdn: str, session_id: str) -> None:
        with self.repository.subscriber_lock(msisdn):
            session = self.repository.get_session(session_id)
            if session is None or not session.active:
                self.scheduler.cancel(TimerKey(msisdn, session_id, DEPLETION))
                return

            balance = max(0, self.repository.current_balance_cents(msisdn) - self.settings.depletion_step_cents)
            self._emit_balance(msisdn, balance, session_id)

    def _emit_balance(self, msisdn: str, balance_cents: int, session_id: Optional[str]) -> BalanceSample:
        sample = BalanceSample(
            msisdn=msisdn,
            balance_cents=balance_cents,
            timestamp=self.scheduler.now(),
            session_id=session_id,
            consumption_rate_cents_per_min=self.settings.depletion_rate_cents_per_min if session_id else 0,
        )
        self.repository.add_balance_sample(sample)
        self._publish(SignalKind.BALANCE_UPDATE, msisdn, sample)
        return sample
