"""In-memory repository for subscriber-scoped state"""

import threading
from collections import defaultdict
from datetime import datetime
from typing import DefaultDict, Dict, List, Optional

from airtime_advance.domain.models import (
    ACTIVE_LOAN_STATUSES,
    BalanceSample,
    CallSession,
    JourneyEvent,
    Loan,
    ModelDecision,
    Offer,
    SmsMessage,
    TopUpEvent,
    UserProfile,
)


class SubscriberRepository:
    """
    Single owner of profiles, sessions, balances, top-ups, offers, loans,
    model decisions, SMS messages and journey timelines.

    Built once by the composition root and handed to every component. Dict
    access is guarded by one re-entrant lock; callers that need a consistent
    multi-step view of one subscriber hold subscriber_lock(msisdn).
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._subscriber_locks: Dict[str, threading.RLock] = {}
        self._profiles: Dict[str, UserProfile] = {}
        self._sessions: Dict[str, CallSession] = {}
        self._balances: DefaultDict[str, List[BalanceSample]] = defaultdict(list)
        self._topups: DefaultDict[str, List[TopUpEvent]] = defaultdict(list)
        self._offers: Dict[str, Offer] = {}
        self._offer_ids_by_token: Dict[str, str] = {}
        self._loans: Dict[str, Loan] = {}
        self._decisions: Dict[str, ModelDecision] = {}
        self._sms: Dict[str, SmsMessage] = {}
        self._journeys: DefaultDict[str, List[JourneyEvent]] = defaultdict(list)

    def subscriber_lock(self, msisdn: str) -> threading.RLock:
        """Lock serialising every mutation of one subscriber's state"""
        with self._lock:
            lock = self._subscriber_locks.get(msisdn)
            if lock is None:
                lock = self._subscriber_locks[msisdn] = threading.RLock()
            return lock

    # Profiles

    def get_profile(self, msisdn: str) -> Optional[UserProfile]:
        with self._lock:
            return self._profiles.get(msisdn)

    def save_profile(self, profile: UserProfile) -> None:
        with self._lock:
            self._profiles[profile.msisdn] = profile

    def all_profiles(self) -> List[UserProfile]:
        with self._lock:
            return list(self._profiles.values())

    # Call sessions

    def get_session(self, session_id: str) -> Optional[CallSession]:
        with self._lock:
            return self._sessions.get(session_id)

    def save_session(self, session: CallSession) -> None:
        with self._lock:
            self._sessions[session.session_id] = session

    def sessions_for(self, msisdn: str) -> List[CallSession]:
        with self._lock:
            return [s for s in self._sessions.values() if s.msisdn == msisdn]

    def active_session_for(self, msisdn: str) -> Optional[CallSession]:
        return next((s for s in self.sessions_for(msisdn) if s.active), None)

    # Balances

    def add_balance_sample(self, sample: BalanceSample) -> None:
        with self._lock:
            self._balances[sample.msisdn].append(sample)

    def latest_balance(self, msisdn: str) -> Optional[BalanceSample]:
        with self._lock:
            samples = self._balances.get(msisdn)
            return samples[-1] if samples else None

    def current_balance_cents(self, msisdn: str) -> int:
        latest = self.latest_balance(msisdn)
        return latest.balance_cents if latest else 0

    def balance_history(self, msisdn: str, limit: int = 50) -> List[BalanceSample]:
        """Oldest first; limit <= 0 returns the whole history"""
        with self._lock:
            samples = list(self._balances.get(msisdn, []))
        return samples if limit <= 0 else samples[-limit:]

    # Top-ups

    def add_topup(self, topup: TopUpEvent) -> None:
        with self._lock:
            self._topups[topup.msisdn].append(topup)

    def topups_for(self, msisdn: str) -> List[TopUpEvent]:
        with self._lock:
            return list(self._topups.get(msisdn, []))

    # Offers

    def save_offer(self, offer: Offer) -> None:
        with self._lock:
            self._offers[offer.offer_id] = offer
            self._offer_ids_by_token[offer.consent_token] = offer.offer_id

    def get_offer(self, offer_id: str) -> Optional[Offer]:
        with self._lock:
            return self._offers.get(offer_id)

    def offer_by_token(self, token: str) -> Optional[Offer]:
        with self._lock:
            offer_id = self._offer_ids_by_token.get(token)
            return self._offers.get(offer_id) if offer_id else None

    def offers_for(self, msisdn: str) -> List[Offer]:
        with self._lock:
            return [o for o in self._offers.values() if o.msisdn == msisdn]

    def all_offers(self) -> List[Offer]:
        with self._lock:
            return list(self._offers.values())

    def active_offer_for(self, msisdn: str, now: datetime) -> Optional[Offer]:
        return next((o for o in self.offers_for(msisdn) if o.is_active(now)), None)

    # Loans

    def save_loan(self, loan: Loan) -> None:
        with self._lock:
            self._loans[loan.loan_id] = loan

    def get_loan(self, loan_id: str) -> Optional[Loan]:
        with self._lock:
            return self._loans.get(loan_id)

    def loans_for(self, msisdn: str) -> List[Loan]:
        with self._lock:
            return [loan for loan in self._loans.values() if loan.msisdn == msisdn]

    def all_loans(self) -> List[Loan]:
        with self._lock:
            return list(self._loans.values())

    def active_loan_for(self, msisdn: str) -> Optional[Loan]:
        """Pending or disbursed loan, if any"""
        return next((loan for loan in self.loans_for(msisdn) if loan.status in ACTIVE_LOAN_STATUSES), None)

    # Model decisions

    def save_decision(self, decision: ModelDecision) -> None:
        with self._lock:
            self._decisions[decision.decision_id] = decision

    def get_decision(self, decision_id: str) -> Optional[ModelDecision]:
        with self._lock:
            return self._decisions.get(decision_id)

    # SMS

    def save_sms(self, message: SmsMessage) -> None:
        with self._lock:
            self._sms[message.message_id] = message

    def get_sms(self, message_id: str) -> Optional[SmsMessage]:
        with self._lock:
            return self._sms.get(message_id)

    def sms_for(self, msisdn: Optional[str] = None) -> List[SmsMessage]:
        """Newest first"""
        with self._lock:
            messages = [m for m in self._sms.values() if msisdn is None or m.msisdn == msisdn]
        return sorted(messages, key=lambda m: m.sent_at.timestamp() if m.sent_at else 0.0, reverse=True)

    # Journey timelines

    def add_journey_event(self, event: JourneyEvent) -> None:
        with self._lock:
            self._journeys[event.msisdn].append(event)

    def journey_for(self, msisdn: str, limit: int = 50) -> List[JourneyEvent]:
        """Arrival order; the last `limit` events"""
        with self._lock:
            events = list(self._journeys.get(msisdn, []))
        return events if limit <= 0 else events[-limit:]
