"""Journey projection - per-subscriber timelines built from broadcast envelopes"""

import logging
import uuid
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

from airtime_advance.domain.models import BroadcastEvent, JourneyEvent, JourneyEventType
from airtime_advance.infrastructure.scheduler import Clock
from airtime_advance.infrastructure.store import SubscriberRepository

logger = logging.getLogger(__name__)

LABELS: Dict[JourneyEventType, str] = {
    JourneyEventType.CALL_START: "Call started",
    JourneyEventType.CALL_END: "Call ended",
    JourneyEventType.BALANCE_LOW: "Balance low",
    JourneyEventType.OFFER_CREATED: "Offer generated",
    JourneyEventType.SMS_SENT: "SMS sent",
    JourneyEventType.LINK_OPENED: "Link opened",
    JourneyEventType.OFFER_ACCEPTED: "Offer accepted",
    JourneyEventType.OFFER_DECLINED: "Offer declined",
    JourneyEventType.LOAN_DISBURSED: "Loan disbursed",
    JourneyEventType.TOPUP: "Top-up detected",
    JourneyEventType.REPAYMENT_COMPLETED: "Repayment completed",
}

Extractor = Callable[[Mapping[str, Any]], Dict[str, Any]]


def _pick(*keys: str, **defaults: Any) -> Extractor:
    def extract(data: Mapping[str, Any]) -> Dict[str, Any]:
        metadata = {key: data.get(key) for key in keys}
        for key, default in defaults.items():
            metadata[key] = data.get(key) or default
        return metadata

    return extract


# Broadcast type -> (journey type, metadata extractor)
MAPPING: Dict[str, Tuple[JourneyEventType, Extractor]] = {
    "low_balance_trigger": (JourneyEventType.BALANCE_LOW, _pick("session_id", "balance_cents", "threshold_cents")),
    "offer_created": (
        JourneyEventType.OFFER_CREATED,
        _pick("offer_id", "amount_cents", "status", "reasons", "context_reasons", "benefit_estimate"),
    ),
    "sms_sent": (JourneyEventType.SMS_SENT, _pick("offer_id", "message_id", "message")),
    "link_opened": (JourneyEventType.LINK_OPENED, _pick("offer_id", "amount_cents", source="user")),
    "offer_accepted": (JourneyEventType.OFFER_ACCEPTED, _pick("offer_id", "amount_cents", source="user")),
    "offer_declined": (JourneyEventType.OFFER_DECLINED, _pick("offer_id", source="user")),
    "loan_disbursed": (JourneyEventType.LOAN_DISBURSED, _pick("loan_id", "offer_id", "amount_cents", source="system")),
    "topup_processed": (JourneyEventType.TOPUP, _pick("amount_cents", "channel", "transaction_id")),
    "repayment_completed": (JourneyEventType.REPAYMENT_COMPLETED, _pick("loan_id", "amount_cents", "applied_cents")),
}

# Raw network events that appear on the timeline; top-ups arrive as topup_processed
MNO_MAPPING: Dict[str, Tuple[JourneyEventType, Extractor]] = {
    "call_start": (JourneyEventType.CALL_START, _pick("session_id", "region", "cell_id")),
    "call_end": (JourneyEventType.CALL_END, _pick("session_id")),
}


class JourneyProjection:
    """Subscriber of the broadcast channel; unknown envelope types are ignored"""

    def __init__(self, repository: SubscriberRepository, clock: Clock):
        self.repository = repository
        self.clock = clock

    def ingest(self, event: Union[BroadcastEvent, Mapping[str, Any]]) -> Optional[JourneyEvent]:
        envelope = event.envelope() if isinstance(event, BroadcastEvent) else event
        event_type = envelope.get("type")
        data = envelope.get("data") or {}

        if event_type == "mno_event":
            mapped = MNO_MAPPING.get(data.get("event_type"))
        else:
            mapped = MAPPING.get(event_type)
        if mapped is None:
            return None

        msisdn = data.get("msisdn")
        if not msisdn:
            logger.debug("Dropping envelope without msisdn", extra={"envelope_type": event_type})
            return None

        journey_type, extract = mapped
        record = JourneyEvent(
            event_id=str(uuid.uuid4()),
            msisdn=msisdn,
            type=journey_type,
            label=LABELS[journey_type],
            timestamp=self.clock.now(),
            metadata=extract(data),
        )
        self.repository.add_journey_event(record)
        return record

    def timeline(self, msisdn: str, limit: int = 50) -> List[JourneyEvent]:
        return self.repository.journey_for(msisdn, limit)
