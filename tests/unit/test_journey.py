"""Unit tests for the journey projection"""

import pytest

from airtime_advance.domain.models import BroadcastEvent, BroadcastType, JourneyEventType
from airtime_advance.services.journey import JourneyProjection

MSISDN = "254700000001"


@pytest.fixture
def projection(repository, scheduler):
    return JourneyProjection(repository, scheduler)


def broadcast(event_type, /, **data):
    return BroadcastEvent(type=event_type, msisdn=MSISDN, data={"msisdn": MSISDN, **data})


@pytest.mark.parametrize(
    "event_type,expected",
    [
        (BroadcastType.LOW_BALANCE_TRIGGER, JourneyEventType.BALANCE_LOW),
        (BroadcastType.OFFER_CREATED, JourneyEventType.OFFER_CREATED),
        (BroadcastType.SMS_SENT, JourneyEventType.SMS_SENT),
        (BroadcastType.LINK_OPENED, JourneyEventType.LINK_OPENED),
        (BroadcastType.OFFER_ACCEPTED, JourneyEventType.OFFER_ACCEPTED),
        (BroadcastType.OFFER_DECLINED, JourneyEventType.OFFER_DECLINED),
        (BroadcastType.LOAN_DISBURSED, JourneyEventType.LOAN_DISBURSED),
        (BroadcastType.TOPUP_PROCESSED, JourneyEventType.TOPUP),
        (BroadcastType.REPAYMENT_COMPLETED, JourneyEventType.REPAYMENT_COMPLETED),
    ],
)
def test_broadcast_types_map_to_journey_types(projection, event_type, expected):
    record = projection.ingest(broadcast(event_type))

    assert record.type == expected
    assert record.label
    assert projection.timeline(MSISDN) == [record]


def test_metadata_extracted(projection, scheduler):
    record = projection.ingest(
        broadcast(BroadcastType.OFFER_CREATED, offer_id="o1", amount_cents=500, status="created", consent_token="secret")
    )

    assert record.metadata["offer_id"] == "o1"
    assert record.metadata["amount_cents"] == 500
    assert "consent_token" not in record.metadata
    assert record.timestamp == scheduler.now()


def test_source_defaults(projection):
    opened = projection.ingest(broadcast(BroadcastType.LINK_OPENED, offer_id="o1"))
    accepted = projection.ingest(broadcast(BroadcastType.OFFER_ACCEPTED, offer_id="o1", source="auto"))
    disbursed = projection.ingest(broadcast(BroadcastType.LOAN_DISBURSED, loan_id="l1"))

    assert opened.metadata["source"] == "user"
    assert accepted.metadata["source"] == "auto"
    assert disbursed.metadata["source"] == "system"


def test_call_events_from_network_envelopes(projection):
    start = projection.ingest(broadcast(BroadcastType.MNO_EVENT, event_type="call_start", session_id="s1", region="Nairobi"))
    end = projection.ingest(broadcast(BroadcastType.MNO_EVENT, event_type="call_end", session_id="s1"))

    assert start.type == JourneyEventType.CALL_START
    assert start.metadata["region"] == "Nairobi"
    assert end.type == JourneyEventType.CALL_END


@pytest.mark.parametrize("event_type", ["balance_update", "topup"])
def test_other_network_events_ignored(projection, event_type):
    assert projection.ingest(broadcast(BroadcastType.MNO_EVENT, event_type=event_type)) is None
    assert projection.timeline(MSISDN) == []


def test_unknown_and_unmapped_envelopes_ignored(projection):
    assert projection.ingest({"type": "something_new", "data": {"msisdn": MSISDN}}) is None
    assert projection.ingest(broadcast(BroadcastType.OFFER_NOT_CREATED, reason="opted_out")) is None
    assert projection.ingest({"type": "offer_created", "data": {}}) is None
    assert projection.timeline(MSISDN) == []


def test_plain_envelope_accepted(projection):
    record = projection.ingest({"type": "sms_sent", "data": {"msisdn": MSISDN, "message_id": "m1"}})

    assert record.type == JourneyEventType.SMS_SENT
    assert record.metadata["message_id"] == "m1"


def test_timeline_keeps_arrival_order(projection, scheduler):
    projection.ingest(broadcast(BroadcastType.LOW_BALANCE_TRIGGER))
    projection.ingest(broadcast(BroadcastType.OFFER_CREATED))
    projection.ingest(broadcast(BroadcastType.SMS_SENT))
    projection.ingest({"type": "sms_sent", "data": {"msisdn": "254700000009"}})

    assert [e.type for e in projection.timeline(MSISDN)] == [
        JourneyEventType.BALANCE_LOW,
        JourneyEventType.OFFER_CREATED,
        JourneyEventType.SMS_SENT,
    ]
    assert [e.type for e in projection.timeline(MSISDN, limit=1)] == [JourneyEventType.SMS_SENT]
