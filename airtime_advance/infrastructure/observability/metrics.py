"""Prometheus metrics for monitoring triggers, eligibility outcomes, offers and settlement"""

from prometheus_client import Counter, Histogram

# Trigger metrics
trigger_counter = Counter(
    "airtime_low_balance_trigger_total",
    "Low-balance triggers fired during live calls",
)

# Decision metrics
eligibility_counter = Counter(
    "airtime_eligibility_total",
    "Eligibility evaluations",
    ["outcome"],  # approved | <rejection reason>
)

offer_amount_bucket_counter = Counter(
    "airtime_offer_amount_bucket",
    "Offers created by advance amount",
    ["bucket"],  # $1, $5, $10
)

offer_transition_counter = Counter(
    "airtime_offer_transition_total",
    "Offer state transitions",
    ["status"],
)

# Settlement metrics
disbursal_counter = Counter(
    "airtime_disbursal_total",
    "Disbursal attempts",
    ["outcome"],  # completed | rejected
)

repayment_counter = Counter(
    "airtime_repayment_total",
    "Repayments netted out of top-ups",
    ["kind"],  # full | partial
)

sms_counter = Counter(
    "airtime_sms_total",
    "Offer SMS messages by delivery state",
    ["state"],  # sent | delivered | failed
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_eligibility(approved: bool, reason: str | None, amount_cents: int | None) -> None:
    """Record eligibility outcome and, for approvals, the advance bucket"""
    eligibility_counter.labels(outcome="approved" if approved else (reason or "unknown")).inc()

    if approved and amount_cents:
        offer_amount_bucket_counter.labels(bucket=f"${amount_cents // 100}").inc()
