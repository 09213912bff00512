"""
Prometheus metrics: order lifecycle transitions, rejections and live location reports.
"""
from prometheus_client import Counter, generate_latest

order_transitions_total = Counter(
    "order_transitions_total",
    "Total order lifecycle transitions applied",
    ["action", "from_status", "to_status"],
)
order_transitions_rejected_total = Counter(
    "order_transitions_rejected_total",
    "Total lifecycle commands rejected, by error kind",
    ["action", "reason"],
)
order_claim_races_lost_total = Counter(
    "order_claim_races_lost_total",
    "Claims that read an open order but lost the conditional update to another specialist",
)

location_reports_total = Counter(
    "location_reports_total",
    "Total live location reports stored",
    ["role"],
)


def get_metrics_content_type():
    return "text/plain; charset=utf-8; version=0.0.4"


def get_metrics_bytes():
    return generate_latest()
