"""Prometheus metrics for the back-office API.

Exposes:
- Request counts and durations by endpoint
- NF-e import outcomes, upload sizes and parse durations
- Checkout discount validation outcomes

Based on Prometheus naming practices:
https://prometheus.io/docs/practices/naming/
"""

from prometheus_client import Counter, Histogram, generate_latest
from prometheus_client.openmetrics.exposition import CONTENT_TYPE_LATEST

# Request metrics
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# NF-e import metrics
invoice_imports_total = Counter(
    "invoice_imports_total",
    "Total NF-e XML imports",
    ["status"],  # success, rejected, failed
)

invoice_upload_size_bytes = Histogram(
    "invoice_upload_size_bytes",
    "NF-e XML upload size in bytes",
    buckets=(1024, 10240, 102400, 1048576, 10485760),  # 1KB to 10MB
)

nfe_parse_duration_seconds = Histogram(
    "nfe_parse_duration_seconds",
    "NF-e XML parse duration in seconds",
    buckets=(0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0),
)

# Discount metrics
discount_validations_total = Counter(
    "discount_validations_total",
    "Checkout discount validations",
    ["result"],  # valid, invalid
)


def get_metrics() -> tuple[bytes, str]:
    """Generate Prometheus metrics in text format.

    Returns:
        Tuple of (metrics bytes, content type)
    """
    return generate_latest(), CONTENT_TYPE_LATEST
