"""
Prometheus metrics for the ingest core.

Metrics exposed:
- Source request counters and latency histograms
- Rate limiter queue depth and active request gauges
- Response cache lookup/write counters
- Identity match counters
- Composite fallback counters
"""
from prometheus_client import Counter, Gauge, Histogram

# Source request metrics
source_requests_total = Counter(
    "statline_source_requests_total",
    "Total outbound source requests by outcome",
    ["source", "outcome"]
)

source_request_duration_seconds = Histogram(
    "statline_source_request_duration_seconds",
    "Outbound source request latency in seconds",
    ["source"]
)

# Rate limiter metrics
rate_limiter_queue_depth = Gauge(
    "statline_rate_limiter_queue_depth",
    "Requests waiting in a source's rate limiter queue",
    ["source"]
)

rate_limiter_active_requests = Gauge(
    "statline_rate_limiter_active_requests",
    "Requests currently dispatched for a source",
    ["source"]
)

# Response cache metrics
response_cache_lookups_total = Counter(
    "statline_response_cache_lookups_total",
    "Response cache lookups by result",
    ["source", "result"]
)

response_cache_writes_total = Counter(
    "statline_response_cache_writes_total",
    "Response cache writes by result",
    ["source", "result"]
)

# Identity matching
identity_matches_total = Counter(
    "statline_identity_matches_total",
    "Player identity resolutions by method",
    ["method"]
)

# Composite orchestration
composite_fallbacks_total = Counter(
    "statline_composite_fallbacks_total",
    "Times the composite adapter fell back from its primary source",
    ["operation", "primary"]
)
