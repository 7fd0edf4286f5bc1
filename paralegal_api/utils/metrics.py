"""
Metrics tracking utilities
"""
from prometheus_client import Counter, Histogram, Gauge
import structlog

logger = structlog.get_logger()

# HTTP metrics
request_counter = Counter(
    'paralegal_requests_total',
    'Total number of requests',
    ['method', 'endpoint', 'status']
)

request_duration = Histogram(
    'paralegal_request_duration_seconds',
    'Request duration',
    ['method', 'endpoint']
)

active_connections = Gauge(
    'paralegal_active_connections',
    'Number of active connections'
)

# Routing and streaming metrics
classification_counter = Counter(
    'paralegal_queries_classified_total',
    'Queries routed per strategy',
    ['query_type', 'method']  # method: heuristic, forced, model, fallback
)

stream_event_counter = Counter(
    'paralegal_stream_events_total',
    'Stream events emitted',
    ['event_type']
)

first_token_latency = Histogram(
    'paralegal_first_answer_token_seconds',
    'Time from stream open to first answer token',
    buckets=[0.1, 0.5, 1.0, 1.5, 2.0, 3.0, 5.0, 10.0, 20.0]
)

research_fallback_counter = Counter(
    'paralegal_research_fallbacks_total',
    'Research searches replaced by a placeholder source'
)

citation_verification_counter = Counter(
    'paralegal_citation_verifications_total',
    'Citation verification outcomes',
    ['outcome']  # verified, corrected, unverified
)


def track_classification(query_type: str, method: str):
    """Track which strategy a query was routed to"""
    classification_counter.labels(query_type=query_type, method=method).inc()


def track_stream_event(event_type: str):
    stream_event_counter.labels(event_type=event_type).inc()


def track_verification(verified: bool, corrected: bool):
    """Track citation verification outcome"""
    if verified:
        outcome = "verified"
    elif corrected:
        outcome = "corrected"
    else:
        outcome = "unverified"
    citation_verification_counter.labels(outcome=outcome).inc()
    logger.debug("Citation verification tracked", outcome=outcome)
