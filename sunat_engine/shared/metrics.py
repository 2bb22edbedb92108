"""Prometheus metrics for the engine.

Exposes key metrics for monitoring:
- Request counts by endpoint and status
- OCR and extraction processing metrics
- SUNAT calls, token refreshes and validation attempts
- Batch revalidation outcomes

Based on Prometheus best practices:
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

# OCR processing metrics
ocr_processing_duration_seconds = Histogram(
    "ocr_processing_duration_seconds",
    "OCR processing duration in seconds",
    buckets=(0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0),
)

ocr_requests_total = Counter(
    "ocr_requests_total",
    "Total OCR processing requests",
    ["status"],  # success, failed
)

# Extraction metrics
extraction_requests_total = Counter(
    "extraction_requests_total",
    "Total heuristic field extractions",
)

extraction_inconsistencies_total = Counter(
    "extraction_inconsistencies_total",
    "Extractions where subtotal + tax disagreed with the total beyond tolerance",
)

# SUNAT authority metrics
authority_requests_total = Counter(
    "authority_requests_total",
    "Total SUNAT API requests",
    ["operation", "status"],  # operation: token, validate, lookup, lookup_address
)

authority_request_duration_seconds = Histogram(
    "authority_request_duration_seconds",
    "SUNAT API request duration in seconds",
    ["operation"],
    buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

authority_token_refreshes_total = Counter(
    "authority_token_refreshes_total",
    "Total OAuth2 token exchanges performed",
)

validation_attempts_total = Counter(
    "validation_attempts_total",
    "Total validation queries sent, by perturbation",
    ["perturbation"],
)

validation_outcomes_total = Counter(
    "validation_outcomes_total",
    "Final validation outcomes per document",
    ["status"],
)

# Batch metrics
batch_documents_total = Counter(
    "batch_documents_total",
    "Documents processed by the batch orchestrator",
    ["status"],  # validated, not_validated, skipped, error
)


def get_metrics() -> tuple[bytes, str]:
    """Generate Prometheus metrics in text format.

    Returns:
        Tuple of (metrics bytes, content type)
    """
    return generate_latest(), CONTENT_TYPE_LATEST
