"""Prometheus metrics for the application"""
from prometheus_client import Counter, Histogram

# Webhook metrics
webhook_events_counter = Counter(
    'payhook_webhook_events_total',
    'Total number of webhook deliveries handled by the processing engine',
    ['outcome']
)

webhook_signature_failures_counter = Counter(
    'payhook_webhook_signature_failures_total',
    'Total number of webhook requests rejected by signature verification',
    ['reason']
)

webhook_amount_mismatch_counter = Counter(
    'payhook_webhook_amount_mismatch_total',
    'Total number of payments whose amount differs from the plan price beyond tolerance',
    ['plan_type']
)

webhook_processing_seconds = Histogram(
    'payhook_webhook_processing_seconds',
    'Time spent processing a webhook delivery',
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0)
)
