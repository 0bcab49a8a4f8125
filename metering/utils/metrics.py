"""
Prometheus metrics definitions for the API and Celery worker.
All metrics are registered here and can be imported by other modules.
"""
from prometheus_client import Counter, Histogram

# HTTP request metrics
http_requests_total = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'path', 'status']
)

http_request_duration_seconds = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'path'],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)

# Error metrics
errors_total = Counter(
    'errors_total',
    'Total errors',
    ['error_type']
)

# Metering metrics
usage_events_tracked_total = Counter(
    'usage_events_tracked_total',
    'Total usage events recorded',
    ['event_type']
)

usage_units_tracked_total = Counter(
    'usage_units_tracked_total',
    'Total units of usage recorded',
    ['event_type']
)

quota_checks_total = Counter(
    'quota_checks_total',
    'Total pre-flight quota checks',
    ['quota_type', 'result']
)

billing_alerts_created_total = Counter(
    'billing_alerts_created_total',
    'Total billing alerts created',
    ['alert_type']
)

quotas_reset_total = Counter(
    'quotas_reset_total',
    'Total quota counters reset',
    ['trigger']
)

# Worker task metrics
worker_tasks_total = Counter(
    'worker_tasks_total',
    'Total worker tasks finished',
    ['task', 'status']
)

worker_task_duration_seconds = Histogram(
    'worker_task_duration_seconds',
    'Worker task execution duration in seconds',
    ['task'],
    buckets=[0.1, 0.5, 1.0, 5.0, 10.0, 30.0, 60.0, 300.0]
)
