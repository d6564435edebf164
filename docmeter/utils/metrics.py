"""
Prometheus metrics definitions for FastAPI and Celery workers.
All metrics are registered here and can be imported by other modules.
"""
from prometheus_client import Counter, Histogram, Gauge

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
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0]
)

# Error metrics
errors_total = Counter(
    'errors_total',
    'Total errors',
    ['error_type']
)

# Job metrics
jobs_created_total = Counter(
    'jobs_created_total',
    'Total document jobs created',
    ['job_type']
)

jobs_finished_total = Counter(
    'jobs_finished_total',
    'Total document jobs reaching a terminal state',
    ['job_type', 'status']
)

job_duration_seconds = Histogram(
    'job_duration_seconds',
    'Document job duration in seconds',
    ['job_type', 'status'],
    buckets=[0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0, 600.0]
)

jobs_deduplicated_total = Counter(
    'jobs_deduplicated_total',
    'Queue deliveries skipped because the job was already claimed'
)

# Ledger metrics
credit_deductions_total = Counter(
    'credit_deductions_total',
    'Credit deduction attempts by outcome',
    ['outcome']
)

rate_limit_rejections_total = Counter(
    'rate_limit_rejections_total',
    'Requests rejected by the per-minute rate limiter'
)

# Webhook metrics
webhook_attempts_total = Counter(
    'webhook_attempts_total',
    'Webhook delivery attempts',
    ['event_type', 'status']
)

webhook_delivery_duration_seconds = Histogram(
    'webhook_delivery_duration_seconds',
    'Webhook delivery attempt duration in seconds',
    ['event_type'],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)

# Celery task metrics
worker_tasks_processing = Gauge(
    'worker_tasks_processing',
    'Number of Celery tasks currently running',
    ['task_name']
)

worker_tasks_completed_total = Counter(
    'worker_tasks_completed_total',
    'Total Celery tasks finished',
    ['task_name', 'state']
)

worker_tasks_failed_total = Counter(
    'worker_tasks_failed_total',
    'Total Celery tasks failed',
    ['task_name']
)
