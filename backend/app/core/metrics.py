"""Prometheus metrics for the application"""
from prometheus_client import Counter, REGISTRY


def _counter(name, documentation, labelnames=()):
    """Create a counter, reusing the registered one when the module is re-imported"""
    try:
        return Counter(name, documentation, labelnames)
    except ValueError:
        return REGISTRY._names_to_collectors.get(name)


# Job lifecycle metrics
social_post_jobs_created_counter = _counter(
    'crosspost_social_post_jobs_created_total',
    'Total number of social post jobs created'
)

social_post_jobs_finished_counter = _counter(
    'crosspost_social_post_jobs_finished_total',
    'Total number of social post jobs reaching a terminal status',
    ['status']
)

job_dispatch_failures_counter = _counter(
    'crosspost_job_dispatch_failures_total',
    'Total number of failed attempts to hand a job to the task queue'
)

# Per-platform metrics
platform_posts_counter = _counter(
    'crosspost_platform_posts_total',
    'Total number of platform post attempts',
    ['platform', 'status']
)

token_refresh_counter = _counter(
    'crosspost_token_refresh_total',
    'Total number of OAuth token refresh attempts',
    ['platform', 'status']
)

# Worker metrics
worker_sweep_counter = _counter(
    'crosspost_worker_sweep_actions_total',
    'Jobs touched by the stale-job sweep',
    ['action']
)
