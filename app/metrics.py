from prometheus_client import Counter, Histogram

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "path", "status"],
)

JOB_DURATION = Histogram(
    "job_duration_seconds",
    "Background job duration",
    ["task", "status"],
)

ANCHOR_RUN_SUBSCRIPTIONS = Counter(
    "anchor_run_subscriptions_total",
    "Subscriptions handled by anchor runs",
    ["outcome"],
)


def observe_job(task_name: str, status: str, duration: float) -> None:
    JOB_DURATION.labels(task=task_name, status=status).observe(duration)


def observe_anchor_subscription(outcome: str) -> None:
    ANCHOR_RUN_SUBSCRIPTIONS.labels(outcome=outcome).inc()
