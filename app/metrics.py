from prometheus_client import Counter, Histogram

JOB_RUNS = Counter(
    "background_job_runs_total",
    "Background job executions",
    ["job", "status"],
)

JOB_DURATION = Histogram(
    "background_job_duration_seconds",
    "Background job duration",
    ["job"],
)


def observe_job(job: str, status: str, duration: float) -> None:
    JOB_RUNS.labels(job=job, status=status).inc()
    JOB_DURATION.labels(job=job).observe(duration)
