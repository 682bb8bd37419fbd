"""
Prometheus metrics for the interaction pipeline.
"""

from prometheus_client import Counter, Gauge, Histogram

PIPELINE_RUNS = Counter(
    "medguard_pipeline_runs_total",
    "Completed interaction checks by final risk level",
    ["risk_level"],
)

STAGE_DURATION = Histogram(
    "medguard_stage_duration_seconds",
    "Wall time spent in each pipeline stage",
    ["stage"],
    buckets=(0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)

STAGE_RETRIES = Counter(
    "medguard_stage_retries_total",
    "Stage re-entries after a retryable error",
    ["stage"],
)

CACHE_LOOKUPS = Counter(
    "medguard_cache_lookups_total",
    "Cache lookups by key prefix and outcome",
    ["prefix", "outcome"],
)

PROVIDER_REQUESTS = Counter(
    "medguard_provider_requests_total",
    "Outbound drug data provider requests",
    ["source", "outcome"],
)

CIRCUIT_OPEN = Gauge(
    "medguard_circuit_open",
    "1 while an upstream source's circuit breaker is open",
    ["source"],
)
