from prometheus_client import Counter, Gauge, Histogram

from rivohome.monitoring.prometheus_metrics import REGISTRY

rl_decisions = Counter(
    "rivohome_rl_decisions_total",
    "rate-limit decisions",
    ["policy", "action", "backend"],
    registry=REGISTRY,
)
rl_retry_after = Histogram(
    "rivohome_rl_retry_after_seconds",
    "retry-after values on denial",
    ["policy"],
    registry=REGISTRY,
    buckets=(1.0, 5.0, 15.0, 60.0, 300.0, 900.0, 1800.0, 3600.0),
)

rl_backend_faults = Counter(
    "rivohome_rl_backend_faults_total",
    "shared counter store failures that fell back to in-process counters",
    ["backend"],
    registry=REGISTRY,
)

rl_eval_errors = Counter(
    "rivohome_rl_eval_errors_total",
    "rate-limit evaluations that failed open",
    ["policy"],
    registry=REGISTRY,
)

rl_eval_duration = Histogram(
    "rivohome_rl_eval_duration_seconds",
    "duration of rate-limit evaluation",
    ["policy"],
    registry=REGISTRY,
    buckets=(0.0005, 0.001, 0.0025, 0.005, 0.01, 0.025, 0.05, 0.1, 0.5),
)

rl_memory_entries = Gauge(
    "rivohome_rl_memory_entries",
    "keys held by the in-process fallback counter store",
    [],
    registry=REGISTRY,
)

__all__ = [
    "rl_decisions",
    "rl_retry_after",
    "rl_backend_faults",
    "rl_eval_errors",
    "rl_eval_duration",
    "rl_memory_entries",
]
