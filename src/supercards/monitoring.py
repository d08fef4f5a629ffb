"""Monitoring configuration for the scheduler."""
from prometheus_client import Counter, Gauge, start_http_server

# Selection metrics
supercards_picked = Counter(
    "supercards_picked_total",
    "Total number of supercards handed out for review",
    ["pool"],
)

forced_pool_switches = Counter(
    "supercards_forced_pool_switches_total",
    "Pool draws overridden by the consecutive-pick caps",
    ["target"],
)

limbo_candidates = Gauge(
    "supercards_limbo_candidates",
    "Supercards carrying an anti-limbo boost at the last selection",
)

# Review metrics
subcard_reviews = Counter(
    "supercards_subcard_reviews_total",
    "Total number of subcard ratings committed",
    ["grade"],
)

completed_supercards = Counter(
    "supercards_completed_total",
    "Supercards with every response mode graded",
)

# Error metrics
memory_model_failures = Counter(
    "supercards_memory_model_failures_total",
    "Memory model calls that returned no result",
    ["operation"],
)

persistence_errors = Counter(
    "supercards_persistence_errors_total",
    "Total number of failed store operations",
    ["operation"],
)

health_issues = Gauge(
    "supercards_health_issues",
    "Issues reported by the last health check",
)


def start_monitoring(port: int = 9090) -> None:
    """Start the Prometheus metrics server."""
    start_http_server(port)
