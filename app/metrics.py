"""Centralised Prometheus metric definitions for CVE Manager."""

from prometheus_client import Counter, Histogram

# ---------------------------------------------------------------------------
# Counters
# ---------------------------------------------------------------------------

REQUESTS_TOTAL = Counter(
    "cve_manager_requests_total",
    "List requests handled",
    ["endpoint"],
)

FILTER_ERRORS_TOTAL = Counter(
    "cve_manager_filter_errors_total",
    "Requests rejected because of invalid filters",
    ["endpoint", "kind"],
)

# ---------------------------------------------------------------------------
# Histograms
# ---------------------------------------------------------------------------

QUERY_DURATION = Histogram(
    "cve_manager_query_duration_seconds",
    "Database query duration for list endpoints",
    ["endpoint"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)
