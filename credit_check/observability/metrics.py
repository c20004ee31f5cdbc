"""Prometheus metric definitions for credit check self-instrumentation.

All metrics are module-level singletons registered with the default
prometheus_client registry.  Import them wherever instrumentation is needed.
"""

from prometheus_client import Counter, Gauge, Histogram, Info

# ---------------------------------------------------------------------------
# Histogram bucket definitions
# ---------------------------------------------------------------------------

AGENT_QUERY_DURATION_BUCKETS = (0.5, 1.0, 2.0, 5.0, 10.0, 15.0, 20.0, 30.0)
RUN_DURATION_BUCKETS = (5.0, 15.0, 30.0, 60.0, 120.0, 300.0, 600.0)
REQUEST_DURATION_BUCKETS = (0.05, 0.1, 0.5, 1.0, 5.0, 30.0, 120.0, 300.0)

# ---------------------------------------------------------------------------
# Billing agent metrics (populated by the query client)
# ---------------------------------------------------------------------------

AGENT_QUERY_DURATION = Histogram(
    "eom_credit_check_agent_query_duration_seconds",
    "Duration of individual billing agent request attempts in seconds",
    buckets=AGENT_QUERY_DURATION_BUCKETS,
)

AGENT_QUERIES_TOTAL = Counter(
    "eom_credit_check_agent_queries_total",
    "Billing agent queries by final outcome",
    labelnames=["status"],
)

AGENT_QUERY_RETRIES = Counter(
    "eom_credit_check_agent_query_retries_total",
    "Number of billing agent request retries",
)

# ---------------------------------------------------------------------------
# Per-customer outcome metrics
# ---------------------------------------------------------------------------

CUSTOMER_CHECKS_TOTAL = Counter(
    "eom_credit_check_customer_checks_total",
    "Customer checks by terminal status",
    labelnames=["status"],
)

CUSTOMER_RISK_TOTAL = Counter(
    "eom_credit_check_customer_risk_total",
    "Successful customer checks by risk level",
    labelnames=["risk_level"],
)

CUSTOMERS_NEEDING_ATTENTION = Gauge(
    "eom_credit_check_customers_needing_attention",
    "Customers flagged (alert or error) by the most recent run",
)

# ---------------------------------------------------------------------------
# Run / delivery metrics
# ---------------------------------------------------------------------------

RUNS_TOTAL = Counter(
    "eom_credit_check_runs_total",
    "Total number of credit check runs",
    labelnames=["trigger", "status"],
)

RUN_DURATION = Histogram(
    "eom_credit_check_run_duration_seconds",
    "Time taken by a full credit check run in seconds",
    buckets=RUN_DURATION_BUCKETS,
)

SLACK_MESSAGES_TOTAL = Counter(
    "eom_credit_check_slack_messages_total",
    "Slack messages by kind and delivery status",
    labelnames=["kind", "status"],
)

# ---------------------------------------------------------------------------
# HTTP service metrics
# ---------------------------------------------------------------------------

REQUEST_DURATION = Histogram(
    "eom_credit_check_request_duration_seconds",
    "HTTP request duration in seconds",
    labelnames=["endpoint"],
    buckets=REQUEST_DURATION_BUCKETS,
)

REQUESTS_TOTAL = Counter(
    "eom_credit_check_requests_total",
    "Total number of HTTP requests",
    labelnames=["endpoint", "status"],
)

COMPONENT_HEALTHY = Gauge(
    "eom_credit_check_component_healthy",
    "Whether a dependency component is healthy (1=healthy, 0=unhealthy)",
    labelnames=["component"],
)

APP_INFO = Info(
    "eom_credit_check",
    "Credit check build information",
)
