"""Prometheus metrics for flip analysis."""

from prometheus_client import Counter, Histogram, Info

# Application info
app_info = Info("flipcore", "Flip analysis core info")
app_info.info({"version": "0.1.0", "name": "flipcore"})

# Identity metrics
identity_resolutions_total = Counter(
    "flipcore_identity_resolutions_total",
    "Total number of identity resolutions by confidence tier",
    ["category", "tier"],
)

# Pricing metrics
price_truths_total = Counter(
    "flipcore_price_truths_total",
    "Total number of price truth snapshots built",
    ["category", "confidence"],
)

guardrails_total = Counter(
    "flipcore_guardrails_total",
    "Total number of price guardrails fired (ceiling or sanity clamp)",
    ["category", "guardrail"],
)

price_cache_total = Counter(
    "flipcore_price_cache_total",
    "Price truth cache lookups",
    ["result"],
)

# Decision metrics
decisions_total = Counter(
    "flipcore_decisions_total",
    "Total number of computed decisions",
    ["category", "verdict"],
)

analysis_duration_seconds = Histogram(
    "flipcore_analysis_duration_seconds",
    "Time spent on a full category analysis",
    ["category"],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0],
)

# Collaborator metrics
collaborator_retries_total = Counter(
    "flipcore_collaborator_retries_total",
    "Total number of retried collaborator calls",
    ["service", "error_code"],
)

cert_lookups_total = Counter(
    "flipcore_cert_lookups_total",
    "Total number of certification registry lookups",
    ["status"],
)


def record_identity(category: str, tier: str):
    """Record an identity resolution."""
    identity_resolutions_total.labels(category=category, tier=tier).inc()


def record_price_truth(category: str, confidence: str, ceiling_applied: bool, clamp_applied: bool):
    """Record a price truth snapshot and any guardrails it triggered."""
    price_truths_total.labels(category=category, confidence=confidence).inc()
    if ceiling_applied:
        guardrails_total.labels(category=category, guardrail="ceiling").inc()
    if clamp_applied:
        guardrails_total.labels(category=category, guardrail="clamp").inc()


def record_cache_lookup(result: str):
    """Record a price cache lookup (hit, miss, stale)."""
    price_cache_total.labels(result=result).inc()


def record_decision(category: str, verdict: str):
    """Record a computed decision."""
    decisions_total.labels(category=category, verdict=verdict).inc()


def record_analysis(category: str, duration: float):
    """Record the duration of a complete analysis."""
    analysis_duration_seconds.labels(category=category).observe(duration)


def record_retry(service: str, error_code: str):
    """Record a collaborator retry."""
    collaborator_retries_total.labels(service=service, error_code=error_code).inc()


def record_cert_lookup(status: str):
    """Record a certification registry lookup outcome."""
    cert_lookups_total.labels(status=status).inc()
