"""
Prometheus instruments for the decision engine.

Registered on the default registry; an embedding service exposes them with
prometheus_client.make_asgi_app() or start_http_server().
"""
from prometheus_client import Counter, Histogram

RISK_ASSESSMENTS = Counter(
    "kyc_risk_assessments_total",
    "Completed KYC risk assessments",
    ["risk_level", "decision"],
)

RISK_ASSESSMENT_FAILURES = Counter(
    "kyc_risk_assessment_failures_total",
    "KYC risk assessments aborted by a computation error",
)

RISK_ASSESSMENT_SECONDS = Histogram(
    "kyc_risk_assessment_seconds",
    "Wall-clock time spent scoring one KYC submission",
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0),
)

LIVENESS_SESSIONS = Counter(
    "kyc_liveness_sessions_total",
    "Evaluated liveness sessions by terminal state",
    ["state"],
)

LOAN_ASSESSMENTS = Counter(
    "kyc_loan_assessments_total",
    "Completed loan eligibility assessments",
    ["eligible"],
)
