"""
Engine configuration, loaded from environment / .env file.

Factor weights and tier thresholds are part of the scoring contract and live
in the scoring package. Everything here is business policy or runtime tuning.
"""
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # ── App ──
    app_name: str = "kyc-risk-engine"
    app_env: str = "development"
    log_level: str = "INFO"
    scoring_model_version: str = "1.0"

    # ── Location policy ──
    high_risk_regions: list[str] = []

    # ── Decision policy ──
    manual_review_threshold: int = 70
    biometric_floor_enabled: bool = True

    # ── Assessor execution ──
    parallel_assessors: bool = True
    assessor_workers: int = 5

    # ── Liveness ──
    liveness_challenge_count: int = 3
    liveness_challenge_timeout_ms: int = 5_000
    liveness_session_buffer_ms: int = 15_000
    liveness_max_attempts: int = 3
    liveness_pass_ratio: float = 0.8
    liveness_min_confidence: float = 70.0

    # ── Loan eligibility ──
    loan_min_credit_score: int = 650
    loan_max_dti_ratio: float = 0.6
    loan_min_employment_months: int = 6
    loan_max_existing_loans: int = 3
    loan_max_risk_score: int = 70
    loan_base_interest_rate: float = 10.0
    loan_tenure_months: int = 60

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


@lru_cache
def get_settings() -> Settings:
    return Settings()
