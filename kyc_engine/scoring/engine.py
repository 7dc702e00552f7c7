"""
KYC Risk Decision Engine

Orchestrates:
  1. All 5 factor assessors (parallel, joined before aggregation)
  2. Weighted composite score
  3. Business rule overrides (score floors)
  4. Risk tier from score
  5. Flags, manual-review trigger, recommended actions, decision

Synchronous and CPU-bound: every collaborator result arrives already
resolved inside the submission or through an injected provider.
"""
from __future__ import annotations

import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Callable, Optional

import structlog

from kyc_engine.core.config import Settings, get_settings
from kyc_engine.core.errors import AssessmentComputationError
from kyc_engine.core.metrics import (
    RISK_ASSESSMENT_FAILURES,
    RISK_ASSESSMENT_SECONDS,
    RISK_ASSESSMENTS,
)
from kyc_engine.schemas.assessment import FactorScore, RiskAssessment, RiskLevel
from kyc_engine.schemas.signals import KYCSubmission
from kyc_engine.scoring import factors, flags
from kyc_engine.scoring.aggregator import WeightedAggregator
from kyc_engine.services.collaborators import (
    NetworkRiskProvider,
    NullNetworkRiskProvider,
    SignalTamperDetector,
    TamperDetector,
)


# ═══════════════════════════════════════════════════════════════
# Factor weights (must sum to 1.0)
# ═══════════════════════════════════════════════════════════════
FACTOR_WEIGHTS: dict[str, float] = {
    factors.DOCUMENT_QUALITY: 0.25,
    factors.IDENTITY_MATCH: 0.30,
    factors.LIVENESS: 0.20,
    factors.DATA_CONSISTENCY: 0.15,
    factors.LOCATION_RISK: 0.10,
}
assert abs(sum(FACTOR_WEIGHTS.values()) - 1.0) < 1e-9, "Weights must sum to 1.0"


# ═══════════════════════════════════════════════════════════════
# Tier thresholds
#   score >= 80  → CRITICAL
#   score >= 60  → HIGH
#   score >= 40  → MEDIUM
#   score < 40   → LOW
# ═══════════════════════════════════════════════════════════════
TIER_THRESHOLDS = [
    (80, RiskLevel.CRITICAL),
    (60, RiskLevel.HIGH),
    (40, RiskLevel.MEDIUM),
]

RISK_AGGREGATOR: WeightedAggregator[RiskLevel] = WeightedAggregator(
    FACTOR_WEIGHTS, TIER_THRESHOLDS, RiskLevel.LOW,
)


def classify_risk(score: float) -> RiskLevel:
    return RISK_AGGREGATOR.classify(score)


class RiskEngine:
    """
    One engine instance may serve many submissions; nothing on it changes
    after construction, so concurrent assessments need no locking.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        tamper_detector: Optional[TamperDetector] = None,
        network_risk: Optional[NetworkRiskProvider] = None,
        logger=None,
    ):
        self.settings = settings or get_settings()
        self.tamper_detector = tamper_detector or SignalTamperDetector()
        self.network_risk = network_risk or NullNetworkRiskProvider()
        self._logger = logger or structlog.get_logger(__name__)

    def assess(self, submission: KYCSubmission) -> RiskAssessment:
        """
        Main scoring entry point. Raises AssessmentComputationError when any
        assessor or the aggregation step fails; no partial result is returned.
        """
        t0 = time.perf_counter_ns()
        assessment_id = str(uuid.uuid4())
        log = self._logger.bind(assessment_id=assessment_id, submission_id=submission.submission_id)

        log.info(
            "risk_assessment_started",
            document_count=len(submission.documents),
            has_face_verification=submission.face_verification is not None,
        )

        try:
            # ── Step 1: Factor scores (join on all five) ──
            factor_scores = self._run_assessors(submission, log)

            # ── Step 2: Composite score ──
            try:
                weighted_score = RISK_AGGREGATOR.aggregate({k: v.score for k, v in factor_scores.items()})
            except Exception as e:
                log.error("risk_aggregation_failed", error=str(e))
                raise AssessmentComputationError("aggregate", str(e)) from e
        except AssessmentComputationError:
            RISK_ASSESSMENT_FAILURES.inc()
            raise

        # ── Step 3: Business rule overrides ──
        overrides = []
        if self.settings.biometric_floor_enabled:
            overrides = flags.check_business_rules(submission, self.settings.manual_review_threshold)
        for override in overrides:
            log.info("business_rule_override", rule_code=override.rule_code, floor_score=override.floor_score)
        overall_score = flags.apply_overrides(weighted_score, overrides)

        # ── Step 4: Tier ──
        risk_level = classify_risk(overall_score)

        # ── Step 5: Flags, review trigger, actions, decision ──
        risk_flags = flags.generate_flags(factor_scores)
        manual_review = flags.requires_manual_review(
            overall_score, risk_flags, self.settings.manual_review_threshold,
        )
        actions = flags.recommend_actions(risk_level, risk_flags)
        decision = flags.decide(risk_level, manual_review)

        elapsed_ns = time.perf_counter_ns() - t0
        elapsed_ms = int(elapsed_ns / 1_000_000)
        RISK_ASSESSMENT_SECONDS.observe(elapsed_ns / 1e9)
        RISK_ASSESSMENTS.labels(risk_level=risk_level.value, decision=decision.value).inc()

        log.info(
            "risk_assessment_complete",
            score=overall_score,
            weighted_score=weighted_score,
            risk_level=risk_level.value,
            decision=decision.value,
            flags=[f.type for f in risk_flags],
            requires_manual_review=manual_review,
            elapsed_ms=elapsed_ms,
        )

        return RiskAssessment(
            assessment_id=assessment_id,
            submission_id=submission.submission_id,
            model_version=self.settings.scoring_model_version,
            overall_score=overall_score,
            weighted_score=weighted_score,
            risk_level=risk_level,
            decision=decision,
            requires_manual_review=manual_review,
            factors=factor_scores,
            flags=risk_flags,
            recommended_actions=actions,
            business_rule_overrides=overrides,
            assessed_at=datetime.now(timezone.utc),
            processing_time_ms=elapsed_ms,
        )

    # ── Assessor fan-out ──

    def _assessors(self, submission: KYCSubmission) -> dict[str, Callable[[], FactorScore]]:
        docs = submission.documents
        face = submission.face_verification
        return {
            factors.DOCUMENT_QUALITY: lambda: factors.assess_document_quality(docs, self.tamper_detector),
            factors.IDENTITY_MATCH: lambda: factors.assess_identity_match(docs, face),
            factors.LIVENESS: lambda: factors.assess_liveness(face),
            factors.DATA_CONSISTENCY: lambda: factors.assess_data_consistency(docs),
            factors.LOCATION_RISK: lambda: factors.assess_location_risk(
                submission.additional_data, self.settings.high_risk_regions, self.network_risk,
            ),
        }

    def _run_assessors(self, submission: KYCSubmission, log) -> dict[str, FactorScore]:
        tasks = self._assessors(submission)

        if not self.settings.parallel_assessors:
            return {name: _run_one(name, fn, log) for name, fn in tasks.items()}

        workers = max(1, min(self.settings.assessor_workers, len(tasks)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="risk-factor") as pool:
            futures = {name: pool.submit(_run_one, name, fn, log) for name, fn in tasks.items()}
            # Barrier: aggregation needs every factor
            return {name: future.result() for name, future in futures.items()}


def _run_one(name: str, fn: Callable[[], FactorScore], log) -> FactorScore:
    try:
        return fn()
    except Exception as e:
        log.error("risk_factor_failed", factor=name, error=str(e), exc_info=True)
        raise AssessmentComputationError(name, str(e)) from e


def assess_risk(
    submission: KYCSubmission,
    settings: Optional[Settings] = None,
    tamper_detector: Optional[TamperDetector] = None,
    network_risk: Optional[NetworkRiskProvider] = None,
    logger=None,
) -> RiskAssessment:
    """Convenience wrapper: a fresh engine scoped to this one call."""
    engine = RiskEngine(settings, tamper_detector=tamper_detector, network_risk=network_risk, logger=logger)
    return engine.assess(submission)
