"""
Flag generation + decision policy.

  1. Factor thresholds → severity-tagged flags
  2. Hard business rules → score floors (overrides)
  3. Manual review trigger (score OR critical flag, both always checked)
  4. Risk level → recommended actions and decision
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping

from kyc_engine.schemas.assessment import (
    BusinessRuleOverride,
    Decision,
    FactorScore,
    Flag,
    RiskLevel,
    Severity,
)
from kyc_engine.schemas.signals import KYCSubmission
from kyc_engine.scoring.factors import (
    DATA_CONSISTENCY,
    DOCUMENT_QUALITY,
    IDENTITY_MATCH,
    LIVENESS,
)

MANUAL_REVIEW_THRESHOLD = 70


@dataclass(frozen=True)
class FlagRule:
    factor: str
    flag_type: str
    description: str
    threshold: int             # flag when score > threshold
    escalation_threshold: int  # escalate when score > escalation_threshold
    severity: Severity
    escalated_severity: Severity


# ═══════════════════════════════════════════════════════════════
# Factor flag rules
#   document_quality  > 60 medium, > 80 high
#   identity_match    > 70 medium, > 85 high
#   liveness_score    > 50 medium, > 70 high
#   data_consistency  > 60 high,   > 80 critical
# ═══════════════════════════════════════════════════════════════
FLAG_RULES = (
    FlagRule(DOCUMENT_QUALITY, "document_quality", "Poor document quality detected",
             60, 80, Severity.MEDIUM, Severity.HIGH),
    FlagRule(IDENTITY_MATCH, "identity_mismatch", "Identity verification issues",
             70, 85, Severity.MEDIUM, Severity.HIGH),
    FlagRule(LIVENESS, "liveness_suspicious", "Suspicious liveness detection",
             50, 70, Severity.MEDIUM, Severity.HIGH),
    FlagRule(DATA_CONSISTENCY, "data_inconsistency", "Data inconsistencies found",
             60, 80, Severity.HIGH, Severity.CRITICAL),
)


def generate_flags(factors: Mapping[str, FactorScore]) -> list[Flag]:
    flags: list[Flag] = []
    for rule in FLAG_RULES:
        factor = factors[rule.factor]
        if factor.score <= rule.threshold:
            continue
        flags.append(Flag(
            type=rule.flag_type,
            severity=rule.escalated_severity if factor.score > rule.escalation_threshold else rule.severity,
            description=rule.description,
            details=list(factor.issues),
        ))
    return flags


# ═══════════════════════════════════════════════════════════════
# Business rule overrides: floor the score at the review threshold
# ═══════════════════════════════════════════════════════════════

def check_business_rules(submission: KYCSubmission, floor_score: int) -> list[BusinessRuleOverride]:
    overrides: list[BusinessRuleOverride] = []
    face = submission.face_verification

    # BR-01: no biometric evidence at all
    has_face_match = face is not None and face.face_match_confidence is not None
    has_liveness = face is not None and face.liveness_result is not None
    if not has_face_match and not has_liveness:
        overrides.append(BusinessRuleOverride(
            rule_code="BR-01",
            rule_description="Neither face verification nor liveness evidence provided",
            floor_score=floor_score,
        ))

    # BR-02: no identity documents
    if not submission.documents:
        overrides.append(BusinessRuleOverride(
            rule_code="BR-02",
            rule_description="No identity documents submitted",
            floor_score=floor_score,
        ))

    return overrides


def apply_overrides(weighted_score: int, overrides: list[BusinessRuleOverride]) -> int:
    return max([weighted_score, *(o.floor_score for o in overrides)])


# ═══════════════════════════════════════════════════════════════
# Manual review, actions, decision
# ═══════════════════════════════════════════════════════════════

def requires_manual_review(
    overall_score: int,
    flags: list[Flag],
    threshold: int = MANUAL_REVIEW_THRESHOLD,
) -> bool:
    score_trigger = overall_score >= threshold
    critical_trigger = any(f.severity == Severity.CRITICAL for f in flags)
    return score_trigger or critical_trigger


RECOMMENDED_ACTIONS: dict[RiskLevel, tuple[str, ...]] = {
    RiskLevel.CRITICAL: (
        "Immediate manual review",
        "Consider suspension",
        "Additional documentation required",
    ),
    RiskLevel.HIGH: (
        "Manual review recommended",
        "Enhanced verification procedures",
    ),
    RiskLevel.MEDIUM: (
        "Additional verification checks",
    ),
    RiskLevel.LOW: (
        "Standard processing",
    ),
}


def recommend_actions(risk_level: RiskLevel, flags: list[Flag]) -> list[str]:
    actions = list(RECOMMENDED_ACTIONS[risk_level])
    if risk_level == RiskLevel.MEDIUM and any(f.type == "document_quality" for f in flags):
        actions.append("Request better quality documents")
    return actions


LEVEL_TO_DECISION = {
    RiskLevel.LOW: Decision.AUTO_APPROVE,
    RiskLevel.MEDIUM: Decision.ADDITIONAL_VERIFICATION,
    RiskLevel.HIGH: Decision.MANUAL_REVIEW,
    RiskLevel.CRITICAL: Decision.REJECT,
}


def decide(risk_level: RiskLevel, manual_review: bool) -> Decision:
    decision = LEVEL_TO_DECISION[risk_level]
    if manual_review and decision != Decision.REJECT:
        return Decision.MANUAL_REVIEW
    return decision
