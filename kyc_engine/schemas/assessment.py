"""
Risk assessment payload returned to the caller.

The admin workflow uses: risk_level, decision, requires_manual_review and
flags to route the submission (auto-approve / manual review / reject).
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class Decision(str, Enum):
    AUTO_APPROVE = "auto_approve"
    ADDITIONAL_VERIFICATION = "additional_verification"
    MANUAL_REVIEW = "manual_review"
    REJECT = "reject"


class FactorScore(BaseModel):
    """One risk dimension's sub-score. Higher = riskier."""
    model_config = ConfigDict(frozen=True)

    score: int = Field(ge=0, le=100)
    issues: list[str] = []
    sub_metrics: dict[str, Any] = {}


class Flag(BaseModel):
    """Severity-tagged explanation attached to an assessment."""
    model_config = ConfigDict(frozen=True)

    type: str
    severity: Severity
    description: str
    details: list[str] = []


class BusinessRuleOverride(BaseModel):
    """A hard rule that floored the overall score."""
    model_config = ConfigDict(frozen=True)

    rule_code: str
    rule_description: str
    floor_score: int


class RiskAssessment(BaseModel):
    """
    Created once per submission and never mutated. A re-assessment
    produces a new instance so earlier results stay intact.
    """
    model_config = ConfigDict(frozen=True)

    assessment_id: str = Field(description="Internal UUID for audit trail")
    submission_id: str
    model_version: str

    # ── Primary outputs ──
    overall_score: int = Field(ge=0, le=100)
    weighted_score: int = Field(ge=0, le=100, description="Weighted factor sum before rule overrides")
    risk_level: RiskLevel
    decision: Decision
    requires_manual_review: bool

    # ── Breakdown ──
    factors: dict[str, FactorScore]
    flags: list[Flag] = []
    recommended_actions: list[str] = []
    business_rule_overrides: list[BusinessRuleOverride] = []

    # ── Metadata ──
    assessed_at: datetime
    processing_time_ms: int
