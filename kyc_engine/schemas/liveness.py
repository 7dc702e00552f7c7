"""
Liveness challenge-response models.

A LivenessSession is the only mutable object in the engine. It changes
solely through challenge-completion events recorded inside its active
window, and once it reaches passed / failed / expired it is never reopened.
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from kyc_engine.core.errors import (
    ChallengeValidationError,
    LivenessSessionClosedError,
    SessionExpiredError,
)
from kyc_engine.schemas.assessment import Flag
from kyc_engine.schemas.signals import ChallengeOutcome, LivenessCheck


class ChallengeType(str, Enum):
    BLINK = "blink"
    SMILE = "smile"
    HEAD_TURN_LEFT = "head_turn_left"
    HEAD_TURN_RIGHT = "head_turn_right"
    HEAD_MOVEMENT = "head_movement"


class SessionState(str, Enum):
    CREATED = "created"
    ACTIVE = "active"
    PASSED = "passed"
    FAILED = "failed"
    EXPIRED = "expired"


TERMINAL_STATES = frozenset({SessionState.PASSED, SessionState.FAILED, SessionState.EXPIRED})


class Challenge(BaseModel):
    id: str
    type: ChallengeType
    instruction: str
    parameters: dict[str, Any] = {}
    timeout_ms: int
    attempts: int = 0
    max_attempts: int = 3
    completed: bool = False

    @property
    def exhausted(self) -> bool:
        return not self.completed and self.attempts >= self.max_attempts


class EvidenceFrame(BaseModel):
    """
    Per-frame measurements from the vision collaborator. Never raw imagery.
    Each challenge type reads only the measurement it needs.
    """
    model_config = ConfigDict(frozen=True)

    timestamp_ms: int = Field(ge=0, description="Capture offset from challenge start")
    head_angle: Optional[float] = Field(None, ge=-90, le=90, description="Yaw in degrees, negative = left")
    blink_detected: Optional[bool] = None
    smile_intensity: Optional[float] = Field(None, ge=0, le=1)
    movement_magnitude: Optional[float] = Field(None, ge=0, description="Head displacement since previous frame")
    movement_direction: Optional[str] = None


class ChallengeResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: str
    passed: bool
    confidence: int = Field(ge=0, le=100)
    details: dict[str, Any] = {}
    processing_time_ms: int = 0
    error: Optional[str] = None


class LivenessSession(BaseModel):
    session_id: str
    challenges: list[Challenge]
    created_at: datetime
    expires_at: datetime
    state: SessionState = SessionState.CREATED

    @property
    def total_timeout_ms(self) -> int:
        return int((self.expires_at - self.created_at).total_seconds() * 1000)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def current_challenge(self) -> Optional[Challenge]:
        """Next challenge still awaiting evidence, in session order."""
        for challenge in self.challenges:
            if not challenge.completed and not challenge.exhausted:
                return challenge
        return None

    def is_valid(self, now: datetime) -> bool:
        return not self.is_terminal and now <= self.expires_at

    def record_result(self, challenge_id: str, result: ChallengeResult, now: datetime) -> Challenge:
        """
        Apply one challenge attempt. Raises if the session is closed or past
        its expiry; an expired session is moved to EXPIRED first.
        """
        if self.is_terminal:
            raise LivenessSessionClosedError(self.session_id, self.state.value)
        if now > self.expires_at:
            self.state = SessionState.EXPIRED
            raise SessionExpiredError(self.session_id, self.expires_at)

        challenge = next((c for c in self.challenges if c.id == challenge_id), None)
        if challenge is None:
            raise ChallengeValidationError(
                f"Challenge {challenge_id} is not part of session {self.session_id}",
                challenge_type=result.type,
            )
        if result.type != challenge.type.value:
            raise ChallengeValidationError(
                f"Result type {result.type} does not match challenge {challenge_id} ({challenge.type.value})",
                challenge_type=result.type,
            )
        if challenge.completed or challenge.exhausted:
            raise ChallengeValidationError(
                f"Challenge {challenge_id} accepts no further attempts",
                challenge_type=result.type,
                details={"attempts": challenge.attempts, "completed": challenge.completed},
            )

        self.state = SessionState.ACTIVE
        challenge.attempts += 1
        if result.passed:
            challenge.completed = True
        return challenge


class LivenessSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_challenges: int
    completed_challenges: int
    failed_challenges: int
    success_rate: int
    processing_time_ms: int


class LivenessEvaluation(BaseModel):
    model_config = ConfigDict(frozen=True)

    session_id: str
    state: SessionState
    passed: bool
    confidence: int = Field(ge=0, le=100)
    anti_spoofing_score: int = Field(ge=0, le=100)
    summary: LivenessSummary
    # One entry per session challenge, unsubmitted ones as failed results
    challenges: list[ChallengeResult] = []
    risk_flags: list[Flag] = []
    evaluated_at: datetime

    def to_liveness_check(self) -> LivenessCheck:
        """Shape consumed by the risk engine's liveness assessor."""
        return LivenessCheck(
            passed=self.passed,
            confidence=self.confidence,
            anti_spoofing_score=self.anti_spoofing_score,
            challenges=[ChallengeOutcome(type=r.type, completed=r.passed) for r in self.challenges],
        )
