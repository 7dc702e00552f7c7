"""
Exception hierarchy for the KYC risk engine.

Insufficient input is never an exception: assessors degrade to a
conservative score with an explanatory issue. What remains here are the
failures a caller has to see.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional


class KYCEngineError(Exception):
    """Base class for engine errors.

    Attributes:
        message: Human-readable error message
        code: Machine-readable error code
        details: Additional context about the error
    """

    def __init__(
        self,
        message: str,
        code: str = "KYC_ENGINE_ERROR",
        details: Optional[dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class ChallengeValidationError(KYCEngineError):
    """Evidence for a liveness challenge is missing or malformed."""

    def __init__(self, message: str, challenge_type: str, details: Optional[dict[str, Any]] = None):
        super().__init__(
            message,
            code="CHALLENGE_VALIDATION",
            details={"challenge_type": challenge_type, **(details or {})},
        )
        self.challenge_type = challenge_type


class SessionExpiredError(KYCEngineError):
    """Liveness work attempted after the session's expiry."""

    def __init__(self, session_id: str, expires_at: datetime):
        super().__init__(
            f"Liveness session {session_id} expired at {expires_at.isoformat()}",
            code="SESSION_EXPIRED",
            details={"session_id": session_id, "expires_at": expires_at.isoformat()},
        )
        self.session_id = session_id
        self.expires_at = expires_at


class LivenessSessionClosedError(KYCEngineError):
    """Liveness session already reached a terminal state."""

    def __init__(self, session_id: str, state: str):
        super().__init__(
            f"Liveness session {session_id} is closed (state={state})",
            code="SESSION_CLOSED",
            details={"session_id": session_id, "state": state},
        )
        self.session_id = session_id
        self.state = state


class AssessmentComputationError(KYCEngineError):
    """Unexpected failure inside a risk assessor or the aggregator."""

    def __init__(self, factor: str, message: str):
        super().__init__(
            f"Risk factor '{factor}' failed: {message}",
            code="COMPUTATION_ERROR",
            details={"factor": factor},
        )
        self.factor = factor
