"""
Liveness session lifecycle: generate → record attempts → evaluate.

    created → active(challenge i) → {challenge i+1 | evaluated}
    terminal: passed | failed | expired

A session is strictly time-bound. Work attempted after expires_at moves it
to EXPIRED and is never scored, whatever the individual challenge results.
"""
from __future__ import annotations

import math
import random
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional, Sequence

import structlog

from kyc_engine.core.config import Settings, get_settings
from kyc_engine.core.errors import ChallengeValidationError, LivenessSessionClosedError
from kyc_engine.core.metrics import LIVENESS_SESSIONS
from kyc_engine.liveness.challenges import CHALLENGE_CATALOG, instruction_for, parameters_for
from kyc_engine.liveness.processor import process_challenge
from kyc_engine.schemas.assessment import Flag, Severity
from kyc_engine.schemas.liveness import (
    Challenge,
    ChallengeResult,
    ChallengeType,
    EvidenceFrame,
    LivenessEvaluation,
    LivenessSession,
    LivenessSummary,
    SessionState,
)

Clock = Callable[[], datetime]

LOW_CONFIDENCE_FLAG_THRESHOLD = 60
SLOW_PROCESSING_MS = 10_000

ANTI_SPOOFING_BASE = 50
ANTI_SPOOFING_PASS_RATE = 0.4
ANTI_SPOOFING_FAIL_PENALTY = 10
ANTI_SPOOFING_VARIETY_BONUS = 5


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def calculate_anti_spoofing_score(results: Sequence[ChallengeResult]) -> float:
    score = float(ANTI_SPOOFING_BASE)
    for result in results:
        if result.passed:
            score += result.confidence * ANTI_SPOOFING_PASS_RATE
        else:
            score -= ANTI_SPOOFING_FAIL_PENALTY
    score += len({r.type for r in results}) * ANTI_SPOOFING_VARIETY_BONUS
    return min(100.0, max(0.0, score))


def unsubmitted_result(challenge_type: str) -> ChallengeResult:
    """Stand-in for a session challenge that never received evidence."""
    return ChallengeResult(
        type=challenge_type,
        passed=False,
        confidence=0,
        error=f"{challenge_type} result not submitted",
    )


def identify_risk_flags(
    results: Sequence[ChallengeResult],
    expected_types: Sequence[str] = (),
) -> list[Flag]:
    """
    Flags over the latest results. Types in `expected_types` without a
    result count as failed challenges at confidence 0.
    """
    submitted = {r.type for r in results}
    missing = [t for t in expected_types if t not in submitted]
    scored = list(results) + [unsubmitted_result(t) for t in missing]
    if not scored:
        return []
    flags: list[Flag] = []

    mean_confidence = sum(r.confidence for r in scored) / len(scored)
    if mean_confidence < LOW_CONFIDENCE_FLAG_THRESHOLD:
        flags.append(Flag(
            type="low_confidence",
            severity=Severity.MEDIUM,
            description="Consistently low confidence in liveness detection",
            details=[
                f"Mean confidence {round(mean_confidence)} over {len(scored)} challenges "
                f"(threshold {LOW_CONFIDENCE_FLAG_THRESHOLD})",
            ],
        ))

    failed = [r for r in scored if not r.passed]
    if failed:
        flags.append(Flag(
            type="failed_challenges",
            severity=Severity.HIGH,
            description=f"{len(failed)} liveness challenges failed",
            details=[r.error or f"{r.type} not passed" for r in failed],
        ))

    # Latency only exists for challenges that were actually attempted
    if results:
        mean_latency = sum(r.processing_time_ms for r in results) / len(results)
        if mean_latency > SLOW_PROCESSING_MS:
            flags.append(Flag(
                type="slow_processing",
                severity=Severity.LOW,
                description="Unusually slow response times detected",
                details=[f"Mean processing time {round(mean_latency)}ms (threshold {SLOW_PROCESSING_MS}ms)"],
            ))

    return flags


class LivenessVerifier:
    """
    Owns challenge generation, evidence scoring and session evaluation.
    The random source and clock are injectable so tests are deterministic.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        logger=None,
        rng: Optional[random.Random] = None,
        clock: Optional[Clock] = None,
    ):
        self.settings = settings or get_settings()
        self._logger = logger or structlog.get_logger(__name__)
        self._rng = rng or random.SystemRandom()
        self._clock = clock or _utcnow

    # ── Generation ──

    def generate_challenges(self) -> LivenessSession:
        s = self.settings
        count = min(s.liveness_challenge_count, len(CHALLENGE_CATALOG))
        selected: list[ChallengeType] = self._rng.sample(CHALLENGE_CATALOG, count)

        challenges = [
            Challenge(
                id=f"challenge_{index + 1}",
                type=challenge_type,
                instruction=instruction_for(challenge_type),
                parameters=parameters_for(challenge_type),
                timeout_ms=s.liveness_challenge_timeout_ms,
                max_attempts=s.liveness_max_attempts,
            )
            for index, challenge_type in enumerate(selected)
        ]

        created_at = self._clock()
        window_ms = count * s.liveness_challenge_timeout_ms + s.liveness_session_buffer_ms
        session = LivenessSession(
            session_id=f"LIVE_{int(created_at.timestamp() * 1000)}_{uuid.uuid4().hex[:9]}",
            challenges=challenges,
            created_at=created_at,
            expires_at=created_at + timedelta(milliseconds=window_ms),
        )
        self._logger.info(
            "liveness_session_created",
            session_id=session.session_id,
            challenges=[c.type.value for c in challenges],
            expires_at=session.expires_at.isoformat(),
        )
        return session

    # ── Per-challenge scoring ──

    def process_challenge(
        self,
        challenge_type: ChallengeType | str,
        frames: Sequence[EvidenceFrame],
        parameters: Optional[dict[str, Any]] = None,
    ) -> ChallengeResult:
        started = self._clock()
        result = process_challenge(challenge_type, frames, parameters)
        elapsed_ms = max(0, int((self._clock() - started).total_seconds() * 1000))
        result = result.model_copy(update={"processing_time_ms": elapsed_ms})

        if result.error:
            self._logger.warning(
                "liveness_challenge_rejected",
                challenge_type=result.type,
                reason=result.error,
            )
        else:
            self._logger.info(
                "liveness_challenge_processed",
                challenge_type=result.type,
                passed=result.passed,
                confidence=result.confidence,
            )
        return result

    def submit_challenge(
        self,
        session: LivenessSession,
        challenge_id: str,
        frames: Sequence[EvidenceFrame],
    ) -> ChallengeResult:
        """
        Score evidence for one of the session's challenges and record the
        attempt. Raises ChallengeValidationError for an id outside the session
        and SessionExpiredError past expires_at.
        """
        challenge = next((c for c in session.challenges if c.id == challenge_id), None)
        if challenge is None:
            raise ChallengeValidationError(
                f"Challenge {challenge_id} is not part of session {session.session_id}",
                challenge_type="unknown",
                details={"challenge_id": challenge_id, "session_id": session.session_id},
            )
        result = self.process_challenge(challenge.type, frames, challenge.parameters)
        session.record_result(challenge_id, result, self._clock())
        return result

    # ── Evaluation ──

    def evaluate_session(
        self,
        session: LivenessSession,
        challenge_results: Sequence[ChallengeResult],
    ) -> LivenessEvaluation:
        """
        Pass iff passed-challenge count >= ceil(pass_ratio × total) and mean
        confidence >= min_confidence. Past expires_at the result is the
        deterministic EXPIRED evaluation.
        """
        log = self._logger.bind(session_id=session.session_id)
        now = self._clock()

        if session.state in (SessionState.PASSED, SessionState.FAILED):
            raise LivenessSessionClosedError(session.session_id, session.state.value)

        if session.state == SessionState.EXPIRED or now > session.expires_at:
            session.state = SessionState.EXPIRED
            log.warning("liveness_session_expired", expires_at=session.expires_at.isoformat())
            LIVENESS_SESSIONS.labels(state=SessionState.EXPIRED.value).inc()
            return self._expired_evaluation(session, now)

        s = self.settings
        session_types = {c.type.value for c in session.challenges}
        # Latest attempt per challenge type; foreign results are ignored
        latest: dict[str, ChallengeResult] = {}
        for result in challenge_results:
            if result.type in session_types:
                latest[result.type] = result
        results = list(latest.values())
        expected_types = [c.type.value for c in session.challenges]
        # Session order, with unsubmitted challenges reported as failed
        outcomes = [latest[t] if t in latest else unsubmitted_result(t) for t in expected_types]

        total = len(session.challenges)
        completed = sum(1 for r in results if r.passed)
        mean_confidence = sum(r.confidence for r in results) / total if total else 0.0
        required = math.ceil(total * s.liveness_pass_ratio)

        passed = total > 0 and completed >= required and mean_confidence >= s.liveness_min_confidence
        session.state = SessionState.PASSED if passed else SessionState.FAILED

        evaluation = LivenessEvaluation(
            session_id=session.session_id,
            state=session.state,
            passed=passed,
            confidence=round(mean_confidence),
            anti_spoofing_score=round(calculate_anti_spoofing_score(results)),
            summary=LivenessSummary(
                total_challenges=total,
                completed_challenges=completed,
                failed_challenges=total - completed,
                success_rate=round(completed / total * 100) if total else 0,
                processing_time_ms=_elapsed_ms(session.created_at, now),
            ),
            challenges=outcomes,
            risk_flags=identify_risk_flags(results, expected_types),
            evaluated_at=now,
        )

        LIVENESS_SESSIONS.labels(state=session.state.value).inc()
        log.info(
            "liveness_session_evaluated",
            passed=passed,
            confidence=evaluation.confidence,
            anti_spoofing_score=evaluation.anti_spoofing_score,
            completed=completed,
            required=required,
        )
        return evaluation

    def _expired_evaluation(self, session: LivenessSession, now: datetime) -> LivenessEvaluation:
        total = len(session.challenges)
        return LivenessEvaluation(
            session_id=session.session_id,
            state=SessionState.EXPIRED,
            passed=False,
            confidence=0,
            anti_spoofing_score=0,
            summary=LivenessSummary(
                total_challenges=total,
                completed_challenges=0,
                failed_challenges=total,
                success_rate=0,
                processing_time_ms=_elapsed_ms(session.created_at, now),
            ),
            challenges=[
                ChallengeResult(type=c.type.value, passed=False, confidence=0, error="Session expired")
                for c in session.challenges
            ],
            risk_flags=[Flag(
                type="session_expired",
                severity=Severity.HIGH,
                description="Liveness session expired before evaluation",
                details=[f"Expired at {session.expires_at.isoformat()}"],
            )],
            evaluated_at=now,
        )


def _elapsed_ms(start: datetime, end: datetime) -> int:
    return max(0, int((end - start).total_seconds() * 1000))
