"""
Tests for the liveness challenge-response flow: generation, evidence
scoring, session lifecycle and expiry. A fixed clock and seeded RNG keep
every run identical.
"""
import random
from datetime import datetime, timedelta, timezone

import pytest

from kyc_engine.core.config import Settings
from kyc_engine.core.errors import (
    ChallengeValidationError,
    LivenessSessionClosedError,
    SessionExpiredError,
)
from kyc_engine.liveness.challenges import CHALLENGE_CATALOG, POSITIVE_PARAMETERS
from kyc_engine.liveness.processor import process_challenge, score_challenge
from kyc_engine.liveness.session import (
    LivenessVerifier,
    calculate_anti_spoofing_score,
    identify_risk_flags,
)
from kyc_engine.schemas.liveness import (
    ChallengeResult,
    ChallengeType,
    EvidenceFrame,
    SessionState,
)
from kyc_engine.schemas.signals import FaceVerification
from kyc_engine.scoring.factors import assess_liveness

T0 = datetime(2026, 3, 1, 9, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += timedelta(milliseconds=ms)


def _make_verifier(seed: int = 7, **settings_overrides):
    clock = FakeClock()
    verifier = LivenessVerifier(
        settings=Settings(**settings_overrides),
        rng=random.Random(seed),
        clock=clock,
    )
    return verifier, clock


def _frame(ts: int, **measurements) -> EvidenceFrame:
    return EvidenceFrame(timestamp_ms=ts, **measurements)


# Evidence that satisfies each challenge's default parameters
PASSING_EVIDENCE = {
    ChallengeType.BLINK: [
        _frame(0, blink_detected=True), _frame(400, blink_detected=False), _frame(800, blink_detected=True),
    ],
    ChallengeType.SMILE: [
        _frame(0, smile_intensity=0.8), _frame(500, smile_intensity=0.8),
        _frame(1000, smile_intensity=0.8), _frame(1200, smile_intensity=0.8),
    ],
    ChallengeType.HEAD_TURN_LEFT: [_frame(0, head_angle=0), _frame(300, head_angle=-15), _frame(600, head_angle=-28)],
    ChallengeType.HEAD_TURN_RIGHT: [_frame(0, head_angle=0), _frame(300, head_angle=15), _frame(600, head_angle=31)],
    ChallengeType.HEAD_MOVEMENT: [
        _frame(0),
        _frame(200, movement_magnitude=25, movement_direction="up"),
        _frame(400, movement_magnitude=30, movement_direction="down"),
        _frame(600, movement_magnitude=5),
        _frame(800, movement_magnitude=22, movement_direction="left"),
    ],
}

FAILING_BLINK = [_frame(0, blink_detected=False), _frame(300, blink_detected=False)]


def _result(challenge_type: str, passed: bool = True, confidence: int = 90, **kwargs) -> ChallengeResult:
    return ChallengeResult(type=challenge_type, passed=passed, confidence=confidence, **kwargs)


# ═══════════════════════════════════════════════════════════════
# Generation
# ═══════════════════════════════════════════════════════════════

class TestGenerateChallenges:

    def test_three_distinct_types(self):
        verifier, _ = _make_verifier()
        session = verifier.generate_challenges()
        types = [c.type for c in session.challenges]
        assert len(types) == 3
        assert len(set(types)) == 3
        assert all(t in CHALLENGE_CATALOG for t in types)

    def test_expiry_window(self):
        verifier, _ = _make_verifier()
        session = verifier.generate_challenges()
        assert session.created_at == T0
        assert session.expires_at == T0 + timedelta(milliseconds=3 * 5000 + 15000)
        assert session.total_timeout_ms == 30_000

    def test_initial_state(self):
        verifier, _ = _make_verifier()
        session = verifier.generate_challenges()
        assert session.state == SessionState.CREATED
        assert session.session_id.startswith("LIVE_")
        assert all(not c.completed and c.attempts == 0 for c in session.challenges)
        assert all(c.timeout_ms == 5000 for c in session.challenges)

    def test_same_seed_same_selection(self):
        first, _ = _make_verifier(seed=99)
        second, _ = _make_verifier(seed=99)
        assert [c.type for c in first.generate_challenges().challenges] == \
               [c.type for c in second.generate_challenges().challenges]

    def test_parameters_are_per_session_copies(self):
        verifier, _ = _make_verifier()
        a = verifier.generate_challenges()
        a.challenges[0].parameters["mutated"] = True
        b = verifier.generate_challenges()
        assert all("mutated" not in c.parameters for c in b.challenges)

    def test_default_parameters_attached(self):
        verifier, _ = _make_verifier(liveness_challenge_count=5)
        session = verifier.generate_challenges()
        params = {c.type: c.parameters for c in session.challenges}
        assert params[ChallengeType.BLINK] == {"min_blinks": 2, "max_duration_ms": 2000}
        assert params[ChallengeType.HEAD_TURN_LEFT]["angle"] == -30
        assert params[ChallengeType.HEAD_TURN_RIGHT]["tolerance"] == 15


# ═══════════════════════════════════════════════════════════════
# Evidence scoring
# ═══════════════════════════════════════════════════════════════

class TestProcessChallenge:

    @pytest.mark.parametrize("challenge_type", list(ChallengeType))
    def test_passing_evidence(self, challenge_type):
        result = process_challenge(challenge_type, PASSING_EVIDENCE[challenge_type])
        assert result.passed is True
        assert result.error is None
        assert 70 <= result.confidence <= 100

    def test_blink_count_short(self):
        result = process_challenge("blink", FAILING_BLINK)
        assert result.passed is False
        assert result.error is None
        assert result.details["blink_count"] == 0

    def test_blink_too_slow(self):
        frames = [_frame(0, blink_detected=True), _frame(2500, blink_detected=True)]
        result = process_challenge("blink", frames)
        assert result.passed is False
        assert result.confidence == 80

    def test_smile_not_held_long_enough(self):
        frames = [_frame(0, smile_intensity=0.9), _frame(400, smile_intensity=0.9), _frame(600, smile_intensity=0.2)]
        result = process_challenge("smile", frames)
        assert result.passed is False
        assert result.details["held_ms"] == 400

    def test_head_turn_outside_tolerance(self):
        result = process_challenge("head_turn_left", [_frame(0, head_angle=-5)])
        assert result.passed is False
        assert result.confidence == 0
        assert result.details["angle_difference"] == 25

    def test_head_turn_confidence_scaled_by_distance(self):
        exact = process_challenge("head_turn_right", [_frame(0, head_angle=30)])
        near = process_challenge("head_turn_right", [_frame(0, head_angle=36)])
        assert exact.confidence == 100
        assert near.confidence == 60
        assert near.passed is True

    def test_head_movement_too_few_significant(self):
        frames = [_frame(0), _frame(100, movement_magnitude=25), _frame(200, movement_magnitude=3)]
        result = process_challenge("head_movement", frames)
        assert result.passed is False
        assert result.confidence == 50

    def test_custom_parameters_override_defaults(self):
        frames = [_frame(0, blink_detected=True), _frame(100, blink_detected=False)]
        assert process_challenge("blink", frames, {"min_blinks": 1}).passed is True

    @pytest.mark.parametrize("challenge_type,frames", [
        ("blink", [_frame(0, blink_detected=True)]),
        ("smile", [_frame(0, head_angle=10)]),
        ("head_turn_left", []),
        ("head_movement", [_frame(0), _frame(100, movement_magnitude=30)]),
    ])
    def test_insufficient_evidence_fails_with_reason(self, challenge_type, frames):
        result = process_challenge(challenge_type, frames)
        assert result.passed is False
        assert result.confidence == 0
        assert "requires at least" in result.error

    def test_unknown_type(self):
        result = process_challenge("wink", [])
        assert result.passed is False
        assert "Unknown challenge type" in result.error

    @pytest.mark.parametrize("challenge_type,frames,parameters", [
        ("blink", PASSING_EVIDENCE[ChallengeType.BLINK], {"min_blinks": 0}),
        ("head_turn_right", [_frame(0, head_angle=30)], {"tolerance": 0}),
        ("smile", PASSING_EVIDENCE[ChallengeType.SMILE], {"min_smile_intensity": -0.5}),
        ("head_movement", PASSING_EVIDENCE[ChallengeType.HEAD_MOVEMENT], {"min_significant_movements": "two"}),
    ])
    def test_invalid_parameters_fail_with_reason(self, challenge_type, frames, parameters):
        result = process_challenge(challenge_type, frames, parameters)
        assert result.passed is False
        assert result.confidence == 0
        assert "Invalid parameter" in result.error
        assert result.details["parameter"] == next(iter(parameters))

    def test_invalid_parameter_raises_from_score_challenge(self):
        with pytest.raises(ChallengeValidationError) as exc:
            score_challenge("head_turn_left", [_frame(0, head_angle=-30)], {"tolerance": 0})
        assert exc.value.challenge_type == "head_turn_left"
        assert exc.value.details["value"] == 0

    def test_score_challenge_raises(self):
        with pytest.raises(ChallengeValidationError) as exc:
            score_challenge("blink", [])
        assert exc.value.challenge_type == "blink"
        assert exc.value.code == "CHALLENGE_VALIDATION"


# ═══════════════════════════════════════════════════════════════
# Anti-spoofing + risk flags
# ═══════════════════════════════════════════════════════════════

class TestAntiSpoofing:

    def test_three_strong_passes_clamped(self):
        results = [_result("blink"), _result("smile"), _result("head_movement")]
        assert calculate_anti_spoofing_score(results) == 100.0

    def test_single_failure(self):
        assert calculate_anti_spoofing_score([_result("blink", passed=False, confidence=0)]) == 45.0

    def test_never_negative(self):
        results = [_result("blink", passed=False, confidence=0) for _ in range(10)]
        assert calculate_anti_spoofing_score(results) == 0.0

    def test_empty(self):
        assert calculate_anti_spoofing_score([]) == 50.0


class TestRiskFlags:

    def test_clean_results(self):
        assert identify_risk_flags([_result("blink"), _result("smile")]) == []

    def test_low_confidence_and_failures(self):
        flags = identify_risk_flags([_result("blink", confidence=40), _result("smile", passed=False, confidence=30)])
        by_type = {f.type: f for f in flags}
        assert by_type["low_confidence"].severity.value == "medium"
        assert by_type["failed_challenges"].severity.value == "high"

    def test_slow_processing(self):
        flags = identify_risk_flags([_result("blink", processing_time_ms=12_000)])
        assert [f.type for f in flags] == ["slow_processing"]
        assert flags[0].severity.value == "low"
        assert flags[0].details == ["Mean processing time 12000ms (threshold 10000ms)"]

    def test_low_confidence_details(self):
        flags = identify_risk_flags([_result("blink", confidence=40), _result("smile", confidence=50)])
        assert [f.type for f in flags] == ["low_confidence"]
        assert flags[0].details == ["Mean confidence 45 over 2 challenges (threshold 60)"]

    def test_unsubmitted_challenges_count_as_failed(self):
        flags = identify_risk_flags([_result("blink")], ["blink", "smile", "head_movement"])
        by_type = {f.type: f for f in flags}
        assert by_type["low_confidence"].details == ["Mean confidence 30 over 3 challenges (threshold 60)"]
        assert by_type["failed_challenges"].description == "2 liveness challenges failed"
        assert by_type["failed_challenges"].details == [
            "smile result not submitted", "head_movement result not submitted",
        ]

    def test_unsubmitted_challenges_skip_latency(self):
        flags = identify_risk_flags([_result("blink", processing_time_ms=12_000)], ["blink", "smile"])
        assert "slow_processing" in [f.type for f in flags]


# ═══════════════════════════════════════════════════════════════
# Session lifecycle
# ═══════════════════════════════════════════════════════════════

class TestSessionLifecycle:

    def _complete_all(self, verifier, session):
        return [
            verifier.submit_challenge(session, c.id, PASSING_EVIDENCE[c.type])
            for c in session.challenges
        ]

    def test_full_pass(self):
        verifier, clock = _make_verifier()
        session = verifier.generate_challenges()
        clock.advance(4_000)
        results = self._complete_all(verifier, session)

        assert session.state == SessionState.ACTIVE
        assert session.current_challenge is None

        evaluation = verifier.evaluate_session(session, results)
        assert evaluation.passed is True
        assert evaluation.state == SessionState.PASSED
        assert session.state == SessionState.PASSED
        assert evaluation.summary.completed_challenges == 3
        assert evaluation.summary.processing_time_ms == 4_000
        assert evaluation.anti_spoofing_score >= 50

    def test_three_passes_mean_90(self):
        verifier, _ = _make_verifier()
        session = verifier.generate_challenges()
        results = [_result(c.type.value, confidence=90) for c in session.challenges]
        evaluation = verifier.evaluate_session(session, results)
        assert evaluation.passed is True
        assert evaluation.confidence == 90
        assert evaluation.anti_spoofing_score >= 50

    def test_two_of_three_is_not_enough(self):
        verifier, _ = _make_verifier()
        session = verifier.generate_challenges()
        types = [c.type.value for c in session.challenges]
        results = [_result(types[0]), _result(types[1]), _result(types[2], passed=False, confidence=95)]
        evaluation = verifier.evaluate_session(session, results)
        assert evaluation.passed is False
        assert session.state == SessionState.FAILED
        assert any(f.type == "failed_challenges" for f in evaluation.risk_flags)

    def test_low_mean_confidence_fails(self):
        verifier, _ = _make_verifier()
        session = verifier.generate_challenges()
        results = [_result(c.type.value, confidence=60) for c in session.challenges]
        assert verifier.evaluate_session(session, results).passed is False

    def test_missing_results_count_against_mean(self):
        verifier, _ = _make_verifier()
        session = verifier.generate_challenges()
        evaluation = verifier.evaluate_session(session, [_result(session.challenges[0].type.value, confidence=100)])
        assert evaluation.passed is False
        assert evaluation.confidence == 33

    def test_latest_attempt_per_type_wins(self):
        verifier, _ = _make_verifier()
        session = verifier.generate_challenges()
        first = session.challenges[0].type.value
        results = [_result(first, passed=False, confidence=10)]
        results += [_result(c.type.value, confidence=90) for c in session.challenges]
        evaluation = verifier.evaluate_session(session, results)
        assert evaluation.passed is True
        assert len(evaluation.challenges) == 3

    def test_to_liveness_check(self):
        verifier, _ = _make_verifier()
        session = verifier.generate_challenges()
        results = [_result(c.type.value, confidence=90) for c in session.challenges]
        check = verifier.evaluate_session(session, results).to_liveness_check()
        assert check.passed is True
        assert check.confidence == 90
        assert all(c.completed for c in check.challenges)

    def test_partial_session_reports_missing_challenges(self):
        verifier, _ = _make_verifier()
        session = verifier.generate_challenges()
        types = [c.type.value for c in session.challenges]
        evaluation = verifier.evaluate_session(session, [_result(types[0], confidence=90)])

        assert evaluation.passed is False
        assert evaluation.confidence == 30
        assert evaluation.summary.failed_challenges == 2
        by_type = {f.type: f for f in evaluation.risk_flags}
        assert set(by_type) == {"low_confidence", "failed_challenges"}
        assert by_type["failed_challenges"].description == "2 liveness challenges failed"
        assert [r.type for r in evaluation.challenges] == types
        assert [r.passed for r in evaluation.challenges] == [True, False, False]

    def test_partial_session_liveness_check_lists_every_challenge(self):
        verifier, _ = _make_verifier()
        session = verifier.generate_challenges()
        types = [c.type.value for c in session.challenges]
        check = verifier.evaluate_session(session, [_result(types[0], confidence=90)]).to_liveness_check()

        assert [c.type for c in check.challenges] == types
        assert [c.completed for c in check.challenges] == [True, False, False]
        factor = assess_liveness(FaceVerification(face_match_confidence=95, liveness_result=check))
        assert "2 liveness challenges failed" in factor.issues

    def test_expired_liveness_check_lists_every_challenge(self):
        verifier, clock = _make_verifier()
        session = verifier.generate_challenges()
        clock.advance(30_001)
        check = verifier.evaluate_session(session, []).to_liveness_check()
        assert len(check.challenges) == 3
        assert not any(c.completed for c in check.challenges)

    def test_closed_session_cannot_be_reevaluated(self):
        verifier, _ = _make_verifier()
        session = verifier.generate_challenges()
        results = [_result(c.type.value) for c in session.challenges]
        verifier.evaluate_session(session, results)
        with pytest.raises(LivenessSessionClosedError):
            verifier.evaluate_session(session, results)

    def test_submit_after_close_rejected(self):
        verifier, _ = _make_verifier()
        session = verifier.generate_challenges()
        verifier.evaluate_session(session, [])
        challenge = session.challenges[0]
        with pytest.raises(LivenessSessionClosedError):
            verifier.submit_challenge(session, challenge.id, PASSING_EVIDENCE[challenge.type])


class TestAttempts:

    def test_unknown_challenge_id(self):
        verifier, _ = _make_verifier()
        session = verifier.generate_challenges()
        with pytest.raises(ChallengeValidationError) as exc:
            verifier.submit_challenge(session, "challenge_99", [])
        assert exc.value.code == "CHALLENGE_VALIDATION"
        assert exc.value.details["challenge_id"] == "challenge_99"
        assert exc.value.details["session_id"] == session.session_id
        assert all(c.attempts == 0 for c in session.challenges)

    def test_invalid_parameters_fail_the_attempt_only(self):
        verifier, _ = _make_verifier()
        session = verifier.generate_challenges()
        challenge = session.challenges[0]
        key = next(iter(POSITIVE_PARAMETERS[challenge.type]))
        challenge.parameters[key] = 0

        result = verifier.submit_challenge(session, challenge.id, PASSING_EVIDENCE[challenge.type])
        assert result.passed is False
        assert result.confidence == 0
        assert f"Invalid parameter {key}=0" in result.error
        assert challenge.attempts == 1
        assert challenge.completed is False
        assert session.state == SessionState.ACTIVE

    def test_completed_challenge_accepts_no_more_attempts(self):
        verifier, _ = _make_verifier()
        session = verifier.generate_challenges()
        challenge = session.challenges[0]
        verifier.submit_challenge(session, challenge.id, PASSING_EVIDENCE[challenge.type])
        assert challenge.completed is True
        with pytest.raises(ChallengeValidationError):
            verifier.submit_challenge(session, challenge.id, PASSING_EVIDENCE[challenge.type])

    def test_attempts_exhausted(self):
        verifier, _ = _make_verifier(seed=3, liveness_challenge_count=5)
        session = verifier.generate_challenges()
        blink = next(c for c in session.challenges if c.type == ChallengeType.BLINK)
        for _ in range(3):
            result = verifier.submit_challenge(session, blink.id, FAILING_BLINK)
            assert result.passed is False
        assert blink.exhausted is True
        with pytest.raises(ChallengeValidationError):
            verifier.submit_challenge(session, blink.id, PASSING_EVIDENCE[ChallengeType.BLINK])

    def test_mismatched_result_type_rejected(self):
        verifier, clock = _make_verifier()
        session = verifier.generate_challenges()
        challenge = session.challenges[0]
        other = next(t for t in ChallengeType if t != challenge.type)
        with pytest.raises(ChallengeValidationError):
            session.record_result(challenge.id, _result(other.value), clock())


class TestExpiry:

    def test_evaluation_after_expiry_is_expired(self):
        verifier, clock = _make_verifier()
        session = verifier.generate_challenges()
        results = [_result(c.type.value, confidence=100) for c in session.challenges]
        clock.advance(30_001)

        evaluation = verifier.evaluate_session(session, results)
        assert evaluation.state == SessionState.EXPIRED
        assert evaluation.passed is False
        assert evaluation.confidence == 0
        assert evaluation.anti_spoofing_score == 0
        assert evaluation.summary.completed_challenges == 0
        assert [f.type for f in evaluation.risk_flags] == ["session_expired"]
        assert session.state == SessionState.EXPIRED

    def test_expired_result_is_deterministic(self):
        verifier, clock = _make_verifier()
        session = verifier.generate_challenges()
        clock.advance(60_000)
        good = verifier.evaluate_session(session, [_result(c.type.value) for c in session.challenges])
        bad = verifier.evaluate_session(session, [])
        assert good.model_dump(exclude={"evaluated_at"}) == bad.model_dump(exclude={"evaluated_at"})

    def test_exactly_at_expiry_still_valid(self):
        verifier, clock = _make_verifier()
        session = verifier.generate_challenges()
        clock.advance(30_000)
        assert session.is_valid(clock()) is True
        results = [_result(c.type.value) for c in session.challenges]
        assert verifier.evaluate_session(session, results).state == SessionState.PASSED

    def test_submit_after_expiry_raises(self):
        verifier, clock = _make_verifier()
        session = verifier.generate_challenges()
        challenge = session.challenges[0]
        clock.advance(45_000)
        with pytest.raises(SessionExpiredError) as exc:
            verifier.submit_challenge(session, challenge.id, PASSING_EVIDENCE[challenge.type])
        assert exc.value.code == "SESSION_EXPIRED"
        assert session.state == SessionState.EXPIRED
        assert challenge.attempts == 0

    def test_partial_progress_does_not_count_once_expired(self):
        verifier, clock = _make_verifier()
        session = verifier.generate_challenges()
        first = session.challenges[0]
        result = verifier.submit_challenge(session, first.id, PASSING_EVIDENCE[first.type])
        clock.advance(31_000)
        evaluation = verifier.evaluate_session(session, [result])
        assert evaluation.summary.completed_challenges == 0
        assert evaluation.passed is False
