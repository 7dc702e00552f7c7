"""
Challenge evidence scoring.

Pure functions over the frame measurements the vision collaborator supplies.
Each challenge type has its own pass predicate and its own confidence
formula scaled by distance from the target. Too little evidence fails the
challenge with a reason instead of guessing.
"""
from __future__ import annotations

from typing import Any, Callable, Optional, Sequence, Union

from kyc_engine.core.errors import ChallengeValidationError
from kyc_engine.liveness.challenges import DEFAULT_PARAMETERS, MIN_EVIDENCE_FRAMES, POSITIVE_PARAMETERS
from kyc_engine.schemas.liveness import ChallengeResult, ChallengeType, EvidenceFrame

Outcome = tuple[bool, float, dict[str, Any]]


def _usable(
    frames: Sequence[EvidenceFrame],
    challenge_type: ChallengeType,
    measurement: str,
    label: str,
) -> list[EvidenceFrame]:
    """Frames carrying `measurement`, in capture order, or a validation error."""
    required = MIN_EVIDENCE_FRAMES[challenge_type]
    usable = sorted(
        (f for f in frames if getattr(f, measurement) is not None),
        key=lambda f: f.timestamp_ms,
    )
    if len(usable) < required:
        raise ChallengeValidationError(
            f"{label} requires at least {required} frames with {measurement}, got {len(usable)}",
            challenge_type=challenge_type.value,
            details={"required_frames": required, "usable_frames": len(usable)},
        )
    return usable


def _score_blink(frames: Sequence[EvidenceFrame], params: dict[str, Any]) -> Outcome:
    usable = _usable(frames, ChallengeType.BLINK, "blink_detected", "Blink detection")
    min_blinks = params["min_blinks"]
    max_duration = params["max_duration_ms"]

    blinks = sum(1 for f in usable if f.blink_detected)
    duration = usable[-1].timestamp_ms - usable[0].timestamp_ms
    within_window = duration <= max_duration

    passed = blinks >= min_blinks and within_window
    confidence = min(100.0, blinks / min_blinks * 80 + (20 if within_window else 0))
    return passed, confidence, {
        "blink_count": blinks,
        "min_blinks": min_blinks,
        "duration_ms": duration,
        "max_duration_ms": max_duration,
        "frame_count": len(usable),
    }


def _longest_hold_ms(frames: Sequence[EvidenceFrame], min_intensity: float) -> int:
    longest = 0
    run_start: Optional[int] = None
    for frame in frames:
        if frame.smile_intensity >= min_intensity:
            if run_start is None:
                run_start = frame.timestamp_ms
            longest = max(longest, frame.timestamp_ms - run_start)
        else:
            run_start = None
    return longest


def _score_smile(frames: Sequence[EvidenceFrame], params: dict[str, Any]) -> Outcome:
    usable = _usable(frames, ChallengeType.SMILE, "smile_intensity", "Smile detection")
    min_intensity = params["min_smile_intensity"]
    hold_duration = params["hold_duration_ms"]

    intensities = [f.smile_intensity for f in usable]
    peak = max(intensities)
    mean = sum(intensities) / len(intensities)
    held = _longest_hold_ms(usable, min_intensity)

    passed = peak >= min_intensity and held >= hold_duration
    confidence = min(100.0, peak / min_intensity * 60 + (40 if mean > min_intensity * 0.5 else 0))
    return passed, confidence, {
        "max_intensity": round(peak * 100),
        "avg_intensity": round(mean * 100),
        "min_intensity": round(min_intensity * 100),
        "held_ms": held,
        "hold_duration_ms": hold_duration,
        "frame_count": len(usable),
    }


def _score_head_turn(
    challenge_type: ChallengeType,
    frames: Sequence[EvidenceFrame],
    params: dict[str, Any],
) -> Outcome:
    usable = _usable(frames, challenge_type, "head_angle", "Head turn detection")
    target = params["angle"]
    tolerance = params["tolerance"]

    angles = [f.head_angle for f in usable]
    # Furthest excursion in the requested direction
    detected = min(angles) if challenge_type == ChallengeType.HEAD_TURN_LEFT else max(angles)
    difference = abs(detected - target)

    passed = difference <= tolerance
    confidence = min(100.0, max(0.0, (tolerance - difference) / tolerance * 100))
    return passed, confidence, {
        "detected_angle": round(detected),
        "target_angle": target,
        "tolerance": tolerance,
        "angle_difference": round(difference),
        "frame_count": len(usable),
    }


def _score_head_movement(frames: Sequence[EvidenceFrame], params: dict[str, Any]) -> Outcome:
    required = MIN_EVIDENCE_FRAMES[ChallengeType.HEAD_MOVEMENT]
    if len(frames) < required:
        raise ChallengeValidationError(
            f"Head movement detection requires at least {required} frames, got {len(frames)}",
            challenge_type=ChallengeType.HEAD_MOVEMENT.value,
            details={"required_frames": required, "usable_frames": len(frames)},
        )
    ordered = sorted(frames, key=lambda f: f.timestamp_ms)
    # The first frame has nothing to move from
    movements = [f for f in ordered[1:] if f.movement_magnitude is not None]
    if not movements:
        raise ChallengeValidationError(
            "Head movement detection requires movement measurements between frames",
            challenge_type=ChallengeType.HEAD_MOVEMENT.value,
        )

    threshold = params["movement_threshold"]
    min_significant = params["min_significant_movements"]
    significant = [f for f in movements if f.movement_magnitude >= threshold]

    passed = len(significant) >= min_significant
    confidence = min(100.0, len(significant) / len(movements) * 100)
    return passed, confidence, {
        "total_movements": len(movements),
        "significant_movements": len(significant),
        "movement_threshold": threshold,
        "max_movement": round(max(f.movement_magnitude for f in movements)),
        "directions": sorted({f.movement_direction for f in significant if f.movement_direction}),
        "frame_count": len(ordered),
    }


_SCORERS: dict[ChallengeType, Callable[[Sequence[EvidenceFrame], dict[str, Any]], Outcome]] = {
    ChallengeType.BLINK: _score_blink,
    ChallengeType.SMILE: _score_smile,
    ChallengeType.HEAD_TURN_LEFT: lambda frames, p: _score_head_turn(ChallengeType.HEAD_TURN_LEFT, frames, p),
    ChallengeType.HEAD_TURN_RIGHT: lambda frames, p: _score_head_turn(ChallengeType.HEAD_TURN_RIGHT, frames, p),
    ChallengeType.HEAD_MOVEMENT: _score_head_movement,
}


def _check_parameters(kind: ChallengeType, params: dict[str, Any]) -> None:
    for name in POSITIVE_PARAMETERS[kind]:
        value = params[name]
        if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
            raise ChallengeValidationError(
                f"Invalid parameter {name}={value!r}: must be a positive number",
                challenge_type=kind.value,
                details={"parameter": name, "value": value},
            )


def score_challenge(
    challenge_type: Union[ChallengeType, str],
    frames: Sequence[EvidenceFrame],
    parameters: Optional[dict[str, Any]] = None,
) -> ChallengeResult:
    """Raises ChallengeValidationError for unknown types, invalid parameters or insufficient evidence."""
    try:
        kind = ChallengeType(challenge_type)
    except ValueError:
        raise ChallengeValidationError(
            f"Unknown challenge type: {challenge_type}",
            challenge_type=str(challenge_type),
        ) from None

    params = {**DEFAULT_PARAMETERS[kind], **(parameters or {})}
    _check_parameters(kind, params)
    passed, confidence, details = _SCORERS[kind](frames, params)
    return ChallengeResult(
        type=kind.value,
        passed=passed,
        confidence=round(confidence),
        details=details,
    )


def process_challenge(
    challenge_type: Union[ChallengeType, str],
    frames: Sequence[EvidenceFrame],
    parameters: Optional[dict[str, Any]] = None,
) -> ChallengeResult:
    """
    Score one challenge. Validation failures fail this challenge only: the
    result carries passed=False, confidence 0 and the reason in `error`.
    """
    try:
        return score_challenge(challenge_type, frames, parameters)
    except ChallengeValidationError as e:
        return ChallengeResult(
            type=e.challenge_type,
            passed=False,
            confidence=0,
            details=e.details,
            error=e.message,
        )
