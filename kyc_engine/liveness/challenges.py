"""
Liveness challenge catalog.

Each challenge type carries its instruction text and the default
parameters the evidence processor checks against.
"""
from __future__ import annotations

import copy
from typing import Any

from kyc_engine.schemas.liveness import ChallengeType

CHALLENGE_CATALOG: tuple[ChallengeType, ...] = tuple(ChallengeType)

INSTRUCTIONS: dict[ChallengeType, str] = {
    ChallengeType.BLINK: "Please blink your eyes naturally",
    ChallengeType.SMILE: "Please smile for the camera",
    ChallengeType.HEAD_TURN_LEFT: "Please slowly turn your head to the left",
    ChallengeType.HEAD_TURN_RIGHT: "Please slowly turn your head to the right",
    ChallengeType.HEAD_MOVEMENT: "Please move your head in different directions",
}

DEFAULT_PARAMETERS: dict[ChallengeType, dict[str, Any]] = {
    ChallengeType.BLINK: {"min_blinks": 2, "max_duration_ms": 2000},
    ChallengeType.SMILE: {"min_smile_intensity": 0.6, "hold_duration_ms": 1000},
    ChallengeType.HEAD_TURN_LEFT: {"angle": -30, "tolerance": 15},
    ChallengeType.HEAD_TURN_RIGHT: {"angle": 30, "tolerance": 15},
    ChallengeType.HEAD_MOVEMENT: {
        "directions": ["up", "down", "left", "right"],
        "movement_threshold": 20,
        "min_significant_movements": 2,
    },
}

# Parameters the confidence formulas divide by or count against; must be > 0
POSITIVE_PARAMETERS: dict[ChallengeType, tuple[str, ...]] = {
    ChallengeType.BLINK: ("min_blinks", "max_duration_ms"),
    ChallengeType.SMILE: ("min_smile_intensity",),
    ChallengeType.HEAD_TURN_LEFT: ("tolerance",),
    ChallengeType.HEAD_TURN_RIGHT: ("tolerance",),
    ChallengeType.HEAD_MOVEMENT: ("movement_threshold", "min_significant_movements"),
}

# Evidence samples a challenge needs before it can be judged at all
MIN_EVIDENCE_FRAMES: dict[ChallengeType, int] = {
    ChallengeType.BLINK: 2,
    ChallengeType.SMILE: 1,
    ChallengeType.HEAD_TURN_LEFT: 1,
    ChallengeType.HEAD_TURN_RIGHT: 1,
    ChallengeType.HEAD_MOVEMENT: 3,
}


def instruction_for(challenge_type: ChallengeType) -> str:
    return INSTRUCTIONS.get(challenge_type, "Please follow the instructions")


def parameters_for(challenge_type: ChallengeType) -> dict[str, Any]:
    return copy.deepcopy(DEFAULT_PARAMETERS[challenge_type])
