"""
Scene checks run before the state machine: body orientation vs. camera view,
and both feet planted. A rejected frame counts as "no pose".
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence

from .config import View
from .pose import Keypoint, find_keypoint, keypoint_score

FRONT_FACE_CONFIDENCE = 0.4
BACK_FACE_CONFIDENCE = 0.2
# One eye at least this confident while the other is below BACK_FACE_CONFIDENCE.
SINGLE_EYE_CONFIDENCE = 0.3


class Orientation(str, Enum):
    FRONT = "front"
    BACK = "back"
    SIDE = "side"
    UNKNOWN = "unknown"


_EXPECTED_ORIENTATION = {
    View.FRONT: Orientation.FRONT,
    View.SIDE: Orientation.SIDE,
    View.REAR: Orientation.BACK,
}


def detect_orientation(keypoints: Sequence[Keypoint]) -> Orientation:
    """Classify facing direction from nose/eye confidence."""
    nose = keypoint_score(keypoints, "nose")
    left_eye = keypoint_score(keypoints, "left_eye")
    right_eye = keypoint_score(keypoints, "right_eye")
    facial = (nose + left_eye + right_eye) / 3.0

    if facial > FRONT_FACE_CONFIDENCE:
        return Orientation.FRONT
    if facial < BACK_FACE_CONFIDENCE:
        return Orientation.BACK

    one_side = (
        (left_eye > SINGLE_EYE_CONFIDENCE and right_eye < BACK_FACE_CONFIDENCE)
        or (right_eye > SINGLE_EYE_CONFIDENCE and left_eye < BACK_FACE_CONFIDENCE)
    )
    if one_side or BACK_FACE_CONFIDENCE <= facial <= FRONT_FACE_CONFIDENCE:
        return Orientation.SIDE
    return Orientation.UNKNOWN


def is_orientation_valid(detected: Orientation, view: View) -> bool:
    if detected is Orientation.UNKNOWN:
        return False
    expected = _EXPECTED_ORIENTATION[view]
    if detected is expected:
        return True
    # A slightly turned subject reads as side; a side camera sees front/back too.
    if detected is Orientation.SIDE or expected is Orientation.SIDE:
        return True
    return False


@dataclass(frozen=True)
class PlantCheck:
    """Result of the ankle-plant check. `reason` is set when inconclusive."""
    ok: bool
    reason: Optional[str] = None
    left_ankle_score: Optional[float] = None
    right_ankle_score: Optional[float] = None
    avg_leg_length: Optional[float] = None
    ankle_diff: Optional[float] = None


def check_ankle_plant(
    keypoints: Sequence[Keypoint],
    ankle_confidence_min: float,
    ankle_symmetry_threshold: float,
    min_leg_length_px: float,
    view_multiplier: float = 1.0,
) -> PlantCheck:
    """Reject frames where one foot is raised. Ambiguous data passes."""
    left_ankle = find_keypoint(keypoints, "left_ankle")
    right_ankle = find_keypoint(keypoints, "right_ankle")
    left_score = left_ankle.confidence if left_ankle is not None else 0.0
    right_score = right_ankle.confidence if right_ankle is not None else 0.0

    if left_score < ankle_confidence_min or right_score < ankle_confidence_min:
        return PlantCheck(
            ok=True,
            reason="missing_ankles",
            left_ankle_score=left_score,
            right_ankle_score=right_score,
        )

    left_hip = find_keypoint(keypoints, "left_hip")
    right_hip = find_keypoint(keypoints, "right_hip")
    left_hip_y = left_hip.y if left_hip is not None else 0.0
    right_hip_y = right_hip.y if right_hip is not None else 0.0
    avg_leg_length = (abs(left_ankle.y - left_hip_y) + abs(right_ankle.y - right_hip_y)) / 2.0

    if avg_leg_length < min_leg_length_px:
        return PlantCheck(ok=True, reason="camera_far", avg_leg_length=avg_leg_length)

    ankle_diff = abs(left_ankle.y - right_ankle.y)
    limit = avg_leg_length * ankle_symmetry_threshold * view_multiplier
    return PlantCheck(
        ok=ankle_diff <= limit,
        avg_leg_length=avg_leg_length,
        ankle_diff=ankle_diff,
    )
