"""
Keypoints -> validated scalar signal.
Angle mode (front/side): knee angle of the more-flexed leg.
Displacement mode (rear): vertical hip-knee distance averaged over legs.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional, Sequence

from .pose import Keypoint, find_keypoint

LEFT_LEG = ("left_hip", "left_knee", "left_ankle")
RIGHT_LEG = ("right_hip", "right_knee", "right_ankle")

# Angle reported for a zero-length limb vector.
NEUTRAL_ANGLE_DEG = 180.0


@dataclass(frozen=True)
class SignalMetrics:
    """One frame's signal. `signal` is None when no leg passed gating."""
    valid: bool
    signal: Optional[float]
    confidence: float
    valid_side_count: int
    dominant_side: Optional[str] = None


INVALID = SignalMetrics(valid=False, signal=None, confidence=0.0, valid_side_count=0)


def _clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


def _confident(kp: Optional[Keypoint], threshold: float) -> bool:
    return kp is not None and kp.confidence >= threshold


def knee_angle_deg(hip: Keypoint, knee: Keypoint, ankle: Keypoint) -> float:
    """Angle at the knee between knee->hip and knee->ankle, in [0, 180]."""
    ax, ay = hip.x - knee.x, hip.y - knee.y
    bx, by = ankle.x - knee.x, ankle.y - knee.y
    norm_a = math.hypot(ax, ay)
    norm_b = math.hypot(bx, by)
    if norm_a == 0 or norm_b == 0:
        return NEUTRAL_ANGLE_DEG
    cos_val = _clamp((ax * bx + ay * by) / (norm_a * norm_b), -1.0, 1.0)
    return _clamp(math.degrees(math.acos(cos_val)), 0.0, 180.0)


def _leg_angle(
    keypoints: Sequence[Keypoint],
    names: tuple[str, str, str],
    threshold: float,
) -> Optional[tuple[float, float]]:
    hip, knee, ankle = (find_keypoint(keypoints, n) for n in names)
    if not (_confident(hip, threshold) and _confident(knee, threshold) and _confident(ankle, threshold)):
        return None
    confidence = min(hip.confidence, knee.confidence, ankle.confidence)
    return knee_angle_deg(hip, knee, ankle), confidence


def compute_knee_metrics(
    keypoints: Sequence[Keypoint],
    confidence_threshold: float,
    single_side_penalty: float,
) -> SignalMetrics:
    """Smaller (deeper) knee angle among legs whose hip/knee/ankle pass the threshold."""
    sides = []
    for side, names in (("left", LEFT_LEG), ("right", RIGHT_LEG)):
        result = _leg_angle(keypoints, names, confidence_threshold)
        if result is not None:
            sides.append((side, result[0], result[1]))
    if not sides:
        return INVALID

    # On equal angles the later (right) leg wins.
    side, theta, confidence = min(reversed(sides), key=lambda s: s[1])
    penalty = single_side_penalty if len(sides) == 1 else 1.0
    return SignalMetrics(
        valid=True,
        signal=theta,
        confidence=_clamp(confidence * penalty, 0.0, 1.0),
        valid_side_count=len(sides),
        dominant_side=side,
    )


def compute_hip_delta_metrics(
    keypoints: Sequence[Keypoint],
    confidence_threshold: float,
) -> SignalMetrics:
    """Mean |hip.y - knee.y| over legs whose hip and knee pass the threshold."""
    deltas: list[float] = []
    confidences: list[float] = []
    for names in (LEFT_LEG, RIGHT_LEG):
        hip = find_keypoint(keypoints, names[0])
        knee = find_keypoint(keypoints, names[1])
        if not (_confident(hip, confidence_threshold) and _confident(knee, confidence_threshold)):
            continue
        deltas.append(abs(hip.y - knee.y))
        confidences.append(min(hip.confidence, knee.confidence))
    if not deltas:
        return INVALID
    return SignalMetrics(
        valid=True,
        signal=sum(deltas) / len(deltas),
        confidence=_clamp(sum(confidences) / len(confidences), 0.0, 1.0),
        valid_side_count=len(deltas),
    )
