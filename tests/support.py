"""Keypoint builders, a fake estimator and a manual clock shared by the tests."""
from __future__ import annotations

import math
import threading
from typing import Optional

from posereps.pose import Keypoint

HIP_Y = 200.0
KNEE_Y = 300.0
SHIN_PX = 100.0


def face(score: float) -> list[Keypoint]:
    return [
        Keypoint("nose", 320.0, 80.0, score),
        Keypoint("left_eye", 330.0, 70.0, score),
        Keypoint("right_eye", 310.0, 70.0, score),
    ]


def squat_pose(
    angle_deg: float,
    face_score: float = 0.9,
    left_score: float = 0.9,
    right_score: float = 0.9,
    left_ankle_lift: float = 0.0,
) -> list[Keypoint]:
    """Front-facing body with both knees bent to `angle_deg`."""
    rad = math.radians(angle_deg)
    dx = SHIN_PX * math.sin(rad)
    ankle_y = KNEE_Y - SHIN_PX * math.cos(rad)
    kps = face(face_score)
    kps += [
        Keypoint("left_hip", 350.0, HIP_Y, left_score),
        Keypoint("left_knee", 350.0, KNEE_Y, left_score),
        Keypoint("left_ankle", 350.0 + dx, ankle_y - left_ankle_lift, left_score),
        Keypoint("right_hip", 290.0, HIP_Y, right_score),
        Keypoint("right_knee", 290.0, KNEE_Y, right_score),
        Keypoint("right_ankle", 290.0 - dx, ankle_y, right_score),
    ]
    return kps


def rear_pose(hip_knee_px: float, score: float = 0.9) -> list[Keypoint]:
    """Back-facing body; hip-knee vertical gap shrinks as the subject sits down."""
    knee_y = HIP_Y + hip_knee_px
    kps = face(0.05)
    for side, x in (("left", 290.0), ("right", 350.0)):
        kps += [
            Keypoint(f"{side}_hip", x, HIP_Y, score),
            Keypoint(f"{side}_knee", x, knee_y, score),
            Keypoint(f"{side}_ankle", x, 420.0, score),
        ]
    return kps


class ManualClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class FakeEstimator:
    """Returns queued keypoint sets (the last one repeats). Optionally blocks on a gate."""

    backend = "fake"

    def __init__(self, results=None, error: Optional[Exception] = None, gated: bool = False):
        self.results = list(results or [])
        self.error = error
        self.calls = 0
        self.closed = False
        self.started = threading.Event()
        self.gate = threading.Event()
        if not gated:
            self.gate.set()

    def estimate(self, frame_bgr):
        self.calls += 1
        self.started.set()
        self.gate.wait(5.0)
        if self.error is not None:
            raise self.error
        if not self.results:
            return None
        if len(self.results) > 1:
            return self.results.pop(0)
        return self.results[0]

    def close(self) -> None:
        self.closed = True


def factory_for(estimator: FakeEstimator):
    def factory(model: str) -> FakeEstimator:
        return estimator
    return factory
