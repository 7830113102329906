import pytest

from posereps.metrics import (
    NEUTRAL_ANGLE_DEG,
    compute_hip_delta_metrics,
    compute_knee_metrics,
    knee_angle_deg,
)
from posereps.pose import Keypoint

from support import rear_pose, squat_pose


def test_knee_angle_straight_and_right_angle():
    hip = Keypoint("left_hip", 0, 0, 1)
    knee = Keypoint("left_knee", 0, 100, 1)
    assert knee_angle_deg(hip, knee, Keypoint("left_ankle", 0, 200, 1)) == pytest.approx(180.0)
    assert knee_angle_deg(hip, knee, Keypoint("left_ankle", 100, 100, 1)) == pytest.approx(90.0)


def test_knee_angle_degenerate_vector_is_neutral():
    p = Keypoint("left_knee", 10, 10, 1)
    assert knee_angle_deg(p, p, Keypoint("left_ankle", 10, 50, 1)) == NEUTRAL_ANGLE_DEG


def test_knee_metrics_both_sides():
    m = compute_knee_metrics(squat_pose(120), 0.5, 0.8)
    assert m.valid
    assert m.signal == pytest.approx(120.0, abs=1e-6)
    assert m.valid_side_count == 2
    assert m.confidence == pytest.approx(0.9)


def test_knee_metrics_single_side_penalized():
    m = compute_knee_metrics(squat_pose(120, right_score=0.1), 0.5, 0.8)
    assert m.valid
    assert m.valid_side_count == 1
    assert m.dominant_side == "left"
    assert m.confidence == pytest.approx(0.72)


def test_knee_metrics_no_side_invalid():
    m = compute_knee_metrics(squat_pose(120, left_score=0.2, right_score=0.2), 0.5, 0.8)
    assert not m.valid
    assert m.signal is None
    assert m.confidence == 0.0


def test_hip_delta_averages_sides():
    m = compute_hip_delta_metrics(rear_pose(80), 0.3)
    assert m.valid
    assert m.signal == pytest.approx(80.0)
    assert m.valid_side_count == 2


def test_hip_delta_invalid_below_threshold():
    assert not compute_hip_delta_metrics(rear_pose(80, score=0.1), 0.3).valid


def test_knee_metrics_tie_prefers_right_leg():
    m = compute_knee_metrics(squat_pose(120, left_score=0.6), 0.5, 0.8)
    assert m.dominant_side == "right"
    assert m.confidence == pytest.approx(0.9)
