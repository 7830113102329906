from types import SimpleNamespace

import pytest

from posereps.pose import KEYPOINT_LANDMARKS, find_keypoint, keypoint_score, landmarks_to_keypoints


def _landmarks(count=33, visibility=0.8):
    return [SimpleNamespace(x=i / 100.0, y=0.5, visibility=visibility) for i in range(count)]


def test_landmarks_mapped_to_named_pixel_keypoints():
    kps = landmarks_to_keypoints(_landmarks(), width=200, height=100)
    assert [kp.name for kp in kps] == list(KEYPOINT_LANDMARKS)
    knee = find_keypoint(kps, "left_knee")
    assert knee.x == pytest.approx(50.0)
    assert knee.y == pytest.approx(50.0)
    assert knee.confidence == pytest.approx(0.8)


def test_visibility_clamped_and_missing_points_skipped():
    kps = landmarks_to_keypoints(_landmarks(count=20, visibility=1.5), width=10, height=10)
    assert find_keypoint(kps, "left_hip") is None
    assert keypoint_score(kps, "left_hip") == 0.0
    assert keypoint_score(kps, "nose") == 1.0
