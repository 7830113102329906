"""
MediaPipe Pose estimation. Returns named keypoints in image coordinates (pixel)
with per-point confidence. Uses Pose Landmarker task (MediaPipe 0.10+).
"""
from __future__ import annotations

import logging
import os
import urllib.request
from dataclasses import dataclass
from typing import Optional, Protocol, Sequence

import numpy as np

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Keypoint:
    name: str
    x: float
    y: float
    confidence: float


# MediaPipe Pose landmark indices (same as PoseLandmark)
class LandmarkIdx:
    NOSE = 0
    LEFT_EYE = 2
    RIGHT_EYE = 5
    LEFT_EAR = 7
    RIGHT_EAR = 8
    LEFT_SHOULDER = 11
    RIGHT_SHOULDER = 12
    LEFT_ELBOW = 13
    RIGHT_ELBOW = 14
    LEFT_WRIST = 15
    RIGHT_WRIST = 16
    LEFT_HIP = 23
    RIGHT_HIP = 24
    LEFT_KNEE = 25
    RIGHT_KNEE = 26
    LEFT_ANKLE = 27
    RIGHT_ANKLE = 28


# COCO-17 names exposed to the detector, in COCO order.
KEYPOINT_LANDMARKS: dict[str, int] = {
    "nose": LandmarkIdx.NOSE,
    "left_eye": LandmarkIdx.LEFT_EYE,
    "right_eye": LandmarkIdx.RIGHT_EYE,
    "left_ear": LandmarkIdx.LEFT_EAR,
    "right_ear": LandmarkIdx.RIGHT_EAR,
    "left_shoulder": LandmarkIdx.LEFT_SHOULDER,
    "right_shoulder": LandmarkIdx.RIGHT_SHOULDER,
    "left_elbow": LandmarkIdx.LEFT_ELBOW,
    "right_elbow": LandmarkIdx.RIGHT_ELBOW,
    "left_wrist": LandmarkIdx.LEFT_WRIST,
    "right_wrist": LandmarkIdx.RIGHT_WRIST,
    "left_hip": LandmarkIdx.LEFT_HIP,
    "right_hip": LandmarkIdx.RIGHT_HIP,
    "left_knee": LandmarkIdx.LEFT_KNEE,
    "right_knee": LandmarkIdx.RIGHT_KNEE,
    "left_ankle": LandmarkIdx.LEFT_ANKLE,
    "right_ankle": LandmarkIdx.RIGHT_ANKLE,
}

# Bones drawn by the live overlay.
SKELETON_EDGES = (
    ("left_shoulder", "right_shoulder"),
    ("left_shoulder", "left_elbow"),
    ("left_elbow", "left_wrist"),
    ("right_shoulder", "right_elbow"),
    ("right_elbow", "right_wrist"),
    ("left_shoulder", "left_hip"),
    ("right_shoulder", "right_hip"),
    ("left_hip", "right_hip"),
    ("left_hip", "left_knee"),
    ("left_knee", "left_ankle"),
    ("right_hip", "right_knee"),
    ("right_knee", "right_ankle"),
)

POSE_MODELS = ("pose_landmarker_lite", "pose_landmarker_full", "pose_landmarker_heavy")
DEFAULT_MODEL = "pose_landmarker_lite"
_POSE_MODEL_URL = "https://storage.googleapis.com/mediapipe-models/pose_landmarker/{name}/float16/1/{name}.task"


class Estimator(Protocol):
    """Given a BGR image, return zero or one set of named keypoints."""

    backend: str

    def estimate(self, frame_bgr: np.ndarray) -> Optional[list[Keypoint]]:
        ...

    def close(self) -> None:
        ...


def find_keypoint(keypoints: Sequence[Keypoint], name: str) -> Optional[Keypoint]:
    for kp in keypoints:
        if kp.name == name:
            return kp
    return None


def keypoint_score(keypoints: Sequence[Keypoint], name: str) -> float:
    kp = find_keypoint(keypoints, name)
    return kp.confidence if kp is not None else 0.0


def _get_model_path(model: str, cache_dir: Optional[str] = None) -> str:
    """Return path to pose landmarker model, downloading if needed."""
    if model not in POSE_MODELS:
        raise ValueError(f"Unknown pose model: {model}")
    if cache_dir is None:
        cache_dir = os.path.join(os.path.expanduser("~"), ".cache", "posereps")
    os.makedirs(cache_dir, exist_ok=True)
    path = os.path.join(cache_dir, f"{model}.task")
    if not os.path.isfile(path):
        logger.info("pose: downloading %s to %s", model, path)
        urllib.request.urlretrieve(_POSE_MODEL_URL.format(name=model), path)
    return path


def _create_landmarker(model_path: str, delegate: str):
    """Create PoseLandmarker instance (MediaPipe 0.10+ tasks API)."""
    from mediapipe.tasks.python.core import base_options
    from mediapipe.tasks.python.vision import PoseLandmarker, PoseLandmarkerOptions
    from mediapipe.tasks.python.vision.core import vision_task_running_mode

    mp_delegate = (
        base_options.BaseOptions.Delegate.GPU
        if delegate == "gpu"
        else base_options.BaseOptions.Delegate.CPU
    )
    base = base_options.BaseOptions(model_asset_path=model_path, delegate=mp_delegate)
    options = PoseLandmarkerOptions(
        base_options=base,
        running_mode=vision_task_running_mode.VisionTaskRunningMode.IMAGE,
        num_poses=1,
        min_pose_detection_confidence=0.5,
        min_pose_presence_confidence=0.5,
        min_tracking_confidence=0.5,
    )
    return PoseLandmarker.create_from_options(options)


def landmarks_to_keypoints(landmarks, width: int, height: int) -> list[Keypoint]:
    """Map MediaPipe normalized landmarks to pixel-space COCO keypoints."""
    out: list[Keypoint] = []
    for name, idx in KEYPOINT_LANDMARKS.items():
        if idx >= len(landmarks):
            continue
        lm = landmarks[idx]
        visibility = getattr(lm, "visibility", None)
        confidence = float(visibility) if visibility is not None else 0.0
        out.append(Keypoint(
            name=name,
            x=float(lm.x) * width,
            y=float(lm.y) * height,
            confidence=max(0.0, min(1.0, confidence)),
        ))
    return out


class MediaPipeEstimator:
    """Single-person Pose Landmarker wrapper. Not thread-safe; use one thread."""

    def __init__(self, landmarker, backend: str):
        self._landmarker = landmarker
        self.backend = backend

    def estimate(self, frame_bgr: np.ndarray) -> Optional[list[Keypoint]]:
        import cv2
        from mediapipe.tasks.python.vision.core import image as mp_image

        h, w = frame_bgr.shape[:2]
        rgb = cv2.cvtColor(frame_bgr, cv2.COLOR_BGR2RGB)
        mp_img = mp_image.Image(image_format=mp_image.ImageFormat.SRGB, data=rgb)
        result = self._landmarker.detect(mp_img)
        if not result.pose_landmarks or len(result.pose_landmarks) == 0:
            return None
        return landmarks_to_keypoints(result.pose_landmarks[0], w, h)

    def close(self) -> None:
        if self._landmarker is not None:
            self._landmarker.close()
            self._landmarker = None


def resolve_backend(model_path: str, delegate: str = "cpu"):
    """Try the requested delegate first, falling back to CPU. Returns (landmarker, backend)."""
    candidates = ["gpu", "cpu"] if delegate == "gpu" else ["cpu"]
    last_error: Optional[Exception] = None
    for candidate in candidates:
        try:
            return _create_landmarker(model_path, candidate), candidate
        except Exception as e:
            logger.warning("pose: %s delegate unavailable (%s)", candidate, e)
            last_error = e
    raise RuntimeError(f"No usable inference backend: {last_error}")


def create_pose_estimator(
    model: str = DEFAULT_MODEL,
    cache_dir: Optional[str] = None,
    delegate: str = "cpu",
) -> MediaPipeEstimator:
    """Download (if needed) and load the landmarker, resolving the backend."""
    model_path = _get_model_path(model, cache_dir)
    landmarker, backend = resolve_backend(model_path, delegate)
    logger.info("pose: loaded %s (backend=%s)", model, backend)
    return MediaPipeEstimator(landmarker, backend)
