"""
Frame generators for video file or webcam.
Yields (frame_bgr, frame_idx, ts_ms, fps) with graceful shutdown.
"""
from __future__ import annotations

import time
from typing import Generator

import numpy as np


def video_frames(video_path: str) -> Generator[tuple[np.ndarray, int, float, float], None, None]:
    """
    Yield frames from a video file with timestamps on the video timeline.
    Yields: (frame_bgr, frame_idx, ts_ms, fps).
    """
    import cv2

    cap = cv2.VideoCapture(video_path)
    if not cap.isOpened():
        raise FileNotFoundError(f"Cannot open video: {video_path}")
    try:
        fps = cap.get(cv2.CAP_PROP_FPS) or 30.0
        idx = 0
        while True:
            ret, frame = cap.read()
            if not ret:
                break
            yield (frame, idx, idx * 1000.0 / fps, fps)
            idx += 1
    finally:
        cap.release()


def video_metadata(video_path: str) -> dict[str, float]:
    import cv2

    cap = cv2.VideoCapture(video_path)
    if not cap.isOpened():
        raise FileNotFoundError(f"Cannot open video: {video_path}")
    try:
        fps = cap.get(cv2.CAP_PROP_FPS) or 30.0
        frame_count = int(cap.get(cv2.CAP_PROP_FRAME_COUNT) or 0)
        return {
            "fps": fps,
            "frame_count": frame_count,
            "duration_ms": frame_count * 1000.0 / fps if fps else 0.0,
            "width": int(cap.get(cv2.CAP_PROP_FRAME_WIDTH) or 0),
            "height": int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT) or 0),
        }
    finally:
        cap.release()


def webcam_frames(
    camera_id: int = 0,
    target_fps: float = 30,
) -> Generator[tuple[np.ndarray, int, float, float], None, None]:
    """
    Yield frames from webcam with graceful shutdown.
    Yields: (frame_bgr, frame_idx, ts_ms, fps_est); ts_ms is monotonic capture time.
    fps_est is estimated from actual frame timings.
    """
    import cv2

    cap = cv2.VideoCapture(camera_id)
    if not cap.isOpened():
        raise RuntimeError(f"Cannot open camera {camera_id}. Check permissions and that no other app is using it.")
    try:
        # Prefer a reasonable resolution for speed
        cap.set(cv2.CAP_PROP_FRAME_WIDTH, 1280)
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, 720)
        cap.set(cv2.CAP_PROP_FPS, target_fps)
        idx = 0
        t_prev = time.perf_counter()
        fps_est = float(target_fps)
        while True:
            ret, frame = cap.read()
            if not ret:
                break
            t_now = time.perf_counter()
            dt = t_now - t_prev
            if dt > 0:
                fps_est = 0.9 * fps_est + 0.1 * (1.0 / dt)
            t_prev = t_now
            yield (frame, idx, t_now * 1000.0, fps_est)
            idx += 1
    finally:
        cap.release()
