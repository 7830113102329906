"""
Draw skeleton and detector state on live preview frames.
"""
from __future__ import annotations

from typing import Any, Optional, Sequence

import numpy as np

from .pose import SKELETON_EDGES, Keypoint

_PHASE_COLORS = {
    "NO_POSE": (0, 0, 255),
    "UP": (0, 255, 0),
    "DOWN": (0, 200, 255),
}


def _pt(kp: Keypoint) -> tuple[int, int]:
    return (int(round(kp.x)), int(round(kp.y)))


def draw_skeleton(
    frame: np.ndarray,
    keypoints: Sequence[Keypoint],
    min_confidence: float = 0.3,
    color: tuple[int, int, int] = (0, 255, 0),
    thickness: int = 2,
) -> None:
    """Draw confident keypoints and the bones between them (in-place)."""
    import cv2

    by_name = {kp.name: kp for kp in keypoints if kp.confidence >= min_confidence}
    for a, b in SKELETON_EDGES:
        if a in by_name and b in by_name:
            cv2.line(frame, _pt(by_name[a]), _pt(by_name[b]), color, thickness)
    for kp in by_name.values():
        cv2.circle(frame, _pt(kp), 3, color, -1)


def draw_realtime_overlay(
    frame: np.ndarray,
    keypoints: Optional[Sequence[Keypoint]],
    state: dict[str, Any],
    message: Optional[str] = None,
) -> None:
    """
    Draw realtime overlay on frame (in-place):
    - Skeleton if keypoints present
    - Reps, phase, smoothed signal, fps, backend
    - Optional message (e.g. "Move into frame")
    """
    import cv2

    h, w = frame.shape[:2]
    phase = state.get("phase", "NO_POSE")
    if keypoints:
        draw_skeleton(frame, keypoints, color=_PHASE_COLORS.get(phase, (0, 255, 0)))

    # Semi-transparent panel for text
    panel_h = 150
    overlay = frame.copy()
    cv2.rectangle(overlay, (0, 0), (w, panel_h), (40, 40, 40), -1)
    cv2.addWeighted(overlay, 0.6, frame, 0.4, 0, frame)

    font = cv2.FONT_HERSHEY_SIMPLEX
    scale = 0.6
    thick = 2
    y0, dy = 28, 28
    color = (255, 255, 255)

    def put(line: str, y: int) -> None:
        cv2.putText(frame, line, (12, y), font, scale, color, thick, cv2.LINE_AA)

    def fmt(val: Optional[float]) -> str:
        return f"{val:.1f}" if val is not None else "--"

    unit = "px" if state.get("view") == "rear" else "deg"
    put(f"Reps: {state.get('rep_count', 0)}", y0)
    put(f"Phase: {phase}  View: {state.get('view', '--')}", y0 + dy)
    put(f"Signal: {fmt(state.get('smoothed_signal'))} {unit}", y0 + 2 * dy)
    put(f"FPS: {fmt(state.get('fps'))}  Backend: {state.get('backend') or '--'}", y0 + 3 * dy)

    if message:
        cv2.putText(
            frame, message, (w // 2 - 120, h // 2),
            font, 0.8, (0, 200, 255), 2, cv2.LINE_AA
        )
