"""
Repetition state machine over a smoothed knee-angle (front/side) or
hip-displacement (rear) signal.

NO_POSE -> UP once the signal is above the up threshold.
UP -> DOWN once it has stayed at/below the down threshold for min_down_hold_ms.
DOWN -> UP when it rises back above the up threshold and debounce_ms has passed
since the last rep; that transition is the rep.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence

from .config import (
    REAR_DOWN_RATIO,
    REAR_UP_RATIO,
    DetectionConfig,
    Thresholds,
    View,
    effective_thresholds,
)
from .metrics import SignalMetrics, compute_hip_delta_metrics, compute_knee_metrics
from .pose import Keypoint
from .protocol import Event, Phase, PoseLostEvent, PoseRegainedEvent, RepCompleteEvent
from .validation import PlantCheck, check_ankle_plant, detect_orientation, is_orientation_valid

logger = logging.getLogger(__name__)


@dataclass
class DetectionState:
    phase: Phase = Phase.NO_POSE
    smoothed_signal: Optional[float] = None
    down_hold_started_at: Optional[float] = None
    last_valid_pose_at: Optional[float] = None
    last_rep_at: Optional[float] = None
    pose_lost_notified: bool = False
    baseline_displacement: Optional[float] = None


@dataclass
class FrameAnalysis:
    valid: bool
    phase: Phase
    signal: Optional[float] = None
    smoothed: Optional[float] = None
    confidence: float = 0.0
    events: list[Event] = field(default_factory=list)
    # Set when the ankle check was inconclusive (debug reporting only).
    plant_check: Optional[PlantCheck] = None
    rejected_by: Optional[str] = None


class RepDetector:
    """
    Owns one session's DetectionState. evaluate() is synchronous and must be
    called with one frame at a time in timestamp order.
    """

    def __init__(
        self,
        config: DetectionConfig,
        view: View = View.FRONT,
        validate_orientation: bool = True,
        validate_plant: bool = True,
    ):
        self.config = config
        self.view = view
        self.validate_orientation = validate_orientation
        self.validate_plant = validate_plant
        self.state = DetectionState()
        self.rep_count = 0

    def reset(self) -> None:
        self.state = DetectionState()
        self.rep_count = 0

    def configure(self, config: DetectionConfig) -> None:
        self.config = config

    def set_view(self, view: View) -> None:
        """Switch camera view. Always starts a fresh DetectionState."""
        self.view = view
        self.reset()

    @property
    def uses_displacement(self) -> bool:
        return self.view is View.REAR

    def evaluate(
        self,
        keypoints: Optional[Sequence[Keypoint]],
        ts: float,
        fps: Optional[float] = None,
    ) -> FrameAnalysis:
        if not keypoints:
            return self._pose_absent(ts, "no_pose")

        thresholds = effective_thresholds(self.config, self.view)

        if self.validate_orientation and self.view is not View.REAR:
            orientation = detect_orientation(keypoints)
            if not is_orientation_valid(orientation, self.view):
                logger.debug("detector: ts=%s orientation %s rejected for %s", ts, orientation.value, self.view.value)
                return self._pose_absent(ts, "orientation")

        plant: Optional[PlantCheck] = None
        if self.validate_plant:
            plant = check_ankle_plant(
                keypoints,
                self.config.ankle_confidence_min,
                self.config.ankle_symmetry_threshold,
                self.config.min_leg_length_px,
                thresholds.ankle_symmetry_multiplier,
            )
            if not plant.ok:
                logger.debug("detector: ts=%s ankles uneven (diff=%.1f)", ts, plant.ankle_diff or 0.0)
                return self._pose_absent(ts, "ankle_plant")

        metrics = self._signal_metrics(keypoints, thresholds)
        if not metrics.valid or metrics.signal is None:
            analysis = self._pose_absent(ts, "low_confidence")
        else:
            analysis = self._advance(metrics, thresholds, ts, fps)
        if plant is not None and plant.reason is not None:
            analysis.plant_check = plant
        return analysis

    def _signal_metrics(self, keypoints: Sequence[Keypoint], thresholds: Thresholds) -> SignalMetrics:
        if self.uses_displacement:
            return compute_hip_delta_metrics(keypoints, thresholds.confidence)
        return compute_knee_metrics(keypoints, thresholds.confidence, thresholds.single_side_penalty)

    def _pose_absent(self, ts: float, reason: str) -> FrameAnalysis:
        st = self.state
        previous = st.smoothed_signal
        events: list[Event] = []
        if (
            st.last_valid_pose_at is not None
            and ts - st.last_valid_pose_at >= self.config.pose_lost_timeout_ms
            and not st.pose_lost_notified
        ):
            st.pose_lost_notified = True
            events.append(PoseLostEvent(ts=ts))
            logger.info("detector: pose lost at ts=%s (%s)", ts, reason)
        if st.pose_lost_notified:
            st.phase = Phase.NO_POSE
            st.smoothed_signal = None
            st.baseline_displacement = None
        st.down_hold_started_at = None
        return FrameAnalysis(
            valid=False,
            phase=st.phase,
            smoothed=previous,
            confidence=0.0,
            events=events,
            rejected_by=reason,
        )

    def _phase_thresholds(self, thresholds: Thresholds, smoothed: float) -> tuple[float, float]:
        if not self.uses_displacement:
            return thresholds.theta_down, thresholds.theta_up
        st = self.state
        if st.baseline_displacement is None:
            st.baseline_displacement = smoothed
        elif st.phase is Phase.UP and smoothed > st.baseline_displacement:
            st.baseline_displacement = smoothed
        baseline = st.baseline_displacement
        return baseline * REAR_DOWN_RATIO, baseline * REAR_UP_RATIO

    def _advance(
        self,
        metrics: SignalMetrics,
        thresholds: Thresholds,
        ts: float,
        fps: Optional[float],
    ) -> FrameAnalysis:
        st = self.state
        cfg = self.config
        events: list[Event] = []

        if st.pose_lost_notified:
            events.append(PoseRegainedEvent(ts=ts))
            st.pose_lost_notified = False
            logger.info("detector: pose regained at ts=%s", ts)

        st.last_valid_pose_at = ts
        raw = metrics.signal
        if st.smoothed_signal is None:
            st.smoothed_signal = raw
        else:
            st.smoothed_signal = st.smoothed_signal + cfg.ema_alpha * (raw - st.smoothed_signal)
        smoothed = st.smoothed_signal

        down, up = self._phase_thresholds(thresholds, smoothed)

        if st.phase is Phase.NO_POSE and smoothed >= up:
            st.phase = Phase.UP

        if st.phase is Phase.UP:
            if smoothed <= down:
                if st.down_hold_started_at is None:
                    st.down_hold_started_at = ts
                if ts - st.down_hold_started_at >= cfg.min_down_hold_ms:
                    st.phase = Phase.DOWN
            else:
                st.down_hold_started_at = None
        elif st.phase is Phase.DOWN and smoothed >= up:
            since_rep = ts - st.last_rep_at if st.last_rep_at is not None else float("inf")
            if since_rep >= cfg.debounce_ms:
                st.phase = Phase.UP
                st.down_hold_started_at = None
                st.last_rep_at = ts
                self.rep_count += 1
                events.append(RepCompleteEvent(
                    ts=ts,
                    confidence=min(1.0, metrics.confidence),
                    fps=fps,
                ))
                logger.info(
                    "detector: rep %s at ts=%s (signal=%.1f conf=%.2f)",
                    self.rep_count, ts, smoothed, metrics.confidence,
                )

        return FrameAnalysis(
            valid=True,
            phase=st.phase,
            signal=raw,
            smoothed=smoothed,
            confidence=metrics.confidence,
            events=events,
        )
