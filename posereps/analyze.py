"""
Offline analysis harness: run a video through the pose worker and export
events, per-frame metrics and a summary for threshold tuning.
"""
from __future__ import annotations

import asyncio
import json
import logging
import os
from typing import Any, Optional

import numpy as np

from .config import DEFAULT_CONFIG, DetectionConfig, View
from .io_stream import video_frames, video_metadata
from .pose import DEFAULT_MODEL
from .protocol import (
    ConfigCommand,
    Event,
    EventType,
    FrameCommand,
    InitCommand,
    StopCommand,
    event_to_dict,
)
from .worker import EstimatorFactory, PoseWorker

logger = logging.getLogger(__name__)

# Prominence for the peak-based cross-check, as a fraction of the robust signal range.
REFERENCE_PROMINENCE_FRAC = 0.25


def reference_rep_count(signal: list[Optional[float]], fps: float, min_gap_ms: float) -> int:
    """
    Count squat bottoms as prominent minima of the smoothed signal.
    Independent of the state machine; used to sanity-check its count.
    """
    from scipy.signal import find_peaks

    ys = np.array([np.nan if v is None else v for v in signal], dtype=float)
    valid = np.isfinite(ys)
    if valid.sum() < 3:
        return 0
    # Hold last value over gaps so dropouts do not create minima.
    idx = np.where(valid, np.arange(len(ys)), 0)
    np.maximum.accumulate(idx, out=idx)
    first = int(np.argmax(valid))
    filled = ys[idx]
    filled[:first] = ys[first]
    p05 = np.nanpercentile(filled, 5)
    p95 = np.nanpercentile(filled, 95)
    prom = REFERENCE_PROMINENCE_FRAC * max(1e-6, (p95 - p05))
    distance = max(1, int(round(min_gap_ms * fps / 1000.0)))
    troughs, _ = find_peaks(-filled, distance=distance, prominence=prom)
    return int(len(troughs))


def summarize(
    events: list[dict[str, Any]],
    frame_metrics: list[dict[str, Any]],
    fps: float,
    min_gap_ms: float,
) -> dict[str, Any]:
    confidences = [m["confidence"] for m in frame_metrics if m["valid"]]
    # Throttling thins the frames, so derive the sample rate from what was processed.
    if len(frame_metrics) > 1 and frame_metrics[-1]["ts"] > frame_metrics[0]["ts"]:
        fps = (len(frame_metrics) - 1) * 1000.0 / (frame_metrics[-1]["ts"] - frame_metrics[0]["ts"])
    fps_values = [e["fps"] for e in events if e["type"] == EventType.HEARTBEAT.value and "fps" in e]
    return {
        "total_reps_detected": sum(1 for e in events if e["type"] == EventType.REP_COMPLETE.value),
        "pose_lost_count": sum(1 for e in events if e["type"] == EventType.POSE_LOST.value),
        "error_count": sum(1 for e in events if e["type"] == EventType.ERROR.value),
        "frames_processed": len(frame_metrics),
        "avg_confidence": float(np.mean(confidences)) if confidences else 0.0,
        "avg_fps": float(np.mean(fps_values)) if fps_values else None,
        "reference_reps": reference_rep_count([m["smoothed"] for m in frame_metrics], fps, min_gap_ms),
    }


async def _analyze(
    video_path: str,
    view: View,
    target_fps: int,
    config: DetectionConfig,
    config_override: dict[str, Any],
    model: str,
    debug: bool,
    estimator_factory: Optional[EstimatorFactory],
    validate_orientation: bool,
    validate_plant: bool,
) -> dict[str, Any]:
    collected: list[Event] = []
    worker = PoseWorker(
        collected.append,
        estimator_factory=estimator_factory,
        config=config,
        view=view,
        validate_orientation=validate_orientation,
        validate_plant=validate_plant,
    )
    await worker.handle(InitCommand(model=model, target_fps=target_fps, debug=debug, view=view))
    if config_override:
        await worker.handle(ConfigCommand(patch=config_override))
    effective_config = worker.config.to_dict()

    frame_metrics: list[dict[str, Any]] = []
    fps = 30.0
    for frame_bgr, frame_idx, ts_ms, fps in video_frames(video_path):
        previous = worker.last_analysis
        await worker.handle(FrameCommand(image=frame_bgr, ts=ts_ms))
        if worker.last_analysis is None or worker.last_analysis is previous:
            continue  # throttled or failed
        a = worker.last_analysis
        frame_metrics.append({
            "frame": frame_idx,
            "ts": ts_ms,
            "signal": a.signal,
            "smoothed": a.smoothed,
            "confidence": a.confidence,
            "valid": a.valid,
            "phase": a.phase.value,
        })
        if frame_idx and frame_idx % 300 == 0:
            logger.info("analyze: frame %s (reps=%s)", frame_idx, worker.detector.rep_count)
    await worker.handle(StopCommand())

    events = [event_to_dict(e) for e in collected]
    return {
        "config": effective_config,
        "events": events,
        "frame_metrics": frame_metrics,
        "summary": summarize(events, frame_metrics, fps, effective_config["debounce_ms"]),
    }


def analyze_video(
    video_path: str,
    view: View = View.FRONT,
    target_fps: int = 24,
    config: DetectionConfig = DEFAULT_CONFIG,
    config_override: Optional[dict[str, Any]] = None,
    model: str = DEFAULT_MODEL,
    debug: bool = True,
    estimator_factory: Optional[EstimatorFactory] = None,
    out_path: Optional[str] = None,
    validate_orientation: bool = True,
    validate_plant: bool = True,
) -> dict[str, Any]:
    """
    Process a video file with synthetic timestamps (frame_idx * 1000 / fps).
    Returns {video_meta, view, config, events, frame_metrics, summary}; also
    written to out_path as JSON when given.
    """
    meta = video_metadata(video_path)
    result = asyncio.run(_analyze(
        video_path, view, target_fps, config, config_override or {}, model, debug,
        estimator_factory, validate_orientation, validate_plant,
    ))
    report = {
        "video_meta": {"id": os.path.splitext(os.path.basename(video_path))[0], **meta},
        "view": view.value,
        **result,
    }
    summary = report["summary"]
    logger.info(
        "analyze: %s reps=%s reference=%s pose_lost=%s avg_conf=%.2f",
        video_path,
        summary["total_reps_detected"],
        summary["reference_reps"],
        summary["pose_lost_count"],
        summary["avg_confidence"],
    )
    if out_path:
        out_dir = os.path.dirname(out_path)
        if out_dir:
            os.makedirs(out_dir, exist_ok=True)
        with open(out_path, "w") as f:
            json.dump(report, f, indent=2)
    return report
