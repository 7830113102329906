"""
Live webcam loop: capture, pose worker, overlay window.
q=quit, r=reset session, s=snapshot.
"""
from __future__ import annotations

import asyncio
import logging
import os
import time
from typing import Optional

from .config import DEFAULT_CONFIG, DetectionConfig, View
from .io_stream import webcam_frames
from .overlay import draw_realtime_overlay
from .pose import DEFAULT_MODEL
from .protocol import Event, EventType, FrameCommand, InitCommand, StopCommand
from .worker import EstimatorFactory, PoseWorker

logger = logging.getLogger(__name__)

# No-pose warning after this many seconds
NO_POSE_WARN_SEC = 2.0
# How long a "Rep N" banner stays on screen
REP_BANNER_SEC = 1.0


async def _live_loop(
    camera_id: int,
    view: View,
    target_fps: int,
    config: DetectionConfig,
    model: str,
    debug: bool,
    estimator_factory: Optional[EstimatorFactory],
    output_dir: str,
    validate_orientation: bool,
    validate_plant: bool,
) -> int:
    import cv2

    events: list[Event] = []
    worker = PoseWorker(
        events.append,
        estimator_factory=estimator_factory,
        config=config,
        view=view,
        validate_orientation=validate_orientation,
        validate_plant=validate_plant,
    )
    init = InitCommand(model=model, target_fps=target_fps, debug=debug, view=view)
    await worker.handle(init)

    win_name = "Rep counter (q=quit, r=reset, s=snapshot)"
    cv2.namedWindow(win_name, cv2.WINDOW_NORMAL)
    last_pose_time = time.perf_counter()
    banner: Optional[str] = None
    banner_until = 0.0
    total_reps = 0
    try:
        for frame_bgr, frame_idx, ts_ms, _fps in webcam_frames(camera_id, target_fps=target_fps):
            await worker.handle(FrameCommand(image=frame_bgr, ts=ts_ms))

            now = time.perf_counter()
            for event in events:
                if event.type is EventType.REP_COMPLETE:
                    total_reps += 1
                    banner = f"Rep {total_reps}"
                    banner_until = now + REP_BANNER_SEC
                elif event.type is EventType.ERROR:
                    logger.warning("live: worker error %s: %s", event.code.value, event.message)
                else:
                    logger.debug("live: %s", event)
            events.clear()

            analysis = worker.last_analysis
            if analysis is not None and analysis.valid:
                last_pose_time = now
            message: Optional[str] = banner if now < banner_until else None
            if message is None and now - last_pose_time > NO_POSE_WARN_SEC:
                message = "Move into frame"

            out_frame = frame_bgr.copy()
            draw_realtime_overlay(out_frame, worker.last_keypoints, worker.snapshot(), message)
            cv2.imshow(win_name, out_frame)
            key = cv2.waitKey(1) & 0xFF
            if key == ord("q"):
                break
            if key == ord("r"):
                await worker.handle(StopCommand())
                await worker.handle(init)
                total_reps = 0
                banner = None
            if key == ord("s"):
                snap_path = os.path.join(output_dir, f"snapshot_{frame_idx}.jpg")
                cv2.imwrite(snap_path, out_frame)
                banner = "Saved snapshot"
                banner_until = now + REP_BANNER_SEC
    finally:
        await worker.handle(StopCommand())
        cv2.destroyAllWindows()
    return total_reps


def run_live_pipeline(
    camera_id: int = 0,
    view: View = View.FRONT,
    target_fps: int = 24,
    config: DetectionConfig = DEFAULT_CONFIG,
    model: str = DEFAULT_MODEL,
    debug: bool = False,
    estimator_factory: Optional[EstimatorFactory] = None,
    output_dir: str = "outputs",
    validate_orientation: bool = True,
    validate_plant: bool = True,
) -> int:
    """Run the live capture loop until q is pressed. Returns reps counted since the last reset."""
    os.makedirs(output_dir, exist_ok=True)
    total = asyncio.run(_live_loop(
        camera_id, view, target_fps, config, model, debug,
        estimator_factory, output_dir, validate_orientation, validate_plant,
    ))
    logger.info("live: session ended with %s reps", total)
    return total
