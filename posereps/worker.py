"""
Pose worker: frame scheduling, estimator lifecycle and command handling.

One PoseWorker per session. Frames are throttled to target_fps with at most
one frame in flight; frames that arrive too early or while busy are dropped.
Estimator calls run in an executor thread and are the only await points, so
detection and event emission for a frame happen in one uninterrupted step.
"""
from __future__ import annotations

import asyncio
import logging
import time
from concurrent.futures import Executor
from dataclasses import dataclass
from typing import Any, Callable, Optional

from .config import DEFAULT_CONFIG, DEFAULT_TARGET_FPS, DetectionConfig, View, resolve_target_fps
from .detector import FrameAnalysis, RepDetector
from .errors import ErrorCode, ModelLoadError, PoseWorkerError
from .frames import load_image, release
from .pose import DEFAULT_MODEL, Estimator, Keypoint, create_pose_estimator
from .protocol import (
    Command,
    CommandType,
    ConfigCommand,
    DebugAnkleCheckEvent,
    DebugMetricsEvent,
    ErrorEvent,
    Event,
    HeartbeatEvent,
    IdleEvent,
    InitCommand,
)

logger = logging.getLogger(__name__)

HEARTBEAT_MIN_INTERVAL_MS = 1000.0
WORKER_IDLE_TIMEOUT_MS = 2000.0
DEBUG_METRICS_MIN_INTERVAL_MS = 500.0

FRAME_COMMANDS = (CommandType.FRAME, CommandType.FRAME_IMAGE_DATA)

EventSink = Callable[[Event], None]
EstimatorFactory = Callable[[str], Estimator]


def _perf_ms() -> float:
    return time.perf_counter() * 1000.0


@dataclass
class FrameScheduling:
    processing: bool = False
    last_frame_ts: Optional[float] = None
    last_frame_duration_ms: Optional[float] = None
    heartbeat_last_sent_at: Optional[float] = None
    debug_last_sent_at: Optional[float] = None


class PoseWorker:
    def __init__(
        self,
        sink: EventSink,
        estimator_factory: Optional[EstimatorFactory] = None,
        config: DetectionConfig = DEFAULT_CONFIG,
        view: View = View.FRONT,
        clock: Optional[Callable[[], float]] = None,
        executor: Optional[Executor] = None,
        validate_orientation: bool = True,
        validate_plant: bool = True,
        idle_timeout_ms: float = WORKER_IDLE_TIMEOUT_MS,
    ):
        self._sink = sink
        self._estimator_factory = estimator_factory or create_pose_estimator
        self._clock = clock or _perf_ms
        self._executor = executor
        self._base_config = config
        self._idle_timeout_ms = idle_timeout_ms

        self.config = config
        self.view = view
        self.model = DEFAULT_MODEL
        self.debug = False
        self.target_fps = DEFAULT_TARGET_FPS
        self.backend: Optional[str] = None
        self.detector = RepDetector(
            config,
            view,
            validate_orientation=validate_orientation,
            validate_plant=validate_plant,
        )
        self.scheduling = FrameScheduling()
        self.last_analysis: Optional[FrameAnalysis] = None
        self.last_keypoints: Optional[list[Keypoint]] = None

        self._estimator: Optional[Estimator] = None
        self._retired: list[Estimator] = []
        # Bumped on STOP; results of frames started under an older value are discarded.
        self._generation = 0
        self._idle_handle: Optional[asyncio.TimerHandle] = None
        self._tasks: set[asyncio.Task] = set()

    # Transport entry points

    def dispatch(self, command: Command) -> Optional[asyncio.Task]:
        """
        Non-blocking entry point for transports. Frames that pass throttling are
        processed in a background task; everything else is applied immediately.
        Must be called from the event loop thread.
        """
        if command.type in FRAME_COMMANDS:
            if not self._begin_frame(command.ts):
                release(command.image)
                return None
            task = asyncio.get_running_loop().create_task(self._process_frame(command, self._generation))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            return task
        self._apply(command)
        return None

    async def handle(self, command: Command) -> None:
        """Process one command to completion (frames included)."""
        if command.type in FRAME_COMMANDS:
            if not self._begin_frame(command.ts):
                release(command.image)
                return
            await self._process_frame(command, self._generation)
            return
        self._apply(command)

    async def drain(self) -> None:
        """Wait for in-flight frame tasks started via dispatch()."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _apply(self, command: Command) -> None:
        if command.type is CommandType.INIT:
            self._handle_init(command)
        elif command.type is CommandType.CONFIG:
            self._handle_config(command)
        elif command.type is CommandType.STOP:
            self.stop()
        else:
            logger.warning("worker: ignoring command %r", command)

    # Commands

    def _handle_init(self, command: InitCommand) -> None:
        self.debug = bool(command.debug)
        self.target_fps = resolve_target_fps(command.target_fps) if command.target_fps is not None else DEFAULT_TARGET_FPS
        if command.model != self.model:
            self.model = command.model
            self._release_estimator()
        if command.view is not None:
            self._set_view(command.view, force=True)
        logger.info(
            "worker: init model=%s target_fps=%s debug=%s view=%s",
            self.model, self.target_fps, self.debug, self.view.value,
        )
        self._reset_idle_timer()

    def _handle_config(self, command: ConfigCommand) -> None:
        if command.patch:
            self.config = self.config.patched(command.patch)
            self.detector.configure(self.config)
            logger.info("worker: config updated %s", self.config.to_dict())
        if command.view is not None:
            self._set_view(command.view)

    def _set_view(self, view: View, force: bool = False) -> None:
        if view is self.view and not force:
            return
        self.view = view
        self.detector.set_view(view)
        logger.info("worker: camera view set to %s (detection state reset)", view.value)

    def stop(self) -> None:
        """End the session: reset scheduling and detection, release the estimator."""
        self._generation += 1
        self._release_estimator()
        self._clear_idle_timer()
        self.config = self._base_config
        self.debug = False
        self.target_fps = DEFAULT_TARGET_FPS
        self.backend = None
        # View is kept so the next session starts with the camera the user set up.
        self.detector = RepDetector(
            self.config,
            self.view,
            validate_orientation=self.detector.validate_orientation,
            validate_plant=self.detector.validate_plant,
        )
        self.scheduling = FrameScheduling()
        self.last_analysis = None
        self.last_keypoints = None
        logger.info("worker: stopped")

    # Frames

    def _begin_frame(self, ts: float) -> bool:
        sched = self.scheduling
        if sched.processing:
            logger.debug("worker: drop ts=%s (busy)", ts)
            return False
        if sched.last_frame_ts is not None:
            elapsed = ts - sched.last_frame_ts
            if elapsed < 1000.0 / self.target_fps:
                logger.debug("worker: drop ts=%s (throttled, %.1fms since last)", ts, elapsed)
                return False
        sched.last_frame_duration_ms = (
            ts - sched.last_frame_ts if sched.last_frame_ts is not None else None
        )
        sched.processing = True
        sched.last_frame_ts = ts
        return True

    async def _process_frame(self, command: Command, generation: int) -> None:
        ts = command.ts
        estimator: Optional[Estimator] = None
        try:
            image = load_image(command.image)
            estimator = await self._ensure_estimator(generation)
            if generation != self._generation:
                return
            loop = asyncio.get_running_loop()
            keypoints = await loop.run_in_executor(self._executor, estimator.estimate, image)
            if generation != self._generation:
                logger.debug("worker: discarding result for ts=%s (session reset)", ts)
                return
            self.last_keypoints = keypoints
            analysis = self.detector.evaluate(keypoints, ts, fps=self.frame_fps())
            self.last_analysis = analysis
            for event in analysis.events:
                self._emit(event)
            self._emit_debug_metrics(ts, analysis)
        except PoseWorkerError as e:
            if generation == self._generation:
                logger.warning("worker: frame ts=%s failed: %s (%s)", ts, e, e.code.value)
                self._post_error(e.code, str(e) or None, ts)
        except Exception as e:
            if generation == self._generation:
                logger.exception("worker: frame ts=%s failed", ts)
                self._post_error(ErrorCode.INTERNAL, str(e) or type(e).__name__, ts)
        finally:
            release(command.image)
            if generation == self._generation:
                self.scheduling.processing = False
                self._post_heartbeat(ts)
                self._reset_idle_timer(ts)
            if estimator is not None:
                self._close_if_retired(estimator)

    async def _ensure_estimator(self, generation: int) -> Estimator:
        if self._estimator is not None:
            return self._estimator
        model = self.model
        loop = asyncio.get_running_loop()
        try:
            estimator = await loop.run_in_executor(self._executor, self._estimator_factory, model)
        except PoseWorkerError:
            raise
        except Exception as e:
            raise ModelLoadError(f"could not load {model}: {e}") from e
        if generation != self._generation:
            # Session stopped while loading; the calling frame closes it.
            self._retired.append(estimator)
            return estimator
        if model != self.model:
            # INIT switched models while this one was loading.
            logger.info("worker: discarding %s (model changed to %s)", model, self.model)
            self._close_estimator(estimator)
            return await self._ensure_estimator(generation)
        self._estimator = estimator
        self.backend = getattr(estimator, "backend", None)
        logger.info("worker: estimator ready model=%s backend=%s", model, self.backend)
        return estimator

    def _release_estimator(self) -> None:
        estimator = self._estimator
        self._estimator = None
        if estimator is None:
            return
        if self.scheduling.processing:
            # In use by the in-flight frame; that frame closes it when it returns.
            self._retired.append(estimator)
        else:
            self._close_estimator(estimator)

    def _close_if_retired(self, estimator: Estimator) -> None:
        if any(e is estimator for e in self._retired):
            self._retired = [e for e in self._retired if e is not estimator]
            self._close_estimator(estimator)

    @staticmethod
    def _close_estimator(estimator: Estimator) -> None:
        try:
            estimator.close()
        except Exception:
            logger.exception("worker: estimator close failed")

    def frame_fps(self) -> Optional[float]:
        duration = self.scheduling.last_frame_duration_ms
        if not duration:
            return None
        return round(1000.0 / duration, 1)

    # Outbound

    def _emit(self, event: Event) -> None:
        self._sink(event)

    def _post_error(self, code: ErrorCode, message: Optional[str], ts: float) -> None:
        self._emit(ErrorEvent(ts=ts, code=code, message=message))

    def _post_heartbeat(self, ts: float) -> None:
        sched = self.scheduling
        now = self._clock()
        if sched.heartbeat_last_sent_at is not None and now - sched.heartbeat_last_sent_at < HEARTBEAT_MIN_INTERVAL_MS:
            return
        self._emit(HeartbeatEvent(ts=ts, backend=self.backend, fps=self.frame_fps()))
        sched.heartbeat_last_sent_at = now

    def _emit_debug(self, event: Event) -> None:
        if not self.debug:
            return
        sched = self.scheduling
        now = self._clock()
        if sched.debug_last_sent_at is not None and now - sched.debug_last_sent_at < DEBUG_METRICS_MIN_INTERVAL_MS:
            return
        sched.debug_last_sent_at = now
        self._emit(event)

    def _emit_debug_metrics(self, ts: float, analysis: FrameAnalysis) -> None:
        plant = analysis.plant_check
        if plant is not None:
            self._emit_debug(DebugAnkleCheckEvent(
                ts=ts,
                reason=plant.reason or "",
                left_ankle_score=plant.left_ankle_score,
                right_ankle_score=plant.right_ankle_score,
                avg_leg_length=plant.avg_leg_length,
            ))
        signal = analysis.smoothed if analysis.smoothed is not None else analysis.signal
        self._emit_debug(DebugMetricsEvent(
            ts=ts,
            signal=signal,
            phase=analysis.phase,
            valid=analysis.valid,
            confidence=analysis.confidence,
        ))

    # Idle detection

    def _reset_idle_timer(self, ts: Optional[float] = None) -> None:
        self._clear_idle_timer()
        if not self.debug:
            return
        if ts is None:
            ts = self.scheduling.last_frame_ts if self.scheduling.last_frame_ts is not None else self._clock()
        loop = asyncio.get_running_loop()
        self._idle_handle = loop.call_later(self._idle_timeout_ms / 1000.0, self._emit_idle, ts)

    def _clear_idle_timer(self) -> None:
        if self._idle_handle is not None:
            self._idle_handle.cancel()
            self._idle_handle = None

    def _emit_idle(self, ts: float) -> None:
        self._idle_handle = None
        if self.debug:
            self._emit(IdleEvent(ts=ts))

    def snapshot(self) -> dict[str, Any]:
        """Current session state for status endpoints and overlays."""
        st = self.detector.state
        return {
            "view": self.view.value,
            "phase": st.phase.value,
            "rep_count": self.detector.rep_count,
            "smoothed_signal": st.smoothed_signal,
            "fps": self.frame_fps(),
            "backend": self.backend,
            "processing": self.scheduling.processing,
        }
