"""
Detection thresholds, per-view calibration and environment overrides.
All thresholds are in degrees / milliseconds / pixels; confidences are 0..1.
"""
from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass, fields, replace
from enum import Enum
from typing import Any, Mapping, Optional

logger = logging.getLogger(__name__)

TARGET_FPS_OPTIONS = (24, 30)
DEFAULT_TARGET_FPS = 24

# Rear view derives thresholds from the running baseline displacement.
REAR_DOWN_RATIO = 0.45
REAR_UP_RATIO = 0.75

# Bounds applied after view calibration.
EFFECTIVE_CONFIDENCE_BOUNDS = (0.2, 0.95)
EFFECTIVE_PENALTY_BOUNDS = (0.1, 1.0)

ENV_PREFIX = "POSEREPS_"


class View(str, Enum):
    FRONT = "front"
    SIDE = "side"
    REAR = "rear"


def parse_view(value: Any) -> Optional[View]:
    """Map a wire/CLI value to a View ("back" is accepted for rear)."""
    if isinstance(value, View):
        return value
    if not isinstance(value, str):
        return None
    key = value.strip().lower()
    if key == "back":
        key = "rear"
    try:
        return View(key)
    except ValueError:
        return None


@dataclass(frozen=True)
class DetectionConfig:
    keypoint_confidence_threshold: float = 0.5
    debounce_ms: float = 350.0
    min_down_hold_ms: float = 100.0
    theta_down_deg: float = 100.0
    theta_up_deg: float = 160.0
    pose_lost_timeout_ms: float = 500.0
    ema_alpha: float = 0.6
    single_side_penalty: float = 0.8
    ankle_confidence_min: float = 0.3
    ankle_symmetry_threshold: float = 0.15
    min_leg_length_px: float = 50.0

    def patched(self, patch: Mapping[str, Any]) -> "DetectionConfig":
        """Return a copy with the numeric fields in `patch` replaced and clamped."""
        updates: dict[str, float] = {}
        for key, value in patch.items():
            name = CONFIG_ALIASES.get(key, key)
            if name not in CONFIG_BOUNDS:
                continue
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                continue
            lo, hi = CONFIG_BOUNDS[name]
            clamped = clamp(float(value), lo, hi)
            if clamped != value:
                logger.debug("config: %s=%s clamped to %s", name, value, clamped)
            updates[name] = clamped
        if not updates:
            return self
        return replace(self, **updates)

    def to_dict(self) -> dict[str, float]:
        return asdict(self)


DEFAULT_CONFIG = DetectionConfig()

# (min, max) for each tunable field; patched values are clamped into these.
CONFIG_BOUNDS: dict[str, tuple[float, float]] = {
    "keypoint_confidence_threshold": (0.0, 1.0),
    "debounce_ms": (200.0, 1000.0),
    "min_down_hold_ms": (0.0, 500.0),
    "theta_down_deg": (60.0, 140.0),
    "theta_up_deg": (120.0, 179.0),
    "pose_lost_timeout_ms": (100.0, 2000.0),
    "ema_alpha": (0.1, 0.9),
    "single_side_penalty": (0.0, 1.0),
    "ankle_confidence_min": (0.1, 0.9),
    "ankle_symmetry_threshold": (0.05, 0.3),
    "min_leg_length_px": (20.0, 200.0),
}

# Upper-case keys sent by browser clients.
CONFIG_ALIASES: dict[str, str] = {
    "TH_CONF": "keypoint_confidence_threshold",
    "DEBOUNCE_MS": "debounce_ms",
    "MIN_DOWN_HOLD_MS": "min_down_hold_ms",
    "THETA_DOWN_DEG": "theta_down_deg",
    "THETA_UP_DEG": "theta_up_deg",
    "POSE_LOST_TIMEOUT_MS": "pose_lost_timeout_ms",
    "EMA_ALPHA": "ema_alpha",
    "SINGLE_SIDE_PENALTY": "single_side_penalty",
    "ANKLE_CONFIDENCE_MIN": "ankle_confidence_min",
    "ANKLE_SYMMETRY_THRESHOLD": "ankle_symmetry_threshold",
    "MIN_LEG_LENGTH_PIXELS": "min_leg_length_px",
}
VIEW_ALIAS = "CAMERA_VIEW"


@dataclass(frozen=True)
class ViewCalibration:
    confidence_delta: float = 0.0
    theta_down_delta: float = 0.0
    theta_up_delta: float = 0.0
    single_side_penalty_delta: float = 0.0
    ankle_symmetry_multiplier: float = 1.0


VIEW_CALIBRATION: dict[View, ViewCalibration] = {
    View.FRONT: ViewCalibration(),
    # Side view loses one leg to occlusion; perspective makes ankles look uneven.
    View.SIDE: ViewCalibration(
        confidence_delta=-0.05,
        theta_down_delta=-5.0,
        ankle_symmetry_multiplier=2.0,
    ),
    View.REAR: ViewCalibration(
        confidence_delta=-0.2,
        theta_down_delta=-15.0,
        theta_up_delta=-10.0,
        single_side_penalty_delta=0.05,
        ankle_symmetry_multiplier=1.5,
    ),
}


@dataclass(frozen=True)
class Thresholds:
    """Per-frame thresholds after view calibration and clamping."""
    confidence: float
    theta_down: float
    theta_up: float
    single_side_penalty: float
    ankle_symmetry_multiplier: float


def clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


def effective_thresholds(config: DetectionConfig, view: View) -> Thresholds:
    tuning = VIEW_CALIBRATION[view]
    return Thresholds(
        confidence=clamp(
            config.keypoint_confidence_threshold + tuning.confidence_delta,
            *EFFECTIVE_CONFIDENCE_BOUNDS,
        ),
        theta_down=config.theta_down_deg + tuning.theta_down_delta,
        theta_up=config.theta_up_deg + tuning.theta_up_delta,
        single_side_penalty=clamp(
            config.single_side_penalty + tuning.single_side_penalty_delta,
            *EFFECTIVE_PENALTY_BOUNDS,
        ),
        ankle_symmetry_multiplier=tuning.ankle_symmetry_multiplier,
    )


def resolve_target_fps(value: Any) -> int:
    """Snap a requested rate to the nearest supported option."""
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        return DEFAULT_TARGET_FPS
    return min(TARGET_FPS_OPTIONS, key=lambda option: abs(option - value))


def config_from_env(
    base: DetectionConfig = DEFAULT_CONFIG,
    environ: Optional[Mapping[str, str]] = None,
) -> DetectionConfig:
    """Apply POSEREPS_<FIELD> overrides (e.g. POSEREPS_EMA_ALPHA=0.5)."""
    env = os.environ if environ is None else environ
    patch: dict[str, float] = {}
    for f in fields(DetectionConfig):
        raw = env.get(ENV_PREFIX + f.name.upper())
        if raw is None:
            continue
        try:
            patch[f.name] = float(raw)
        except ValueError:
            logger.warning("config: ignoring %s%s=%r (not a number)", ENV_PREFIX, f.name.upper(), raw)
    return base.patched(patch)


def settings_from_env(environ: Optional[Mapping[str, str]] = None) -> dict[str, Any]:
    """Host-level settings: model, view, target fps, model cache dir, delegate."""
    env = os.environ if environ is None else environ
    view = parse_view(env.get(ENV_PREFIX + "VIEW", "front"))
    if view is None:
        logger.warning("config: ignoring %sVIEW=%r", ENV_PREFIX, env.get(ENV_PREFIX + "VIEW"))
        view = View.FRONT
    fps_raw = env.get(ENV_PREFIX + "TARGET_FPS")
    target_fps = DEFAULT_TARGET_FPS
    if fps_raw is not None:
        try:
            target_fps = resolve_target_fps(float(fps_raw))
        except ValueError:
            logger.warning("config: ignoring %sTARGET_FPS=%r", ENV_PREFIX, fps_raw)
    return {
        "model": env.get(ENV_PREFIX + "MODEL", "pose_landmarker_lite"),
        "view": view,
        "target_fps": target_fps,
        "model_dir": env.get(ENV_PREFIX + "MODEL_DIR"),
        "delegate": env.get(ENV_PREFIX + "DELEGATE", "cpu").lower(),
        "config": config_from_env(environ=env),
    }
