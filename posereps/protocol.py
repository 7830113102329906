"""
Worker message protocol: inbound commands and outbound events.
Wire form is a JSON object whose "type" tag selects the variant.
"""
from __future__ import annotations

import base64
import math
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Optional, Union

from .config import VIEW_ALIAS, View, parse_view
from .errors import ErrorCode, FrameDecodeError
from .frames import EncodedFrame, RawPixelFrame


class CommandType(str, Enum):
    INIT = "INIT"
    FRAME = "FRAME"
    FRAME_IMAGE_DATA = "FRAME_IMAGE_DATA"
    CONFIG = "CONFIG"
    STOP = "STOP"


class EventType(str, Enum):
    REP_COMPLETE = "REP_COMPLETE"
    POSE_LOST = "POSE_LOST"
    POSE_REGAINED = "POSE_REGAINED"
    HEARTBEAT = "HEARTBEAT"
    WORKER_IDLE = "WORKER_IDLE"
    ERROR = "ERROR"
    DEBUG_METRICS = "DEBUG_METRICS"
    DEBUG_ANKLE_CHECK = "DEBUG_ANKLE_CHECK"


class Phase(str, Enum):
    NO_POSE = "NO_POSE"
    UP = "UP"
    DOWN = "DOWN"


# Commands

@dataclass
class InitCommand:
    model: str = "pose_landmarker_lite"
    target_fps: Optional[float] = None
    debug: bool = False
    view: Optional[View] = None
    type: CommandType = CommandType.INIT


@dataclass
class FrameCommand:
    """One image. `image` is a BGR ndarray or a frame payload from frames.py."""
    image: Any
    ts: float
    type: CommandType = CommandType.FRAME


@dataclass
class FrameImageDataCommand:
    image: RawPixelFrame
    ts: float
    type: CommandType = CommandType.FRAME_IMAGE_DATA


@dataclass
class ConfigCommand:
    patch: dict[str, Any] = field(default_factory=dict)
    view: Optional[View] = None
    type: CommandType = CommandType.CONFIG


@dataclass
class StopCommand:
    type: CommandType = CommandType.STOP


Command = Union[InitCommand, FrameCommand, FrameImageDataCommand, ConfigCommand, StopCommand]


# Events

@dataclass
class RepCompleteEvent:
    ts: float
    confidence: float
    fps: Optional[float] = None
    exercise: str = "squat"
    type: EventType = EventType.REP_COMPLETE


@dataclass
class PoseLostEvent:
    ts: float
    type: EventType = EventType.POSE_LOST


@dataclass
class PoseRegainedEvent:
    ts: float
    type: EventType = EventType.POSE_REGAINED


@dataclass
class HeartbeatEvent:
    ts: float
    backend: Optional[str] = None
    fps: Optional[float] = None
    type: EventType = EventType.HEARTBEAT


@dataclass
class IdleEvent:
    ts: float
    type: EventType = EventType.WORKER_IDLE


@dataclass
class ErrorEvent:
    ts: float
    code: ErrorCode
    message: Optional[str] = None
    type: EventType = EventType.ERROR


@dataclass
class DebugMetricsEvent:
    ts: float
    signal: Optional[float] = None
    phase: Optional[Phase] = None
    valid: Optional[bool] = None
    confidence: Optional[float] = None
    type: EventType = EventType.DEBUG_METRICS


@dataclass
class DebugAnkleCheckEvent:
    ts: float
    reason: str
    left_ankle_score: Optional[float] = None
    right_ankle_score: Optional[float] = None
    avg_leg_length: Optional[float] = None
    type: EventType = EventType.DEBUG_ANKLE_CHECK


Event = Union[
    RepCompleteEvent,
    PoseLostEvent,
    PoseRegainedEvent,
    HeartbeatEvent,
    IdleEvent,
    ErrorEvent,
    DebugMetricsEvent,
    DebugAnkleCheckEvent,
]


def event_to_dict(event: Event) -> dict[str, Any]:
    """JSON-ready dict; None fields are omitted, enums become their values."""
    out: dict[str, Any] = {"type": event.type.value}
    for f in fields(event):
        if f.name == "type":
            continue
        value = getattr(event, f.name)
        if value is None:
            continue
        if isinstance(value, Enum):
            value = value.value
        out[f.name] = value
    return out


def _number(payload: dict[str, Any], key: str) -> Optional[float]:
    value = payload.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    value = float(value)
    # json accepts 1e400 and NaN
    if not math.isfinite(value):
        return None
    return value


def _b64(data: str) -> bytes:
    if data.startswith("data:"):
        data = data.split(",", 1)[1]
    try:
        return base64.b64decode(data, validate=False)
    except (ValueError, TypeError) as e:
        raise FrameDecodeError(f"invalid base64 payload: {e}") from e


def parse_command(payload: Any) -> Command:
    """Build a command from a decoded JSON object. Raises ValueError if malformed."""
    if not isinstance(payload, dict) or not isinstance(payload.get("type"), str):
        raise ValueError("command must be an object with a string 'type'")
    try:
        kind = CommandType(payload["type"])
    except ValueError:
        raise ValueError(f"unknown command type: {payload['type']}") from None

    if kind is CommandType.INIT:
        model = payload.get("model")
        return InitCommand(
            model=model if isinstance(model, str) and model else "pose_landmarker_lite",
            target_fps=_number(payload, "target_fps"),
            debug=bool(payload.get("debug", False)),
            view=parse_view(payload.get("view")),
        )

    if kind is CommandType.FRAME:
        ts = _number(payload, "ts")
        image = payload.get("image")
        if ts is None or not isinstance(image, str) or not image:
            raise ValueError("FRAME requires 'image' (base64) and numeric 'ts'")
        return FrameCommand(image=EncodedFrame(_b64(image)), ts=ts)

    if kind is CommandType.FRAME_IMAGE_DATA:
        ts = _number(payload, "ts")
        width = _number(payload, "width")
        height = _number(payload, "height")
        data = payload.get("data")
        if ts is None or width is None or height is None or not isinstance(data, str):
            raise ValueError("FRAME_IMAGE_DATA requires 'data', 'width', 'height' and 'ts'")
        return FrameImageDataCommand(
            image=RawPixelFrame(_b64(data), int(width), int(height)),
            ts=ts,
        )

    if kind is CommandType.CONFIG:
        view_raw = payload.get("view", payload.get(VIEW_ALIAS))
        patch = {k: v for k, v in payload.items() if k not in ("type", "view", VIEW_ALIAS)}
        return ConfigCommand(patch=patch, view=parse_view(view_raw))

    return StopCommand()
