"""
Frame payloads handed to the worker. Payloads own their buffer until closed;
the worker closes them on every path, including dropped frames.
"""
from __future__ import annotations

import logging
from typing import Any, Optional

import numpy as np

from .errors import FrameDecodeError, FrameNotSupportedError

logger = logging.getLogger(__name__)


class EncodedFrame:
    """Compressed image bytes (JPEG/PNG/WebP), decoded only if the frame is processed."""

    def __init__(self, data: bytes):
        self._data: Optional[bytes] = data

    @property
    def closed(self) -> bool:
        return self._data is None

    def to_bgr(self) -> np.ndarray:
        if self._data is None:
            raise FrameDecodeError("frame already released")
        import cv2

        np_arr = np.frombuffer(self._data, np.uint8)
        frame_bgr = cv2.imdecode(np_arr, cv2.IMREAD_COLOR) if np_arr.size else None
        if frame_bgr is None:
            raise FrameDecodeError("could not decode image bytes")
        return frame_bgr

    def close(self) -> None:
        self._data = None


class RawPixelFrame:
    """Uncompressed RGBA or RGB pixels, row-major, as posted by canvas-style clients."""

    def __init__(self, data: bytes, width: int, height: int):
        self._data: Optional[bytes] = data
        self.width = width
        self.height = height

    @property
    def closed(self) -> bool:
        return self._data is None

    def to_bgr(self) -> np.ndarray:
        if self._data is None:
            raise FrameDecodeError("frame already released")
        if self.width <= 0 or self.height <= 0:
            raise FrameNotSupportedError(f"invalid frame size {self.width}x{self.height}")
        pixels = self.width * self.height
        if len(self._data) == pixels * 4:
            channels = 4
        elif len(self._data) == pixels * 3:
            channels = 3
        else:
            raise FrameNotSupportedError(
                f"{len(self._data)} bytes does not match {self.width}x{self.height} RGB/RGBA"
            )
        arr = np.frombuffer(self._data, np.uint8).reshape(self.height, self.width, channels)
        # RGB(A) -> BGR, dropping alpha
        return np.ascontiguousarray(arr[:, :, 2::-1])

    def close(self) -> None:
        self._data = None


def load_image(image: Any) -> np.ndarray:
    """Return a BGR uint8 array for any supported payload."""
    if isinstance(image, np.ndarray):
        if image.ndim != 3 or image.shape[2] != 3 or image.dtype != np.uint8:
            raise FrameNotSupportedError(
                f"expected HxWx3 uint8 BGR array, got shape={image.shape} dtype={image.dtype}"
            )
        return image
    if isinstance(image, (EncodedFrame, RawPixelFrame)):
        return image.to_bgr()
    raise FrameNotSupportedError(f"unsupported frame payload: {type(image).__name__}")


def release(image: Any) -> None:
    close = getattr(image, "close", None)
    if callable(close):
        try:
            close()
        except Exception:
            logger.exception("frames: failed to release frame payload")
