"""
Error codes reported to clients and the exceptions that carry them.
"""
from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorCode(str, Enum):
    MODEL_LOAD = "MODEL_LOAD"
    FRAME_DECODE = "FRAME_DECODE"
    FRAME_NOT_SUPPORTED = "FRAME_NOT_SUPPORTED"
    BACKEND_INIT = "BACKEND_INIT"
    INTERNAL = "INTERNAL"


class PoseWorkerError(Exception):
    code = ErrorCode.INTERNAL

    def __init__(self, message: str = "", code: Optional[ErrorCode] = None):
        super().__init__(message)
        if code is not None:
            self.code = code


class ModelLoadError(PoseWorkerError):
    code = ErrorCode.MODEL_LOAD


class FrameDecodeError(PoseWorkerError):
    code = ErrorCode.FRAME_DECODE


class FrameNotSupportedError(PoseWorkerError):
    code = ErrorCode.FRAME_NOT_SUPPORTED
