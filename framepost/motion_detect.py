"""Simple motion detector comparing successive low resolution frames."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Mapping

import numpy as np

from .stage import CompletedRequest, PostProcessingStage, Stream, register_stage

logger = logging.getLogger(__name__)

RESULT_KEY = "motion_detect.result"


@dataclass
class MotionDetectConfig:
    """Motion detector settings; ROI values are fractions of the lores image."""

    roi_x: float = 0.0
    roi_y: float = 0.0
    roi_width: float = 1.0
    roi_height: float = 1.0
    hskip: int = 1
    vskip: int = 1
    difference_m: float = 0.1
    difference_c: int = 10
    region_threshold: float = 0.005
    frame_period: int = 5
    verbose: bool = False

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> MotionDetectConfig:
        defaults = cls()
        return cls(
            roi_x=float(params.get("roi_x", defaults.roi_x)),
            roi_y=float(params.get("roi_y", defaults.roi_y)),
            roi_width=float(params.get("roi_width", defaults.roi_width)),
            roi_height=float(params.get("roi_height", defaults.roi_height)),
            hskip=int(params.get("hskip", defaults.hskip)),
            vskip=int(params.get("vskip", defaults.vskip)),
            difference_m=float(params.get("difference_m", defaults.difference_m)),
            difference_c=int(params.get("difference_c", defaults.difference_c)),
            region_threshold=float(params.get("region_threshold", defaults.region_threshold)),
            frame_period=int(params.get("frame_period", defaults.frame_period)),
            verbose=bool(int(params.get("verbose", 0))),
        )


def _scaled(fraction: float, size: int) -> int:
    return max(0, int(np.float32(fraction) * np.float32(size)))


class MotionDetectStage(PostProcessingStage):
    """Flags motion when enough ROI pixels differ from the previous frame."""

    name = "motion_detect"

    def __init__(self, app) -> None:
        super().__init__(app)
        self.config = MotionDetectConfig()
        self._stream: Stream | None = None
        self._lores_stride = 0
        self._roi = (0, 0, 0, 0)
        self._region_threshold = 0
        self._previous: np.ndarray | None = None
        self._motion_detected = False
        self._lock = threading.Lock()

    @property
    def roi(self) -> tuple[int, int, int, int]:
        """ROI (x, y, width, height) in the subsampled lores image."""
        return self._roi

    @property
    def region_threshold(self) -> int:
        """Number of differing pixels that counts as motion."""
        return self._region_threshold

    @property
    def motion_detected(self) -> bool:
        return self._motion_detected

    def read(self, params: Mapping[str, Any]) -> None:
        self.config = MotionDetectConfig.from_params(params)

    def configure(self) -> None:
        self._stream = self.app.lores_stream
        if self._stream is None:
            return
        info = self.app.stream_info(self._stream)
        cfg = self.config
        cfg.hskip = max(cfg.hskip, 1)
        cfg.vskip = max(cfg.vskip, 1)
        width = info.width // cfg.hskip
        height = info.height // cfg.vskip
        self._lores_stride = info.stride * cfg.vskip

        roi_x = _scaled(cfg.roi_x, width)
        roi_y = _scaled(cfg.roi_y, height)
        roi_width = _scaled(cfg.roi_width, width)
        roi_height = _scaled(cfg.roi_height, height)
        threshold = max(
            0,
            int(np.float32(cfg.region_threshold) * np.float32(roi_width) * np.float32(roi_height)),
        )

        roi_x = min(roi_x, width)
        roi_y = min(roi_y, height)
        roi_width = min(roi_width, width - roi_x)
        roi_height = min(roi_height, height - roi_y)
        self._region_threshold = min(threshold, roi_width * roi_height)
        self._roi = (roi_x, roi_y, roi_width, roi_height)

        if cfg.verbose:
            logger.info(
                "Lores: %dx%d roi: (%d,%d) %dx%d threshold: %d",
                width, height, roi_x, roi_y, roi_width, roi_height, self._region_threshold,
            )

        self._previous = None
        self._motion_detected = False

    def _sample(self, buffer) -> np.ndarray:
        data = np.frombuffer(buffer, dtype=np.uint8)
        x, y, w, h = self._roi
        hskip = self.config.hskip
        idx = (
            (y + np.arange(h))[:, None] * self._lores_stride
            + x * hskip
            + (np.arange(w) * hskip)[None, :]
        )
        return data[idx]

    def process(self, request: CompletedRequest) -> bool:
        if self._stream is None:
            return False
        period = self.config.frame_period
        if period and request.sequence % period:
            return False

        buffer = request.buffers[self._stream]
        with self._lock:
            current = self._sample(buffer)
            if self._previous is None:
                self._previous = current
                request.post_process_metadata[RESULT_KEY] = self._motion_detected
                return False

            old = self._previous
            self._previous = current
            limit = np.float32(self.config.difference_m) * old.astype(np.float32) + np.float32(
                self.config.difference_c
            )
            diff = np.abs(current.astype(np.int32) - old.astype(np.int32))
            regions = int(np.count_nonzero(diff > limit))
            detected = current.size > 0 and regions >= self._region_threshold

            if self.config.verbose and detected != self._motion_detected:
                logger.info("Motion %s", "detected" if detected else "stopped")

            self._motion_detected = detected
            request.post_process_metadata[RESULT_KEY] = detected
        return False


register_stage(MotionDetectStage.name, MotionDetectStage)