"""Pose estimator stage reporting body keypoint locations and confidences."""

from __future__ import annotations

from typing import Any, Mapping

import numpy as np

from .stage import CompletedRequest, register_stage
from .tf_stage import InterpreterFactory, TfConfig, TfStage

WIDTH = 257
HEIGHT = 257
FEATURE_SIZE = 17
HEATMAP_DIMS = 9
LOCATIONS_KEY = "pose_estimation.locations"
CONFIDENCES_KEY = "pose_estimation.confidences"


def estimate_pose(
    heatmaps: Any, offsets: Any, width: int, height: int
) -> tuple[list[tuple[int, int]], list[float]]:
    """Keypoint (x, y) locations in a width x height image and their confidences.

    ``heatmaps`` has HEATMAP_DIMS x HEATMAP_DIMS x FEATURE_SIZE values and
    ``offsets`` twice as many per cell (y offsets then x offsets).
    """
    heat = np.asarray(heatmaps, dtype=np.float32).reshape(-1)
    offs = np.asarray(offsets, dtype=np.float32).reshape(-1)
    cells = HEATMAP_DIMS * HEATMAP_DIMS
    if heat.size < cells * FEATURE_SIZE:
        raise ValueError("heatmap tensor too small")
    if offs.size < cells * FEATURE_SIZE * 2:
        raise ValueError("offset tensor too small")
    grid = heat[: cells * FEATURE_SIZE].reshape(cells, FEATURE_SIZE)

    locations: list[tuple[int, int]] = []
    confidences: list[float] = []
    for feature in range(FEATURE_SIZE):
        cell = int(np.argmax(grid[:, feature]))
        confidences.append(float(grid[cell, feature]))
        y, x = divmod(cell, HEATMAP_DIMS)
        j = FEATURE_SIZE * 2 * cell + feature
        loc_y = int(np.float32(y * height // (HEATMAP_DIMS - 1)) + offs[j])
        loc_x = int(np.float32(x * width // (HEATMAP_DIMS - 1)) + offs[j + FEATURE_SIZE])
        locations.append((loc_x, loc_y))
    return locations, confidences


class PoseEstimationTfStage(TfStage):
    """Estimates a single body pose in the low resolution image."""

    name = "pose_estimation_tf"
    config_class = TfConfig

    def __init__(self, app, interpreter_factory: InterpreterFactory | None = None) -> None:
        super().__init__(app, WIDTH, HEIGHT, interpreter_factory)
        self.locations: list[tuple[int, int]] = []
        self.confidences: list[float] = []

    def read_extras(self, params: Mapping[str, Any]) -> None:
        # Nothing to read, but the output dimensions can be checked.
        shape = tuple(np.shape(self.interpreter.output(0)))
        if shape[:4] != (1, HEATMAP_DIMS, HEATMAP_DIMS, FEATURE_SIZE):
            raise RuntimeError("PoseEstimationTfStage: Unexpected output dimensions")

    def check_configuration(self) -> None:
        if self.main_stream is None:
            raise RuntimeError("PoseEstimationTfStage: Main stream is required")

    def interpret_outputs(self) -> None:
        self.locations, self.confidences = estimate_pose(
            self.interpreter.output(0),
            self.interpreter.output(1),
            self.main_stream_info.width,
            self.main_stream_info.height,
        )

    def apply_results(self, request: CompletedRequest) -> None:
        request.post_process_metadata[LOCATIONS_KEY] = list(self.locations)
        request.post_process_metadata[CONFIDENCES_KEY] = list(self.confidences)


register_stage(PoseEstimationTfStage.name, PoseEstimationTfStage)