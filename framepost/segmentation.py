"""Image segmentation stage producing a per-pixel category map."""

from __future__ import annotations

import sys
from dataclasses import dataclass
from typing import Any, Mapping, Sequence

import numpy as np

from .stage import CompletedRequest, register_stage
from .tf_stage import InterpreterFactory, TfConfig, TfStage

WIDTH = 257
HEIGHT = 257
RESULT_KEY = "segmentation.result"


@dataclass
class Segmentation:
    """A width x height map of category indices with the category labels."""

    width: int
    height: int
    labels: list[str]
    segmentation: bytes


@dataclass
class SegmentationTfConfig(TfConfig):
    """Segmentation settings; threshold is the pixel count for reporting a category."""

    draw: bool = True
    threshold: int = 5000


def read_segmentation_labels(path: str) -> list[str]:
    """Read a labels file, one label per line."""
    try:
        with open(path, encoding="utf-8", newline="") as handle:
            text = handle.read()
    except OSError as exc:
        raise RuntimeError("SegmentationTfStage: Failed to load labels file") from exc
    lines = text.split("\n")
    if lines[-1] == "":
        lines.pop()
    return lines


def segment(output: Any, width: int, height: int, num_categories: int) -> np.ndarray:
    """Pick the most confident category for each pixel; returns a flat uint8 map."""
    values = np.asarray(output, dtype=np.float32).reshape(-1)
    count = width * height * num_categories
    if num_categories <= 0 or values.size < count:
        raise ValueError("output tensor does not match the segmentation size")
    scores = values[:count].reshape(width * height, num_categories)
    return np.argmax(scores, axis=1).astype(np.uint8)


def category_summary(
    segmentation: Any, labels: Sequence[str], threshold: int
) -> list[tuple[str, int]]:
    """Largest categories by pixel count, stopping at the first below ``threshold``."""
    counts = np.bincount(np.asarray(segmentation, dtype=np.int64).reshape(-1), minlength=len(labels))
    ranked = sorted(range(len(labels)), key=lambda i: int(counts[i]), reverse=True)
    summary = []
    for index in ranked:
        if counts[index] < threshold:
            break
        summary.append((labels[index], int(counts[index])))
    return summary


class SegmentationTfStage(TfStage):
    """Segments the low resolution image and optionally draws the map."""

    name = "segmentation_tf"
    config_class = SegmentationTfConfig

    def __init__(self, app, interpreter_factory: InterpreterFactory | None = None) -> None:
        super().__init__(app, WIDTH, HEIGHT, interpreter_factory)
        self.labels: list[str] = []
        self.segmentation = np.zeros(WIDTH * HEIGHT, dtype=np.uint8)

    def read_extras(self, params: Mapping[str, Any]) -> None:
        cfg = self.config
        cfg.draw = bool(int(params.get("draw", 1)))
        cfg.threshold = int(params.get("threshold", 5000))
        self.labels = read_segmentation_labels(str(params.get("labels_file", "")))

        shape = tuple(np.shape(self.interpreter.output(0)))
        if len(shape) != 4 or shape[1:] != (HEIGHT, WIDTH, len(self.labels)):
            raise RuntimeError("SegmentationTfStage: Unexpected output tensor size")

    def check_configuration(self) -> None:
        if self.main_stream is None and self.config.draw:
            raise RuntimeError("SegmentationTfStage: Main stream is required for drawing")

    def interpret_outputs(self) -> None:
        self.segmentation = segment(self.interpreter.output(0), WIDTH, HEIGHT, len(self.labels))
        if self.config.verbose:
            summary = category_summary(self.segmentation, self.labels, self.config.threshold)
            text = ", ".join(f"{label} ({count})" for label, count in summary)
            sys.stderr.write(text + "\n")

    def apply_results(self, request: CompletedRequest) -> None:
        request.post_process_metadata[RESULT_KEY] = Segmentation(
            WIDTH, HEIGHT, list(self.labels), self.segmentation.tobytes()
        )
        if not self.config.draw:
            return
        if not self.labels:
            raise ValueError("SegmentationTfStage: no labels to draw")

        info = self.main_stream_info
        if info.width < WIDTH or info.height < HEIGHT:
            raise ValueError("SegmentationTfStage: main image smaller than segmentation")
        buffer = np.frombuffer(request.buffers[self.main_stream], dtype=np.uint8)
        stride = info.stride
        y_offset = info.height - HEIGHT
        x_offset = info.width - WIDTH
        scale = 255 // len(self.labels)

        # Draw the map in the bottom right corner of the Y plane.
        seg = self.segmentation.reshape(HEIGHT, WIDTH).astype(np.int64)
        drawn = ((seg * scale) & 0xFF).astype(np.uint8)
        rows = (np.arange(HEIGHT) + y_offset)[:, None] * stride + x_offset
        buffer[rows + np.arange(WIDTH)[None, :]] = drawn

        # Make that corner greyscale.
        u_start = info.height * stride
        half_stride = stride // 2
        uv_size = (info.height // 2) * half_stride
        y_offset //= 2
        x_offset //= 2
        chroma = (
            u_start
            + (np.arange(HEIGHT // 2) + y_offset)[:, None] * half_stride
            + x_offset
            + np.arange(WIDTH // 2)[None, :]
        )
        buffer[chroma] = 128
        buffer[chroma + uv_size] = 128


register_stage(SegmentationTfStage.name, SegmentationTfStage)