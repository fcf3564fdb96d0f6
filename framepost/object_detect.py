"""Object detector stage that reports labelled bounding boxes."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Sequence

import numpy as np

from .detection import Detection, Rectangle
from .stage import CompletedRequest, StreamInfo, register_stage
from .tf_stage import InterpreterFactory, TfConfig, TfStage

logger = logging.getLogger(__name__)

WIDTH = 300
HEIGHT = 300
RESULTS_KEY = "object_detect.results"


@dataclass
class ObjectDetectTfConfig(TfConfig):
    """Detector settings."""

    confidence_threshold: float = 0.5
    overlap_threshold: float = 0.5


def read_detection_labels(path: str) -> list[str]:
    """Read a labels file, one label per line, discarding the first line."""
    try:
        with open(path, encoding="utf-8", newline="") as handle:
            text = handle.read()
    except OSError as exc:
        raise RuntimeError("ObjectDetectTfStage: Failed to load labels file") from exc
    lines = text.split("\n")
    if lines[-1] == "":
        lines.pop()
    return lines[1:]


def _clamp(value: int, lo: int, hi: int) -> int:
    return max(lo, min(hi, value))


def interpret_detections(
    boxes: Any,
    classes: Any,
    scores: Any,
    labels: Sequence[str],
    confidence_threshold: float,
    overlap_threshold: float,
    lores_info: StreamInfo,
    main_info: StreamInfo,
) -> list[Detection]:
    """Convert raw model outputs into detections in main image coordinates.

    ``boxes`` holds (top, left, bottom, right) fractions of the network input.
    Overlapping detections of the same category keep the more confident one.
    """
    box_rows = np.asarray(boxes, dtype=np.float32).reshape(-1, 4)
    class_values = np.asarray(classes, dtype=np.float32).reshape(-1)
    score_values = np.asarray(scores, dtype=np.float32).reshape(-1)
    conf_t = np.float32(confidence_threshold)
    overlap_t = float(np.float32(overlap_threshold))
    fw, fh = np.float32(WIDTH), np.float32(HEIGHT)

    results: list[Detection] = []
    for box, cls, score in zip(box_rows, class_values, score_values):
        if score < conf_t:
            continue
        top, left, bottom, right = box
        # Coordinates in the image fed to the network.
        y = _clamp(int(fh * top), 0, HEIGHT)
        x = _clamp(int(fw * left), 0, WIDTH)
        h = _clamp(int(fh * bottom - np.float32(y)), 0, HEIGHT)
        w = _clamp(int(fw * right - np.float32(x)), 0, WIDTH)
        # The network sees a centre crop of the lores image...
        y += (lores_info.height - HEIGHT) // 2
        x += (lores_info.width - WIDTH) // 2
        # ...which is a pure scaling of the main image.
        y = y * main_info.height // lores_info.height
        x = x * main_info.width // lores_info.width
        h = h * main_info.height // lores_info.height
        w = w * main_info.width // lores_info.width

        category = int(cls)
        if not 0 <= category < len(labels):
            raise ValueError(f"ObjectDetectTfStage: class {category} has no label")
        detection = Detection(category, labels[category], float(score), Rectangle(x, y, w, h))

        overlapped = False
        for index, previous in enumerate(results):
            if previous.category != category:
                continue
            prev_area = previous.box.area()
            new_area = detection.box.area()
            overlap = previous.box.bounded_to(detection.box).area()
            if overlap > overlap_t * prev_area or overlap > overlap_t * new_area:
                if detection.confidence > previous.confidence:
                    results[index] = detection
                overlapped = True
                break
        if not overlapped:
            results.append(detection)
    return results


class ObjectDetectTfStage(TfStage):
    """Detects objects in the low resolution image and reports them as metadata."""

    name = "object_detect_tf"
    config_class = ObjectDetectTfConfig

    def __init__(self, app, interpreter_factory: InterpreterFactory | None = None) -> None:
        super().__init__(app, WIDTH, HEIGHT, interpreter_factory)
        self.labels: list[str] = []
        self.output_results: list[Detection] = []

    def read_extras(self, params: Mapping[str, Any]) -> None:
        cfg = self.config
        cfg.confidence_threshold = float(params.get("confidence_threshold", 0.5))
        cfg.overlap_threshold = float(params.get("overlap_threshold", 0.5))

        self.labels = read_detection_labels(str(params.get("labels_file", "")))
        if cfg.verbose:
            logger.info("Read %d labels", len(self.labels))

        # A different shape might mean the wrong model was loaded.
        shape = tuple(np.shape(self.interpreter.output(0)))
        if shape != (1, 10, 4):
            raise RuntimeError("ObjectDetectTfStage: unexpected output dimensions")

    def check_configuration(self) -> None:
        if self.main_stream is None:
            raise RuntimeError("ObjectDetectTfStage: Main stream is required")

    def interpret_outputs(self) -> None:
        interpreter = self.interpreter
        boxes = np.asarray(interpreter.output(0), dtype=np.float32)
        classes = np.asarray(interpreter.output(1), dtype=np.float32).reshape(-1)
        scores = np.asarray(interpreter.output(2), dtype=np.float32).reshape(-1)
        num_detections = boxes.shape[1]
        cfg = self.config
        self.output_results = interpret_detections(
            boxes.reshape(-1, 4)[:num_detections],
            classes[:num_detections],
            scores[:num_detections],
            self.labels,
            cfg.confidence_threshold,
            cfg.overlap_threshold,
            self.lores_info,
            self.main_stream_info,
        )
        if cfg.verbose:
            for detection in self.output_results:
                logger.info("%s", detection)

    def apply_results(self, request: CompletedRequest) -> None:
        request.post_process_metadata[RESULTS_KEY] = list(self.output_results)


register_stage(ObjectDetectTfStage.name, ObjectDetectTfStage)