"""Base class for stages that run a neural network on the low resolution stream.

The model itself is supplied through an interpreter factory: a callable that
takes the model file name and returns an object following the
:class:`Interpreter` protocol, or None if the model cannot be loaded.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, ClassVar, Mapping, Optional, Protocol

import numpy as np

from .stage import (
    CompletedRequest,
    PostProcessingStage,
    Stream,
    StreamInfo,
    execution_time,
    yuv420_to_rgb,
)

logger = logging.getLogger(__name__)


class TensorType(Enum):
    """Element types a model's input tensor may have."""

    UINT8 = "uint8"
    FLOAT32 = "float32"

    @property
    def itemsize(self) -> int:
        return 1 if self is TensorType.UINT8 else 4


class Interpreter(Protocol):
    """What a stage needs from a loaded model."""

    def input_type(self) -> Any: ...

    def input_bytes(self) -> int: ...

    def set_num_threads(self, count: int) -> None: ...

    def allocate_tensors(self) -> None: ...

    def set_input(self, data: np.ndarray) -> None: ...

    def invoke(self) -> None: ...

    def output(self, index: int) -> np.ndarray: ...


InterpreterFactory = Callable[[str], Optional[Interpreter]]


@dataclass
class TfConfig:
    """Settings shared by all model-running stages."""

    number_of_threads: int = 3
    refresh_rate: int = 5
    model_file: str = ""
    verbose: bool = False
    normalisation_offset: float = 127.5
    normalisation_scale: float = 127.5


class TfStage(PostProcessingStage):
    """Runs a model asynchronously on the low resolution image.

    Derived classes override :meth:`read_extras`, :meth:`check_configuration`,
    :meth:`interpret_outputs` and :meth:`apply_results`.
    """

    config_class: ClassVar[type[TfConfig]] = TfConfig

    def __init__(
        self,
        app,
        tf_w: int,
        tf_h: int,
        interpreter_factory: InterpreterFactory | None = None,
    ) -> None:
        super().__init__(app)
        if tf_w <= 0 or tf_h <= 0:
            raise ValueError("TfStage: Bad TFLite input dimensions")
        self.tf_w = tf_w
        self.tf_h = tf_h
        self.interpreter_factory = interpreter_factory
        self.config: TfConfig = self.config_class()
        self.interpreter: Interpreter | None = None
        self.lores_stream: Stream | None = None
        self.lores_info = StreamInfo()
        self.main_stream: Stream | None = None
        self.main_stream_info = StreamInfo()
        self._future_lock = threading.Lock()
        self._output_lock = threading.Lock()
        self._future: Future | None = None
        self._executor: ThreadPoolExecutor | None = None
        self._lores_copy = b""

    def read(self, params: Mapping[str, Any]) -> None:
        cfg = self.config
        cfg.number_of_threads = int(params.get("number_of_threads", 2))
        cfg.refresh_rate = int(params.get("refresh_rate", 5))
        cfg.model_file = str(params.get("model_file", ""))
        cfg.verbose = bool(int(params.get("verbose", 0)))
        cfg.normalisation_offset = float(params.get("normalisation_offset", 127.5))
        cfg.normalisation_scale = float(params.get("normalisation_scale", 127.5))

        self._initialise()
        self.read_extras(params)

    def _initialise(self) -> None:
        cfg = self.config
        interpreter = (
            self.interpreter_factory(cfg.model_file) if self.interpreter_factory is not None else None
        )
        if interpreter is None:
            raise RuntimeError("TfStage: Failed to load model")
        logger.info("TfStage: Loaded model %s", cfg.model_file)

        if cfg.number_of_threads != -1:
            interpreter.set_num_threads(cfg.number_of_threads)

        try:
            interpreter.allocate_tensors()
        except Exception as exc:
            raise RuntimeError("TfStage: Failed to allocate tensors") from exc

        # Verify that the model expects this size of RGB input.
        input_type = interpreter.input_type()
        if not isinstance(input_type, TensorType):
            raise RuntimeError("TfStage: Input tensor data type not supported")
        expected = self.tf_w * self.tf_h * 3 * input_type.itemsize
        if expected != interpreter.input_bytes():
            raise RuntimeError("TfStage: Input tensor size mismatch")
        self.interpreter = interpreter

    def configure(self) -> None:
        verbose = self.config.verbose
        self.lores_stream = self.app.lores_stream
        if self.lores_stream is not None:
            self.lores_info = self.app.stream_info(self.lores_stream)
            if verbose:
                logger.info(
                    "TfStage: Low resolution stream is %dx%d",
                    self.lores_info.width,
                    self.lores_info.height,
                )
            if self.tf_w > self.lores_info.width or self.tf_h > self.lores_info.height:
                logger.error("TfStage: WARNING: Low resolution image too small")
                self.lores_stream = None
        elif verbose:
            logger.info("TfStage: no low resolution stream")

        self.main_stream = self.app.main_stream
        if self.main_stream is not None:
            self.main_stream_info = self.app.stream_info(self.main_stream)
            if verbose:
                logger.info(
                    "TfStage: Main stream is %dx%d",
                    self.main_stream_info.width,
                    self.main_stream_info.height,
                )
        elif verbose:
            logger.info("TfStage: No main stream")

        self.check_configuration()

    def process(self, request: CompletedRequest) -> bool:
        if self.lores_stream is None:
            return False

        rate = self.config.refresh_rate
        with self._future_lock:
            if (
                rate
                and request.sequence % rate == 0
                and (self._future is None or self._future.done())
            ):
                # Copy the frame; the inference thread converts it to RGB.
                self._lores_copy = bytes(request.buffers[self.lores_stream])
                if self._executor is None:
                    self._executor = ThreadPoolExecutor(
                        max_workers=1, thread_name_prefix="inference"
                    )
                self._future = self._executor.submit(self._timed_inference)

        with self._output_lock:
            self.apply_results(request)
        return False

    def _timed_inference(self) -> None:
        time_taken = execution_time(self.run_inference)
        if self.config.verbose:
            logger.info("TfStage: Inference time: %.0f us", time_taken)

    def run_inference(self) -> None:
        """Feed the latest low resolution frame to the model and interpret the outputs."""
        interpreter = self.interpreter
        if interpreter is None:
            raise RuntimeError("TfStage: no model loaded")
        tf_info = StreamInfo(self.tf_w, self.tf_h, self.tf_w * 3)
        rgb = yuv420_to_rgb(self._lores_copy, self.lores_info, tf_info)

        input_type = interpreter.input_type()
        if input_type is TensorType.UINT8:
            data = rgb
        elif input_type is TensorType.FLOAT32:
            cfg = self.config
            data = (
                (rgb.astype(np.float32) - np.float32(cfg.normalisation_offset))
                / np.float32(cfg.normalisation_scale)
            ).astype(np.float32)
        else:
            raise RuntimeError("TfStage: Input tensor data type not supported")

        try:
            interpreter.set_input(data)
            interpreter.invoke()
        except Exception as exc:
            raise RuntimeError("TfStage: Failed to invoke TFLite") from exc

        with self._output_lock:
            self.interpret_outputs()

    def stop(self) -> None:
        future = self._future
        if future is None:
            return
        wait([future])
        error = future.exception()
        if error is not None:
            logger.error("TfStage: inference failed: %s", error)

    def read_extras(self, params: Mapping[str, Any]) -> None:
        """Read stage-specific parameters; may also check the model."""

    def check_configuration(self) -> None:
        """Check the stream configuration, raising if unusable."""

    def interpret_outputs(self) -> None:
        """Turn the model outputs into results (runs on the inference thread)."""

    def apply_results(self, request: CompletedRequest) -> None:
        """Attach the latest results to a request."""