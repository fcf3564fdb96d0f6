"""Post-processing stage base class, camera stream descriptions and helpers."""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, ClassVar, Mapping

import numpy as np


@dataclass
class StreamInfo:
    """Geometry of an image stream."""

    width: int = 0
    height: int = 0
    stride: int = 0
    colour_space: str | None = None


@dataclass
class StreamConfiguration:
    """Negotiable configuration of a stream."""

    pixel_format: str = "YUV420"
    buffer_count: int = 1


@dataclass(eq=False)
class Stream:
    """A camera stream; streams compare and hash by identity."""

    name: str
    configuration: StreamConfiguration = field(default_factory=StreamConfiguration)


@dataclass
class CompletedRequest:
    """A finished capture: frame buffers per stream plus metadata."""

    sequence: int = 0
    buffers: dict[Stream, bytearray] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)
    post_process_metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class CameraStreams:
    """The streams a camera application offers to post-processing stages."""

    main_stream: Stream | None = None
    lores_stream: Stream | None = None
    still_stream: Stream | None = None
    infos: dict[Stream, StreamInfo] = field(default_factory=dict)
    options: Any = None
    camera_id: str = ""

    def stream_info(self, stream: Stream) -> StreamInfo:
        """Return the geometry of ``stream``."""
        try:
            return self.infos[stream]
        except KeyError:
            raise KeyError(f"no stream info for stream {stream.name!r}") from None


class PostProcessingStage(ABC):
    """Base class for stages that inspect or modify completed requests.

    The base class keeps track of the last use case it was configured for and
    of whether the camera is running; subclasses may override any hook.
    """

    name: ClassVar[str] = ""

    def __init__(self, app: CameraStreams) -> None:
        self.app = app
        self.use_case: str | None = None
        self.running = False

    def read(self, params: Mapping[str, Any]) -> None:
        """Read the stage's parameters."""

    def adjust_config(self, use_case: str, config: StreamConfiguration) -> None:
        """Adjust a stream configuration before the camera is configured."""
        self.use_case = use_case

    def configure(self) -> None:
        """Called once the camera streams are known."""

    def start(self) -> None:
        """Called when the camera starts."""
        self.running = True

    @abstractmethod
    def process(self, request: CompletedRequest) -> bool:
        """Process a request; return True if it should be dropped."""

    def stop(self) -> None:
        """Called when the camera stops."""
        self.running = False

    def teardown(self) -> None:
        """Called when the camera configuration is released."""
        self.running = False
        self.use_case = None


def yuv420_to_rgb(src: Any, src_info: StreamInfo, dst_info: StreamInfo) -> np.ndarray:
    """Convert a YUV420 image to packed RGB, cropping from the centre if needed.

    Returns a flat uint8 array of ``dst_info.height * dst_info.stride`` bytes.
    """
    if src_info.width < dst_info.width or src_info.height < dst_info.height:
        raise ValueError("destination image must not be larger than the source")
    if dst_info.stride < 3 * dst_info.width:
        raise ValueError("destination stride too small for RGB rows")
    if isinstance(src, np.ndarray):
        data = src.reshape(-1).astype(np.uint8, copy=False)
    else:
        data = np.frombuffer(src, dtype=np.uint8)

    off_x = ((src_info.width - dst_info.width) // 2) & ~1
    off_y = ((src_info.height - dst_info.height) // 2) & ~1
    stride = src_info.stride
    chroma_stride = stride // 2
    y_size = src_info.height * stride
    u_size = (src_info.height // 2) * chroma_stride

    cols = np.arange(dst_info.width)
    rows = np.arange(dst_info.height) + off_y
    luma_idx = rows[:, None] * stride + (cols + off_x)[None, :]
    chroma_idx = y_size + (rows // 2)[:, None] * chroma_stride + (off_x // 2 + cols // 2)[None, :]

    lum = data[luma_idx].astype(np.float64)
    u = data[chroma_idx].astype(np.float64) - 128
    v = data[chroma_idx + u_size].astype(np.float64) - 128

    r = np.trunc(lum + 1.402 * v)
    g = np.trunc(lum - 0.345 * u - 0.714 * v)
    b = np.trunc(lum + 1.771 * u)
    rgb = np.clip(np.stack([r, g, b], axis=-1), 0, 255).astype(np.uint8)

    output = np.zeros(dst_info.height * dst_info.stride, dtype=np.uint8)
    rows_view = output.reshape(dst_info.height, dst_info.stride)
    rows_view[:, : 3 * dst_info.width] = rgb.reshape(dst_info.height, 3 * dst_info.width)
    return output


def execution_time(func: Callable[..., Any], *args: Any, **kwargs: Any) -> float:
    """Run ``func`` and return how long it took, in microseconds."""
    start = time.perf_counter()
    func(*args, **kwargs)
    return (time.perf_counter() - start) * 1e6


StageFactory = Callable[[CameraStreams], PostProcessingStage]

_STAGES: dict[str, StageFactory] = {}


def register_stage(name: str, factory: StageFactory) -> StageFactory:
    """Register a stage factory under ``name`` and return the factory."""
    _STAGES[name] = factory
    return factory


def post_processing_stages() -> Mapping[str, StageFactory]:
    """A read-only view of all registered stage factories."""
    return MappingProxyType(_STAGES)