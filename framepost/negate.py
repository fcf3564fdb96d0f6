"""Stage that inverts every byte of the main image."""

from __future__ import annotations

from .stage import CompletedRequest, PostProcessingStage, Stream, register_stage

_NEGATE = bytes(255 - i for i in range(256))


class NegateStage(PostProcessingStage):
    """Negates the main stream image in place."""

    name = "negate"

    def __init__(self, app) -> None:
        super().__init__(app)
        self._stream: Stream | None = None

    def configure(self) -> None:
        self._stream = self.app.main_stream

    def process(self, request: CompletedRequest) -> bool:
        buffer = request.buffers[self._stream]
        buffer[:] = bytes(buffer).translate(_NEGATE)
        return False


register_stage(NegateStage.name, NegateStage)