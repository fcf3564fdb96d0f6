from framepost.negate import NegateStage
from framepost.stage import CameraStreams, CompletedRequest, Stream, StreamInfo, post_processing_stages


def make_stage():
    stream = Stream("main")
    app = CameraStreams(main_stream=stream, infos={stream: StreamInfo(4, 1, 4)})
    stage = NegateStage(app)
    stage.read({})
    stage.configure()
    return stage, stream


def test_negates_bytes():
    stage, stream = make_stage()
    request = CompletedRequest(buffers={stream: bytearray([0, 255, 1, 254])})
    assert stage.process(request) is False
    assert request.buffers[stream] == bytearray([255, 0, 254, 1])


def test_double_negation_restores_image():
    stage, stream = make_stage()
    original = bytearray(range(0, 256, 4))
    request = CompletedRequest(buffers={stream: bytearray(original)})
    stage.process(request)
    assert request.buffers[stream] != original
    stage.process(request)
    assert request.buffers[stream] == original


def test_buffer_modified_in_place():
    stage, stream = make_stage()
    buffer = bytearray(8)
    stage.process(CompletedRequest(buffers={stream: buffer}))
    assert all(b == 255 for b in buffer)


def test_registered():
    assert post_processing_stages()["negate"] is NegateStage