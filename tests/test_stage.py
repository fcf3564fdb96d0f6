import numpy as np
import pytest

from framepost.stage import (
    CameraStreams,
    CompletedRequest,
    PostProcessingStage,
    Stream,
    StreamConfiguration,
    StreamInfo,
    execution_time,
    post_processing_stages,
    register_stage,
    yuv420_to_rgb,
)


def make_yuv(width, height, luma, u=128, v=128):
    chroma = (height // 2) * (width // 2)
    y_plane = np.asarray(luma, dtype=np.uint8).reshape(-1)
    u_plane = np.broadcast_to(np.asarray(u, dtype=np.uint8), (chroma,))
    v_plane = np.broadcast_to(np.asarray(v, dtype=np.uint8), (chroma,))
    return np.concatenate([y_plane, u_plane, v_plane]).tobytes()


def as_rgb(out, info):
    return out.reshape(info.height, info.stride)[:, : 3 * info.width].reshape(
        info.height, info.width, 3
    )


def test_neutral_chroma_gives_grey():
    luma = np.arange(16, dtype=np.uint8)
    src = make_yuv(4, 4, luma)
    dst_info = StreamInfo(4, 4, 12)
    rgb = as_rgb(yuv420_to_rgb(src, StreamInfo(4, 4, 4), dst_info), dst_info)
    for channel in range(3):
        assert np.array_equal(rgb[:, :, channel], luma.reshape(4, 4))


def test_odd_destination_sizes_cover_every_pixel():
    luma = np.arange(36, dtype=np.uint8).reshape(6, 6)
    src = make_yuv(6, 6, luma)
    dst_info = StreamInfo(5, 3, 15)
    rgb = as_rgb(yuv420_to_rgb(src, StreamInfo(6, 6, 6), dst_info), dst_info)
    assert np.array_equal(rgb[:, :, 1], luma[:3, :5])


def test_crop_is_taken_from_centre():
    luma = np.arange(48, dtype=np.uint8).reshape(6, 8)
    src = make_yuv(8, 6, luma)
    dst_info = StreamInfo(4, 2, 12)
    rgb = as_rgb(yuv420_to_rgb(src, StreamInfo(8, 6, 8), dst_info), dst_info)
    assert np.array_equal(rgb[:, :, 0], luma[2:4, 2:6])


def test_output_size_and_padding():
    src = make_yuv(4, 2, np.full(8, 50, dtype=np.uint8))
    dst_info = StreamInfo(4, 2, 16)
    out = yuv420_to_rgb(src, StreamInfo(4, 2, 4), dst_info)
    assert len(out) == dst_info.height * dst_info.stride
    assert not out.reshape(2, 16)[:, 12:].any()


def test_values_are_clamped():
    bright = make_yuv(2, 2, np.full(4, 255, dtype=np.uint8), u=255, v=255)
    out = as_rgb(yuv420_to_rgb(bright, StreamInfo(2, 2, 2), StreamInfo(2, 2, 6)), StreamInfo(2, 2, 6))
    assert (out[:, :, 0] == 255).all()
    assert (out[:, :, 2] == 255).all()
    dark = make_yuv(2, 2, np.zeros(4, dtype=np.uint8), u=0, v=0)
    out = as_rgb(yuv420_to_rgb(dark, StreamInfo(2, 2, 2), StreamInfo(2, 2, 6)), StreamInfo(2, 2, 6))
    assert (out[:, :, 0] == 0).all()
    assert (out[:, :, 2] == 0).all()


def test_chroma_sample_covers_two_by_two_pixels():
    u = np.array([128, 228, 128, 128], dtype=np.uint8)
    src = make_yuv(4, 4, np.zeros(16, dtype=np.uint8), u=u)
    dst_info = StreamInfo(4, 4, 12)
    rgb = as_rgb(yuv420_to_rgb(src, StreamInfo(4, 4, 4), dst_info), dst_info)
    coloured = {(y, x) for y in range(4) for x in range(4) if rgb[y, x, 2] > 0}
    assert coloured == {(0, 2), (0, 3), (1, 2), (1, 3)}


def test_destination_larger_than_source_rejected():
    src = make_yuv(2, 2, np.zeros(4, dtype=np.uint8))
    with pytest.raises(ValueError):
        yuv420_to_rgb(src, StreamInfo(2, 2, 2), StreamInfo(4, 2, 12))


def test_execution_time_runs_function():
    calls = []
    elapsed = execution_time(lambda a, b=0: calls.append((a, b)), 1, b=2)
    assert calls == [(1, 2)]
    assert elapsed >= 0


class _Passthrough(PostProcessingStage):
    name = "passthrough"

    def process(self, request):
        return False


def test_registry_holds_factories():
    register_stage("passthrough_test", _Passthrough)
    stages = post_processing_stages()
    assert stages["passthrough_test"] is _Passthrough
    with pytest.raises(TypeError):
        stages["other"] = _Passthrough


def test_default_stage_methods_leave_config_alone():
    app = CameraStreams()
    stage = _Passthrough(app)
    config = StreamConfiguration(buffer_count=2)
    stage.read({"anything": 1})
    stage.adjust_config("still", config)
    stage.configure()
    stage.start()
    assert stage.process(CompletedRequest()) is False
    stage.stop()
    stage.teardown()
    assert config == StreamConfiguration(buffer_count=2)
    assert stage.app is app


def test_base_class_is_abstract():
    with pytest.raises(TypeError):
        PostProcessingStage(CameraStreams())


def test_stream_info_lookup():
    stream = Stream("main")
    info = StreamInfo(640, 480, 640)
    app = CameraStreams(main_stream=stream, infos={stream: info})
    assert app.stream_info(stream) is info
    with pytest.raises(KeyError):
        app.stream_info(Stream("main"))