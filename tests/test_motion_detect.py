from framepost.motion_detect import MotionDetectConfig, MotionDetectStage
from framepost.stage import CameraStreams, CompletedRequest, Stream, StreamInfo, post_processing_stages

WIDTH, HEIGHT = 8, 4


def make_stage(**params):
    stream = Stream("lores")
    app = CameraStreams(lores_stream=stream, infos={stream: StreamInfo(WIDTH, HEIGHT, WIDTH)})
    stage = MotionDetectStage(app)
    settings = {"frame_period": 1, "region_threshold": 0.5}
    settings.update(params)
    stage.read(settings)
    stage.configure()
    return stage, stream


def frame(value=100, changes=()):
    data = bytearray([value] * (WIDTH * HEIGHT)) + bytearray([128] * (WIDTH * HEIGHT // 2))
    for y, x, v in changes:
        data[y * WIDTH + x] = v
    return data


def run(stage, stream, data, sequence=0):
    request = CompletedRequest(sequence=sequence, buffers={stream: data})
    dropped = stage.process(request)
    return dropped, request.post_process_metadata


def test_first_frame_reports_no_motion():
    stage, stream = make_stage()
    dropped, meta = run(stage, stream, frame())
    assert dropped is False
    assert meta["motion_detect.result"] is False


def test_identical_frames_no_motion():
    stage, stream = make_stage()
    run(stage, stream, frame())
    _, meta = run(stage, stream, frame(), 1)
    assert meta["motion_detect.result"] is False
    assert stage.motion_detected is False


def test_large_change_is_motion():
    stage, stream = make_stage()
    run(stage, stream, frame(100))
    _, meta = run(stage, stream, frame(200), 1)
    assert meta["motion_detect.result"] is True
    assert stage.motion_detected is True
    _, meta = run(stage, stream, frame(200), 2)
    assert meta["motion_detect.result"] is False


def test_frames_outside_period_are_skipped():
    stage, stream = make_stage(frame_period=5)
    dropped, meta = run(stage, stream, frame(), 3)
    assert dropped is False
    assert "motion_detect.result" not in meta


def test_without_lores_stream_nothing_happens():
    stage = MotionDetectStage(CameraStreams())
    stage.read({})
    stage.configure()
    request = CompletedRequest(sequence=0)
    assert stage.process(request) is False
    assert request.post_process_metadata == {}


def test_roi_is_clamped_to_image():
    stage, _ = make_stage(roi_x=0.5, roi_width=1.0)
    x, y, w, h = stage.roi
    assert x + w == WIDTH
    assert (y, h) == (0, HEIGHT)


def test_changes_outside_roi_are_ignored():
    stage, stream = make_stage(roi_x=0.5, roi_width=0.5)
    run(stage, stream, frame())
    changes = [(y, x, 250) for y in range(HEIGHT) for x in range(WIDTH // 2)]
    _, meta = run(stage, stream, frame(changes=changes), 1)
    assert meta["motion_detect.result"] is False


def test_hskip_ignores_skipped_columns():
    stage, stream = make_stage(hskip=2)
    assert stage.roi[2] == WIDTH // 2
    run(stage, stream, frame())
    odd = [(y, x, 250) for y in range(HEIGHT) for x in range(1, WIDTH, 2)]
    _, meta = run(stage, stream, frame(changes=odd), 1)
    assert meta["motion_detect.result"] is False
    even = [(y, x, 250) for y in range(HEIGHT) for x in range(0, WIDTH, 2)]
    _, meta = run(stage, stream, frame(changes=even), 2)
    assert meta["motion_detect.result"] is True


def test_region_threshold_clamped_to_roi_area():
    stage, _ = make_stage(region_threshold=2.0)
    _, _, w, h = stage.roi
    assert stage.region_threshold == w * h


def test_non_positive_skips_become_one():
    stage, _ = make_stage(hskip=0, vskip=-3)
    assert stage.config.hskip == 1
    assert stage.config.vskip == 1
    assert stage.roi == (0, 0, WIDTH, HEIGHT)


def test_config_defaults_and_parsing():
    assert MotionDetectConfig.from_params({}) == MotionDetectConfig()
    cfg = MotionDetectConfig.from_params({"verbose": 1, "difference_c": 4})
    assert cfg.verbose is True
    assert cfg.difference_c == 4


def test_registered():
    assert post_processing_stages()["motion_detect"] is MotionDetectStage