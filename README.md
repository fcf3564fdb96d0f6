# framepost

Post-processing stages for YUV420 camera frames, with a small framework to run them and a piecewise linear function type.

## Modules

- `framepost.pwl`: `Pwl`, a piecewise linear function given by control points with increasing x. It can be evaluated (`eval`, `eval_with_span`), composed (`compose`), combined with another (`map2`, `combine`), inverted towards a point (`invert`, returning a `PerpType`), extended to cover an `Interval` (`match_domain`), scaled (`*=`) and turned into a lookup table (`generate_lut`). `Pwl.from_values` builds one from a flat `x0, y0, x1, y1, ...` list.
- `framepost.stage`: the stage framework.
  - `PostProcessingStage` is the base class. Its hooks are `read`, `adjust_config`, `configure`, `start`, `process`, `stop` and `teardown`.
  - `StreamInfo`, `Stream`, `StreamConfiguration`, `CompletedRequest` and `CameraStreams` describe streams and finished captures.
  - `yuv420_to_rgb` converts a YUV420 frame to packed RGB, cropping from the centre.
  - `execution_time` times a call in microseconds.
  - `register_stage` and `post_processing_stages` keep a registry of stage factories by name.
- `framepost.negate`: `NegateStage` inverts every byte of the main stream buffer.
- `framepost.motion_detect`: `MotionDetectStage` compares a region of interest of successive low resolution frames. It sets `motion_detect.result` in the request's `post_process_metadata`. Its settings are held in `MotionDetectConfig`.
- `framepost.tf_stage`: `TfStage` runs a model on the low resolution image in a background thread.
  - Every `refresh_rate` frames the image is converted to RGB at the model's input size and fed in as `uint8` or normalised `float32`, as the `TensorType` requires.
  - Subclasses override `read_extras`, `check_configuration`, `interpret_outputs` and `apply_results`.
- `framepost.detection`: `Rectangle` (with `area` and `bounded_to`) and `Detection`.
- `framepost.object_detect`: `ObjectDetectTfStage` reports `object_detect.results`. `interpret_detections` turns raw boxes, classes and scores into `Detection`s in main-image coordinates and merges overlapping boxes of the same category. `read_detection_labels` reads a labels file and skips its first line.
- `framepost.pose_estimation`: `PoseEstimationTfStage` reports `pose_estimation.locations` and `pose_estimation.confidences`. `estimate_pose` works on 9×9×17 heatmaps and their offsets.
- `framepost.segmentation`: `SegmentationTfStage` stores a `Segmentation` under `segmentation.result`. It can also draw the map into the bottom right corner of the main image. The helpers are `segment` (per-pixel argmax), `category_summary` and `read_segmentation_labels`.

## Supplying a model

No model runtime is bundled. A model-running stage takes an `interpreter_factory`: a callable that receives the `model_file` parameter and returns an object with these methods, or `None` if the model cannot be loaded:

- `input_type()` returns a `TensorType`.
- `input_bytes()`
- `set_num_threads(count)`
- `allocate_tensors()`
- `set_input(data)`
- `invoke()`
- `output(index)` returns a numpy array.

The stage checks that the input size matches its width × height × 3.

## Installing

```
pip install .
```

## Examples

A piecewise linear curve and its lookup table:

```python
from framepost.pwl import Pwl

curve = Pwl.from_values([0, 0, 100, 50, 255, 255])
print(curve.eval(50))        # 25.0
lut = curve.generate_lut(int)
```

Converting a YUV420 frame to RGB:

```python
from framepost.stage import StreamInfo, yuv420_to_rgb

src_info = StreamInfo(width=64, height=48, stride=64)
dst_info = StreamInfo(width=32, height=32, stride=96)
rgb = yuv420_to_rgb(frame_bytes, src_info, dst_info)
```

Running a stage:

```python
from framepost.motion_detect import MotionDetectStage
from framepost.stage import CameraStreams, CompletedRequest, Stream, StreamInfo

lores = Stream("lores")
streams = CameraStreams(lores_stream=lores, infos={lores: StreamInfo(64, 48, 64)})

stage = MotionDetectStage(streams)
stage.read({"frame_period": 1})
stage.configure()

request = CompletedRequest(sequence=0, buffers={lores: bytearray(64 * 48 * 3 // 2)})
stage.process(request)
print(request.post_process_metadata["motion_detect.result"])   # False
```

A stage is set up in three steps:

1. `read` takes its parameters from a dictionary.
2. `configure` attaches it to the camera streams.
3. `process` is called with each `CompletedRequest`.

`process` returns `True` when the frame should be dropped.

## What it does not do

The package does not capture frames from a camera or show them on screen. Frames and their stream geometry come from the caller. The package has no command-line program.

## Running the tests

```
pip install .[test]
pytest
```