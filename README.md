# slamkit

Building blocks for working with the output of a monocular, key-frame based
SLAM system: camera poses as similarity transforms, camera undistortion from
calibration files, depth and variance visualisation, parallel index
reduction, and a key-frame graph that turns per-frame inverse-depth maps into
a coloured point cloud that can be written out as binary PLY.

Everything is plain Python on top of NumPy and Pillow. Drawing is reduced to
the data a renderer needs (line segments, vertex arrays, pose matrices), so
the results can be handed to whatever display you use.

## What is in the package

| Module | Contents |
| --- | --- |
| `slamkit.core_settings` | `Settings` for the tracking/mapping side, with `handle_key`; `RunningStats` counters with `set_zero` and `add`; `DenseDepthTrackerSettings` with per-pyramid-level defaults; module-level constants. |
| `slamkit.viewer_settings` | `ViewerSettings`: point/line sizes, what to show, depth-variance thresholds, neighbour support, sparsification, key-frame cut-off and the frame-time cut-off `last_frame_time`. |
| `slamkit.sophus` | `SE3` and `Sim3` poses (quaternion in x, y, z, w order, translation, scale), composition with `*`, `inverse`, 4×4 `matrix`, `Sim3.from_data` / `Sim3.data` for the packed 7-value layout, `quaternion_to_matrix`, `matrix_to_quaternion`, `sim3_from_se3` and `se3_from_sim3`. |
| `slamkit.index_reduce` | `IndexThreadReduce`, which splits an index range into chunks, runs them on a thread pool and sums the `RunningStats` each chunk produces. |
| `slamkit.global_funcs` | `se3_from_cv`, bilinear interpolation (`get_interpolated_element`, `get_interpolated_vector`), image helpers (`fill_image`, `set_pixel`, `gray_pixel`, `print_message_on_image`), `depth_rainbow_plot` and `var_red_green_plot`. |
| `slamkit.undistorter` | `UndistorterPTAM` (ATAN/FOV model) and `UndistorterOpenCV` (radial-tangential model with four coefficients), read from calibration files; `undistorter_for_file` picks the right one; `CalibrationError`. |
| `slamkit.keyframe_display` | `KeyframeMsg` and `KeyFrameDisplay`, which filters an inverse-depth map into coloured 3-D points (`refresh_pc`), gives the camera outline (`camera_frustum`) and writes world points (`flush_pc`). |
| `slamkit.keyframe_graph` | `KeyframeGraphMsg`, `GraphConstraint` and `KeyFrameGraphDisplay`, which holds all key-frames, applies graph pose updates, collects a scene with `draw`, reports `statistics`, gives `constraint_lines` and exports the cloud with `flush_pointcloud_to`. |
| `slamkit.point_cloud_viewer` | `PointCloudViewer` with camera-path animation (`AnimationObject`, `Frame`, `KeyFrameInterpolator`), key handling and saving/loading of the animation list. |
| `slamkit.viewer` | `ViewerNode`, which routes frame and graph messages to a viewer (with `dispatch` by topic name), and `apply_config` for parameter updates. |

## Installing

Install the package from a checkout with your usual Python packaging tool;
the `test` extra adds pytest.

## Examples

### Poses

```python
from slamkit.sophus import Sim3, se3_from_sim3

# Packed layout: quaternion (x, y, z, w) followed by translation;
# the squared norm of the quaternion is the scale (here 4.0).
pose = Sim3.from_data([0.0, 0.0, 0.0, 2.0, 1.0, 0.0, 0.0])

print(pose.scale)             # 4.0
print(pose.matrix())          # 4x4 similarity matrix
print(pose.inverse().data())  # back to the packed 7-value layout
print(pose * [[1.0, 0.0, 0.0]])  # transform points

rigid = se3_from_sim3(pose)   # drop the scale
```

### Undistorting images

A calibration file has four lines: the intrinsics relative to the image size
(plus the distortion parameters), the input size, the output mode and the
output size. A first line with eight numbers selects the radial-tangential
model (output mode `crop` or `full`); otherwise the ATAN model is used
(output mode `crop`, `full`, `none`, or five explicit output intrinsics).

```python
import numpy as np
from slamkit.undistorter import CalibrationError, undistorter_for_file

try:
    undistorter = undistorter_for_file("camera.cfg")
except CalibrationError as exc:
    raise SystemExit(f"cannot use calibration: {exc}")

frame = np.zeros((undistorter.input_height, undistorter.input_width), dtype=np.uint8)
rectified = undistorter.undistort(frame)
print(undistorter.k)  # transposed 3x3 intrinsics of the output image
```

If the file cannot be opened, `undistorter_for_file(path, package_path)`
tries `<package_path>calib/<path>`. It raises `CalibrationError` when no file
is found or the calibration is not valid. `UndistorterPTAM.undistort` returns
images of an unexpected size unchanged.

### Depth plots

```python
import numpy as np
from slamkit.global_funcs import depth_rainbow_plot, var_red_green_plot

idepth = np.full((48, 64), 0.5, dtype=np.float32)
idepth_var = np.full((48, 64), 0.01, dtype=np.float32)
gray = np.zeros((48, 64), dtype=np.float32)

rainbow = depth_rainbow_plot(idepth, idepth_var, gray)   # H x W x 3 uint8
variance = var_red_green_plot(idepth_var, gray)
```

Without a gray image the plots are drawn over a flat background colour.

### Parallel reduction

```python
from slamkit.index_reduce import IndexThreadReduce

def work(start, stop, stats):
    stats.num_stereo_calls += stop - start

with IndexThreadReduce(threads=4) as reducer:
    reducer.reduce(work, 0, 1000)
    print(reducer.running_stats.num_stereo_calls)  # 1000
```

### Building and exporting a point cloud

The depth map of a frame travels as packed little-endian records of
`idepth`, `idepth_var` and four colour bytes (`INPUT_POINT_DTYPE`).

```python
import numpy as np
from slamkit.keyframe_display import INPUT_POINT_DTYPE, KeyframeMsg
from slamkit.keyframe_graph import KeyFrameGraphDisplay
from slamkit.viewer_settings import ViewerSettings

width, height = 8, 6
points = np.zeros((height, width), dtype=INPUT_POINT_DTYPE)
points["idepth"] = 0.5
points["idepth_var"] = 1e-4
points["color"] = (120, 120, 120, 0)

settings = ViewerSettings(cut_first_n_kf=-1, min_near_support=0)
graph = KeyFrameGraphDisplay()
graph.add_msg(KeyframeMsg(id=1, is_keyframe=True, fx=100, fy=100, cx=4, cy=3,
                          width=width, height=height, pointcloud=points.tobytes()))

count = graph.flush_pointcloud_to("cloud.ply", settings)
print(count, graph.statistics())
```

The exported file is a binary little-endian PLY with `x`, `y`, `z` and
`intensity` float properties per vertex. Key-frames whose position in the
graph is not past `cut_first_n_kf` are left out, and each point passes the
same depth-variance, sparsity and neighbour-support filters used for display.
Graph updates (`add_graph_msg`) replace the constraints and move the poses of
known key-frames.

### Viewer and camera-path animation

`PointCloudViewer` takes frame messages (`add_frame_msg`: key-frames go to the
graph, other frames become the current camera; a backward jump in id requests
a reset) and graph messages (`add_graph_msg`). `key_press` handles these keys,
case-insensitively, and returns `False` for any other:

| Key | Effect |
| --- | --- |
| `s` | set `window_size` to 1600×900 |
| `r` | request a reset |
| `t` | add a settings item at the last frame time |
| `k` | add a camera key-frame item (duration 2 s) and rebuild the path |
| `i` | clear the animation list |
| `f` / `l` | save / load the animation list (`animationPath.txt` by default) |
| `a` | toggle `custom_animation_enabled` |
| `o` | start or stop playback |
| `p` | make the next graph `draw` write `pc.ply` into the output directory |
| `w` | make the next graph `draw` print point and key-frame counts |

The animation file holds one `Animation: ...` line per item; lines starting
with `#` are skipped. `update_animation(now)` performs a requested reset,
advances playback to the given clock time, returns the camera `Frame` and
applies any settings item that has been reached.

`ViewerNode` forwards frames to a viewer unless their time is past
`last_frame_time`, and `apply_config` copies parameters given by their
camel-case names into `ViewerSettings`, treating `scaledDepthVarTH` and
`absDepthVarTH` as base-10 logarithms.

## What the package does not do

There is no window, no OpenGL rendering and no command-line program: `draw`
returns a `GraphScene` of camera outlines, vertex arrays with their pose
matrices, and coloured constraint lines, and displaying them is left to you.
The package does not subscribe to message topics or read recorded message
files; feed `KeyframeMsg` and `KeyframeGraphMsg` objects to `ViewerNode` or
`PointCloudViewer` yourself. The `save_all_video` setting is stored, but
nothing captures screenshots; a viewer's `save_folder` is only emptied and
recreated on `reset`.

## Running the tests

The test suite uses pytest and lives in `tests/`.