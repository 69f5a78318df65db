# pointpillars

The CPU stages of a PointPillars 3D object detector for LiDAR point clouds in
the KITTI layout. The package works on numpy arrays and covers the steps before
and after the region proposal network (RPN).

## Modules

### `pointpillars.voxelizer`

`Voxelizer(config)` takes a `VoxelConfig` and groups the points of a cloud into
voxels on a regular grid. `VoxelConfig` has these defaults:

* `max_num_points=32`
* `point_cloud_range=(0, -39.68, -3, 69.12, 39.68, 1)`
* `voxel_size=(0.16, 0.16, 4)`
* `max_voxels=40000`

The constructor raises `ValueError` if the range does not hold six values, if
the voxel size does not hold three, or if any voxel size is not positive. The
grid dimensions are available as `Voxelizer.grid_size`.

* `Voxelizer.point_to_grid_coords(x, y, z)` returns the `(x, y, z)` grid cell of
  a point. It returns `None` when the point lies outside the range. A range is
  closed at its low end and open at its high end.
* `Voxelizer.generate(points)` takes a flat sequence of
  `x, y, z, intensity` values and returns a `VoxelData` with these fields:
  * `voxels`, shaped `(num_voxels, max_num_points, 4)`;
  * `coordinates`, shaped `(num_voxels, 4)`, holding `(batch_id=0, z, y, x)`;
  * `num_points`;
  * `num_voxels`, a property.

  Points outside the range are dropped. Voxels are ordered by the first point
  that falls into them. Points within a voxel keep their order in the cloud.
  Only the first `max_voxels` voxels are kept, and only the first
  `max_num_points` points in each.

### `pointpillars.pfn`

`PillarFeatureNet(weights, bias)` is a linear layer laid out as
`[input_dim, output_dim]`, with `output_dim` taken from the length of the bias.
Every point in a pillar passes through the layer and the results are max-pooled.
Only the raw `x, y, z, intensity` values are fed in. Any further input
dimensions are left at zero. The constructor raises `ValueError` if the bias is
empty or if the weight count is not a multiple of the bias length.

* `process_voxel(points)` returns the pooled feature vector of one pillar.
* `run(voxel_data)` returns a float32 map shaped `[1, 64, 496, 432]` (NCHW),
  which is the RPN input. It raises `ValueError` unless the output dimension is
  64. It skips voxels that lie outside the grid and voxels whose batch is not 0.
  When two voxels fall in the same cell, the later one replaces the earlier.

### `pointpillars.postprocess`

* `DecodeConfig` holds the BEV grid and the anchor layout. Its defaults are a
  432 × 496 grid of 0.16 m cells, `x_min=0`, `y_min=-39.68`, rotations 0 and
  π/2 (`num_rot=2`) and `num_classes=3`. The anchor sizes are given as
  `AnchorSize(w, l, h, z_center)` for Car, Pedestrian and Cyclist.
* `AnchorDecoder(cfg)` raises `ValueError` for an invalid grid, an empty list of
  anchor sizes, or a non-positive `num_rot` or `num_classes`.
  * `decode(box_map, score_map, score_thresh)` reads `box_map` as
    `[num_anchors * 7, H, W]` and `score_map` as
    `[num_anchors * num_classes, H, W]`. It raises `ValueError` if either map
    has the wrong size.
  * Each anchor is scored by the sigmoid of the channel that belongs to its own
    class.
  * An anchor is dropped if its score is below the threshold, if any of its
    regression values is NaN or infinite, or if a value is out of bounds. The
    bounds are |dx|, |dy|, |dz| > 100; |dw|, |dl|, |dh| > 10; |dr| > 3.14.
  * The result is a list of `Box3D`, best score first. Each box's `label` is the
    index of its anchor type: 0 for Car, 1 for Pedestrian, 2 for Cyclist.
* `nms_bev_rotated(boxes, iou_thr, max_num)` runs greedy NMS by score within each
  label. A box is suppressed when its rotated BEV IoU with a kept box exceeds
  `iou_thr`. At most `max_num` boxes are kept, and a value of `max_num <= 0`
  keeps any number.
* Geometry helpers: `iou_bev_rotated`, `box_corners_bev`, `clip_polygon`,
  `polygon_area`, `sigmoid` and `normalize_angle`. `normalize_angle` wraps an
  angle into [-π, π].

### `pointpillars.pipeline`

* `load_bin(path)` reads a raw file of native float32 values. Any trailing bytes
  that do not make up a whole value are ignored.
* `load_pointcloud(path)` does the same for a KITTI point cloud.
* `check_head_output(values)` returns a `MapStats` with these members:
  * `max_abs`, the largest finite magnitude;
  * `nan_count`;
  * `inf_count`;
  * `has_invalid`;
  * `is_large`, which is true above 1e6.
* `format_boxes(boxes, limit=10)` returns a text report that lists the first
  `limit` boxes.

### `pointpillars.onnx_inference`

`PythonInference(model_path, script_dir=".")` writes voxels, coordinates and
point counts to temporary binary files. It then runs
`<script_dir>/inference_service.py` under the current interpreter, passing the
arguments `--onnx-model`, `--voxels`, `--coors` and `--num-points`. It returns
the parsed output as an `InferenceOutput`, which holds `bboxes`, `scores`,
`bbox_shape` and `score_shape`.

`parse_inference_output(text)` does the parsing on its own. Any array that is
missing or malformed is left empty.

## Usage

```python
from pointpillars.voxelizer import VoxelConfig, Voxelizer
from pointpillars.pfn import PillarFeatureNet
from pointpillars.postprocess import AnchorDecoder, DecodeConfig, nms_bev_rotated
from pointpillars.pipeline import load_bin, load_pointcloud, check_head_output, format_boxes

points = load_pointcloud("kitti_000008.bin")
voxels = Voxelizer(VoxelConfig()).generate(points)

pfn = PillarFeatureNet(load_bin("pfn_weight.bin"), load_bin("pfn_bias.bin"))
rpn_input = pfn.run(voxels)                    # [1, 64, 496, 432]

# box_map [1, 42, 496, 432] and score_map [1, 18, 496, 432] come from your RPN.
stats = check_head_output(box_map)
if stats.has_invalid:
    raise RuntimeError("RPN output holds NaN or Inf")

candidates = AnchorDecoder(DecodeConfig()).decode(box_map, score_map, 0.3)
boxes = nms_bev_rotated(candidates, 0.01, 100)
print(format_boxes(boxes, 10))
```

Progress and summaries are reported through the standard `logging` module.

## What the package does not do

* It does not run the RPN network itself. You supply the box and score maps.
* It does not include `inference_service.py` or any model runtime.
  `PythonInference` only starts that script, which you must provide.
* It installs no command-line program.

## Requirements

Python 3.10 or later and numpy.