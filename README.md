# slamkit

Building blocks for visual odometry and bundle adjustment, written with
NumPy and SciPy. Images are plain 2-D NumPy arrays of grey values; poses are
4x4 transforms.

## Modules

- `slamkit.rotation`: `dot_product`, `cross_product`,
  `angle_axis_to_quaternion`, `quaternion_to_angle_axis` and
  `angle_axis_rotate_point` (Rodrigues' formula, with a first-order
  approximation near zero rotation). Quaternions are ordered (w, x, y, z).
- `slamkit.sampling`: `rand_double` (uniform in [0, 1)) and `rand_normal`
  (standard normal by the Marsaglia polar method). Both take an optional
  `random.Random` so results can be repeated.
- `slamkit.reprojection`: `cam_projection_with_distortion` projects a point
  with a 9-parameter camera (angle-axis rotation, translation, focal length,
  two radial distortion terms); `SnavelyReprojectionError(observed_x,
  observed_y)` is a callable returning prediction minus observation.
- `slamkit.bal`: `BALProblem` loads a Bundle Adjustment in the Large text
  file, optionally converting cameras to quaternion form
  (`use_quaternions=True`). It offers `cameras()` and `points()` as writable
  views, `camera_for_observation(i)`, `point_for_observation(i)`,
  `normalize()`, `perturb(...)`, `write_to_file(...)` (BAL text, angle-axis
  cameras) and `write_to_ply_file(...)` (camera centres in green, points in
  white). Malformed files raise `BALFormatError`. Also `median` and
  `perturb_point3`.
- `slamkit.orb`: `compute_orb(img, keypoints)` computes 256-bit oriented
  BRIEF descriptors (tuples of eight 32-bit words) at given (x, y) keypoints,
  giving `None` for keypoints within 16 pixels of the border;
  `hamming_distance`; `bf_match` (brute force, keeps matches with distance
  below 40) returning `DMatch` records; and `filter_good_matches`, which keeps
  matches no farther than twice the smallest distance, or 30 at least.
- `slamkit.pnp`: `hat`, `so3_exp`, `so3_log`, `se3_exp` (twist with the
  translation part first), `pixel2cam`, and
  `bundle_adjustment_gauss_newton`, which refines a camera pose from 3D–2D
  correspondences.
- `slamkit.icp`: `pose_estimation_3d3d` aligns matched 3D point sets in
  closed form by SVD, and `bundle_adjustment` refines the same alignment by
  Levenberg-Marquardt from the identity. Both return `(R, t)` with
  `pts1 ≈ R · pts2 + t`.
- `slamkit.triangulation`: `essential_from_pose`, `epipolar_constraint`,
  `triangulation` (linear triangulation of matched pixels into the first
  camera's frame) and `get_color` (a depth-to-colour ramp). Intrinsics
  default to `DEFAULT_K`.
- `slamkit.bundle_adjustment`: `PoseAndIntrinsics` (camera rotation,
  translation, focal length, distortion, with `from_array`, `to_array` and
  `project`) and `solve_ba`, which optimises an angle-axis `BALProblem` in
  place with `scipy.optimize.least_squares` under a Huber loss and returns
  the optimiser's result.
- `slamkit.optical_flow`: `get_pixel_value`, `resize_bilinear`,
  `build_pyramid`, `optical_flow_single_level` and
  `optical_flow_multi_level` (four levels at half scale), in forward or
  inverse form. They return tracked positions and per-point success flags.
- `slamkit.direct_method`: `Intrinsics`, `JacobianAccumulator`,
  `get_pixel_value`, and `direct_pose_estimation_single_layer` /
  `direct_pose_estimation_multi_layer`, which estimate a camera pose from the
  photometric error of sparse reference pixels with known depth.

## Installation

```
pip install .
```

For the tests:

```
pip install ".[test]"
pytest
```

## Examples

Rotating a point:

```python
from slamkit.rotation import angle_axis_rotate_point, angle_axis_to_quaternion

q = angle_axis_to_quaternion([0.0, 0.0, 0.5])
p = angle_axis_rotate_point([0.0, 0.0, 0.5], [1.0, 0.0, 0.0])
```

Loading, normalising, perturbing and solving a BAL problem:

```python
import random

from slamkit.bal import BALProblem
from slamkit.bundle_adjustment import solve_ba

problem = BALProblem("problem-16-22106-pre.txt")
problem.normalize()
problem.perturb(0.1, 0.5, 0.5, rng=random.Random(1))
problem.write_to_ply_file("initial.ply")
result = solve_ba(problem)
problem.write_to_ply_file("final.ply")
```

`perturb` adds Gaussian noise to the points, to each camera's angle-axis
rotation (keeping its centre) and to each camera's translation; negative
sigmas raise `ValueError`.

## Command line

Bundle adjustment of a BAL data file. The problem is normalised, perturbed,
written to `initial.ply`, solved and written to `final.ply`:

```
slamkit-ba problem.txt
```

Direct-method pose estimation. It reads a reference image and its disparity
map, picks 2000 random pixels away from the border, takes their depth from
the disparity with a stereo baseline of 0.573, then tracks frames 1 to 5 and
prints each pose. The arguments are optional and default to `../left.png`,
`../disparity.png` and `../%06d.png`:

```
slamkit-direct [left.png [disparity.png [frame_format]]]
```

## What it does not do

- It does not detect keypoints: `compute_orb` and the optical-flow functions
  take keypoint positions that you supply.
- It does not estimate a relative pose from 2D–2D matches (no fundamental,
  essential or homography estimation); `triangulation` and
  `epipolar_constraint` need `R` and `t` given.
- It does not read images, except in the `slamkit-direct` command, and it
  does not draw or display keypoints, matches or tracks.