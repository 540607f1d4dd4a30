"""Visual odometry and bundle adjustment: rotations, BAL problems, ORB descriptors, PnP, ICP, triangulation, optical flow and direct pose estimation."""

__version__ = "0.1.0"