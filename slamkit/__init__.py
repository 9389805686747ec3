"""Poses, undistortion, depth plots and key-frame point clouds for monocular SLAM data."""

__version__ = "0.1.0"

__all__ = [
    "core_settings",
    "viewer_settings",
    "sophus",
    "index_reduce",
    "global_funcs",
    "undistorter",
    "keyframe_display",
    "keyframe_graph",
    "point_cloud_viewer",
    "viewer",
]