"""Display parameters of the point-cloud viewer."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class ViewerSettings:
    """What the viewer draws and how points are filtered."""

    point_tesselation: float = 1.0
    line_tesselation: float = 2.0

    keep_in_memory: bool = True
    show_kf_cameras: bool = True
    show_kf_pointclouds: bool = True
    show_constraints: bool = True
    show_current_camera: bool = True
    show_current_pointcloud: bool = True

    scaled_depth_var_th: float = 1.0
    abs_depth_var_th: float = 1.0
    min_near_support: int = 5
    cut_first_n_kf: int = 5
    sparsify_factor: int = 1

    save_all_video: bool = False

    num_refreshed_already: int = 0

    # frames with a later time than this are ignored
    last_frame_time: float = 1e15