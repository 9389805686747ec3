"""Wiring of incoming SLAM messages and parameter updates to the viewer."""

from __future__ import annotations

from typing import Any, Mapping

from slamkit.keyframe_display import KeyframeMsg
from slamkit.keyframe_graph import KeyframeGraphMsg
from slamkit.point_cloud_viewer import PointCloudViewer
from slamkit.viewer_settings import ViewerSettings

LIVEFRAMES_TOPIC = "/lsd_slam/liveframes"
KEYFRAMES_TOPIC = "/lsd_slam/keyframes"
GRAPH_TOPIC = "/lsd_slam/graph"

_DIRECT = {
    "pointTesselation": "point_tesselation",
    "lineTesselation": "line_tesselation",
    "keepInMemory": "keep_in_memory",
    "showKFCameras": "show_kf_cameras",
    "showKFPointclouds": "show_kf_pointclouds",
    "showConstraints": "show_constraints",
    "showCurrentCamera": "show_current_camera",
    "showCurrentPointcloud": "show_current_pointcloud",
    "minNearSupport": "min_near_support",
    "sparsifyFactor": "sparsify_factor",
    "cutFirstNKf": "cut_first_n_kf",
    "saveAllVideo": "save_all_video",
}
_LOG10 = {
    "scaledDepthVarTH": "scaled_depth_var_th",
    "absDepthVarTH": "abs_depth_var_th",
}


def apply_config(settings: ViewerSettings, config: Mapping[str, Any]) -> None:
    """Copy reconfigurable parameters into ``settings``.

    The two depth-variance thresholds are given as base-10 logarithms.
    Keys that are absent leave the setting unchanged.
    """
    for key, attr in _DIRECT.items():
        if key in config:
            setattr(settings, attr, config[key])
    for key, attr in _LOG10.items():
        if key in config:
            setattr(settings, attr, 10.0 ** float(config[key]))


class ViewerNode:
    """Routes frame and graph messages to a viewer."""

    def __init__(self, viewer: PointCloudViewer | None, settings: ViewerSettings | None = None):
        self.viewer = viewer
        if settings is None:
            settings = viewer.settings if viewer is not None else ViewerSettings()
        self.settings = settings

    def frame_callback(self, msg: KeyframeMsg) -> None:
        """Forward a frame unless it lies past the configured cut-off time."""
        if msg.time > self.settings.last_frame_time:
            return
        if self.viewer is not None:
            self.viewer.add_frame_msg(msg)

    def graph_callback(self, msg: KeyframeGraphMsg) -> None:
        if self.viewer is not None:
            self.viewer.add_graph_msg(msg)

    def dispatch(self, topic: str, msg) -> bool:
        """Handle a recorded message by topic; return False for unknown topics."""
        if topic in (LIVEFRAMES_TOPIC, KEYFRAMES_TOPIC):
            self.frame_callback(msg)
        elif topic == GRAPH_TOPIC:
            self.graph_callback(msg)
        else:
            return False
        return True