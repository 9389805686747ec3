import numpy as np
import pytest

from slamkit.keyframe_display import KeyframeMsg
from slamkit.keyframe_graph import KeyframeGraphMsg
from slamkit.point_cloud_viewer import PointCloudViewer
from slamkit.viewer import GRAPH_TOPIC, KEYFRAMES_TOPIC, ViewerNode, apply_config
from slamkit.viewer_settings import ViewerSettings


def make_node(tmp_path):
    viewer = PointCloudViewer(output_dir=tmp_path, rng=np.random.default_rng(0))
    return ViewerNode(viewer), viewer


def test_apply_config_copies_values_and_exponentiates():
    settings = ViewerSettings()
    apply_config(
        settings,
        {
            "pointTesselation": 3.0,
            "showConstraints": False,
            "minNearSupport": 2,
            "scaledDepthVarTH": 2,
            "absDepthVarTH": 0,
        },
    )
    assert settings.point_tesselation == 3.0
    assert settings.show_constraints is False
    assert settings.min_near_support == 2
    assert settings.scaled_depth_var_th == pytest.approx(100.0)
    assert settings.abs_depth_var_th == pytest.approx(1.0)


def test_apply_config_leaves_absent_keys():
    settings = ViewerSettings(sparsify_factor=4)
    apply_config(settings, {"cutFirstNKf": 1})
    assert settings.cut_first_n_kf == 1
    assert settings.sparsify_factor == 4


def test_frame_callback_forwards(tmp_path):
    node, viewer = make_node(tmp_path)
    node.frame_callback(KeyframeMsg(id=9, time=2.0))
    assert viewer.last_cam_id == 9


def test_frame_callback_drops_late_frames(tmp_path):
    node, viewer = make_node(tmp_path)
    node.settings.last_frame_time = 1.0
    node.frame_callback(KeyframeMsg(id=9, time=2.0))
    assert viewer.last_cam_id == -1


def test_graph_callback_forwards(tmp_path):
    node, viewer = make_node(tmp_path)
    node.graph_callback(KeyframeGraphMsg())
    assert viewer.graph_display.statistics().constraints == 0
    with pytest.raises(ValueError):
        node.graph_callback(KeyframeGraphMsg(num_constraints=1, constraints_data=b""))


def test_dispatch_by_topic(tmp_path):
    node, viewer = make_node(tmp_path)
    assert node.dispatch(KEYFRAMES_TOPIC, KeyframeMsg(id=1, is_keyframe=True)) is True
    assert node.dispatch(GRAPH_TOPIC, KeyframeGraphMsg()) is True
    assert node.dispatch("/other", None) is False
    assert viewer.graph_display.statistics().keyframes == 1


def test_node_without_viewer_ignores_messages():
    node = ViewerNode(None)
    node.frame_callback(KeyframeMsg(id=1))
    assert node.settings.last_frame_time == 1e15