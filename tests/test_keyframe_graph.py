import struct

import numpy as np
import pytest

from slamkit.keyframe_display import INPUT_POINT_DTYPE, KeyframeMsg
from slamkit.keyframe_graph import (
    PLY_HEADER,
    KeyFrameGraphDisplay,
    KeyframeGraphMsg,
)
from slamkit.viewer_settings import ViewerSettings


def make_msg(frame_id, size=5, translation=(0.0, 0.0, 0.0)):
    arr = np.zeros((size, size), dtype=INPUT_POINT_DTYPE)
    arr["idepth"] = 1.0
    arr["idepth_var"] = 1e-4
    arr["color"] = (10, 20, 30, 0)
    return KeyframeMsg(
        id=frame_id, time=0.0, is_keyframe=True,
        cam_to_world=(0, 0, 0, 1, *translation),
        width=size, height=size, pointcloud=arr.tobytes(),
    )


def graph_with(*ids, tmp_path=None):
    graph = KeyFrameGraphDisplay(output_dir=tmp_path or ".")
    for i in ids:
        graph.add_msg(make_msg(i, translation=(float(i), 0.0, 0.0)))
    return graph


def constraints_msg(*triples):
    data = b"".join(struct.pack("<iif", *t) for t in triples)
    return KeyframeGraphMsg(num_constraints=len(triples), constraints_data=data)


def test_add_msg_creates_once_per_id():
    graph = graph_with(1, 2)
    graph.add_msg(make_msg(1, translation=(9.0, 0.0, 0.0)))
    assert len(graph.keyframes) == 2
    assert [kf.id for kf in graph.keyframes] == [1, 2]
    np.testing.assert_allclose(graph.keyframes_by_id[1].cam_to_world.translation, [9, 0, 0])


def test_constraints_to_unknown_frames_are_skipped():
    graph = graph_with(1, 2)
    graph.add_graph_msg(constraints_msg((1, 2, 0.0), (1, 99, 0.0)))
    assert len(graph.constraints) == 2
    assert graph.constraints[1].target is None
    lines = graph.constraint_lines()
    assert len(lines) == 1
    np.testing.assert_allclose(lines[0].start, [1, 0, 0])
    np.testing.assert_allclose(lines[0].end, [2, 0, 0])


def test_constraint_colour_runs_green_to_red():
    graph = graph_with(1, 2)
    graph.add_graph_msg(constraints_msg((1, 2, 0.0), (2, 1, 1.0)))
    lines = graph.constraint_lines()
    assert lines[0].color == (0.0, 1.0, 0.0)
    assert lines[1].color == (1.0, 0.0, 0.0)


def test_graph_msg_updates_known_poses():
    graph = graph_with(1)
    frames = struct.pack("<i7f", 1, 0, 0, 0, 1, 5, 6, 7) + struct.pack(
        "<i7f", 42, 0, 0, 0, 1, 1, 1, 1
    )
    graph.add_graph_msg(KeyframeGraphMsg(num_frames=2, frame_data=frames))
    np.testing.assert_allclose(graph.keyframes_by_id[1].cam_to_world.translation, [5, 6, 7])
    assert 42 not in graph.keyframes_by_id


def test_graph_msg_size_mismatch_raises():
    graph = graph_with(1, 2)
    msg = KeyframeGraphMsg(num_constraints=2, constraints_data=struct.pack("<iif", 1, 2, 0.0))
    with pytest.raises(ValueError):
        graph.add_graph_msg(msg)


def test_flush_writes_ply(tmp_path):
    graph = graph_with(1, 2)
    settings = ViewerSettings(cut_first_n_kf=-1)
    path = tmp_path / "out.ply"
    count = graph.flush_pointcloud_to(path, settings)
    assert count == 18
    header = PLY_HEADER.format(count=18).encode("ascii")
    raw = path.read_bytes()
    assert raw.startswith(b"ply\nformat binary_little_endian 1.0\nelement vertex 18\n")
    assert raw.startswith(header)
    assert len(raw) == len(header) + count * 16


def test_flush_respects_cut_first(tmp_path):
    graph = graph_with(1, 2)
    count = graph.flush_pointcloud_to(tmp_path / "pc.ply", ViewerSettings(cut_first_n_kf=0))
    assert count == 9


def test_draw_flushes_on_request(tmp_path):
    graph = graph_with(1, 2, tmp_path=tmp_path)
    graph.flush_pointcloud = True
    graph.draw(ViewerSettings(cut_first_n_kf=-1))
    assert not graph.flush_pointcloud
    assert (tmp_path / "pc.ply").read_bytes().startswith(b"ply\n")


def test_draw_always_shows_last_keyframe_cloud():
    graph = graph_with(1, 2)
    scene = graph.draw(ViewerSettings(cut_first_n_kf=5))
    assert len(scene.point_clouds) == 1
    assert len(scene.cameras) == 2
    matrix, verts = scene.point_clouds[0]
    np.testing.assert_allclose(matrix[:3, 3], [2, 0, 0])
    assert len(verts) == 9


def test_draw_hides_constraints_when_disabled():
    graph = graph_with(1, 2)
    graph.add_graph_msg(constraints_msg((1, 2, 0.0)))
    assert len(graph.draw(ViewerSettings()).constraints) == 1
    assert graph.draw(ViewerSettings(show_constraints=False)).constraints == []


def test_statistics_and_print(capsys):
    graph = graph_with(1, 2)
    graph.add_graph_msg(constraints_msg((1, 2, 0.0)))
    graph.print_numbers = True
    graph.draw(ViewerSettings(cut_first_n_kf=-1))
    stats = graph.statistics()
    assert stats.total_points == 18
    assert stats.keyframes == 2
    assert stats.constraints == 1
    assert stats.displayed_points == 18
    assert not graph.print_numbers
    assert "Have 18 points, 2 keyframes, 1 constraints. Displaying 18 points." in capsys.readouterr().out