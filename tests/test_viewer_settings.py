from dataclasses import replace

from slamkit.viewer_settings import ViewerSettings


def test_defaults_match_viewer_configuration():
    s = ViewerSettings()
    assert s.point_tesselation == 1.0
    assert s.line_tesselation == 2.0
    assert s.min_near_support == 5
    assert s.cut_first_n_kf == 5
    assert s.sparsify_factor == 1
    assert s.last_frame_time == 1e15
    assert s.keep_in_memory and s.show_constraints
    assert s.save_all_video is False


def test_instances_are_independent():
    a = ViewerSettings()
    b = ViewerSettings()
    a.sparsify_factor = 4
    a.show_kf_cameras = False
    assert b.sparsify_factor == 1
    assert b.show_kf_cameras is True


def test_replace_keeps_other_fields():
    s = ViewerSettings()
    t = replace(s, abs_depth_var_th=0.5)
    assert t.abs_depth_var_th == 0.5
    assert replace(t, abs_depth_var_th=s.abs_depth_var_th) == s