import copy
from dataclasses import fields

import pytest

from slamkit.core_settings import (
    PYRAMID_LEVELS,
    DenseDepthTrackerSettings,
    RunningStats,
    Settings,
)


def _filled(value):
    stats = RunningStats()
    for f in fields(stats):
        setattr(stats, f.name, value)
    return stats


def test_running_stats_add_sums_every_counter():
    a = _filled(2)
    b = _filled(3)
    a.add(b)
    assert all(getattr(a, f.name) == 5 for f in fields(a))
    assert all(getattr(b, f.name) == 3 for f in fields(b))


def test_running_stats_set_zero():
    stats = _filled(7)
    stats.set_zero()
    assert stats == RunningStats()


def test_running_stats_add_zero_is_identity():
    stats = _filled(4)
    before = copy.deepcopy(stats)
    stats.add(RunningStats())
    assert stats == before


def test_tracker_settings_levels():
    s = DenseDepthTrackerSettings()
    assert s.max_its_per_lvl == [5, 20, 50, 100, 100]
    assert len(s.step_size_min) == PYRAMID_LEVELS
    assert len(s.convergence_eps) == PYRAMID_LEVELS
    assert s.lambda_initial == [0.0] * PYRAMID_LEVELS


def test_tracker_settings_lists_are_independent():
    a = DenseDepthTrackerSettings()
    b = DenseDepthTrackerSettings()
    a.lambda_initial[0] = 9.0
    assert b.lambda_initial[0] == 0.0


def test_debug_display_cycles_forward():
    s = Settings()
    for _ in range(6):
        s.handle_key("d")
    assert s.debug_display == 0


def test_debug_display_wraps_backward():
    s = Settings()
    s.handle_key("e")
    assert s.debug_display == 5
    s.handle_key("D")
    assert s.debug_display == 0


@pytest.mark.parametrize(
    "key, attribute",
    [
        ("r", "full_reset_requested"),
        ("R", "full_reset_requested"),
        ("m", "dump_map"),
        ("p", "do_full_reconstraint_track"),
        ("L", "manual_tracking_loss_indicated"),
    ],
)
def test_request_keys_set_flags(key, attribute):
    s = Settings()
    assert getattr(s, attribute) is False
    s.handle_key(key)
    assert getattr(s, attribute) is True


def test_on_screen_info_toggles():
    s = Settings()
    s.handle_key("o")
    assert s.on_screen_info_display is False
    s.handle_key("O")
    assert s.on_screen_info_display is True


@pytest.mark.parametrize("key", ["a", "S", "x", "1"])
def test_other_keys_change_nothing(key):
    s = Settings()
    before = copy.deepcopy(s)
    s.handle_key(key)
    assert s == before