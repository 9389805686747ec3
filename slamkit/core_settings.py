"""Tunable parameters, constants and statistics counters of the SLAM core."""

from __future__ import annotations

from dataclasses import dataclass, field, fields

# Validity handling
VALIDITY_COUNTER_MAX = 5.0
VALIDITY_COUNTER_MAX_VARIABLE = 250.0
VALIDITY_COUNTER_INC = 5
VALIDITY_COUNTER_DEC = 5
VALIDITY_COUNTER_INITIAL_OBSERVE = 5
VAL_SUM_MIN_FOR_CREATE = 30
VAL_SUM_MIN_FOR_KEEP = 24
VAL_SUM_MIN_FOR_UNBLACKLIST = 100
MIN_BLACKLIST = -1

# Depth variance handling
SUCC_VAR_INC_FAC = 1.01
FAIL_VAR_INC_FAC = 1.1
MAX_VAR = 0.5 * 0.5
VAR_GT_INIT_INITIAL = 0.01 * 0.01
VAR_RANDOM_INIT_INITIAL = 0.5 * MAX_VAR

USE_ESM_TRACKING = True

MAPPING_THREADS = 4
RELOCALIZE_THREADS = 6

SE3TRACKING_MIN_LEVEL = 1
SE3TRACKING_MAX_LEVEL = 5
SIM3TRACKING_MIN_LEVEL = 1
SIM3TRACKING_MAX_LEVEL = 5
QUICK_KF_CHECK_LVL = 4
PYRAMID_LEVELS = min(SE3TRACKING_MAX_LEVEL, SIM3TRACKING_MAX_LEVEL)

# Stereo and gradient calculation
MIN_DEPTH = 0.05
MAX_EPL_LENGTH_CROP = 30.0
MIN_EPL_LENGTH_CROP = 3.0
GRADIENT_SAMPLE_DIST = 1.0
SAMPLE_POINT_TO_BORDER = 7
MAX_ERROR_STEREO = 1300.0
MIN_DISTANCE_ERROR_STEREO = 1.5
STEREO_EPL_VAR_FAC = 2.0

# Smoothing and regularization
DIFF_FAC_SMOOTHING = 1.0
DIFF_FAC_OBSERVE = 1.0
DIFF_FAC_PROP_MERGE = 1.0
DIFF_FAC_INCONSISTENT = 1.0

# Initial stereo pixel selection
MIN_EPL_GRAD_SQUARED = 2.0 * 2.0
MIN_EPL_LENGTH_SQUARED = 1.0 * 1.0
MIN_EPL_ANGLE_SQUARED = 0.3 * 0.3

# Re-localization and keyframe re-activation
MAX_DIFF_CONSTANT = 40.0 * 40.0
MAX_DIFF_GRAD_MULT = 0.5 * 0.5
MIN_GOODPERGOODBAD_PIXEL = 0.5
MIN_GOODPERALL_PIXEL = 0.04
MIN_GOODPERALL_PIXEL_ABSMIN = 0.01
INITIALIZATION_PHASE_COUNT = 5
MIN_NUM_MAPPED = 5

DIVISION_EPS = 1e-10

_DEBUG_DISPLAY_MODES = 6


@dataclass
class RunningStats:
    """Counters gathered while mapping; summable across worker threads."""

    num_stereo_comparisons: int = 0
    num_stereo_calls: int = 0
    num_pixelInterpolations: int = 0

    num_stereo_rescale_oob: int = 0
    num_stereo_inf_oob: int = 0
    num_stereo_near_oob: int = 0
    num_stereo_invalid_unclear_winner: int = 0
    num_stereo_invalid_atEnd: int = 0
    num_stereo_invalid_inexistantCrossing: int = 0
    num_stereo_invalid_twoCrossing: int = 0
    num_stereo_invalid_noCrossing: int = 0
    num_stereo_invalid_bigErr: int = 0
    num_stereo_interpPre: int = 0
    num_stereo_interpPost: int = 0
    num_stereo_interpNone: int = 0
    num_stereo_negative: int = 0
    num_stereo_successfull: int = 0

    num_observe_created: int = 0
    num_observe_blacklisted: int = 0
    num_observe_updated: int = 0
    num_observe_skipped_small_epl: int = 0
    num_observe_skipped_small_epl_grad: int = 0
    num_observe_skipped_small_epl_angle: int = 0
    num_observe_transit_finalizing: int = 0
    num_observe_transit_idle_oob: int = 0
    num_observe_transit_idle_scale_angle: int = 0
    num_observe_trans_idle_exhausted: int = 0
    num_observe_inconsistent_finalizing: int = 0
    num_observe_inconsistent: int = 0
    num_observe_notfound_finalizing2: int = 0
    num_observe_notfound_finalizing: int = 0
    num_observe_notfound: int = 0
    num_observe_skip_fail: int = 0
    num_observe_skip_oob: int = 0
    num_observe_good: int = 0
    num_observe_good_finalizing: int = 0
    num_observe_state_finalizing: int = 0
    num_observe_state_initializing: int = 0

    num_observe_skip_alreadyGood: int = 0
    num_observe_addSkip: int = 0

    num_observe_no_grad_removed: int = 0
    num_observe_no_grad_left: int = 0
    num_observe_update_attempted: int = 0
    num_observe_create_attempted: int = 0
    num_observe_updated_ignored: int = 0
    num_observe_spread_unsuccessfull: int = 0

    num_prop_removed_out_of_bounds: int = 0
    num_prop_removed_colorDiff: int = 0
    num_prop_removed_validity: int = 0
    num_prop_grad_decreased: int = 0
    num_prop_color_decreased: int = 0
    num_prop_attempts: int = 0
    num_prop_occluded: int = 0
    num_prop_created: int = 0
    num_prop_merged: int = 0

    num_reg_created: int = 0
    num_reg_smeared: int = 0
    num_reg_total: int = 0
    num_reg_deleted_secondary: int = 0
    num_reg_deleted_occluded: int = 0
    num_reg_blacklisted: int = 0
    num_reg_setBlacklisted: int = 0

    def set_zero(self) -> None:
        """Reset every counter to zero."""
        for f in fields(self):
            setattr(self, f.name, 0)

    def add(self, other: RunningStats) -> None:
        """Add every counter of ``other`` into this one."""
        for f in fields(self):
            setattr(self, f.name, getattr(self, f.name) + getattr(other, f.name))


def _per_level(value):
    return field(default_factory=lambda: [value] * PYRAMID_LEVELS)


@dataclass
class DenseDepthTrackerSettings:
    """Default optimisation parameters for the dense trackers, per pyramid level."""

    lambda_success_fac: float = 0.5
    lambda_fail_fac: float = 2.0
    lambda_initial: list[float] = _per_level(0.0)
    step_size_min: list[float] = _per_level(1e-8)
    convergence_eps: list[float] = _per_level(0.999)
    max_its_per_lvl: list[int] = field(
        default_factory=lambda: [5, 20, 50, 100, 100, 100][:PYRAMID_LEVELS]
    )

    lambda_initial_test_track: float = 0.0
    step_size_min_test_track: float = 1e-3
    convergence_eps_test_track: float = 0.98
    max_its_test_track: float = 5

    huber_d: float = 3.0
    var_weight: float = 1.0


@dataclass
class Settings:
    """Run-time switches of the SLAM core, some of them driven by key presses."""

    auto_run: bool = True
    auto_run_within_frame: bool = True
    debug_display: int = 0
    on_screen_info_display: bool = True
    display_depth_map: bool = True
    dump_map: bool = False
    do_full_reconstraint_track: bool = False

    print_propagation_statistics: bool = False
    print_fill_holes_statistics: bool = False
    print_observe_statistics: bool = False
    print_observe_purge_statistics: bool = False
    print_regularize_statistics: bool = False
    print_line_stereo_statistics: bool = False
    print_line_stereo_fails: bool = False

    print_tracking_iteration_info: bool = False
    print_frame_build_debug_info: bool = False
    print_memory_debug_info: bool = False
    print_keyframe_selection_info: bool = False
    print_constraint_search_info: bool = False
    print_optimization_info: bool = False
    print_relocalization_info: bool = False
    print_threading_info: bool = False
    print_mapping_timing: bool = False
    print_overall_timing: bool = False

    plot_tracking_iteration_info: bool = False
    plot_sim3_tracking_iteration_info: bool = False
    plot_stereo_images: bool = False
    plot_tracking: bool = False

    free_debug_param1: float = 1.0
    free_debug_param2: float = 1.0
    free_debug_param3: float = 1.0
    free_debug_param4: float = 1.0
    free_debug_param5: float = 1.0

    kf_dist_weight: float = 4.0
    kf_usage_weight: float = 3.0

    min_use_grad: float = 5.0
    camera_pixel_noise2: float = 4.0 * 4.0
    depth_smoothing_factor: float = 1.0

    allow_negative_idepths: bool = True
    use_motion_model: bool = False
    use_subpixel_stereo: bool = True
    multi_threading: bool = True
    use_affine_lightning_estimation: bool = True

    use_fab_map: bool = False
    do_slam: bool = True
    do_kf_reactivation: bool = True
    do_mapping: bool = True

    max_loop_closure_candidates: int = 10
    max_optimization_iterations: int = 100
    propagate_keyframe_depth_count: int = 0
    loopclosure_strictness: float = 1.5
    relocalization_th: float = 0.7

    save_keyframes: bool = False
    save_all_tracked: bool = False
    save_loop_closure_images: bool = False
    save_all_tracking_stages: bool = False
    save_all_tracking_stages_internal: bool = False

    continuous_pc_output: bool = False

    full_reset_requested: bool = False
    manual_tracking_loss_indicated: bool = False

    package_path: str = ""

    running_stats: RunningStats = field(default_factory=RunningStats)

    def handle_key(self, key: str) -> None:
        """React to a key press from the debug windows."""
        k = key.lower()
        if k == "d":
            self.debug_display = (self.debug_display + 1) % _DEBUG_DISPLAY_MODES
            print(f"debugDisplay is now: {self.debug_display}")
        elif k == "e":
            self.debug_display = (
                self.debug_display - 1 + _DEBUG_DISPLAY_MODES
            ) % _DEBUG_DISPLAY_MODES
            print(f"debugDisplay is now: {self.debug_display}")
        elif k == "o":
            self.on_screen_info_display = not self.on_screen_info_display
        elif k == "r":
            print("requested full reset!")
            self.full_reset_requested = True
        elif k == "m":
            print("Dumping Map!")
            self.dump_map = True
        elif k == "p":
            print("Tracking all Map-Frames again!")
            self.do_full_reconstraint_track = True
        elif k == "l":
            print("Manual Tracking Loss Indicated!")
            self.manual_tracking_loss_indicated = True
        # 'a' and 's' (auto-run toggles) are deliberately ignored.