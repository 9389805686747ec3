import numpy as np
import pytest

from slamkit.global_funcs import (
    depth_rainbow_plot,
    fill_image,
    get_interpolated_element,
    get_interpolated_vector,
    gray_pixel,
    print_message_on_image,
    se3_from_cv,
    set_pixel,
    var_red_green_plot,
)
from slamkit.sophus import quaternion_to_matrix

BACKGROUND = (255, 170, 168)


def _plane(height=6, width=7):
    ys, xs = np.mgrid[0:height, 0:width]
    return (2.0 * xs + 3.0 * ys).astype(float)


def test_se3_from_cv_inverts_rotation():
    rot = quaternion_to_matrix([0.2, -0.3, 0.1, 0.9])
    pose = se3_from_cv(rot, [1.0, 2.0, 3.0])
    np.testing.assert_allclose(pose.rotation_matrix(), rot.T, atol=1e-12)
    np.testing.assert_allclose(pose.translation, [1.0, 2.0, 3.0])


def test_interpolation_at_integer_point_returns_value():
    mat = _plane()
    assert get_interpolated_element(mat, 3.0, 2.0) == mat[2, 3]


@pytest.mark.parametrize("x,y", [(1.25, 2.5), (0.5, 0.5), (4.9, 3.1)])
def test_interpolation_reproduces_linear_function(x, y):
    assert get_interpolated_element(_plane(), x, y) == pytest.approx(2 * x + 3 * y)


@pytest.mark.parametrize("channels", [2, 3, 4])
def test_vector_interpolation_matches_per_channel(channels):
    base = _plane()
    mat = np.stack([base * (c + 1) - c for c in range(4)], axis=-1)
    out = get_interpolated_vector(mat, 2.3, 1.7, channels)
    assert out.shape == (channels,)
    expected = [get_interpolated_element(mat[:, :, c], 2.3, 1.7) for c in range(channels)]
    np.testing.assert_allclose(out, expected)


def test_vector_interpolation_rejects_bad_channel_count():
    with pytest.raises(ValueError):
        get_interpolated_vector(np.zeros((4, 4, 4)), 1.0, 1.0, 5)


def test_fill_image():
    image = np.zeros((3, 4, 3), dtype=np.uint8)
    fill_image(image, BACKGROUND)
    assert (image == np.array(BACKGROUND, dtype=np.uint8)).all()


def test_set_pixel_paints_block_and_clips():
    image = np.zeros((5, 5, 3), dtype=np.uint8)
    set_pixel(image, (9, 8, 7), 2, 0, 2)
    assert (image[0:2, 4] == (9, 8, 7)).all()
    assert (image[2:, :] == 0).all()
    assert (image[:, :4] == 0).all()


def test_gray_pixel_clamps_and_truncates():
    assert gray_pixel(-5) == (0, 0, 0)
    assert gray_pixel(300) == (255, 255, 255)
    assert gray_pixel(12.7) == (12, 12, 12)


def test_depth_rainbow_plot_colours_valid_pixels_only():
    idepth = np.array([[0.0, -1.0], [np.nan, 0.5]])
    var = np.array([[0.1, 0.1, ], [0.1, -1.0]])
    res = depth_rainbow_plot(idepth, var)
    assert res.shape == (2, 2, 3)
    assert tuple(res[0, 0]) == (255, 0, 0)
    assert tuple(res[0, 1]) == BACKGROUND
    assert tuple(res[1, 0]) == BACKGROUND
    assert tuple(res[1, 1]) == BACKGROUND


def test_depth_rainbow_plot_uses_gray_background():
    gray = np.array([[10.0, 20.0], [30.0, 40.0]])
    idepth = -np.ones((2, 2))
    res = depth_rainbow_plot(idepth, np.ones((2, 2)), gray)
    for y in range(2):
        for x in range(2):
            assert tuple(res[y, x]) == (gray[y, x],) * 3


def test_depth_rainbow_plot_shape_mismatch():
    with pytest.raises(ValueError):
        depth_rainbow_plot(np.zeros((2, 2)), np.zeros((3, 2)))


def test_var_red_green_plot_small_variance_is_green():
    var = np.full((8, 8), 1e-8)
    res = var_red_green_plot(var)
    assert (res[:, :, 0] == 0).all()
    assert (res[:, :, 1] == 255).all()
    assert (res[:, :, 2] == 0).all()


def test_var_red_green_plot_invalid_keeps_background():
    var = -np.ones((8, 8))
    res = var_red_green_plot(var)
    assert (res == np.array(BACKGROUND, dtype=np.uint8)).all()


def test_var_red_green_plot_larger_variance_is_redder():
    var = np.full((8, 8), 1e-6)
    var[4, 4] = 1e-3
    res = var_red_green_plot(var)
    assert int(res[4, 4, 2]) > int(res[0, 0, 2])
    assert int(res[4, 4, 1]) < int(res[0, 0, 1])


def test_print_message_darkens_bottom_band():
    image = np.full((60, 200, 3), 200, dtype=np.uint8)
    print_message_on_image(image, "a", "b")
    assert (image[:29] == 200).all()
    assert (image[-1, -1] == 100).all()
    assert (image[30:, 150:] == 100).all()