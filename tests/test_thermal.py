import numpy as np
import pytest

from suhi_st.data.image import Image
from suhi_st.processing.thermal import (
    apply_scale_factors,
    cloud_mask,
    dn_to_fahrenheit,
    dn_to_kelvin,
    kelvin_to_celsius,
)


def _qa_image(grid, qa, st_mask=None):
    st = np.full(grid.shape, 40000, dtype="float32")
    masks = {"ST_B10": st_mask} if st_mask is not None else None
    return Image({"ST_B10": st, "QA_PIXEL": np.asarray(qa, dtype="float32")}, grid, masks)


def test_dn_to_fahrenheit_formula():
    """Conversion follows ((d * 0.00341802 + 149.0 - 273.15) * 1.8) + 32."""
    d = 20000
    expected = ((d * 0.00341802 + 149.0 - 273.15) * 1.8) + 32
    assert dn_to_fahrenheit(d) == pytest.approx(expected, abs=1e-9)
    assert dn_to_kelvin(d) == pytest.approx(217.3604)
    assert kelvin_to_celsius(dn_to_kelvin(d)) == pytest.approx(-55.7896)
    assert dn_to_fahrenheit(d) == pytest.approx(-68.42128)


def test_dn_to_fahrenheit_vectorized():
    dn = np.array([0, 29362, 47375])
    f = dn_to_fahrenheit(dn)
    assert f.shape == (3,)
    # 0 DN is the 149 K floor of the product
    assert f[0] == pytest.approx((149.0 - 273.15) * 1.8 + 32)
    assert f[1] == pytest.approx(-10.82, abs=0.01)
    assert 99 < f[2] < 101


def test_cloud_mask_invalidates_cloud_and_shadow_bits(small_grid):
    qa = np.array([
        [0, 8, 16, 24],
        [1, 2, 4, 32],
        [21824, 21832, 21840, 64],
    ])
    out = cloud_mask(_qa_image(small_grid, qa))
    expected = np.array([
        [True, False, False, False],
        [True, True, True, True],
        [True, False, False, True],
    ])
    np.testing.assert_array_equal(out.mask("ST_B10"), expected)
    np.testing.assert_array_equal(out.mask("QA_PIXEL"), expected)


def test_cloud_mask_keeps_existing_invalid_pixels(small_grid):
    st_mask = np.ones(small_grid.shape, dtype=bool)
    st_mask[1, 1] = False
    out = cloud_mask(_qa_image(small_grid, np.zeros(small_grid.shape), st_mask))
    assert not out.mask("ST_B10")[1, 1]
    assert out.valid_count("ST_B10") == 11


def test_cloud_mask_is_idempotent(small_grid):
    qa = np.array([[0, 8, 0, 16]] * 3)
    once = cloud_mask(_qa_image(small_grid, qa))
    twice = cloud_mask(once)
    np.testing.assert_array_equal(once.mask("ST_B10"), twice.mask("ST_B10"))


def test_cloud_mask_does_not_modify_input(small_grid):
    image = _qa_image(small_grid, np.full(small_grid.shape, 8))
    cloud_mask(image)
    assert image.mask("ST_B10").all()


class TestApplyScaleFactors:
    def test_replaces_band_in_place(self, small_grid):
        image = _qa_image(small_grid, np.zeros(small_grid.shape))
        out = apply_scale_factors(image)
        assert out.band_names == ["ST_B10", "QA_PIXEL"]
        np.testing.assert_allclose(out.band("ST_B10"), dn_to_fahrenheit(40000.0), rtol=1e-6)
        np.testing.assert_array_equal(out.band("QA_PIXEL"), image.band("QA_PIXEL"))
        assert out.band("ST_B10").dtype == np.float32

    def test_mask_survives_conversion(self, small_grid):
        qa = np.array([[8, 0, 0, 0]] * 3)
        masked = cloud_mask(_qa_image(small_grid, qa))
        out = apply_scale_factors(masked)
        np.testing.assert_array_equal(out.mask("ST_B10"), masked.mask("ST_B10"))
        assert not out.mask("ST_B10")[:, 0].any()

    def test_input_untouched(self, small_grid):
        image = _qa_image(small_grid, np.zeros(small_grid.shape))
        apply_scale_factors(image)
        assert (image.band("ST_B10") == 40000).all()

    def test_missing_band_raises(self, small_grid):
        image = Image({"QA_PIXEL": np.zeros(small_grid.shape)}, small_grid)
        with pytest.raises(KeyError):
            apply_scale_factors(image)
