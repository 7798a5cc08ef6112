import numpy as np
import pytest

from suhi_st.data.image import Grid, Image


def test_grid_from_bounds_covers_extent():
    grid = Grid.from_bounds((0.0, 0.0, 100.0, 45.0), 30.0, "EPSG:32613")
    assert grid.shape == (2, 4)
    assert grid.resolution == 30.0
    left, bottom, right, top = grid.bounds
    assert left == 0.0 and top == 45.0
    assert right >= 100.0 and bottom <= 0.0


def test_grid_equality(small_grid):
    same = Grid(small_grid.crs, small_grid.transform, small_grid.width, small_grid.height)
    assert same == small_grid
    other = Grid.from_bounds(small_grid.bounds, 2.0, small_grid.crs)
    assert other != small_grid


def test_image_rejects_shape_mismatch(small_grid):
    with pytest.raises(ValueError):
        Image({"B": np.zeros((2, 2))}, small_grid)
    with pytest.raises(ValueError):
        Image({"B": np.zeros(small_grid.shape)}, small_grid, {"B": np.ones((2, 2), dtype=bool)})


def test_default_mask_is_all_valid(small_grid):
    image = Image({"B": np.zeros(small_grid.shape)}, small_grid)
    assert image.valid_count("B") == small_grid.pixel_count


def test_empty_image_is_fully_masked(small_grid):
    image = Image.empty(["ST_B10"], small_grid)
    assert image.band_names == ["ST_B10"]
    assert image.valid_count("ST_B10") == 0
    assert np.isnan(image.band("ST_B10")).all()


class TestSelect:
    def test_select_is_idempotent(self, st_image):
        """Selecting ST_B10 from a single-band ST_B10 image yields an identical image."""
        again = st_image.select("ST_B10")
        assert again.band_names == st_image.band_names
        np.testing.assert_array_equal(again.band("ST_B10"), st_image.band("ST_B10"))
        np.testing.assert_array_equal(again.mask("ST_B10"), st_image.mask("ST_B10"))
        assert again.grid == st_image.grid
        assert again.properties == st_image.properties

    def test_select_orders_bands(self, small_grid):
        image = Image({"A": np.zeros(small_grid.shape), "B": np.ones(small_grid.shape)}, small_grid)
        assert image.select("B", "A").band_names == ["B", "A"]

    def test_select_missing_band(self, st_image):
        with pytest.raises(KeyError):
            st_image.select("QA_PIXEL")


class TestMasks:
    def test_update_mask_is_conjunctive(self, st_image):
        new = np.ones(st_image.grid.shape, dtype=bool)
        new[2, 3] = False
        out = st_image.update_mask(new)
        assert not out.mask("ST_B10")[0, 0]
        assert not out.mask("ST_B10")[2, 3]
        assert out.valid_count("ST_B10") == 10

    def test_update_mask_leaves_input_untouched(self, st_image):
        st_image.update_mask(np.zeros(st_image.grid.shape, dtype=bool))
        assert st_image.valid_count("ST_B10") == 11

    def test_masked_array(self, st_image):
        arr = st_image.masked("ST_B10")
        assert arr.mask[0, 0]
        assert arr.mean() == pytest.approx(np.arange(1, 12).mean())


class TestAddBands:
    def test_name_clash_requires_overwrite(self, st_image):
        with pytest.raises(ValueError):
            st_image.add_bands({"ST_B10": np.zeros(st_image.grid.shape)})

    def test_overwrite_keeps_position_and_mask(self, small_grid):
        image = Image(
            {"ST_B10": np.zeros(small_grid.shape), "QA_PIXEL": np.zeros(small_grid.shape)},
            small_grid,
            {"ST_B10": np.eye(3, 4, dtype=bool)},
        )
        out = image.add_bands({"ST_B10": np.ones(small_grid.shape)}, overwrite=True)
        assert out.band_names == ["ST_B10", "QA_PIXEL"]
        np.testing.assert_array_equal(out.mask("ST_B10"), np.eye(3, 4, dtype=bool))
        assert (out.band("ST_B10") == 1).all()
        assert (image.band("ST_B10") == 0).all()

    def test_new_band_appended(self, st_image):
        out = st_image.add_bands({"LST": np.zeros(st_image.grid.shape)})
        assert out.band_names == ["ST_B10", "LST"]
        assert out.valid_count("LST") == st_image.grid.pixel_count


def test_set_properties(st_image):
    out = st_image.set(image_count=3)
    assert out.properties["image_count"] == 3
    assert "image_count" not in st_image.properties
    assert out.id == "st"
