import numpy as np
import pytest

from suhi_st.data.image import Grid, Image
from suhi_st.processing.composite import MeanReducer, mean_composite


def _image(grid, value, invalid=()):
    values = np.full(grid.shape, value, dtype="float32")
    mask = np.ones(grid.shape, dtype=bool)
    for row, col in invalid:
        mask[row, col] = False
    return Image({"ST_B10": values}, grid, {"ST_B10": mask})


def test_mean_ignores_masked_pixels(small_grid):
    images = [
        _image(small_grid, 10.0, invalid=[(0, 2)]),
        _image(small_grid, 20.0, invalid=[(0, 1), (0, 2)]),
        _image(small_grid, 40.0, invalid=[(0, 2)]),
    ]
    out = mean_composite(images, small_grid, ["ST_B10"])
    values = out.band("ST_B10")
    mask = out.mask("ST_B10")

    # All three valid
    assert values[0, 0] == pytest.approx(70.0 / 3)
    # Two of three valid: (10 + 40) / 2, not (10 + 0 + 40) / 3
    assert values[0, 1] == pytest.approx(25.0)
    # None valid: masked, never zero
    assert not mask[0, 2]
    assert np.isnan(values[0, 2])
    assert mask.sum() == small_grid.pixel_count - 1


def test_mean_of_single_image_is_identity(small_grid, st_image):
    out = mean_composite([st_image], small_grid, ["ST_B10"])
    np.testing.assert_array_equal(out.mask("ST_B10"), st_image.mask("ST_B10"))
    valid = st_image.mask("ST_B10")
    np.testing.assert_allclose(out.band("ST_B10")[valid], st_image.band("ST_B10")[valid])


def test_mean_of_nothing_is_fully_masked(small_grid):
    out = mean_composite(iter([]), small_grid, ["ST_B10"], properties={"source": "none"})
    assert out.valid_count("ST_B10") == 0
    assert out.properties == {"image_count": 0, "source": "none"}


def test_mean_consumes_generators_lazily(small_grid):
    seen = []

    def stream():
        for v in (1.0, 3.0):
            seen.append(v)
            yield _image(small_grid, v)

    out = mean_composite(stream(), small_grid, ["ST_B10"])
    assert seen == [1.0, 3.0]
    assert np.allclose(out.band("ST_B10"), 2.0)


def test_reducer_counts(small_grid):
    reducer = MeanReducer(small_grid, ["ST_B10"])
    reducer.add(_image(small_grid, 1.0, invalid=[(1, 1)]))
    reducer.add(_image(small_grid, 1.0))
    counts = reducer.counts("ST_B10")
    assert counts[1, 1] == 1
    assert counts[0, 0] == 2
    assert reducer.image_count == 2


def test_reducer_rejects_other_grid(small_grid):
    other = Grid.from_bounds(small_grid.bounds, 2.0, small_grid.crs)
    reducer = MeanReducer(small_grid, ["ST_B10"])
    with pytest.raises(ValueError):
        reducer.add(_image(other, 1.0))
