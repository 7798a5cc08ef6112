"""
Temporal reduction of an image stream.

Images are consumed one at a time so only the running sums and counts of
the output grid are held in memory, whatever the number of scenes.
"""

import logging
from typing import Dict, Iterable, Optional, Sequence

import numpy as np

from ..data.image import Grid, Image

logger = logging.getLogger(__name__)


class MeanReducer:
    """
    Running per-pixel mean over images on a common grid.

    Only valid (unmasked) pixels contribute. A pixel that never received a
    valid value is masked in the result, never reported as zero.
    """

    def __init__(self, grid: Grid, band_names: Sequence[str]):
        self.grid = grid
        self.band_names = list(band_names)
        self._sums: Dict[str, np.ndarray] = {
            name: np.zeros(grid.shape, dtype="float64") for name in self.band_names
        }
        self._counts: Dict[str, np.ndarray] = {
            name: np.zeros(grid.shape, dtype="uint32") for name in self.band_names
        }
        self.image_count = 0

    def add(self, image: Image) -> None:
        if image.grid != self.grid:
            raise ValueError(f"Image grid {image.grid!r} does not match reducer grid {self.grid!r}")
        for name in self.band_names:
            valid = image.mask(name)
            values = image.band(name)
            self._sums[name][valid] += values[valid]
            self._counts[name][valid] += 1
        self.image_count += 1

    def counts(self, name: str) -> np.ndarray:
        """Number of valid observations per pixel."""
        return self._counts[name].copy()

    def result(self, properties: Optional[dict] = None) -> Image:
        bands = {}
        masks = {}
        for name in self.band_names:
            count = self._counts[name]
            valid = count > 0
            mean = np.full(self.grid.shape, np.nan, dtype="float64")
            np.divide(self._sums[name], count, out=mean, where=valid)
            bands[name] = mean.astype("float32")
            masks[name] = valid
        props = {"image_count": self.image_count}
        props.update(properties or {})
        return Image(bands, self.grid, masks, props)


def mean_composite(
    images: Iterable[Image],
    grid: Grid,
    band_names: Sequence[str],
    properties: Optional[dict] = None,
) -> Image:
    """
    Per-pixel mean of band_names across images.

    Args:
        images: iterable of images on grid (consumed lazily)
        grid: output grid
        band_names: bands to reduce
        properties: extra metadata for the output image

    Returns:
        Image with one band per name; fully masked when images is empty.
    """
    reducer = MeanReducer(grid, band_names)
    for image in images:
        reducer.add(image)
    if reducer.image_count == 0:
        logger.warning("Mean composite over an empty collection; result is fully masked")
    else:
        logger.info(f"Mean composite over {reducer.image_count} images")
    return reducer.result(properties)
