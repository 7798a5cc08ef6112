"""
In-memory raster model.

An Image is a set of named 2-D bands on a shared Grid. Each band carries an
explicit boolean validity mask (True = valid). Images are treated as
immutable values: every operation returns a new Image and never writes into
the arrays of its input.
"""

import math
from typing import Dict, Iterable, Optional, Tuple

import numpy as np
from rasterio.crs import CRS
from rasterio.transform import Affine, array_bounds, from_origin


class Grid:
    """Pixel grid: CRS, affine transform and shape shared by all bands of an image."""

    def __init__(self, crs, transform: Affine, width: int, height: int):
        self.crs = CRS.from_user_input(crs)
        self.transform = transform
        self.width = int(width)
        self.height = int(height)

    @classmethod
    def from_bounds(cls, bounds: Tuple[float, float, float, float], scale: float, crs) -> "Grid":
        """
        Grid covering bounds (left, bottom, right, top) at scale units per pixel.

        The origin is snapped to the top-left corner; width and height are
        rounded up so the whole extent is covered.
        """
        left, bottom, right, top = bounds
        width = max(1, int(math.ceil((right - left) / scale)))
        height = max(1, int(math.ceil((top - bottom) / scale)))
        return cls(crs, from_origin(left, top, scale, scale), width, height)

    @property
    def shape(self) -> Tuple[int, int]:
        return (self.height, self.width)

    @property
    def pixel_count(self) -> int:
        return self.width * self.height

    @property
    def resolution(self) -> float:
        return abs(self.transform.a)

    @property
    def bounds(self) -> Tuple[float, float, float, float]:
        west, south, east, north = array_bounds(self.height, self.width, self.transform)
        return (west, south, east, north)

    def __eq__(self, other):
        if not isinstance(other, Grid):
            return NotImplemented
        return (
            self.crs == other.crs
            and self.transform == other.transform
            and self.shape == other.shape
        )

    def __repr__(self):
        return f"Grid(crs={self.crs.to_string()}, shape={self.shape}, resolution={self.resolution:g})"


class Image:
    """
    Multi-band raster with explicit per-band validity masks.

    Args:
        bands: band name -> 2-D array of values
        grid: pixel grid of every band
        masks: band name -> boolean array (True = valid); missing masks
               default to all-valid
        properties: scalar metadata (id, datetime, cloud cover, ...)
    """

    def __init__(
        self,
        bands: Dict[str, np.ndarray],
        grid: Grid,
        masks: Optional[Dict[str, np.ndarray]] = None,
        properties: Optional[dict] = None,
    ):
        masks = masks or {}
        self._bands = {}
        self._masks = {}
        for name, values in bands.items():
            values = np.asarray(values)
            if values.shape != grid.shape:
                raise ValueError(f"Band {name} has shape {values.shape}, grid is {grid.shape}")
            mask = masks.get(name)
            if mask is None:
                mask = np.ones(grid.shape, dtype=bool)
            mask = np.asarray(mask, dtype=bool)
            if mask.shape != grid.shape:
                raise ValueError(f"Mask of {name} has shape {mask.shape}, grid is {grid.shape}")
            self._bands[name] = values
            self._masks[name] = mask
        self.grid = grid
        self.properties = dict(properties or {})

    @classmethod
    def empty(cls, band_names: Iterable[str], grid: Grid, properties: Optional[dict] = None) -> "Image":
        """Fully masked image, used when a reduction has no input."""
        bands = {name: np.full(grid.shape, np.nan, dtype="float32") for name in band_names}
        masks = {name: np.zeros(grid.shape, dtype=bool) for name in band_names}
        return cls(bands, grid, masks, properties)

    @property
    def band_names(self):
        return list(self._bands)

    @property
    def id(self):
        return self.properties.get("id")

    def band(self, name: str) -> np.ndarray:
        return self._bands[name]

    def mask(self, name: str) -> np.ndarray:
        return self._masks[name]

    def masked(self, name: str) -> np.ma.MaskedArray:
        """Band values as a numpy masked array (masked = invalid)."""
        return np.ma.masked_array(self._bands[name], mask=~self._masks[name])

    def valid_count(self, name: str) -> int:
        return int(self._masks[name].sum())

    def select(self, *names: str) -> "Image":
        """New image holding only the named bands, in the given order."""
        missing = [n for n in names if n not in self._bands]
        if missing:
            raise KeyError(f"Band(s) {missing} not found; image has {self.band_names}")
        return Image(
            {n: self._bands[n] for n in names},
            self.grid,
            {n: self._masks[n] for n in names},
            self.properties,
        )

    def update_mask(self, mask: np.ndarray) -> "Image":
        """AND a validity mask into every band; pixels already invalid stay invalid."""
        mask = np.asarray(mask, dtype=bool)
        return Image(
            self._bands,
            self.grid,
            {n: m & mask for n, m in self._masks.items()},
            self.properties,
        )

    def add_bands(
        self,
        bands: Dict[str, np.ndarray],
        masks: Optional[Dict[str, np.ndarray]] = None,
        overwrite: bool = False,
    ) -> "Image":
        """
        New image with extra bands appended.

        With overwrite=True a band of the same name is replaced in place
        (keeping its position); otherwise a name clash raises ValueError.
        """
        clash = [n for n in bands if n in self._bands]
        if clash and not overwrite:
            raise ValueError(f"Band(s) {clash} already exist; pass overwrite=True to replace")
        masks = masks or {}
        new_bands = dict(self._bands)
        new_masks = dict(self._masks)
        for name, values in bands.items():
            new_bands[name] = values
            new_masks[name] = masks.get(name, self._masks.get(name))
        return Image(new_bands, self.grid, new_masks, self.properties)

    def clip(self, region_mask: np.ndarray) -> "Image":
        """Invalidate every pixel outside region_mask (True = inside)."""
        return self.update_mask(region_mask)

    def set(self, **properties) -> "Image":
        """New image with updated metadata."""
        merged = dict(self.properties)
        merged.update(properties)
        return Image(self._bands, self.grid, self._masks, merged)

    def __repr__(self):
        return f"Image(id={self.id!r}, bands={self.band_names}, grid={self.grid!r})"
