"""
Region statistics over a single-band raster.

Histogram of pixel values (for picking visualization limits), summary
statistics, and surface urban heat island (SUHI) intensity: the mean
urban temperature minus the mean rural temperature.
"""

from collections import namedtuple
from typing import Optional

import numpy as np

from ..data.image import Image
from ..exceptions import PixelLimitError
from .aoi import AreaOfInterest

Histogram = namedtuple('Histogram', ['band', 'bucket_edges', 'counts', 'total', 'scale'])


def _region_values(image: Image, band: str, region: Optional[AreaOfInterest], stride: int = 1):
    """Valid values of band inside region, sampled every stride pixels, plus the region pixel count."""
    inside = region.mask(image.grid) if region is not None else np.ones(image.grid.shape, dtype=bool)
    inside = inside[::stride, ::stride]
    valid = image.mask(band)[::stride, ::stride] & inside
    values = image.band(band)[::stride, ::stride][valid]
    return values.astype("float64"), int(inside.sum())


def compute_histogram(
    image: Image,
    band: str,
    region: Optional[AreaOfInterest] = None,
    scale: Optional[float] = None,
    max_pixels: float = 1e9,
    max_buckets: int = 256
) -> Histogram:
    """
    Histogram of the valid pixels of band inside region.

    Args:
        image: source raster
        band: band name
        region: area to summarise (whole grid when None)
        scale: sampling distance in grid units; coarser than the grid
               resolution samples every n-th pixel
        max_pixels: pixel budget for the region at the sampling scale
        max_buckets: upper bound on the number of buckets

    Returns:
        Histogram; empty edges/counts when no pixel is valid.

    Raises:
        PixelLimitError: the region holds more than max_pixels pixels.
    """
    stride = 1
    if scale:
        stride = max(1, int(round(scale / image.grid.resolution)))

    values, region_pixels = _region_values(image, band, region, stride)
    if region_pixels > max_pixels:
        raise PixelLimitError(region_pixels, max_pixels, what="histogram region")

    used_scale = image.grid.resolution * stride
    if values.size == 0:
        return Histogram(band, np.array([]), np.array([], dtype=int), 0, used_scale)

    lo, hi = float(values.min()), float(values.max())
    if lo == hi:
        edges = np.array([lo, lo + 1.0])
        counts = np.array([values.size])
    else:
        n_buckets = int(min(max_buckets, max(1, np.unique(values).size)))
        counts, edges = np.histogram(values, bins=n_buckets, range=(lo, hi))
    return Histogram(band, edges, counts, int(values.size), used_scale)


def region_statistics(
    image: Image,
    band: str,
    region: Optional[AreaOfInterest] = None,
    percentiles: list = [10, 25, 50, 75, 90]
) -> dict:
    """
    Computes statistics for valid pixels inside region.
    """
    values, _ = _region_values(image, band, region)

    if values.size == 0:
        return {
            "mean": None, "std": None, "min": None, "max": None,
            "median": None, "count": 0, "percentiles": {}
        }

    stats = {
        "mean": float(np.mean(values)),
        "std": float(np.std(values)),
        "min": float(np.min(values)),
        "max": float(np.max(values)),
        "median": float(np.median(values)),
        "count": int(values.size),
        "percentiles": {p: float(np.percentile(values, p)) for p in percentiles}
    }
    return stats


def suhi_intensity(
    image: Image,
    band: str,
    urban: AreaOfInterest,
    rural: AreaOfInterest
) -> Optional[float]:
    """
    Surface urban heat island intensity: mean(urban) - mean(rural).

    Returns None when either zone has no valid pixel.
    """
    urban_mean = region_statistics(image, band, urban)["mean"]
    rural_mean = region_statistics(image, band, rural)["mean"]
    if urban_mean is None or rural_mean is None:
        return None
    return urban_mean - rural_mean
