from .aoi import AreaOfInterest, utm_crs_for
from .statistics import (
    Histogram,
    compute_histogram,
    region_statistics,
    suhi_intensity
)
