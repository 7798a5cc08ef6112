from .map_display import MapDisplay, VisParams, enable_tile_cache
from .plots import plot_histogram
