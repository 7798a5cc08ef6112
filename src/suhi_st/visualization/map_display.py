"""
Map display surface.

Rasters are warped to Web Mercator and drawn with a palette colormap over
contextily basemap tiles. The display is built up the way an interactive
map is (basemap, center and zoom, layers) and only drawn on render().
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple

import contextily as ctx
import matplotlib.pyplot as plt
import numpy as np
import requests_cache
from matplotlib.colors import LinearSegmentedColormap
from pyproj import Transformer
from rasterio.enums import Resampling
from rasterio.transform import Affine, array_bounds
from rasterio.warp import calculate_default_transform, reproject

from ..data.image import Image

logger = logging.getLogger(__name__)

WEB_MERCATOR = "EPSG:3857"

# Basemap name -> tile providers, drawn bottom to top
BASEMAP_PROVIDERS = {
    "SATELLITE": [ctx.providers.Esri.WorldImagery],
    "HYBRID": [ctx.providers.Esri.WorldImagery, ctx.providers.CartoDB.PositronOnlyLabels],
    "ROADMAP": [ctx.providers.OpenStreetMap.Mapnik],
    "TERRAIN": [ctx.providers.OpenTopoMap],
}

MIN_ZOOM = 0
MAX_ZOOM = 24
MAX_LATITUDE = 85.0

# Layers larger than this are decimated before drawing
MAX_RENDER_PIXELS = 4_000_000


def enable_tile_cache(cache_dir: str = ".cache", expire_after: int = 86400) -> Path:
    """Cache basemap tile requests in a local sqlite file."""
    path = Path(cache_dir)
    path.mkdir(parents=True, exist_ok=True)
    requests_cache.install_cache(str(path / "contextily_cache"), backend="sqlite", expire_after=expire_after)
    logger.info(f"Basemap tile cache enabled: {path / 'contextily_cache.sqlite'}")
    return path / "contextily_cache.sqlite"


@dataclass
class VisParams:
    """How a layer is coloured: value range and palette, first band unless given."""

    min: float
    max: float
    palette: List[str] = field(default_factory=lambda: ["blue", "white", "red"])
    band: Optional[str] = None

    def __post_init__(self):
        if self.min >= self.max:
            raise ValueError(f"Visualization min ({self.min}) must be below max ({self.max})")
        if not self.palette:
            raise ValueError("Visualization palette is empty")

    def colormap(self, name: str = "palette") -> LinearSegmentedColormap:
        if len(self.palette) == 1:
            return LinearSegmentedColormap.from_list(name, [self.palette[0], self.palette[0]])
        return LinearSegmentedColormap.from_list(name, self.palette)


@dataclass
class MapLayer:
    image: Image
    vis: VisParams
    name: str
    shown: bool = True

    @property
    def band(self) -> str:
        if self.vis.band is not None:
            return self.vis.band
        if not self.image.band_names:
            raise ValueError(f"Layer {self.name} has no bands")
        return self.image.band_names[0]


def to_web_mercator(
    image: Image,
    band: str,
    max_pixels: int = MAX_RENDER_PIXELS
) -> Tuple[np.ma.MaskedArray, Tuple[float, float, float, float]]:
    """
    Warp one band to Web Mercator for drawing.

    Returns:
        (masked array, extent) where extent is (xmin, xmax, ymin, ymax) as
        expected by imshow.
    """
    grid = image.grid
    src = np.where(image.mask(band), image.band(band), np.nan).astype("float32")

    dst_transform, width, height = calculate_default_transform(
        grid.crs, WEB_MERCATOR, grid.width, grid.height, *grid.bounds
    )
    if width * height > max_pixels:
        step = math.sqrt(width * height / max_pixels)
        width = max(1, int(width / step))
        height = max(1, int(height / step))
        dst_transform = dst_transform * Affine.scale(step)

    dst = np.full((height, width), np.nan, dtype="float32")
    reproject(
        source=src,
        destination=dst,
        src_transform=grid.transform,
        src_crs=grid.crs,
        dst_transform=dst_transform,
        dst_crs=WEB_MERCATOR,
        src_nodata=np.nan,
        dst_nodata=np.nan,
        resampling=Resampling.nearest,
    )
    west, south, east, north = array_bounds(height, width, dst_transform)
    return np.ma.masked_invalid(dst), (west, east, south, north)


class MapDisplay:
    """
    Map with a basemap, a view (center and zoom) and raster layers.

    Attributes:
        basemap: one of BASEMAP_PROVIDERS
        center: (lon, lat) of the view, None until set_center()
        zoom: view zoom level
        layers: layers in drawing order
    """

    def __init__(self, basemap: str = "SATELLITE", figsize=(12, 10)):
        self.basemap = "SATELLITE"
        self.set_options(basemap)
        self.center: Optional[Tuple[float, float]] = None
        self.zoom = 9
        self.layers: List[MapLayer] = []
        self.figsize = figsize
        self.fig: Optional[plt.Figure] = None
        self.ax: Optional[plt.Axes] = None
        self._to_mercator = Transformer.from_crs("EPSG:4326", WEB_MERCATOR, always_xy=True)

    def set_options(self, basemap: str) -> None:
        key = basemap.upper()
        if key not in BASEMAP_PROVIDERS:
            raise ValueError(f"Unknown basemap {basemap!r}; expected one of {list(BASEMAP_PROVIDERS)}")
        self.basemap = key

    def set_center(self, lon: float, lat: float, zoom: Optional[int] = None) -> None:
        if not -MAX_LATITUDE <= lat <= MAX_LATITUDE:
            raise ValueError(f"Latitude {lat} outside [-{MAX_LATITUDE}, {MAX_LATITUDE}]")
        if not -180.0 <= lon <= 180.0:
            raise ValueError(f"Longitude {lon} outside [-180, 180]")
        if zoom is not None:
            if int(zoom) != zoom or not MIN_ZOOM <= zoom <= MAX_ZOOM:
                raise ValueError(f"Zoom must be an integer in [{MIN_ZOOM}, {MAX_ZOOM}], got {zoom}")
            self.zoom = int(zoom)
        self.center = (lon, lat)

    def add_layer(self, image: Image, vis: VisParams, name: str, shown: bool = True) -> MapLayer:
        layer = MapLayer(image, vis, name, shown)
        # Fail on a bad band name now rather than at render time
        if layer.band not in image.band_names:
            raise KeyError(f"Band {layer.band} not in layer image bands {image.band_names}")
        self.layers.append(layer)
        logger.debug(f"Added layer {name} (band {layer.band}, shown={shown})")
        return layer

    def _calculate_extent(self) -> Tuple[float, float, float, float]:
        """
        View extent in Web Mercator around the center.

        At zoom 10 the view is roughly 100 km across; each zoom level halves
        or doubles it.
        """
        center_x, center_y = self._to_mercator.transform(*self.center)
        delta = 50000 * 2 ** (10 - self.zoom)
        return (center_x - delta, center_x + delta, center_y - delta, center_y + delta)

    def render(self, title: Optional[str] = None) -> Tuple[plt.Figure, plt.Axes]:
        """Draw basemap and shown layers into a new figure."""
        self.fig, self.ax = plt.subplots(figsize=self.figsize)

        for layer in self.layers:
            if not layer.shown:
                continue
            values, extent = to_web_mercator(layer.image, layer.band)
            im = self.ax.imshow(
                values,
                extent=extent,
                cmap=layer.vis.colormap(layer.name),
                vmin=layer.vis.min,
                vmax=layer.vis.max,
                alpha=0.8,
                origin="upper",
                zorder=1,
            )
            cbar = plt.colorbar(im, ax=self.ax, shrink=0.8, pad=0.02)
            cbar.set_label(layer.name, fontsize=11)

        if self.center is not None:
            xmin, xmax, ymin, ymax = self._calculate_extent()
            self.ax.set_xlim(xmin, xmax)
            self.ax.set_ylim(ymin, ymax)

        self._add_basemap()
        self.ax.set_aspect("equal")
        if title:
            self.ax.set_title(title, fontsize=14, fontweight="bold")
        return self.fig, self.ax

    def _add_basemap(self):
        for provider in BASEMAP_PROVIDERS[self.basemap]:
            try:
                ctx.add_basemap(self.ax, source=provider, crs=WEB_MERCATOR, attribution="", zorder=0)
            except Exception as e:
                logger.warning(f"Could not load basemap {self.basemap}: {e}")
                self.ax.set_facecolor("#1a1a2e")
                return

    def save(self, path: str, dpi: int = 150) -> Path:
        if self.fig is None:
            self.render()
        out = Path(path)
        out.parent.mkdir(parents=True, exist_ok=True)
        self.fig.savefig(out, dpi=dpi, bbox_inches="tight")
        logger.info(f"Map saved to {out}")
        return out

    def show(self):
        if self.fig is None:
            self.render()
        plt.tight_layout()
        plt.show()

    def close(self):
        if self.fig is not None:
            plt.close(self.fig)
            self.fig = None
            self.ax = None
