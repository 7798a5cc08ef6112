"""
Configuration for the mean surface-temperature pipeline.

Every literal of the analysis recipe (seasonal window, area of interest,
cloud threshold, visualization and export parameters) lives here as a
dataclass field, with JSON/YAML loading and environment overrides.
"""

import json
import logging
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from shapely.geometry import Polygon

logger = logging.getLogger(__name__)

STAC_URL = "https://planetarycomputer.microsoft.com/api/stac/v1"

BASEMAPS = ("SATELLITE", "HYBRID", "ROADMAP", "TERRAIN")
EXPORT_FORMATS = ("GeoTIFF",)

# Square around the MRCOG region, NW Sandoval County to SE Torrance County.
MRCOG_AOI = [
    [-107.655533, 36.242138],
    [-105.265001, 36.242138],
    [-105.265001, 34.233749],
    [-107.655533, 34.233749],
]


def setup_environment():
    """Sets GDAL options for reading cloud-optimised GeoTIFFs over HTTP."""
    os.environ.setdefault('GDAL_DISABLE_READDIR_ON_OPEN', 'EMPTY_DIR')
    os.environ.setdefault('CPL_VSIL_CURL_ALLOWED_EXTENSIONS', '.tif,.TIF,.tiff')
    os.environ.setdefault('GDAL_HTTP_MERGE_CONSECUTIVE_RANGES', 'YES')
    os.environ.setdefault('GDAL_HTTP_MULTIPLEX', 'YES')


@dataclass
class DateConfig:
    """Seasonal window: day-of-year range crossed with a calendar-year range."""

    # July 1 (non-leap year) is day 182, Aug 31 is day 243
    start_day: int = 182
    end_day: int = 243

    # Inclusive
    start_year: int = 2013
    end_year: int = 2022


@dataclass
class CollectionConfig:
    """Remote catalog and band settings."""

    stac_url: str = STAC_URL
    collection: str = "landsat-c2-l2"
    platforms: List[str] = field(default_factory=lambda: ["landsat-8"])
    collection_category: Optional[str] = "T1"

    thermal_band: str = "ST_B10"
    qa_band: str = "QA_PIXEL"
    # Band name -> STAC asset key
    asset_keys: Dict[str, str] = field(
        default_factory=lambda: {"ST_B10": "lwir11", "QA_PIXEL": "qa_pixel"}
    )

    cloud_cover_property: str = "eo:cloud_cover"
    max_cloud_cover: float = 20.0

    sign_assets: bool = True
    page_size: int = 100
    max_pages: int = 100
    timeout: float = 60.0


@dataclass
class DisplayConfig:
    """Map display and histogram settings."""

    display: bool = True
    basemap: str = "SATELLITE"

    # (lon, lat); None centres the map on the AOI centroid
    center: Optional[List[float]] = None
    centroid_max_error: float = 0.001
    zoom: int = 9

    # Degrees Fahrenheit
    vis_min: float = 50.0
    vis_max: float = 140.0
    palette: List[str] = field(default_factory=lambda: ["blue", "white", "red"])
    layer_name: str = "ST"

    histogram_scale: float = 30.0
    histogram_max_pixels: float = 1e9
    histogram_max_buckets: int = 256
    # PNG of the histogram chart; None skips the chart
    histogram_path: Optional[str] = None

    save_path: Optional[str] = None
    cache_tiles: bool = False


@dataclass
class ExportConfig:
    """Export job descriptor."""

    description: str = "MeanST_MRCOG_2013_2022_JulAug"
    folder: str = "SUHI"
    file_name_prefix: Optional[str] = None
    scale: float = 30.0
    max_pixels: float = 1e12
    file_format: str = "GeoTIFF"
    output_root: str = "./exports"

    def __post_init__(self):
        if self.file_name_prefix is None:
            self.file_name_prefix = self.description


@dataclass
class PipelineConfig:
    """
    Master configuration for the mean-ST pipeline.

    Example:
        >>> config = PipelineConfig.from_yaml("mrcog.yaml")
        >>> config.dates.start_year = 2018
        >>> config.check()
    """

    # Ordered (lon, lat) vertices
    aoi: List[List[float]] = field(default_factory=lambda: [list(v) for v in MRCOG_AOI])

    # Metres per pixel of the evaluation grid
    analysis_scale: float = 30.0

    # Optional zones for surface urban heat island intensity
    urban_aoi: Optional[List[List[float]]] = None
    rural_aoi: Optional[List[List[float]]] = None

    dates: DateConfig = field(default_factory=DateConfig)
    collection: CollectionConfig = field(default_factory=CollectionConfig)
    display: DisplayConfig = field(default_factory=DisplayConfig)
    export: ExportConfig = field(default_factory=ExportConfig)

    log_level: str = "INFO"
    log_dir: str = "./logs"

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary."""
        return asdict(self)

    def save(self, path: Union[str, Path]) -> None:
        """Save configuration to JSON file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)

        logger.info(f"Configuration saved to {path}")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PipelineConfig":
        """Create config from dictionary."""
        data = dict(data)
        dates = DateConfig(**data.pop("dates", {}))
        collection = CollectionConfig(**data.pop("collection", {}))
        display = DisplayConfig(**data.pop("display", {}))
        export = ExportConfig(**data.pop("export", {}))

        return cls(
            dates=dates,
            collection=collection,
            display=display,
            export=export,
            **data
        )

    @classmethod
    def from_json(cls, path: Union[str, Path]) -> "PipelineConfig":
        """Load configuration from JSON file."""
        with open(path, 'r') as f:
            data = json.load(f)
        return cls.from_dict(data)

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "PipelineConfig":
        """Load configuration from YAML file."""
        with open(path, 'r') as f:
            data = yaml.safe_load(f) or {}
        return cls.from_dict(data)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "PipelineConfig":
        """Load configuration, choosing the parser from the file suffix."""
        if str(path).lower().endswith((".yaml", ".yml")):
            return cls.from_yaml(path)
        return cls.from_json(path)

    def update_from_env(self) -> None:
        """Update config from environment variables."""
        if os.getenv("SUHI_STAC_URL"):
            self.collection.stac_url = os.getenv("SUHI_STAC_URL")
        if os.getenv("SUHI_EXPORT_ROOT"):
            self.export.output_root = os.getenv("SUHI_EXPORT_ROOT")
        if os.getenv("SUHI_LOG_LEVEL"):
            self.log_level = os.getenv("SUHI_LOG_LEVEL")

    def validate(self) -> List[str]:
        """Validate configuration and return the list of problems."""
        problems = []

        d = self.dates
        for name in ("start_day", "end_day"):
            value = getattr(d, name)
            if not 1 <= value <= 366:
                problems.append(f"{name} must be within 1-366, got {value}")
        if d.start_year > d.end_year:
            problems.append(f"start_year ({d.start_year}) is after end_year ({d.end_year})")

        problems.extend(_polygon_problems("aoi", self.aoi))
        for name in ("urban_aoi", "rural_aoi"):
            vertices = getattr(self, name)
            if vertices is not None:
                problems.extend(_polygon_problems(name, vertices))
        if (self.urban_aoi is None) != (self.rural_aoi is None):
            problems.append("urban_aoi and rural_aoi must be given together")

        c = self.collection
        if not 0 <= c.max_cloud_cover <= 100:
            problems.append(f"max_cloud_cover must be a percentage, got {c.max_cloud_cover}")
        for band in (c.thermal_band, c.qa_band):
            if band not in c.asset_keys:
                problems.append(f"No asset key configured for band {band}")

        v = self.display
        if v.vis_min >= v.vis_max:
            problems.append(f"vis_min ({v.vis_min}) must be below vis_max ({v.vis_max})")
        if not v.palette:
            problems.append("palette must name at least one color")
        if v.basemap.upper() not in BASEMAPS:
            problems.append(f"Unknown basemap {v.basemap!r}; expected one of {BASEMAPS}")
        if not 0 <= v.zoom <= 24:
            problems.append(f"zoom must be within 0-24, got {v.zoom}")

        e = self.export
        if e.file_format not in EXPORT_FORMATS:
            problems.append(f"Unsupported export format {e.file_format!r}")

        for name, value in (
            ("analysis_scale", self.analysis_scale),
            ("export.scale", e.scale),
            ("export.max_pixels", e.max_pixels),
            ("display.histogram_scale", v.histogram_scale),
            ("display.histogram_max_pixels", v.histogram_max_pixels),
        ):
            if value <= 0:
                problems.append(f"{name} must be positive, got {value}")

        return problems

    def check(self) -> None:
        """Raise ValueError listing every configuration problem."""
        problems = self.validate()
        if problems:
            raise ValueError("Invalid configuration:\n  - " + "\n  - ".join(problems))


def _polygon_problems(name, vertices):
    if vertices is None or len(vertices) < 3:
        return [f"{name} must have at least 3 vertices"]
    try:
        poly = Polygon([tuple(v) for v in vertices])
    except (TypeError, ValueError) as e:
        return [f"{name} is not a polygon: {e}"]
    if not poly.is_valid:
        return [f"{name} is not a valid polygon (self-intersecting or degenerate)"]
    return []
