"""
Mean surface temperature pipeline.

Flow:
1) Resolve the area of interest and centre the map on it
2) Build the collection query: bands, bounds, day-of-year, years, cloud mask
3) Drop scenes above the cloud-cover threshold
4) Convert the thermal band to degrees Fahrenheit
5) Per-pixel mean over the remaining scenes
6) Keep the temperature band and clip it to the area of interest
7) Add the layer to the map, print and chart the histogram
8) Submit the GeoTIFF export
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

import matplotlib.pyplot as plt

from .analysis.aoi import AreaOfInterest
from .analysis.statistics import Histogram, compute_histogram, region_statistics, suhi_intensity
from .config import PipelineConfig
from .data.collection import CollectionInfo, Filter, ImageCollection
from .data.image import Image
from .data.stac import StacCatalog
from .exceptions import PixelLimitError
from .export.tasks import ExportTask, image_to_folder
from .processing.thermal import apply_scale_factors, cloud_mask
from .visualization.map_display import MapDisplay, VisParams
from .visualization.plots import plot_histogram
from .visualization.reports import (
    print_collection_summary,
    print_histogram,
    print_image_summary,
    print_progress,
    print_statistics,
)

logger = logging.getLogger(__name__)

STEPS = 8


@dataclass
class PipelineResult:
    config: PipelineConfig
    aoi: AreaOfInterest
    center: Tuple[float, float]
    collection: ImageCollection
    info: CollectionInfo
    image: Image
    histogram: Optional[Histogram]
    statistics: Dict[str, Any]
    suhi: Optional[float]
    display: MapDisplay
    export_task: ExportTask


def build_collection(config: PipelineConfig, catalog, aoi: AreaOfInterest) -> ImageCollection:
    """
    The filtered, masked and converted collection, still unevaluated.

    Filters are independent predicates, so their order here only mirrors
    how the query reads.
    """
    c = config.collection
    d = config.dates

    def mask_clouds(image):
        return cloud_mask(image, c.qa_band)

    def scale_thermal(image):
        return apply_scale_factors(image, c.thermal_band)

    return (
        ImageCollection(catalog)
        .select(c.thermal_band, c.qa_band)
        .filter_bounds(aoi)
        .filter(Filter.day_of_year(d.start_day, d.end_day))
        .filter(Filter.calendar_range(d.start_year, d.end_year, "year"))
        .map(mask_clouds)
        .filter(Filter.lt(catalog.cloud_cover_property, c.max_cloud_cover))
        .map(scale_thermal)
    )


def run_pipeline(
    config: Optional[PipelineConfig] = None,
    catalog=None,
    display: Optional[MapDisplay] = None,
    wait_for_export: bool = False,
) -> PipelineResult:
    """
    Run the pipeline once.

    Args:
        config: pipeline configuration (defaults to the MRCOG setup)
        catalog: imagery catalog; a StacCatalog over config.collection when None
        display: map surface to draw on; a new MapDisplay when None
        wait_for_export: block until the export finishes

    Returns:
        PipelineResult. The export task is submitted but only awaited when
        wait_for_export is set; inspect export_task.state for the outcome.

    Raises:
        ValueError: the configuration is invalid (nothing is requested).
    """
    config = config or PipelineConfig()
    config.check()
    catalog = catalog or StacCatalog(config.collection)
    thermal = config.collection.thermal_band
    v = config.display

    # 1. Area of interest and map centre
    print_progress(1, STEPS, "Resolving area of interest")
    aoi = AreaOfInterest(config.aoi)
    if v.center:
        center = (float(v.center[0]), float(v.center[1]))
    else:
        center = aoi.centroid(max_error=v.centroid_max_error)
    display = display or MapDisplay()
    display.set_options(v.basemap)
    display.set_center(center[0], center[1], v.zoom)
    logger.info(f"AOI {aoi}, map centre {center[0]:.4f}, {center[1]:.4f} (zoom {v.zoom})")

    # 2-5. Collection query (lazy)
    print_progress(2, STEPS, f"Querying {catalog.collection_id}")
    collection = build_collection(config, catalog, aoi)
    logger.debug(f"Collection query: {collection.describe()}")

    info = collection.info()
    print_collection_summary(info)

    # 6. Temporal mean on the evaluation grid
    grid = aoi.grid(config.analysis_scale)
    print_progress(6, STEPS, f"Averaging {len(info.ids)} scenes on {grid}")
    composite = collection.mean(grid, bands=[thermal])

    # 7. Band selection and clip
    print_progress(7, STEPS, "Clipping to area of interest")
    image = aoi.clip(composite.select(thermal))
    print_image_summary(image, title="MEAN SURFACE TEMPERATURE")

    # 8. Map layer, histogram, export
    print_progress(8, STEPS, "Visualizing and exporting")
    display.add_layer(
        image,
        VisParams(min=v.vis_min, max=v.vis_max, palette=list(v.palette), band=thermal),
        name=v.layer_name,
        shown=v.display,
    )

    histogram = None
    try:
        histogram = compute_histogram(
            image, thermal, aoi,
            scale=v.histogram_scale,
            max_pixels=v.histogram_max_pixels,
            max_buckets=v.histogram_max_buckets,
        )
    except PixelLimitError as e:
        logger.error(f"Histogram not computed: {e}")
    else:
        print_histogram(histogram)
        if v.histogram_path:
            fig = plot_histogram(
                histogram,
                title=f"{v.layer_name}: {config.export.description}",
                palette=list(v.palette),
                vis_range=(v.vis_min, v.vis_max),
                save_path=v.histogram_path,
            )
            plt.close(fig)

    statistics = region_statistics(image, thermal, aoi)
    print_statistics(statistics, label="AOI")

    suhi = None
    if config.urban_aoi and config.rural_aoi:
        suhi = suhi_intensity(image, thermal, AreaOfInterest(config.urban_aoi), AreaOfInterest(config.rural_aoi))
        if suhi is None:
            logger.warning("SUHI intensity undefined: urban or rural zone has no valid pixels")
        else:
            print(f"SUHI intensity (urban - rural): {suhi:.2f} °F")

    if v.save_path:
        display.render(title=f"{v.layer_name}: {config.export.description}")
        display.save(v.save_path)

    e = config.export
    task = image_to_folder(
        image,
        description=e.description,
        folder=e.folder,
        file_name_prefix=e.file_name_prefix,
        scale=e.scale,
        max_pixels=e.max_pixels,
        file_format=e.file_format,
        output_root=e.output_root,
    ).start()

    if wait_for_export:
        try:
            path = task.wait()
        except Exception as err:
            logger.error(f"Export {task.id} did not complete: {err}")
        else:
            print(f"Export written to {path}")

    return PipelineResult(
        config=config,
        aoi=aoi,
        center=center,
        collection=collection,
        info=info,
        image=image,
        histogram=histogram,
        statistics=statistics,
        suhi=suhi,
        display=display,
        export_task=task,
    )
