import matplotlib
matplotlib.use('Agg')  # Non-interactive backend

import numpy as np
import pytest

from suhi_st.data.image import Grid, Image

# Scene footprint covering Albuquerque and most of the MRCOG region
ABQ_FOOTPRINT = [-107.5, 34.5, -105.5, 36.0]

# ~2 km square in central Albuquerque
SMALL_AOI = [[-106.66, 35.09], [-106.64, 35.09], [-106.64, 35.07], [-106.66, 35.07]]


def make_item(item_id, date, cloud=5.0, bbox=ABQ_FOOTPRINT, **properties):
    """Minimal STAC item with a bbox footprint."""
    min_lon, min_lat, max_lon, max_lat = bbox
    props = {"datetime": f"{date}T17:30:00Z", "platform": "landsat-8"}
    if cloud is not None:
        props["eo:cloud_cover"] = cloud
    props.update(properties)
    return {
        "type": "Feature",
        "id": item_id,
        "bbox": list(bbox),
        "geometry": {
            "type": "Polygon",
            "coordinates": [[
                [min_lon, min_lat], [max_lon, min_lat], [max_lon, max_lat],
                [min_lon, max_lat], [min_lon, min_lat],
            ]],
        },
        "properties": props,
        "assets": {},
    }


class FakeCatalog:
    """
    In-memory catalog.

    pixels maps item id -> band name -> scalar or array; NaN values are
    loaded as invalid pixels.
    """

    collection_id = "landsat-c2-l2"
    default_bands = ["ST_B10", "QA_PIXEL"]
    cloud_cover_property = "eo:cloud_cover"

    def __init__(self, items, pixels=None):
        self.items = list(items)
        self.pixels = pixels or {}
        self.search_calls = []
        self.load_calls = []

    def search(self, **kwargs):
        self.search_calls.append(kwargs)
        return list(self.items)

    def load(self, item, band_names, grid):
        self.load_calls.append((item["id"], list(band_names)))
        scene = self.pixels.get(item["id"], {})
        bands = {}
        masks = {}
        for name in band_names:
            values = np.asarray(scene.get(name, 0), dtype="float32")
            values = np.broadcast_to(values, grid.shape).copy()
            bands[name] = values
            masks[name] = ~np.isnan(values)
        props = dict(item["properties"], id=item["id"])
        return Image(bands, grid, masks, props)


@pytest.fixture
def small_grid():
    """4 x 3 grid of 1 m pixels in UTM zone 13N."""
    return Grid.from_bounds((500000.0, 3880000.0, 500004.0, 3880003.0), 1.0, "EPSG:32613")


@pytest.fixture
def st_image(small_grid):
    """ST_B10 = 0..11 row-major with pixel (0, 0) masked."""
    values = np.arange(12, dtype="float32").reshape(3, 4)
    mask = np.ones((3, 4), dtype=bool)
    mask[0, 0] = False
    return Image({"ST_B10": values}, small_grid, {"ST_B10": mask}, {"id": "st"})
