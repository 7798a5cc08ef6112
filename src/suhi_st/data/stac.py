import logging
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import planetary_computer
import rasterio
import requests
from rasterio.enums import Resampling
from rasterio.vrt import WarpedVRT

from ..config import STAC_URL, CollectionConfig
from .image import Grid, Image

logger = logging.getLogger(__name__)


def search_stac(
    collections: List[str],
    stac_url: str = STAC_URL,
    intersects: Optional[dict] = None,
    bbox: Optional[List[float]] = None,
    datetime: Optional[str] = None,
    query: Optional[dict] = None,
    sortby: Optional[List[dict]] = None,
    limit: int = 100,
    max_pages: int = 100,
    timeout: float = 60,
) -> List[dict]:
    """
    Search a STAC API, following ``next`` links until the result set is exhausted.

    Args:
        collections: Collection IDs to query.
        stac_url: Root of the STAC API (``/search`` is appended).
        intersects: GeoJSON geometry the items must intersect.
        bbox: [min_lon, min_lat, max_lon, max_lat], used when intersects is None.
        datetime: RFC 3339 interval, e.g. "2013-01-01T00:00:00Z/2022-12-31T23:59:59Z".
        query: STAC query extension dict, e.g. {"eo:cloud_cover": {"lt": 20}}.
        limit: Page size.
        max_pages: Safety cap on the number of pages requested.

    Returns:
        List of STAC item dicts.

    Raises:
        requests.exceptions.RequestException: on HTTP or network failure.
    """
    payload = {
        "collections": collections,
        "limit": limit
    }
    if intersects:
        payload["intersects"] = intersects
    elif bbox:
        payload["bbox"] = bbox
    if datetime:
        payload["datetime"] = datetime
    if query:
        payload["query"] = query
    if sortby:
        payload["sortby"] = sortby

    url = stac_url.rstrip("/") + "/search"
    method = "POST"
    features = []
    page = 0

    while url and page < max_pages:
        page += 1
        if method == "POST":
            response = requests.post(url, json=payload, timeout=timeout)
        else:
            response = requests.get(url, timeout=timeout)
        response.raise_for_status()
        body = response.json()

        page_features = body.get("features", [])
        features.extend(page_features)
        logger.debug(f"Page {page}: {len(page_features)} items ({len(features)} total)")

        url, method, payload = _next_page(body, payload)

    if url:
        logger.warning(f"Hit page limit ({max_pages} pages); result set truncated at {len(features)} items")

    return features


def _next_page(body: dict, payload: dict) -> Tuple[Optional[str], str, dict]:
    """Resolve the ``next`` link of a search response into (url, method, payload)."""
    for link in body.get("links", []):
        if link.get("rel") != "next":
            continue
        method = link.get("method", "GET").upper()
        if method == "POST":
            next_payload = dict(payload) if link.get("merge") else {}
            next_payload.update(link.get("body", {}))
            return link["href"], "POST", next_payload
        return link["href"], "GET", payload
    return None, "GET", payload


def sign_href(href: str) -> str:
    """Append a Planetary Computer SAS token to an asset URL."""
    return planetary_computer.sign(href)


def read_band(
    item: dict,
    asset_key: str,
    grid: Grid,
    sign: bool = False,
    dtype: str = "float32",
    resampling: Resampling = Resampling.nearest,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Reads one asset of a STAC item, warped onto grid.

    Args:
        item: STAC item dict
        asset_key: asset key to read (e.g., "lwir11")
        grid: target pixel grid
        sign: sign the asset href for Planetary Computer
        dtype: numpy dtype for the returned values
        resampling: warp resampling method

    Returns:
        (values, valid) where valid is False outside the scene footprint and
        wherever the asset holds its nodata value.
    """
    href = item['assets'][asset_key]['href']
    if sign:
        href = sign_href(href)

    with rasterio.open(href) as src:
        with WarpedVRT(
            src,
            crs=grid.crs,
            transform=grid.transform,
            width=grid.width,
            height=grid.height,
            resampling=resampling,
        ) as vrt:
            data = vrt.read(1, masked=True)

    values = np.ma.getdata(data).astype(dtype)
    valid = ~np.ma.getmaskarray(data)
    return values, valid


class StacCatalog:
    """
    Access to one STAC collection: metadata search plus band reads.

    ImageCollection only talks to this interface (``collection_id``,
    ``search`` and ``load``), so any object with the same methods can
    stand in for it.
    """

    def __init__(self, config: Optional[CollectionConfig] = None):
        self.config = config or CollectionConfig()

    @property
    def collection_id(self) -> str:
        return self.config.collection

    @property
    def default_bands(self) -> List[str]:
        return list(self.config.asset_keys)

    @property
    def cloud_cover_property(self) -> str:
        return self.config.cloud_cover_property

    def base_query(self) -> Dict[str, dict]:
        """Query terms that pin the collection to the configured platform and tier."""
        query = {}
        if self.config.platforms:
            query["platform"] = {"in": list(self.config.platforms)}
        if self.config.collection_category:
            query["landsat:collection_category"] = {"in": [self.config.collection_category]}
        return query

    def search(self, intersects=None, bbox=None, datetime=None, query=None) -> List[dict]:
        merged = self.base_query()
        merged.update(query or {})
        c = self.config
        items = search_stac(
            collections=[c.collection],
            stac_url=c.stac_url,
            intersects=intersects,
            bbox=bbox,
            datetime=datetime,
            query=merged or None,
            sortby=[{"field": "datetime", "direction": "asc"}],
            limit=c.page_size,
            max_pages=c.max_pages,
            timeout=c.timeout,
        )
        logger.info(f"STAC search on {c.collection} returned {len(items)} items")
        return items

    def load(self, item: dict, band_names: Sequence[str], grid: Grid) -> Image:
        """Read the named bands of item onto grid."""
        bands = {}
        masks = {}
        for name in band_names:
            asset_key = self.config.asset_keys.get(name, name)
            values, valid = read_band(item, asset_key, grid, sign=self.config.sign_assets)
            bands[name] = values
            masks[name] = valid
        return Image(bands, grid, masks, properties=item_properties(item))


def item_properties(item: dict) -> dict:
    """Flatten a STAC item into the metadata dict carried by an Image."""
    props = dict(item.get("properties", {}))
    props["id"] = item.get("id")
    return props
