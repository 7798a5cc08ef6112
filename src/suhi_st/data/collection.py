"""
Lazy image collections.

An ImageCollection is a query description: a catalog plus an ordered list of
select / filter / map steps. Building one never touches the network. Only
the terminal calls (``info``, ``size``, ``images``, ``mean``) search the
catalog and read pixels.

Filters are predicates over catalog metadata (acquisition time, footprint,
scalar properties). They compose conjunctively and are all evaluated before
any pixel is read, so their position in the chain does not change the
result set. Where a filter can be expressed as a STAC search term it is
also pushed down to narrow the request, but every filter is re-checked on
the returned items.
"""

import logging
import re
from collections import namedtuple
from datetime import datetime
from typing import Callable, Iterator, List, Optional, Sequence

from shapely.geometry import mapping, shape

from ..processing.composite import mean_composite
from .image import Grid, Image

logger = logging.getLogger(__name__)

# Fractional seconds of any length; normalised to microseconds
_FRACTION = re.compile(r"\.(\d+)")

CollectionInfo = namedtuple(
    'CollectionInfo',
    ['collection_id', 'band_names', 'ids', 'dates', 'cloud_covers', 'filters']
)


def item_datetime(item: dict) -> datetime:
    """Acquisition time of a STAC item."""
    props = item['properties']
    date_str = props.get('datetime') or props['start_datetime']
    if 'T' in date_str:
        date_str = date_str.replace('Z', '+00:00')
        date_str = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), date_str, count=1)
        return datetime.fromisoformat(date_str)
    return datetime.strptime(date_str, '%Y-%m-%d')


def _in_range(value: int, start: int, end: int) -> bool:
    """Inclusive range test; wraps around when start > end."""
    if start <= end:
        return start <= value <= end
    return value >= start or value <= end


class SearchQuery:
    """Accumulates the STAC search terms pushed down by a set of filters."""

    def __init__(self):
        self.geometry = None
        self.start: Optional[datetime] = None
        self.end: Optional[datetime] = None
        self.query = {}

    def restrict_geometry(self, geom):
        self.geometry = geom if self.geometry is None else self.geometry.intersection(geom)

    def restrict_time(self, start: datetime, end: datetime):
        self.start = start if self.start is None else max(self.start, start)
        self.end = end if self.end is None else min(self.end, end)

    def restrict_property(self, name: str, op: str, value):
        terms = self.query.setdefault(name, {})
        if op in terms and op in ("lt", "lte"):
            value = min(terms[op], value)
        elif op in terms and op in ("gt", "gte"):
            value = max(terms[op], value)
        terms[op] = value

    def to_kwargs(self) -> dict:
        kwargs = {}
        if self.geometry is not None:
            kwargs["intersects"] = mapping(self.geometry)
        if self.start is not None and self.end is not None:
            kwargs["datetime"] = (
                f"{self.start.strftime('%Y-%m-%dT%H:%M:%SZ')}/{self.end.strftime('%Y-%m-%dT%H:%M:%SZ')}"
            )
        if self.query:
            kwargs["query"] = {k: dict(v) for k, v in self.query.items()}
        return kwargs


class Filter:
    """Predicate over a STAC item. Build instances with the static factories."""

    def matches(self, item: dict) -> bool:
        raise NotImplementedError

    def pushdown(self, search: SearchQuery) -> None:
        """Narrow the catalog request; a no-op for filters with no STAC equivalent."""

    def describe(self) -> dict:
        raise NotImplementedError

    def __repr__(self):
        return f"Filter({self.describe()})"

    @staticmethod
    def day_of_year(start: int, end: int) -> "Filter":
        """Acquisition day-of-year within [start, end] (1-366)."""
        return CalendarRangeFilter(start, end, "day_of_year")

    @staticmethod
    def calendar_range(start: int, end: int, field: str = "year") -> "Filter":
        """Acquisition year, month or day-of-year within [start, end]."""
        return CalendarRangeFilter(start, end, field)

    @staticmethod
    def bounds(geometry) -> "Filter":
        """Item footprint intersects geometry (shapely geometry or GeoJSON dict)."""
        return BoundsFilter(geometry)

    @staticmethod
    def lt(name: str, value) -> "Filter":
        return PropertyFilter(name, "lt", value)

    @staticmethod
    def lte(name: str, value) -> "Filter":
        return PropertyFilter(name, "lte", value)

    @staticmethod
    def gt(name: str, value) -> "Filter":
        return PropertyFilter(name, "gt", value)

    @staticmethod
    def gte(name: str, value) -> "Filter":
        return PropertyFilter(name, "gte", value)

    @staticmethod
    def eq(name: str, value) -> "Filter":
        return PropertyFilter(name, "eq", value)

    @staticmethod
    def and_(*filters: "Filter") -> "Filter":
        return AndFilter(filters)


class CalendarRangeFilter(Filter):
    FIELDS = {
        "year": lambda dt: dt.year,
        "month": lambda dt: dt.month,
        "day_of_year": lambda dt: dt.timetuple().tm_yday,
    }

    def __init__(self, start: int, end: int, field: str = "year"):
        if field not in self.FIELDS:
            raise ValueError(f"Unsupported calendar field {field!r}; expected one of {list(self.FIELDS)}")
        self.start = int(start)
        self.end = int(end)
        self.field = field

    def matches(self, item):
        value = self.FIELDS[self.field](item_datetime(item))
        if self.field == "year":
            return self.start <= value <= self.end
        return _in_range(value, self.start, self.end)

    def pushdown(self, search):
        if self.field == "year" and self.start <= self.end:
            search.restrict_time(
                datetime(self.start, 1, 1, 0, 0, 0),
                datetime(self.end, 12, 31, 23, 59, 59),
            )

    def describe(self):
        return {"calendar_range": self.field, "start": self.start, "end": self.end}


class BoundsFilter(Filter):
    def __init__(self, geometry):
        if isinstance(geometry, dict):
            geometry = shape(geometry)
        elif hasattr(geometry, "polygon"):
            geometry = geometry.polygon
        self.geometry = geometry

    def matches(self, item):
        footprint = item.get("geometry")
        if footprint is None:
            bbox = item.get("bbox")
            if bbox is None:
                return False
            footprint = {
                "type": "Polygon",
                "coordinates": [[
                    [bbox[0], bbox[1]], [bbox[2], bbox[1]],
                    [bbox[2], bbox[3]], [bbox[0], bbox[3]], [bbox[0], bbox[1]],
                ]],
            }
        return shape(footprint).intersects(self.geometry)

    def pushdown(self, search):
        search.restrict_geometry(self.geometry)

    def describe(self):
        return {"bounds": list(self.geometry.bounds)}


class PropertyFilter(Filter):
    OPS = {
        "lt": lambda a, b: a < b,
        "lte": lambda a, b: a <= b,
        "gt": lambda a, b: a > b,
        "gte": lambda a, b: a >= b,
        "eq": lambda a, b: a == b,
    }

    def __init__(self, name: str, op: str, value):
        if op not in self.OPS:
            raise ValueError(f"Unsupported comparison {op!r}")
        self.name = name
        self.op = op
        self.value = value

    def matches(self, item):
        actual = item.get("properties", {}).get(self.name)
        if actual is None:
            return False
        return self.OPS[self.op](actual, self.value)

    def pushdown(self, search):
        search.restrict_property(self.name, self.op, self.value)

    def describe(self):
        return {"property": self.name, "op": self.op, "value": self.value}


class DateRangeFilter(Filter):
    def __init__(self, start: datetime, end: datetime):
        self.start = start.replace(tzinfo=None)
        self.end = end.replace(tzinfo=None)

    def matches(self, item):
        dt = item_datetime(item).replace(tzinfo=None)
        return self.start <= dt < self.end

    def pushdown(self, search):
        search.restrict_time(self.start, self.end)

    def describe(self):
        return {"date_range": [self.start.isoformat(), self.end.isoformat()]}


class AndFilter(Filter):
    def __init__(self, filters):
        self.filters = list(filters)

    def matches(self, item):
        return all(f.matches(item) for f in self.filters)

    def pushdown(self, search):
        for f in self.filters:
            f.pushdown(search)

    def describe(self):
        return {"and": [f.describe() for f in self.filters]}


class ImageCollection:
    """
    Lazy, order-preserving image collection over a catalog.

    Example:
        >>> col = (ImageCollection(catalog)
        ...        .select("ST_B10", "QA_PIXEL")
        ...        .filter_bounds(aoi)
        ...        .filter(Filter.day_of_year(182, 243))
        ...        .map(cloud_mask))
        >>> col.size()            # first network access happens here
    """

    def __init__(self, catalog, steps: Sequence[tuple] = ()):
        self.catalog = catalog
        self._steps = tuple(steps)

    @property
    def collection_id(self) -> str:
        return self.catalog.collection_id

    def _with(self, step) -> "ImageCollection":
        return ImageCollection(self.catalog, self._steps + (step,))

    def select(self, *band_names: str) -> "ImageCollection":
        return self._with(("select", tuple(band_names)))

    def filter(self, flt: Filter) -> "ImageCollection":
        return self._with(("filter", flt))

    def filter_bounds(self, geometry) -> "ImageCollection":
        return self.filter(Filter.bounds(geometry))

    def filter_date(self, start: datetime, end: datetime) -> "ImageCollection":
        """Acquisition time within [start, end)."""
        return self.filter(DateRangeFilter(start, end))

    def map(self, fn: Callable[[Image], Image]) -> "ImageCollection":
        return self._with(("map", fn))

    @property
    def filters(self) -> List[Filter]:
        return [payload for kind, payload in self._steps if kind == "filter"]

    def band_names(self) -> List[str]:
        """Band names the collection yields, per the last select step."""
        for kind, payload in reversed(self._steps):
            if kind == "select":
                return list(payload)
        return list(getattr(self.catalog, "default_bands", []))

    def _load_bands(self) -> List[str]:
        # Bands to request from the catalog: the first select before any map
        for kind, payload in self._steps:
            if kind == "select":
                return list(payload)
            if kind == "map":
                break
        bands = list(getattr(self.catalog, "default_bands", []))
        if not bands:
            raise ValueError("No bands selected and the catalog declares no default bands")
        return bands

    def describe(self) -> dict:
        """Query description, without any I/O."""
        search = SearchQuery()
        for f in self.filters:
            f.pushdown(search)
        steps = []
        for kind, payload in self._steps:
            if kind == "select":
                steps.append({"select": list(payload)})
            elif kind == "filter":
                steps.append({"filter": payload.describe()})
            else:
                steps.append({"map": getattr(payload, "__name__", repr(payload))})
        return {
            "collection": self.collection_id,
            "steps": steps,
            "search": search.to_kwargs(),
        }

    def _matching_items(self) -> List[dict]:
        filters = self.filters
        search = SearchQuery()
        for f in filters:
            f.pushdown(search)

        candidates = self.catalog.search(**search.to_kwargs())
        items = [item for item in candidates if all(f.matches(item) for f in filters)]
        logger.info(f"{len(items)} of {len(candidates)} candidate items pass {len(filters)} filters")
        return sorted(items, key=item_datetime)

    def info(self) -> CollectionInfo:
        """Metadata of the matching items (no pixels are read)."""
        items = self._matching_items()
        cloud_key = getattr(self.catalog, "cloud_cover_property", "eo:cloud_cover")
        return CollectionInfo(
            collection_id=self.collection_id,
            band_names=self.band_names(),
            ids=[item.get("id") for item in items],
            dates=[item_datetime(item) for item in items],
            cloud_covers=[item.get("properties", {}).get(cloud_key) for item in items],
            filters=[f.describe() for f in self.filters],
        )

    def size(self) -> int:
        return len(self._matching_items())

    def images(self, grid: Grid) -> Iterator[Image]:
        """Load, select and map every matching item onto grid, one at a time."""
        load_bands = self._load_bands()
        items = self._matching_items()
        for i, item in enumerate(items, 1):
            logger.debug(f"Loading {item.get('id')} ({i}/{len(items)})")
            image = self.catalog.load(item, load_bands, grid)
            for kind, payload in self._steps:
                if kind == "select":
                    image = image.select(*payload)
                elif kind == "map":
                    image = payload(image)
            yield image

    def mean(self, grid: Grid, bands: Optional[Sequence[str]] = None) -> Image:
        """
        Per-pixel mean over the collection, ignoring masked pixels.

        bands restricts the reduction to those bands. An empty collection
        yields a fully masked image.
        """
        band_names = list(bands) if bands else self.band_names()
        return mean_composite(self.images(grid), grid, band_names)

    def __repr__(self):
        return f"ImageCollection({self.collection_id!r}, steps={len(self._steps)})"
