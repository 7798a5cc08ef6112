import numpy as np
import pyproj
from rasterio.features import geometry_mask
from shapely.geometry import Polygon, mapping
from shapely.ops import transform as shapely_transform

from ..data.image import Grid

# Densify edges before reprojecting so straight lon/lat edges stay straight
DENSIFY_DEGREES = 0.01


def utm_crs_for(lon: float, lat: float) -> str:
    """Proj string of the UTM zone containing (lon, lat)."""
    utm_zone = int((lon + 180) / 6) + 1
    hemisphere = 'north' if lat >= 0 else 'south'
    return f"+proj=utm +zone={utm_zone} +{hemisphere} +datum=WGS84"


class AreaOfInterest:
    """
    Planar polygon in WGS84 used both as a spatial filter and as a clip mask.

    Args:
        vertices: ordered (lon, lat) pairs; the ring is closed automatically.
                  Must have at least 3 points and not self-intersect.
    """

    def __init__(self, vertices):
        if len(vertices) < 3:
            raise ValueError("Polygon must have at least 3 vertices")

        coords = [(float(lon), float(lat)) for lon, lat in vertices]

        # Ensure closed ring
        if coords[0] != coords[-1]:
            coords.append(coords[0])

        poly = Polygon(coords)
        if not poly.is_valid:
            raise ValueError("Area of interest is not a valid polygon (self-intersecting or degenerate)")

        self.polygon = poly
        self.num_vertices = len(vertices)

    @classmethod
    def from_bbox(cls, bbox) -> "AreaOfInterest":
        """Rectangle from [min_lon, min_lat, max_lon, max_lat]."""
        min_lon, min_lat, max_lon, max_lat = bbox
        return cls([
            (min_lon, max_lat),
            (max_lon, max_lat),
            (max_lon, min_lat),
            (min_lon, min_lat),
        ])

    @property
    def bounds(self):
        """[min_lon, min_lat, max_lon, max_lat]"""
        return list(self.polygon.bounds)

    def centroid(self, max_error: float = 0.001):
        """
        (lon, lat) of the planar centroid.

        max_error is the reprojection error tolerance in metres. The polygon
        is already in lon/lat, so no reprojection happens and the centroid
        is exact; the argument only has to be non-negative.
        """
        if max_error < 0:
            raise ValueError(f"max_error must be non-negative, got {max_error}")
        c = self.polygon.centroid
        return (c.x, c.y)

    def utm_crs(self) -> str:
        lon, lat = self.centroid()
        return utm_crs_for(lon, lat)

    def to_geojson(self) -> dict:
        return mapping(self.polygon)

    def project(self, crs) -> Polygon:
        """Polygon transformed to crs, with edges densified first."""
        dst = pyproj.CRS.from_user_input(crs)
        if dst == pyproj.CRS.from_epsg(4326):
            return self.polygon
        project = pyproj.Transformer.from_crs("EPSG:4326", dst, always_xy=True).transform
        return shapely_transform(project, self.polygon.segmentize(DENSIFY_DEGREES))

    @property
    def area_km2(self) -> float:
        return self.project(self.utm_crs()).area / 1e6

    def grid(self, scale: float, crs=None) -> Grid:
        """
        Evaluation grid covering the AOI at scale metres per pixel.

        Defaults to the UTM zone of the centroid.
        """
        crs = crs or self.utm_crs()
        poly = self.project(crs)
        return Grid.from_bounds(poly.bounds, scale, crs)

    def mask(self, grid: Grid) -> np.ndarray:
        """
        Boolean mask on grid, True where the pixel centre lies inside the polygon.
        """
        poly = self.project(grid.crs.to_wkt())
        return geometry_mask(
            [mapping(poly)],
            out_shape=grid.shape,
            transform=grid.transform,
            invert=True,  # True = pixels inside geometry are True
            all_touched=False
        )

    def clip(self, image):
        """Image with every pixel outside the polygon invalidated."""
        return image.clip(self.mask(image.grid))

    def __repr__(self):
        return f"AreaOfInterest(bounds={self.bounds})"
