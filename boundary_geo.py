"""
Geometry helpers shared by the boundary layer and the tile writer.

Boundary geometry is processed in "world" coordinates: web mercator scaled so
the whole world spans 0..1 on both axes, with y growing southwards (same
orientation as tile pixels). Output features are reprojected back to lon/lat.
"""

import math
from typing import Iterable, List, Optional, Sequence, Tuple

from shapely.geometry import LineString, Point
from shapely.ops import linemerge, polygonize, unary_union

TILE_SIZE = 256
WORLD_CIRCUMFERENCE_METERS = 40075016.68557849
MAX_LATITUDE = 85.0511287798066

# 10 meters at the equator, in world units
COUNTRY_TEST_OFFSET = 10.0 / WORLD_CIRCUMFERENCE_METERS


class GeometryError(Exception):
    """Raised when a source feature cannot be turned into a usable geometry."""


def deg2num(lat_deg: float, lon_deg: float, zoom: int) -> Tuple[int, int]:
    lat_deg = max(-MAX_LATITUDE, min(MAX_LATITUDE, lat_deg))
    lat_rad = math.radians(lat_deg)
    n = 2.0 ** zoom
    xtile = int((lon_deg + 180.0) / 360.0 * n)
    ytile = int((1.0 - math.log(math.tan(lat_rad) + 1 / math.cos(lat_rad)) / math.pi) / 2.0 * n)
    xtile = max(0, min(int(n) - 1, xtile))
    ytile = max(0, min(int(n) - 1, ytile))
    return xtile, ytile


def lonlat_to_world(lon: float, lat: float) -> Tuple[float, float]:
    lat = max(-MAX_LATITUDE, min(MAX_LATITUDE, lat))
    lat_rad = math.radians(lat)
    x = (lon + 180.0) / 360.0
    y = (1.0 - math.log(math.tan(lat_rad) + 1 / math.cos(lat_rad)) / math.pi) / 2.0
    return x, y


def world_to_lonlat(x: float, y: float) -> Tuple[float, float]:
    lon = x * 360.0 - 180.0
    lat = math.degrees(math.atan(math.sinh(math.pi * (1 - 2 * y))))
    return lon, lat


def tile_latlon_bounds(tile_x: int, tile_y: int, zoom: int, pixel_margin: float = 0) -> Tuple[float, float, float, float]:
    """Tile bounds as (lon_min, lat_min, lon_max, lat_max), grown by pixel_margin on every side."""
    n = 2.0 ** zoom
    margin = pixel_margin / TILE_SIZE
    lon_min, lat_max = world_to_lonlat((tile_x - margin) / n, max(0.0, (tile_y - margin) / n))
    lon_max, lat_min = world_to_lonlat((tile_x + 1 + margin) / n, min(1.0, (tile_y + 1 + margin) / n))
    return lon_min, lat_min, lon_max, lat_max


def degrees_per_pixel(zoom: int) -> float:
    return 360.0 / (TILE_SIZE * 2.0 ** zoom)


def remove_duplicate_points(points):
    if len(points) <= 1:
        return points
    result = [points[0]]
    for pt in points[1:]:
        if pt != result[-1]:
            result.append(pt)
    return result


def line_from_lonlat(coords: Sequence[Tuple[float, float]]) -> LineString:
    """Build a world-coordinate line from way node positions, or raise GeometryError."""
    points = remove_duplicate_points([lonlat_to_world(lon, lat) for lon, lat in coords])
    if len(points) < 2:
        raise GeometryError(f"line needs at least 2 distinct points, got {len(points)}")
    return LineString(points)


def line_to_lonlat(line: LineString) -> LineString:
    return LineString([world_to_lonlat(x, y) for x, y in line.coords])


def point_along_offset(line: LineString, ratio: float, offset: float) -> Point:
    """
    Point at the middle of the segment found at `ratio` of the vertex list,
    shifted perpendicular to that segment by `offset` world units.

    With y pointing south, a positive offset lands on the right-hand side of
    the direction of travel, a negative one on the left.
    """
    coords = list(line.coords)
    middle = max(0, min(len(coords) - 2, int(len(coords) * ratio)))
    (x0, y0), (x1, y1) = coords[middle][:2], coords[middle + 1][:2]
    dx = x1 - x0
    dy = y1 - y0
    mid_x = x0 + dx / 2
    mid_y = y0 + dy / 2
    length = math.hypot(dx, dy)
    if offset == 0 or length == 0:
        return Point(mid_x, mid_y)
    ux = offset * dx / length
    uy = offset * dy / length
    return Point(mid_x - uy, mid_y + ux)


def merge_lines(fragments: Iterable[LineString]) -> List[LineString]:
    """Merge fragments sharing endpoints into maximal line strings."""
    fragments = [f for f in fragments if not f.is_empty]
    if not fragments:
        return []
    merged = linemerge(fragments)
    if merged.is_empty:
        return []
    if merged.geom_type == "LineString":
        return [merged]
    return [g for g in merged.geoms if g.geom_type == "LineString"]


def polygonize_union(fragments: Iterable[LineString]) -> Optional[object]:
    """
    Assemble every closed ring the fragments form into polygons and union
    them. Dangling edges are dropped. Returns None when no ring closes.
    """
    polygons = list(polygonize(list(fragments)))
    if not polygons:
        return None
    combined = unary_union(polygons)
    if combined.is_empty:
        return None
    return combined
