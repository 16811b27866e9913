"""
Cuts finished features into z/x/y tiles.

Every feature is clipped to each tile its bounds touch (grown by the
feature's buffer pixels so lines continue across tile edges), lines sharing
the same attributes are merged back together inside a tile and simplified
for the tile's zoom, and each tile is written as a GeoJSON document.
"""

import json
import logging
import os
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Dict, List, Tuple

from shapely.geometry import box, mapping
from shapely.prepared import prep
from tqdm import tqdm

from boundary_geo import deg2num, degrees_per_pixel, merge_lines, tile_latlon_bounds
from features import TileFeature

logger = logging.getLogger(__name__)


def get_simplify_tolerance_for_zoom(zoom: int) -> float:
    """Simplification tolerance in pixels."""
    if zoom >= 14:
        return 256 / 4096
    return 0.1


def parse_zoom_range(value: str) -> List[int]:
    if "-" in value:
        start, end = map(int, value.split("-"))
        if start > end:
            raise ValueError(f"invalid zoom range: {value}")
        return list(range(start, end + 1))
    return [int(value)]


def _line_parts(geom) -> List:
    if geom.is_empty:
        return []
    if geom.geom_type == "LineString":
        return [geom]
    if geom.geom_type in ("MultiLineString", "GeometryCollection"):
        parts = []
        for g in geom.geoms:
            parts.extend(_line_parts(g))
        return parts
    return []


def assign_features_to_tiles(features: List[TileFeature], zoom: int) -> Dict[Tuple[int, int], List[TileFeature]]:
    tiles = defaultdict(list)
    for feat in features:
        if zoom < feat.min_zoom or zoom > feat.max_zoom:
            continue
        geom = feat.geometry
        if geom is None or geom.is_empty:
            continue
        prepared = prep(geom)
        minx, miny, maxx, maxy = geom.bounds
        xtile_min, ytile_min = deg2num(miny, minx, zoom)
        xtile_max, ytile_max = deg2num(maxy, maxx, zoom)
        for xt in range(min(xtile_min, xtile_max), max(xtile_min, xtile_max) + 1):
            for yt in range(min(ytile_min, ytile_max), max(ytile_min, ytile_max) + 1):
                tile_box = box(*tile_latlon_bounds(xt, yt, zoom, feat.buffer_pixels))
                if not prepared.intersects(tile_box):
                    continue
                clipped = geom.intersection(tile_box)
                if clipped.is_empty:
                    continue
                tiles[(xt, yt)].append(TileFeature(
                    layer=feat.layer,
                    geometry=clipped,
                    attrs=feat.attrs,
                    min_zoom=feat.min_zoom,
                    max_zoom=feat.max_zoom,
                    buffer_pixels=feat.buffer_pixels,
                    id=feat.id,
                ))
    return tiles


def post_process_tile(feats: List[TileFeature], zoom: int) -> List[Dict]:
    """Merge lines with identical layer and attributes, then simplify them for the zoom."""
    tolerance = get_simplify_tolerance_for_zoom(zoom) * degrees_per_pixel(zoom)
    groups = defaultdict(list)
    first_ids = {}
    for feat in feats:
        key = (feat.layer, tuple(sorted(feat.attrs.items())))
        groups[key].extend(_line_parts(feat.geometry))
        first_ids.setdefault(key, feat.id)
    out = []
    for (layer, attrs), lines in groups.items():
        for line in merge_lines(lines):
            simplified = line.simplify(tolerance, preserve_topology=True)
            if simplified.is_empty or len(simplified.coords) < 2:
                continue
            properties = dict(attrs)
            properties["layer"] = layer
            out.append({
                "type": "Feature",
                "id": first_ids[(layer, attrs)],
                "properties": properties,
                "geometry": mapping(simplified),
            })
    return out


def tile_worker(job) -> int:
    x, y, feats, zoom, output_dir = job
    tile_dir = os.path.join(output_dir, str(zoom), str(x))
    os.makedirs(tile_dir, exist_ok=True)
    filename = os.path.join(tile_dir, f"{y}.geojson")
    data = json.dumps({"type": "FeatureCollection", "features": post_process_tile(feats, zoom)})
    with open(filename, "w", encoding="utf-8") as f:
        f.write(data)
    return len(data)


def write_tiles(features: List[TileFeature], output_dir: str, zoom_levels: List[int], max_workers: int = 4) -> int:
    total_tiles = 0
    for zoom in zoom_levels:
        tiles = assign_features_to_tiles(features, zoom)
        jobs = [(x, y, feats, zoom, output_dir) for (x, y), feats in tiles.items()]
        tile_sizes = []
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            futures = [executor.submit(tile_worker, job) for job in jobs]
            for future in tqdm(as_completed(futures), total=len(futures), desc=f"Writing tiles (zoom {zoom})"):
                tile_sizes.append(future.result())
        avg_tile_size = sum(tile_sizes) / len(tile_sizes) if tile_sizes else 0
        logger.info(f"Zoom {zoom}: {len(jobs)} tiles, average tile size = {avg_tile_size:.2f} bytes")
        total_tiles += len(jobs)
    return total_tiles
