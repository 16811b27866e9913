"""
Low zoom boundary lines from Natural Earth.

Each supported table maps to a fixed admin level and zoom range. Tables are
read with fiona, either as layers of the Natural Earth SQLite/GeoPackage
distribution or as shapefiles named after the table inside a directory.
"""

import logging
import os
from typing import Dict, List, NamedTuple, Optional

import fiona
from shapely.geometry import shape

from boundary_model import BUFFER_SIZE, LAYER_NAME, parse_round_int
from features import TileFeature

logger = logging.getLogger(__name__)


class BoundaryInfo(NamedTuple):
    admin_level: int
    min_zoom: int
    max_zoom: int


NATURAL_EARTH_TABLES = [
    "ne_110m_admin_0_boundary_lines_land",
    "ne_50m_admin_0_boundary_lines_land",
    "ne_10m_admin_0_boundary_lines_land",
    "ne_10m_admin_1_states_provinces_lines",
]


def boundary_info_for(table: str, props: Dict) -> Optional[BoundaryInfo]:
    if table == "ne_110m_admin_0_boundary_lines_land":
        return BoundaryInfo(2, 0, 0)
    if table == "ne_50m_admin_0_boundary_lines_land":
        return BoundaryInfo(2, 1, 3)
    if table == "ne_10m_admin_0_boundary_lines_land":
        if props.get("featurecla") == "Lease Limit":
            return None
        return BoundaryInfo(2, 4, 4)
    if table == "ne_10m_admin_1_states_provinces_lines":
        min_zoom = _parse_float(props.get("min_zoom"))
        if min_zoom is not None and min_zoom <= 7:
            return BoundaryInfo(4, 1, 4)
    return None


def _parse_float(value) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def natural_earth_feature(table: str, props: Dict, geometry) -> Optional[TileFeature]:
    info = boundary_info_for(table, props)
    if info is None:
        return None
    disputed = str(props.get("featurecla") or "").startswith("Disputed")
    feature = TileFeature(
        layer=LAYER_NAME,
        geometry=geometry,
        min_zoom=info.min_zoom,
        max_zoom=info.max_zoom,
        buffer_pixels=BUFFER_SIZE,
    )
    feature.set_attr("admin_level", info.admin_level)
    feature.set_attr("maritime", 0)
    feature.set_attr("disputed", 1 if disputed else 0)
    return feature


def _open_table(path: str, table: str):
    if os.path.isdir(path):
        return fiona.open(os.path.join(path, table + ".shp"))
    return fiona.open(path, layer=table)


def _available_tables(path: str) -> List[str]:
    if os.path.isdir(path):
        return [t for t in NATURAL_EARTH_TABLES if os.path.exists(os.path.join(path, t + ".shp"))]
    layers = set(fiona.listlayers(path))
    return [t for t in NATURAL_EARTH_TABLES if t in layers]


def read_natural_earth(path: str, emit) -> int:
    """Emit boundary features for every supported table found at path. Returns the feature count."""
    tables = _available_tables(path)
    missing = [t for t in NATURAL_EARTH_TABLES if t not in tables]
    if missing:
        logger.warning(f"Natural Earth tables not found in {path}: {', '.join(missing)}")
    count = 0
    for table in tables:
        with _open_table(path, table) as src:
            for feat in src:
                if feat.geometry is None:
                    continue
                props = {k.lower(): v for k, v in feat.properties.items()}
                feature = natural_earth_feature(table, props, shape(feat.geometry))
                if feature is not None:
                    emit(feature)
                    count += 1
        logger.info(f"Natural Earth {table}: {count} boundary features so far")
    return count
