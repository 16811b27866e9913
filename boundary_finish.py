"""
End-of-input stages of the boundary layer.

Once every way has been aggregated, country outlines are rebuilt from the
collected fragments and each merged boundary line is attributed to the
countries found on its left and right side.
"""

import logging
from collections import Counter
from typing import Dict, Iterable, List, NamedTuple, Optional

from shapely.errors import GEOSException
from shapely.prepared import prep

from boundary_geo import (
    COUNTRY_TEST_OFFSET, line_to_lonlat, merge_lines, point_along_offset, polygonize_union, world_to_lonlat,
)
from boundary_model import BoundaryPools, CountryCodeTable, GroupKey, boundary_line_feature

logger = logging.getLogger(__name__)

SAMPLE_STEPS = 10


class BorderingRegions(NamedTuple):
    left: Optional[int] = None
    right: Optional[int] = None


def prepare_region_polygons(pools: BoundaryPools) -> Dict[int, object]:
    logger.info(f"Creating polygons for {len(pools.region_fragments)} boundaries")
    country_boundaries = {}
    for region_id, fragments in pools.drain_region_fragments():
        try:
            combined = polygonize_union(fragments)
        except GEOSException as e:
            logger.warning(f"Unable to build boundary polygon for OSM relation {region_id}: {e}")
            continue
        finally:
            fragments.clear()
        if combined is None:
            logger.warning(f"Unable to form closed polygon for OSM relation {region_id} (likely missing edges)")
            continue
        country_boundaries[region_id] = prep(combined)
    logger.info(f"Finished creating {len(country_boundaries)} country polygons")
    return country_boundaries


def _mode(votes: List[int]) -> Optional[int]:
    # ties go to the lowest relation id
    if not votes:
        return None
    counts = Counter(votes)
    return min(counts, key=lambda region_id: (-counts[region_id], region_id))


def get_bordering_regions(country_boundaries: Dict[int, object], regions: Iterable[int], line) -> BorderingRegions:
    valid_regions = sorted(r for r in regions if r in country_boundaries)
    if not valid_regions:
        return BorderingRegions()

    rights = []
    lefts = []
    for i in range(SAMPLE_STEPS):
        ratio = (i + 1) / (SAMPLE_STEPS + 2)
        right = point_along_offset(line, ratio, COUNTRY_TEST_OFFSET)
        left = point_along_offset(line, ratio, -COUNTRY_TEST_OFFSET)
        for region_id in valid_regions:
            geom = country_boundaries[region_id]
            if geom.contains(right):
                rights.append(region_id)
            elif geom.contains(left):
                lefts.append(region_id)

    right_country = _mode(rights)
    if right_country is not None:
        lefts = [r for r in lefts if r != right_country]
    left_country = _mode(lefts)

    if left_country is None and right_country is None:
        mid = point_along_offset(line, 0.5, 0)
        lon, lat = world_to_lonlat(mid.x, mid.y)
        logger.warning(
            f"no left or right country for border between OSM country relations: {valid_regions} "
            f"around {lat:.5f}, {lon:.5f}"
        )
    return BorderingRegions(left_country, right_country)


def merge_and_attribute(pools: BoundaryPools, country_boundaries: Dict[int, object],
                        country_codes: CountryCodeTable, emit) -> int:
    """
    Merge every group of deferred fragments and emit one feature per merged
    line, with the neighbouring country codes on each side.

    Returns the number of groups processed.
    """
    number = 0
    for key, fragments in pools.drain_merge_groups():
        number += 1
        merged = merge_lines(fragments)
        fragments.clear()
        for line in merged:
            emit(_attributed_feature(key, line, country_boundaries, country_codes, number))
    return number


def _attributed_feature(key: GroupKey, line, country_boundaries, country_codes: CountryCodeTable, feature_id: int):
    bordering = get_bordering_regions(country_boundaries, key.regions, line)
    return boundary_line_feature(
        line_to_lonlat(line),
        admin_level=key.admin_level,
        disputed=key.disputed,
        maritime=key.maritime,
        min_zoom=key.min_zoom,
        claimed_by=key.claimed_by,
        disputed_name=key.disputed_name if key.disputed else None,
        left_code=country_codes.get(bordering.left),
        right_code=country_codes.get(bordering.right),
        feature_id=feature_id,
    )
