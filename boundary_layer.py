"""
Boundary layer: administrative and disputed boundary lines from OSM.

Relations are preprocessed once into RegionRecords. Every way belonging to at
least one of them is then either emitted right away, or, when it borders a
country with a known code, set aside so that it can be merged with its
neighbours and attributed to the countries on each side once all input has
been read (see boundary_finish).
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Sequence, Tuple

from boundary_finish import merge_and_attribute, prepare_region_polygons
from boundary_geo import GeometryError, line_from_lonlat, line_to_lonlat
from boundary_model import (
    MAX_ADMIN_LEVEL, MIN_ADMIN_LEVEL, BoundaryPools, CountryCodeTable, GroupKey, RegionRecord,
    boundary_line_feature, is_disputed, min_zoom_for, parse_bool, parse_round_int,
)
from features import FeatureCollector

logger = logging.getLogger(__name__)


@dataclass
class WayFeature:
    """An OSM way copied out of the reader, with its boundary memberships resolved."""
    id: int
    tags: Dict[str, str]
    coords: Sequence[Tuple[float, float]]
    relations: List[RegionRecord] = field(default_factory=list)


@dataclass(frozen=True)
class WayBoundary:
    admin_level: int
    disputed: bool
    maritime: bool
    min_zoom: int
    claimed_by: Optional[str]
    disputed_name: Optional[str]
    regions: FrozenSet[int]
    outline_regions: FrozenSet[int]


class EmissionMode(Enum):
    IMMEDIATE = "immediate"
    DEFERRED = "deferred"


@dataclass(frozen=True)
class WayDecision:
    mode: EmissionMode
    group_key: Optional[GroupKey] = None


def preprocess_relation(relation_id: int, tags: Dict[str, str], country_codes: CountryCodeTable) -> Optional[RegionRecord]:
    if tags.get("type") != "boundary" or tags.get("boundary") != "administrative" or "admin_level" not in tags:
        return None
    admin_level = parse_round_int(tags.get("admin_level"))
    if admin_level is None or not MIN_ADMIN_LEVEL <= admin_level <= MAX_ADMIN_LEVEL:
        return None
    disputed = is_disputed(tags)
    code = tags.get("ISO3166-1:alpha3")
    if code is not None:
        country_codes.put(relation_id, code)
    return RegionRecord(
        id=relation_id,
        admin_level=admin_level,
        disputed=disputed,
        name=tags.get("name"),
        claimed_by=tags.get("claimed_by") if disputed else None,
        iso3166_alpha3=code,
    )


def summarize_way(tags: Dict[str, str], relations: Sequence[RegionRecord],
                  country_codes: CountryCodeTable) -> Optional[WayBoundary]:
    if not relations:
        return None
    min_admin_level = min(rel.admin_level for rel in relations)
    disputed = False
    disputed_name = None
    claimed_by = None
    for rel in relations:
        if rel.disputed:
            disputed = True
            disputed_name = rel.name if disputed_name is None else disputed_name
            claimed_by = rel.claimed_by if claimed_by is None else claimed_by

    regions = frozenset()
    if min_admin_level == 2:
        regions = frozenset(rel.id for rel in relations if rel.admin_level == 2 and rel.id in country_codes)

    if is_disputed(tags):
        disputed = True
        disputed_name = tags.get("name") if disputed_name is None else disputed_name
        claimed_by = tags.get("claimed_by") if claimed_by is None else claimed_by

    maritime = (
        parse_bool(tags.get("maritime"))
        or tags.get("natural") == "coastline"
        or tags.get("boundary_type") == "maritime"
    )
    return WayBoundary(
        admin_level=min_admin_level,
        disputed=disputed,
        maritime=maritime,
        min_zoom=min_zoom_for(min_admin_level, maritime),
        claimed_by=claimed_by,
        disputed_name=disputed_name,
        regions=regions,
        outline_regions=frozenset(rel.id for rel in relations if rel.admin_level <= 2),
    )


def decide_emission(info: WayBoundary, add_country_names: bool) -> WayDecision:
    if add_country_names and info.regions:
        return WayDecision(EmissionMode.DEFERRED, GroupKey(
            admin_level=info.admin_level,
            disputed=info.disputed,
            maritime=info.maritime,
            min_zoom=info.min_zoom,
            claimed_by=info.claimed_by,
            disputed_name=info.disputed_name,
            regions=info.regions,
        ))
    return WayDecision(EmissionMode.IMMEDIATE)


class BoundaryLayer:
    """
    Per-run state of the boundary layer.

    process_relation may be called from any thread before the way pass,
    process_way from many worker threads during it. finish must only run
    once all workers are done.
    """

    def __init__(self, collector: FeatureCollector, add_country_names: bool = True):
        self.collector = collector
        self.add_country_names = add_country_names
        self.relations: Dict[int, RegionRecord] = {}
        self.country_codes = CountryCodeTable()
        self.pools = BoundaryPools()
        self.finished = False

    def process_relation(self, relation_id: int, tags: Dict[str, str]) -> Optional[RegionRecord]:
        record = preprocess_relation(relation_id, tags, self.country_codes)
        if record is not None:
            self.relations[relation_id] = record
        return record

    def relations_for(self, relation_ids) -> List[RegionRecord]:
        return [self.relations[r] for r in relation_ids if r in self.relations]

    def process_way(self, way: WayFeature) -> Optional[WayDecision]:
        info = summarize_way(way.tags, way.relations, self.country_codes)
        if info is None:
            return None
        try:
            line = line_from_lonlat(way.coords)
        except GeometryError as e:
            logger.warning(f"Cannot extract boundary line from way {way.id}: {e}")
            return None

        decision = decide_emission(info, self.add_country_names)
        if decision.mode is EmissionMode.DEFERRED or info.outline_regions:
            self.pools.add(line, info.outline_regions, decision.group_key)
        if decision.mode is EmissionMode.IMMEDIATE:
            self.collector.accept(boundary_line_feature(
                line_to_lonlat(line),
                admin_level=info.admin_level,
                disputed=info.disputed,
                maritime=info.maritime,
                min_zoom=info.min_zoom,
                claimed_by=info.claimed_by,
                disputed_name=info.disputed_name,
                feature_id=way.id,
            ))
        return decision

    def finish(self) -> int:
        if self.finished:
            raise RuntimeError("boundary layer already finished")
        self.finished = True
        country_boundaries = prepare_region_polygons(self.pools)
        groups = merge_and_attribute(self.pools, country_boundaries, self.country_codes, self.collector.accept)
        logger.info(f"Merged {groups} boundary groups")
        return groups

    def release(self):
        self.pools.clear()
        self.country_codes.clear()
        self.relations.clear()
