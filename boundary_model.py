"""
Shared data model of the boundary layer: relation records, the country code
table and the two fragment pools filled by way workers.
"""

import math
import re
import threading
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterator, List, NamedTuple, Optional, Tuple

from features import TileFeature

LAYER_NAME = "boundary"
BUFFER_SIZE = 4
MAX_ZOOM = 14

MIN_ADMIN_LEVEL = 2
MAX_ADMIN_LEVEL = 10

FALSE_VALUES = {"no", "0", "false"}

_WHITESPACE = re.compile(r"\s+", re.ASCII)


def parse_bool(value) -> bool:
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    return str(value) not in FALSE_VALUES


def parse_round_int(value) -> Optional[int]:
    if value is None:
        return None
    try:
        number = float(str(value).strip())
    except ValueError:
        return None
    if number != number or number in (float("inf"), float("-inf")):
        return None
    return int(math.floor(number + 0.5))


def is_disputed(tags: Dict[str, str]) -> bool:
    return (
        parse_bool(tags.get("disputed"))
        or parse_bool(tags.get("dispute"))
        or tags.get("border_status") == "dispute"
        or "disputed_by" in tags
        or "claimed_by" in tags
    )


def edit_name(name: Optional[str]) -> Optional[str]:
    if name is None:
        return None
    return _WHITESPACE.sub("", name.replace(" at ", "")).replace("Extentof", "")


def min_zoom_for(admin_level: int, maritime: bool) -> int:
    if maritime and admin_level == 2:
        return 4
    if admin_level <= 4:
        return 5
    if admin_level <= 6:
        return 9
    if admin_level <= 8:
        return 11
    return 12


@dataclass(frozen=True)
class RegionRecord:
    id: int
    admin_level: int
    disputed: bool
    name: Optional[str]
    claimed_by: Optional[str]
    iso3166_alpha3: Optional[str]


class GroupKey(NamedTuple):
    admin_level: int
    disputed: bool
    maritime: bool
    min_zoom: int
    claimed_by: Optional[str]
    disputed_name: Optional[str]
    regions: FrozenSet[int]


class CountryCodeTable:
    """Relation id -> ISO 3166-1 alpha-3 code. Each key is written once."""

    def __init__(self):
        self._codes: Dict[int, str] = {}
        self._lock = threading.Lock()

    def put(self, relation_id: int, code: str):
        with self._lock:
            self._codes.setdefault(relation_id, code)

    def get(self, relation_id: Optional[int]) -> Optional[str]:
        if relation_id is None:
            return None
        return self._codes.get(relation_id)

    def __contains__(self, relation_id) -> bool:
        return relation_id in self._codes

    def __len__(self) -> int:
        return len(self._codes)

    def clear(self):
        with self._lock:
            self._codes.clear()


class BoundaryPools:
    """
    Region outline fragments and merge groups collected from way workers.

    Both pools share one lock since a single way may write to both. Each
    pool is drained exactly once during finalization.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self.region_fragments: Dict[int, List] = defaultdict(list)
        self.merge_groups: Dict[GroupKey, List] = defaultdict(list)

    def add(self, line, region_ids=(), group_key: Optional[GroupKey] = None):
        with self._lock:
            for region_id in region_ids:
                self.region_fragments[region_id].append(line)
            if group_key is not None:
                self.merge_groups[group_key].append(line)

    def drain_region_fragments(self) -> Iterator[Tuple[int, List]]:
        while self.region_fragments:
            region_id = next(iter(self.region_fragments))
            yield region_id, self.region_fragments.pop(region_id)

    def drain_merge_groups(self) -> Iterator[Tuple[GroupKey, List]]:
        while self.merge_groups:
            key = next(iter(self.merge_groups))
            yield key, self.merge_groups.pop(key)

    def clear(self):
        with self._lock:
            self.region_fragments.clear()
            self.merge_groups.clear()


def boundary_line_feature(geometry, admin_level: int, disputed: bool, maritime: bool, min_zoom: int,
                          claimed_by: Optional[str] = None, disputed_name: Optional[str] = None,
                          left_code: Optional[str] = None, right_code: Optional[str] = None,
                          feature_id: Optional[int] = None) -> TileFeature:
    feature = TileFeature(
        layer=LAYER_NAME,
        geometry=geometry,
        min_zoom=min_zoom,
        max_zoom=MAX_ZOOM,
        buffer_pixels=BUFFER_SIZE,
        id=feature_id,
    )
    feature.set_attr("admin_level", admin_level)
    feature.set_attr("disputed", 1 if disputed else 0)
    feature.set_attr("maritime", 1 if maritime else 0)
    feature.set_attr("claimed_by", claimed_by)
    feature.set_attr("disputed_name", edit_name(disputed_name))
    feature.set_attr("adm0_l", left_code)
    feature.set_attr("adm0_r", right_code)
    return feature
