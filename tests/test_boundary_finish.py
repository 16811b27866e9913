import logging

import pytest
from shapely.geometry import LineString, box
from shapely.ops import unary_union
from shapely.prepared import prep

from boundary_finish import BorderingRegions, get_bordering_regions, merge_and_attribute, prepare_region_polygons
from boundary_geo import merge_lines
from boundary_layer import BoundaryLayer, WayFeature
from boundary_model import BoundaryPools, CountryCodeTable, GroupKey
from features import FeatureCollector

TRIANGLE = [
    LineString([(0.1, 0.1), (0.2, 0.1)]),
    LineString([(0.2, 0.1), (0.15, 0.2)]),
    LineString([(0.15, 0.2), (0.1, 0.1)]),
]

# heading east along y=0.5; with y pointing south, right is +y
EAST_LINE = LineString([(0.4 + 0.02 * i, 0.5) for i in range(11)])
SOUTH_OF_LINE = box(0.3, 0.5, 0.7, 0.6)
NORTH_OF_LINE = box(0.3, 0.4, 0.7, 0.5)


def test_closed_triangle_builds_one_polygon() -> None:
    pools = BoundaryPools()
    for fragment in TRIANGLE:
        pools.add(fragment, [1])
    polygons = prepare_region_polygons(pools)
    assert list(polygons) == [1]
    assert polygons[1].context.geom_type == "Polygon"
    assert not polygons[1].context.is_empty
    assert pools.region_fragments == {}


def test_open_ring_is_skipped_and_logged(caplog) -> None:
    pools = BoundaryPools()
    for fragment in TRIANGLE[:2]:
        pools.add(fragment, [1])
    with caplog.at_level(logging.WARNING):
        polygons = prepare_region_polygons(pools)
    assert polygons == {}
    assert "Unable to form closed polygon for OSM relation 1" in caplog.text
    assert pools.region_fragments == {}


def test_dangling_fragments_are_ignored() -> None:
    pools = BoundaryPools()
    for fragment in TRIANGLE + [LineString([(0.5, 0.5), (0.6, 0.6)])]:
        pools.add(fragment, [3])
    polygons = prepare_region_polygons(pools)
    assert polygons[3].context.area == pytest.approx(0.005)
    assert polygons[3].context.bounds == (0.1, 0.1, 0.2, 0.2)


def test_line_merge_joins_shared_endpoints_only() -> None:
    merged = merge_lines([
        LineString([(0, 0), (1, 0)]),
        LineString([(1, 0), (2, 0)]),
        LineString([(5, 5), (6, 5)]),
    ])
    assert len(merged) == 2
    assert sorted(line.length for line in merged) == [1.0, 2.0]


def test_right_and_left_countries() -> None:
    boundaries = {1: prep(SOUTH_OF_LINE), 2: prep(NORTH_OF_LINE)}
    assert get_bordering_regions(boundaries, {1, 2}, EAST_LINE) == BorderingRegions(left=2, right=1)
    reversed_line = LineString(list(EAST_LINE.coords)[::-1])
    assert get_bordering_regions(boundaries, {1, 2}, reversed_line) == BorderingRegions(left=1, right=2)


def test_right_country_is_never_also_left() -> None:
    # region 1 is on the right for the first five samples and on the left for the last five
    zigzag = unary_union([box(0.4, 0.5, 0.5, 0.6), box(0.5, 0.4, 0.6, 0.5)])
    # region 2 is on the left for the first two samples only
    small = box(0.4, 0.4, 0.44, 0.5)
    boundaries = {1: prep(zigzag), 2: prep(small)}
    assert get_bordering_regions(boundaries, {1}, EAST_LINE) == BorderingRegions(left=None, right=1)
    assert get_bordering_regions(boundaries, {1, 2}, EAST_LINE) == BorderingRegions(left=2, right=1)


def test_vote_ties_go_to_lowest_relation_id() -> None:
    boundaries = {7: prep(SOUTH_OF_LINE), 3: prep(SOUTH_OF_LINE)}
    assert get_bordering_regions(boundaries, {7, 3}, EAST_LINE).right == 3


def test_no_candidate_polygons_means_unknown_neighbours(caplog) -> None:
    with caplog.at_level(logging.WARNING):
        result = get_bordering_regions({1: prep(SOUTH_OF_LINE)}, {4, 5}, EAST_LINE)
    assert result == BorderingRegions(None, None)
    assert caplog.text == ""


def test_no_votes_is_logged(caplog) -> None:
    far_away = {1: prep(box(0.9, 0.9, 0.95, 0.95))}
    with caplog.at_level(logging.WARNING):
        result = get_bordering_regions(far_away, {1}, EAST_LINE)
    assert result == BorderingRegions(None, None)
    assert "no left or right country" in caplog.text
    assert "[1]" in caplog.text


def test_groups_share_one_id_and_are_cleared() -> None:
    pools = BoundaryPools()
    key_a = GroupKey(2, False, False, 5, None, None, frozenset({1}))
    key_b = GroupKey(2, True, False, 5, "XX", "Foo at Bar", frozenset({1}))
    pools.add(LineString([(0.1, 0.1), (0.2, 0.1)]), group_key=key_a)
    pools.add(LineString([(0.5, 0.5), (0.6, 0.5)]), group_key=key_a)
    pools.add(LineString([(0.3, 0.3), (0.4, 0.3)]), group_key=key_b)
    codes = CountryCodeTable()
    emitted = []

    groups = merge_and_attribute(pools, {}, codes, emitted.append)

    assert groups == 2
    assert pools.merge_groups == {}
    ids_by_disputed = {}
    for feature in emitted:
        ids_by_disputed.setdefault(feature.attrs["disputed"], set()).add(feature.id)
    assert len(emitted) == 3
    assert len(ids_by_disputed[0]) == 1
    assert len(ids_by_disputed[1]) == 1
    assert ids_by_disputed[0] != ids_by_disputed[1]
    assert ids_by_disputed[0] | ids_by_disputed[1] == {1, 2}
    disputed = [f for f in emitted if f.attrs["disputed"] == 1][0]
    assert disputed.attrs["claimed_by"] == "XX"
    assert disputed.attrs["disputed_name"] == "FooBar"


def test_shared_border_between_two_countries() -> None:
    collector = FeatureCollector()
    layer = BoundaryLayer(collector)
    for relation_id, code in ((1, "AAA"), (2, "BBB")):
        layer.process_relation(relation_id, {
            "type": "boundary", "boundary": "administrative", "admin_level": "2", "ISO3166-1:alpha3": code,
        })
    # A spans lon 0..1, B spans lon 1..2; the shared border runs north along lon 1
    ways = [
        WayFeature(10, {}, [(1, 0), (1, 1)], layer.relations_for([1, 2])),
        WayFeature(11, {}, [(1, 1), (0, 1), (0, 0), (1, 0)], layer.relations_for([1])),
        WayFeature(12, {}, [(1, 0), (2, 0), (2, 1), (1, 1)], layer.relations_for([2])),
    ]
    for way in ways:
        layer.process_way(way)
    assert len(collector) == 0

    assert layer.finish() == 3
    assert len(collector) == 3
    shared = [f for f in collector.features if "adm0_l" in f.attrs and "adm0_r" in f.attrs]
    assert len(shared) == 1
    feature = shared[0]
    assert feature.attrs["adm0_l"] == "AAA"
    assert feature.attrs["adm0_r"] == "BBB"
    assert feature.attrs["admin_level"] == 2
    assert (feature.min_zoom, feature.max_zoom) == (5, 14)
    (x0, y0), (x1, y1) = feature.geometry.coords
    assert abs(x0 - 1) < 1e-9 and abs(y0) < 1e-9
    assert abs(x1 - 1) < 1e-9 and abs(y1 - 1) < 1e-9
    layer.release()
    assert len(layer.country_codes) == 0
