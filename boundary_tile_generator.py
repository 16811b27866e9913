#!/usr/bin/env python3
"""
Boundary tile generator.

Reads administrative boundaries from an OSM .pbf (plus optional Natural Earth
data for low zooms), attributes country borders to their left/right
neighbours and writes per-tile GeoJSON for the requested zoom levels.
"""

import argparse
import json
import logging
import os
import sys
import time
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Dict, List

import osmium

from boundary_layer import BoundaryLayer, WayFeature
from boundary_model import parse_bool
from features import FeatureCollector
from natural_earth import read_natural_earth
from tile_writer import parse_zoom_range, write_tiles

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

DEFAULT_CONFIG = {
    'boundary_country_names': True,
    'threads': os.cpu_count() or 4,
    'batch_size': 1000,
    'zoom': '0-14',
    'max_workers_tiles': 4,
}


class Config:
    """Defaults, overridden by an optional JSON file, overridden by command line options"""
    def __init__(self, config_file=None):
        self.config = DEFAULT_CONFIG.copy()
        self.config_file = config_file
        if config_file:
            self.load_config()

    def load_config(self):
        if not os.path.exists(self.config_file):
            raise FileNotFoundError(f"Config file {self.config_file} not found")
        with open(self.config_file, 'r') as f:
            file_config = json.load(f)
        self.config.update(file_config)
        logger.info(f"Loaded configuration from {self.config_file}")

    def get(self, key, default=None):
        return self.config.get(key, default)

    def set(self, key, value):
        if value is not None:
            self.config[key] = value

    def get_bool(self, key) -> bool:
        return parse_bool(self.config.get(key))

    def threads(self) -> int:
        return max(2, int(self.config.get('threads')))


class BoundaryRelationHandler(osmium.SimpleHandler):
    """First pass: boundary relations and the ways they reference"""
    def __init__(self, layer: BoundaryLayer):
        super().__init__()
        self.layer = layer
        self.way_relations: Dict[int, List[int]] = defaultdict(list)
        self.count = 0

    def relation(self, r):
        tags = {t.k: t.v for t in r.tags}
        record = self.layer.process_relation(r.id, tags)
        if record is None:
            return
        self.count += 1
        for member in r.members:
            if member.type == 'w':
                self.way_relations[member.ref].append(r.id)


class BoundaryWayHandler(osmium.SimpleHandler):
    """Second pass: copies boundary ways out of the reader and hands batches to worker threads"""
    def __init__(self, layer: BoundaryLayer, way_relations: Dict[int, List[int]], executor: ThreadPoolExecutor, batch_size: int):
        super().__init__()
        self.layer = layer
        self.way_relations = way_relations
        self.executor = executor
        self.batch_size = batch_size
        self.batch: List[WayFeature] = []
        self.futures = []
        self.count = 0
        self.skipped = 0

    def way(self, w):
        relation_ids = self.way_relations.get(w.id)
        if not relation_ids or len(w.nodes) < 2:
            return
        try:
            coords = [(n.lon, n.lat) for n in w.nodes]
        except osmium.InvalidLocationError:
            logger.warning(f"Way {w.id} has nodes without location, skipping")
            self.skipped += 1
            return
        self.batch.append(WayFeature(
            id=w.id,
            tags={t.k: t.v for t in w.tags},
            coords=coords,
            relations=self.layer.relations_for(relation_ids),
        ))
        self.count += 1
        if len(self.batch) >= self.batch_size:
            self.flush()

    def flush(self):
        if self.batch:
            self.futures.append(self.executor.submit(process_batch, self.layer, self.batch))
            self.batch = []


def process_batch(layer: BoundaryLayer, batch: List[WayFeature]) -> int:
    for way in batch:
        layer.process_way(way)
    return len(batch)


def read_osm_boundaries(pbf_file: str, layer: BoundaryLayer, threads: int, batch_size: int) -> int:
    relation_handler = BoundaryRelationHandler(layer)
    relation_handler.apply_file(pbf_file, locations=False)
    logger.info(f"Found {relation_handler.count} boundary relations, {len(layer.country_codes)} with country codes")

    with ThreadPoolExecutor(max_workers=threads) as executor:
        way_handler = BoundaryWayHandler(layer, relation_handler.way_relations, executor, batch_size)
        way_handler.apply_file(pbf_file, locations=True)
        way_handler.flush()
        processed = 0
        for future in as_completed(way_handler.futures):
            processed += future.result()
    logger.info(f"Processed {processed} boundary ways ({way_handler.skipped} skipped)")
    return processed


def format_time(seconds: float) -> str:
    if seconds < 60:
        return f"{seconds:.2f}s"
    elif seconds < 3600:
        minutes = int(seconds // 60)
        secs = seconds % 60
        return f"{minutes}m {secs:.2f}s"
    else:
        hours = int(seconds // 3600)
        minutes = int((seconds % 3600) // 60)
        secs = seconds % 60
        return f"{hours}h {minutes}m {secs:.2f}s"


def generate_boundary_tiles(pbf_file: str, output_dir: str, config: Config, natural_earth: str = None) -> Dict[str, Any]:
    collector = FeatureCollector()
    add_country_names = config.get_bool('boundary_country_names')
    logger.info(f"boundary_country_names={add_country_names} (add left/right codes of neighboring countries)")

    if natural_earth:
        read_natural_earth(natural_earth, collector.accept)

    layer = BoundaryLayer(collector, add_country_names=add_country_names)
    try:
        read_osm_boundaries(pbf_file, layer, config.threads(), int(config.get('batch_size')))
        stage_start = time.time()
        layer.finish()
        logger.info(f"Boundaries stage completed in {format_time(time.time() - stage_start)}")
    finally:
        layer.release()

    zoom_levels = parse_zoom_range(str(config.get('zoom')))
    tiles = write_tiles(collector.features, output_dir, zoom_levels, int(config.get('max_workers_tiles')))
    return {'features': len(collector), 'tiles': tiles, 'zoom_levels': zoom_levels}


def main():
    start_time = time.time()

    parser = argparse.ArgumentParser(description='Generate boundary tiles with left/right country codes from an OSM .pbf')
    parser.add_argument("pbf_file", help="Input OSM .pbf path")
    parser.add_argument("output_dir", help="Output directory for tiles")
    parser.add_argument("--config", help="JSON config file overriding defaults")
    parser.add_argument("--natural-earth", help="Natural Earth SQLite/GeoPackage file or shapefile directory for low zooms")
    parser.add_argument("--zoom", help="Zoom level or range (e.g. 4 or 0-14)")
    parser.add_argument("--threads", type=int, help="Number of way worker threads")
    parser.add_argument("--batch-size", type=int, help="Ways per worker task")
    parser.add_argument("--no-country-names", action="store_true", help="Do not add left/right codes of neighboring countries")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    if not os.path.exists(args.pbf_file):
        logger.error(f"{args.pbf_file} does not exist")
        return 1

    try:
        config = Config(args.config)
        config.set('zoom', args.zoom)
        config.set('threads', args.threads)
        config.set('batch_size', args.batch_size)
        if args.no_country_names:
            config.set('boundary_country_names', False)
        parse_zoom_range(str(config.get('zoom')))
    except (OSError, ValueError) as e:
        logger.error(f"Invalid configuration: {e}")
        return 1

    logger.info(f"Input: {args.pbf_file}")
    logger.info(f"Output: {args.output_dir}")
    logger.info(f"Zoom levels: {config.get('zoom')}")

    result = generate_boundary_tiles(args.pbf_file, args.output_dir, config, args.natural_earth)

    logger.info(f"Total features: {result['features']}")
    logger.info(f"Total tiles written: {result['tiles']}")
    logger.info("=" * 50)
    logger.info(f"Total processing time: {format_time(time.time() - start_time)}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
