import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class TileFeature:
    """A finished line feature: lon/lat geometry plus tile attributes."""
    layer: str
    geometry: Any
    attrs: Dict[str, Any] = field(default_factory=dict)
    min_zoom: int = 0
    max_zoom: int = 14
    buffer_pixels: float = 0
    id: Optional[int] = None

    def set_attr(self, key: str, value):
        if value is None:
            self.attrs.pop(key, None)
        else:
            self.attrs[key] = value
        return self


class FeatureCollector:
    """Thread-safe in-memory sink for finished features, read by the tile writer."""

    def __init__(self):
        self.features: List[TileFeature] = []
        self._lock = threading.Lock()

    def accept(self, feature: TileFeature):
        with self._lock:
            self.features.append(feature)

    def __len__(self):
        return len(self.features)
