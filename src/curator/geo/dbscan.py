import logging
from dataclasses import dataclass, field
from typing import Dict, List, Sequence

import numpy as np
from sklearn.cluster import DBSCAN

from curator.geo.distance import EARTH_RADIUS_KM
from curator.models.media import Media

logger = logging.getLogger(__name__)


@dataclass
class DbscanResult:
    clusters: List[List[Media]] = field(default_factory=list)
    noise: List[Media] = field(default_factory=list)


class GeoDbscanHelper:
    """DBSCAN over great-circle distance for media records."""

    def cluster_media(self, items: Sequence[Media], eps_km: float, min_samples: int) -> DbscanResult:
        gps_items = [m for m in items if m.has_gps]
        if not gps_items:
            return DbscanResult()
        if eps_km <= 0 or min_samples < 1:
            return DbscanResult(noise=list(gps_items))

        coords = np.radians([[m.lat, m.lon] for m in gps_items])
        labels = DBSCAN(
            eps=eps_km / EARTH_RADIUS_KM,
            min_samples=min_samples,
            metric="haversine",
            algorithm="ball_tree",
        ).fit_predict(coords)

        return self._group_by_labels(gps_items, labels)

    def _group_by_labels(self, items: List[Media], labels) -> DbscanResult:
        result = DbscanResult()
        by_label: Dict[int, List[Media]] = {}
        order: List[int] = []
        for media, label in zip(items, labels):
            label = int(label)
            if label == -1:
                result.noise.append(media)
                continue
            if label not in by_label:
                by_label[label] = []
                order.append(label)
            by_label[label].append(media)

        result.clusters = [by_label[label] for label in order]
        logger.debug(f"DBSCAN produced {len(result.clusters)} clusters and {len(result.noise)} noise points")
        return result
