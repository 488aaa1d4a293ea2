import logging
from typing import Dict, List, Optional

import numpy as np

from curator.config import DaySummaryConfig
from curator.geo.dbscan import GeoDbscanHelper
from curator.geo.distance import centroid, media_distance_km
from curator.geo.home import HomeBoundaryHelper
from curator.geo.staypoints import StaypointDetector
from curator.models.day import DaySummary, DominantStaypoint, StaypointIndex
from curator.models.home import Home
from curator.models.media import Media
from curator.vacation.summary.base import DaySummaryStage

logger = logging.getLogger(__name__)


class GpsMetricsStage(DaySummaryStage):
    name = "gps_metrics"

    def __init__(self, config: Optional[DaySummaryConfig] = None, dbscan: Optional[GeoDbscanHelper] = None):
        self.config = config or DaySummaryConfig()
        self.dbscan = dbscan or GeoDbscanHelper()

    def process(self, days: Dict[str, DaySummary], home: Home) -> None:
        for summary in days.values():
            summary.sufficient_samples = summary.photo_count >= self.config.min_items_per_day
            if not summary.gps_members:
                continue

            trace = self._drop_speed_outliers(
                sorted((m for m in summary.gps_members if m.timestamp is not None), key=lambda m: (m.timestamp, m.id))
            )
            summary.gps_members = trace
            if not trace:
                continue

            summary.centroid = centroid(trace)
            summary.first_gps_media = trace[0]
            summary.last_gps_media = trace[-1]
            summary.travel_km = float(sum(media_distance_km(a, b) for a, b in zip(trace, trace[1:])))

            distances = [HomeBoundaryHelper.nearest_center(home, m.lat, m.lon, m.timestamp).distance_km for m in trace]
            summary.max_distance_km = float(np.max(distances))
            summary.avg_distance_km = float(np.mean(distances))

            spots = self.dbscan.cluster_media(trace, self.config.spot_radius_km, self.config.spot_min_samples)
            summary.spot_count = len(spots.clusters)
            summary.spot_dwell_seconds = sum(
                max(m.timestamp for m in cluster) - min(m.timestamp for m in cluster) for cluster in spots.clusters
            )

    def _drop_speed_outliers(self, trace: List[Media]) -> List[Media]:
        """Drops GPS jumps that would require an implausible speed from the last kept fix."""
        if len(trace) < 2:
            return trace

        kept = [trace[0]]
        for current in trace[1:]:
            previous = kept[-1]
            dt = current.timestamp - previous.timestamp
            dist = media_distance_km(previous, current)
            if dt <= 0:
                if dist > self.config.transport_min_leg_km:
                    logger.debug(f"GPS outlier detected: {current.id} (same timestamp, {dist:.1f} km jump)")
                    continue
                kept.append(current)
                continue

            speed = dist / (dt / 3600.0)
            if speed > self.config.max_plausible_speed_kmh:
                logger.debug(f"GPS outlier detected: {current.id} (Speed: {speed:.0f} km/h)")
                continue
            kept.append(current)
        return kept


class StaypointStage(DaySummaryStage):
    name = "staypoints"

    def __init__(self, config: Optional[DaySummaryConfig] = None, detector: Optional[StaypointDetector] = None):
        self.config = config or DaySummaryConfig()
        self.detector = detector or StaypointDetector()

    def process(self, days: Dict[str, DaySummary], home: Home) -> None:
        for key, summary in days.items():
            summary.staypoints = self.detector.detect(summary.gps_members)
            index = StaypointIndex(key, summary.staypoints, summary.gps_members)
            summary.staypoint_index = index
            summary.staypoint_counts = index.counts

            dominant = [
                DominantStaypoint(key=sp.key(key), staypoint=sp, member_count=index.counts.get(sp.key(key), 0))
                for sp in summary.staypoints
            ]
            dominant.sort(key=lambda d: (-d.staypoint.dwell, -d.member_count, d.key))
            summary.dominant_staypoints = dominant[: self.config.dominant_staypoint_limit]

            summary.transit_ratio = self._transit_ratio(summary)
            summary.poi_density = summary.poi_samples / summary.photo_count if summary.photo_count else 0.0

    @staticmethod
    def _transit_ratio(summary: DaySummary) -> float:
        if summary.first_gps_media is None or summary.last_gps_media is None:
            return 0.0
        span = summary.last_gps_media.timestamp - summary.first_gps_media.timestamp
        if span <= 0:
            return 0.0
        if not summary.staypoints:
            return 1.0
        dwell = sum(sp.dwell for sp in summary.staypoints)
        return max(0.0, min(1.0, (span - dwell) / span))


class TransportSpeedStage(DaySummaryStage):
    name = "transport_speed"

    def __init__(self, config: Optional[DaySummaryConfig] = None):
        self.config = config or DaySummaryConfig()

    def process(self, days: Dict[str, DaySummary], home: Home) -> None:
        for summary in days.values():
            speeds = []
            trace = summary.gps_members
            for previous, current in zip(trace, trace[1:]):
                dt = current.timestamp - previous.timestamp
                if dt < self.config.transport_min_leg_seconds:
                    continue
                dist = media_distance_km(previous, current)
                if dist < self.config.transport_min_leg_km:
                    continue
                speeds.append(dist / (dt / 3600.0))

            if speeds:
                summary.avg_speed_kmh = float(np.mean(speeds))
                summary.max_speed_kmh = float(np.max(speeds))
            summary.has_high_speed_transit = (
                summary.max_speed_kmh >= self.config.high_speed_kmh
                or summary.travel_km > self.config.high_speed_travel_km
            )


class DensityStage(DaySummaryStage):
    """Z-score of the per-day photo count across the real (non placeholder) days."""

    name = "density"

    def process(self, days: Dict[str, DaySummary], home: Home) -> None:
        real = [s for s in days.values() if not s.is_synthetic]
        if not real:
            return
        counts = np.array([s.photo_count for s in real], dtype=float)
        mean = counts.mean()
        std = counts.std()
        for summary in real:
            summary.density_z = float((summary.photo_count - mean) / std) if std > 0 else 0.0
