import logging
from typing import List, Optional, Sequence

from curator.config import StaypointConfig
from curator.geo.dbscan import GeoDbscanHelper
from curator.geo.distance import centroid, media_distance_km
from curator.models.day import Staypoint
from curator.models.media import Media

logger = logging.getLogger(__name__)


class StaypointDetector:
    """
    Detects dwell locations from a time-ordered GPS trace.

    A sequential sweep grows a window while each fix stays within
    ``radius_km`` of the previous one. Windows lasting at least
    ``min_dwell_minutes`` become staypoints. When the sweep finds nothing
    (sparse or jittery traces) the fixes are re-clustered with DBSCAN using
    the looser fallback radius; the dwell requirement stays the same.
    """

    def __init__(self, config: Optional[StaypointConfig] = None, dbscan: Optional[GeoDbscanHelper] = None):
        self.config = config or StaypointConfig()
        self.dbscan = dbscan or GeoDbscanHelper()

        if self.config.radius_km <= 0:
            raise ValueError("radius_km must be > 0")
        if self.config.min_dwell_minutes < 0:
            raise ValueError("min_dwell_minutes must be >= 0")
        if self.config.fallback_radius_km <= 0:
            raise ValueError("fallback_radius_km must be > 0")
        if self.config.fallback_min_samples < 1:
            raise ValueError("fallback_min_samples must be >= 1")

    def detect(self, gps_members: Sequence[Media]) -> List[Staypoint]:
        trace = sorted(
            (m for m in gps_members if m.has_gps and m.timestamp is not None),
            key=lambda m: (m.timestamp, m.id),
        )
        if len(trace) < 2:
            return []

        staypoints = self._sequential(trace)
        if staypoints:
            return staypoints

        return self._fallback(trace)

    def _sequential(self, trace: List[Media]) -> List[Staypoint]:
        min_dwell = self.config.min_dwell_minutes * 60
        staypoints: List[Staypoint] = []
        n = len(trace)
        i = 0
        while i < n:
            j = i
            while j + 1 < n and media_distance_km(trace[j], trace[j + 1]) <= self.config.radius_km:
                j += 1

            dwell = trace[j].timestamp - trace[i].timestamp
            if j > i and dwell >= min_dwell:
                staypoints.append(self._build(trace[i:j + 1]))
            # every later start inside the same chain ends at j with less dwell
            i = j + 1

        return staypoints

    def _fallback(self, trace: List[Media]) -> List[Staypoint]:
        min_dwell = self.config.min_dwell_minutes * 60
        result = self.dbscan.cluster_media(trace, self.config.fallback_radius_km, self.config.fallback_min_samples)

        candidates = []
        for cluster in result.clusters:
            members = sorted(cluster, key=lambda m: (m.timestamp, m.id))
            if members[-1].timestamp - members[0].timestamp < min_dwell:
                continue
            candidates.append(self._build(members))

        # Interleaving clusters must not produce overlapping staypoints
        accepted: List[Staypoint] = []
        for candidate in sorted(candidates, key=lambda s: (-s.dwell, s.start)):
            if any(candidate.overlaps(s.start, s.end) for s in accepted):
                continue
            accepted.append(candidate)

        accepted.sort(key=lambda s: s.start)
        if accepted:
            logger.debug(f"Staypoint fallback produced {len(accepted)} staypoints from {len(trace)} fixes")
        return accepted

    @staticmethod
    def _build(window: List[Media]) -> Staypoint:
        lat, lon = centroid(window)
        start = window[0].timestamp
        end = window[-1].timestamp
        return Staypoint(
            lat=lat, lon=lon, start=start, end=end, dwell=end - start, member_ids=tuple(m.id for m in window)
        )
