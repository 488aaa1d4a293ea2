import logging
import math
from collections import Counter
from dataclasses import dataclass
from typing import List, Optional, Sequence
from zoneinfo import ZoneInfo

import numpy as np

from curator.config import HomeConfig
from curator.geo.dbscan import GeoDbscanHelper
from curator.geo.distance import centroid, distance_km
from curator.models.home import Home, HomeCenter
from curator.models.media import Media

logger = logging.getLogger(__name__)

NIGHT_START_HOUR = 22
NIGHT_END_HOUR = 6
NIGHT_RADIUS_PERCENTILE = 0.95
MIN_NIGHT_RADIUS_KM = 10.0
MAX_NIGHT_RADIUS_KM = 25.0


@dataclass(frozen=True)
class NearestCenter:
    distance_km: float
    radius_km: float
    center: HomeCenter
    index: int


class HomeBoundaryHelper:
    """Lookups against the (possibly time-bounded) home centers."""

    @staticmethod
    def centers(home: Home, ts: Optional[int] = None) -> List[HomeCenter]:
        if not home.centers:
            return [
                HomeCenter(
                    lat=home.lat,
                    lon=home.lon,
                    radius_km=home.radius_km,
                    country=home.country,
                    timezone_offset=home.timezone_offset,
                )
            ]
        valid = [c for c in home.centers if c.is_valid_at(ts)]
        return valid or list(home.centers)

    @classmethod
    def nearest_center(cls, home: Home, lat: float, lon: float, ts: Optional[int] = None) -> NearestCenter:
        best: Optional[NearestCenter] = None
        for index, center in enumerate(cls.centers(home, ts)):
            dist = distance_km(lat, lon, center.lat, center.lon)
            if best is None or dist < best.distance_km:
                best = NearestCenter(distance_km=dist, radius_km=center.radius_km, center=center, index=index)
        return best

    @classmethod
    def is_beyond_home(cls, home: Home, lat: float, lon: float, ts: Optional[int] = None) -> bool:
        nearest = cls.nearest_center(home, lat, lon, ts)
        return nearest.distance_km > nearest.radius_km

    @staticmethod
    def primary_radius(home: Home) -> float:
        if home.centers:
            return home.centers[0].radius_km
        return home.radius_km


class HomeLocator:
    """Resolves the home reference from settings or from the library itself."""

    def __init__(self, config: Optional[HomeConfig] = None, dbscan: Optional[GeoDbscanHelper] = None):
        self.config = config or HomeConfig()
        self.dbscan = dbscan or GeoDbscanHelper()

        if not self.config.timezone:
            raise ValueError("timezone must not be empty")
        if self.config.default_radius_km <= 0:
            raise ValueError("default_radius_km must be > 0")
        if self.config.max_centers < 1:
            raise ValueError("max_centers must be >= 1")
        if self.config.fallback_radius_scale < 1.0:
            raise ValueError("fallback_radius_scale must be >= 1")
        if self.config.lat is not None and not -90.0 <= self.config.lat <= 90.0:
            raise ValueError("home lat must be within -90 and 90 degrees")
        if self.config.lon is not None and not -180.0 <= self.config.lon <= 180.0:
            raise ValueError("home lon must be within -180 and 180 degrees")
        if self.config.radius_km is not None and self.config.radius_km <= 0:
            raise ValueError("home radius_km must be > 0 when provided")

        self.zone = ZoneInfo(self.config.timezone)

    def get_configured_home(self) -> Optional[Home]:
        if self.config.lat is None or self.config.lon is None:
            return None

        radius = self.config.radius_km or self.config.default_radius_km
        center = HomeCenter(lat=self.config.lat, lon=self.config.lon, radius_km=radius)
        return Home(
            lat=self.config.lat,
            lon=self.config.lon,
            radius_km=radius,
            centers=[center],
            timezone=self.config.timezone,
        )

    def determine_home(self, media: Sequence[Media]) -> Optional[Home]:
        configured = self.get_configured_home()
        if configured is not None:
            return configured

        located = [m for m in media if m.has_gps and m.timestamp is not None]
        if not located:
            return None

        result = self.dbscan.cluster_media(located, self.config.cluster_radius_km, self.config.cluster_min_samples)
        groups = result.clusters or [located]

        centers = [self._summarise(group) for group in groups]
        centers.sort(key=lambda c: (-c.dwell_seconds, -c.member_count, -c.radius_km))
        primary, secondary = centers[0], centers[1:]
        # short-lived clusters are trips, not a second home
        min_dwell = self.config.min_secondary_dwell_days * 86400
        secondary = [c for c in secondary if c.dwell_seconds >= min_dwell]
        centers = ([primary] + secondary)[: self.config.max_centers]

        logger.info(
            f"Determined home at ({primary.lat:.4f}, {primary.lon:.4f}) radius {primary.radius_km:.1f} km "
            f"from {len(located)} located items, {len(centers)} centers"
        )
        return Home(
            lat=primary.lat,
            lon=primary.lon,
            radius_km=primary.radius_km,
            country=primary.country,
            timezone_offset=primary.timezone_offset,
            centers=centers,
        )

    def _summarise(self, group: List[Media]) -> HomeCenter:
        day_members = []
        night_members = []
        for media in group:
            hour = media.moment.astimezone(self.zone).hour
            if hour >= NIGHT_START_HOUR or hour < NIGHT_END_HOUR:
                night_members.append(media)
            else:
                day_members.append(media)

        lat, lon = centroid(day_members or night_members)
        max_distance = max((distance_km(m.lat, m.lon, lat, lon) for m in day_members), default=0.0)

        stamps = [m.timestamp for m in group]
        first, last = min(stamps), max(stamps)
        dwell = last - first

        if night_members:
            radius = self._night_radius(night_members, lat, lon)
        else:
            radius = self._adaptive_radius(len(day_members), max_distance, dwell)

        countries = Counter(
            m.location.country_code.lower() for m in group if m.location is not None and m.location.country_code
        )
        offsets = Counter(m.timezone_offset_min for m in group if m.timezone_offset_min is not None)

        return HomeCenter(
            lat=lat,
            lon=lon,
            radius_km=radius,
            member_count=len(day_members),
            dwell_seconds=dwell,
            country=countries.most_common(1)[0][0] if countries else None,
            timezone_offset=offsets.most_common(1)[0][0] if offsets else None,
            valid_from=first,
            valid_until=last,
        )

    def _adaptive_radius(self, member_count: int, max_distance_km: float, dwell_seconds: int) -> float:
        radius = max(max_distance_km, self.config.default_radius_km)
        if max_distance_km >= self.config.default_radius_km:
            return radius

        dwell_hours = dwell_seconds / 3600.0
        density = member_count / dwell_hours if dwell_hours > 0 else float(member_count)
        if dwell_hours >= 8.0 or density >= 2.0:
            radius = max(radius, self.config.default_radius_km * self.config.fallback_radius_scale)
        return radius

    @staticmethod
    def _night_radius(night_members: List[Media], lat: float, lon: float) -> float:
        distances = np.sort([distance_km(m.lat, m.lon, lat, lon) for m in night_members])
        index = min(len(distances) - 1, max(0, math.ceil(len(distances) * NIGHT_RADIUS_PERCENTILE) - 1))
        return float(max(MIN_NIGHT_RADIUS_KM, min(MAX_NIGHT_RADIUS_KM, distances[index])))
