import logging
from datetime import datetime, time, timedelta, tzinfo
from typing import Optional

from curator.config import BaseLocationConfig
from curator.geo.distance import distance_km, midpoint
from curator.geo.home import HomeBoundaryHelper
from curator.models.day import BaseLocation, DaySummary
from curator.models.home import Home
from curator.models.media import Media

logger = logging.getLogger(__name__)

SOURCE_STAYPOINT = "staypoint"
SOURCE_SLEEP_PROXY_PAIR = "sleep_proxy_pair"


class BaseLocationResolver:
    """Infers where a day ended, i.e. the hotel or other overnight base."""

    def __init__(self, config: Optional[BaseLocationConfig] = None):
        self.config = config or BaseLocationConfig()

    def resolve(
        self,
        day: DaySummary,
        next_day: Optional[DaySummary],
        home: Home,
        tz: tzinfo,
    ) -> Optional[BaseLocation]:
        base = self._overnight_staypoint(day, next_day, home, tz)
        if base is not None and HomeBoundaryHelper.is_beyond_home(home, base.lat, base.lon):
            return base

        # an away sleep-proxy pair wins over an overnight staypoint at home
        proxy = self._sleep_proxy_pair(day, next_day, home, tz)
        return proxy if proxy is not None else base

    def _overnight_staypoint(
        self,
        day: DaySummary,
        next_day: Optional[DaySummary],
        home: Home,
        tz: tzinfo,
    ) -> Optional[BaseLocation]:
        date = datetime.strptime(day.date, "%Y-%m-%d").date()
        window_start = datetime.combine(date, time(hour=self.config.overnight_start_hour), tzinfo=tz)
        window_end = window_start + timedelta(hours=self.config.overnight_window_hours)
        start_ts = int(window_start.timestamp())
        end_ts = int(window_end.timestamp())

        candidates = list(day.staypoints)
        if next_day is not None:
            candidates.extend(next_day.staypoints)
        candidates = [s for s in candidates if s.overlaps(start_ts, end_ts)]
        if not candidates:
            return None

        best = min(candidates, key=lambda s: (-s.dwell, s.start))
        nearest = HomeBoundaryHelper.nearest_center(home, best.lat, best.lon, best.start)
        return BaseLocation(lat=best.lat, lon=best.lon, distance_km=nearest.distance_km, source=SOURCE_STAYPOINT)

    def _sleep_proxy_pair(
        self,
        day: DaySummary,
        next_day: Optional[DaySummary],
        home: Home,
        tz: tzinfo,
    ) -> Optional[BaseLocation]:
        if next_day is None:
            return None
        last = day.last_gps_media
        first = next_day.first_gps_media
        if last is None or first is None:
            return None

        if last.moment.astimezone(tz).hour < self.config.sleep_proxy_evening_hour:
            return None
        if first.moment.astimezone(tz).hour >= self.config.sleep_proxy_morning_hour:
            return None
        if not (self._is_away(last, home) and self._is_away(first, home)):
            return None
        if distance_km(last.lat, last.lon, first.lat, first.lon) > self.config.sleep_proxy_max_pair_km:
            return None

        lat, lon = midpoint(last.lat, last.lon, first.lat, first.lon)
        nearest = HomeBoundaryHelper.nearest_center(home, lat, lon, last.timestamp)
        logger.debug(f"Sleep proxy pair for {day.date}: {last.id} / {first.id}")
        return BaseLocation(lat=lat, lon=lon, distance_km=nearest.distance_km, source=SOURCE_SLEEP_PROXY_PAIR)

    @staticmethod
    def _is_away(media: Media, home: Home) -> bool:
        return HomeBoundaryHelper.is_beyond_home(home, media.lat, media.lon, media.timestamp)
