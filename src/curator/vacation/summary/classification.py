import logging
from datetime import datetime, tzinfo
from typing import Dict, List, Optional

from curator.config import DaySummaryConfig
from curator.geo.base_location import BaseLocationResolver
from curator.geo.home import HomeBoundaryHelper
from curator.geo.timezones import TimezoneResolver
from curator.models.day import DaySummary
from curator.models.home import Home
from curator.vacation.summary.base import DaySummaryStage
from curator.vacation.summary.initialization import parse_day

logger = logging.getLogger(__name__)


class BaseLocationStage(DaySummaryStage):
    """Second pass: every day looks ahead to the following day for its overnight base."""

    name = "base_location"

    def __init__(
        self,
        resolver: Optional[BaseLocationResolver] = None,
        timezone_resolver: Optional[TimezoneResolver] = None,
    ):
        self.resolver = resolver or BaseLocationResolver()
        self.timezones = timezone_resolver or TimezoneResolver()

    def process(self, days: Dict[str, DaySummary], home: Home) -> None:
        keys = list(days.keys())
        for position, key in enumerate(keys):
            summary = days[key]
            next_day = None
            if position + 1 < len(keys) and (parse_day(keys[position + 1]) - parse_day(key)).days == 1:
                next_day = days[keys[position + 1]]
            tz = self.timezones.resolve_summary_timezone(summary, home)

            summary.base_location = self.resolver.resolve(summary, next_day, home, tz)
            if summary.base_location is not None:
                base = summary.base_location
                summary.base_away = HomeBoundaryHelper.is_beyond_home(home, base.lat, base.lon)

            if summary.gps_members:
                summary.away_by_distance = summary.avg_distance_km > HomeBoundaryHelper.primary_radius(home)


class AwayFlagStage(DaySummaryStage):
    name = "away_flags"

    def __init__(
        self,
        config: Optional[DaySummaryConfig] = None,
        timezone_resolver: Optional[TimezoneResolver] = None,
    ):
        self.config = config or DaySummaryConfig()
        self.timezones = timezone_resolver or TimezoneResolver()

    def process(self, days: Dict[str, DaySummary], home: Home) -> None:
        keys = list(days.keys())
        summaries = [days[k] for k in keys]

        flags = [s.base_away or s.away_by_distance for s in summaries]
        for position in range(len(summaries) - 1):
            if not flags[position] and self._sleeps_away_next(summaries[position + 1], home):
                flags[position] = True

        flags = self._close_single_gaps(flags)
        flags = self._bridge_synthetic(flags, summaries)

        for summary, flag in zip(summaries, flags):
            summary.is_away = flag
            summary.is_core = flag and not summary.is_synthetic and (
                summary.base_away
                or (summary.sufficient_samples and summary.transit_ratio < self.config.core_transit_ratio)
            )

        logger.debug(f"Away days: {sum(flags)} of {len(flags)}")

    def _sleeps_away_next(self, next_day: DaySummary, home: Home) -> bool:
        """The next day opens with a far-away staypoint that started during the night."""
        if not next_day.dominant_staypoints:
            return False
        tz = self.timezones.resolve_summary_timezone(next_day, home)
        limit = HomeBoundaryHelper.primary_radius(home) * self.config.next_day_staypoint_radius_factor
        for dominant in next_day.dominant_staypoints:
            staypoint = dominant.staypoint
            hour = _hour(staypoint.start, tz)
            is_night = hour >= self.config.night_start_hour or hour < self.config.night_end_hour
            if not is_night:
                continue
            nearest = HomeBoundaryHelper.nearest_center(home, staypoint.lat, staypoint.lon, staypoint.start)
            if nearest.distance_km > limit:
                return True
        return False

    @staticmethod
    def _close_single_gaps(flags: List[bool]) -> List[bool]:
        closed = list(flags)
        for position in range(1, len(flags) - 1):
            if not flags[position] and flags[position - 1] and flags[position + 1]:
                closed[position] = True
        return closed

    @staticmethod
    def _bridge_synthetic(flags: List[bool], summaries: List[DaySummary]) -> List[bool]:
        """A block of placeholder days is away only when the real days around it are."""
        bridged = list(flags)
        position = 0
        while position < len(summaries):
            if not summaries[position].is_synthetic:
                position += 1
                continue
            end = position
            while end + 1 < len(summaries) and summaries[end + 1].is_synthetic:
                end += 1
            before = flags[position - 1] if position > 0 else False
            after = flags[end + 1] if end + 1 < len(summaries) else False
            for index in range(position, end + 1):
                bridged[index] = before and after
            position = end + 1
        return bridged


def _hour(ts: int, tz: tzinfo) -> int:
    return datetime.fromtimestamp(ts, tz).hour
