import logging
from datetime import date, datetime, timedelta
from typing import Dict, Optional, Sequence

from curator.config import DaySummaryConfig
from curator.geo.poi import PoiClassifier
from curator.geo.timezones import TimezoneResolver
from curator.models.day import DaySummary
from curator.models.home import Home
from curator.models.media import Media

logger = logging.getLogger(__name__)


class InitializationStage:
    """Groups media by local calendar day and records per-day votes and POI counts."""

    name = "initialization"

    def __init__(
        self,
        config: Optional[DaySummaryConfig] = None,
        timezone_resolver: Optional[TimezoneResolver] = None,
        poi_classifier: Optional[PoiClassifier] = None,
    ):
        self.config = config or DaySummaryConfig()
        self.timezones = timezone_resolver or TimezoneResolver()
        self.poi = poi_classifier or PoiClassifier()

    def build(self, media: Sequence[Media], home: Home) -> Dict[str, DaySummary]:
        days: Dict[str, DaySummary] = {}

        ordered = sorted((m for m in media if m.moment is not None), key=lambda m: (m.timestamp, m.id))
        skipped = len(media) - len(ordered)
        if skipped:
            logger.debug(f"Skipping {skipped} media without capture time")

        for item in ordered:
            zone, offset, identifier = self.timezones.media_vote(item, home)
            local = item.moment.astimezone(zone)
            key = local.date().isoformat()

            summary = days.get(key)
            if summary is None:
                summary = DaySummary(date=key, weekday=local.isoweekday())
                days[key] = summary

            summary.members.append(item)
            if item.has_gps:
                summary.gps_members.append(item)
            if offset is not None:
                summary.timezone_offsets[offset] = summary.timezone_offsets.get(offset, 0) + 1
            if identifier is not None:
                summary.timezone_identifier_votes[identifier] = summary.timezone_identifier_votes.get(identifier, 0) + 1

            self._collect_location(summary, item)

        for summary in days.values():
            offset, _ = self.timezones.vote(summary.timezone_offsets, summary.timezone_identifier_votes)
            summary.local_timezone_offset = offset
            summary.local_timezone_identifier = self.timezones.determine_local_timezone_identifier(
                summary.timezone_identifier_votes, offset, home
            )

        return self._fill_gaps(dict(sorted(days.items())))

    def _collect_location(self, summary: DaySummary, item: Media) -> None:
        location = item.location
        if location is not None and location.country_code:
            summary.country_codes.add(location.country_code.lower())

        if self.poi.is_poi_sample(item):
            summary.poi_samples += 1
            if self.poi.is_tourism(item):
                summary.tourism_hits += 1
            if self.poi.is_transport(item):
                summary.transport_hits += 1
        if self.poi.is_airport(item):
            summary.has_airport_poi = True

    def _fill_gaps(self, days: Dict[str, DaySummary]) -> Dict[str, DaySummary]:
        """Injects empty placeholder days into short photo-free gaps."""
        keys = list(days.keys())
        if len(keys) < 2:
            return days

        filled: Dict[str, DaySummary] = {}
        for current, following in zip(keys, keys[1:]):
            filled[current] = days[current]
            gap = (parse_day(following) - parse_day(current)).days - 1
            if gap <= 0 or gap > self.config.synthetic_gap_max_days:
                continue
            for step in range(1, gap + 1):
                placeholder_date = parse_day(current) + timedelta(days=step)
                filled[placeholder_date.isoformat()] = self._synthetic(placeholder_date, days[current])
        filled[keys[-1]] = days[keys[-1]]
        return filled

    def _synthetic(self, day: date, previous: DaySummary) -> DaySummary:
        return DaySummary(
            date=day.isoformat(),
            weekday=day.isoweekday(),
            is_synthetic=True,
            local_timezone_offset=previous.local_timezone_offset,
            local_timezone_identifier=previous.local_timezone_identifier,
        )


def parse_day(key: str) -> date:
    return datetime.strptime(key, "%Y-%m-%d").date()
