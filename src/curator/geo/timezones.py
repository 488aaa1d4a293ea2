import logging
import re
from datetime import timedelta, timezone, tzinfo
from typing import Dict, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from curator.models.day import DaySummary
from curator.models.home import Home
from curator.models.media import Media

logger = logging.getLogger(__name__)

_OFFSET_PATTERN = re.compile(r"^([+-])(\d{2}):(\d{2})$")


def format_offset(minutes: int) -> str:
    sign = "+" if minutes >= 0 else "-"
    hours, mins = divmod(abs(minutes), 60)
    return f"{sign}{hours:02d}:{mins:02d}"


def parse_offset(identifier: str) -> Optional[int]:
    match = _OFFSET_PATTERN.match(identifier)
    if match is None:
        return None
    sign, hours, mins = match.groups()
    value = int(hours) * 60 + int(mins)
    return -value if sign == "-" else value


def create_timezone_from_offset(minutes: int) -> timezone:
    return timezone(timedelta(minutes=minutes), format_offset(minutes))


def load_zone(identifier: Optional[str]) -> Optional[tzinfo]:
    """Named IANA zone or ``+HH:MM`` identifier, None when unusable."""
    if not identifier:
        return None
    offset = parse_offset(identifier)
    if offset is not None:
        return create_timezone_from_offset(offset)
    if identifier.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(identifier)
    except (ZoneInfoNotFoundError, ValueError):
        logger.debug(f"Unknown timezone identifier: {identifier}")
        return None


def plurality_offset(votes: Dict[int, int]) -> Optional[int]:
    """Most voted offset; ties go to the smallest absolute offset, then the smaller value."""
    if not votes:
        return None
    return min(votes.items(), key=lambda item: (-item[1], abs(item[0]), item[0]))[0]


def plurality_identifier(votes: Dict[str, int]) -> Optional[str]:
    if not votes:
        return None
    return min(votes.items(), key=lambda item: (-item[1], item[0]))[0]


class TimezoneResolver:
    def resolve_media_timezone(self, media: Media, home: Optional[Home]) -> tzinfo:
        if media.timezone_offset_min is not None:
            return create_timezone_from_offset(media.timezone_offset_min)

        if media.location is not None:
            zone = load_zone(media.location.timezone)
            if zone is not None:
                return zone

        return self.home_zone(home) or timezone.utc

    def media_vote(self, media: Media, home: Optional[Home]) -> Tuple[tzinfo, Optional[int], Optional[str]]:
        """Resolved zone, its offset at capture time in minutes and the named identifier if any."""
        zone = self.resolve_media_timezone(media, home)
        moment = media.moment
        offset = None
        if moment is not None:
            delta = moment.astimezone(zone).utcoffset()
            if delta is not None:
                offset = int(delta.total_seconds() // 60)
        identifier = None
        # only geocoded zones vote, the home fallback does not
        if isinstance(zone, ZoneInfo) and media.location is not None and media.location.timezone == zone.key:
            identifier = zone.key
        return zone, offset, identifier

    def vote(self, offset_votes: Dict[int, int], identifier_votes: Dict[str, int]) -> Tuple[Optional[int], Optional[str]]:
        return plurality_offset(offset_votes), plurality_identifier(identifier_votes)

    def determine_local_timezone_identifier(
        self,
        identifier_votes: Dict[str, int],
        offset: Optional[int],
        home: Optional[Home],
    ) -> str:
        identifier = plurality_identifier(identifier_votes)
        if identifier is not None:
            return identifier
        if offset is not None:
            return format_offset(offset)
        if home is not None and home.timezone:
            return home.timezone
        if home is not None and home.timezone_offset is not None:
            return format_offset(home.timezone_offset)
        return "UTC"

    def resolve_summary_timezone(self, summary: DaySummary, home: Optional[Home]) -> tzinfo:
        zone = load_zone(summary.local_timezone_identifier)
        if zone is not None:
            return zone
        if summary.local_timezone_offset is not None:
            return create_timezone_from_offset(summary.local_timezone_offset)
        return self.home_zone(home) or timezone.utc

    @staticmethod
    def home_zone(home: Optional[Home]) -> Optional[tzinfo]:
        """Named home zone when known, else the fixed home offset."""
        if home is None:
            return None
        zone = load_zone(home.timezone)
        if zone is not None:
            return zone
        if home.timezone_offset is not None:
            return create_timezone_from_offset(home.timezone_offset)
        return None
