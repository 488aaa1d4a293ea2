from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set, Tuple

from curator.models.media import Media


@dataclass(frozen=True)
class Staypoint:
    lat: float
    lon: float
    start: int
    end: int
    dwell: int
    # ids of the fixes the staypoint was built from, empty when unknown
    member_ids: Tuple[str, ...] = field(default=(), compare=False)

    def key(self, date: str) -> str:
        return f"{date}:{self.start}:{self.end}"

    def contains(self, ts: int) -> bool:
        return self.start <= ts <= self.end

    def overlaps(self, start: int, end: int) -> bool:
        return self.start < end and self.end > start

    def includes(self, media: Media) -> bool:
        """Cluster membership when known, otherwise the time span."""
        if self.member_ids:
            return media.id in self.member_ids
        return self.contains(media.timestamp)


@dataclass(frozen=True)
class DominantStaypoint:
    key: str
    staypoint: Staypoint
    member_count: int


class StaypointIndex:
    """Maps GPS members of one day onto the staypoint they were taken at."""

    def __init__(self, date: str, staypoints: Iterable[Staypoint], members: Iterable[Media]):
        self.date = date
        self._keys: Dict[str, str] = {}
        self._counts: Dict[str, int] = {}
        ordered = sorted(staypoints, key=lambda s: s.start)
        for media in members:
            ts = media.timestamp
            if not media.has_gps or ts is None:
                continue
            for staypoint in ordered:
                if staypoint.includes(media):
                    key = staypoint.key(date)
                    self._keys[media.id] = key
                    self._counts[key] = self._counts.get(key, 0) + 1
                    break

    def get(self, media: Media) -> Optional[str]:
        return self._keys.get(media.id)

    @property
    def counts(self) -> Dict[str, int]:
        return dict(self._counts)

    def __len__(self) -> int:
        return len(self._keys)


@dataclass(frozen=True)
class BaseLocation:
    lat: float
    lon: float
    distance_km: float
    source: str


@dataclass(frozen=True)
class DayContext:
    score: float = 0.0
    category: str = "peripheral"
    duration: Optional[int] = None


@dataclass
class DaySummary:
    """Per local calendar day aggregate, filled in by the summary passes."""

    date: str
    weekday: int
    members: List[Media] = field(default_factory=list)
    gps_members: List[Media] = field(default_factory=list)
    is_synthetic: bool = False

    # Timezone
    timezone_offsets: Dict[int, int] = field(default_factory=dict)
    timezone_identifier_votes: Dict[str, int] = field(default_factory=dict)
    local_timezone_offset: Optional[int] = None
    local_timezone_identifier: str = "UTC"

    # POI / country
    country_codes: Set[str] = field(default_factory=set)
    poi_samples: int = 0
    tourism_hits: int = 0
    transport_hits: int = 0
    has_airport_poi: bool = False

    # GPS metrics
    centroid: Optional[Tuple[float, float]] = None
    travel_km: float = 0.0
    max_distance_km: float = 0.0
    avg_distance_km: float = 0.0
    first_gps_media: Optional[Media] = None
    last_gps_media: Optional[Media] = None
    spot_count: int = 0
    spot_dwell_seconds: int = 0
    sufficient_samples: bool = False

    # Staypoints
    staypoints: List[Staypoint] = field(default_factory=list)
    staypoint_index: Optional[StaypointIndex] = None
    staypoint_counts: Dict[str, int] = field(default_factory=dict)
    dominant_staypoints: List[DominantStaypoint] = field(default_factory=list)
    transit_ratio: float = 0.0
    poi_density: float = 0.0

    # Transport
    avg_speed_kmh: float = 0.0
    max_speed_kmh: float = 0.0
    has_high_speed_transit: bool = False

    density_z: float = 0.0

    # Base location and classification
    base_location: Optional[BaseLocation] = None
    base_away: bool = False
    away_by_distance: bool = False
    is_away: bool = False
    is_core: bool = False

    @property
    def photo_count(self) -> int:
        return len(self.members)

    @property
    def tourism_ratio(self) -> float:
        if self.poi_samples == 0:
            return 0.0
        return min(1.0, self.tourism_hits / self.poi_samples)

    @property
    def transport_ratio(self) -> float:
        if self.poi_samples == 0:
            return 0.0
        return min(1.0, self.transport_hits / self.poi_samples)

    @property
    def time_span(self) -> Optional[Tuple[int, int]]:
        stamps = [m.timestamp for m in self.members if m.timestamp is not None]
        if not stamps:
            return None
        return min(stamps), max(stamps)
