from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional


@dataclass
class Poi:
    category_key: Optional[str] = None
    category_value: Optional[str] = None
    tags: Dict[str, str] = field(default_factory=dict)


@dataclass
class Location:
    country_code: Optional[str] = None
    category: Optional[str] = None
    type: Optional[str] = None
    timezone: Optional[str] = None  # IANA name from reverse geocoding
    pois: List[Poi] = field(default_factory=list)


@dataclass
class Media:
    """Enriched photo/video record handed over by the indexing side."""

    id: str
    taken_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    lat: Optional[float] = None
    lon: Optional[float] = None
    quality_score: Optional[float] = None
    phash: Optional[str] = None  # hex encoded perceptual hash
    persons: List[str] = field(default_factory=list)
    is_video: bool = False
    faces_count: int = 0
    timezone_offset_min: Optional[int] = None  # EXIF OffsetTimeOriginal in minutes
    location: Optional[Location] = None
    device: Optional[str] = None
    burst_id: Optional[str] = None
    burst_representative: Optional[bool] = None

    @property
    def has_gps(self) -> bool:
        return self.lat is not None and self.lon is not None

    @property
    def has_faces(self) -> bool:
        return self.faces_count > 0

    @property
    def moment(self) -> Optional[datetime]:
        value = self.taken_at or self.created_at
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @property
    def timestamp(self) -> Optional[int]:
        moment = self.moment
        if moment is None:
            return None
        return int(moment.timestamp())
