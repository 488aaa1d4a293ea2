from dataclasses import dataclass, field
from typing import List, Optional


@dataclass
class HomeCenter:
    lat: float
    lon: float
    radius_km: float
    member_count: int = 0
    dwell_seconds: int = 0
    country: Optional[str] = None
    timezone_offset: Optional[int] = None  # minutes east of UTC
    valid_from: Optional[int] = None
    valid_until: Optional[int] = None

    def is_valid_at(self, ts: Optional[int]) -> bool:
        if ts is None:
            return True
        if self.valid_from is not None and ts < self.valid_from:
            return False
        if self.valid_until is not None and ts > self.valid_until:
            return False
        return True


@dataclass
class Home:
    lat: float
    lon: float
    radius_km: float
    country: Optional[str] = None
    timezone_offset: Optional[int] = None
    centers: List[HomeCenter] = field(default_factory=list)
    timezone: Optional[str] = None  # IANA name, offsets follow the capture date
