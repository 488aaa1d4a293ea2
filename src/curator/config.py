from dataclasses import dataclass, field
from typing import Optional

from core.config import Settings


@dataclass
class StaypointConfig:
    radius_km: float = 0.25
    min_dwell_minutes: int = 20
    # DBSCAN fallback, looser than the sequential pass
    fallback_radius_km: float = 0.35
    fallback_min_samples: int = 3


@dataclass
class DaySummaryConfig:
    min_items_per_day: int = 3
    max_plausible_speed_kmh: float = 1000.0
    spot_radius_km: float = 0.25
    spot_min_samples: int = 3
    transport_min_leg_seconds: int = 300
    transport_min_leg_km: float = 10.0
    high_speed_kmh: float = 100.0
    high_speed_travel_km: float = 150.0
    synthetic_gap_max_days: int = 3
    dominant_staypoint_limit: int = 3
    next_day_staypoint_radius_factor: float = 1.5
    night_start_hour: int = 22
    night_end_hour: int = 6
    core_transit_ratio: float = 0.6


@dataclass
class BaseLocationConfig:
    overnight_start_hour: int = 18
    overnight_window_hours: int = 16
    sleep_proxy_evening_hour: int = 18
    sleep_proxy_morning_hour: int = 10
    sleep_proxy_max_pair_km: float = 2.0


@dataclass
class RunDetectionConfig:
    min_away_distance_km: float = 140.0
    min_items_per_day: int = 4
    transit_ratio_threshold: float = 0.6
    min_transit_streak: int = 2


@dataclass
class TransportExtensionConfig:
    transit_ratio_threshold: float = 0.6
    speed_threshold_kmh: float = 90.0
    lean_photo_threshold: int = 2
    min_transit_distance_km: float = 50.0


@dataclass
class ScoreConfig:
    movement_threshold_km: float = 35.0
    min_away_days: int = 2
    min_items_per_day: int = 4
    minimum_member_floor: int = 60
    min_members: int = 0
    waypoint_merge_km: float = 1.0
    algorithm: str = "vacation"


@dataclass
class HomeConfig:
    timezone: str = "Europe/Berlin"
    default_radius_km: float = 15.0
    lat: Optional[float] = None
    lon: Optional[float] = None
    radius_km: Optional[float] = None
    max_centers: int = 3
    fallback_radius_scale: float = 1.5
    cluster_radius_km: float = 1.0
    cluster_min_samples: int = 3
    min_secondary_dwell_days: int = 30

    @classmethod
    def from_settings(cls, settings: Settings) -> "HomeConfig":
        return cls(
            timezone=settings.HOME_TIMEZONE,
            default_radius_km=settings.DEFAULT_HOME_RADIUS_KM,
            lat=settings.HOME_LAT,
            lon=settings.HOME_LON,
            radius_km=settings.HOME_RADIUS_KM,
            max_centers=settings.MAX_HOME_CENTERS,
        )


@dataclass
class CurationConfig:
    staypoints: StaypointConfig = field(default_factory=StaypointConfig)
    day_summary: DaySummaryConfig = field(default_factory=DaySummaryConfig)
    base_location: BaseLocationConfig = field(default_factory=BaseLocationConfig)
    runs: RunDetectionConfig = field(default_factory=RunDetectionConfig)
    transport: TransportExtensionConfig = field(default_factory=TransportExtensionConfig)
    score: ScoreConfig = field(default_factory=ScoreConfig)
    home: HomeConfig = field(default_factory=HomeConfig)
