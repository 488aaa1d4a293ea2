import logging
from typing import Dict, List, Optional, Sequence

from curator.config import CurationConfig
from curator.geo.base_location import BaseLocationResolver
from curator.geo.dbscan import GeoDbscanHelper
from curator.geo.poi import PoiClassifier
from curator.geo.staypoints import StaypointDetector
from curator.geo.timezones import TimezoneResolver
from curator.models.day import DaySummary
from curator.models.home import Home
from curator.models.media import Media
from curator.vacation.summary.base import DaySummaryStage
from curator.vacation.summary.classification import AwayFlagStage, BaseLocationStage
from curator.vacation.summary.initialization import InitializationStage
from curator.vacation.summary.metrics import DensityStage, GpsMetricsStage, StaypointStage, TransportSpeedStage

logger = logging.getLogger(__name__)


class DaySummaryBuilder:
    """
    Builds one aggregate per local calendar day.

    The day map is fully materialized by the metric passes before the base
    location pass runs, since a day's overnight base depends on the first GPS
    fix of the following day.
    """

    def __init__(
        self,
        config: Optional[CurationConfig] = None,
        initialization: Optional[InitializationStage] = None,
        stages: Optional[List[DaySummaryStage]] = None,
    ):
        self.config = config or CurationConfig()
        timezones = TimezoneResolver()
        dbscan = GeoDbscanHelper()

        self.initialization = initialization or InitializationStage(
            self.config.day_summary, timezones, PoiClassifier()
        )
        self.stages = stages if stages is not None else [
            GpsMetricsStage(self.config.day_summary, dbscan),
            StaypointStage(self.config.day_summary, StaypointDetector(self.config.staypoints, dbscan)),
            TransportSpeedStage(self.config.day_summary),
            DensityStage(),
            BaseLocationStage(BaseLocationResolver(self.config.base_location), timezones),
            AwayFlagStage(self.config.day_summary, timezones),
        ]

    def build_day_summaries(self, media: Sequence[Media], home: Home) -> Dict[str, DaySummary]:
        days = self.initialization.build(media, home)
        if not days:
            return days

        for stage in self.stages:
            stage.process(days, home)
            logger.debug(f"Day summary stage '{stage.name}' complete")

        synthetic = sum(1 for s in days.values() if s.is_synthetic)
        logger.info(f"Built {len(days)} day summaries ({synthetic} placeholders) from {len(media)} media")
        return days
