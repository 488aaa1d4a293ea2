import logging
import time
from datetime import datetime
from typing import List, Optional, Sequence

from core.config import Settings, configs
from curator.config import CurationConfig, HomeConfig
from curator.features import StaticFeatureAvailability
from curator.geo.home import HomeLocator
from curator.models.media import Media
from curator.monitoring import LoggingMonitoringEmitter, NullMonitoringEmitter
from curator.schema import ClusterDraft
from curator.selection import SelectionPolicyProvider, VacationMemberSelector
from curator.vacation.day_context import DayContextBuilder
from curator.vacation.runs import TransportDayExtender, VacationRunDetector
from curator.vacation.scoring import VacationScoreCalculator
from curator.vacation.summary.builder import DaySummaryBuilder

logger = logging.getLogger(__name__)


class VacationCurationPipeline:
    def __init__(
        self,
        home_locator: HomeLocator,
        summary_builder: DaySummaryBuilder,
        run_detector: VacationRunDetector,
        context_builder: DayContextBuilder,
        score_calculator: VacationScoreCalculator,
    ):
        self.home_locator = home_locator
        self.summary_builder = summary_builder
        self.run_detector = run_detector
        self.context_builder = context_builder
        self.score_calculator = score_calculator

    @classmethod
    def create(
        cls,
        config: Optional[CurationConfig] = None,
        settings: Settings = configs,
        reference_now: Optional[datetime] = None,
    ) -> "VacationCurationPipeline":
        """Wires the default collaborators from the curation config and the environment settings."""
        config = config or CurationConfig(home=HomeConfig.from_settings(settings))

        provider = SelectionPolicyProvider(
            default_profile=settings.SELECTION_DEFAULT_PROFILE,
            important_person_ids=settings.IMPORTANT_PERSON_IDS,
        )
        monitoring = LoggingMonitoringEmitter() if settings.MONITORING_ENABLED else NullMonitoringEmitter()

        return cls(
            home_locator=HomeLocator(config.home),
            summary_builder=DaySummaryBuilder(config),
            run_detector=VacationRunDetector(config.runs, TransportDayExtender(config.transport)),
            context_builder=DayContextBuilder(),
            score_calculator=VacationScoreCalculator(
                config.score,
                policy_provider=provider,
                selector=VacationMemberSelector(),
                monitoring=monitoring,
                features=StaticFeatureAvailability.from_settings(settings),
                reference_now=reference_now,
            ),
        )

    def run(self, media: Sequence[Media]) -> List[ClusterDraft]:
        start = time.time()
        logger.info(f"Vacation curation started for {len(media)} media.")

        home = self.home_locator.determine_home(media)
        if home is None:
            logger.warning("No home location could be resolved. Skipping vacation curation.")
            return []
        logger.info(f"Home resolved at ({home.lat:.4f}, {home.lon:.4f}) with {len(home.centers)} centers.")

        days = self.summary_builder.build_day_summaries(media, home)
        runs = self.run_detector.detect_vacation_runs(days, home)

        drafts = []
        for run in runs:
            day_context = self.context_builder.build(run, days)
            draft = self.score_calculator.build_draft(run, days, home, day_context)
            if draft is not None:
                drafts.append(draft)

        logger.info(
            f"Vacation curation finished: {len(drafts)}/{len(runs)} runs kept "
            f"in {time.time() - start:.2f} seconds."
        )
        return drafts
