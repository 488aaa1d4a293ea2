import logging
from typing import Collection, Dict, List, Optional, Tuple

from curator.config import RunDetectionConfig, TransportExtensionConfig
from curator.geo.distance import distance_km
from curator.geo.home import HomeBoundaryHelper
from curator.models.day import DaySummary
from curator.models.home import Home
from curator.vacation.summary.initialization import parse_day

logger = logging.getLogger(__name__)


def are_sequential_days(previous: str, following: str, days: Dict[str, DaySummary]) -> bool:
    """Next calendar day, or separated only by placeholder days."""
    gap = (parse_day(following) - parse_day(previous)).days
    if gap == 1:
        return True
    if gap <= 0:
        return False
    between = [k for k in days if previous < k < following]
    return len(between) == gap - 1 and all(days[k].is_synthetic for k in between)


def anchor_location(summary: DaySummary) -> Optional[Tuple[float, float]]:
    if summary.base_location is not None:
        return summary.base_location.lat, summary.base_location.lon
    if summary.dominant_staypoints:
        staypoint = summary.dominant_staypoints[0].staypoint
        return staypoint.lat, staypoint.lon
    return summary.centroid


class TransportDayExtender:
    """
    Pulls the lean travel day before or after a run into the run.

    Airport days are admitted directly. Any other adjacent day must be lean
    (few photos, no dominant staypoint) and either lie far from the run's
    anchor day or carry a transit signal of its own.
    """

    def __init__(self, config: Optional[TransportExtensionConfig] = None):
        self.config = config or TransportExtensionConfig()

    def extend(
        self,
        run: List[str],
        ordered_keys: List[str],
        days: Dict[str, DaySummary],
        home: Home,
        claimed: Collection[str] = (),
    ) -> List[str]:
        if not run:
            return run

        extended = list(run)
        index_by_key = {key: i for i, key in enumerate(ordered_keys)}

        first = index_by_key.get(run[0])
        if first is not None and first > 0:
            candidate = ordered_keys[first - 1]
            if self._admits(candidate, run[0], extended, days, claimed) and are_sequential_days(candidate, run[0], days):
                extended.insert(0, candidate)
                logger.debug(f"Extended run {run[0]}..{run[-1]} backwards with {candidate}")

        last = index_by_key.get(run[-1])
        if last is not None and last + 1 < len(ordered_keys):
            candidate = ordered_keys[last + 1]
            if self._admits(candidate, run[-1], extended, days, claimed) and are_sequential_days(run[-1], candidate, days):
                extended.append(candidate)
                logger.debug(f"Extended run {run[0]}..{run[-1]} forwards with {candidate}")

        return extended

    def _admits(
        self,
        candidate_key: str,
        anchor_key: str,
        run: List[str],
        days: Dict[str, DaySummary],
        claimed: Collection[str],
    ) -> bool:
        if candidate_key in run or candidate_key in claimed:
            return False
        candidate = days[candidate_key]
        if candidate.is_synthetic:
            return False
        if candidate.has_airport_poi:
            return True
        if not self.is_lean(candidate):
            return False
        return self.has_transit_signal(candidate) or self._is_far_from_anchor(candidate, days[anchor_key])

    def is_lean(self, summary: DaySummary) -> bool:
        return not summary.dominant_staypoints and summary.photo_count <= self.config.lean_photo_threshold

    def has_transit_signal(self, summary: DaySummary) -> bool:
        if summary.has_high_speed_transit:
            return True
        if summary.max_speed_kmh >= self.config.speed_threshold_kmh:
            return True
        return bool(summary.gps_members) and summary.transit_ratio >= self.config.transit_ratio_threshold

    def _is_far_from_anchor(self, candidate: DaySummary, anchor: DaySummary) -> bool:
        anchor_point = anchor_location(anchor)
        if anchor_point is None or not candidate.gps_members:
            return False
        return any(
            distance_km(m.lat, m.lon, anchor_point[0], anchor_point[1]) >= self.config.min_transit_distance_km
            for m in candidate.gps_members
        )


class VacationRunDetector:
    """Groups chronologically consecutive away days into candidate runs."""

    def __init__(
        self,
        config: Optional[RunDetectionConfig] = None,
        extender: Optional[TransportDayExtender] = None,
    ):
        self.config = config or RunDetectionConfig()
        self.extender = extender or TransportDayExtender()

    def detect_vacation_runs(self, days: Dict[str, DaySummary], home: Home) -> List[List[str]]:
        if not days:
            return []

        keys = sorted(days.keys())
        radius = HomeBoundaryHelper.primary_radius(home)

        candidates = {key: self._is_candidate(days[key]) for key in keys}
        self._promote_transit_streaks(keys, days, candidates, radius)
        self._bridge_low_sample_days(keys, days, candidates)
        self._veto_home_staypoints(keys, days, candidates, home)

        runs = self._collect_runs(keys, days, candidates, home)
        logger.info(f"Detected {len(runs)} vacation runs over {len(keys)} days")
        return runs

    def _is_candidate(self, summary: DaySummary) -> bool:
        if summary.is_away:
            return True
        if not summary.gps_members:
            return False
        useful = summary.sufficient_samples or summary.photo_count >= 2
        return useful and summary.max_distance_km > self.config.min_away_distance_km

    def _is_transit_heavy(self, summary: DaySummary) -> bool:
        if not summary.gps_members:
            return False
        return summary.has_high_speed_transit or summary.transit_ratio >= self.config.transit_ratio_threshold

    def _promote_transit_streaks(
        self,
        keys: List[str],
        days: Dict[str, DaySummary],
        candidates: Dict[str, bool],
        radius: float,
    ) -> None:
        streak: List[str] = []
        for key in keys + [None]:
            if key is not None and self._is_transit_heavy(days[key]) and (
                not streak or are_sequential_days(streak[-1], key, days)
            ):
                streak.append(key)
                continue

            if len(streak) >= self.config.min_transit_streak and any(days[k].max_distance_km > radius for k in streak):
                for streak_key in streak:
                    candidates[streak_key] = True
            streak = [key] if key is not None and self._is_transit_heavy(days[key]) else []

    def _bridge_low_sample_days(self, keys: List[str], days: Dict[str, DaySummary], candidates: Dict[str, bool]) -> None:
        snapshot = dict(candidates)
        for position in range(1, len(keys) - 1):
            key = keys[position]
            if snapshot[key]:
                continue
            summary = days[key]
            if summary.photo_count >= self.config.min_items_per_day and not summary.is_synthetic:
                continue
            if snapshot[keys[position - 1]] and snapshot[keys[position + 1]]:
                candidates[key] = True

    @staticmethod
    def _veto_home_staypoints(
        keys: List[str],
        days: Dict[str, DaySummary],
        candidates: Dict[str, bool],
        home: Home,
    ) -> None:
        for key in keys:
            summary = days[key]
            if not candidates[key] or summary.base_away or not summary.dominant_staypoints:
                continue
            staypoint = summary.dominant_staypoints[0].staypoint
            if not HomeBoundaryHelper.is_beyond_home(home, staypoint.lat, staypoint.lon, staypoint.start):
                logger.debug(f"Day {key} vetoed: dominant staypoint inside home radius")
                candidates[key] = False

    def _collect_runs(
        self,
        keys: List[str],
        days: Dict[str, DaySummary],
        candidates: Dict[str, bool],
        home: Home,
    ) -> List[List[str]]:
        raw_runs: List[List[str]] = []
        run: List[str] = []
        for key in keys:
            if not candidates[key]:
                if run:
                    raw_runs.append(run)
                run = []
                continue
            if run and not are_sequential_days(run[-1], key, days):
                raw_runs.append(run)
                run = []
            run.append(key)
        if run:
            raw_runs.append(run)

        # Trim placeholder days from the edges, they only bridge inside a run
        trimmed = []
        for candidate_run in raw_runs:
            while candidate_run and days[candidate_run[0]].is_synthetic:
                candidate_run = candidate_run[1:]
            while candidate_run and days[candidate_run[-1]].is_synthetic:
                candidate_run = candidate_run[:-1]
            if candidate_run:
                trimmed.append(candidate_run)

        claimed = {key for r in trimmed for key in r}
        runs = []
        for candidate_run in trimmed:
            extended = self.extender.extend(candidate_run, keys, days, home, claimed)
            claimed.update(extended)
            runs.append(extended)
        return runs
