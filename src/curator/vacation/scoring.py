import logging
import math
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from curator.config import ScoreConfig
from curator.features import FeatureAvailability, StaticFeatureAvailability
from curator.geo.distance import centroid, distance_km
from curator.geo.timezones import TimezoneResolver
from curator.models.day import DayContext, DaySummary
from curator.models.home import Home
from curator.models.media import Media
from curator.monitoring import MonitoringEmitter, NullMonitoringEmitter, emit_safely
from curator.schema import Centroid, ClusterDraft
from curator.selection import SelectionPolicyProvider, VacationMemberSelector
from curator.vacation.day_context import CATEGORY_CORE
from curator.vacation.runs import anchor_location

logger = logging.getLogger(__name__)

MONITORING_JOB = "vacation_curation"

REJECT_NO_RELIABLE_DAYS = "no_reliable_days"
REJECT_NO_GPS_MEMBERS = "no_gps_members"
REJECT_INSUFFICIENT_MEMBERS = "insufficient_members"
REJECT_INSUFFICIENT_AWAY_DAYS = "insufficient_away_days"
REJECT_NO_CLASSIFICATION = "no_classification"
REJECT_BELOW_SCORE_THRESHOLD = "below_score_threshold"
REJECT_MISSING_CORE_DAYS = "missing_core_days"
REJECT_EMPTY_SELECTION = "empty_selection"

CLASSIFICATION_DAY_TRIP = "day_trip"
CLASSIFICATION_SHORT_TRIP = "short_trip"
CLASSIFICATION_VACATION = "vacation"

SCORE_THRESHOLDS = {
    CLASSIFICATION_VACATION: 7.0,
    CLASSIFICATION_SHORT_TRIP: 5.5,
    CLASSIFICATION_DAY_TRIP: 4.0,
}

SCORE_FALLBACKS = {
    CLASSIFICATION_VACATION: (CLASSIFICATION_VACATION, CLASSIFICATION_SHORT_TRIP, CLASSIFICATION_DAY_TRIP),
    CLASSIFICATION_SHORT_TRIP: (CLASSIFICATION_SHORT_TRIP, CLASSIFICATION_DAY_TRIP),
    CLASSIFICATION_DAY_TRIP: (CLASSIFICATION_DAY_TRIP,),
}

SCORE_WEIGHTS = {
    "quality": 0.28,
    "tourism_ratio": 0.18,
    "away_days_norm": 0.16,
    "max_distance_norm": 0.14,
    "people": 0.10,
    "poi_diversity": 0.08,
    "recency": 0.06,
}

RECENCY_HORIZON_DAYS = 730.0
DISTANCE_SCALE_KM = 400.0
BRIDGE_MAX_PHOTOS = 2
TRANSIT_PENALTY_RATIO = 0.3


def clamp01(value: float) -> float:
    return max(0.0, min(1.0, value))


def sigmoid(value: float) -> float:
    return 1.0 / (1.0 + math.exp(-value))


class VacationScoreCalculator:
    """
    Scores one run of away days and curates its members.

    Runs that do not qualify yield ``None`` and a categorized reason on the
    monitoring emitter; no exception is raised for an unqualified run.
    """

    def __init__(
        self,
        config: Optional[ScoreConfig] = None,
        policy_provider: Optional[SelectionPolicyProvider] = None,
        selector: Optional[VacationMemberSelector] = None,
        monitoring: Optional[MonitoringEmitter] = None,
        features: Optional[FeatureAvailability] = None,
        reference_now: Optional[datetime] = None,
    ):
        self.config = config or ScoreConfig()
        self.policy_provider = policy_provider or SelectionPolicyProvider()
        self.selector = selector or VacationMemberSelector()
        self.monitoring = monitoring or NullMonitoringEmitter()
        self.features = features or StaticFeatureAvailability()
        self.reference_now = reference_now or datetime.now(timezone.utc)

        if self.config.movement_threshold_km <= 0:
            raise ValueError("movement_threshold_km must be > 0")
        if self.config.min_away_days < 1:
            raise ValueError("min_away_days must be >= 1")
        if self.config.min_items_per_day < 1:
            raise ValueError("min_items_per_day must be >= 1")
        if self.config.minimum_member_floor < 0 or self.config.min_members < 0:
            raise ValueError("member floors must be >= 0")

    def build_draft(
        self,
        day_keys: List[str],
        days: Dict[str, DaySummary],
        home: Optional[Home],
        day_context: Optional[Dict[str, DayContext]] = None,
    ) -> Optional[ClusterDraft]:
        if not day_keys:
            return None
        day_context = day_context or {}
        summaries = [days[key] for key in day_keys]

        members = [media for summary in summaries for media in summary.members]
        gps_members = [media for summary in summaries for media in summary.gps_members]
        away = [s for s in summaries if s.is_away and not s.is_synthetic]
        reliable_days = sum(1 for s in away if s.sufficient_samples and s.gps_members)
        base = {"day_count": len(day_keys), "first_day": day_keys[0], "last_day": day_keys[-1]}

        if reliable_days == 0:
            return self._reject(REJECT_NO_RELIABLE_DAYS, base)
        if not gps_members:
            return self._reject(REJECT_NO_GPS_MEMBERS, base)

        away_days = len(away)
        bridged_days = self.count_bridged_days(summaries)
        effective_away_days = away_days + bridged_days
        nights = max(0, effective_away_days - 1)

        member_floor = self.minimum_member_floor(max(1, away_days))
        if len(members) < member_floor:
            return self._reject(
                REJECT_INSUFFICIENT_MEMBERS,
                {**base, "raw_member_count": len(members), "minimum_member_floor": member_floor},
            )

        if effective_away_days < self.config.min_away_days:
            return self._reject(
                REJECT_INSUFFICIENT_AWAY_DAYS,
                {**base, "raw_away_days": away_days, "effective_away_days": effective_away_days},
            )

        center = centroid(gps_members)
        centroid_distance = distance_km(home.lat, home.lon, center[0], center[1]) if home is not None else 0.0
        max_distance = max(s.max_distance_km for s in summaries)
        distance_value = max(centroid_distance, max_distance)

        multi_spot_days = sum(1 for s in away if s.spot_count >= 2)
        move_days = sum(1 for s in away if s.travel_km > self.config.movement_threshold_km)
        transit_days = sum(1 for s in summaries if s.has_high_speed_transit)
        transit_ratio = transit_days / len(day_keys)
        tourism_hits = sum(s.tourism_hits for s in away)
        poi_samples = sum(s.poi_samples for s in away)
        tourism_ratio = min(1.0, tourism_hits / poi_samples) if poi_samples else 0.0
        density_z = sum(s.density_z for s in away) / len(away) if away else 0.0

        quality = (
            clamp01(reliable_days / len(day_keys))
            + sigmoid(density_z)
            + clamp01(multi_spot_days / max(1, effective_away_days))
        ) / 3.0
        components = {
            "quality": quality,
            "tourism_ratio": tourism_ratio,
            "away_days_norm": clamp01(effective_away_days / 5.0),
            "max_distance_norm": self.normalize_distance(distance_value),
            "people": self.people_share(members),
            "poi_diversity": self.poi_diversity(members),
            "recency": self.recency_score(members),
        }
        transit_penalty = 0.0
        if transit_ratio > TRANSIT_PENALTY_RATIO:
            transit_penalty = clamp01((transit_ratio - TRANSIT_PENALTY_RATIO) / (1.0 - TRANSIT_PENALTY_RATIO))
        weighted = sum(SCORE_WEIGHTS[name] * value for name, value in components.items())
        score = clamp01(weighted - transit_penalty) * 10.0

        base_classification = self.classify_trip(effective_away_days, away_days, nights, distance_value)
        if base_classification is None:
            return self._reject(REJECT_NO_CLASSIFICATION, {**base, "effective_away_days": effective_away_days})
        if (
            base_classification == CLASSIFICATION_SHORT_TRIP
            and away_days >= self.config.min_away_days
            and multi_spot_days >= 2
        ):
            base_classification = CLASSIFICATION_VACATION

        classification = self.apply_score_thresholds(base_classification, score)
        if classification is None:
            return self._reject(
                REJECT_BELOW_SCORE_THRESHOLD,
                {**base, "score": round(score, 2), "classification": base_classification},
            )
        if (
            classification == CLASSIFICATION_SHORT_TRIP
            and base_classification == CLASSIFICATION_VACATION
            and len(day_keys) <= 2
            and away_days >= self.config.min_away_days
            and multi_spot_days >= 2
        ):
            classification = CLASSIFICATION_VACATION

        categories = self.day_categories(day_keys, days, day_context)
        core_days = sum(1 for category in categories.values() if category == CATEGORY_CORE)
        if core_days == 0:
            return self._reject(REJECT_MISSING_CORE_DAYS, {**base, "day_categories": categories})

        storyline = self.resolve_storyline(classification, move_days, transit_ratio, multi_spot_days)
        policy = self.policy_provider.for_run(
            self.config.algorithm,
            storyline,
            len(day_keys),
            face_detection_available=self.features.is_face_detection_available(),
        ).with_day_context(day_context)

        emit_safely(
            self.monitoring,
            MONITORING_JOB,
            "selection_start",
            {
                **base,
                "pre_count": len(members),
                "away_days": effective_away_days,
                "raw_away_days": away_days,
                "bridged_days": bridged_days,
                "storyline": storyline,
                "selection_profile": policy.profile_key,
                "selection_target_total": policy.target_total,
                "selection_minimum_total": policy.minimum_total,
                "minimum_member_floor": member_floor,
            },
        )

        run_days = {key: days[key] for key in day_keys}
        result = self.selector.select(run_days, home, policy)
        telemetry = result.telemetry
        run_metrics = self.run_metrics(len(members), result.members, telemetry)

        emit_safely(
            self.monitoring,
            MONITORING_JOB,
            "selection_completed",
            {
                **base,
                "pre_count": len(members),
                "post_count": len(result.members),
                "dropped_total": max(0, len(members) - len(result.members)),
                "near_duplicates_removed": telemetry.get("near_duplicate_blocked", 0),
                "near_duplicates_replaced": telemetry.get("near_duplicate_replacements", 0),
                "spacing_rejections": telemetry.get("spacing_rejections", 0),
                "average_spacing_seconds": run_metrics["average_spacing_seconds"],
                "storyline": storyline,
            },
        )

        if not result.members:
            return self._reject(REJECT_EMPTY_SELECTION, {**base, "pre_count": len(members)})

        countries = sorted({code for s in summaries for code in s.country_codes})
        timezones = sorted({offset for s in summaries for offset in s.timezone_offsets})
        params: Dict[str, Any] = {
            "score": round(score, 2),
            "score_components": {name: round(value, 3) for name, value in components.items()},
            "classification": classification,
            "storyline": storyline,
            "group": "travel_and_places",
            "away_days": effective_away_days,
            "raw_away_days": away_days,
            "bridged_away_days": bridged_days,
            "nights": nights,
            "total_days": len(day_keys),
            "raw_member_count": len(members),
            "minimum_member_floor": member_floor,
            "time_range": self.time_range(members),
            "countries": countries,
            "timezones": timezones,
            "country_change": self._changed(countries, home.country if home else None),
            "timezone_change": self._timezone_changed(timezones, home, members),
            "max_distance_km": round(centroid_distance, 3),
            "max_observed_distance_km": round(max_distance, 3),
            "avg_distance_km": round(sum(s.avg_distance_km for s in summaries) / len(summaries), 3),
            "tourism_ratio": round(tourism_ratio, 3),
            "move_days": move_days,
            "transit_days": transit_days,
            "transit_ratio": round(transit_ratio, 3),
            "transit_penalty": round(transit_penalty, 3),
            "spot_cluster_days": multi_spot_days,
            "airport_transfer": summaries[0].has_airport_poi or summaries[-1].has_airport_poi,
            "route": self.route_waypoints(summaries),
            "day_context": {
                key: {"category": categories[key], **self._context_params(day_context.get(key))} for key in day_keys
            },
            "member_selection": telemetry,
            "run_metrics": run_metrics,
            "meta": {"selection_profile": policy.snapshot(), "run_metrics": run_metrics},
        }

        draft = ClusterDraft(
            algorithm=self.config.algorithm,
            storyline=storyline,
            params=params,
            centroid=Centroid(lat=center[0], lon=center[1]),
            members=[media.id for media in result.members],
        )
        logger.info(
            f"Vacation draft {day_keys[0]}..{day_keys[-1]}: {classification} score={params['score']} "
            f"members={len(draft.members)}/{len(members)}"
        )
        return draft

    def count_bridged_days(self, summaries: List[DaySummary]) -> int:
        """Lean home-side days directly next to an away day count towards the trip."""
        bridged = 0
        for index, summary in enumerate(summaries):
            if summary.is_away or summary.is_synthetic or summary.photo_count > BRIDGE_MAX_PHOTOS:
                continue
            neighbours = summaries[max(0, index - 1) : index] + summaries[index + 1 : index + 2]
            if any(n.is_away and not n.is_synthetic for n in neighbours):
                bridged += 1
        return bridged

    def minimum_member_floor(self, away_days: int) -> int:
        per_day = self.config.min_items_per_day
        if away_days <= 2:
            floor = math.ceil(per_day * max(1, away_days) * 0.5)
        elif away_days <= 4:
            floor = math.ceil(per_day * away_days * 0.7)
        else:
            floor = math.ceil(per_day * away_days * 0.6)
        floor = max(self.config.minimum_member_floor, int(floor))
        if self.config.min_members > 0:
            floor = max(floor, self.config.min_members)
        return floor

    @staticmethod
    def classify_trip(effective_away_days: int, raw_away_days: int, nights: int, distance: float) -> Optional[str]:
        if effective_away_days <= 0:
            return None
        if effective_away_days <= 1 or nights == 0:
            return CLASSIFICATION_DAY_TRIP
        if raw_away_days <= 2 and effective_away_days <= 3:
            return CLASSIFICATION_SHORT_TRIP
        if nights >= 4 or effective_away_days >= 5:
            return CLASSIFICATION_VACATION
        if distance >= 1500.0 and nights >= 2:
            return CLASSIFICATION_VACATION
        if nights <= 3:
            return CLASSIFICATION_SHORT_TRIP
        return CLASSIFICATION_VACATION

    @staticmethod
    def apply_score_thresholds(classification: str, score: float) -> Optional[str]:
        for candidate in SCORE_FALLBACKS.get(classification, ()):
            if score >= SCORE_THRESHOLDS[candidate]:
                return candidate
        return None

    @staticmethod
    def resolve_storyline(classification: str, move_days: int, transit_ratio: float, multi_spot_days: int) -> str:
        if classification in (CLASSIFICATION_DAY_TRIP, CLASSIFICATION_SHORT_TRIP):
            return f"vacation.{classification}"
        if transit_ratio >= 0.45 and move_days >= 2:
            return "vacation.transit"
        if multi_spot_days >= 5:
            return "vacation.explorer"
        return "vacation.extended"

    @staticmethod
    def day_categories(
        day_keys: List[str], days: Dict[str, DaySummary], day_context: Dict[str, DayContext]
    ) -> Dict[str, str]:
        categories = {}
        for key in day_keys:
            context = day_context.get(key)
            if context is not None:
                categories[key] = context.category
            else:
                categories[key] = CATEGORY_CORE if days[key].is_core else "peripheral"
        return categories

    @staticmethod
    def normalize_distance(distance: float) -> float:
        if distance <= 0:
            return 0.0
        return clamp01(1.0 - math.exp(-distance / DISTANCE_SCALE_KM))

    @staticmethod
    def people_share(members: List[Media]) -> float:
        with_faces = [m for m in members if m.has_faces]
        if not with_faces:
            return 0.0
        group = sum(1 for m in with_faces if len(m.persons) != 1)
        return group / len(with_faces)

    @staticmethod
    def poi_diversity(members: List[Media]) -> float:
        kinds = set()
        for media in members:
            if media.location is None:
                continue
            kind = (media.location.type or media.location.category or "").strip().lower()
            if kind:
                kinds.add(kind)
        return min(1.0, len(kinds) / 6.0)

    def recency_score(self, members: List[Media]) -> float:
        stamps = [m.timestamp for m in members if m.timestamp is not None]
        if not stamps:
            return 0.0
        age_days = (self.reference_now.timestamp() - max(stamps)) / 86400.0
        if age_days <= 0:
            return 1.0
        return max(0.0, 1.0 - age_days / RECENCY_HORIZON_DAYS)

    def route_waypoints(self, summaries: List[DaySummary]) -> List[Dict[str, Any]]:
        route: List[Dict[str, Any]] = []
        for summary in summaries:
            point = anchor_location(summary)
            if point is None:
                continue
            if route and distance_km(route[-1]["lat"], route[-1]["lon"], point[0], point[1]) <= self.config.waypoint_merge_km:
                route[-1]["days"].append(summary.date)
                continue
            route.append({"lat": round(point[0], 6), "lon": round(point[1], 6), "days": [summary.date]})
        return route

    @staticmethod
    def time_range(members: List[Media]) -> Optional[Dict[str, int]]:
        stamps = [m.timestamp for m in members if m.timestamp is not None]
        if not stamps:
            return None
        return {"from": min(stamps), "to": max(stamps)}

    @staticmethod
    def run_metrics(pre_count: int, selected: List[Media], telemetry: Dict[str, Any]) -> Dict[str, Any]:
        stamps = sorted(m.timestamp for m in selected if m.timestamp is not None)
        gaps = [b - a for a, b in zip(stamps, stamps[1:])]
        relaxations: List[str] = []
        for change in telemetry.get("relaxations", []):
            if change["rule"] not in relaxations:
                relaxations.append(change["rule"])
        return {
            "pre_count": pre_count,
            "post_count": len(selected),
            "dedupe_rate": round(telemetry.get("near_duplicate_blocked", 0) / pre_count, 4) if pre_count else 0.0,
            "average_spacing_seconds": round(sum(gaps) / len(gaps), 1) if gaps else 0.0,
            "relaxations_applied": relaxations,
        }

    @staticmethod
    def _changed(values: List, home_value) -> bool:
        if not values:
            return False
        return len(values) > 1 or (home_value is not None and home_value not in values)

    @staticmethod
    def _timezone_changed(offsets: List[int], home: Optional[Home], members: List[Media]) -> bool:
        if not offsets:
            return False
        if len(offsets) > 1:
            return True
        zone = TimezoneResolver.home_zone(home)
        if zone is None:
            return False
        home_offsets = {
            int(m.moment.astimezone(zone).utcoffset().total_seconds() // 60) for m in members if m.moment is not None
        }
        return bool(home_offsets) and offsets[0] not in home_offsets

    @staticmethod
    def _context_params(context: Optional[DayContext]) -> Dict[str, Any]:
        if context is None:
            return {}
        return {"score": context.score, "duration": context.duration}

    def _reject(self, reason: str, context: Dict[str, Any]) -> None:
        logger.debug(f"Vacation run rejected: {reason}")
        emit_safely(self.monitoring, MONITORING_JOB, reason, context)
        return None
