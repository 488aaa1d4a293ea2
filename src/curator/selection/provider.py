import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional

from curator.selection.policy import SelectionPolicy

logger = logging.getLogger(__name__)

DEFAULT_PROFILES: Dict[str, Dict[str, Any]] = {
    "vacation": {
        "target_total": 40,
        "minimum_total": 24,
        "max_per_day": 8,
        "time_slot_hours": 3,
        "min_spacing_seconds": 1200,
        "phash_min_hamming": 9,
        "max_per_staypoint": 3,
        "relaxed_max_per_staypoint": 5,
        "quality_floor": 0.3,
        "video_bonus": 0.15,
        "face_bonus": 0.1,
        "selfie_penalty": 0.1,
    },
    "vacation_short": {
        "target_total": 24,
        "minimum_total": 12,
        "max_per_day": 10,
        "time_slot_hours": 2,
        "min_spacing_seconds": 900,
        "phash_min_hamming": 9,
        "max_per_staypoint": 3,
        "relaxed_max_per_staypoint": 4,
        "quality_floor": 0.3,
        "video_bonus": 0.15,
        "face_bonus": 0.1,
        "selfie_penalty": 0.1,
    },
    "vacation_transit": {
        "target_total": 36,
        "minimum_total": 20,
        "max_per_day": 6,
        "time_slot_hours": 3,
        "min_spacing_seconds": 1800,
        "phash_min_hamming": 10,
        "max_per_staypoint": 2,
        "relaxed_max_per_staypoint": 4,
        "quality_floor": 0.3,
        "video_bonus": 0.1,
        "face_bonus": 0.1,
        "selfie_penalty": 0.1,
    },
}

DEFAULT_ALGORITHM_PROFILES: Dict[str, Dict[str, str]] = {
    "vacation": {
        "default": "vacation",
        "day_trip": "vacation_short",
        "short_trip": "vacation_short",
        "weekend": "vacation_short",
        "transit": "vacation_transit",
    },
}

# run days -> (target_total, minimum_total)
DEFAULT_RUN_LENGTH_CONSTRAINTS: Dict[str, Dict[str, int]] = {
    "short": {"max_days": 2, "target_total": 24, "minimum_total": 12},
    "medium": {"max_days": 7, "target_total": 40, "minimum_total": 24},
    "long": {"max_days": 10_000, "target_total": 60, "minimum_total": 36},
}


class SelectionPolicyProvider:
    """Resolves the selection policy for an algorithm, storyline and run length."""

    def __init__(
        self,
        profiles: Optional[Mapping[str, Mapping[str, Any]]] = None,
        default_profile: str = "vacation",
        algorithm_profiles: Optional[Mapping[str, Mapping[str, str]]] = None,
        run_length_constraints: Optional[Mapping[str, Mapping[str, int]]] = None,
        overrides: Optional[Mapping[str, Any]] = None,
        important_person_ids: Iterable[str] = (),
    ):
        self.profiles = {k: dict(v) for k, v in (profiles or DEFAULT_PROFILES).items()}
        self.default_profile = default_profile
        self.algorithm_profiles = {k: dict(v) for k, v in (algorithm_profiles or DEFAULT_ALGORITHM_PROFILES).items()}
        self.run_length_constraints = sorted(
            (run_length_constraints or DEFAULT_RUN_LENGTH_CONSTRAINTS).values(), key=lambda c: c["max_days"]
        )
        self.overrides = dict(overrides or {})
        self.important_person_ids = tuple(important_person_ids)

        if default_profile not in self.profiles:
            raise ValueError(f"Unknown default selection profile: {default_profile}")

    def resolve_profile_key(self, algorithm: str, storyline: Optional[str] = None) -> str:
        mapping = self.algorithm_profiles.get(algorithm, {})
        for candidate in self._storyline_candidates(storyline):
            if candidate in mapping:
                return mapping[candidate]
        return mapping.get("default", self.default_profile)

    def for_run(
        self,
        algorithm: str,
        storyline: Optional[str],
        run_days: int,
        face_detection_available: bool = True,
        overrides: Optional[Mapping[str, Any]] = None,
    ) -> SelectionPolicy:
        key = self.resolve_profile_key(algorithm, storyline)
        values = dict(self.create_profile_values(key))

        constraint = self._run_length_constraint(run_days)
        if constraint is not None:
            values["target_total"] = constraint["target_total"]
            values["minimum_total"] = constraint["minimum_total"]

        values.update(self.overrides)
        values.update(overrides or {})
        values = self._finalize(values)

        policy = SelectionPolicy(profile_key=key, **values)
        if self.important_person_ids:
            policy = policy.with_important_persons(self.important_person_ids)
        policy = policy.for_face_detection(face_detection_available)

        logger.debug(
            f"Selection policy '{key}' for {algorithm}/{storyline} ({run_days} days): "
            f"target={policy.target_total} minimum={policy.minimum_total}"
        )
        return policy

    def create_profile_values(self, key: str) -> Dict[str, Any]:
        if key not in self.profiles:
            raise ValueError(f"Unknown selection profile: {key}")
        return dict(self.profiles[key])

    def _run_length_constraint(self, run_days: int) -> Optional[Dict[str, int]]:
        for constraint in self.run_length_constraints:
            if run_days <= constraint["max_days"]:
                return constraint
        return None

    @staticmethod
    def _finalize(values: Dict[str, Any]) -> Dict[str, Any]:
        target = max(1, int(values.get("target_total", 1)))
        minimum = int(values.get("minimum_total", 0))
        values["target_total"] = target
        values["minimum_total"] = max(0, min(minimum, target))
        return values

    @staticmethod
    def _storyline_candidates(storyline: Optional[str]) -> List[str]:
        if not storyline:
            return []
        candidates = [storyline]
        if "." in storyline:
            suffix = storyline.split(".", 1)[1]
            if suffix:
                candidates.append(suffix)
        return candidates
