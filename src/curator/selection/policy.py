from dataclasses import asdict, dataclass, field, replace
from typing import Any, Dict, Optional, Tuple

from curator.models.day import DayContext


@dataclass(frozen=True)
class SelectionPolicy:
    """
    Immutable tunables for one member-selection call.

    Construction validates the structural invariants; every ``with_*`` helper
    returns a validated copy.
    """

    profile_key: str = "default"
    target_total: int = 40
    minimum_total: int = 24
    max_per_day: Optional[int] = None
    time_slot_hours: int = 3
    min_spacing_seconds: int = 1200
    phash_min_hamming: int = 9
    max_per_staypoint: Optional[int] = None
    relaxed_max_per_staypoint: Optional[int] = None
    quality_floor: float = 0.0
    video_bonus: float = 0.0
    face_bonus: float = 0.0
    selfie_penalty: float = 0.0
    phash_percentile: float = 0.35
    spacing_progress_factor: float = 0.5
    core_day_bonus: int = 1
    peripheral_day_penalty: int = 1
    enable_people_balance: bool = True
    people_balance_weight: float = 0.35
    group_shot_min_faces: int = 3
    group_shot_coverage: float = 0.3
    important_person_ids: Tuple[str, ...] = ()
    face_detection_available: bool = True
    day_quotas: Dict[str, int] = field(default_factory=dict)
    day_context: Dict[str, DayContext] = field(default_factory=dict)

    def __post_init__(self):
        if self.target_total <= 0:
            raise ValueError("target_total must be > 0")
        if self.minimum_total < 0:
            raise ValueError("minimum_total must be >= 0")
        if self.minimum_total > self.target_total:
            raise ValueError("minimum_total must not exceed target_total")
        if self.max_per_day is not None and self.max_per_day < 0:
            raise ValueError("max_per_day must be >= 0")
        if self.time_slot_hours <= 0:
            raise ValueError("time_slot_hours must be > 0")
        if self.min_spacing_seconds < 0:
            raise ValueError("min_spacing_seconds must be >= 0")
        if self.phash_min_hamming < 0:
            raise ValueError("phash_min_hamming must be >= 0")
        if self.max_per_staypoint is not None and self.max_per_staypoint < 1:
            raise ValueError("max_per_staypoint must be >= 1")
        if self.relaxed_max_per_staypoint is not None and self.relaxed_max_per_staypoint < 0:
            raise ValueError("relaxed_max_per_staypoint must be >= 0")
        if self.quality_floor < 0:
            raise ValueError("quality_floor must be >= 0")
        if not 0.0 <= self.phash_percentile <= 1.0:
            raise ValueError("phash_percentile must be within 0 and 1")
        if not 0.0 <= self.spacing_progress_factor <= 1.0:
            raise ValueError("spacing_progress_factor must be within 0 and 1")
        if not 0.0 <= self.people_balance_weight <= 1.0:
            raise ValueError("people_balance_weight must be within 0 and 1")
        if not 0.0 <= self.group_shot_coverage <= 1.0:
            raise ValueError("group_shot_coverage must be within 0 and 1")
        if self.core_day_bonus < 0 or self.peripheral_day_penalty < 0:
            raise ValueError("day bonus and penalty must be >= 0")
        if any(quota < 0 for quota in self.day_quotas.values()):
            raise ValueError("day quotas must be >= 0")

    def with_day_context(self, day_context: Dict[str, DayContext]) -> "SelectionPolicy":
        return replace(self, day_context=dict(day_context))

    def with_important_persons(self, person_ids) -> "SelectionPolicy":
        return replace(self, important_person_ids=tuple(sorted(set(person_ids))))

    def for_face_detection(self, available: bool) -> "SelectionPolicy":
        """Face-dependent bonuses mean nothing without a face detector."""
        if available:
            return replace(self, face_detection_available=True)
        return replace(self, face_detection_available=False, face_bonus=0.0, selfie_penalty=0.0)

    def snapshot(self) -> Dict[str, Any]:
        data = asdict(self)
        data.pop("day_context")
        data["important_person_ids"] = list(self.important_person_ids)
        return data
