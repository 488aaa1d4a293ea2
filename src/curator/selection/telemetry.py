from collections import Counter
from typing import Any, Dict, List, Optional

REASON_TIME_SLOT = "time_slot_rejections"
REASON_DAY_QUOTA = "day_quota_rejections"
REASON_PHASH = "phash_rejections"
REASON_PEOPLE = "people_balance_rejected"
REASON_STAYPOINT = "staypoint_rejections"
REASON_DAY_LIMIT = "day_limit_rejections"
REASON_SPACING = "spacing_rejections"
NEAR_DUPLICATE_BLOCKED = "near_duplicate_blocked"
NEAR_DUPLICATE_REPLACEMENTS = "near_duplicate_replacements"

COUNTER_KEYS = (
    "prefilter_total",
    "prefilter_quality_floor",
    "burst_collapsed",
    REASON_TIME_SLOT,
    REASON_DAY_QUOTA,
    REASON_PHASH,
    "people_balance_considered",
    "people_balance_accepted",
    REASON_PEOPLE,
    "people_balance_exempted",
    REASON_STAYPOINT,
    REASON_DAY_LIMIT,
    REASON_SPACING,
    NEAR_DUPLICATE_BLOCKED,
    NEAR_DUPLICATE_REPLACEMENTS,
)


class SelectionTelemetry:
    """Counters and traces accumulated during one selection attempt."""

    def __init__(self):
        self.counters: Counter = Counter()
        self.person_counts: Counter = Counter()
        self.mmr_trace: List[Dict[str, Any]] = []

    def increment(self, reason: str, amount: int = 1) -> None:
        self.counters[reason] += amount

    def count(self, reason: str) -> int:
        return self.counters[reason]

    def trace(self, media_id: str, day: str, relevance: float, redundancy: float, mmr: float) -> None:
        self.mmr_trace.append(
            {
                "id": media_id,
                "day": day,
                "relevance": round(relevance, 4),
                "redundancy": round(redundancy, 4),
                "mmr": round(mmr, 4),
            }
        )

    def to_dict(
        self,
        relaxations: Optional[List[Dict[str, Any]]] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        data: Dict[str, Any] = {key: int(self.counters[key]) for key in COUNTER_KEYS}
        for key, value in self.counters.items():
            data.setdefault(key, int(value))
        data["relaxations"] = list(relaxations or [])
        data["people_balance"] = dict(sorted(self.person_counts.items()))
        data["mmr"] = list(self.mmr_trace)
        if extra:
            data.update(extra)
        return data
