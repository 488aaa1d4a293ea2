import math
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

import numpy as np

from curator.vacation.day_context import CATEGORY_CORE
from curator.selection.policy import SelectionPolicy


class ValueFactory:
    """Derived per-run values: day caps, day spacing and the adaptive phash threshold."""

    @staticmethod
    def default_per_day_cap(target_total: int, run_days: int) -> int:
        return max(1, int(math.ceil(target_total / max(1, run_days))))

    @classmethod
    def day_caps(cls, policy: SelectionPolicy, day_keys: List[str]) -> Dict[str, int]:
        base = cls.default_per_day_cap(policy.target_total, len(day_keys))
        if policy.max_per_day:
            base = min(policy.max_per_day, base)

        caps = {}
        for key in day_keys:
            if key in policy.day_quotas:
                caps[key] = policy.day_quotas[key]
                continue
            context = policy.day_context.get(key)
            if context is None:
                cap = base
            elif context.category == CATEGORY_CORE:
                cap = base + policy.core_day_bonus
            else:
                cap = base - policy.peripheral_day_penalty
            if policy.max_per_day:
                cap = min(policy.max_per_day, cap)
            caps[key] = max(1, cap)
        return caps

    @staticmethod
    def quota_spacing(day_duration: Optional[int], per_day_cap: int) -> int:
        if not day_duration or day_duration <= 0:
            return 0
        return int(math.ceil(day_duration / max(3, per_day_cap + 1)))

    @classmethod
    def day_spacing(
        cls,
        policy: SelectionPolicy,
        day_caps: Dict[str, int],
        durations: Dict[str, Optional[int]],
    ) -> Dict[str, int]:
        spacing = {}
        for key, cap in day_caps.items():
            duration = durations.get(key)
            context = policy.day_context.get(key)
            if context is not None and context.duration:
                duration = context.duration
            spacing[key] = max(policy.min_spacing_seconds, cls.quota_spacing(duration, cap))
        return spacing

    @staticmethod
    def phash_percentile(samples: Iterable[int], ratio: float) -> int:
        ordered = np.sort(np.fromiter(samples, dtype=float))
        if ordered.size == 0:
            return 0
        clamped = max(0.0, min(1.0, ratio))
        index = int(math.floor(clamped * (ordered.size - 1)))
        return int(math.ceil(ordered[index]))

    @classmethod
    def slot_spacing(
        cls,
        policy: SelectionPolicy,
        day_caps: Dict[str, int],
        durations: Dict[str, Optional[int]],
    ) -> Dict[str, int]:
        progressive = int(policy.min_spacing_seconds * policy.spacing_progress_factor)
        spacing = {}
        for key, cap in day_caps.items():
            duration = durations.get(key)
            context = policy.day_context.get(key)
            if context is not None and context.duration:
                duration = context.duration
            spacing[key] = max(progressive, cls.quota_spacing(duration, cap))
        return spacing

    @staticmethod
    def staypoint_cap(policy: SelectionPolicy, base_per_day_cap: int) -> Optional[int]:
        if policy.max_per_staypoint is None:
            return None
        return max(1, min(policy.max_per_staypoint, max(1, base_per_day_cap // 2)))


@dataclass
class SelectionThresholds:
    """Effective limits of one greedy pass; relaxation edits these, never the policy."""

    day_caps: Dict[str, Optional[int]] = field(default_factory=dict)
    day_spacing: Dict[str, int] = field(default_factory=dict)
    slot_spacing: Dict[str, int] = field(default_factory=dict)
    min_spacing: int = 0
    phash_threshold: int = 0
    phash_adaptive: int = 0
    staypoint_cap: Optional[int] = None

    def spacing_for(self, day: str) -> int:
        return max(self.min_spacing, self.day_spacing.get(day, 0))

    def max_spacing(self) -> int:
        return max([self.min_spacing, *self.day_spacing.values(), *self.slot_spacing.values()])

    def max_day_cap(self) -> Optional[int]:
        caps = [cap for cap in self.day_caps.values() if cap is not None]
        return max(caps) if caps else None

    def snapshot(self) -> Dict[str, Any]:
        return {
            "day_caps": dict(self.day_caps),
            "day_spacing_seconds": dict(self.day_spacing),
            "slot_spacing_seconds": dict(self.slot_spacing),
            "min_spacing_seconds": self.min_spacing,
            "phash_min_effective": self.phash_threshold,
            "phash_percentile_threshold": self.phash_adaptive,
            "max_per_staypoint": self.staypoint_cap,
        }
