import logging
import math
from abc import ABC, abstractmethod
from collections import Counter, defaultdict
from typing import Dict, List, Optional, Set

from curator.selection.candidates import Candidate, hamming_distance
from curator.selection.policy import SelectionPolicy
from curator.selection.telemetry import (
    REASON_DAY_QUOTA,
    REASON_PEOPLE,
    REASON_PHASH,
    REASON_STAYPOINT,
    REASON_TIME_SLOT,
    SelectionTelemetry,
)
from curator.selection.values import SelectionThresholds

logger = logging.getLogger(__name__)


class SelectionStage(ABC):
    """Filters an ordered candidate list and counts what it drops under ``name``."""

    name: str = "stage"

    @abstractmethod
    def apply(
        self,
        candidates: List[Candidate],
        policy: SelectionPolicy,
        thresholds: SelectionThresholds,
        telemetry: SelectionTelemetry,
    ) -> List[Candidate]:
        raise NotImplementedError()


class TimeSlotDiversificationStage(SelectionStage):
    """Keeps same-day picks apart by the day's slot spacing."""

    name = REASON_TIME_SLOT

    def apply(self, candidates, policy, thresholds, telemetry):
        accepted: List[Candidate] = []
        stamps: Dict[str, List[int]] = defaultdict(list)

        for candidate in candidates:
            spacing = thresholds.slot_spacing.get(candidate.day, 0)
            if spacing > 0 and any(abs(candidate.timestamp - ts) < spacing for ts in stamps[candidate.day]):
                telemetry.increment(self.name)
                continue
            accepted.append(candidate)
            stamps[candidate.day].append(candidate.timestamp)
        return accepted


class DayQuotaStage(SelectionStage):
    """
    Enforces per-day caps.

    When the last two picks of a day share a person signature, the next pick
    with that same signature is swapped for the first later candidate of the
    day with a different signature. Repeats go through only when no such
    alternative exists.
    """

    name = REASON_DAY_QUOTA

    def apply(self, candidates, policy, thresholds, telemetry):
        pending = list(candidates)
        accepted: List[Candidate] = []
        counts: Counter = Counter()
        history: Dict[str, List[Optional[str]]] = defaultdict(list)

        for index in range(len(pending)):
            candidate = pending[index]
            cap = thresholds.day_caps.get(candidate.day)
            if cap is not None and counts[candidate.day] >= cap:
                telemetry.increment(self.name)
                continue

            repeated = self._repeated_signature(history[candidate.day])
            if repeated is not None and candidate.person_signature == repeated:
                swap = self._find_alternative(pending, index + 1, candidate.day, repeated)
                if swap is not None:
                    pending[index], pending[swap] = pending[swap], pending[index]
                    candidate = pending[index]

            accepted.append(candidate)
            counts[candidate.day] += 1
            history[candidate.day] = (history[candidate.day] + [candidate.person_signature])[-2:]
        return accepted

    @staticmethod
    def _repeated_signature(history: List[Optional[str]]) -> Optional[str]:
        if len(history) < 2 or history[-1] is None:
            return None
        return history[-1] if history[-1] == history[-2] else None

    @staticmethod
    def _find_alternative(pending: List[Candidate], start: int, day: str, signature: str) -> Optional[int]:
        for index in range(start, len(pending)):
            other = pending[index]
            if other.day == day and other.person_signature != signature:
                return index
        return None


class PhashDiversityStage(SelectionStage):
    """
    Drops same-day near duplicates by perceptual hash distance.

    Near duplicates are held back rather than discarded; a day that ends up
    below its cap gets them back in their original order.
    """

    name = REASON_PHASH

    def apply(self, candidates, policy, thresholds, telemetry):
        threshold = thresholds.phash_threshold
        if threshold <= 0:
            return list(candidates)

        accepted: List[Candidate] = []
        deferred: List[Candidate] = []
        by_day: Dict[str, List[Candidate]] = defaultdict(list)

        for candidate in candidates:
            if self._is_near_duplicate(candidate, by_day[candidate.day], threshold):
                telemetry.increment(self.name)
                deferred.append(candidate)
                continue
            accepted.append(candidate)
            by_day[candidate.day].append(candidate)

        restored = set()
        for candidate in deferred:
            cap = thresholds.day_caps.get(candidate.day)
            if cap is None or len(by_day[candidate.day]) >= cap:
                continue
            by_day[candidate.day].append(candidate)
            restored.add(candidate.id)

        if not restored:
            return accepted
        kept = restored | {c.id for c in accepted}
        return [c for c in candidates if c.id in kept]

    @staticmethod
    def _is_near_duplicate(candidate: Candidate, kept: List[Candidate], threshold: int) -> bool:
        for existing in kept:
            distance = hamming_distance(candidate, existing)
            if distance is not None and distance <= threshold:
                return True
        return False


class PersonQuota:
    """
    Running per-person counts against the people-balance limits.

    A person may appear in at most ``ceil(budget * neutral_share)`` picks, where
    the budget is ``min(target_total, len(candidates))`` and the neutral share
    is the larger of ``people_balance_weight`` and an even split across the
    distinct persons in the pool. Important persons get at least half of the
    budget. Group shots are exempt until they cover ``group_shot_coverage`` of
    the budget.
    """

    def __init__(self, candidates: List[Candidate], policy: SelectionPolicy):
        persons = {person for candidate in candidates for person in candidate.person_ids}
        self.policy = policy
        self.enabled = policy.enable_people_balance and bool(persons)
        self.budget = max(1, min(policy.target_total, len(candidates)))
        self.share = PeopleBalanceStage.neutral_share(policy.people_balance_weight, len(persons))
        self.important = set(policy.important_person_ids)
        self.group_limit = max(1, int(math.ceil(self.budget * policy.group_shot_coverage)))
        self.counts: Counter = Counter()
        self.exempt_ids: Set[str] = set()

    def admits(self, candidate: Candidate, replacing: Optional[Candidate] = None) -> bool:
        """Whether ``candidate`` fits, optionally in place of ``replacing``."""
        if not self.enabled or not candidate.person_ids:
            return True

        exempted = len(self.exempt_ids)
        counts = Counter(self.counts)
        if replacing is not None:
            counts.subtract(replacing.person_ids)
            if replacing.id in self.exempt_ids:
                exempted -= 1

        if self.is_group_shot(candidate) and exempted < self.group_limit:
            return True
        return all(
            counts[p] < PeopleBalanceStage.limit(self.budget, self.share, p in self.important)
            for p in candidate.person_ids
        )

    def add(self, candidate: Candidate) -> bool:
        """Counts an accepted candidate; returns True when it used a group exemption."""
        if not self.enabled or not candidate.person_ids:
            return False
        exempt = self.is_group_shot(candidate) and len(self.exempt_ids) < self.group_limit
        if exempt:
            self.exempt_ids.add(candidate.id)
        self.counts.update(candidate.person_ids)
        return exempt

    def remove(self, candidate: Candidate) -> None:
        if not self.enabled or not candidate.person_ids:
            return
        self.exempt_ids.discard(candidate.id)
        self.counts.subtract(candidate.person_ids)

    def is_group_shot(self, candidate: Candidate) -> bool:
        size = candidate.faces_count if self.policy.face_detection_available else 0
        return max(size, len(candidate.person_ids)) >= self.policy.group_shot_min_faces


class PeopleBalanceStage(SelectionStage):
    """Caps how often one person recurs, see ``PersonQuota`` for the limits."""

    name = REASON_PEOPLE

    def apply(self, candidates, policy, thresholds, telemetry):
        quota = PersonQuota(candidates, policy)
        if not quota.enabled:
            return list(candidates)

        accepted: List[Candidate] = []
        for candidate in candidates:
            if not candidate.person_ids:
                accepted.append(candidate)
                continue

            telemetry.increment("people_balance_considered")
            if not quota.admits(candidate):
                telemetry.increment(self.name)
                continue

            if quota.add(candidate):
                telemetry.increment("people_balance_exempted")
            accepted.append(candidate)
            telemetry.increment("people_balance_accepted")
        return accepted

    @staticmethod
    def neutral_share(weight: float, distinct_persons: int) -> float:
        return max(weight, 1.0 / max(1, distinct_persons))

    @staticmethod
    def limit(budget: int, share: float, important: bool) -> int:
        if important:
            share = max(share, 0.5)
        return max(1, int(math.ceil(budget * share)))


class StaypointQuotaStage(SelectionStage):
    name = REASON_STAYPOINT

    def apply(self, candidates, policy, thresholds, telemetry):
        cap = thresholds.staypoint_cap
        if cap is None:
            return list(candidates)

        accepted: List[Candidate] = []
        counts: Counter = Counter()
        for candidate in candidates:
            if candidate.staypoint is not None:
                if counts[candidate.staypoint] >= cap:
                    telemetry.increment(self.name)
                    continue
                counts[candidate.staypoint] += 1
            accepted.append(candidate)
        return accepted


def default_stages() -> List[SelectionStage]:
    return [
        TimeSlotDiversificationStage(),
        DayQuotaStage(),
        PhashDiversityStage(),
        PeopleBalanceStage(),
        StaypointQuotaStage(),
    ]
