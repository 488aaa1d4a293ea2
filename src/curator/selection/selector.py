import logging
from collections import Counter, defaultdict
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Tuple

from curator.models.day import DaySummary
from curator.models.home import Home
from curator.models.media import Media
from curator.selection.candidates import Candidate, CandidateBuilder, CandidatePool, hamming_distance
from curator.selection.policy import SelectionPolicy
from curator.selection.stages import PeopleBalanceStage, PersonQuota, SelectionStage, default_stages
from curator.selection.telemetry import (
    NEAR_DUPLICATE_BLOCKED,
    NEAR_DUPLICATE_REPLACEMENTS,
    REASON_DAY_LIMIT,
    REASON_PEOPLE,
    REASON_SPACING,
    REASON_STAYPOINT,
    SelectionTelemetry,
)
from curator.selection.values import SelectionThresholds, ValueFactory

logger = logging.getLogger(__name__)

MMR_LAMBDA = 0.75
PHASH_SAMPLE_WINDOW_SECONDS = 600
PHASH_SAMPLE_NEIGHBOURS = 5
PHASH_SAMPLE_TELEMETRY_LIMIT = 50

RELAX_SPACING = "min_spacing_seconds"
RELAX_PHASH = "phash_min_hamming"
RELAX_DAY_CAP = "max_per_day"
RELAX_STAYPOINT = "max_per_staypoint"
RELAXATION_ORDER = (RELAX_SPACING, RELAX_PHASH, RELAX_DAY_CAP, RELAX_STAYPOINT)


@dataclass
class SelectionResult:
    members: List[Media] = field(default_factory=list)
    telemetry: Dict[str, Any] = field(default_factory=dict)

    @property
    def member_ids(self) -> List[str]:
        return [media.id for media in self.members]


@dataclass
class _Attempt:
    pool: CandidatePool
    selected: List[Candidate]
    telemetry: SelectionTelemetry


class VacationMemberSelector:
    """
    Curates the representative members of one vacation run.

    The candidate pool runs through the diversification stages, then a greedy
    pass accepts up to ``target_total`` members under the day, staypoint,
    spacing and near-duplicate limits. Below ``minimum_total`` the limits are
    relaxed one rule at a time and the greedy pass is repeated. Whatever is
    still missing is padded from the eligible pool. Members come back
    interleaved across days.
    """

    def __init__(self, stages: Optional[List[SelectionStage]] = None, candidate_builder: Optional[CandidateBuilder] = None):
        self.stages = stages if stages is not None else default_stages()
        self.candidate_builder = candidate_builder or CandidateBuilder()

    def select(self, days: Dict[str, DaySummary], home: Optional[Home], policy: SelectionPolicy) -> SelectionResult:
        day_keys = sorted(days)

        telemetry = SelectionTelemetry()
        pool = self.candidate_builder.build(days, policy, telemetry)
        samples = self._phash_samples(pool, policy)
        thresholds = self._initial_thresholds(days, day_keys, policy, samples)
        attempt = _Attempt(pool, self._greedy(pool, policy, thresholds, telemetry), telemetry)

        relaxations: List[Dict[str, Any]] = []
        if len(pool) > 0:
            for rule in RELAXATION_ORDER:
                if len(attempt.selected) >= policy.minimum_total:
                    break
                relaxed = self._relax(rule, thresholds, policy)
                if relaxed is None:
                    continue
                thresholds, change = relaxed
                relaxations.append(change)
                logger.info(f"Relaxing {change['rule']}: {change['from']} -> {change['to']}")
                attempt = self._attempt(days, policy, thresholds)

        selected, padded = self._pad(attempt.selected, attempt.pool, policy)
        ordered = self._round_robin(selected)
        members = [candidate.media for candidate in ordered]

        attempt.telemetry.person_counts.update(p for candidate in ordered for p in candidate.person_ids)
        snapshot = thresholds.snapshot()
        snapshot["spacing_relaxed_to_zero"] = any(c["rule"] == RELAX_SPACING for c in relaxations)
        snapshot["phash_relaxed_to_floor"] = any(c["rule"] == RELAX_PHASH for c in relaxations)
        report = attempt.telemetry.to_dict(
            relaxations,
            {
                "thresholds": snapshot,
                "metrics": {"phash_samples": sorted(samples)[:PHASH_SAMPLE_TELEMETRY_LIMIT]},
                "padding": padded,
                "target_total": policy.target_total,
                "minimum_total": policy.minimum_total,
                "minimum_total_met": len(members) >= policy.minimum_total,
                "selected_total": len(members),
                "profile": policy.profile_key,
                "face_detection_available": policy.face_detection_available,
            },
        )

        logger.info(
            f"Selected {len(members)}/{policy.target_total} members over {len(day_keys)} days "
            f"({len(relaxations)} relaxations, {padded} padded)"
        )
        return SelectionResult(members=members, telemetry=report)

    def _attempt(self, days: Dict[str, DaySummary], policy: SelectionPolicy, thresholds: SelectionThresholds) -> _Attempt:
        telemetry = SelectionTelemetry()
        pool = self.candidate_builder.build(days, policy, telemetry)
        return _Attempt(pool, self._greedy(pool, policy, thresholds, telemetry), telemetry)

    def _initial_thresholds(
        self,
        days: Dict[str, DaySummary],
        day_keys: List[str],
        policy: SelectionPolicy,
        samples: List[int],
    ) -> SelectionThresholds:
        base_cap = ValueFactory.default_per_day_cap(policy.target_total, len(day_keys))
        if policy.max_per_day:
            base_cap = min(policy.max_per_day, base_cap)

        caps = ValueFactory.day_caps(policy, day_keys)
        durations = {}
        for key in day_keys:
            span = days[key].time_span
            durations[key] = span[1] - span[0] if span else None

        adaptive = ValueFactory.phash_percentile(samples, policy.phash_percentile)
        return SelectionThresholds(
            day_caps=dict(caps),
            day_spacing=ValueFactory.day_spacing(policy, caps, durations),
            slot_spacing=ValueFactory.slot_spacing(policy, caps, durations),
            min_spacing=policy.min_spacing_seconds,
            phash_threshold=max(policy.phash_min_hamming, adaptive),
            phash_adaptive=adaptive,
            staypoint_cap=ValueFactory.staypoint_cap(policy, base_cap),
        )

    @staticmethod
    def _phash_samples(pool: CandidatePool, policy: SelectionPolicy) -> List[int]:
        """Hash distances between same-day neighbours taken close together."""
        ordered = sorted(pool.eligible, key=lambda c: (c.timestamp, c.id))
        window = max(PHASH_SAMPLE_WINDOW_SECONDS, policy.min_spacing_seconds)
        samples = []
        for i, current in enumerate(ordered):
            for other in ordered[i + 1 : i + 1 + PHASH_SAMPLE_NEIGHBOURS]:
                if other.day != current.day or other.timestamp - current.timestamp > window:
                    continue
                distance = hamming_distance(current, other)
                if distance is not None:
                    samples.append(distance)
        return samples

    def _greedy(
        self,
        pool: CandidatePool,
        policy: SelectionPolicy,
        thresholds: SelectionThresholds,
        telemetry: SelectionTelemetry,
    ) -> List[Candidate]:
        ordered = sorted(pool.primary, key=Candidate.sort_key)
        diversified = ordered
        for stage in self.stages:
            diversified = stage.apply(diversified, policy, thresholds, telemetry)

        kept = {candidate.id for candidate in diversified}
        held_back = [candidate for candidate in ordered if candidate.id not in kept]

        person_quota = None
        if any(isinstance(stage, PeopleBalanceStage) for stage in self.stages):
            person_quota = PersonQuota(ordered, policy)

        state = _GreedyState(thresholds, telemetry, person_quota)
        for candidate in diversified + held_back:
            if len(state.selected) >= policy.target_total:
                break
            state.consider(candidate)
        return state.selected

    @staticmethod
    def _relax(
        rule: str, thresholds: SelectionThresholds, policy: SelectionPolicy
    ) -> Optional[Tuple[SelectionThresholds, Dict[str, Any]]]:
        if rule == RELAX_SPACING:
            current = thresholds.max_spacing()
            if current <= 0:
                return None
            relaxed = replace(
                thresholds,
                min_spacing=0,
                day_spacing={key: 0 for key in thresholds.day_spacing},
                slot_spacing={key: 0 for key in thresholds.slot_spacing},
            )
            return relaxed, {"rule": rule, "from": current, "to": 0}

        if rule == RELAX_PHASH:
            if thresholds.phash_threshold <= policy.phash_min_hamming:
                return None
            relaxed = replace(thresholds, phash_threshold=policy.phash_min_hamming)
            return relaxed, {"rule": rule, "from": thresholds.phash_threshold, "to": policy.phash_min_hamming}

        if rule == RELAX_DAY_CAP:
            current = thresholds.max_day_cap()
            if current is None:
                return None
            relaxed = replace(thresholds, day_caps={key: None for key in thresholds.day_caps})
            return relaxed, {"rule": rule, "from": current, "to": None}

        if rule == RELAX_STAYPOINT:
            current = thresholds.staypoint_cap
            target = policy.relaxed_max_per_staypoint
            if current is None or target is None or target <= current:
                return None
            return replace(thresholds, staypoint_cap=target), {"rule": rule, "from": current, "to": target}

        raise ValueError(f"Unknown relaxation rule: {rule}")

    @staticmethod
    def _pad(selected: List[Candidate], pool: CandidatePool, policy: SelectionPolicy) -> Tuple[List[Candidate], int]:
        missing = min(policy.minimum_total, policy.target_total) - len(selected)
        if missing <= 0:
            return selected, 0

        chosen = {candidate.id for candidate in selected}
        remaining = sorted(
            (candidate for candidate in pool.eligible if candidate.id not in chosen),
            key=lambda c: (-c.score, c.timestamp, c.id),
        )
        padding = remaining[:missing]
        return selected + padding, len(padding)

    @staticmethod
    def _round_robin(selected: List[Candidate]) -> List[Candidate]:
        by_day: Dict[str, List[Candidate]] = defaultdict(list)
        for candidate in sorted(selected, key=lambda c: (c.timestamp, c.id)):
            by_day[candidate.day].append(candidate)

        ordered = []
        queues = [by_day[day] for day in sorted(by_day)]
        index = 0
        while len(ordered) < len(selected):
            for queue in queues:
                if index < len(queue):
                    ordered.append(queue[index])
            index += 1
        return ordered


class _GreedyState:
    def __init__(
        self,
        thresholds: SelectionThresholds,
        telemetry: SelectionTelemetry,
        person_quota: Optional[PersonQuota] = None,
    ):
        self.thresholds = thresholds
        self.telemetry = telemetry
        self.person_quota = person_quota
        self.selected: List[Candidate] = []
        self.day_counts: Counter = Counter()
        self.staypoint_counts: Counter = Counter()

    def consider(self, candidate: Candidate) -> bool:
        cap = self.thresholds.day_caps.get(candidate.day)
        if cap is not None and self.day_counts[candidate.day] >= cap:
            self.telemetry.increment(REASON_DAY_LIMIT)
            return False

        duplicate = self._find_duplicate(candidate)
        if duplicate is not None:
            existing = self.selected[duplicate]
            if candidate.quality > existing.quality and self._violation(candidate, existing) is None:
                self._replace(duplicate, candidate)
                self.telemetry.increment(NEAR_DUPLICATE_REPLACEMENTS)
                return True
            self.telemetry.increment(NEAR_DUPLICATE_BLOCKED)
            return False

        reason = self._violation(candidate)
        if reason is not None:
            self.telemetry.increment(reason)
            return False

        self._trace(candidate)
        self.selected.append(candidate)
        self.day_counts[candidate.day] += 1
        if candidate.staypoint is not None:
            self.staypoint_counts[candidate.staypoint] += 1
        if self.person_quota is not None:
            self.person_quota.add(candidate)
        return True

    def _violation(self, candidate: Candidate, replacing: Optional[Candidate] = None) -> Optional[str]:
        """First limit ``candidate`` breaks, with ``replacing`` taken out of the selection."""
        staypoint_cap = self.thresholds.staypoint_cap
        if candidate.staypoint is not None and staypoint_cap is not None:
            count = self.staypoint_counts[candidate.staypoint]
            if replacing is not None and replacing.staypoint == candidate.staypoint:
                count -= 1
            if count >= staypoint_cap:
                return REASON_STAYPOINT

        if self.person_quota is not None and not self.person_quota.admits(candidate, replacing):
            return REASON_PEOPLE

        for existing in self.selected:
            if replacing is not None and existing.id == replacing.id:
                continue
            if abs(candidate.timestamp - existing.timestamp) < self._pair_spacing(candidate, existing):
                return REASON_SPACING
        return None

    def _pair_spacing(self, candidate: Candidate, existing: Candidate) -> int:
        if candidate.day != existing.day:
            return self.thresholds.min_spacing
        return max(self.thresholds.spacing_for(candidate.day), self.thresholds.spacing_for(existing.day))

    def _find_duplicate(self, candidate: Candidate) -> Optional[int]:
        threshold = self.thresholds.phash_threshold
        for index, existing in enumerate(self.selected):
            if existing.day != candidate.day:
                continue
            if candidate.burst_key is not None and candidate.burst_key == existing.burst_key:
                return index
            if threshold > 0:
                distance = hamming_distance(candidate, existing)
                if distance is not None and distance <= threshold:
                    return index
        return None

    def _replace(self, index: int, candidate: Candidate) -> None:
        removed = self.selected[index]
        if removed.staypoint is not None:
            self.staypoint_counts[removed.staypoint] -= 1
        if candidate.staypoint is not None:
            self.staypoint_counts[candidate.staypoint] += 1
        if self.person_quota is not None:
            self.person_quota.remove(removed)
            self.person_quota.add(candidate)
        self.selected[index] = candidate

    def _trace(self, candidate: Candidate) -> None:
        redundancy = 0.0
        for existing in self.selected:
            distance = hamming_distance(candidate, existing)
            if distance is None:
                continue
            bits = max(1, candidate.hash_length, existing.hash_length)
            redundancy = max(redundancy, 1.0 - min(1.0, distance / bits))
        mmr = MMR_LAMBDA * candidate.score - (1.0 - MMR_LAMBDA) * redundancy
        self.telemetry.trace(candidate.id, candidate.day, candidate.score, redundancy, mmr)
