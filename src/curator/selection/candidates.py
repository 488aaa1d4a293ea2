import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from curator.geo.timezones import load_zone
from curator.models.day import DaySummary
from curator.models.media import Media
from curator.selection.policy import SelectionPolicy
from curator.selection.telemetry import SelectionTelemetry

logger = logging.getLogger(__name__)

NEUTRAL_QUALITY = 0.5
BURST_GAP_SECONDS = 30


@dataclass
class Candidate:
    media: Media
    day: str
    timestamp: int
    slot: int
    score: float
    quality: float
    staypoint: Optional[str] = None
    hash_bits: Optional[int] = None
    hash_length: int = 0
    person_ids: Tuple[str, ...] = ()
    is_video: bool = False
    faces_count: int = 0
    day_duration: Optional[int] = None
    burst_key: Optional[str] = None
    origin: str = "slot"

    @property
    def id(self) -> str:
        return self.media.id

    @property
    def person_signature(self) -> Optional[str]:
        if not self.person_ids:
            return None
        return "-".join(sorted(self.person_ids))

    def sort_key(self):
        return (self.day, self.slot, -self.score, self.timestamp, self.id)


@dataclass
class CandidatePool:
    primary: List[Candidate] = field(default_factory=list)
    collapsed: List[Candidate] = field(default_factory=list)

    @property
    def eligible(self) -> List[Candidate]:
        return self.primary + self.collapsed

    def __len__(self) -> int:
        return len(self.primary) + len(self.collapsed)


def decode_phash(value: Optional[str]) -> Tuple[Optional[int], int]:
    if not value:
        return None, 0
    try:
        return int(value, 16), len(value) * 4
    except ValueError:
        logger.debug(f"Ignoring malformed phash: {value}")
        return None, 0


def hamming_distance(a: Candidate, b: Candidate) -> Optional[int]:
    if a.hash_bits is None or b.hash_bits is None:
        return None
    return bin(a.hash_bits ^ b.hash_bits).count("1") + abs(a.hash_length - b.hash_length)


def score_media(media: Media, quality: float, policy: SelectionPolicy) -> float:
    score = quality
    if media.is_video:
        score += policy.video_bonus
    if media.has_faces:
        score += policy.face_bonus
    if media.faces_count == 1:
        score -= policy.selfie_penalty
    return max(0.0, score)


class CandidateBuilder:
    """
    Turns the members of each run day into scored candidates.

    Members below the policy quality floor are dropped. Bursts (a shared
    ``burst_id`` or consecutive captures at most 30 seconds apart) are
    collapsed onto their best member; the other burst members are kept aside
    in ``CandidatePool.collapsed`` so that padding can still reach them.
    """

    def build(self, days: Dict[str, DaySummary], policy: SelectionPolicy, telemetry: SelectionTelemetry) -> CandidatePool:
        pool = CandidatePool()
        for key in sorted(days):
            summary = days[key]
            accepted = []
            for order, media in enumerate(summary.members):
                telemetry.increment("prefilter_total")
                quality = media.quality_score if media.quality_score is not None else NEUTRAL_QUALITY
                if quality < policy.quality_floor:
                    telemetry.increment("prefilter_quality_floor")
                    continue
                ts = media.timestamp
                if ts is None:
                    continue
                accepted.append((ts, order, media, quality))

            accepted.sort(key=lambda entry: (entry[0], entry[1]))
            duration = self._duration(summary)
            for group_key, group in self._group_bursts(key, accepted):
                representative = self._representative(group)
                for ts, _, media, quality in group:
                    candidate = self._create(summary, media, ts, quality, duration, policy, group_key)
                    if media is representative:
                        pool.primary.append(candidate)
                    else:
                        candidate.origin = "burst"
                        pool.collapsed.append(candidate)
                        telemetry.increment("burst_collapsed")

        logger.debug(f"Candidates: {len(pool.primary)} primary, {len(pool.collapsed)} collapsed")
        return pool

    @staticmethod
    def _group_bursts(day: str, accepted):
        """Yield ``(burst_key, members)`` in capture order."""
        tagged: Dict[str, list] = {}
        groups = []
        current = []
        synthetic_index = 0

        def close():
            nonlocal current, synthetic_index
            if current:
                key = f"synthetic:{day}:{synthetic_index}" if len(current) > 1 else None
                groups.append((current[0][0], key, current))
                synthetic_index += 1
                current = []

        for entry in accepted:
            burst_id = entry[2].burst_id
            if burst_id:
                close()
                if burst_id not in tagged:
                    tagged[burst_id] = []
                    groups.append((entry[0], burst_id, tagged[burst_id]))
                tagged[burst_id].append(entry)
                continue
            if current and entry[0] - current[-1][0] > BURST_GAP_SECONDS:
                close()
            current.append(entry)
        close()

        groups.sort(key=lambda group: group[0])
        for _, key, members in groups:
            yield key, members

    @staticmethod
    def _representative(group) -> Media:
        best = group[0]
        for entry in group:
            if entry[2].burst_representative:
                best = entry
                break
        for entry in group:
            if entry[3] > best[3]:
                best = entry
        return best[2]

    @staticmethod
    def _duration(summary: DaySummary) -> Optional[int]:
        span = summary.time_span
        if span is None:
            return None
        return span[1] - span[0]

    @staticmethod
    def _create(
        summary: DaySummary,
        media: Media,
        ts: int,
        quality: float,
        duration: Optional[int],
        policy: SelectionPolicy,
        burst_key: Optional[str],
    ) -> Candidate:
        zone = load_zone(summary.local_timezone_identifier) or timezone.utc
        hour = datetime.fromtimestamp(ts, tz=zone).hour
        hash_bits, hash_length = decode_phash(media.phash)
        staypoint = summary.staypoint_index.get(media) if summary.staypoint_index is not None else None

        return Candidate(
            media=media,
            day=summary.date,
            timestamp=ts,
            slot=hour // max(1, policy.time_slot_hours),
            score=score_media(media, quality, policy),
            quality=quality,
            staypoint=staypoint,
            hash_bits=hash_bits,
            hash_length=hash_length,
            person_ids=tuple(sorted(set(media.persons))),
            is_video=media.is_video,
            faces_count=media.faces_count,
            day_duration=duration,
            burst_key=burst_key,
        )
