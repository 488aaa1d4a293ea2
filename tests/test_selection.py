import sys
import os
import logging
from dataclasses import replace

import pytest

sys.path.append(os.path.join(os.path.dirname(__file__), "../src"))

from conftest import ROME, at, media
from curator.models.day import DayContext, DaySummary, Staypoint, StaypointIndex
from curator.models.media import Media
from curator.selection import (
    SelectionPolicy,
    SelectionPolicyProvider,
    SelectionTelemetry,
    SelectionThresholds,
    ValueFactory,
    VacationMemberSelector,
)
from curator.selection.candidates import Candidate, decode_phash, hamming_distance, score_media
from curator.selection.stages import (
    DayQuotaStage,
    PeopleBalanceStage,
    PhashDiversityStage,
    StaypointQuotaStage,
    TimeSlotDiversificationStage,
)
from curator.selection.telemetry import COUNTER_KEYS

DAY = "2024-07-01"


def day_summary(day, items):
    return DaySummary(
        date=f"2024-07-{day + 1:02d}",
        weekday=1,
        members=list(items),
        gps_members=[m for m in items if m.has_gps],
    )


def days_of(*summaries):
    return {s.date: s for s in summaries}


def policy(**kwargs):
    values = dict(target_total=10, minimum_total=0, time_slot_hours=1, min_spacing_seconds=0, phash_min_hamming=0)
    values.update(kwargs)
    return SelectionPolicy(**values)


def candidate(cid, ts=0, day=DAY, persons=(), phash=None, **kwargs):
    bits, length = decode_phash(phash)
    return Candidate(
        media=Media(id=cid),
        day=day,
        timestamp=ts,
        slot=0,
        score=kwargs.pop("score", 0.5),
        quality=kwargs.pop("quality", 0.5),
        person_ids=tuple(persons),
        hash_bits=bits,
        hash_length=length,
        **kwargs,
    )


def ids(candidates):
    return [c.id for c in candidates]


# Policy and provider


def test_policy_rejects_invalid_totals():
    with pytest.raises(ValueError):
        SelectionPolicy(target_total=0)
    with pytest.raises(ValueError):
        SelectionPolicy(target_total=10, minimum_total=11)
    with pytest.raises(ValueError):
        SelectionPolicy(time_slot_hours=0)
    with pytest.raises(ValueError):
        SelectionPolicy(max_per_staypoint=0)


def test_policy_copies_are_validated():
    base = SelectionPolicy(target_total=10, minimum_total=5)

    copy = base.with_important_persons(["b", "a", "b"])

    assert copy.important_person_ids == ("a", "b")
    assert base.important_person_ids == ()
    with pytest.raises(ValueError):
        replace(base, minimum_total=11)


def test_policy_without_face_detection_drops_face_terms():
    base = SelectionPolicy(face_bonus=0.1, selfie_penalty=0.1)

    degraded = base.for_face_detection(False)

    assert degraded.face_bonus == 0.0
    assert degraded.selfie_penalty == 0.0
    assert not degraded.face_detection_available
    assert base.for_face_detection(True).face_bonus == 0.1


def test_profile_resolution_by_storyline():
    provider = SelectionPolicyProvider()

    assert provider.resolve_profile_key("vacation", "vacation.transit") == "vacation_transit"
    assert provider.resolve_profile_key("vacation", "short_trip") == "vacation_short"
    assert provider.resolve_profile_key("vacation", None) == "vacation"
    assert provider.resolve_profile_key("unknown_algorithm", "vacation") == "vacation"


@pytest.mark.parametrize(
    "run_days, target, minimum",
    [(1, 24, 12), (2, 24, 12), (5, 40, 24), (7, 40, 24), (12, 60, 36)],
)
def test_run_length_sets_totals(run_days, target, minimum):
    selection_policy = SelectionPolicyProvider().for_run("vacation", "vacation", run_days)

    assert (selection_policy.target_total, selection_policy.minimum_total) == (target, minimum)
    assert selection_policy.profile_key == "vacation"


def test_overrides_are_clamped_to_target():
    provider = SelectionPolicyProvider(important_person_ids=["p2", "p1"])

    selection_policy = provider.for_run("vacation", "vacation", 3, face_detection_available=False, overrides={"minimum_total": 100})

    assert selection_policy.minimum_total == selection_policy.target_total == 40
    assert selection_policy.important_person_ids == ("p1", "p2")
    assert selection_policy.face_bonus == 0.0


def test_unknown_profiles_are_rejected():
    with pytest.raises(ValueError):
        SelectionPolicyProvider(default_profile="nope")
    with pytest.raises(ValueError):
        SelectionPolicyProvider().create_profile_values("nope")


# Derived values


def test_default_per_day_cap():
    assert ValueFactory.default_per_day_cap(40, 3) == 14
    assert ValueFactory.default_per_day_cap(40, 0) == 40
    assert ValueFactory.default_per_day_cap(1, 5) == 1


def test_day_caps_follow_context_and_quotas():
    context = {
        "d1": DayContext(category="core"),
        "d2": DayContext(category="peripheral"),
    }
    selection_policy = SelectionPolicy(target_total=40, max_per_day=8, day_context=context, day_quotas={"d4": 2})

    caps = ValueFactory.day_caps(selection_policy, ["d1", "d2", "d3", "d4"])

    assert caps == {"d1": 8, "d2": 7, "d3": 8, "d4": 2}


def test_quota_spacing():
    assert ValueFactory.quota_spacing(None, 5) == 0
    assert ValueFactory.quota_spacing(3600, 1) == 1200
    assert ValueFactory.quota_spacing(3600, 5) == 600


def test_day_spacing_prefers_context_duration():
    selection_policy = SelectionPolicy(min_spacing_seconds=100, day_context={"d1": DayContext(duration=7200)})

    spacing = ValueFactory.day_spacing(selection_policy, {"d1": 3, "d2": 3}, {"d1": 600, "d2": 600})

    assert spacing == {"d1": 1800, "d2": 150}


def test_phash_percentile():
    assert ValueFactory.phash_percentile([10, 2, 6, 4], 0.35) == 4
    assert ValueFactory.phash_percentile([], 0.35) == 0


def test_staypoint_cap():
    assert ValueFactory.staypoint_cap(SelectionPolicy(max_per_staypoint=3), 8) == 3
    assert ValueFactory.staypoint_cap(SelectionPolicy(max_per_staypoint=3), 2) == 1
    assert ValueFactory.staypoint_cap(SelectionPolicy(), 8) is None


def test_thresholds_helpers():
    thresholds = SelectionThresholds(
        day_caps={"d1": 3, "d2": None},
        day_spacing={"d1": 900},
        slot_spacing={"d1": 1500},
        min_spacing=600,
    )

    assert thresholds.spacing_for("d1") == 900
    assert thresholds.spacing_for("d2") == 600
    assert thresholds.max_spacing() == 1500
    assert thresholds.max_day_cap() == 3


# Candidates


def test_phash_decoding_and_distance():
    assert decode_phash("0f") == (15, 8)
    assert decode_phash("zz") == (None, 0)
    assert decode_phash(None) == (None, 0)

    a = candidate("a", phash="ffff")
    b = candidate("b", phash="fffe")
    c = candidate("c", phash="ff")
    assert hamming_distance(a, b) == 1
    assert hamming_distance(a, c) == 16
    assert hamming_distance(a, candidate("d")) is None


def test_media_scoring():
    selection_policy = SelectionPolicy(video_bonus=0.15, face_bonus=0.1, selfie_penalty=0.1)

    assert score_media(Media(id="v", is_video=True), 0.5, selection_policy) == pytest.approx(0.65)
    assert score_media(Media(id="g", faces_count=3), 0.5, selection_policy) == pytest.approx(0.6)
    assert score_media(Media(id="s", faces_count=1), 0.5, selection_policy) == pytest.approx(0.5)
    assert score_media(Media(id="z", faces_count=1), 0.0, SelectionPolicy(selfie_penalty=0.2)) == 0.0


# Stages


def test_time_slot_stage_spaces_same_day_picks():
    telemetry = SelectionTelemetry()
    thresholds = SelectionThresholds(slot_spacing={DAY: 600})
    candidates = [candidate("a", 0), candidate("b", 300), candidate("c", 900), candidate("d", 300, day="2024-07-02")]

    kept = TimeSlotDiversificationStage().apply(candidates, policy(), thresholds, telemetry)

    assert ids(kept) == ["a", "c", "d"]
    assert telemetry.count("time_slot_rejections") == 1


def test_day_quota_stage_breaks_person_streaks():
    telemetry = SelectionTelemetry()
    candidates = [
        candidate("a1", 0, persons=["a"]),
        candidate("a2", 10, persons=["a"]),
        candidate("a3", 20, persons=["a"]),
        candidate("b1", 30, persons=["b"]),
    ]

    kept = DayQuotaStage().apply(candidates, policy(), SelectionThresholds(day_caps={DAY: 10}), telemetry)

    assert ids(kept) == ["a1", "a2", "b1", "a3"]


def test_day_quota_stage_enforces_caps():
    telemetry = SelectionTelemetry()
    candidates = [candidate(f"c{i}", i * 10) for i in range(4)]

    kept = DayQuotaStage().apply(candidates, policy(), SelectionThresholds(day_caps={DAY: 2}), telemetry)

    assert ids(kept) == ["c0", "c1"]
    assert telemetry.count("day_quota_rejections") == 2


def test_phash_stage_defers_near_duplicates():
    candidates = [candidate("a", 0, phash="ffff"), candidate("b", 10, phash="fffe"), candidate("c", 20, phash="0000")]

    telemetry = SelectionTelemetry()
    full = SelectionThresholds(day_caps={DAY: 2}, phash_threshold=4)
    assert ids(PhashDiversityStage().apply(candidates, policy(), full, telemetry)) == ["a", "c"]
    assert telemetry.count("phash_rejections") == 1

    roomy = SelectionThresholds(day_caps={DAY: 5}, phash_threshold=4)
    assert ids(PhashDiversityStage().apply(candidates, policy(), roomy, SelectionTelemetry())) == ["a", "b", "c"]

    disabled = SelectionThresholds(day_caps={DAY: 1}, phash_threshold=0)
    assert ids(PhashDiversityStage().apply(candidates, policy(), disabled, SelectionTelemetry())) == ["a", "b", "c"]


def test_people_balance_limits_dominant_person():
    candidates = [candidate(f"a{i}", i, persons=["a"]) for i in range(6)]
    candidates += [candidate(f"b{i}", 10 + i, persons=["b"]) for i in range(2)]
    candidates += [candidate(f"c{i}", 20 + i, persons=["c"]) for i in range(2)]

    telemetry = SelectionTelemetry()
    kept = PeopleBalanceStage().apply(candidates, policy(), SelectionThresholds(), telemetry)

    assert ids(kept).count("a0") == 1
    assert sum(1 for c in kept if c.person_ids == ("a",)) == 4
    assert telemetry.count("people_balance_rejected") == 2
    assert telemetry.count("people_balance_considered") == 10

    important = policy(important_person_ids=("a",))
    kept = PeopleBalanceStage().apply(candidates, important, SelectionThresholds(), SelectionTelemetry())
    assert sum(1 for c in kept if c.person_ids == ("a",)) == 5


def test_people_balance_exempts_group_shots():
    candidates = [candidate(f"g{i}", i, persons=["a", "b", "c"]) for i in range(5)]
    candidates += [candidate(f"a{i}", 10 + i, persons=["a"]) for i in range(5)]

    telemetry = SelectionTelemetry()
    PeopleBalanceStage().apply(candidates, policy(group_shot_coverage=0.25), SelectionThresholds(), telemetry)

    assert telemetry.count("people_balance_exempted") == 3


def test_people_balance_can_be_disabled():
    candidates = [candidate(f"a{i}", i, persons=["a"]) for i in range(6)] + [candidate("b", 9, persons=["b"])]

    kept = PeopleBalanceStage().apply(
        candidates, policy(enable_people_balance=False), SelectionThresholds(), SelectionTelemetry()
    )

    assert len(kept) == 7


def test_staypoint_stage_caps_each_staypoint():
    telemetry = SelectionTelemetry()
    candidates = [candidate(f"s{i}", i, staypoint="sp") for i in range(3)] + [candidate("free", 5)]

    kept = StaypointQuotaStage().apply(candidates, policy(), SelectionThresholds(staypoint_cap=1), telemetry)

    assert ids(kept) == ["s0", "free"]
    assert telemetry.count("staypoint_rejections") == 2


# Selector


def test_burst_collapses_to_best_member():
    items = [
        media("b1", at(hour=10), quality_score=0.6),
        media("b2", at(hour=10, second=15), quality_score=0.7),
        media("b3", at(hour=10, second=35), quality_score=0.9),
        media("later", at(hour=12), quality_score=0.5),
    ]

    result = VacationMemberSelector().select(days_of(day_summary(0, items)), None, policy(minimum_total=2))

    assert result.member_ids == ["b3", "later"]
    assert result.telemetry["burst_collapsed"] == 2
    assert result.telemetry["padding"] == 0


def test_tagged_burst_uses_representative_flag():
    items = [
        media("t1", at(hour=9), burst_id="burst", burst_representative=True, quality_score=0.6),
        media("t2", at(hour=9, minute=5), burst_id="burst", quality_score=0.6),
    ]

    result = VacationMemberSelector().select(days_of(day_summary(0, items)), None, policy(minimum_total=1))

    assert result.member_ids == ["t1"]


def test_quality_floor_drops_weak_members():
    items = [media("high", at(hour=10), quality_score=0.8), media("low", at(hour=14), quality_score=0.2)]

    result = VacationMemberSelector().select(
        days_of(day_summary(0, items)), None, policy(minimum_total=1, quality_floor=0.3)
    )

    assert result.member_ids == ["high"]
    assert result.telemetry["prefilter_quality_floor"] == 1
    assert result.telemetry["prefilter_total"] == 2


def test_staypoint_cap_limits_members_per_place():
    items = [media(f"s{i}", at(hour=10 + i), ROME) for i in range(3)]
    start, end = items[0].timestamp, items[-1].timestamp
    summary = day_summary(0, items)
    summary.staypoint_index = StaypointIndex(summary.date, [Staypoint(ROME[0], ROME[1], start, end, end - start)], items)

    result = VacationMemberSelector().select(days_of(summary), None, policy(minimum_total=1, max_per_staypoint=1))

    assert result.member_ids == ["s0"]
    assert result.telemetry["staypoint_rejections"] > 0
    assert result.telemetry["thresholds"]["max_per_staypoint"] == 1


def test_spacing_is_relaxed_to_reach_minimum(caplog):
    items = [media(f"m{i}", at(hour=10, minute=5 * i)) for i in range(6)]
    selection_policy = policy(target_total=6, minimum_total=6, min_spacing_seconds=1200)

    with caplog.at_level(logging.INFO, logger="curator.selection.selector"):
        result = VacationMemberSelector().select(days_of(day_summary(0, items)), None, selection_policy)

    assert len(result.members) == 6
    assert result.telemetry["relaxations"] == [{"rule": "min_spacing_seconds", "from": 1200, "to": 0}]
    assert result.telemetry["thresholds"]["spacing_relaxed_to_zero"]
    assert not result.telemetry["thresholds"]["phash_relaxed_to_floor"]
    assert result.telemetry["minimum_total_met"]
    assert "Relaxing min_spacing_seconds" in caplog.text
    # relaxation edits the thresholds, never the caller's policy
    assert selection_policy.min_spacing_seconds == 1200


def test_relaxation_never_tightens():
    items = [media(f"m{i}", at(hour=10, minute=i), phash="ffff") for i in range(5)]
    selection_policy = policy(target_total=5, minimum_total=5, min_spacing_seconds=900, phash_min_hamming=4)

    result = VacationMemberSelector().select(days_of(day_summary(0, items)), None, selection_policy)

    for change in result.telemetry["relaxations"]:
        assert change["to"] is None or change["to"] <= change["from"]
    assert len(result.members) == 5


def test_padding_reaches_burst_members():
    items = [media(f"b{i}", at(hour=10, second=10 * i), quality_score=0.5 + i / 10) for i in range(3)]

    result = VacationMemberSelector().select(
        days_of(day_summary(0, items)), None, policy(target_total=4, minimum_total=3)
    )

    assert sorted(result.member_ids) == ["b0", "b1", "b2"]
    assert result.telemetry["padding"] == 2
    assert result.telemetry["minimum_total_met"]


def test_near_duplicate_with_higher_quality_replaces():
    items = [
        media("first", at(hour=10), phash="ffff", quality_score=0.6),
        media("better", at(hour=12), phash="fffe", quality_score=0.9),
    ]

    result = VacationMemberSelector().select(
        days_of(day_summary(0, items)), None, policy(minimum_total=1, phash_min_hamming=4)
    )

    assert result.member_ids == ["better"]
    assert result.telemetry["near_duplicate_replacements"] == 1


def test_near_duplicate_with_lower_quality_is_blocked():
    items = [
        media("first", at(hour=10), phash="ffff", quality_score=0.9),
        media("worse", at(hour=12), phash="fffe", quality_score=0.6),
    ]

    result = VacationMemberSelector().select(
        days_of(day_summary(0, items)), None, policy(minimum_total=1, phash_min_hamming=4)
    )

    assert result.member_ids == ["first"]
    assert result.telemetry["near_duplicate_blocked"] == 1


def test_people_balance_caps_the_final_selection():
    items = [media(f"a{i}", at(hour=8 + i), persons=["a"]) for i in range(8)]
    items += [media(f"b{i}", at(hour=16 + i), persons=["b"]) for i in range(2)]

    result = VacationMemberSelector().select(days_of(day_summary(0, items)), None, policy(minimum_total=0))

    selected_a = [mid for mid in result.member_ids if mid.startswith("a")]
    assert len(selected_a) == 5
    assert sorted(mid for mid in result.member_ids if mid.startswith("b")) == ["b0", "b1"]
    assert result.telemetry["people_balance_rejected"] >= 3
    assert result.telemetry["padding"] == 0


def test_near_duplicate_replacement_respects_staypoint_cap():
    first = media("first", at(hour=10), ROME, phash="ffff", quality_score=0.5)
    other = media("other", at(hour=12), ROME, phash="0000", quality_score=0.5)
    better = media("better", at(hour=13), ROME, phash="fffe", quality_score=0.9)
    summary = day_summary(0, [first, other, better])
    staypoints = [
        Staypoint(ROME[0], ROME[1], first.timestamp, first.timestamp, 0, member_ids=("first",)),
        Staypoint(ROME[0], ROME[1], other.timestamp, better.timestamp, 3600, member_ids=("other", "better")),
    ]
    summary.staypoint_index = StaypointIndex(summary.date, staypoints, summary.members)

    result = VacationMemberSelector().select(
        days_of(summary), None, policy(minimum_total=1, max_per_staypoint=1, phash_min_hamming=4)
    )

    assert sorted(result.member_ids) == ["first", "other"]
    assert result.telemetry["near_duplicate_replacements"] == 0
    assert result.telemetry["near_duplicate_blocked"] == 1


def test_members_are_interleaved_across_days():
    first = [media(f"d1-{h}", at(hour=h)) for h in (10, 12, 14)]
    second = [media("d2-10", at(day=1, hour=10))]

    result = VacationMemberSelector().select(days_of(day_summary(0, first), day_summary(1, second)), None, policy())

    assert result.member_ids == ["d1-10", "d2-10", "d1-12", "d1-14"]


def test_empty_pool_with_zero_minimum():
    result = VacationMemberSelector().select(days_of(day_summary(0, [])), None, policy(minimum_total=0))

    assert result.members == []
    assert result.telemetry["relaxations"] == []
    assert result.telemetry["minimum_total_met"]


def test_empty_pool_is_not_relaxed():
    result = VacationMemberSelector().select(days_of(day_summary(0, [])), None, policy(minimum_total=3))

    assert result.members == []
    assert result.telemetry["relaxations"] == []
    assert not result.telemetry["minimum_total_met"]


def _library():
    summaries = []
    for day in range(3):
        items = []
        for i in range(12):
            bits = (i * 2654435761 + day * 97) & 0xFFFFFFFFFFFFFFFF
            items.append(
                media(
                    f"d{day}-{i:02d}",
                    at(day=day, hour=8 + i),
                    ROME,
                    phash=f"{bits:016x}",
                    quality_score=0.4 + (i % 5) / 10,
                    persons=["p1"] if i % 3 == 0 else [],
                    faces_count=1 if i % 3 == 0 else 0,
                )
            )
        summaries.append(day_summary(day, items))
    return days_of(*summaries)


def test_selection_is_deterministic_and_bounded():
    selection_policy = SelectionPolicyProvider().for_run("vacation", "vacation", 3)

    first = VacationMemberSelector().select(_library(), None, selection_policy)
    second = VacationMemberSelector().select(_library(), None, selection_policy)

    assert first.member_ids == second.member_ids
    assert len(set(first.member_ids)) == len(first.member_ids)
    assert selection_policy.minimum_total <= len(first.members) <= selection_policy.target_total


def test_telemetry_report_shape():
    result = VacationMemberSelector().select(_library(), None, policy(minimum_total=2))

    report = result.telemetry
    for key in COUNTER_KEYS:
        assert key in report
    assert report["selected_total"] == len(result.members)
    assert report["profile"] == "default"
    assert set(report["thresholds"]["day_caps"]) == {"2024-07-01", "2024-07-02", "2024-07-03"}
    assert len(report["mmr"]) >= len(result.members) - report["padding"] - report["near_duplicate_replacements"]
