import sys
import os
from datetime import datetime, timezone

sys.path.append(os.path.join(os.path.dirname(__file__), "../src"))

from conftest import BERLIN, ROME, at, media
from curator.config import HomeConfig
from curator.geo.home import HomeLocator
from curator.vacation.day_context import CATEGORY_CORE, CATEGORY_PERIPHERAL, DayContextBuilder
from curator.vacation.summary.builder import DaySummaryBuilder


def photos_on(day, point, count, start_hour=9, step_minutes=30, prefix=None):
    prefix = prefix or f"d{day}"
    return [media(f"{prefix}-{i}", at(day=day, hour=start_hour, minute=step_minutes * i), point) for i in range(count)]


def trip_library():
    items = []
    for day in (0, 1, 2, 6, 7):
        items += photos_on(day, BERLIN, 4)
    for day in (3, 4, 5):
        items += photos_on(day, ROME, 6)
    return items


def test_days_are_keyed_by_local_date(home):
    late = media("late", at(day=0, hour=23, minute=30), BERLIN)

    days = DaySummaryBuilder().build_day_summaries([late], home)

    assert list(days.keys()) == ["2024-07-02"]
    summary = days["2024-07-02"]
    assert summary.local_timezone_offset == 120
    assert summary.local_timezone_identifier == "+02:00"
    assert summary.weekday == 2


def test_configured_home_zone_keys_days_by_capture_date():
    home = HomeLocator(HomeConfig(lat=BERLIN[0], lon=BERLIN[1])).get_configured_home()
    winter = media("winter", datetime(2024, 1, 15, 23, 30, tzinfo=timezone.utc), BERLIN)
    summer = media("summer", datetime(2024, 7, 15, 22, 30, tzinfo=timezone.utc), BERLIN)

    days = DaySummaryBuilder().build_day_summaries([winter, summer], home)

    assert sorted(days) == ["2024-01-16", "2024-07-16"]
    assert days["2024-01-16"].local_timezone_offset == 60
    assert days["2024-07-16"].local_timezone_offset == 120


def test_media_without_capture_time_are_skipped(home):
    days = DaySummaryBuilder().build_day_summaries([media("undated", None, BERLIN)], home)

    assert days == {}


def test_short_gaps_get_placeholder_days(home):
    items = photos_on(0, BERLIN, 3) + photos_on(3, BERLIN, 3)

    days = DaySummaryBuilder().build_day_summaries(items, home)

    assert list(days.keys()) == ["2024-07-01", "2024-07-02", "2024-07-03", "2024-07-04"]
    assert [s.is_synthetic for s in days.values()] == [False, True, True, False]
    assert days["2024-07-02"].members == []
    assert days["2024-07-02"].local_timezone_identifier == "+02:00"


def test_long_gaps_are_not_filled(home):
    items = photos_on(0, BERLIN, 3) + photos_on(5, BERLIN, 3)

    days = DaySummaryBuilder().build_day_summaries(items, home)

    assert list(days.keys()) == ["2024-07-01", "2024-07-06"]


def test_speed_outliers_are_dropped_from_the_trace(home):
    items = [
        media("a", at(hour=10), ROME),
        media("b", at(hour=10, minute=5), ROME),
        media("jump", at(hour=10, minute=6), BERLIN),
        media("c", at(hour=10, minute=10), ROME),
    ]

    days = DaySummaryBuilder().build_day_summaries(items, home)

    summary = days["2024-07-01"]
    assert [m.id for m in summary.gps_members] == ["a", "b", "c"]
    assert summary.photo_count == 4
    assert summary.max_distance_km > 1000


def test_staypoint_index_only_counts_gps_members(home):
    items = photos_on(0, ROME, 7, step_minutes=5)
    items += [media("walk", at(hour=15), (ROME[0] + 0.05, ROME[1])), media("no-gps", at(hour=16))]

    days = DaySummaryBuilder().build_day_summaries(items, home)

    summary = days["2024-07-01"]
    assert len(summary.staypoints) == 1
    assert sum(summary.staypoint_counts.values()) == 7
    assert sum(summary.staypoint_counts.values()) <= len(summary.gps_members)
    assert summary.staypoint_index.get(items[0]) == summary.dominant_staypoints[0].key
    assert summary.staypoint_index.get(items[-1]) is None


def test_trip_days_are_flagged_away(home):
    days = DaySummaryBuilder().build_day_summaries(trip_library(), home)

    away = [key for key, summary in days.items() if summary.is_away]
    assert away == ["2024-07-04", "2024-07-05", "2024-07-06"]
    assert all(days[key].is_core for key in away)
    assert all(days[key].sufficient_samples for key in away)
    assert not days["2024-07-03"].is_away


def test_density_is_zero_mean(home):
    days = DaySummaryBuilder().build_day_summaries(trip_library(), home)

    real = [s for s in days.values() if not s.is_synthetic]
    assert abs(sum(s.density_z for s in real)) < 1e-9
    assert days["2024-07-04"].density_z > 0 > days["2024-07-01"].density_z


def test_day_context_labels_core_days(home):
    days = DaySummaryBuilder().build_day_summaries(trip_library(), home)

    context = DayContextBuilder().build(["2024-07-03", "2024-07-04"], days)

    assert context["2024-07-04"].category == CATEGORY_CORE
    assert context["2024-07-03"].category == CATEGORY_PERIPHERAL
    assert context["2024-07-04"].duration == 150 * 60
    assert 0.0 <= context["2024-07-04"].score <= 1.0
