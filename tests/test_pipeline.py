import sys
import os
import logging
from datetime import datetime, timezone

import pytest

sys.path.append(os.path.join(os.path.dirname(__file__), "../src"))

from conftest import BERLIN, at, media
from core.config import Settings
from core.logger import DEV_LOGGING_CONFIG, JsonFormatter, setup_logging
from curator.config import CurationConfig, HomeConfig, ScoreConfig
from curator.services.pipeline import VacationCurationPipeline
from test_day_summary import trip_library

NOW = datetime(2024, 7, 10, tzinfo=timezone.utc)


@pytest.fixture
def restore_logging():
    curator_logger = logging.getLogger("curator")
    root = logging.getLogger()
    curator_handlers, curator_level, propagate = curator_logger.handlers[:], curator_logger.level, curator_logger.propagate
    root_handlers, root_level = root.handlers[:], root.level
    yield
    curator_logger.handlers[:] = curator_handlers
    curator_logger.setLevel(curator_level)
    curator_logger.propagate = propagate
    root.handlers[:] = root_handlers
    root.setLevel(root_level)


def pipeline(**score):
    config = CurationConfig(
        home=HomeConfig(lat=BERLIN[0], lon=BERLIN[1]),
        score=ScoreConfig(**score),
    )
    settings = Settings(MONITORING_ENABLED=False)
    return VacationCurationPipeline.create(config, settings=settings, reference_now=NOW)


def test_pipeline_produces_one_draft_per_qualified_run():
    drafts = pipeline(minimum_member_floor=0).run(trip_library())

    assert len(drafts) == 1
    draft = drafts[0]
    assert draft.params["time_range"]["from"] == int(at(day=3, hour=9).timestamp())
    assert all(member.startswith(("d3-", "d4-", "d5-")) for member in draft.members)


def test_pipeline_applies_member_floor():
    assert pipeline().run(trip_library()) == []


def test_pipeline_without_home_returns_nothing():
    settings = Settings(HOME_LAT=None, HOME_LON=None, MONITORING_ENABLED=False)
    curation = VacationCurationPipeline.create(settings=settings, reference_now=NOW)

    assert curation.run([media("a", at()), media("b", at(day=1))]) == []


def test_pipeline_reads_home_from_settings():
    settings = Settings(HOME_LAT=BERLIN[0], HOME_LON=BERLIN[1], HOME_RADIUS_KM=20.0)
    curation = VacationCurationPipeline.create(settings=settings, reference_now=NOW)

    home = curation.home_locator.get_configured_home()

    assert home.radius_km == 20.0
    assert (home.lat, home.lon) == BERLIN


def test_setup_logging_uses_readable_format_outside_production(restore_logging):
    config = setup_logging()

    assert config is DEV_LOGGING_CONFIG
    assert logging.getLogger("curator").handlers


def test_json_formatter_includes_context():
    record = logging.LogRecord("curator.monitoring", logging.INFO, __file__, 1, "vacation_curation.done", None, None)
    record.context = {"job": "vacation_curation"}

    payload = JsonFormatter().format(record)

    assert '"context": {"job": "vacation_curation"}' in payload
    assert '"level": "INFO"' in payload
