import os
import sys
from datetime import datetime, timedelta, timezone

import pytest

sys.path.append(os.path.join(os.path.dirname(__file__), "../src"))

from curator.models.home import Home, HomeCenter
from curator.models.media import Media

BERLIN = (52.5200, 13.4050)
MUNICH = (48.1372, 11.5756)
ROME = (41.9028, 12.4964)

START = datetime(2024, 7, 1, tzinfo=timezone.utc)


def at(day: int = 0, hour: int = 0, minute: int = 0, second: int = 0) -> datetime:
    return START + timedelta(days=day, hours=hour, minutes=minute, seconds=second)


def media(media_id, when, point=None, **kwargs) -> Media:
    lat, lon = point if point is not None else (None, None)
    return Media(id=media_id, taken_at=when, lat=lat, lon=lon, **kwargs)


@pytest.fixture
def home():
    center = HomeCenter(lat=BERLIN[0], lon=BERLIN[1], radius_km=15.0, timezone_offset=120, country="de")
    return Home(lat=BERLIN[0], lon=BERLIN[1], radius_km=15.0, country="de", timezone_offset=120, centers=[center])
