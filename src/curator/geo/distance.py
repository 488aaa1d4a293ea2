from typing import Iterable, Optional, Tuple

import numpy as np
from pyproj import Geod

from curator.models.media import Media

EARTH_RADIUS_KM = 6371.0088

geod = Geod(ellps="WGS84")


def distance_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    # inv(lon1, lat1, lon2, lat2) -> az12, az21, dist
    _, _, dist = geod.inv(lon1, lat1, lon2, lat2)
    return float(dist) / 1000.0


def media_distance_km(a: Media, b: Media) -> float:
    return distance_km(a.lat, a.lon, b.lat, b.lon)


def midpoint(lat1: float, lon1: float, lat2: float, lon2: float) -> Tuple[float, float]:
    """Geodesic midpoint between two fixes."""
    az12, _, dist = geod.inv(lon1, lat1, lon2, lat2)
    if dist == 0:
        return lat1, lon1
    lon, lat, _ = geod.fwd(lon1, lat1, az12, dist / 2.0)
    return float(lat), float(lon)


def centroid(items: Iterable[Media]) -> Optional[Tuple[float, float]]:
    coords = np.array([[m.lat, m.lon] for m in items if m.has_gps], dtype=float)
    if coords.size == 0:
        return None
    lat, lon = coords.mean(axis=0)
    return float(lat), float(lon)
