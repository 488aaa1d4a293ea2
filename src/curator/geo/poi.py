from typing import Iterable, List, Sequence

from curator.models.media import Media

TOURISM_KEYWORDS = (
    "tourism",
    "attraction",
    "beach",
    "museum",
    "national_park",
    "viewpoint",
    "hotel",
    "camp_site",
    "ski",
    "marina",
)

TRANSPORT_KEYWORDS = (
    "airport",
    "aerodrome",
    "railway_station",
    "train_station",
    "bus_station",
)

AIRPORT_KEYWORDS = ("airport", "aerodrome")


class PoiClassifier:
    """Keyword heuristics over the reverse-geocoded location of a media item."""

    def is_tourism(self, media: Media) -> bool:
        return self._matches(media, TOURISM_KEYWORDS)

    def is_transport(self, media: Media) -> bool:
        return self._matches(media, TRANSPORT_KEYWORDS)

    def is_airport(self, media: Media) -> bool:
        return self._matches(media, AIRPORT_KEYWORDS)

    def is_poi_sample(self, media: Media) -> bool:
        location = media.location
        if location is None:
            return False
        if location.type:
            return True
        return any(poi.category_key or poi.category_value or poi.tags for poi in location.pois)

    def _matches(self, media: Media, keywords: Sequence[str]) -> bool:
        for value in self._values(media):
            if any(keyword in value for keyword in keywords):
                return True
        return False

    @staticmethod
    def _values(media: Media) -> Iterable[str]:
        location = media.location
        if location is None:
            return []
        values: List[str] = [location.category, location.type]
        for poi in location.pois:
            values.append(poi.category_key)
            values.append(poi.category_value)
            for key, value in poi.tags.items():
                values.append(key)
                values.append(value)
        return [v.lower() for v in values if isinstance(v, str) and v]
