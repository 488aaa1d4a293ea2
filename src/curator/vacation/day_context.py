from typing import Dict, List

from curator.models.day import DayContext, DaySummary

CATEGORY_CORE = "core"
CATEGORY_PERIPHERAL = "peripheral"


class DayContextBuilder:
    """Labels each run day as core or peripheral to the trip and scores its richness."""

    def build(self, day_keys: List[str], days: Dict[str, DaySummary]) -> Dict[str, DayContext]:
        context = {}
        for key in day_keys:
            summary = days[key]
            span = summary.time_span
            context[key] = DayContext(
                score=round(self._score(summary), 3),
                category=CATEGORY_CORE if summary.is_core else CATEGORY_PERIPHERAL,
                duration=span[1] - span[0] if span is not None else None,
            )
        return context

    @staticmethod
    def _score(summary: DaySummary) -> float:
        if summary.is_synthetic:
            return 0.0
        spots = min(1.0, summary.spot_count / 3.0)
        return 0.4 * summary.tourism_ratio + 0.3 * spots + 0.3 * (1.0 - summary.transit_ratio)
