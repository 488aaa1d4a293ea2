from abc import ABC, abstractmethod
from typing import Dict

from curator.models.day import DaySummary
from curator.models.home import Home


class DaySummaryStage(ABC):
    """One pass over the ordered day map."""

    name: str = "stage"

    @abstractmethod
    def process(self, days: Dict[str, DaySummary], home: Home) -> None:
        """
        Enriches the summaries in place.

        Args:
            days: Day summaries keyed by local date, in chronological order.
            home: The home reference for distance decisions.
        """
        raise NotImplementedError()
