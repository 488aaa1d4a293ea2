from typing import Any, Dict, List

from pydantic import BaseModel, Field


class Centroid(BaseModel):
    lat: float
    lon: float


class ClusterDraft(BaseModel):
    """Scored memory handed over to persistence."""

    algorithm: str = Field(..., description="Clustering strategy that produced the draft")
    storyline: str = Field("vacation", description="Narrative flavour, e.g. vacation.transit")
    params: Dict[str, Any] = Field(default_factory=dict)
    centroid: Centroid
    members: List[str] = Field(default_factory=list, description="Curated media ids in display order")

    @property
    def score(self) -> float:
        return float(self.params.get("score", 0.0))
