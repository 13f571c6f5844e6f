"""
Cluster and cause models.

A Cluster is what k-means produces; a DiscoveredCause is a Cluster after
labeling. Both are regenerated on every discovery run, with no identity
continuity between runs.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from causemap.schemas.base import GeographicScope, LabelSource, Maturity, ReductionMethod


# ══════════════════════════════════════════════════════════════════════════════
# CLUSTERING
# ══════════════════════════════════════════════════════════════════════════════

class Cluster(BaseModel):
    """One k-means cluster at a given hierarchy level."""
    id: str
    level: int = 0
    parent_id: Optional[str] = None
    centroid: List[float] = Field(default_factory=list)
    member_ids: List[str] = Field(default_factory=list)

    @property
    def size(self) -> int:
        return len(self.member_ids)


class ClusteringResult(BaseModel):
    """Output of one k-means pass.

    Every input id appears exactly once: either in one cluster's
    ``member_ids`` or in ``unclustered_ids`` (its cluster fell below the
    minimum size).
    """
    k: int = 0
    clusters: List[Cluster] = Field(default_factory=list)
    unclustered_ids: List[str] = Field(default_factory=list)
    silhouette: Optional[float] = None
    iterations: int = 0


# ══════════════════════════════════════════════════════════════════════════════
# LABELED CAUSES
# ══════════════════════════════════════════════════════════════════════════════

class CauseLabel(BaseModel):
    """Name, description and keywords for one cluster."""
    name: str
    description: str = ""
    keywords: List[str] = Field(default_factory=list)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    source: LabelSource = LabelSource.METADATA


class CauseMetadata(BaseModel):
    """Aggregate statistics over a cause's projects."""
    project_count: int = 0
    avg_stars: float = 0.0
    top_languages: List[str] = Field(default_factory=list)
    top_topics: List[str] = Field(default_factory=list)
    top_tags: List[str] = Field(default_factory=list)
    geographic_scope: GeographicScope = GeographicScope.GLOBAL
    maturity: Maturity = Maturity.EMERGING


class DiscoveredCause(BaseModel):
    """A labeled cluster, ready for persistence and presentation."""
    id: str
    name: str
    description: str = ""
    keywords: List[str] = Field(default_factory=list)
    color: str = "#6366f1"
    level: int = 0
    parent_id: Optional[str] = None
    project_ids: List[str] = Field(default_factory=list)
    centroid: List[float] = Field(default_factory=list)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    label_source: LabelSource = LabelSource.METADATA
    metadata: CauseMetadata = Field(default_factory=CauseMetadata)

    @property
    def size(self) -> int:
        return len(self.project_ids)


class DiscoveryResult(BaseModel):
    """Outcome of one discovery run: every cause, flattened across levels."""
    run_id: str
    causes: List[DiscoveredCause] = Field(default_factory=list)
    unclustered_ids: List[str] = Field(default_factory=list)
    # Keyed by "top" or the parent cause id; None when not computable
    silhouette: Dict[str, Optional[float]] = Field(default_factory=dict)
    metrics: Dict[str, Any] = Field(default_factory=dict)
    used_metadata_fallback: bool = False

    @property
    def top_level(self) -> List[DiscoveredCause]:
        return [c for c in self.causes if c.level == 0]

    @property
    def sub_causes(self) -> List[DiscoveredCause]:
        return [c for c in self.causes if c.level == 1]


# ══════════════════════════════════════════════════════════════════════════════
# PROJECTIONS
# ══════════════════════════════════════════════════════════════════════════════

class ScopeProjection(BaseModel):
    """PCA coordinates for every project in one scope.

    ``scope_id`` is None for the global scope. Coordinates and explained
    variance are zero-padded to the storage width. A skipped scope has no
    coordinates and records why.
    """
    scope_id: Optional[str] = None
    model: str = ""
    coordinates: Dict[str, List[float]] = Field(default_factory=dict)
    explained_variance: List[float] = Field(default_factory=list)
    components: int = 0
    method: Optional[ReductionMethod] = None
    skipped_reason: Optional[str] = None

    @property
    def skipped(self) -> bool:
        return self.skipped_reason is not None
