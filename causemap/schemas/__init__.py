"""
Schemas package — all data models for the cause-discovery pipeline.

Models are organized by domain in submodules:
  - base.py: Common enums
  - projects.py: ProjectRecord, ContributorRecord, CauseRecord, EmbeddingResult
  - causes.py: Cluster, ClusteringResult, DiscoveredCause, DiscoveryResult, ScopeProjection
  - visualization.py: ProjectNode, CauseNode, LayoutResult
"""

# base.py — enums
from causemap.schemas.base import (
    EntityKind, Maturity, GeographicScope, LabelSource, ReductionMethod,
)

# projects.py — entity records
from causemap.schemas.projects import (
    ProjectRecord, ContributorRecord, CauseRecord, EmbeddingResult,
)

# causes.py — clustering and discovery output
from causemap.schemas.causes import (
    Cluster, ClusteringResult, CauseLabel, CauseMetadata,
    DiscoveredCause, DiscoveryResult, ScopeProjection,
)

# visualization.py — presentation contract
from causemap.schemas.visualization import ProjectNode, CauseNode, LayoutResult

__all__ = [
    # base
    "EntityKind", "Maturity", "GeographicScope", "LabelSource", "ReductionMethod",
    # projects
    "ProjectRecord", "ContributorRecord", "CauseRecord", "EmbeddingResult",
    # causes
    "Cluster", "ClusteringResult", "CauseLabel", "CauseMetadata",
    "DiscoveredCause", "DiscoveryResult", "ScopeProjection",
    # visualization
    "ProjectNode", "CauseNode", "LayoutResult",
]
