"""
Presentation-layer contract: what the visualization receives per project
and per cause.
"""

from typing import List, Optional

from pydantic import BaseModel, Field


class ProjectNode(BaseModel):
    """One project as a point in the scatter plot."""
    id: str
    name: str
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0
    size: float = 5.0                 # log-scaled in stars
    color: str = "#6b7280"
    is_outlier: bool = False
    cause_id: Optional[str] = None
    description: str = ""
    stars: int = 0
    languages: List[str] = Field(default_factory=list)
    topics: List[str] = Field(default_factory=list)


class CauseNode(BaseModel):
    """One discovered cause as a labeled hub."""
    id: str
    name: str
    description: str = ""
    keywords: List[str] = Field(default_factory=list)
    color: str = "#6366f1"
    size: float = 20.0
    level: int = 0
    parent_id: Optional[str] = None
    project_count: int = 0


class LayoutResult(BaseModel):
    """Everything the presentation layer needs to draw one scope."""
    scope_id: Optional[str] = None
    nodes: List[ProjectNode] = Field(default_factory=list)
    causes: List[CauseNode] = Field(default_factory=list)
    spread_factor: float = 1.0
    explained_variance: List[float] = Field(default_factory=list)
    outlier_count: int = 0
