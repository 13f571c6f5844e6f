"""
Presentation layout — turns a cached projection into drawable nodes.

PIPELINE (per scope):
  1. Take the first DISPLAY_DIMENSIONS components of each stored projection
  2. Flag outliers (IQR fence over distance from the origin)
  3. Spread factor from the non-outlier extent → scale everyone
  4. Dampen flagged points toward the origin

Colors follow the most specific cause a project belongs to: a subcause
overrides its parent. Projects in no cause are grey. Projects missing from
the projection (no embedding, or a skipped scope) sit at the origin.
"""

import logging
import math
from typing import Dict, List, Optional, Sequence

import numpy as np

from causemap.config import Settings, get_settings
from causemap.discovery.engine import embedded_projects
from causemap.discovery.outliers import OutlierDetector
from causemap.discovery.reduction import pad, project_scope, spread_factor
from causemap.schemas.causes import DiscoveredCause, ScopeProjection
from causemap.schemas.projects import ProjectRecord
from causemap.schemas.visualization import CauseNode, LayoutResult, ProjectNode
from causemap.shared.palette import UNCLUSTERED_COLOR

logger = logging.getLogger(__name__)

MAX_NODE_SIZE = 20.0
MAX_CAUSE_NODE_SIZE = 40.0


def node_size(stars: int) -> float:
    return min(MAX_NODE_SIZE, 5 + 3 * math.log10(max(stars, 0) + 1))


def cause_node_size(project_count: int) -> float:
    return min(MAX_CAUSE_NODE_SIZE, 20 + 2 * project_count)


def _assignments(causes: Sequence[DiscoveredCause]) -> Dict[str, DiscoveredCause]:
    """project id → most specific cause (deeper levels applied last)."""
    owner: Dict[str, DiscoveredCause] = {}
    for cause in sorted(causes, key=lambda c: c.level):
        for pid in cause.project_ids:
            owner[pid] = cause
    return owner


def build_layout(
    projects: Sequence[ProjectRecord],
    causes: Sequence[DiscoveredCause],
    projection: ScopeProjection,
    settings: Optional[Settings] = None,
) -> LayoutResult:
    """Scaled, outlier-dampened display coordinates plus cause hubs for one scope."""
    s = settings or get_settings()
    dims = max(1, min(s.display_dimensions, 3))
    owner = _assignments(causes)

    placed = [p for p in projects if p.id in projection.coordinates]
    coords = np.asarray(
        [projection.coordinates[p.id][:dims] for p in placed], dtype=float,
    ).reshape(len(placed), dims)

    detector = OutlierDetector(s.outlier_iqr_multiplier, s.outlier_dampening)
    report = detector.detect(coords)
    factor = (
        spread_factor(coords, report.flags, s.target_visual_range, s.default_spread_factor)
        if len(placed) else s.default_spread_factor
    )
    display = detector.dampen(coords * factor, report)

    positions = {p.id: pad(row, 3) for p, row in zip(placed, display)}
    flagged = {p.id for p, flag in zip(placed, report.flags) if flag}

    nodes: List[ProjectNode] = []
    for project in projects:
        x, y, z = positions.get(project.id, [0.0, 0.0, 0.0])
        cause = owner.get(project.id)
        nodes.append(ProjectNode(
            id=project.id,
            name=project.name,
            x=x, y=y, z=z,
            size=node_size(project.stars),
            color=cause.color if cause else UNCLUSTERED_COLOR,
            is_outlier=project.id in flagged,
            cause_id=cause.id if cause else None,
            description=project.description,
            stars=project.stars,
            languages=project.languages,
            topics=project.topics,
        ))

    cause_nodes = [
        CauseNode(
            id=c.id,
            name=c.name,
            description=c.description,
            keywords=c.keywords,
            color=c.color,
            size=cause_node_size(c.metadata.project_count or c.size),
            level=c.level,
            parent_id=c.parent_id,
            project_count=c.metadata.project_count or c.size,
        )
        for c in causes
    ]

    if projection.skipped:
        logger.info(f"Layout '{projection.scope_id or 'global'}': projection skipped ({projection.skipped_reason})")
    logger.info(
        f"Layout '{projection.scope_id or 'global'}': {len(nodes)} nodes "
        f"({len(placed)} projected, {report.count} outliers), {len(cause_nodes)} causes, "
        f"spread={factor:.2f}"
    )
    return LayoutResult(
        scope_id=projection.scope_id,
        nodes=nodes,
        causes=cause_nodes,
        spread_factor=float(factor),
        explained_variance=list(projection.explained_variance[:dims]),
        outlier_count=report.count,
    )


def layout_from_embeddings(
    projects: Sequence[ProjectRecord],
    causes: Sequence[DiscoveredCause],
    scope_id: Optional[str] = None,
    settings: Optional[Settings] = None,
) -> LayoutResult:
    """Project the embedded subset on the fly and lay it out (no cache)."""
    s = settings or get_settings()
    embedded = embedded_projects(projects)
    projection = project_scope(
        {p.id: p.embedding for p in embedded},
        scope_id=scope_id,
        model=next((p.embedding_model or "" for p in embedded), ""),
        storage_width=s.pca_storage_width,
        random_state=s.random_seed,
    )
    return build_layout(projects, causes, projection, s)
